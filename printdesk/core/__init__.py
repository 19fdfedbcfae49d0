"""
PrintDesk Core
==============

Core utilities and shared functionality for PrintDesk modules.
"""

from .config import Config, get_config_value
from .database import Database, utc_now
from .errors import PrintDeskError
from .logging_service import LoggingService, logger

__all__ = ['Config', 'get_config_value', 'Database', 'utc_now', 'PrintDeskError', 'LoggingService', 'logger']
