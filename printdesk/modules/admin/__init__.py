"""
Admin Module
============

Admin portal access: OTP login, session gate and the admin directory.

Provides:
- AdminDirectory: seed admins layered under a persisted allow-list
- AdminGate: request/verify/resend OTP, authorize, logout
- Admin API blueprint at /admin/api
"""

from flask import Blueprint

admin_bp = Blueprint(
    'admin',
    __name__,
    url_prefix='/admin'
)

from . import routes
from .directory import AdminDirectory, AdminIdentity
from .notifications import LogOtpNotifier, ResendOtpNotifier, NotificationError, build_notifier
from .session import AdminGate, AdminSession, AuthState, OtpIssue
from .utils import admin_required

__all__ = [
    'admin_bp', 'AdminDirectory', 'AdminIdentity', 'AdminGate', 'AdminSession', 'AuthState', 'OtpIssue',
    'LogOtpNotifier', 'ResendOtpNotifier', 'NotificationError', 'build_notifier', 'admin_required',
]
