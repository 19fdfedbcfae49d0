"""
In-flight Submission Guard
==========================

Process-local set of order keys currently being created. A second create
for a key that is still in flight is rejected; the key is always released
when the holder leaves the `hold()` block, whatever the outcome.

Only protects against re-entrant submissions inside one process. The
OrderStore's recent-duplicate query covers other processes and tabs.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime

from printdesk.core.errors import DuplicateSubmission, StoreUnavailable

logger = logging.getLogger(__name__)


class InFlightGuard:
    """Bounded map of dedup key -> time the holder acquired it"""

    def __init__(self, max_entries=1024):
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._in_flight = {}

    def __len__(self):
        with self._lock:
            return len(self._in_flight)

    def __contains__(self, key):
        with self._lock:
            return key in self._in_flight

    def _acquire(self, key):
        with self._lock:
            if key in self._in_flight:
                raise DuplicateSubmission('An identical order is already being submitted')
            if len(self._in_flight) >= self.max_entries:
                raise StoreUnavailable('Too many orders are being submitted right now')
            self._in_flight[key] = datetime.now()

    def _release(self, key):
        with self._lock:
            self._in_flight.pop(key, None)

    @contextmanager
    def hold(self, key):
        """
        Hold `key` for the duration of the block.

        Raises DuplicateSubmission if another caller holds the same key.
        """
        self._acquire(key)
        logger.debug(f"Holding in-flight key {key}")
        try:
            yield key
        finally:
            self._release(key)
