"""
Admin Session Gate
==================

OTP login and the authorization check in front of every admin mutation.

Flow per browser session:

    AWAITING_EMAIL --request_otp--> AWAITING_OTP --verify_otp--> AUTHENTICATED
    AUTHENTICATED --(expiry | logout | directory revocation)--> AWAITING_EMAIL

Session material lives in a tab-scoped mapping (Flask's `session` in the
app) under the keys listed in SESSION_KEYS. The pending code is stored as
an HMAC digest, never in clear, and is never returned to the caller.

Each pending code and each live session also carries a random nonce that is
registered server side (`admin_otps` / `admin_sessions` in ADMIN_DB). A
code is accepted only while its nonce is the latest one issued for that
email, and a session only while its nonce row exists, so a replayed copy of
an older cookie stops working after resend, logout or expiry.
"""

import hashlib
import hmac
import logging
import secrets
import sqlite3
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from printdesk.core.database import Database, utc_now, to_timestamp
from printdesk.core.errors import (
    Expired, InvalidOtp, Revoked, StoreUnavailable, Unauthorized, SESSION_ERRORS,
)
from printdesk.core.logging_service import LoggingService
from .directory import normalize_email
from .notifications import NotificationError

logger = logging.getLogger(__name__)

AUTHENTICATED_KEY = 'admin_authenticated'
SESSION_EMAIL_KEY = 'admin_session_email'
SESSION_START_KEY = 'admin_session_start'
OTP_KEY = 'admin_otp'
OTP_EMAIL_KEY = 'admin_email'
OTP_NONCE_KEY = 'admin_otp_nonce'
SESSION_NONCE_KEY = 'admin_session_nonce'

SESSION_KEYS = (
    AUTHENTICATED_KEY, SESSION_EMAIL_KEY, SESSION_START_KEY, SESSION_NONCE_KEY,
    OTP_KEY, OTP_EMAIL_KEY, OTP_NONCE_KEY,
)

GATE_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS admin_otps (
        email TEXT PRIMARY KEY COLLATE NOCASE,
        nonce TEXT NOT NULL,
        issued_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS admin_sessions (
        nonce TEXT PRIMARY KEY,
        email TEXT NOT NULL,
        issued_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_admin_sessions_issued ON admin_sessions(issued_at)",
)

OTP_MIN = 100000
OTP_MAX = 999999


class AuthState(Enum):
    AWAITING_EMAIL = 'awaiting_email'
    AWAITING_OTP = 'awaiting_otp'
    AUTHENTICATED = 'authenticated'


@dataclass(frozen=True)
class AdminSession:
    email: str
    issued_at: datetime
    expires_at: datetime

    def to_dict(self):
        return {
            'email': self.email,
            'issuedAt': self.issued_at.isoformat(),
            'expiresAt': self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class OtpIssue:
    """Outcome of issuing a code. Never carries the code."""
    email: str
    delivered: bool
    error: Optional[str] = None

    def to_dict(self):
        data = {'email': self.email, 'delivered': self.delivered}
        if self.error:
            data['deliveryError'] = self.error
        return data


def _to_millis(moment):
    return int(moment.timestamp() * 1000)


def _from_millis(millis):
    return datetime.fromtimestamp(int(millis) / 1000, tz=timezone.utc)


class AdminGate:
    """OTP issuance and verification plus the authorize() check"""

    def __init__(self, directory, notifier, secret_key, clock=utc_now, ttl=timedelta(hours=24), db_path=None):
        if not secret_key:
            raise ValueError('AdminGate needs a secret key to protect pending codes')
        self.directory = directory
        self.notifier = notifier
        self.secret_key = secret_key.encode() if isinstance(secret_key, str) else secret_key
        self.clock = clock
        self.ttl = ttl
        self.db_path = db_path or directory.db_path

    # ------------------------------------------------------------------
    # Nonce registry
    # ------------------------------------------------------------------

    def init_db(self):
        try:
            Database.init_schema(self.db_path, GATE_SCHEMA)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Could not initialise admin session tables: {e}") from e

    def _write(self, sql, params=()):
        """Run one statement in its own transaction and return the rowcount"""
        self.init_db()
        try:
            with Database.transaction(self.db_path, immediate=True) as conn:
                return conn.execute(sql, params).rowcount
        except sqlite3.Error as e:
            logger.error(f"Admin session registry write failed: {e}")
            raise StoreUnavailable(str(e)) from e

    def _session_registered(self, nonce):
        self.init_db()
        try:
            with closing(Database.connect(self.db_path)) as conn:
                row = conn.execute("SELECT 1 FROM admin_sessions WHERE nonce = ?", (nonce,)).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Admin session registry read failed: {e}")
            raise StoreUnavailable(str(e)) from e
        return row is not None

    def _discard(self, storage):
        """Drop the server-side session row (if any) and clear the storage"""
        nonce = storage.get(SESSION_NONCE_KEY)
        if nonce:
            self._write("DELETE FROM admin_sessions WHERE nonce = ?", (nonce,))
        self.clear(storage)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def generate_code():
        """Uniform draw over [100000, 999999]"""
        return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))

    def _digest(self, email, code):
        message = f"{email}:{code}".encode()
        return hmac.new(self.secret_key, message, hashlib.sha256).hexdigest()

    @staticmethod
    def clear(storage):
        for key in SESSION_KEYS:
            storage.pop(key, None)

    def state(self, storage):
        if storage.get(AUTHENTICATED_KEY) and storage.get(SESSION_EMAIL_KEY):
            return AuthState.AUTHENTICATED
        if storage.get(OTP_KEY) and storage.get(OTP_EMAIL_KEY):
            return AuthState.AWAITING_OTP
        return AuthState.AWAITING_EMAIL

    # ------------------------------------------------------------------
    # OTP flow
    # ------------------------------------------------------------------

    def _issue(self, storage, email, action):
        email = normalize_email(email)
        if not self.directory.contains(email):
            self._discard(storage)
            LoggingService.log_security_event('Admin OTP requested for unauthorized email', {'email': email})
            raise Unauthorized(f"{email or 'This email'} does not have admin access")

        code = self.generate_code()
        nonce = secrets.token_hex(16)
        self._discard(storage)
        # Replacing the row retires any code issued earlier for this email
        self._write(
            "INSERT OR REPLACE INTO admin_otps (email, nonce, issued_at) VALUES (?, ?, ?)",
            (email, nonce, to_timestamp(self.clock())),
        )
        storage[OTP_EMAIL_KEY] = email
        storage[OTP_KEY] = self._digest(email, code)
        storage[OTP_NONCE_KEY] = nonce
        logger.info(f"Admin OTP {action} for {email}")

        try:
            self.notifier.send_otp(email, code)
        except NotificationError as e:
            logger.error(f"OTP delivery to {email} failed: {e}")
            LoggingService.warning('admin_auth', 'OTP delivery failed', {'email': email, 'error': str(e)})
            return OtpIssue(email=email, delivered=False, error=str(e))

        return OtpIssue(email=email, delivered=True)

    def request_otp(self, storage, email):
        """
        Issue a code for an allow-listed email.

        Raises Unauthorized (and clears any session material) otherwise.
        """
        return self._issue(storage, email, 'issued')

    def resend_otp(self, storage, email):
        """Issue a fresh code; the previous one stops working immediately."""
        return self._issue(storage, email, 're-issued')

    def verify_otp(self, storage, email, code):
        """
        Exchange a pending code for an authenticated session.

        Raises InvalidOtp on any mismatch; the pending code stays in place so
        the user can retry or ask for a new one. A code whose nonce is no
        longer registered (resent or already used) clears the pending state.
        """
        email = normalize_email(email)
        pending_email = storage.get(OTP_EMAIL_KEY)
        pending_digest = storage.get(OTP_KEY)
        supplied = str(code or '').strip()

        if (not pending_digest or pending_email != email
                or not hmac.compare_digest(pending_digest, self._digest(email, supplied))):
            LoggingService.log_security_event('Invalid admin OTP attempt', {'email': email})
            raise InvalidOtp()

        consumed = self._write(
            "DELETE FROM admin_otps WHERE email = ? AND nonce = ?",
            (email, storage.get(OTP_NONCE_KEY) or ''),
        )
        if consumed != 1:
            self.clear(storage)
            LoggingService.log_security_event('Superseded or reused admin OTP', {'email': email})
            raise InvalidOtp()

        if not self.directory.contains(email):
            self.clear(storage)
            LoggingService.log_security_event('Admin OTP verified after access was revoked', {'email': email})
            raise Unauthorized(f"{email} no longer has admin access")

        issued_at = self.clock()
        session_nonce = secrets.token_hex(16)
        self._write("DELETE FROM admin_sessions WHERE issued_at <= ?", (to_timestamp(issued_at - self.ttl),))
        self._write(
            "INSERT INTO admin_sessions (nonce, email, issued_at) VALUES (?, ?, ?)",
            (session_nonce, email, to_timestamp(issued_at)),
        )
        for key in (OTP_KEY, OTP_EMAIL_KEY, OTP_NONCE_KEY):
            storage.pop(key, None)
        storage[SESSION_NONCE_KEY] = session_nonce
        storage[AUTHENTICATED_KEY] = True
        storage[SESSION_EMAIL_KEY] = email
        storage[SESSION_START_KEY] = _to_millis(issued_at)

        session = self._session_from(email, storage[SESSION_START_KEY])
        LoggingService.log_user_action('admin_auth', 'admin login', user_id=email)
        return session

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _session_from(self, email, start_millis):
        issued_at = _from_millis(start_millis)
        return AdminSession(email=email, issued_at=issued_at, expires_at=issued_at + self.ttl)

    def current_session(self, storage):
        if self.state(storage) is not AuthState.AUTHENTICATED:
            return None
        start = storage.get(SESSION_START_KEY)
        if start is None:
            return None
        return self._session_from(storage[SESSION_EMAIL_KEY], start)

    def authorize(self, session):
        """
        Check a session before a privileged operation.

        Raises:
            Expired: now >= session.expires_at
            Revoked: the email is no longer in the directory
        """
        if self.clock() >= session.expires_at:
            raise Expired()
        if not self.directory.contains(session.email):
            raise Revoked()
        return session

    def authorize_storage(self, storage):
        """
        authorize() for the session held in `storage`.

        Any failure clears all session material before it propagates, which
        puts the browser back at AWAITING_EMAIL.
        """
        session = self.current_session(storage)
        if session is None:
            self.clear(storage)
            raise Unauthorized('Admin login required')
        nonce = storage.get(SESSION_NONCE_KEY)
        if not nonce or not self._session_registered(nonce):
            self.clear(storage)
            LoggingService.log_security_event('Admin session no longer registered', {'email': session.email})
            raise Unauthorized('Admin session has ended, please log in again')
        try:
            return self.authorize(session)
        except SESSION_ERRORS as e:
            self._discard(storage)
            LoggingService.log_security_event(f'Admin session rejected: {e.code}', {'email': session.email})
            raise

    def logout(self, storage):
        email = storage.get(SESSION_EMAIL_KEY)
        self._discard(storage)
        if email:
            LoggingService.log_user_action('admin_auth', 'admin logout', user_id=email)
