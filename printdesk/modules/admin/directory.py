"""
Admin Directory
===============

The allow-list of admin identities.

A fixed seed set (config ADMIN_SEED) is layered under a persisted overlay
(`admin_users` table in ADMIN_DB). Reads merge the two; the overlay never
stores seed entries and seed entries cannot be removed. Emails are compared
case-insensitively.
"""

import logging
import re
import sqlite3
from contextlib import closing
from dataclasses import dataclass
from typing import Optional

from printdesk.core.config import Config
from printdesk.core.database import Database, utc_now, to_timestamp
from printdesk.core.errors import AlreadyExists, InvalidRequest, NotAllowed, NotFound, StoreUnavailable
from printdesk.core.logging_service import LoggingService

logger = logging.getLogger(__name__)

TABLE = Config.ADMIN_TABLE

# Rejects consecutive dots, leading/trailing dots in local part
_VALID_EMAIL = re.compile(r'^[a-zA-Z0-9_%+-]+(\.[a-zA-Z0-9_%+-]+)*@[a-zA-Z0-9-]+(\.[a-zA-Z0-9-]+)*\.[a-zA-Z]{2,}$')

ADMIN_SCHEMA = (
    f"""
    CREATE TABLE IF NOT EXISTS {TABLE} (
        email TEXT PRIMARY KEY COLLATE NOCASE,
        name TEXT NOT NULL,
        added_by TEXT,
        added_at TEXT NOT NULL
    )
    """,
)


def normalize_email(email):
    return (email or '').strip().lower()


@dataclass(frozen=True)
class AdminIdentity:
    email: str
    name: str
    added_by: str = 'System'
    added_at: Optional[str] = None
    is_seed: bool = False

    def to_dict(self):
        return {
            'email': self.email,
            'name': self.name,
            'addedBy': self.added_by,
            'addedAt': self.added_at,
            'isDefault': self.is_seed,
        }


class AdminDirectory:
    """Seed admins plus user-managed admins, merged at read time"""

    def __init__(self, db_path, seed=(), clock=utc_now):
        self.db_path = db_path
        self.clock = clock
        self.seed = {}
        for email, name in seed:
            email = normalize_email(email)
            self.seed[email] = AdminIdentity(email=email, name=name or email, is_seed=True)

    def init_db(self):
        try:
            Database.init_schema(self.db_path, ADMIN_SCHEMA)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Could not initialise admin database: {e}") from e

    def _overlay(self):
        self.init_db()
        try:
            with closing(Database.connect(self.db_path)) as conn:
                rows = conn.execute(
                    f"SELECT email, name, added_by, added_at FROM {TABLE} ORDER BY added_at"
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Admin directory read failed: {e}")
            raise StoreUnavailable(str(e)) from e

        return [
            AdminIdentity(email=row['email'], name=row['name'], added_by=row['added_by'], added_at=row['added_at'])
            for row in rows
            if normalize_email(row['email']) not in self.seed
        ]

    def list(self):
        return list(self.seed.values()) + self._overlay()

    def get(self, email):
        email = normalize_email(email)
        if email in self.seed:
            return self.seed[email]
        for identity in self._overlay():
            if identity.email == email:
                return identity
        return None

    def contains(self, email):
        return self.get(email) is not None

    def __len__(self):
        return len(self.list())

    def add(self, email, name='', added_by=None):
        email = normalize_email(email)
        if not _VALID_EMAIL.match(email):
            raise InvalidRequest(f"Invalid email address: {email!r}")
        if self.contains(email):
            raise AlreadyExists(f"{email} is already an admin user")

        identity = AdminIdentity(
            email=email,
            name=(name or '').strip() or email.split('@')[0],
            added_by=added_by or 'System',
            added_at=to_timestamp(self.clock()),
        )
        try:
            with Database.transaction(self.db_path, immediate=True) as conn:
                conn.execute(
                    f"INSERT INTO {TABLE} (email, name, added_by, added_at) VALUES (?, ?, ?, ?)",
                    (identity.email, identity.name, identity.added_by, identity.added_at),
                )
        except sqlite3.IntegrityError:
            raise AlreadyExists(f"{email} is already an admin user")
        except sqlite3.Error as e:
            logger.error(f"Admin directory write failed: {e}")
            raise StoreUnavailable(str(e)) from e

        logger.info(f"Admin {email} added by {identity.added_by}")
        LoggingService.log_user_action('admin_directory', f'admin added: {email}', user_id=added_by)
        return identity

    def remove(self, email, acting_email=None):
        """
        Remove a user-managed admin.

        Raises:
            NotFound: email is not an admin
            NotAllowed: seed admin, self-removal, or the last remaining admin
        """
        email = normalize_email(email)
        if email in self.seed:
            raise NotAllowed(f"Default admin {email} cannot be removed")
        if acting_email and normalize_email(acting_email) == email:
            raise NotAllowed('You cannot remove yourself from admin users')

        self.init_db()
        try:
            with Database.transaction(self.db_path, immediate=True) as conn:
                row = conn.execute(f"SELECT email FROM {TABLE} WHERE email = ?", (email,)).fetchone()
                if row is None:
                    raise NotFound(f"{email} is not an admin user")
                overlay_count = conn.execute(f"SELECT COUNT(*) FROM {TABLE}").fetchone()[0]
                if len(self.seed) + overlay_count <= 1:
                    raise NotAllowed('Cannot remove the last remaining admin')
                conn.execute(f"DELETE FROM {TABLE} WHERE email = ?", (email,))
        except sqlite3.Error as e:
            logger.error(f"Admin directory write failed: {e}")
            raise StoreUnavailable(str(e)) from e

        logger.info(f"Admin {email} removed by {acting_email or 'unknown'}")
        LoggingService.log_security_event(f'Admin removed: {email}', {'removed': email}, user_id=acting_email)
