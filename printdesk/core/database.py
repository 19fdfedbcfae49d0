import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%S.%f+00:00'


class Database:
    # Serialises schema creation across request threads
    _lock = threading.Lock()
    _initialised = set()

    @staticmethod
    def connect(path):
        conn = sqlite3.connect(path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def ensure_dir(path):
        """Create the parent directory of a database file if needed."""
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)

    @classmethod
    def init_schema(cls, path, statements):
        """
        Run CREATE statements once per database path per process.

        Args:
            path: SQLite database file
            statements: iterable of DDL statements (CREATE TABLE / INDEX IF NOT EXISTS)
        """
        key = (os.path.abspath(path), tuple(statements))
        with cls._lock:
            if key in cls._initialised and os.path.exists(path):
                return
            cls.ensure_dir(path)
            with cls.connect(path) as conn:
                cursor = conn.cursor()
                for statement in statements:
                    cursor.execute(statement)
                conn.commit()
            conn.close()
            cls._initialised.add(key)

    @classmethod
    @contextmanager
    def transaction(cls, path, immediate=False):
        """
        Open a connection with an explicit transaction.

        immediate=True takes SQLite's RESERVED lock up front (BEGIN IMMEDIATE),
        so read-then-write sequences from independent processes serialise.
        The transaction commits on normal exit and rolls back on any exception.
        """
        conn = sqlite3.connect(path, timeout=10, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute('BEGIN IMMEDIATE' if immediate else 'BEGIN')
            try:
                yield conn
            except BaseException:
                conn.execute('ROLLBACK')
                raise
            conn.execute('COMMIT')
        finally:
            conn.close()


def utc_now():
    """Server clock used for every persisted timestamp."""
    return datetime.now(timezone.utc)


def to_timestamp(value):
    """Format an aware datetime so that string order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def from_timestamp(text):
    if not text:
        return None
    return datetime.strptime(text, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
