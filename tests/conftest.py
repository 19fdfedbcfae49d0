"""
Shared fixtures for the PrintDesk test suite.

NOTE: pytest is listed under extras_require["dev"] in setup.py.
Install with: pip install -e ".[dev]"
"""

import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone

import pytest
from flask import Flask

from printdesk import PrintDesk
from printdesk.core.config import Config

SEED_ADMIN = "help@microuvprinters.com"
CALLBACK_KEY = "gateway-test-key"


class FakeClock:
    """Injectable clock; tests move time forward explicitly."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    """Keeps every (destination, code) it was asked to deliver."""

    def __init__(self):
        self.sent = []

    def send_otp(self, destination, code):
        self.sent.append((destination, code))

    @property
    def last_code(self):
        return self.sent[-1][1]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_db_dir():
    """Create a temporary directory for test databases, cleaned up after."""
    d = tempfile.mkdtemp(prefix="printdesk-test-")
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture(autouse=True)
def audit_log_db(tmp_db_dir, monkeypatch):
    """Audit rows written outside an app context land in the temp dir too."""
    path = os.path.join(tmp_db_dir, "app_logs.db")
    monkeypatch.setattr(Config, "LOGS_DB", path)
    return path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(tmp_db_dir, clock, notifier):
    """Fully initialised Flask app with PrintDesk registered."""
    app = Flask(__name__)
    app.config["TESTING"] = True
    app.config["SECRET_KEY"] = "test-secret"
    app.config["DB_DIR"] = tmp_db_dir
    app.config["ORDERS_DB"] = os.path.join(tmp_db_dir, "orders.db")
    app.config["ADMIN_DB"] = os.path.join(tmp_db_dir, "admin.db")
    app.config["LOGS_DB"] = os.path.join(tmp_db_dir, "app_logs.db")
    app.config["ADMIN_SEED"] = f"{SEED_ADMIN}:Help Desk"
    app.config["PAYMENT_CALLBACK_KEY"] = CALLBACK_KEY
    PrintDesk(app, notifier=notifier, clock=clock)
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def desk(app):
    return app.extensions["printdesk"]


@pytest.fixture
def admin_client(client, notifier):
    """Test client holding an authenticated admin session for SEED_ADMIN."""
    response = client.post("/admin/api/request-otp", json={"email": SEED_ADMIN})
    assert response.status_code == 200
    response = client.post("/admin/api/verify-otp", json={"email": SEED_ADMIN, "otp": notifier.last_code})
    assert response.status_code == 200
    return client
