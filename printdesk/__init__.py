"""
PrintDesk - Order back office for a UV print shop
=================================================

A modular Flask framework with:
- Order lifecycle and duplicate-submission control
- OTP admin login with 24 hour sessions and an admin allow-list
- Customer checkout / tracking API and an admin order manager API
- Public health endpoint

Usage:
    from flask import Flask
    from printdesk import PrintDesk

    app = Flask(__name__)
    desk = PrintDesk(app)

    desk.orders      # OrderStore
    desk.gate        # AdminGate
    desk.directory   # AdminDirectory
"""

__version__ = '0.1.0'
__author__ = 'Micro UV Printers'

import logging
import os
import secrets
from datetime import timedelta

from flask import jsonify

from .core.config import Config, parse_admin_seed
from .core.database import Database, utc_now
from .core.errors import PrintDeskError, StoreUnavailable
from .core.logging_service import LoggingService

logger = logging.getLogger(__name__)

# Settings copied from Config into app.config when the host app leaves them unset
DEFAULT_SETTINGS = (
    'ADMIN_SEED', 'ADMIN_SESSION_HOURS', 'DUPLICATE_WINDOW_MINUTES', 'DEDUP_MAX_IN_FLIGHT',
    'OTP_PROVIDER', 'RESEND_API_KEY', 'EMAIL_ADDRESS', 'EMAIL_BRAND_NAME', 'PAYMENT_CALLBACK_KEY',
)

DATABASE_FILES = (
    ('ORDERS_DB', 'orders.db'),
    ('ADMIN_DB', 'admin.db'),
    ('LOGS_DB', 'app_logs.db'),
)


class PrintDesk:
    """
    Flask extension wiring the order store, admin directory and admin gate
    into a host app and registering the JSON blueprints.

    Collaborators can be injected (tests pass a fake notifier and clock).
    """

    def __init__(self, app=None, notifier=None, clock=None):
        self._notifier = notifier
        self._clock = clock or utc_now
        self._registered_modules = []
        self.orders = None
        self.directory = None
        self.gate = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self._apply_defaults(app)
        self._setup_database_dir(app)
        self._build_components(app)
        self._register_blueprints(app)
        self._register_error_handlers(app)

        app.extensions['printdesk'] = self
        logger.info(f"PrintDesk {__version__} initialised with modules: {', '.join(self._registered_modules)}")

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _apply_defaults(self, app):
        for key in DEFAULT_SETTINGS:
            app.config.setdefault(key, getattr(Config, key))

        # Database files follow the app's DB_DIR unless set explicitly
        db_dir = app.config.setdefault('DB_DIR', Config.DB_DIR)
        for key, filename in DATABASE_FILES:
            if not app.config.get(key):
                app.config[key] = os.getenv(key) or os.path.join(db_dir, filename)

        if not app.secret_key:
            app.secret_key = app.config.get('FLASK_SECRET_KEY') or Config.SECRET_KEY
        if not app.secret_key:
            app.secret_key = secrets.token_hex(32)
            logger.warning("No FLASK_SECRET_KEY configured - generated a random one, "
                           "admin sessions will not survive a restart")

    def _setup_database_dir(self, app):
        os.makedirs(app.config['DB_DIR'], exist_ok=True)
        for key, _ in DATABASE_FILES:
            Database.ensure_dir(app.config[key])

    def _build_components(self, app):
        # Imported here so the blueprints see a fully initialised package
        from .modules.admin import AdminDirectory, AdminGate, build_notifier
        from .modules.orders import InFlightGuard, OrderStore

        config = app.config
        self.orders = OrderStore(
            config['ORDERS_DB'],
            guard=InFlightGuard(int(config['DEDUP_MAX_IN_FLIGHT'])),
            clock=self._clock,
            duplicate_window=timedelta(minutes=int(config['DUPLICATE_WINDOW_MINUTES'])),
        )
        self.directory = AdminDirectory(
            config['ADMIN_DB'],
            seed=parse_admin_seed(config['ADMIN_SEED']),
            clock=self._clock,
        )
        notifier = self._notifier or build_notifier(
            config['OTP_PROVIDER'],
            api_key=config['RESEND_API_KEY'],
            sender_email=config['EMAIL_ADDRESS'],
            brand_name=config['EMAIL_BRAND_NAME'],
        )
        self.gate = AdminGate(
            self.directory,
            notifier,
            app.secret_key,
            clock=self._clock,
            ttl=timedelta(hours=int(config['ADMIN_SESSION_HOURS'])),
        )

        self.orders.init_db()
        self.directory.init_db()
        self.gate.init_db()
        if len(self.directory) == 0:
            raise ValueError("No admin users: set ADMIN_SEED to at least one email so the admin portal can be reached")

    def _register_blueprints(self, app):
        from .modules.admin import admin_bp
        from .modules.ops import ops_health_bp
        from .modules.orders import orders_bp, checkout_bp

        for name, blueprint in (
            ('admin', admin_bp),
            ('orders', orders_bp),
            ('checkout', checkout_bp),
            ('ops', ops_health_bp),
        ):
            if blueprint.name in app.blueprints:
                continue
            app.register_blueprint(blueprint)
            self._registered_modules.append(name)

    def _register_error_handlers(self, app):
        @app.errorhandler(PrintDeskError)
        def handle_printdesk_error(error):
            if isinstance(error, StoreUnavailable):
                LoggingService.log_error_with_traceback('store', error)
            return jsonify(error.to_dict()), error.status_code

    def get_registered_modules(self):
        return list(self._registered_modules)


__all__ = ['PrintDesk', '__version__']
