import os
from dotenv import load_dotenv

load_dotenv(override=True)

DEFAULT_ADMIN_SEED = (
    "help@microuvprinters.com:Help Desk,"
    "laxmankamboj@gmail.com:Laxman Kamboj,"
    "vinayakkamboj01@gmail.com:Vinayak Kamboj"
)


class Config:
    """
    Base configuration for PrintDesk.
    Host apps can override any of these through app.config before PrintDesk(app).
    """
    SECRET_KEY = os.getenv('FLASK_SECRET_KEY')

    # Get DB_DIR from environment, or use a default if not set
    DB_DIR = os.getenv('DB_DIR', os.path.join(os.getcwd(), 'databases'))

    # Database paths - use environment variables or fallback to DB_DIR
    ORDERS_DB = os.getenv('ORDERS_DB', os.path.join(DB_DIR, "orders.db"))
    ADMIN_DB = os.getenv('ADMIN_DB', os.path.join(DB_DIR, "admin.db"))
    LOGS_DB = os.getenv('LOGS_DB', os.path.join(DB_DIR, "app_logs.db"))

    # Table names
    ORDERS_TABLE = "orders"
    ADMIN_TABLE = "admin_users"
    LOGS_TABLE = "app_logs"

    # Admin allow-list seed, "email[:name]" entries separated by commas
    ADMIN_SEED = os.getenv('ADMIN_SEED', DEFAULT_ADMIN_SEED)
    ADMIN_SESSION_HOURS = int(os.getenv('ADMIN_SESSION_HOURS', '24'))

    # Duplicate-submission control
    DUPLICATE_WINDOW_MINUTES = int(os.getenv('DUPLICATE_WINDOW_MINUTES', '5'))
    DEDUP_MAX_IN_FLIGHT = int(os.getenv('DEDUP_MAX_IN_FLIGHT', '1024'))

    # OTP delivery: 'log' writes the code to the application log, 'resend' emails it
    OTP_PROVIDER = os.getenv('OTP_PROVIDER', 'log')

    # Resend API settings (free tier: 3,000 emails/month)
    RESEND_API_KEY = os.getenv('RESEND_API_KEY') or os.getenv('RESEND')
    EMAIL_ADDRESS = os.getenv("EMAIL_ADDRESS", "no-reply@microuvprinters.com")
    EMAIL_BRAND_NAME = os.getenv("EMAIL_BRAND_NAME", "Micro UV Printers")

    # Shared key the payment gateway sends in X-API-Key on payment callbacks
    PAYMENT_CALLBACK_KEY = os.getenv('PAYMENT_CALLBACK_KEY')


def get_config_value(key, default=None):
    """Get configuration value: Flask app config first, then Config, then env var"""
    try:
        from flask import current_app
        val = current_app.config.get(key)
        if val is not None:
            return val
    except RuntimeError:
        pass
    val = getattr(Config, key, None)
    if val is not None:
        return val
    return os.getenv(key, default)


def parse_admin_seed(raw):
    """
    Parse an ADMIN_SEED value into a list of (email, name) pairs.

    Accepts a comma separated string of "email" or "email:name" entries,
    or an already-split iterable of strings / (email, name) pairs.
    """
    if not raw:
        return []
    if isinstance(raw, str):
        raw = raw.split(',')

    seed = []
    for entry in raw:
        if isinstance(entry, (tuple, list)):
            email, name = entry[0], entry[1] if len(entry) > 1 else ''
        else:
            entry = entry.strip()
            if not entry:
                continue
            email, _, name = entry.partition(':')
        email = email.strip().lower()
        if email:
            seed.append((email, (name or '').strip() or email.split('@')[0]))
    return seed
