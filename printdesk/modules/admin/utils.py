from functools import wraps

from flask import g, session

from printdesk.core.context import get_desk


def admin_required(f):
    """Decorator to require a live admin session.

    Expired or revoked sessions are cleared and the error propagates to the
    app-level handler (401/403 JSON).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.admin_session = get_desk().gate.authorize_storage(session)
        return f(*args, **kwargs)
    return decorated_function
