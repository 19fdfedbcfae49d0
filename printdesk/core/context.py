from flask import current_app


def get_desk():
    """The PrintDesk extension registered on the current app"""
    try:
        return current_app.extensions['printdesk']
    except KeyError:
        raise RuntimeError('PrintDesk is not initialised on this app; call PrintDesk(app) first')
