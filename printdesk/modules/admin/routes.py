"""
Admin Routes
============

OTP login endpoints and admin directory management.
"""

from flask import request, jsonify, session, g

from printdesk.core.context import get_desk
from printdesk.core.errors import InvalidRequest
from . import admin_bp
from .utils import admin_required


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRequest('Expected a JSON object body')
    return data


def _required(data, key):
    value = data.get(key)
    if isinstance(value, str):
        value = value.strip()
    if not value:
        raise InvalidRequest(f'{key} is required')
    return value


# ---------------------------------------------------------------------------
# OTP login
# ---------------------------------------------------------------------------

@admin_bp.route('/api/request-otp', methods=['POST'])
def request_otp():
    """Send a verification code to an allow-listed admin email"""
    data = _json_body()
    issue = get_desk().gate.request_otp(session, _required(data, 'email'))
    return jsonify({
        'success': True,
        'message': 'Verification code sent' if issue.delivered else 'Verification code issued but could not be delivered',
        **issue.to_dict()
    })


@admin_bp.route('/api/resend-otp', methods=['POST'])
def resend_otp():
    data = _json_body()
    issue = get_desk().gate.resend_otp(session, _required(data, 'email'))
    return jsonify({
        'success': True,
        'message': 'New verification code sent' if issue.delivered else 'New code issued but could not be delivered',
        **issue.to_dict()
    })


@admin_bp.route('/api/verify-otp', methods=['POST'])
def verify_otp():
    data = _json_body()
    admin_session = get_desk().gate.verify_otp(session, _required(data, 'email'), _required(data, 'otp'))
    return jsonify({
        'success': True,
        'session': admin_session.to_dict()
    })


@admin_bp.route('/api/logout', methods=['POST'])
def logout():
    get_desk().gate.logout(session)
    return jsonify({'success': True})


@admin_bp.route('/api/session')
def session_status():
    """Current auth state; also enforces expiry and revocation"""
    gate = get_desk().gate
    if gate.current_session(session) is None:
        return jsonify({'success': True, 'state': gate.state(session).value, 'session': None})

    admin_session = gate.authorize_storage(session)
    return jsonify({
        'success': True,
        'state': gate.state(session).value,
        'session': admin_session.to_dict()
    })


# ---------------------------------------------------------------------------
# Admin directory
# ---------------------------------------------------------------------------

@admin_bp.route('/api/admins')
@admin_required
def list_admins():
    admins = get_desk().directory.list()
    return jsonify({
        'success': True,
        'admins': [admin.to_dict() for admin in admins]
    })


@admin_bp.route('/api/admins', methods=['POST'])
@admin_required
def add_admin():
    data = _json_body()
    identity = get_desk().directory.add(
        _required(data, 'email'),
        name=data.get('name', ''),
        added_by=g.admin_session.email,
    )
    return jsonify({'success': True, 'admin': identity.to_dict()}), 201


@admin_bp.route('/api/admins/<email>', methods=['DELETE'])
@admin_required
def remove_admin(email):
    get_desk().directory.remove(email, acting_email=g.admin_session.email)
    return jsonify({'success': True, 'message': f'{email} removed from admin users'})
