"""
Ops Routes
==========

Public health endpoint.
"""

import shutil
import sqlite3
from contextlib import closing
from datetime import datetime

from flask import current_app, jsonify

from printdesk import __version__
from printdesk.core.database import Database
from . import ops_health_bp

DISK_WARNING_PERCENT = 80
DISK_CRITICAL_PERCENT = 90


def _get_disk_usage(path):
    """Disk usage for the partition holding the databases."""
    try:
        usage = shutil.disk_usage(path)
    except OSError:
        return None
    return {
        'total_gb': round(usage.total / (1024 ** 3), 1),
        'used_gb': round(usage.used / (1024 ** 3), 1),
        'percent': round(usage.used / usage.total * 100, 1) if usage.total else 0,
    }


def _check_database(path):
    """Open the database and run a trivial query."""
    try:
        Database.ensure_dir(path)
        with closing(Database.connect(path)) as conn:
            conn.execute('SELECT 1').fetchone()
        return {'ok': True}
    except (sqlite3.Error, OSError) as e:
        return {'ok': False, 'error': str(e)}


def _compute_status(databases, disk):
    issues = []
    status = 'ok'

    for name, check in databases.items():
        if not check['ok']:
            issues.append(f"{name} database unavailable")
            status = 'critical'

    if disk:
        if disk['percent'] >= DISK_CRITICAL_PERCENT:
            issues.append(f"Disk usage critical: {disk['percent']}%")
            status = 'critical'
        elif disk['percent'] >= DISK_WARNING_PERCENT:
            issues.append(f"Disk usage high: {disk['percent']}%")
            if status == 'ok':
                status = 'warning'

    return status, issues


def _build_health_response():
    config = current_app.config
    databases = {
        'orders': _check_database(config['ORDERS_DB']),
        'admin': _check_database(config['ADMIN_DB']),
    }
    disk = _get_disk_usage(config['DB_DIR'])
    status, issues = _compute_status(databases, disk)

    return {
        'status': status,
        'version': __version__,
        'timestamp': datetime.now().isoformat(),
        'checks': {
            'databases': databases,
            'disk': disk,
        },
        'issues': issues,
    }, status


@ops_health_bp.route('/')
@ops_health_bp.route('')
def health_check():
    """Public health endpoint for uptime monitors."""
    data, status = _build_health_response()
    code = 503 if status == 'critical' else 200
    return jsonify(data), code
