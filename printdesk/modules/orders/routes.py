"""
Orders Routes
=============

JSON endpoints over the OrderStore. Domain errors are raised, not caught:
the app-level handler installed by PrintDesk renders them.
"""

import hmac
import logging
from functools import wraps

from flask import current_app, request, jsonify, g

from printdesk.core.context import get_desk
from printdesk.core.errors import InvalidApiKey, InvalidRequest
from printdesk.core.logging_service import LoggingService
from printdesk.modules.admin.utils import admin_required
from . import orders_bp, checkout_bp
from . import lifecycle
from .models import OrderDraft, normalize_keys
from .utils import estimate_price

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRequest('Expected a JSON object body')
    return data


def _order_detail(order, public=False):
    data = order.to_public_dict() if public else order.to_dict()
    data['progress'] = lifecycle.order_progress(order.status)
    data['journey'] = lifecycle.journey_steps(order.status)
    return data


def require_callback_key(f):
    """Decorator to require the payment gateway's shared key in X-API-Key"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('PAYMENT_CALLBACK_KEY')
        supplied = request.headers.get('X-API-Key', '')
        if not expected:
            logger.error("PAYMENT_CALLBACK_KEY not configured - rejecting payment callback")
            raise InvalidApiKey('Payment callbacks are not enabled')
        if not hmac.compare_digest(supplied.encode(), expected.encode()):
            LoggingService.log_security_event('Payment callback with invalid API key', {'path': request.path})
            raise InvalidApiKey()
        return f(*args, **kwargs)
    return decorated_function


# ---------------------------------------------------------------------------
# Admin order management
# ---------------------------------------------------------------------------

@orders_bp.route('/api/orders')
@admin_required
def api_orders():
    """List recent orders for admin, optionally filtered by status and paymentStatus"""
    store = get_desk().orders
    orders = store.search(
        status=request.args.get('status'),
        payment_status=request.args.get('paymentStatus'),
        limit=request.args.get('limit', DEFAULT_LIST_LIMIT, type=int),
    )

    return jsonify({
        'success': True,
        'orders': [order.to_dict() for order in orders]
    })


@orders_bp.route('/api/order/<order_id>')
@admin_required
def api_order_details(order_id):
    """Get detailed order information"""
    order = get_desk().orders.get(order_id)
    return jsonify({
        'success': True,
        'order': _order_detail(order)
    })


@orders_bp.route('/api/update-order', methods=['POST'])
@admin_required
def api_update_order():
    """Update order status, payment status or payment details"""
    data = _json_body()
    order_id = data.pop('order_id', None) or data.pop('orderId', None)
    if not order_id:
        raise InvalidRequest('Order ID required')

    order = get_desk().orders.update(order_id, data)
    return jsonify({
        'success': True,
        'message': f'Order {order_id} updated successfully',
        'order': order.to_dict()
    })


@orders_bp.route('/api/delete-order', methods=['POST'])
@admin_required
def api_delete_order():
    """Hard-delete an order (the UI asks for confirmation first)"""
    data = _json_body()
    order_id = data.get('order_id') or data.get('orderId')
    if not order_id:
        raise InvalidRequest('Order ID required')

    get_desk().orders.delete(order_id, actor=g.admin_session.email)
    return jsonify({
        'success': True,
        'message': f'Order {order_id} deleted successfully'
    })


@orders_bp.route('/api/stats')
@admin_required
def api_stats():
    """Headline numbers for the dashboard cards"""
    return jsonify({
        'success': True,
        'stats': get_desk().orders.summarize()
    })


# ---------------------------------------------------------------------------
# Customer checkout and tracking
# ---------------------------------------------------------------------------

@checkout_bp.route('', methods=['POST'])
def place_order():
    """Place an order. Without a totalAmount the list-price estimate is used."""
    data = normalize_keys(_json_body())

    if data.get('total_amount') is None:
        estimate = estimate_price(data.get('product_type'), data.get('quantity') or 0)
        if estimate is None:
            raise InvalidRequest('totalAmount is required for this product type')
        data['total_amount'] = estimate

    store = get_desk().orders
    order_id = store.create(OrderDraft.from_payload(data))
    order = store.get(order_id)

    return jsonify({
        'success': True,
        'order_id': order_id,
        'trackingId': order.tracking_id,
        'order': order.to_public_dict()
    }), 201


@checkout_bp.route('/user/<user_id>')
def user_orders(user_id):
    """All orders of one customer, newest first"""
    store = get_desk().orders
    payment_status = request.args.get('paymentStatus')
    if payment_status:
        orders = store.list_for_user_by_payment(user_id, payment_status)
    else:
        orders = store.list_for_user(user_id)

    return jsonify({
        'success': True,
        'orders': [order.to_public_dict() for order in orders]
    })


@checkout_bp.route('/<order_id>')
def order_status(order_id):
    order = get_desk().orders.get(order_id)
    return jsonify({'success': True, 'order': _order_detail(order, public=True)})


@checkout_bp.route('/track/<tracking_id>')
def track_order(tracking_id):
    order = get_desk().orders.get_by_tracking_id(tracking_id)
    return jsonify({'success': True, 'order': _order_detail(order, public=True)})


@checkout_bp.route('/<order_id>/payment', methods=['POST'])
@require_callback_key
def confirm_payment(order_id):
    """Payment-confirmation callback with the gateway's paymentDetails record"""
    data = _json_body()
    details = data.get('paymentDetails') or data.get('payment_details')
    if not details:
        raise InvalidRequest('paymentDetails required')

    order = get_desk().orders.confirm_payment(order_id, details)
    return jsonify({
        'success': True,
        'order': order.to_public_dict()
    })
