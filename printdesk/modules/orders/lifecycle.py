"""
Order Lifecycle
===============

Status rules for orders, kept free of storage concerns.

Two independent fields describe an order: `status` (fulfillment) and
`payment_status`. Any enumerated value may be set from any other; the
intended flow below is advisory and off-graph moves are only reported.

    pending -> pending_payment | received -> processing -> shipped
            -> delivered -> completed
    cancelled / failed reachable from any non-terminal status
"""

import logging

from printdesk.core.errors import NotAllowed

logger = logging.getLogger(__name__)

ORDER_STATUSES = (
    'pending',
    'pending_payment',
    'received',
    'processing',
    'shipped',
    'delivered',
    'completed',
    'cancelled',
    'failed',
)

PAYMENT_STATUSES = (
    'pending',
    'paid',
    'failed',
    'refunded',
    'partial_refund',
    'completed',
)

DEFAULT_STATUS = 'pending'
DEFAULT_PAYMENT_STATUS = 'pending'
TERMINAL_STATUSES = frozenset({'completed', 'cancelled', 'failed'})

_ABORT = {'cancelled', 'failed'}
INTENDED_TRANSITIONS = {
    'pending': {'pending_payment', 'received'} | _ABORT,
    'pending_payment': {'received'} | _ABORT,
    'received': {'processing'} | _ABORT,
    'processing': {'shipped'} | _ABORT,
    'shipped': {'delivered'} | _ABORT,
    'delivered': {'completed'} | _ABORT,
    'completed': set(),
    'cancelled': set(),
    'failed': set(),
}

ORDER_STATUS_CONFIG = {
    'pending': {
        'label': 'Order Placed',
        'description': 'Your order has been placed and is awaiting confirmation',
        'step': 1,
    },
    'pending_payment': {
        'label': 'Payment Pending',
        'description': 'Waiting for payment confirmation',
        'step': 1,
    },
    'received': {
        'label': 'Order Received',
        'description': "We have received your order and it's being reviewed",
        'step': 2,
    },
    'processing': {
        'label': 'Processing',
        'description': 'Your order is being prepared for shipment',
        'step': 3,
    },
    'shipped': {
        'label': 'Shipped',
        'description': 'Your order has been shipped and is on its way',
        'step': 4,
    },
    'delivered': {
        'label': 'Delivered',
        'description': 'Your order has been delivered successfully',
        'step': 5,
    },
    'completed': {
        'label': 'Completed',
        'description': 'Order completed successfully',
        'step': 5,
    },
    'cancelled': {
        'label': 'Cancelled',
        'description': 'This order has been cancelled',
        'step': 0,
    },
    'failed': {
        'label': 'Failed',
        'description': 'This order has failed',
        'step': 0,
    },
}

PAYMENT_STATUS_CONFIG = {
    'pending': {'label': 'Payment Pending', 'description': 'Payment is pending'},
    'paid': {'label': 'Paid', 'description': 'Payment completed successfully'},
    'failed': {'label': 'Payment Failed', 'description': 'Payment failed'},
    'refunded': {'label': 'Refunded', 'description': 'Payment has been refunded'},
    'partial_refund': {'label': 'Partially Refunded', 'description': 'Part of the payment has been refunded'},
    'completed': {'label': 'Payment Completed', 'description': 'Payment settled'},
}

# Fulfillment stage shown alongside the status (stage name, percent done)
EXECUTION_STAGES = {
    'received': ('processing', 40),
    'processing': ('quality_check', 60),
    'shipped': ('shipped', 80),
    'delivered': ('delivered', 100),
    'completed': ('delivered', 100),
    'cancelled': ('halted', 0),
    'failed': ('halted', 0),
}
DEFAULT_EXECUTION_STAGE = ('order_created', 20)

JOURNEY = ('pending', 'received', 'processing', 'shipped', 'delivered')


def validate_status(status):
    if status not in ORDER_STATUSES:
        raise NotAllowed(f"Unknown order status: {status!r}")
    return status


def validate_payment_status(payment_status):
    if payment_status not in PAYMENT_STATUSES:
        raise NotAllowed(f"Unknown payment status: {payment_status!r}")
    return payment_status


def is_terminal(status):
    return status in TERMINAL_STATUSES


def is_intended_transition(current, new):
    """True when `current -> new` follows the documented flow (or is a no-op)."""
    if current == new:
        return True
    return new in INTENDED_TRANSITIONS.get(current, set())


def plan_transition(current_status, current_payment_status, status=None, payment_status=None):
    """
    Validate a requested status / payment status change.

    Returns the dict of field replacements to persist (possibly empty).
    Raises NotAllowed for values outside the enumerations. Off-graph moves,
    including moves out of a terminal status, are allowed and logged.
    """
    changes = {}

    if status is not None:
        validate_status(status)
        if not is_intended_transition(current_status, status):
            logger.warning(
                f"Order status moved off the intended flow: {current_status} -> {status}"
                + (" (from terminal status)" if is_terminal(current_status) else "")
            )
        changes['status'] = status

    if payment_status is not None:
        validate_payment_status(payment_status)
        changes['payment_status'] = payment_status

    return changes


def status_display(status):
    """Display config for a status; unknown values get the 'pending' treatment."""
    config = ORDER_STATUS_CONFIG.get(status) or ORDER_STATUS_CONFIG[DEFAULT_STATUS]
    return dict(config)


def payment_status_display(payment_status):
    config = PAYMENT_STATUS_CONFIG.get(payment_status) or PAYMENT_STATUS_CONFIG[DEFAULT_PAYMENT_STATUS]
    return dict(config)


def execution_stage(status):
    stage, progress = EXECUTION_STAGES.get(status, DEFAULT_EXECUTION_STAGE)
    return {'stage': stage, 'progress': progress}


def order_progress(status):
    """Current step, total steps and percentage for the progress bar"""
    max_step = max(config['step'] for config in ORDER_STATUS_CONFIG.values())
    current = status_display(status)['step']
    return {
        'current': current,
        'total': max_step,
        'percentage': max(0.0, current / max_step * 100),
    }


def journey_steps(status):
    """Customer-facing tracker: one entry per journey step with its state"""
    current = status_display(status)['step']
    steps = []
    for journey_status in JOURNEY:
        step = ORDER_STATUS_CONFIG[journey_status]['step']
        steps.append({
            'status': journey_status,
            'label': ORDER_STATUS_CONFIG[journey_status]['label'],
            'step': step,
            'isActive': step <= current,
            'isCurrent': step == current,
            'isCompleted': step < current,
        })
    return steps
