"""
Orders Module
=============

Order lifecycle, duplicate-submission control and the order APIs.

Provides:
- OrderStore: create/read/update/delete over the orders database
- Admin order management API (search by status, update, delete, stats)
- Customer checkout API (place order, list own orders, payment confirmation)
"""

from flask import Blueprint

# Admin order management (admin session required)
orders_bp = Blueprint(
    'orders_admin',
    __name__,
    url_prefix='/admin/orders-manager'
)

# Customer checkout and order tracking
checkout_bp = Blueprint(
    'orders_public',
    __name__,
    url_prefix='/api/orders'
)

from . import routes
from .dedup import InFlightGuard
from .models import Order, OrderDraft, PaymentDetails
from .store import OrderStore

__all__ = ['orders_bp', 'checkout_bp', 'InFlightGuard', 'Order', 'OrderDraft', 'PaymentDetails', 'OrderStore']
