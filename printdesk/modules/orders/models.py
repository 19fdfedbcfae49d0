"""
Order Models
============

Records exchanged between the checkout/admin API and the OrderStore.
PaymentDetails is a closed record: unknown keys are rejected instead of
being carried along.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from printdesk.core.database import from_timestamp
from printdesk.core.errors import InvalidRequest, NotAllowed
from . import lifecycle

CENTS = Decimal('0.01')
MAX_QUANTITY = 1000000

# Fields the store lets callers change after creation
MUTABLE_FIELDS = frozenset({'status', 'payment_status', 'payment_details'})

# Left out of responses on the unauthenticated customer API
PERSONAL_FIELDS = ('customerName', 'customerEmail', 'customerPhone', 'deliveryAddress')

# camelCase names used by the UI -> attribute names
FIELD_ALIASES = {
    'userId': 'user_id',
    'productType': 'product_type',
    'totalAmount': 'total_amount',
    'trackingId': 'tracking_id',
    'paymentStatus': 'payment_status',
    'paymentDetails': 'payment_details',
    'customerName': 'customer_name',
    'customerEmail': 'customer_email',
    'customerPhone': 'customer_phone',
    'deliveryAddress': 'delivery_address',
    'submittedAt': 'submitted_at',
    'createdAt': 'created_at',
    'lastUpdated': 'last_updated',
}


def normalize_keys(data):
    """Map camelCase payload keys onto attribute names."""
    return {FIELD_ALIASES.get(key, key): value for key, value in (data or {}).items()}


def to_text(value, name):
    """Free-text or opaque id field as a stripped string; numbers are accepted."""
    if value is None:
        return ''
    if isinstance(value, bool) or not isinstance(value, (str, int, float, Decimal)):
        raise InvalidRequest(f"{name} must be a string, got {value!r}")
    return str(value).strip()


def to_amount(value):
    """Parse a monetary amount into a non-negative Decimal with 2 places."""
    if isinstance(value, bool) or value is None:
        raise InvalidRequest(f"Invalid amount: {value!r}")
    try:
        amount = Decimal(str(value))
        if not amount.is_finite() or amount < 0:
            raise InvalidRequest(f"Amount must be a non-negative number, got {value!r}")
        # Raises InvalidOperation when 2 places exceed the context precision
        return amount.quantize(CENTS)
    except (InvalidOperation, ValueError):
        raise InvalidRequest(f"Invalid amount: {value!r}")


@dataclass(frozen=True)
class PaymentDetails:
    method: str
    external_id: Optional[str] = None

    _ALIASES = {'externalId': 'external_id', 'paymentId': 'external_id', 'payment_id': 'external_id'}

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return None
        if isinstance(data, PaymentDetails):
            return data
        if not isinstance(data, dict):
            raise InvalidRequest('paymentDetails must be an object')

        values = {cls._ALIASES.get(key, key): value for key, value in data.items()}
        unknown = set(values) - {'method', 'external_id'}
        if unknown:
            raise NotAllowed(f"Unknown payment detail fields: {', '.join(sorted(unknown))}")
        method = to_text(values.get('method'), 'paymentDetails.method')
        if not method:
            raise InvalidRequest('paymentDetails.method is required')
        external_id = to_text(values.get('external_id'), 'paymentDetails.externalId')
        return cls(method=method, external_id=external_id or None)

    def to_dict(self):
        return {'method': self.method, 'externalId': self.external_id}


@dataclass
class OrderDraft:
    """What checkout submits. The store assigns id, tracking id and timestamps."""

    user_id: str
    product_type: str
    quantity: int
    total_amount: Decimal
    customer_name: str = ''
    customer_email: str = ''
    customer_phone: str = ''
    specifications: str = ''
    delivery_address: str = ''
    # Client-side intent time, only used to key the in-flight guard
    submitted_at: Optional[str] = None

    def __post_init__(self):
        self.user_id = to_text(self.user_id, 'userId')
        self.product_type = to_text(self.product_type, 'productType')
        if not self.user_id:
            raise InvalidRequest('userId is required')
        if not self.product_type:
            raise InvalidRequest('productType is required')

        if isinstance(self.quantity, bool):
            raise InvalidRequest(f"Invalid quantity: {self.quantity!r}")
        try:
            quantity = int(str(self.quantity).strip())
        except ValueError:
            raise InvalidRequest(f"Invalid quantity: {self.quantity!r}")
        if quantity <= 0 or quantity > MAX_QUANTITY:
            raise InvalidRequest(f"Quantity must be between 1 and {MAX_QUANTITY}, got {self.quantity!r}")
        self.quantity = quantity
        self.total_amount = to_amount(self.total_amount)
        self.customer_name = to_text(self.customer_name, 'customerName')
        self.customer_email = to_text(self.customer_email, 'customerEmail').lower()
        self.customer_phone = to_text(self.customer_phone, 'customerPhone')
        self.specifications = to_text(self.specifications, 'specifications')
        self.delivery_address = to_text(self.delivery_address, 'deliveryAddress')
        self.submitted_at = to_text(self.submitted_at, 'submittedAt') or None

    @classmethod
    def from_payload(cls, data):
        values = normalize_keys(data)
        allowed = {
            'user_id', 'product_type', 'quantity', 'total_amount', 'customer_name',
            'customer_email', 'customer_phone', 'specifications', 'delivery_address',
            'submitted_at',
        }
        missing = [name for name in ('user_id', 'product_type', 'quantity', 'total_amount') if name not in values]
        if missing:
            raise InvalidRequest(f"Missing fields: {', '.join(missing)}")
        return cls(**{key: value for key, value in values.items() if key in allowed})

    @property
    def dedup_key(self):
        return (self.user_id, self.product_type, str(self.total_amount), self.submitted_at)


@dataclass
class Order:
    id: str
    tracking_id: str
    user_id: str
    product_type: str
    quantity: int
    total_amount: Decimal
    created_at: datetime
    last_updated: datetime
    status: str = lifecycle.DEFAULT_STATUS
    payment_status: str = lifecycle.DEFAULT_PAYMENT_STATUS
    payment_details: Optional[PaymentDetails] = None
    customer_name: str = ''
    customer_email: str = ''
    customer_phone: str = ''
    specifications: str = ''
    delivery_address: str = ''

    @classmethod
    def from_row(cls, row):
        method = row['payment_method']
        details = PaymentDetails(method, row['payment_external_id']) if method else None
        return cls(
            id=row['id'],
            tracking_id=row['tracking_id'],
            user_id=row['user_id'],
            product_type=row['product_type'],
            quantity=row['quantity'],
            total_amount=Decimal(row['total_amount']),
            created_at=from_timestamp(row['created_at']),
            last_updated=from_timestamp(row['last_updated']),
            status=row['status'],
            payment_status=row['payment_status'],
            payment_details=details,
            customer_name=row['customer_name'] or '',
            customer_email=row['customer_email'] or '',
            customer_phone=row['customer_phone'] or '',
            specifications=row['specifications'] or '',
            delivery_address=row['delivery_address'] or '',
        )

    def to_dict(self):
        """JSON shape consumed by the admin portal and the customer dashboard"""
        status_info = lifecycle.status_display(self.status)
        stage = lifecycle.execution_stage(self.status)
        return {
            'id': self.id,
            'trackingId': self.tracking_id,
            'userId': self.user_id,
            'customerName': self.customer_name,
            'customerEmail': self.customer_email,
            'customerPhone': self.customer_phone,
            'productType': self.product_type,
            'quantity': self.quantity,
            'specifications': self.specifications,
            'deliveryAddress': self.delivery_address,
            'totalAmount': str(self.total_amount),
            'amountDisplay': f"₹{self.total_amount:,.2f}",
            'status': self.status,
            'statusLabel': status_info['label'],
            'paymentStatus': self.payment_status,
            'paymentStatusLabel': lifecycle.payment_status_display(self.payment_status)['label'],
            'paymentDetails': self.payment_details.to_dict() if self.payment_details else None,
            'executionStatus': stage['stage'],
            'executionProgress': stage['progress'],
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'lastUpdated': self.last_updated.isoformat() if self.last_updated else None,
        }

    def to_public_dict(self):
        """to_dict() without the customer's contact details, for unauthenticated callers"""
        data = self.to_dict()
        for key in PERSONAL_FIELDS:
            data.pop(key, None)
        return data
