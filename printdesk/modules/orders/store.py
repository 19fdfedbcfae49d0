"""
Order Store
===========

Persistence boundary for order records (SQLite `orders` table).

Creation is guarded twice:
- an in-process InFlightGuard rejects a re-entrant create for the same key
  while the first call is still running;
- inside a BEGIN IMMEDIATE transaction the store looks for an order with the
  same user, product and amount created within the duplicate window and
  refuses to insert a second one. This check is what protects against other
  processes and browser tabs.

All timestamps come from the store's clock, never from the caller.
"""

import logging
import sqlite3
import uuid
from contextlib import closing
from datetime import timedelta
from decimal import Decimal

from printdesk.core.config import Config
from printdesk.core.database import Database, utc_now, to_timestamp
from printdesk.core.errors import (
    DuplicateSubmission, InvalidRequest, NotAllowed, NotFound, StoreUnavailable,
)
from printdesk.core.logging_service import LoggingService
from . import lifecycle
from .dedup import InFlightGuard
from .models import Order, OrderDraft, PaymentDetails, MUTABLE_FIELDS, normalize_keys
from .utils import generate_tracking_id

logger = logging.getLogger(__name__)

TABLE = Config.ORDERS_TABLE
TRACKING_ID_ATTEMPTS = 5

ORDERS_SCHEMA = (
    f"""
    CREATE TABLE IF NOT EXISTS {TABLE} (
        id TEXT PRIMARY KEY,
        tracking_id TEXT UNIQUE NOT NULL,
        user_id TEXT NOT NULL,
        customer_name TEXT,
        customer_email TEXT,
        customer_phone TEXT,
        product_type TEXT NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        specifications TEXT,
        delivery_address TEXT,
        total_amount TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        payment_status TEXT NOT NULL DEFAULT 'pending',
        payment_method TEXT,
        payment_external_id TEXT,
        created_at TEXT NOT NULL,
        last_updated TEXT NOT NULL
    )
    """,
    f"CREATE INDEX IF NOT EXISTS idx_orders_dedup ON {TABLE}(user_id, product_type, total_amount, created_at)",
    f"CREATE INDEX IF NOT EXISTS idx_orders_created ON {TABLE}(created_at DESC)",
    f"CREATE INDEX IF NOT EXISTS idx_orders_status ON {TABLE}(status)",
)


class OrderStore:
    """Create/read/update/delete contract for orders"""

    def __init__(self, db_path, guard=None, clock=utc_now, duplicate_window=timedelta(minutes=5)):
        self.db_path = db_path
        self.guard = guard if guard is not None else InFlightGuard()
        self.clock = clock
        self.duplicate_window = duplicate_window

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def init_db(self):
        try:
            Database.init_schema(self.db_path, ORDERS_SCHEMA)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Could not initialise orders database: {e}") from e

    def _query(self, sql, params=()):
        self.init_db()
        try:
            with closing(Database.connect(self.db_path)) as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Order query failed: {e}")
            raise StoreUnavailable(str(e)) from e

    def _orders(self, sql, params=()):
        return [Order.from_row(row) for row in self._query(sql, params)]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, draft):
        """
        Persist a new order and return its id.

        Raises:
            DuplicateSubmission: identical order in flight or created within the window
            StoreUnavailable: the backing store failed
        """
        if not isinstance(draft, OrderDraft):
            draft = OrderDraft.from_payload(draft)

        self.init_db()
        with self.guard.hold(draft.dedup_key):
            try:
                with Database.transaction(self.db_path, immediate=True) as conn:
                    now = self.clock()
                    existing_id = self._find_recent_duplicate(conn, draft, now)
                    if existing_id:
                        raise DuplicateSubmission(
                            f"Order {existing_id} with the same details was placed in the last "
                            f"{int(self.duplicate_window.total_seconds() // 60)} minutes",
                            existing_order_id=existing_id,
                        )
                    order_id = uuid.uuid4().hex
                    tracking_id = self._insert(conn, order_id, draft, now)
            except sqlite3.Error as e:
                logger.error(f"Order create failed for user {draft.user_id}: {e}")
                raise StoreUnavailable(str(e)) from e

        logger.info(f"Created order {order_id} ({tracking_id}) for user {draft.user_id}")
        LoggingService.log_user_action('orders', 'order placed', user_id=draft.user_id, details={
            'order_id': order_id,
            'tracking_id': tracking_id,
            'product_type': draft.product_type,
            'total_amount': str(draft.total_amount),
        })
        return order_id

    def _find_recent_duplicate(self, conn, draft, now):
        cutoff = to_timestamp(now - self.duplicate_window)
        row = conn.execute(f"""
            SELECT id FROM {TABLE}
            WHERE user_id = ? AND product_type = ? AND total_amount = ? AND created_at > ?
            ORDER BY created_at DESC
            LIMIT 1
        """, (draft.user_id, draft.product_type, str(draft.total_amount), cutoff)).fetchone()
        return row['id'] if row else None

    def _insert(self, conn, order_id, draft, now):
        stamp = to_timestamp(now)
        for attempt in range(TRACKING_ID_ATTEMPTS):
            tracking_id = generate_tracking_id(now)
            try:
                conn.execute(f"""
                    INSERT INTO {TABLE}
                    (id, tracking_id, user_id, customer_name, customer_email, customer_phone,
                     product_type, quantity, specifications, delivery_address, total_amount,
                     status, payment_status, created_at, last_updated)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    order_id, tracking_id, draft.user_id, draft.customer_name,
                    draft.customer_email, draft.customer_phone, draft.product_type,
                    draft.quantity, draft.specifications, draft.delivery_address,
                    str(draft.total_amount), lifecycle.DEFAULT_STATUS,
                    lifecycle.DEFAULT_PAYMENT_STATUS, stamp, stamp,
                ))
                return tracking_id
            except sqlite3.IntegrityError as e:
                if 'tracking_id' not in str(e):
                    raise
                logger.warning(f"Tracking id collision on {tracking_id}, retrying ({attempt + 1})")
        raise StoreUnavailable('Could not assign a unique tracking id')

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    def update(self, order_id, fields):
        """
        Replace mutable fields of an order in one write and return the result.

        Only status, payment_status and payment_details may change; last_updated
        is always stamped.
        """
        values = normalize_keys(fields)
        if not values:
            raise InvalidRequest('No fields to update')
        blocked = set(values) - MUTABLE_FIELDS
        if blocked:
            raise NotAllowed(f"Fields cannot be changed: {', '.join(sorted(blocked))}")

        self.init_db()
        try:
            with Database.transaction(self.db_path, immediate=True) as conn:
                row = conn.execute(
                    f"SELECT status, payment_status FROM {TABLE} WHERE id = ?", (order_id,)
                ).fetchone()
                if row is None:
                    raise NotFound(f"Order {order_id} not found")

                changes = lifecycle.plan_transition(
                    row['status'], row['payment_status'],
                    status=values.get('status'),
                    payment_status=values.get('payment_status'),
                )
                if 'payment_details' in values:
                    details = PaymentDetails.from_dict(values['payment_details'])
                    changes['payment_method'] = details.method if details else None
                    changes['payment_external_id'] = details.external_id if details else None
                changes['last_updated'] = to_timestamp(self.clock())

                assignments = ', '.join(f"{column} = ?" for column in changes)
                conn.execute(
                    f"UPDATE {TABLE} SET {assignments} WHERE id = ?",
                    (*changes.values(), order_id),
                )
        except sqlite3.Error as e:
            logger.error(f"Order update failed for {order_id}: {e}")
            raise StoreUnavailable(str(e)) from e

        logger.info(f"Updated order {order_id}: {sorted(values)}")
        return self.get(order_id)

    def confirm_payment(self, order_id, payment_details):
        """Record a successful payment: received + paid + details in one write"""
        return self.update(order_id, {
            'status': 'received',
            'payment_status': 'paid',
            'payment_details': payment_details,
        })

    def delete(self, order_id, actor=None):
        """Hard delete. Confirmation is the caller's job; the delete is audited."""
        self.init_db()
        try:
            with Database.transaction(self.db_path, immediate=True) as conn:
                row = conn.execute(
                    f"SELECT tracking_id, user_id FROM {TABLE} WHERE id = ?", (order_id,)
                ).fetchone()
                if row is None:
                    raise NotFound(f"Order {order_id} not found")
                conn.execute(f"DELETE FROM {TABLE} WHERE id = ?", (order_id,))
        except sqlite3.Error as e:
            logger.error(f"Order delete failed for {order_id}: {e}")
            raise StoreUnavailable(str(e)) from e

        logger.warning(f"Order {order_id} deleted by {actor or 'unknown'}")
        LoggingService.log_security_event('Order deleted', {
            'order_id': order_id,
            'tracking_id': row['tracking_id'],
            'user_id': row['user_id'],
        }, user_id=actor)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, order_id):
        rows = self._query(f"SELECT * FROM {TABLE} WHERE id = ?", (order_id,))
        if not rows:
            raise NotFound(f"Order {order_id} not found")
        return Order.from_row(rows[0])

    def get_by_tracking_id(self, tracking_id):
        rows = self._query(
            f"SELECT * FROM {TABLE} WHERE tracking_id = ?", ((tracking_id or '').upper(),)
        )
        if not rows:
            raise NotFound(f"No order with tracking id {tracking_id}")
        return Order.from_row(rows[0])

    def list_for_user(self, user_id):
        return self._orders(
            f"SELECT * FROM {TABLE} WHERE user_id = ? ORDER BY created_at DESC", (user_id,)
        )

    def list_for_user_by_payment(self, user_id, payment_status):
        return self._orders(f"""
            SELECT * FROM {TABLE}
            WHERE user_id = ? AND payment_status = ?
            ORDER BY created_at DESC
        """, (user_id, payment_status))

    def list_recent(self, limit=10):
        return self._orders(
            f"SELECT * FROM {TABLE} ORDER BY created_at DESC LIMIT ?", (int(limit),)
        )

    def list_by_status(self, status):
        return self._orders(
            f"SELECT * FROM {TABLE} WHERE status = ? ORDER BY created_at DESC", (status,)
        )

    def search(self, status=None, payment_status=None, limit=50):
        """Newest orders matching every filter given (admin order manager)"""
        conditions, params = [], []
        if status:
            conditions.append('status = ?')
            params.append(status)
        if payment_status:
            conditions.append('payment_status = ?')
            params.append(payment_status)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ''
        return self._orders(
            f"SELECT * FROM {TABLE} {where} ORDER BY created_at DESC LIMIT ?",
            (*params, int(limit)),
        )

    def summarize(self):
        """Headline numbers for the admin dashboard"""
        rows = self._query(f"SELECT status, payment_status, total_amount FROM {TABLE}")
        revenue = sum(
            (Decimal(row['total_amount']) for row in rows if row['payment_status'] == 'paid'),
            Decimal('0.00'),
        )
        return {
            'totalOrders': len(rows),
            'totalRevenue': str(revenue),
            'pendingOrders': sum(1 for row in rows if row['status'] in ('pending', 'pending_payment')),
            'completedOrders': sum(1 for row in rows if row['status'] in ('delivered', 'completed')),
        }
