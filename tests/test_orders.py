"""
Order store, duplicate-submission control and lifecycle tests.
Run with: pytest tests/test_orders.py -v
"""

import os
import re
import sqlite3
import threading
from decimal import Decimal

import pytest

from printdesk.core.errors import (
    DuplicateSubmission, InvalidRequest, NotAllowed, NotFound, StoreUnavailable,
)
from printdesk.modules.orders import InFlightGuard, OrderStore, PaymentDetails
from printdesk.modules.orders import lifecycle
from printdesk.modules.orders import store as store_module
from printdesk.modules.orders.utils import estimate_price, to_base36

from conftest import CALLBACK_KEY

TRACKING_ID_PATTERN = re.compile(r"^MUV[0-9A-Z]+[0-9A-Z]{3}$")


def labels_order(**overrides):
    draft = {"userId": "u1", "productType": "Labels", "quantity": 100, "totalAmount": 500}
    draft.update(overrides)
    return draft


@pytest.fixture
def store(tmp_db_dir, clock):
    return OrderStore(os.path.join(tmp_db_dir, "orders.db"), clock=clock)


# ---------------------------------------------------------------------------
# Creation and duplicate suppression
# ---------------------------------------------------------------------------

def test_create_then_repeat_then_ship(store, clock):
    """Defaults on create, duplicate rejected, status update stamps lastUpdated."""
    order_id = store.create(labels_order())
    order = store.get(order_id)

    assert order.status == "pending"
    assert order.payment_status == "pending"
    assert order.total_amount == Decimal("500.00")

    with pytest.raises(DuplicateSubmission) as excinfo:
        store.create(labels_order())
    assert excinfo.value.existing_order_id == order_id

    clock.advance(seconds=30)
    updated = store.update(order_id, {"status": "shipped"})

    assert updated.status == "shipped"
    assert updated.payment_status == "pending"
    assert updated.last_updated > order.last_updated


def test_create_after_window_succeeds(store, clock):
    first = store.create(labels_order())
    clock.advance(minutes=6)
    second = store.create(labels_order())

    assert first != second
    assert len(store.list_for_user("u1")) == 2


def test_create_inside_window_boundary_rejected(store, clock):
    store.create(labels_order())
    clock.advance(minutes=4, seconds=59)
    with pytest.raises(DuplicateSubmission):
        store.create(labels_order())


def test_different_amount_or_product_is_not_duplicate(store):
    store.create(labels_order())
    store.create(labels_order(totalAmount=750))
    store.create(labels_order(productType="Tag"))
    store.create(labels_order(userId="u2"))

    assert len(store.list_recent(10)) == 4


def test_amount_representations_share_dedup_key(store):
    store.create(labels_order(totalAmount="500"))
    with pytest.raises(DuplicateSubmission):
        store.create(labels_order(totalAmount=500.0))


def test_concurrent_identical_creates_yield_one_order(store):
    barrier = threading.Barrier(2)
    results = []

    def submit():
        barrier.wait()
        try:
            results.append(store.create(labels_order()))
        except DuplicateSubmission as e:
            results.append(e)

    threads = [threading.Thread(target=submit) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    created = [r for r in results if isinstance(r, str)]
    rejected = [r for r in results if isinstance(r, DuplicateSubmission)]
    assert len(created) == 1
    assert len(rejected) == 1
    assert len(store.list_for_user("u1")) == 1


def test_guard_released_after_store_failure(store, monkeypatch):
    def broken_insert(conn, order_id, draft, now):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(store, "_insert", broken_insert)
    with pytest.raises(StoreUnavailable):
        store.create(labels_order())
    assert len(store.guard) == 0

    monkeypatch.delattr(store, "_insert")
    assert store.create(labels_order())


def test_create_validates_draft(store):
    with pytest.raises(InvalidRequest):
        store.create(labels_order(quantity=0))
    with pytest.raises(InvalidRequest):
        store.create(labels_order(totalAmount=-1))
    with pytest.raises(InvalidRequest):
        store.create({"userId": "u1", "productType": "Labels", "quantity": 10})
    assert store.list_recent() == []


# ---------------------------------------------------------------------------
# In-flight guard
# ---------------------------------------------------------------------------

def test_guard_rejects_reentrant_hold():
    guard = InFlightGuard()
    key = ("u1", "Labels", "500.00", None)

    with guard.hold(key):
        assert key in guard
        with pytest.raises(DuplicateSubmission):
            with guard.hold(key):
                pass

    assert key not in guard


def test_guard_releases_on_exception():
    guard = InFlightGuard()
    key = ("u1", "Labels", "500.00", None)

    with pytest.raises(RuntimeError):
        with guard.hold(key):
            raise RuntimeError("checkout crashed")

    assert len(guard) == 0


def test_guard_is_bounded():
    guard = InFlightGuard(max_entries=1)
    with guard.hold("first"):
        with pytest.raises(StoreUnavailable):
            with guard.hold("second"):
                pass
    with guard.hold("second"):
        assert "second" in guard


# ---------------------------------------------------------------------------
# Tracking ids
# ---------------------------------------------------------------------------

def test_tracking_ids_unique_and_well_formed(store, clock):
    tracking_ids = set()
    for n in range(25):
        order = store.get(store.create(labels_order(userId=f"user-{n}")))
        assert TRACKING_ID_PATTERN.match(order.tracking_id), order.tracking_id
        assert order.tracking_id.startswith("MUV" + to_base36(int(clock().timestamp() * 1000)))
        tracking_ids.add(order.tracking_id)

    assert len(tracking_ids) == 25


def test_tracking_id_collision_is_retried(store, monkeypatch):
    ids = iter(["MUVAAAAAA111", "MUVAAAAAA111", "MUVBBBBBB222"])
    monkeypatch.setattr(store_module, "generate_tracking_id", lambda created_at: next(ids))

    first = store.get(store.create(labels_order(userId="u1")))
    second = store.get(store.create(labels_order(userId="u2")))

    assert first.tracking_id == "MUVAAAAAA111"
    assert second.tracking_id == "MUVBBBBBB222"


def test_lookup_by_tracking_id_is_case_insensitive(store):
    order = store.get(store.create(labels_order()))
    assert store.get_by_tracking_id(order.tracking_id.lower()).id == order.id
    with pytest.raises(NotFound):
        store.get_by_tracking_id("MUVNOPE000")


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("field, value", [
    ("totalAmount", 1),
    ("total_amount", 1),
    ("userId", "someone-else"),
    ("trackingId", "MUVFORGED000"),
    ("id", "other"),
    ("createdAt", "2020-01-01"),
    ("quantity", 5),
])
def test_update_rejects_immutable_fields(store, field, value):
    order = store.get(store.create(labels_order()))

    with pytest.raises(NotAllowed):
        store.update(order.id, {"status": "processing", field: value})

    after = store.get(order.id)
    assert after.total_amount == order.total_amount
    assert after.user_id == order.user_id
    assert after.tracking_id == order.tracking_id
    assert after.status == "pending"


def test_update_rejects_unknown_status_values(store):
    order_id = store.create(labels_order())
    with pytest.raises(NotAllowed):
        store.update(order_id, {"status": "teleported"})
    with pytest.raises(NotAllowed):
        store.update(order_id, {"paymentStatus": "maybe"})
    assert store.get(order_id).status == "pending"


def test_update_allows_off_graph_moves(store):
    order_id = store.create(labels_order())
    assert store.update(order_id, {"status": "delivered"}).status == "delivered"
    assert store.update(order_id, {"status": "cancelled"}).status == "cancelled"
    # leaving a terminal status is an admin override, not an error
    assert store.update(order_id, {"status": "processing"}).status == "processing"


def test_update_missing_order(store):
    with pytest.raises(NotFound):
        store.update("missing", {"status": "shipped"})


def test_update_requires_fields(store):
    order_id = store.create(labels_order())
    with pytest.raises(InvalidRequest):
        store.update(order_id, {})


def test_confirm_payment_sets_status_and_details(store):
    order_id = store.create(labels_order())
    order = store.confirm_payment(order_id, {"method": "razorpay", "paymentId": "pay_123"})

    assert order.status == "received"
    assert order.payment_status == "paid"
    assert order.payment_details == PaymentDetails("razorpay", "pay_123")


def test_payment_details_is_closed_record(store):
    order_id = store.create(labels_order())
    with pytest.raises(NotAllowed):
        store.update(order_id, {"paymentDetails": {"method": "card", "cardNumber": "4111"}})
    with pytest.raises(InvalidRequest):
        store.update(order_id, {"paymentDetails": {"externalId": "x"}})
    assert store.get(order_id).payment_details is None


def test_delete(store):
    order_id = store.create(labels_order())
    store.delete(order_id, actor="help@microuvprinters.com")

    with pytest.raises(NotFound):
        store.get(order_id)
    with pytest.raises(NotFound):
        store.delete(order_id)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def test_lists_are_newest_first(store, clock):
    first = store.create(labels_order())
    clock.advance(minutes=1)
    second = store.create(labels_order(totalAmount=900))
    clock.advance(minutes=1)
    store.create(labels_order(userId="u2"))

    assert [o.id for o in store.list_for_user("u1")] == [second, first]
    assert len(store.list_recent(2)) == 2

    store.confirm_payment(first, {"method": "upi"})
    assert [o.id for o in store.list_for_user_by_payment("u1", "paid")] == [first]
    assert [o.id for o in store.list_by_status("received")] == [first]


def test_summarize(store, clock):
    paid = store.create(labels_order())
    store.create(labels_order(totalAmount=800))
    shipped = store.create(labels_order(userId="u2", totalAmount=1500))
    store.confirm_payment(paid, {"method": "upi"})
    store.update(shipped, {"status": "completed", "paymentStatus": "paid"})

    stats = store.summarize()
    assert stats["totalOrders"] == 3
    assert stats["totalRevenue"] == "2000.00"
    assert stats["pendingOrders"] == 1
    assert stats["completedOrders"] == 1


# ---------------------------------------------------------------------------
# Lifecycle display and pricing
# ---------------------------------------------------------------------------

def test_unknown_status_displays_as_pending():
    assert lifecycle.status_display("archived") == lifecycle.ORDER_STATUS_CONFIG["pending"]
    assert lifecycle.payment_status_display(None)["label"] == "Payment Pending"
    assert lifecycle.execution_stage("archived") == {"stage": "order_created", "progress": 20}


def test_progress_and_journey():
    progress = lifecycle.order_progress("processing")
    assert progress == {"current": 3, "total": 5, "percentage": 60.0}

    steps = lifecycle.journey_steps("shipped")
    assert [s["status"] for s in steps] == list(lifecycle.JOURNEY)
    assert [s["isCurrent"] for s in steps] == [False, False, False, True, False]
    assert all(s["isCompleted"] for s in steps[:3])


def test_intended_transitions():
    assert lifecycle.is_intended_transition("pending", "received")
    assert lifecycle.is_intended_transition("shipped", "cancelled")
    assert not lifecycle.is_intended_transition("pending", "delivered")
    assert not lifecycle.is_intended_transition("completed", "processing")


def test_estimate_price_tiers():
    assert estimate_price("Labels", 100) == Decimal("500")
    assert estimate_price("labels", 250) == Decimal("750.0")
    assert estimate_price("Medicine Box", 1000) == Decimal("4000")
    assert estimate_price("sticker", 5000) == Decimal("1500")
    assert estimate_price("poster", 10) is None
    assert estimate_price("tag", "lots") is None


# ---------------------------------------------------------------------------
# Customer checkout API
# ---------------------------------------------------------------------------

def test_checkout_and_duplicate_over_http(client, desk):
    payload = labels_order(customerEmail="Buyer@Example.com", deliveryAddress="12 MG Road")
    response = client.post("/api/orders", json=payload)
    assert response.status_code == 201
    data = response.get_json()
    assert data["success"] is True
    assert TRACKING_ID_PATTERN.match(data["trackingId"])
    assert data["order"]["status"] == "pending"
    assert "customerEmail" not in data["order"]
    assert desk.orders.get(data["order_id"]).customer_email == "buyer@example.com"
    assert data["order"]["totalAmount"] == "500.00"

    response = client.post("/api/orders", json=payload)
    assert response.status_code == 409
    error = response.get_json()
    assert error["code"] == "DuplicateSubmission"
    assert error["existing_order_id"] == data["order_id"]


def test_checkout_estimates_missing_total(client):
    payload = {"userId": "u9", "productType": "box", "quantity": 300}
    response = client.post("/api/orders", json=payload)
    assert response.status_code == 201
    assert response.get_json()["order"]["totalAmount"] == "2250.00"

    response = client.post("/api/orders", json={"userId": "u9", "productType": "poster", "quantity": 3})
    assert response.status_code == 400


def test_checkout_rejects_non_json(client):
    response = client.post("/api/orders", data="not json", content_type="text/plain")
    assert response.status_code == 400
    assert response.get_json()["code"] == "InvalidRequest"


def test_customer_reads_and_payment_callback(client):
    created = client.post("/api/orders", json=labels_order()).get_json()
    order_id = created["order_id"]

    response = client.get(f"/api/orders/track/{created['trackingId']}")
    assert response.status_code == 200
    assert response.get_json()["order"]["journey"][0]["isCurrent"] is True

    response = client.post(f"/api/orders/{order_id}/payment", headers={"X-API-Key": CALLBACK_KEY}, json={
        "paymentDetails": {"method": "razorpay", "externalId": "pay_9"}
    })
    assert response.status_code == 200
    order = response.get_json()["order"]
    assert order["paymentStatus"] == "paid"
    assert order["status"] == "received"
    assert order["paymentDetails"] == {"method": "razorpay", "externalId": "pay_9"}

    listing = client.get("/api/orders/user/u1?paymentStatus=paid").get_json()
    assert [o["id"] for o in listing["orders"]] == [order_id]

    detail = client.get(f"/api/orders/{order_id}").get_json()["order"]
    assert detail["executionStatus"] == "processing"
    assert detail["progress"]["current"] == 2

    assert client.get("/api/orders/does-not-exist").status_code == 404


# ---------------------------------------------------------------------------
# Admin order manager API
# ---------------------------------------------------------------------------

def test_admin_order_api_requires_session(client):
    for path in ("/admin/orders-manager/api/orders", "/admin/orders-manager/api/stats"):
        response = client.get(path)
        assert response.status_code == 401
        assert response.get_json()["code"] == "Unauthorized"

    response = client.post("/admin/orders-manager/api/update-order", json={"orderId": "x", "status": "shipped"})
    assert response.status_code == 401


def test_admin_order_management(admin_client, clock):
    order_id = admin_client.post("/api/orders", json=labels_order()).get_json()["order_id"]

    listing = admin_client.get("/admin/orders-manager/api/orders").get_json()
    assert [o["id"] for o in listing["orders"]] == [order_id]

    clock.advance(minutes=1)
    response = admin_client.post("/admin/orders-manager/api/update-order", json={
        "orderId": order_id, "status": "shipped"
    })
    assert response.status_code == 200
    assert response.get_json()["order"]["status"] == "shipped"

    filtered = admin_client.get("/admin/orders-manager/api/orders?status=shipped").get_json()
    assert len(filtered["orders"]) == 1

    response = admin_client.post("/admin/orders-manager/api/update-order", json={
        "orderId": order_id, "totalAmount": 1
    })
    assert response.status_code == 403
    assert response.get_json()["code"] == "NotAllowed"

    stats = admin_client.get("/admin/orders-manager/api/stats").get_json()["stats"]
    assert stats["totalOrders"] == 1

    detail = admin_client.get(f"/admin/orders-manager/api/order/{order_id}").get_json()["order"]
    assert detail["statusLabel"] == "Shipped"

    response = admin_client.post("/admin/orders-manager/api/delete-order", json={"orderId": order_id})
    assert response.status_code == 200
    assert admin_client.get(f"/admin/orders-manager/api/order/{order_id}").status_code == 404


# ---------------------------------------------------------------------------
# Payload typing
# ---------------------------------------------------------------------------

def test_numeric_ids_are_accepted_as_text(client, desk):
    response = client.post("/api/orders", json=labels_order(userId=42, customerPhone=9876543210))
    assert response.status_code == 201
    order = desk.orders.get(response.get_json()["order_id"])
    assert order.user_id == "42"
    assert order.customer_phone == "9876543210"

    assert [o.id for o in desk.orders.list_for_user("42")] == [order.id]

    response = client.post("/api/orders", json=labels_order(productType=3, totalAmount=120))
    assert response.status_code == 201
    assert desk.orders.get(response.get_json()["order_id"]).product_type == "3"


@pytest.mark.parametrize("field, value", [
    ("userId", {"id": 1}),
    ("productType", ["Labels"]),
    ("customerEmail", True),
    ("specifications", {"size": "A4"}),
])
def test_structured_values_in_text_fields_rejected(client, field, value):
    response = client.post("/api/orders", json=labels_order(**{field: value}))
    assert response.status_code == 400
    assert response.get_json()["code"] == "InvalidRequest"


def test_numeric_payment_method_is_text(store):
    order_id = store.create(labels_order())
    order = store.confirm_payment(order_id, {"method": 7, "externalId": 1234})
    assert order.payment_details == PaymentDetails(method="7", external_id="1234")

    with pytest.raises(InvalidRequest):
        store.confirm_payment(order_id, {"method": {"name": "card"}})


@pytest.mark.parametrize("amount", ["1e40", "1E+30", 1e40, "NaN", "Infinity"])
def test_out_of_range_amounts_rejected(store, amount):
    with pytest.raises(InvalidRequest):
        store.create(labels_order(totalAmount=amount))
    assert store.list_recent() == []


def test_out_of_range_amount_over_http(client):
    response = client.post("/api/orders", json=labels_order(totalAmount="1e40"))
    assert response.status_code == 400
    assert response.get_json()["code"] == "InvalidRequest"


# ---------------------------------------------------------------------------
# Payment callback key and customer privacy
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("headers", [{}, {"X-API-Key": "wrong-key"}, {"X-API-Key": ""}])
def test_payment_callback_requires_gateway_key(client, desk, headers):
    order_id = client.post("/api/orders", json=labels_order()).get_json()["order_id"]

    response = client.post(f"/api/orders/{order_id}/payment", headers=headers, json={
        "paymentDetails": {"method": "razorpay", "externalId": "pay_forged"}
    })
    assert response.status_code == 401
    assert response.get_json()["code"] == "InvalidApiKey"

    order = desk.orders.get(order_id)
    assert order.payment_status == "pending"
    assert order.status == "pending"
    assert order.payment_details is None


def test_payment_callback_disabled_without_configured_key(app, client, desk):
    app.config["PAYMENT_CALLBACK_KEY"] = None
    order_id = client.post("/api/orders", json=labels_order()).get_json()["order_id"]

    response = client.post(f"/api/orders/{order_id}/payment", headers={"X-API-Key": CALLBACK_KEY}, json={
        "paymentDetails": {"method": "razorpay"}
    })
    assert response.status_code == 401
    assert desk.orders.get(order_id).payment_status == "pending"


def test_payment_callback_cannot_reopen_cancelled_order_without_key(client, desk):
    order_id = client.post("/api/orders", json=labels_order()).get_json()["order_id"]
    desk.orders.update(order_id, {"status": "cancelled"})

    response = client.post(f"/api/orders/{order_id}/payment", json={
        "paymentDetails": {"method": "razorpay"}
    })
    assert response.status_code == 401
    assert desk.orders.get(order_id).status == "cancelled"


def test_anonymous_reads_hide_contact_details(client):
    payload = labels_order(
        customerName="Asha Rao", customerEmail="asha@example.com",
        customerPhone="+91 98765 43210", deliveryAddress="12 MG Road, Bengaluru",
    )
    created = client.post("/api/orders", json=payload).get_json()
    order_id = created["order_id"]

    responses = [
        created["order"],
        client.get(f"/api/orders/{order_id}").get_json()["order"],
        client.get(f"/api/orders/track/{created['trackingId']}").get_json()["order"],
        client.get("/api/orders/user/u1").get_json()["orders"][0],
    ]
    for order in responses:
        assert order["id"] == order_id
        for field in ("customerName", "customerEmail", "customerPhone", "deliveryAddress"):
            assert field not in order
        assert "12 MG Road" not in str(order)


def test_admin_order_views_keep_contact_details(admin_client):
    payload = labels_order(customerEmail="asha@example.com", deliveryAddress="12 MG Road")
    order_id = admin_client.post("/api/orders", json=payload).get_json()["order_id"]

    detail = admin_client.get(f"/admin/orders-manager/api/order/{order_id}").get_json()["order"]
    assert detail["customerEmail"] == "asha@example.com"
    assert detail["deliveryAddress"] == "12 MG Road"


def test_admin_orders_filter_by_payment_status(admin_client, desk, clock):
    paid_id = admin_client.post("/api/orders", json=labels_order()).get_json()["order_id"]
    clock.advance(minutes=1)
    pending_id = admin_client.post("/api/orders", json=labels_order(productType="Box")).get_json()["order_id"]
    desk.orders.confirm_payment(paid_id, {"method": "upi"})

    listing = admin_client.get("/admin/orders-manager/api/orders?paymentStatus=paid").get_json()
    assert [o["id"] for o in listing["orders"]] == [paid_id]

    listing = admin_client.get("/admin/orders-manager/api/orders?paymentStatus=pending").get_json()
    assert [o["id"] for o in listing["orders"]] == [pending_id]

    listing = admin_client.get("/admin/orders-manager/api/orders?status=received&paymentStatus=pending").get_json()
    assert listing["orders"] == []


def test_search_combines_filters_newest_first(store, clock):
    first = store.create(labels_order())
    clock.advance(minutes=1)
    second = store.create(labels_order(productType="Box"))
    clock.advance(minutes=1)
    third = store.create(labels_order(productType="Sticker"))
    store.confirm_payment(first, {"method": "upi"})
    store.confirm_payment(third, {"method": "upi"})

    assert [o.id for o in store.search(payment_status="paid")] == [third, first]
    assert [o.id for o in store.search(status="pending")] == [second]
    assert [o.id for o in store.search(limit=2)] == [third, second]
    assert store.search(status="received", payment_status="pending") == []
