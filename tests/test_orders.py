from conftest import bearer
from storefront import orders
from storefront.models import Order

ITEMS = [
    {"product_id": "mango-pickle", "product_name": "Mango Pickle", "product_price": 250.0, "quantity": 2},
    {"product_id": "gongura", "product_name": "Gongura Pickle", "product_price": 180.0, "quantity": 1},
]

PAID = {
    "payment_id": "pay_123",
    "payment_order_id": "order_123",
    "payment_signature": "sig",
    "payment_status": "paid",
}


def test_record_order_computes_totals(db):
    order, created = orders.record_order(db, "user-1", ITEMS, payment=PAID, shipping_amount=99)

    assert created is True
    assert order.subtotal == 680.0
    assert order.total == 779.0
    assert order.status == "processing"
    assert order.payment_method == "razorpay"
    assert order.currency == "INR"
    assert sorted(item.total_price for item in order.items) == [180.0, 500.0]


def test_record_order_is_idempotent_per_payment_id(db):
    first, created_first = orders.record_order(db, "user-1", ITEMS, payment=PAID)
    second, created_second = orders.record_order(db, "user-1", ITEMS, payment=PAID)

    assert created_first is True
    assert created_second is False
    assert second.id == first.id
    assert db.query(Order).filter_by(payment_id="pay_123").count() == 1


def test_orders_without_payment_id_are_not_deduplicated(db):
    orders.record_order(db, "user-1", ITEMS)
    orders.record_order(db, "user-1", ITEMS)

    stored = db.query(Order).all()
    assert len(stored) == 2
    assert all(order.status == "pending" for order in stored)


def test_update_by_payment_id_without_match(db):
    assert orders.update_by_payment_id(db, "pay_unknown", payment_status="paid") == 0


def test_update_only_from_skips_fields_in_other_states(db):
    order, _ = orders.record_order(db, "user-1", ITEMS, payment={"payment_id": "pay_9", "payment_status": "refunded"})

    updated = orders.update_by_payment_id(db, "pay_9", only_from={"payment_status": {"pending"}},
                                          payment_status="paid", payment_method="card")

    db.refresh(order)
    assert updated == 1
    assert order.payment_status == "refunded"
    assert order.payment_method == "card"


def test_record_order_api_returns_existing_on_retry(client, auth_headers):
    payload = {"items": ITEMS, "payment": PAID, "shipping_amount": 99}

    first = client.post("/api/orders", json=payload, headers=auth_headers)
    second = client.post("/api/orders", json=payload, headers=auth_headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]
    assert len(first.json()["order_items"]) == 2


def test_record_order_requires_token(client):
    response = client.post("/api/orders", json={"items": ITEMS})

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid or missing token"}


def test_record_order_rejects_empty_cart(client, auth_headers):
    response = client.post("/api/orders", json={"items": []}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request body"


def test_list_orders_only_returns_own_orders(client, auth_headers):
    client.post("/api/orders", json={"items": ITEMS, "payment": PAID}, headers=auth_headers)
    client.post("/api/orders", json={"items": ITEMS}, headers=bearer("user-2"))

    response = client.get("/api/orders", headers=auth_headers)

    assert response.status_code == 200
    assert [order["payment_id"] for order in response.json()] == ["pay_123"]
