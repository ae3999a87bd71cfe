import inspect
import json

import pytest

from conftest import WEBHOOK_SECRET, TestingSessionLocal
from storefront import orders, routes
from storefront.models import Order
from storefront.payments import WEBHOOK_HANDLERS, WebhookEvent
from storefront.signatures import webhook_signature

ITEMS = [{"product_id": "mango-pickle", "product_name": "Mango Pickle", "product_price": 250.0, "quantity": 2}]


def _post(client, envelope, signature=None, secret=WEBHOOK_SECRET):
    body = json.dumps(envelope).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    signature = signature if signature is not None else webhook_signature(body, secret)
    headers["x-razorpay-signature"] = signature
    return client.post("/api/webhooks/razorpay", content=body, headers=headers)


def _envelope(event, **payload):
    return {"entity": "event", "account_id": "acc_1", "event": event,
            "payload": payload, "created_at": 1700000300}


@pytest.fixture
def stored_order(db):
    order, _ = orders.record_order(db, "user-1", ITEMS, payment={
        "payment_id": "pay_123",
        "payment_order_id": "order_123",
        "payment_status": "pending",
    })
    return order.id


def _reload(order_id):
    db = TestingSessionLocal()
    try:
        return db.get(Order, order_id)
    finally:
        db.close()


def test_payment_captured_marks_order_paid(client, stored_order):
    response = _post(client, _envelope(
        "payment.captured",
        payment={"entity": {"id": "pay_123", "order_id": "order_123", "amount": 59900, "method": "card"}},
    ))

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    order = _reload(stored_order)
    assert order.payment_status == "paid"
    assert order.status == "processing"


def test_payment_failed(client, stored_order):
    response = _post(client, _envelope(
        "payment.failed",
        payment={"entity": {"id": "pay_123", "order_id": "order_123",
                            "error_code": "BAD_REQUEST_ERROR", "error_description": "Card declined"}},
    ))

    assert response.status_code == 200
    assert _reload(stored_order).payment_status == "failed"


def test_order_paid_matches_razorpay_order_id(client, stored_order):
    response = _post(client, _envelope(
        "order.paid",
        order={"entity": {"id": "order_123", "amount": 59900, "amount_paid": 59900}},
    ))

    assert response.status_code == 200
    assert _reload(stored_order).payment_status == "paid"


def test_refund_created_and_processed(client, stored_order):
    refund = {"id": "rfnd_1", "payment_id": "pay_123", "amount": 59900, "status": "pending",
              "created_at": 1700000400}

    _post(client, _envelope("refund.created", refund={"entity": refund}))
    order = _reload(stored_order)
    assert order.refund_id == "rfnd_1"
    assert order.refund_amount == 599.0
    assert order.refund_status == "pending"
    assert order.refunded_at is not None

    _post(client, _envelope("refund.processed", refund={"entity": {**refund, "status": "processed"}}))
    order = _reload(stored_order)
    assert order.refund_status == "processed"
    assert order.status == "refunded"
    assert order.payment_status == "refunded"


def test_captured_after_refund_keeps_order_refunded(client, stored_order):
    refund = {"id": "rfnd_1", "payment_id": "pay_123", "amount": 59900, "status": "processed",
              "created_at": 1700000400}
    _post(client, _envelope("refund.processed", refund={"entity": refund}))

    response = _post(client, _envelope(
        "payment.captured",
        payment={"entity": {"id": "pay_123", "order_id": "order_123", "amount": 59900, "method": "card"}},
    ))
    _post(client, _envelope("refund.created", refund={"entity": {**refund, "status": "pending"}}))

    assert response.status_code == 200
    order = _reload(stored_order)
    assert order.status == "refunded"
    assert order.payment_status == "refunded"
    assert order.refund_status == "processed"


def test_failed_retry_does_not_undo_capture(client, stored_order):
    captured = {"id": "pay_123", "order_id": "order_123", "amount": 59900, "method": "card"}
    _post(client, _envelope("payment.captured", payment={"entity": captured}))
    _post(client, _envelope("payment.failed", payment={"entity": captured}))

    order = _reload(stored_order)
    assert order.payment_status == "paid"
    assert order.status == "processing"


def test_order_paid_leaves_shipped_order_status(client, db, stored_order):
    orders.update_by_payment_id(db, "pay_123", status="shipped")

    _post(client, _envelope("order.paid", order={"entity": {"id": "order_123", "amount": 59900}}))
    _post(client, _envelope("payment.captured", payment={"entity": {"id": "pay_123"}}))

    order = _reload(stored_order)
    assert order.status == "shipped"
    assert order.payment_status == "paid"


def test_wrong_signature_is_rejected_without_dispatch(client, mocker, stored_order):
    update = mocker.patch("storefront.orders.update_by_payment_id")

    response = _post(
        client,
        _envelope("payment.captured", payment={"entity": {"id": "pay_123"}}),
        signature=webhook_signature(b"something else", WEBHOOK_SECRET),
    )

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid webhook signature"}
    update.assert_not_called()
    assert _reload(stored_order).payment_status == "pending"


def test_missing_signature_header(client):
    body = json.dumps(_envelope("payment.captured")).encode("utf-8")

    response = client.post("/api/webhooks/razorpay", content=body)

    assert response.status_code == 401


def test_webhook_secret_not_configured(make_client, settings):
    settings.razorpay_webhook_secret = None
    client = make_client(settings)

    response = _post(client, _envelope("payment.captured"), signature="anything")

    assert response.status_code == 400
    assert response.json() == {"error": "Webhook secret not configured"}


def test_unknown_event_is_ignored(client, mocker):
    update = mocker.patch("storefront.orders.update_by_payment_id")

    response = _post(client, _envelope("subscription.charged", subscription={"entity": {"id": "sub_1"}}))

    assert response.status_code == 200
    update.assert_not_called()


def test_handler_failure_returns_500(client):
    response = _post(client, _envelope("payment.captured"))

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook processing failed"}


def test_signed_non_json_body(client):
    body = b"not json"

    response = client.post("/api/webhooks/razorpay", content=body,
                           headers={"x-razorpay-signature": webhook_signature(body, WEBHOOK_SECRET)})

    assert response.status_code == 400


def test_every_webhook_event_has_a_handler():
    assert set(WEBHOOK_HANDLERS) == set(WebhookEvent)


def test_webhook_handler_runs_in_threadpool():
    assert not inspect.iscoroutinefunction(routes.razorpay_webhook)
    assert inspect.iscoroutinefunction(routes.raw_body)
