"""
payments.py: Razorpay payment flows for the storefront.

`PaymentService` is built once per application with its gateway and
settings injected, and backs every `/api/razorpay/*` endpoint plus the
Razorpay webhook.
"""

import json
import time
from datetime import datetime, timezone
from enum import Enum

from storefront import orders
from storefront.config import Settings
from storefront.errors import (
    AuthenticationError,
    ConfigurationError,
    InvalidRequestError,
    NotFoundError,
    UpstreamError,
)
from storefront.gateway import RazorpayGateway
from storefront.logging_config import get_logger
from storefront.signatures import mask, payment_signature, verify_payment_signature, verify_webhook_signature

log = get_logger(__name__)

VERIFY_REQUIRED_FIELDS = ["razorpay_payment_id", "razorpay_order_id", "razorpay_signature"]


class WebhookEvent(str, Enum):
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    ORDER_PAID = "order.paid"
    REFUND_CREATED = "refund.created"
    REFUND_PROCESSED = "refund.processed"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _pick(entity: dict, fields) -> dict:
    return {name: entity.get(name) for name in fields}


ORDER_FIELDS = ["id", "entity", "amount", "amount_paid", "amount_due", "currency", "receipt",
                "status", "attempts", "notes", "created_at"]
PAYMENT_FIELDS = ["id", "entity", "amount", "currency", "status", "order_id", "method", "captured",
                  "description", "card_id", "bank", "wallet", "vpa", "email", "contact", "created_at"]
PAYMENT_SUMMARY_FIELDS = ["id", "amount", "currency", "status", "method", "captured", "created_at"]
REFUND_FIELDS = ["id", "entity", "amount", "currency", "payment_id", "status", "speed_processed",
                 "speed_requested", "receipt", "notes", "created_at"]


class PaymentService:
    def __init__(self, gateway: RazorpayGateway, settings: Settings):
        self.gateway = gateway
        self.settings = settings

    def check_configuration(self):
        if not self.settings.razorpay_configured:
            raise ConfigurationError(
                "Razorpay configuration missing. Please set RAZORPAY_KEY_ID and "
                "RAZORPAY_KEY_SECRET in environment variables."
            )
        if self.settings.is_production and self.settings.uses_test_key:
            log.warning("Using TEST Razorpay key in PRODUCTION!")
            raise ConfigurationError(
                "Invalid Razorpay configuration",
                details="Cannot use test keys in production environment",
            )

    def _fetch(self, fetch, entity_id, kind, failure=None):
        # Razorpay answers an unknown id with BAD_REQUEST_ERROR
        try:
            return fetch(entity_id)
        except UpstreamError as e:
            if e.code == "BAD_REQUEST_ERROR":
                raise NotFoundError(f"{kind} not found")
            log.error(f"Error fetching {kind.lower()} {entity_id}: {e.message}")
            raise UpstreamError(failure or f"Failed to fetch {kind.lower()} details", status_code=500)
        except Exception as e:
            log.exception(f"Error fetching {kind.lower()} {entity_id}")
            raise UpstreamError(failure or f"Failed to fetch {kind.lower()} details", status_code=500) from e

    # --- Orders ---

    def create_order(self, amount, currency="INR", receipt=None, notes=None) -> dict:
        if not amount or amount < 1:
            raise InvalidRequestError("Invalid amount. Amount must be at least 1 paise (₹0.01)")

        options = {
            "amount": int(round(amount)),
            "currency": currency or self.settings.currency,
            "receipt": receipt or f"receipt_{int(time.time() * 1000)}",
            "notes": {
                **(notes or {}),
                "created_at": _now_iso(),
                "source": self.settings.order_source,
            },
        }
        log.info(f"Creating Razorpay order: amount={options['amount']} currency={options['currency']} "
                 f"receipt={options['receipt']}")

        try:
            order = self.gateway.create_order(options)
        except UpstreamError as e:
            log.error(f"Razorpay rejected order creation ({e.status_code} {e.code}): {e.message}")
            raise
        except Exception as e:
            log.exception("Error creating Razorpay order")
            raise UpstreamError("Failed to create order", status_code=500) from e

        log.info(f"Created Razorpay order {order.get('id')} ({order.get('status')})")
        return _pick(order, ORDER_FIELDS)

    def fetch_order(self, order_id: str) -> dict:
        order = self._fetch(self.gateway.fetch_order, order_id, "Order")
        log.info(f"Order {order_id} fetched: status={order.get('status')} attempts={order.get('attempts')}")
        return _pick(order, ORDER_FIELDS)

    def fetch_order_payments(self, order_id: str) -> dict:
        payments = self._fetch(self.gateway.fetch_order_payments, order_id, "Order",
                               failure="Failed to fetch order payments")
        items = payments.get("items") or []
        log.info(f"Order {order_id} has {len(items)} payment(s)")
        return {
            "entity": payments.get("entity"),
            "count": payments.get("count"),
            "items": [_pick(payment, PAYMENT_SUMMARY_FIELDS) for payment in items],
        }

    # --- Payments ---

    def verify_payment(self, payment_id, order_id, signature) -> dict:
        if not payment_id or not order_id or not signature:
            raise InvalidRequestError("Missing required payment details", required=VERIFY_REQUIRED_FIELDS)

        if not verify_payment_signature(order_id, payment_id, signature, self.settings.razorpay_key_secret):
            expected = payment_signature(order_id, payment_id, self.settings.razorpay_key_secret)
            log.warning(f"Payment verification failed: payment={payment_id} order={order_id} "
                        f"expected={mask(expected)} received={mask(signature)}")
            raise InvalidRequestError("Invalid payment signature", isValid=False)

        result = {"isValid": True, "payment_id": payment_id, "order_id": order_id}
        try:
            payment = self.gateway.fetch_payment(payment_id)
            order = self.gateway.fetch_order(order_id)
        except Exception as e:
            log.warning(f"Payment {payment_id} verified but details could not be fetched: {e}")
            result["warning"] = "Payment verified but details unavailable"
            return result

        log.info(f"Payment verified: payment={payment_id} order={order_id} "
                 f"amount={payment.get('amount')} status={payment.get('status')}")
        result["payment_details"] = _pick(payment, PAYMENT_SUMMARY_FIELDS)
        result["order_details"] = _pick(order, ["id", "amount", "status", "receipt"])
        return result

    def fetch_payment(self, payment_id: str) -> dict:
        payment = self._fetch(self.gateway.fetch_payment, payment_id, "Payment",
                              failure="Failed to fetch payment details")
        log.info(f"Payment {payment_id} fetched: status={payment.get('status')} method={payment.get('method')}")
        return _pick(payment, PAYMENT_FIELDS)

    def capture_payment(self, payment_id: str, amount, currency="INR") -> dict:
        if not amount:
            raise InvalidRequestError("Amount is required for capture")
        if amount < 1:
            raise InvalidRequestError("Invalid amount. Amount must be at least 1 paise")

        try:
            payment = self.gateway.capture_payment(payment_id, int(round(amount)), currency or self.settings.currency)
        except UpstreamError as e:
            log.error(f"Capture of {payment_id} failed ({e.status_code} {e.code}): {e.message}")
            raise UpstreamError(e.message or "Failed to capture payment", status_code=e.status_code, code=e.code)
        except Exception as e:
            log.exception(f"Error capturing payment {payment_id}")
            raise UpstreamError("Failed to capture payment", status_code=500) from e

        log.info(f"Payment {payment_id} captured: amount={payment.get('amount')} status={payment.get('status')}")
        return _pick(payment, ["id", "amount", "currency", "status", "captured"])

    def refund_amount_for(self, payment_id: str, requested_amount=None):
        """
        Chooses the refund amount: what Razorpay actually captured when the
        payment can be looked up, else the amount the client asked for.
        None means "omit", which refunds the remaining captured balance.
        """
        try:
            payment = self.gateway.fetch_payment(payment_id)
        except Exception as e:
            log.warning(f"Could not fetch payment {payment_id} before refund: {e}")
            payment = None

        if payment:
            captured = payment.get("amount_captured") or payment.get("amount")
            if captured:
                log.info(f"Using captured amount {captured} for refund of {payment_id}")
                return captured
        if requested_amount:
            log.info(f"Using requested amount {requested_amount} for refund of {payment_id}")
            return requested_amount
        log.warning(f"No refund amount known for {payment_id}; Razorpay will refund the full balance")
        return None

    def refund_payment(self, payment_id: str, amount=None, speed="normal", notes=None, receipt=None) -> dict:
        notes = notes or {}
        data = {
            "notes": {
                **notes,
                "refund_reason": notes.get("refund_reason") or "Customer request",
                "created_at": _now_iso(),
            },
        }
        refund_amount = self.refund_amount_for(payment_id, amount)
        if refund_amount:
            data["amount"] = int(round(refund_amount))
        if speed:
            data["speed"] = speed
        if receipt:
            data["receipt"] = receipt

        try:
            refund = self.gateway.refund_payment(payment_id, data)
        except UpstreamError as e:
            log.error(f"Refund of {payment_id} failed ({e.status_code} {e.code}): {e.message}")
            raise UpstreamError(e.message or "Failed to process refund", status_code=e.status_code, code=e.code)
        except Exception as e:
            log.exception(f"Error processing refund for {payment_id}")
            raise UpstreamError("Failed to process refund", status_code=500) from e

        log.info(f"Refund {refund.get('id')} for {payment_id}: amount={refund.get('amount')} "
                 f"status={refund.get('status')}")
        return _pick(refund, REFUND_FIELDS)

    # --- Webhooks ---

    def handle_webhook(self, db, raw_body: bytes, signature) -> dict:
        secret = self.settings.razorpay_webhook_secret
        if not secret:
            log.warning("Webhook secret not configured")
            raise InvalidRequestError("Webhook secret not configured")

        if not signature or not verify_webhook_signature(raw_body, signature, secret):
            log.error(f"Invalid webhook signature (received {mask(signature)})")
            raise AuthenticationError("Invalid webhook signature")

        try:
            envelope = json.loads(raw_body)
        except ValueError:
            raise InvalidRequestError("Invalid webhook payload")
        if not isinstance(envelope, dict):
            raise InvalidRequestError("Invalid webhook payload")

        name = envelope.get("event")
        log.info(f"Razorpay webhook received: event={name} account={envelope.get('account_id')} "
                 f"created_at={envelope.get('created_at')}")

        try:
            event = WebhookEvent(name)
        except ValueError:
            log.info(f"Unhandled webhook event: {name}")
            return {"status": "ok"}

        try:
            WEBHOOK_HANDLERS[event](db, envelope.get("payload") or {})
        except Exception as e:
            log.exception(f"Webhook processing error for {name}")
            raise UpstreamError("Webhook processing failed", status_code=500) from e
        return {"status": "ok"}


def _entity(payload: dict, kind: str) -> dict:
    return payload[kind]["entity"]


# Order states a webhook may move each field out of.
PAID_FROM = {"payment_status": {"pending", "failed"}, "status": {"pending"}}
FAILED_FROM = {"payment_status": {"pending"}}
REFUND_PENDING_FROM = {"refund_status": {None, "pending"}}


def _on_payment_captured(db, payload):
    payment = _entity(payload, "payment")
    log.info(f"Payment captured: {payment['id']} order={payment.get('order_id')} "
             f"amount={payment.get('amount')} method={payment.get('method')}")
    orders.update_by_payment_id(db, payment["id"], only_from=PAID_FROM,
                                payment_status="paid", status="processing")


def _on_payment_failed(db, payload):
    payment = _entity(payload, "payment")
    log.info(f"Payment failed: {payment['id']} order={payment.get('order_id')} "
             f"code={payment.get('error_code')} reason={payment.get('error_description')}")
    orders.update_by_payment_id(db, payment["id"], only_from=FAILED_FROM, payment_status="failed")


def _on_order_paid(db, payload):
    order = _entity(payload, "order")
    log.info(f"Order paid: {order['id']} amount={order.get('amount')} paid={order.get('amount_paid')}")
    orders.update_by_payment_order_id(db, order["id"], only_from=PAID_FROM, payment_status="paid")


def _refund_fields(refund: dict, refund_status: str) -> dict:
    created_at = refund.get("created_at")
    return {
        "refund_id": refund["id"],
        "refund_amount": (refund.get("amount") or 0) / 100,
        "refund_status": refund_status,
        "refunded_at": datetime.fromtimestamp(created_at, timezone.utc) if created_at else None,
    }


def _on_refund_created(db, payload):
    refund = _entity(payload, "refund")
    log.info(f"Refund created: {refund['id']} payment={refund.get('payment_id')} amount={refund.get('amount')}")
    orders.update_by_payment_id(db, refund["payment_id"], only_from=REFUND_PENDING_FROM,
                                **_refund_fields(refund, "pending"))


def _on_refund_processed(db, payload):
    refund = _entity(payload, "refund")
    log.info(f"Refund processed: {refund['id']} payment={refund.get('payment_id')} amount={refund.get('amount')}")
    orders.update_by_payment_id(
        db, refund["payment_id"],
        status="refunded", payment_status="refunded",
        **_refund_fields(refund, "processed"),
    )


WEBHOOK_HANDLERS = {
    WebhookEvent.PAYMENT_CAPTURED: _on_payment_captured,
    WebhookEvent.PAYMENT_FAILED: _on_payment_failed,
    WebhookEvent.ORDER_PAID: _on_order_paid,
    WebhookEvent.REFUND_CREATED: _on_refund_created,
    WebhookEvent.REFUND_PROCESSED: _on_refund_processed,
}
