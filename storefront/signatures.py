import hashlib
import hmac


def _hmac_hex(secret: str, data: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), data, hashlib.sha256).hexdigest()


def payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    """Signature Razorpay hands the browser after a successful checkout."""
    return _hmac_hex(secret, f"{order_id}|{payment_id}".encode("utf-8"))


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    expected = payment_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def webhook_signature(body: bytes, secret: str) -> str:
    return _hmac_hex(secret, body)


def verify_webhook_signature(body: bytes, signature: str, secret: str) -> bool:
    # Signed over the raw request body exactly as Razorpay sent it
    expected = webhook_signature(body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def mask(value) -> str:
    if not value:
        return "NOT_SET"
    return f"{str(value)[:10]}..."
