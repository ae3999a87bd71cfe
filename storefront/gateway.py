from functools import wraps

import razorpay
import requests
from razorpay.errors import BadRequestError, GatewayError, ServerError

from storefront.errors import UpstreamError
from storefront.logging_config import get_logger

log = get_logger(__name__)


def _relay_errors(func):
    """Translates SDK exceptions into UpstreamError with an HTTP status and code."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except BadRequestError as e:
            raise UpstreamError(str(e) or "Razorpay API error", status_code=400,
                                code="BAD_REQUEST_ERROR")
        except GatewayError as e:
            raise UpstreamError(str(e) or "Razorpay gateway error", status_code=502,
                                code="GATEWAY_ERROR")
        except ServerError as e:
            raise UpstreamError(str(e) or "Razorpay server error", status_code=500,
                                code="SERVER_ERROR")
        except requests.RequestException as e:
            log.error(f"Razorpay unreachable during {func.__name__}: {e}")
            raise UpstreamError("Failed to reach Razorpay", status_code=502,
                                code="GATEWAY_UNREACHABLE")

    return wrapper


class RazorpayGateway:
    """Thin wrapper over the Razorpay SDK client."""

    def __init__(self, key_id, key_secret, client=None):
        self.key_id = key_id
        self.client = client or razorpay.Client(auth=(key_id, key_secret))

    @_relay_errors
    def create_order(self, options: dict) -> dict:
        return self.client.order.create(data=options)

    @_relay_errors
    def fetch_order(self, order_id: str) -> dict:
        return self.client.order.fetch(order_id)

    @_relay_errors
    def fetch_order_payments(self, order_id: str) -> dict:
        return self.client.order.payments(order_id)

    @_relay_errors
    def fetch_payment(self, payment_id: str) -> dict:
        return self.client.payment.fetch(payment_id)

    @_relay_errors
    def capture_payment(self, payment_id: str, amount: int, currency: str) -> dict:
        return self.client.payment.capture(payment_id, amount, data={"currency": currency})

    @_relay_errors
    def refund_payment(self, payment_id: str, data: dict) -> dict:
        return self.client.payment.refund(payment_id, data)
