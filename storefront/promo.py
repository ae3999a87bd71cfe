from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.errors import APIError, InvalidRequestError
from storefront.logging_config import get_logger
from storefront.models import PromoCode

log = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _reject(message: str):
    raise InvalidRequestError(message, valid=False)


def calculate_discount(promo: PromoCode, order_amount: float) -> float:
    discount = 0.0
    if promo.discount_type == "percentage":
        discount = order_amount * promo.discount_value / 100
        if promo.max_discount_amount and discount > promo.max_discount_amount:
            discount = promo.max_discount_amount
    elif promo.discount_type == "fixed":
        discount = promo.discount_value
    # "shipping" discounts are applied as free shipping by the client
    return round(discount, 2)


def validate_promo(db: Session, code: str, order_amount: float = 0, now: datetime = None) -> dict:
    """
    Checks a promo code against an order amount (major currency units).

    Raises InvalidRequestError (rendered with `valid: false`) when the code
    is unknown, inactive, outside its validity window, used up, or the order
    is below the minimum amount. A failed lookup raises a 500 APIError,
    also with `valid: false`.
    """
    if not code:
        _reject("Promo code is required")

    now = now or datetime.now(timezone.utc)
    try:
        promo = (
            db.query(PromoCode)
            .filter(PromoCode.code == code.upper(), PromoCode.is_active.is_(True))
            .first()
        )
    except SQLAlchemyError as e:
        log.error(f"Promo code lookup for {code.upper()} failed: {e}")
        raise APIError("Database error", status_code=500, valid=False) from e
    if promo is None:
        log.info(f"Promo code {code.upper()} not found or inactive")
        _reject("Invalid promo code")

    if now < _as_utc(promo.valid_from) or (promo.valid_until and now > _as_utc(promo.valid_until)):
        _reject("Promo code is not valid at this time")

    if promo.usage_limit and promo.used_count >= promo.usage_limit:
        _reject("Promo code has reached its usage limit")

    if order_amount < promo.min_order_amount:
        _reject(f"Minimum order amount of ₹{promo.min_order_amount:g} required for this promo code")

    return {
        "valid": True,
        "code": promo.code,
        "discount": promo.discount_value,
        "type": promo.discount_type,
        "description": promo.description,
        "discountAmount": calculate_discount(promo, order_amount),
        "minOrderAmount": promo.min_order_amount,
        "maxDiscountAmount": promo.max_discount_amount,
    }
