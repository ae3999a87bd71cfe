from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.logging_config import get_logger
from storefront.models import Order, OrderItem

log = get_logger(__name__)

DEFAULT_SHIPPING_AMOUNT = 99


def record_order(db: Session, user_id: str, items: list, payment: dict = None,
                 shipping_amount: float = DEFAULT_SHIPPING_AMOUNT):
    """
    Stores an order and its items, or returns the order already stored for
    the same payment id.

    The insert is attempted first and the unique constraint on
    `orders.payment_id` decides; a duplicate rolls back and the existing row
    is returned. Returns a tuple `(order, created)`.
    """
    payment = payment or {}
    payment_id = payment.get("payment_id")
    payment_status = payment.get("payment_status") or "pending"

    subtotal = sum(item["product_price"] * item["quantity"] for item in items)

    order = Order(
        user_id=user_id,
        subtotal=subtotal,
        total=subtotal + shipping_amount,
        shipping_amount=shipping_amount,
        status="processing" if payment_status == "paid" else "pending",
        payment_id=payment_id,
        payment_order_id=payment.get("payment_order_id"),
        payment_signature=payment.get("payment_signature"),
        payment_status=payment_status,
        payment_method=payment.get("payment_method") or "razorpay",
        currency=payment.get("currency") or "INR",
    )
    order.items = [
        OrderItem(
            product_id=item["product_id"],
            product_name=item.get("product_name") or "Unknown Product",
            product_price=item["product_price"],
            quantity=item["quantity"],
            total_price=item["product_price"] * item["quantity"],
        )
        for item in items
    ]

    db.add(order)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        if not payment_id:
            raise
        existing = db.query(Order).filter_by(payment_id=payment_id).one()
        log.info(f"Order for payment {payment_id} already exists: {existing.id}")
        return existing, False

    db.refresh(order)
    log.info(f"Order {order.id} stored for user {user_id} (payment: {payment_id})")
    return order, True


def list_user_orders(db: Session, user_id: str):
    return (
        db.query(Order)
        .filter_by(user_id=user_id)
        .order_by(Order.created_at.desc())
        .all()
    )


def _update(db: Session, query, fields: dict, only_from: dict = None) -> int:
    """
    Applies `fields` to every matching order. A field listed in `only_from`
    changes only while its current value is one of the given states, so
    retried or out-of-order webhooks never move an order backwards.
    """
    only_from = only_from or {}
    orders = query.all()
    for order in orders:
        for name, value in fields.items():
            allowed = only_from.get(name)
            if allowed is not None and getattr(order, name) not in allowed:
                continue
            setattr(order, name, value)
    db.commit()
    return len(orders)


def update_by_payment_id(db: Session, payment_id: str, only_from: dict = None, **fields) -> int:
    updated = _update(db, db.query(Order).filter_by(payment_id=payment_id), fields, only_from)
    if not updated:
        log.warning(f"No stored order for payment {payment_id}; update skipped")
    return updated


def update_by_payment_order_id(db: Session, payment_order_id: str, only_from: dict = None, **fields) -> int:
    updated = _update(db, db.query(Order).filter_by(payment_order_id=payment_order_id), fields, only_from)
    if not updated:
        log.warning(f"No stored order for Razorpay order {payment_order_id}; update skipped")
    return updated


def order_to_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "user_id": order.user_id,
        "subtotal": order.subtotal,
        "total": order.total,
        "shipping_amount": order.shipping_amount,
        "discount_amount": order.discount_amount,
        "status": order.status,
        "currency": order.currency,
        "payment_id": order.payment_id,
        "payment_order_id": order.payment_order_id,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "refund_id": order.refund_id,
        "refund_amount": order.refund_amount,
        "refund_status": order.refund_status,
        "refunded_at": order.refunded_at.isoformat() if order.refunded_at else None,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "order_items": [
            {
                "id": item.id,
                "product_id": item.product_id,
                "product_name": item.product_name,
                "product_price": item.product_price,
                "quantity": item.quantity,
                "total_price": item.total_price,
            }
            for item in order.items
        ],
    }
