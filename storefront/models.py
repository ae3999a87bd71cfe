import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from storefront.database import Base


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, index=True, nullable=False)
    subtotal = Column(Float, nullable=False, default=0)
    total = Column(Float, nullable=False, default=0)
    shipping_amount = Column(Float, nullable=False, default=0)
    discount_amount = Column(Float, nullable=False, default=0)
    status = Column(String, nullable=False, default="pending")  # pending | processing | shipped | delivered | cancelled | refunded
    currency = Column(String, nullable=False, default="INR")

    # Razorpay identifiers; one stored order per payment
    payment_id = Column(String, unique=True, index=True, nullable=True)
    payment_order_id = Column(String, index=True, nullable=True)
    payment_signature = Column(String, nullable=True)
    payment_status = Column(String, nullable=False, default="pending")  # pending | paid | failed | refunded
    payment_method = Column(String, nullable=False, default="razorpay")

    refund_id = Column(String, nullable=True)
    refund_amount = Column(Float, nullable=True)
    refund_status = Column(String, nullable=True)  # pending | processed | failed
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String, primary_key=True, default=_uuid)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String, nullable=False)
    product_name = Column(String, nullable=False)
    product_price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False)
    total_price = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")


class PromoCode(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True)
    code = Column(String, unique=True, index=True, nullable=False)  # stored uppercase
    description = Column(Text, nullable=True)
    discount_type = Column(String, nullable=False)  # percentage | fixed | shipping
    discount_value = Column(Float, nullable=False, default=0)
    min_order_amount = Column(Float, nullable=False, default=0)
    max_discount_amount = Column(Float, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
