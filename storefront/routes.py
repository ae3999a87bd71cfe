from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from storefront import orders
from storefront.auth import verify_token
from storefront.database import get_db
from storefront.logging_config import get_logger
from storefront.payments import PaymentService
from storefront.promo import validate_promo

log = get_logger(__name__)

router = APIRouter()


class CreateOrderRequest(BaseModel):
    amount: Optional[float] = None
    currency: str = "INR"
    receipt: Optional[str] = None
    notes: Dict[str, Any] = Field(default_factory=dict)


class VerifyPaymentRequest(BaseModel):
    razorpay_payment_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class CaptureRequest(BaseModel):
    amount: Optional[float] = None
    currency: str = "INR"


class RefundRequest(BaseModel):
    amount: Optional[float] = None
    speed: str = "normal"
    notes: Dict[str, Any] = Field(default_factory=dict)
    receipt: Optional[str] = None


class PromoValidateRequest(BaseModel):
    code: Optional[str] = None
    orderAmount: float = 0


class OrderItemIn(BaseModel):
    product_id: str
    product_name: Optional[str] = None
    product_price: float = Field(..., ge=0)
    quantity: int = Field(..., gt=0)


class PaymentInfo(BaseModel):
    payment_id: Optional[str] = None
    payment_order_id: Optional[str] = None
    payment_signature: Optional[str] = None
    payment_status: Optional[str] = None
    payment_method: Optional[str] = None
    currency: Optional[str] = None


class RecordOrderRequest(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    payment: Optional[PaymentInfo] = None
    shipping_amount: float = Field(orders.DEFAULT_SHIPPING_AMOUNT, ge=0)


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service


def configured_payments(service: PaymentService = Depends(get_payment_service)) -> PaymentService:
    service.check_configuration()
    return service


# --- Razorpay ---

@router.post("/api/razorpay/create-order")
def create_order(body: CreateOrderRequest, payments: PaymentService = Depends(configured_payments)):
    return payments.create_order(body.amount, body.currency, body.receipt, body.notes)


@router.post("/api/razorpay/verify-payment")
def verify_payment(body: VerifyPaymentRequest, payments: PaymentService = Depends(configured_payments)):
    return payments.verify_payment(body.razorpay_payment_id, body.razorpay_order_id, body.razorpay_signature)


@router.get("/api/razorpay/payment/{payment_id}")
def get_payment(payment_id: str, payments: PaymentService = Depends(configured_payments)):
    return payments.fetch_payment(payment_id)


@router.get("/api/razorpay/order/{order_id}")
def get_order(order_id: str, payments: PaymentService = Depends(configured_payments)):
    return payments.fetch_order(order_id)


@router.get("/api/razorpay/order/{order_id}/payments")
def get_order_payments(order_id: str, payments: PaymentService = Depends(configured_payments)):
    return payments.fetch_order_payments(order_id)


@router.post("/api/razorpay/payment/{payment_id}/capture")
def capture_payment(
    payment_id: str,
    body: CaptureRequest,
    payments: PaymentService = Depends(configured_payments),
    claims=Depends(verify_token),
):
    return payments.capture_payment(payment_id, body.amount, body.currency)


@router.post("/api/razorpay/payment/{payment_id}/refund")
def refund_payment(
    payment_id: str,
    body: RefundRequest,
    payments: PaymentService = Depends(configured_payments),
    claims=Depends(verify_token),
):
    log.info(f"Refund requested for {payment_id} by {claims.get('sub')}: amount={body.amount} speed={body.speed}")
    return payments.refund_payment(payment_id, body.amount, body.speed, body.notes, body.receipt)


@router.get("/api/razorpay/config")
def razorpay_config(request: Request):
    settings = request.app.state.settings
    log.info(f"Razorpay config requested: key={settings.masked_key_id} environment={settings.environment} "
             f"test_key={settings.uses_test_key}")
    if settings.is_production and settings.uses_test_key:
        log.warning("Using TEST Razorpay key in PRODUCTION environment!")
    return {
        "key_id": settings.razorpay_key_id,
        "currency": settings.currency,
        "environment": settings.environment,
    }


async def raw_body(request: Request) -> bytes:
    return await request.body()


@router.post("/api/webhooks/razorpay")
def razorpay_webhook(
    payload: bytes = Depends(raw_body),
    x_razorpay_signature: Optional[str] = Header(None),
    payments: PaymentService = Depends(get_payment_service),
    db: Session = Depends(get_db),
):
    return payments.handle_webhook(db, payload, x_razorpay_signature)


# --- Promo codes ---

@router.post("/api/promo/validate")
def promo_validate(body: PromoValidateRequest, db: Session = Depends(get_db)):
    return validate_promo(db, body.code, body.orderAmount)


# --- Order records ---

@router.post("/api/orders")
def record_order(body: RecordOrderRequest, db: Session = Depends(get_db), claims=Depends(verify_token)):
    payment = body.payment.model_dump() if body.payment else None
    order, created = orders.record_order(
        db,
        user_id=claims["sub"],
        items=[item.model_dump() for item in body.items],
        payment=payment,
        shipping_amount=body.shipping_amount,
    )
    return JSONResponse(orders.order_to_dict(order), status_code=201 if created else 200)


@router.get("/api/orders")
def list_orders(db: Session = Depends(get_db), claims=Depends(verify_token)):
    return [orders.order_to_dict(order) for order in orders.list_user_orders(db, claims["sub"])]


# --- Health ---

@router.get("/health")
def health(request: Request):
    return {
        "status": "ok",
        "message": "Razorpay API server is running",
        "configured": request.app.state.settings.razorpay_configured,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/api/health")
def api_health(request: Request):
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "razorpay_configured": request.app.state.settings.razorpay_configured,
    }
