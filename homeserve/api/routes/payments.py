"""
Payment routes.

- POST /payments/create-order       gateway order for a booking
- POST /payments/verify             client-reported signature check
- POST /payments/webhook            gateway-initiated event (signed body, no bearer)
- GET  /payments/payment/{id}       gateway payment detail
- POST /payments/refund             admin refund
"""
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field

from homeserve.api.dependencies import get_current_user, get_payment_service, require_admin
from homeserve.api.routes.bookings import BookingResponse, to_response
from homeserve.lib.logging import get_logger
from homeserve.models.users import User
from homeserve.services.payment_service import PaymentService


logger = get_logger(__name__)
router = APIRouter(prefix="/payments", tags=["payments"])


class CreateOrderRequest(BaseModel):
    booking_id: UUID


class CreateOrderResponse(BaseModel):
    key_id: str
    order_id: str
    amount: int = Field(..., description="Amount in minor units (paise)")
    currency: str
    receipt: str
    booking_id: UUID


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)
    booking_id: UUID


class VerifyPaymentResponse(BaseModel):
    success: bool = True
    message: str = "Payment verified"
    booking: BookingResponse


class RefundRequest(BaseModel):
    payment_id: str = Field(..., min_length=1)
    amount: Optional[float] = Field(None, gt=0, description="Major units; full refund when omitted")


@router.post("/create-order", response_model=CreateOrderResponse)
async def create_order(
    request: CreateOrderRequest,
    user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
) -> CreateOrderResponse:
    order = await payments.create_order(request.booking_id, user)
    return CreateOrderResponse(**order)


@router.post("/verify", response_model=VerifyPaymentResponse)
def verify_payment(
    request: VerifyPaymentRequest,
    user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
) -> VerifyPaymentResponse:
    booking = payments.verify_payment(
        order_id=request.razorpay_order_id,
        payment_id=request.razorpay_payment_id,
        signature=request.razorpay_signature,
        booking_id=request.booking_id,
        caller=user,
    )
    return VerifyPaymentResponse(booking=to_response(booking))


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    payments: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    """
    Gateway webhook. The signature covers the raw body bytes, so the body
    is read before any JSON parsing.
    """
    raw_body = await request.body()
    return payments.handle_webhook(raw_body, x_razorpay_signature)


@router.get("/payment/{payment_id}")
async def get_payment(
    payment_id: str,
    user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    return await payments.get_payment_detail(payment_id, user)


@router.post("/refund")
async def refund_payment(
    request: RefundRequest,
    admin: User = Depends(require_admin),
    payments: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    return await payments.refund(request.payment_id, request.amount, admin)
