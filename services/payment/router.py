"""
services/payment/router.py
Razorpay integration: checkout authorization, payment confirmation
(client callback and webhook), and admin refunds.
"""

import json
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.payment import service
from services.payment.gateway import PaymentGateway, get_payment_gateway
from shared.exceptions import Forbidden, InvalidRequest, InvalidTransition
from shared.middleware.auth import get_current_user, require_admin
from shared.models.models import PaymentStatus, Profile
from shared.schemas.schemas import (
    PaymentAuthorizationResponse,
    PaymentConfirmRequest,
    PaymentConfirmResponse,
    RefundRequest,
    RefundResponse,
)
from shared.utils.security import verify_razorpay_signature, verify_razorpay_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["Payments"])

CONFIRM_EVENTS = {"order.paid", "payment.captured"}


def authorization_response(authorization, booking_id: UUID) -> PaymentAuthorizationResponse:
    return PaymentAuthorizationResponse(
        authorization_id=authorization.id,
        key_id=settings.RAZORPAY_KEY_ID,
        amount=authorization.amount,
        currency=authorization.currency,
        booking_id=booking_id,
    )


# ── Authorize (retry after a failed checkout setup) ───────────

@router.post("/bookings/{booking_id}/authorize", response_model=PaymentAuthorizationResponse)
async def authorize_booking(
    booking_id: UUID,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Open a new authorization for an unpaid booking the caller booked."""
    booking = await service.get_booking_or_404(db, booking_id)
    if booking.client_id != current_user.id:
        raise Forbidden()
    if booking.payment_status != PaymentStatus.PENDING:
        raise InvalidTransition(f"Booking payment is already {booking.payment_status.value}")

    authorization = await service.authorize(db, gateway, booking.id, booking.total_amount)
    return authorization_response(authorization, booking.id)


# ── Confirm (called from client after checkout) ───────────────

@router.post("/confirm", response_model=PaymentConfirmResponse)
async def confirm_payment(
    data: PaymentConfirmRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Reconcile the authorization with the gateway. A non-succeeded state
    is not an error: applied=false and the client polls again later.
    """
    if data.payment_id and data.signature and not verify_razorpay_signature(
        data.authorization_id, data.payment_id, data.signature
    ):
        raise InvalidRequest("Invalid payment signature", status_code=400)

    authorization, booking, applied = await service.confirm(db, gateway, data.authorization_id)
    return PaymentConfirmResponse(
        authorization_id=authorization.id,
        gateway_status=authorization.status,
        applied=applied,
        booking_id=booking.id if booking else None,
    )


# ── Razorpay Webhook ──────────────────────────────────────────

@router.post("/webhook", include_in_schema=False)
async def razorpay_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Razorpay webhook handler. Validates HMAC signature.
    order.paid / payment.captured re-run confirm for the order.
    """
    body = await request.body()
    signature = request.headers.get("X-Razorpay-Signature", "")
    if not verify_razorpay_webhook_signature(body, signature):
        raise InvalidRequest("Invalid webhook signature", status_code=400)

    payload = json.loads(body)
    event = payload.get("event")
    if event not in CONFIRM_EVENTS:
        return {"status": "ignored"}

    entities = payload.get("payload", {})
    order_id = (
        entities.get("order", {}).get("entity", {}).get("id")
        or entities.get("payment", {}).get("entity", {}).get("order_id")
    )
    if not order_id:
        return {"status": "ignored"}

    _, booking, applied = await service.confirm(db, gateway, order_id)
    if booking is None:
        logger.warning(f"Webhook {event} for unknown order {order_id}")
        return {"status": "not_found"}
    return {"status": "ok", "applied": applied}


# ── Refund ────────────────────────────────────────────────────

@router.post("/bookings/{booking_id}/refund", response_model=RefundResponse)
async def refund_booking(
    booking_id: UUID,
    data: RefundRequest,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Admin-triggered refund. Cancels the booking."""
    booking, refund = await service.refund(db, gateway, booking_id, data.amount, data.reason)
    return RefundResponse(
        refund_id=refund.id,
        booking_id=booking.id,
        amount=data.amount,
        payment_status=booking.payment_status.value,
        status=booking.status.value,
    )
