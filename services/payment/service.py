"""
services/payment/service.py
Authorization, reconciliation, and refund of booking payments.

confirm() is the single place a booking becomes paid. It is safe to call
repeatedly (client callback, webhook, reconciliation job): the paid flag
and the companion earnings credit are applied together, once.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.payment.gateway import (
    SUCCEEDED,
    Authorization,
    PaymentGateway,
    Refund,
    to_minor_units,
)
from shared.exceptions import InvalidRequest, InvalidTransition, NotFound
from shared.models.models import Booking, BookingStatus, PaymentStatus, Profile

logger = logging.getLogger(__name__)


async def get_booking_or_404(db: AsyncSession, booking_id: uuid.UUID) -> Booking:
    booking = await db.scalar(select(Booking).where(Booking.id == booking_id))
    if not booking:
        raise NotFound("Booking not found")
    return booking


async def authorize(
    db: AsyncSession,
    gateway: PaymentGateway,
    booking_id: uuid.UUID,
    amount: Decimal,
    currency: Optional[str] = None,
) -> Authorization:
    """
    Open a gateway authorization for the booking and record its id.
    No idempotency key: a retried call creates a second authorization.
    """
    booking = await get_booking_or_404(db, booking_id)
    currency = currency or settings.DEFAULT_CURRENCY

    authorization = gateway.create_authorization(
        to_minor_units(amount),
        currency,
        receipt=str(booking.id),
        notes={
            "booking_id": str(booking.id),
            "client_id": str(booking.client_id),
            "companion_id": str(booking.companion_id),
        },
    )

    booking.payment_intent_id = authorization.id
    booking.payment_status = PaymentStatus.PENDING
    await db.commit()

    logger.info(f"Authorization {authorization.id} opened for booking {booking.id}")
    return authorization


async def confirm(
    db: AsyncSession,
    gateway: PaymentGateway,
    authorization_id: str,
) -> tuple[Authorization, Optional[Booking], bool]:
    """
    Reconcile a gateway authorization into its booking.
    Returns (authorization, booking, applied). Nothing changes unless the
    gateway reports "succeeded" and the booking is still unpaid and live:
    paid, refunded and cancelled bookings are left as they are.
    """
    authorization = gateway.retrieve_authorization(authorization_id)
    booking = await db.scalar(select(Booking).where(Booking.payment_intent_id == authorization_id))

    if authorization.status != SUCCEEDED or booking is None:
        return authorization, booking, False

    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.payment_status == PaymentStatus.PENDING,
            Booking.status.in_((BookingStatus.PENDING, BookingStatus.CONFIRMED)),
        )
        .values(
            payment_status=PaymentStatus.PAID,
            status=BookingStatus.CONFIRMED,
            payment_reference=authorization.payment_id,
            confirmed_at=datetime.now(timezone.utc),
        )
    )
    if result.rowcount == 0:
        return authorization, booking, False

    await db.execute(
        update(Profile)
        .where(Profile.id == booking.companion_id)
        .values(total_earnings=Profile.total_earnings + booking.companion_earnings)
    )
    await db.commit()
    await db.refresh(booking)

    logger.info(
        f"Booking {booking.id} paid via {authorization_id}; "
        f"credited {booking.companion_earnings} to companion {booking.companion_id}"
    )
    return authorization, booking, True


async def refund(
    db: AsyncSession,
    gateway: PaymentGateway,
    booking_id: uuid.UUID,
    amount: Decimal,
    reason: str,
) -> tuple[Booking, Refund]:
    """Refund up to the booking total, once. Cancels the booking."""
    booking = await get_booking_or_404(db, booking_id)
    if not booking.payment_reference:
        raise NotFound("Payment not found")
    if booking.payment_status == PaymentStatus.REFUNDED:
        raise InvalidTransition("Booking has already been refunded")
    if amount <= 0 or amount > booking.total_amount:
        raise InvalidRequest(
            f"Refund amount must be between 0 and the booking total {booking.total_amount}"
        )

    gateway_refund = gateway.create_refund(
        booking.payment_reference,
        to_minor_units(amount),
        notes={"booking_id": str(booking.id), "reason": reason},
    )

    booking.payment_status = PaymentStatus.REFUNDED
    booking.status = BookingStatus.CANCELLED
    booking.cancellation_reason = reason
    booking.refund_id = gateway_refund.id
    booking.refunded_amount = amount
    booking.cancelled_at = booking.cancelled_at or datetime.now(timezone.utc)
    await db.commit()

    logger.info(f"Refund {gateway_refund.id} of {amount} issued for booking {booking.id}")
    return booking, gateway_refund
