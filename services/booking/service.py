"""
services/booking/service.py
Booking lifecycle: pricing, creation with payment authorization,
participant views, status transitions, and cancellation.

States: pending → confirmed → completed
        pending | confirmed → cancelled
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from config.settings import settings
from services.payment import service as payment_service
from services.payment.gateway import Authorization, PaymentGateway
from shared.exceptions import Forbidden, InvalidRequest, InvalidTransition, NotFound
from shared.models.models import (
    BOOKING_TRANSITIONS,
    Booking,
    BookingStatus,
    Companion,
    PaymentStatus,
    Profile,
    UserType,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


# ── Pricing ───────────────────────────────────────────────────

def compute_amounts(hourly_rate: Decimal, duration_hours: Decimal) -> tuple[Decimal, Decimal, Decimal]:
    """
    (total, platform_fee, companion_earnings) for a booking.
    Earnings are the remainder, so the three always reconcile exactly.
    """
    total = (Decimal(hourly_rate) * Decimal(duration_hours)).quantize(CENTS, rounding=ROUND_HALF_UP)
    fee_rate = Decimal(str(settings.PLATFORM_FEE_PERCENT)) / 100
    platform_fee = (total * fee_rate).quantize(CENTS, rounding=ROUND_HALF_UP)
    return total, platform_fee, total - platform_fee


def ensure_transition(current: BookingStatus, target: BookingStatus) -> None:
    if target not in BOOKING_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot move booking from '{current.value}' to '{target.value}'"
        )


# ── Helpers ───────────────────────────────────────────────────

def _ensure_can_view(booking: Booking, user: Profile) -> None:
    if user.user_type != UserType.ADMIN and not booking.is_participant(user.id):
        raise Forbidden("Not a participant in this booking")


def _summary(profile: Optional[Profile]) -> Optional[dict]:
    if profile is None:
        return None
    return {"id": profile.id, "display_name": profile.display_name, "avatar_url": profile.avatar_url}


def with_parties(booking: Booking, client: Optional[Profile], companion: Optional[Profile]) -> dict:
    data = {col.name: getattr(booking, col.name) for col in Booking.__table__.columns}
    data["client"] = _summary(client)
    data["companion"] = _summary(companion)
    return data


# ── Operations ────────────────────────────────────────────────

async def create_booking(
    db: AsyncSession,
    gateway: PaymentGateway,
    client: Profile,
    companion_id: uuid.UUID,
    start_time: datetime,
    duration_hours: Decimal,
    service_type: str,
    location: Optional[str] = None,
    special_requests: Optional[str] = None,
) -> tuple[Booking, Authorization]:
    """
    Price and persist a pending booking, then open its payment authorization.
    The booking is committed first: if authorization fails it stays pending
    and unpaid, and the gateway error propagates.
    """
    if companion_id == client.id:
        raise Forbidden("You cannot book yourself")

    companion = await db.scalar(select(Companion).where(Companion.id == companion_id))
    if not companion:
        raise NotFound("Companion not found")
    if not companion.is_available:
        raise InvalidRequest("Companion is not accepting bookings", status_code=400)

    total, platform_fee, earnings = compute_amounts(companion.hourly_rate, duration_hours)

    booking = Booking(
        client_id=client.id,
        companion_id=companion.id,
        start_time=start_time,
        end_time=start_time + timedelta(hours=float(duration_hours)),
        duration_hours=duration_hours,
        service_type=service_type,
        location=location,
        special_requests=special_requests,
        status=BookingStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        total_amount=total,
        platform_fee=platform_fee,
        companion_earnings=earnings,
    )
    db.add(booking)
    await db.commit()
    logger.info(f"Booking {booking.id} created: total={total} fee={platform_fee}")

    authorization = await payment_service.authorize(db, gateway, booking.id, total)
    return booking, authorization


async def get_booking(db: AsyncSession, booking_id: uuid.UUID, user: Profile) -> dict:
    ClientProfile = aliased(Profile)
    CompanionProfile = aliased(Profile)
    row = (
        await db.execute(
            select(Booking, ClientProfile, CompanionProfile)
            .outerjoin(ClientProfile, ClientProfile.id == Booking.client_id)
            .outerjoin(CompanionProfile, CompanionProfile.id == Booking.companion_id)
            .where(Booking.id == booking_id)
        )
    ).first()
    if row is None:
        raise NotFound("Booking not found")
    _ensure_can_view(row[0], user)
    return with_parties(*row)


async def list_for_user(db: AsyncSession, user: Profile) -> list[dict]:
    """Bookings where the user is client or companion, newest start_time first."""
    ClientProfile = aliased(Profile)
    CompanionProfile = aliased(Profile)
    result = await db.execute(
        select(Booking, ClientProfile, CompanionProfile)
        .outerjoin(ClientProfile, ClientProfile.id == Booking.client_id)
        .outerjoin(CompanionProfile, CompanionProfile.id == Booking.companion_id)
        .where(or_(Booking.client_id == user.id, Booking.companion_id == user.id))
        .order_by(Booking.start_time.desc())
    )
    return [with_parties(*row) for row in result.all()]


async def update_status(
    db: AsyncSession,
    booking_id: uuid.UUID,
    user: Profile,
    status: BookingStatus,
    notes: Optional[str] = None,
) -> Booking:
    """
    Move a booking along BOOKING_TRANSITIONS. Either participant or an admin
    may do this. Illegal moves, including same-status writes and anything out
    of a terminal state, raise InvalidTransition (409) and change nothing.
    """
    booking = await payment_service.get_booking_or_404(db, booking_id)
    _ensure_can_view(booking, user)
    ensure_transition(booking.status, status)

    booking.status = status
    if notes is not None:
        booking.notes = notes
    now = datetime.now(timezone.utc)
    if status == BookingStatus.CONFIRMED:
        booking.confirmed_at = now
    elif status == BookingStatus.CANCELLED:
        booking.cancelled_at = now
        booking.cancelled_by = user.id

    await db.commit()
    logger.info(f"Booking {booking.id} -> {status.value} by {user.id}")
    return booking


async def cancel(
    db: AsyncSession,
    booking_id: uuid.UUID,
    user: Profile,
    reason: str,
) -> Booking:
    """Participant cancellation. Refunds are a separate, explicit call."""
    booking = await payment_service.get_booking_or_404(db, booking_id)
    if not booking.is_participant(user.id):
        raise Forbidden("Only the client or companion can cancel this booking")
    ensure_transition(booking.status, BookingStatus.CANCELLED)

    booking.status = BookingStatus.CANCELLED
    booking.cancellation_reason = reason
    booking.cancelled_by = user.id
    booking.cancelled_at = datetime.now(timezone.utc)

    await db.commit()
    logger.info(f"Booking {booking.id} cancelled by {user.id}")
    return booking
