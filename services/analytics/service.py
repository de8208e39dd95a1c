"""
services/analytics/service.py
Behaviour-event recording and dashboard aggregation.

Aggregation runs in-process over the fetched rows, so every figure is
bounded by what a single query returns.
"""

import re
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.exceptions import InvalidRequest
from shared.models.models import BehaviorEvent, Booking, BookingStatus, PaymentStatus

ENGAGEMENT_PAGE_SIZE = 100
LOGIN_EVENT = "login"

_TIME_RANGE = re.compile(r"^(\d+)d?$")


def parse_time_range(time_range: str) -> int:
    """'7d' or '7' -> 7 trailing days. Anything else is rejected."""
    match = _TIME_RANGE.match((time_range or "").strip().lower())
    if not match or int(match.group(1)) < 1:
        raise InvalidRequest(f"Invalid time range '{time_range}', expected e.g. '7d' or '30d'")
    return int(match.group(1))


async def track_event(
    db: AsyncSession,
    event_type: str,
    event_data: Optional[dict[str, Any]] = None,
    user_id: Optional[uuid.UUID] = None,
) -> BehaviorEvent:
    """Append one behaviour event. Errors propagate to the caller."""
    event = BehaviorEvent(user_id=user_id, event_type=event_type, event_data=event_data or {})
    db.add(event)
    await db.flush()
    return event


async def dashboard_metrics(
    db: AsyncSession,
    time_range: str = "30d",
    now: Optional[datetime] = None,
) -> dict:
    days = parse_time_range(time_range)
    since = (now or datetime.now(timezone.utc)) - timedelta(days=days)

    events = (
        await db.execute(
            select(BehaviorEvent.user_id, BehaviorEvent.event_type)
            .where(BehaviorEvent.created_at >= since)
        )
    ).all()

    bookings = (
        await db.execute(
            select(Booking.status, Booking.total_amount).where(Booking.created_at >= since)
        )
    ).all()

    paid = (
        await db.execute(
            select(Booking.total_amount, Booking.platform_fee).where(
                Booking.payment_status == PaymentStatus.PAID,
                Booking.created_at >= since,
            )
        )
    ).all()

    return {
        "time_range": time_range,
        "since": since,
        "users": {
            "total": len({row.user_id for row in events if row.user_id is not None}),
            "active": sum(1 for row in events if row.event_type == LOGIN_EVENT),
        },
        "bookings": {
            "total": len(bookings),
            "completed": sum(1 for row in bookings if row.status == BookingStatus.COMPLETED),
            "revenue": sum((Decimal(row.total_amount) for row in paid), Decimal("0")),
            "platform_fees": sum((Decimal(row.platform_fee) for row in paid), Decimal("0")),
        },
    }


async def user_engagement(db: AsyncSession, user_id: uuid.UUID) -> dict:
    """Summary of the user's latest events; counts cover the fetched page only."""
    rows = (
        await db.execute(
            select(BehaviorEvent.event_type, BehaviorEvent.created_at)
            .where(BehaviorEvent.user_id == user_id)
            .order_by(BehaviorEvent.created_at.desc())
            .limit(ENGAGEMENT_PAGE_SIZE)
        )
    ).all()

    return {
        "user_id": user_id,
        "last_activity": rows[0].created_at if rows else None,
        "total_events": len(rows),
        "event_types": dict(Counter(row.event_type for row in rows)),
    }
