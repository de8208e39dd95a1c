"""
services/analytics/router.py
Behaviour tracking (public, optionally authenticated) and
admin dashboards over bookings, revenue, and engagement.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.analytics import service
from shared.exceptions import Forbidden
from shared.middleware.auth import get_current_user, get_optional_user, require_admin
from shared.models.models import Profile, UserType
from shared.schemas.schemas import (
    DashboardMetricsResponse,
    MessageResponse,
    TrackEventRequest,
    UserEngagementResponse,
)

router = APIRouter(prefix="/api/analytics", tags=["Analytics"])


@router.post("/events", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def track_event(
    data: TrackEventRequest,
    current_user: Optional[Profile] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Record a behaviour event. Anonymous events are stored without a user."""
    await service.track_event(
        db,
        data.event_type,
        data.event_data,
        user_id=current_user.id if current_user else None,
    )
    await db.commit()
    return MessageResponse(message="Event recorded")


@router.get("/dashboard", response_model=DashboardMetricsResponse)
async def get_dashboard_metrics(
    time_range: str = Query("30d", description="Trailing window, e.g. 7d or 30d"),
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await service.dashboard_metrics(db, time_range)


@router.get("/users/{user_id}/engagement", response_model=UserEngagementResponse)
async def get_user_engagement(
    user_id: UUID,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Admins can view anyone; other users only themselves."""
    if current_user.user_type != UserType.ADMIN and current_user.id != user_id:
        raise Forbidden()
    return await service.user_engagement(db, user_id)
