"""
services/companion/router.py
Companion listings and the companion's own rate card.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.exceptions import NotFound
from shared.middleware.auth import require_companion
from shared.models.models import Companion, Profile
from shared.schemas.schemas import CompanionResponse, CompanionUpsertRequest

router = APIRouter(prefix="/api/companions", tags=["Companions"])


def _companion_response(companion: Companion, profile: Profile) -> CompanionResponse:
    return CompanionResponse(
        id=companion.id,
        hourly_rate=companion.hourly_rate,
        bio=companion.bio,
        is_available=companion.is_available,
        display_name=profile.display_name,
        avatar_url=profile.avatar_url,
    )


@router.get("", response_model=list[CompanionResponse])
async def list_companions(
    max_rate: Optional[Decimal] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Available companions, cheapest first."""
    query = (
        select(Companion, Profile)
        .join(Profile, Profile.id == Companion.id)
        .where(Companion.is_available.is_(True))
    )
    if max_rate is not None:
        query = query.where(Companion.hourly_rate <= max_rate)
    query = query.order_by(Companion.hourly_rate.asc()).offset((page - 1) * per_page).limit(per_page)

    result = await db.execute(query)
    return [_companion_response(c, p) for c, p in result.all()]


@router.put("/me", response_model=CompanionResponse)
async def upsert_my_listing(
    data: CompanionUpsertRequest,
    current_user: Profile = Depends(require_companion),
    db: AsyncSession = Depends(get_db),
):
    """Create or update the caller's companion listing."""
    companion = await db.scalar(select(Companion).where(Companion.id == current_user.id))
    if companion is None:
        companion = Companion(id=current_user.id)
        db.add(companion)

    companion.hourly_rate = data.hourly_rate
    companion.bio = data.bio
    companion.is_available = data.is_available

    await db.commit()
    return _companion_response(companion, current_user)


@router.get("/{companion_id}", response_model=CompanionResponse)
async def get_companion(companion_id: UUID, db: AsyncSession = Depends(get_db)):
    row = (
        await db.execute(
            select(Companion, Profile)
            .join(Profile, Profile.id == Companion.id)
            .where(Companion.id == companion_id)
        )
    ).first()
    if row is None:
        raise NotFound("Companion not found")
    return _companion_response(*row)
