"""
services/user/router.py
Profile reads and self-service edits.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.exceptions import NotFound
from shared.middleware.auth import get_current_user
from shared.models.models import Profile
from shared.schemas.schemas import ProfileResponse, ProfileSummary, ProfileUpdateRequest

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.get("/me", response_model=ProfileResponse)
async def get_me(current_user: Profile = Depends(get_current_user)):
    """Return the currently authenticated user's profile."""
    return ProfileResponse.model_validate(current_user)


@router.put("/me", response_model=ProfileResponse)
async def update_me(
    data: ProfileUpdateRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Update display fields (display_name, avatar_url).
    Only non-None fields in the request body are updated; user_type and
    earnings are never writable here.
    """
    updates = data.model_dump(exclude_none=True)
    if not updates:
        return ProfileResponse.model_validate(current_user)

    for field, value in updates.items():
        setattr(current_user, field, value)

    await db.commit()
    await db.refresh(current_user)
    return ProfileResponse.model_validate(current_user)


@router.get("/{user_id}", response_model=ProfileSummary)
async def get_profile_summary(
    user_id: UUID,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    profile = await db.scalar(select(Profile).where(Profile.id == user_id))
    if not profile:
        raise NotFound("Profile not found")
    return ProfileSummary.model_validate(profile)
