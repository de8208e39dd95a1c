"""
services/auth/router.py
Account and session endpoints. Credentials never touch this service:
every operation is forwarded to the identity provider, and a local
Profile row is created on signup with the provider-issued id.
"""

import logging
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db, get_db_context
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from services.analytics.service import LOGIN_EVENT, track_event
from services.auth.provider import IdentityProvider, get_identity_provider, signup_user
from shared.exceptions import AuthError, NotFound
from shared.middleware.auth import TokenData, get_current_user, get_token_data
from shared.models.models import Profile, UserType
from shared.schemas.schemas import (
    CurrentSessionResponse,
    MessageResponse,
    PasswordChangeRequest,
    PasswordResetRequest,
    ProfileResponse,
    RegisterRequest,
    RegisterResponse,
    SessionResponse,
    SignInRequest,
)
from shared.utils.security import get_token_remaining_ttl

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


# ── Helpers ───────────────────────────────────────────────────

def _session_response(payload: dict, profile: Profile) -> SessionResponse:
    return SessionResponse(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token"),
        expires_in=payload.get("expires_in"),
        user=ProfileResponse.model_validate(profile),
    )


async def _record_login(user_id: uuid.UUID) -> None:
    """Background task: runs after the response with its own session."""
    async with get_db_context() as db:
        await track_event(db, LOGIN_EVENT, {"method": "password"}, user_id=user_id)


# ── Endpoints ─────────────────────────────────────────────────

@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    provider: IdentityProvider = Depends(get_identity_provider),
):
    """
    Create the provider account, then exactly one Profile with the same id.
    If the profile insert fails the provider account is left in place.
    An email that already has a profile is rejected even when the provider
    accepts the signup (it answers repeats with a placeholder user).
    """
    if await db.scalar(select(Profile.id).where(Profile.email == data.email)):
        raise AuthError("User already registered")

    payload = await provider.sign_up(data.email, data.password, data.user_type)
    provider_user = signup_user(payload)

    profile = Profile(
        id=uuid.UUID(provider_user["id"]),
        email=data.email,
        user_type=UserType(data.user_type),
        display_name=data.display_name,
    )
    db.add(profile)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.warning(f"Profile insert for {data.email} conflicted: {exc.orig}")
        raise AuthError("User already registered") from exc
    logger.info(f"Registered {profile.user_type.value} profile {profile.id}")

    session = _session_response(payload, profile) if payload.get("access_token") else None
    return RegisterResponse(user=ProfileResponse.model_validate(profile), session=session)


@router.post("/sign-in", response_model=SessionResponse)
async def sign_in(
    data: SignInRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    provider: IdentityProvider = Depends(get_identity_provider),
):
    payload = await provider.sign_in_with_password(data.email, data.password)
    user_id = uuid.UUID(payload["user"]["id"])

    profile = await db.scalar(select(Profile).where(Profile.id == user_id))
    if not profile:
        raise NotFound("Profile not found")

    background_tasks.add_task(_record_login, profile.id)
    return _session_response(payload, profile)


@router.post("/sign-out", response_model=MessageResponse)
async def sign_out(
    token_data: TokenData = Depends(get_token_data),
    redis=Depends(get_redis),
    provider: IdentityProvider = Depends(get_identity_provider),
):
    """Revoke the provider session, then deny-list the token until it expires."""
    await provider.sign_out(token_data.token)

    ttl = get_token_remaining_ttl(token_data.payload)
    if ttl > 0:
        await RedisCache(redis).revoke_token(token_data.session_key, ttl)

    return MessageResponse(message="Signed out successfully")


@router.post("/password/reset", response_model=MessageResponse)
async def request_password_reset(
    data: PasswordResetRequest,
    provider: IdentityProvider = Depends(get_identity_provider),
):
    await provider.reset_password_for_email(
        data.email, redirect_to=f"{settings.SITE_URL}/reset-password"
    )
    return MessageResponse(message="If the account exists, a reset email has been sent")


@router.put("/password", response_model=MessageResponse)
async def change_password(
    data: PasswordChangeRequest,
    token_data: TokenData = Depends(get_token_data),
    provider: IdentityProvider = Depends(get_identity_provider),
):
    await provider.update_user(token_data.token, password=data.password)
    return MessageResponse(message="Password updated")


@router.get("/session", response_model=CurrentSessionResponse)
async def get_session(
    token_data: TokenData = Depends(get_token_data),
    current_user: Profile = Depends(get_current_user),
    provider: IdentityProvider = Depends(get_identity_provider),
):
    """Provider-side user object alongside the local profile."""
    provider_user = await provider.get_user(token_data.token)
    return CurrentSessionResponse(
        user=ProfileResponse.model_validate(current_user),
        provider_user=provider_user,
    )


@router.get("/me", response_model=ProfileResponse)
async def get_me(current_user: Profile = Depends(get_current_user)):
    """Returns the authenticated user's profile."""
    return ProfileResponse.model_validate(current_user)
