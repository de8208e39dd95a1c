"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
Access tokens come from the identity provider and are verified locally;
the caller's Profile is then loaded from the database.
"""

import uuid
from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.exceptions import Forbidden, NotAuthenticated
from shared.models.models import Profile, UserType
from shared.utils.security import session_key, token_user_type, verify_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict, token: str):
        self.user_id: str = payload["sub"]
        self.email: Optional[str] = payload.get("email")
        self.user_type: Optional[str] = token_user_type(payload)
        self.session_key: str = session_key(payload, token)
        self.token: str = token
        self.payload: dict = payload


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate the bearer token.
    Checks the deny-list in Redis to handle signed-out sessions.
    """
    if not credentials:
        raise NotAuthenticated("Authentication required")

    try:
        payload = verify_access_token(credentials.credentials)
    except JWTError:
        raise NotAuthenticated("Invalid or expired token")

    token_data = TokenData(payload, credentials.credentials)
    if await RedisCache(redis).is_token_revoked(token_data.session_key):
        raise NotAuthenticated("Session has been signed out")

    return token_data


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Load the caller's Profile using the token's sub claim."""
    profile = await db.scalar(select(Profile).where(Profile.id == _as_uuid(token_data.user_id)))
    if not profile:
        raise NotAuthenticated("Profile not found")
    return profile


class RoleRequired:
    """Dependency factory for user_type based access control."""

    def __init__(self, *user_types: UserType):
        self.user_types = user_types

    async def __call__(
        self,
        current_user: Profile = Depends(get_current_user),
    ) -> Profile:
        if current_user.user_type not in self.user_types:
            raise Forbidden(f"Required user type: {[t.value for t in self.user_types]}")
        return current_user


require_companion = RoleRequired(UserType.COMPANION)
require_admin = RoleRequired(UserType.ADMIN)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
) -> Optional[Profile]:
    """Returns current profile if authenticated, None otherwise. For public endpoints."""
    if not credentials:
        return None
    try:
        payload = verify_access_token(credentials.credentials)
        user_id = _as_uuid(payload["sub"])
    except (JWTError, NotAuthenticated):
        return None
    if await RedisCache(redis).is_token_revoked(session_key(payload, credentials.credentials)):
        return None
    return await db.scalar(select(Profile).where(Profile.id == user_id))


def _as_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotAuthenticated("Malformed token subject")


async def profile_from_token(token: str, db: AsyncSession, redis) -> Profile:
    """
    Resolve a raw access token to its Profile. Used where no Authorization
    header is available (WebSocket handshakes pass the token as a query param).
    """
    try:
        payload = verify_access_token(token)
    except JWTError:
        raise NotAuthenticated("Invalid or expired token")
    if await RedisCache(redis).is_token_revoked(session_key(payload, token)):
        raise NotAuthenticated("Session has been signed out")
    profile = await db.scalar(select(Profile).where(Profile.id == _as_uuid(payload["sub"])))
    if not profile:
        raise NotAuthenticated("Profile not found")
    return profile
