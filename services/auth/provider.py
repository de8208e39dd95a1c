"""
services/auth/provider.py
Thin async client for the hosted identity provider (GoTrue REST API).
Account storage, password hashing, and email delivery all live there;
this module only forwards calls and normalizes failures.
"""

import logging
from typing import Any, Optional

import httpx

from config.settings import settings
from shared.exceptions import AuthError, UpstreamError

logger = logging.getLogger(__name__)


class IdentityProvider:
    def __init__(self, base_url: str, anon_key: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/") + "/auth/v1"
        self.anon_key = anon_key
        self.timeout = timeout

    def _headers(self, access_token: Optional[str] = None) -> dict:
        headers = {"apikey": self.anon_key, "Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        access_token: Optional[str] = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    json=json,
                    params=params,
                    headers=self._headers(access_token),
                )
        except httpx.HTTPError as e:
            logger.error(f"Identity provider unreachable: {e}")
            raise UpstreamError(f"Identity provider error: {e}") from e

        if response.status_code >= 500:
            raise UpstreamError(f"Identity provider error: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise AuthError(
                _error_message(response),
                status_code=401 if response.status_code in (401, 403) else 400,
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    # ── Operations ────────────────────────────────────────────

    async def sign_up(self, email: str, password: str, user_type: str) -> dict:
        """
        Create an account. Returns a session payload when sign-in is immediate,
        or just the user object when email confirmation is pending.
        """
        return await self._request(
            "POST",
            "/signup",
            json={"email": email, "password": password, "data": {"user_type": user_type}},
        )

    async def sign_in_with_password(self, email: str, password: str) -> dict:
        return await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/logout", access_token=access_token)

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        await self._request(
            "POST", "/recover", params={"redirect_to": redirect_to}, json={"email": email}
        )

    async def update_user(self, access_token: str, **attributes: Any) -> dict:
        return await self._request("PUT", "/user", json=attributes, access_token=access_token)

    async def get_user(self, access_token: str) -> dict:
        return await self._request("GET", "/user", access_token=access_token)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    return (
        body.get("msg")
        or body.get("error_description")
        or body.get("message")
        or body.get("error")
        or f"HTTP {response.status_code}"
    )


def signup_user(payload: dict) -> dict:
    """GoTrue returns either {"user": ..., "access_token": ...} or the bare user."""
    return payload.get("user") or payload


_provider: Optional[IdentityProvider] = None


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency returning the shared provider client."""
    global _provider
    if _provider is None:
        _provider = IdentityProvider(
            settings.IDENTITY_URL,
            settings.IDENTITY_ANON_KEY,
            timeout=settings.IDENTITY_TIMEOUT_SECONDS,
        )
    return _provider
