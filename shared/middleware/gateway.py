"""
shared/middleware/gateway.py
Page-route guard: sends anonymous visitors of member pages to /login
and non-admins of admin pages to /dashboard. JSON API routes under /api
are exempt and enforce access through their own dependencies.
"""

import re
from typing import Optional

from fastapi import Request
from fastapi.responses import RedirectResponse
from jose import JWTError

from shared.models.models import UserType
from shared.utils.security import token_user_type, verify_access_token

PROTECTED_PREFIXES = ("/dashboard", "/bookings", "/messages", "/profile")
ADMIN_PREFIXES = ("/admin",)

EXEMPT_PATHS = re.compile(
    r"^/(api|_next/static|_next/image|favicon\.ico|health|metrics|docs|redoc|openapi\.json)(/|$)"
    r"|\.(svg|png|jpg|jpeg|gif|webp)$"
)


def _session_payload(request: Request) -> Optional[dict]:
    token = request.cookies.get("access_token")
    auth_header = request.headers.get("Authorization", "")
    if not token and auth_header.startswith("Bearer "):
        token = auth_header[7:]
    if not token:
        return None
    try:
        return verify_access_token(token)
    except JWTError:
        return None


async def route_guard_middleware(request: Request, call_next):
    path = request.url.path
    if EXEMPT_PATHS.search(path):
        return await call_next(request)

    is_protected = path.startswith(PROTECTED_PREFIXES)
    is_admin = path.startswith(ADMIN_PREFIXES)
    if not (is_protected or is_admin):
        return await call_next(request)

    session = _session_payload(request)
    if is_protected and session is None:
        return RedirectResponse(url="/login")

    if is_admin and (session is None or token_user_type(session) != UserType.ADMIN.value):
        return RedirectResponse(url="/dashboard")

    return await call_next(request)
