"""
shared/exceptions.py
Error taxonomy shared by all services.

Each error is an HTTPException, so FastAPI renders it as {"detail": ...}
with the matching status code wherever it is raised.
"""

from typing import Optional

from fastapi import HTTPException, status


class AppError(HTTPException):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail: str = "Internal error"

    def __init__(
        self,
        detail: Optional[str] = None,
        status_code: Optional[int] = None,
        headers: Optional[dict] = None,
    ):
        super().__init__(
            status_code=status_code or type(self).status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )


class NotAuthenticated(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Not authenticated"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not authorized"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class AuthError(AppError):
    """Identity provider rejected the request (bad credentials, duplicate email)."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Authentication failed"


class InvalidRequest(AppError):
    status_code = 422
    default_detail = "Invalid request"


class InvalidTransition(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Illegal status transition"


class UpstreamError(AppError):
    """An identity, data, or payment provider call failed. Raise with `from exc`."""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Upstream service error"
