"""
shared/utils/security.py
Identity-provider JWT verification, session deny-list keys,
and Razorpay signature helpers.
"""

import hashlib
import hmac
from datetime import datetime, timezone

from jose import JWTError, jwt

from config.settings import settings


# ── JWT ───────────────────────────────────────────────────────

def verify_access_token(token: str) -> dict:
    """
    Decode and verify an access token issued by the identity provider.
    Tokens are HS256-signed with the provider's JWT secret.
    Raises JWTError on invalid/expired token.
    """
    payload = jwt.decode(
        token,
        settings.IDENTITY_JWT_SECRET,
        algorithms=["HS256"],
        audience=settings.IDENTITY_JWT_AUDIENCE,
    )
    if not payload.get("sub"):
        raise JWTError("Token has no subject")
    return payload


def token_user_type(payload: dict) -> str | None:
    """The user_type custom attribute the provider stores in user metadata."""
    return (payload.get("user_metadata") or {}).get("user_type")


def hash_token(token: str) -> str:
    """SHA-256 hash, used as the deny-list key for a revoked token."""
    return hashlib.sha256(token.encode()).hexdigest()


def session_key(payload: dict, token: str) -> str:
    """Deny-list key: the provider's session id when present, else the token hash."""
    return payload.get("session_id") or payload.get("jti") or hash_token(token)


def get_token_remaining_ttl(payload: dict) -> int:
    """Returns seconds until token expiry. Used for the deny-list TTL."""
    exp = payload.get("exp", 0)
    remaining = exp - datetime.now(timezone.utc).timestamp()
    return max(0, int(remaining))


# ── Razorpay Signatures ───────────────────────────────────────

def verify_razorpay_signature(
    order_id: str,
    payment_id: str,
    signature: str,
    secret: str | None = None,
) -> bool:
    """Verify a checkout signature (order_id|payment_id) using HMAC-SHA256."""
    body = f"{order_id}|{payment_id}"
    expected = hmac.new(
        (secret or settings.RAZORPAY_KEY_SECRET).encode(),
        body.encode(),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected, signature)


def verify_razorpay_webhook_signature(payload_body: bytes, signature: str) -> bool:
    """Verify Razorpay webhook body signature."""
    expected = hmac.new(
        settings.RAZORPAY_WEBHOOK_SECRET.encode(),
        payload_body,
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected, signature)
