"""
tests/conftest.py
Shared fixtures: a throwaway SQLite database, in-memory stand-ins for
Redis, the identity provider and the payment gateway, and seeded profiles.
"""

import asyncio
import os
import time
import uuid
from decimal import Decimal

# Settings are read at import time, so the environment goes first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("IDENTITY_URL", "http://identity.local")
os.environ.setdefault("IDENTITY_ANON_KEY", "anon-key")
os.environ.setdefault("IDENTITY_SERVICE_ROLE_KEY", "service-role-key")
os.environ.setdefault("IDENTITY_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "rzp_webhook_secret")
os.environ.setdefault("CLOUDINARY_CLOUD_NAME", "test")
os.environ.setdefault("CLOUDINARY_API_KEY", "test")
os.environ.setdefault("CLOUDINARY_API_SECRET", "test")
os.environ.setdefault("SENTRY_DSN", "")
os.environ.setdefault("PLAUSIBLE_DOMAIN", "example.com")
os.environ.setdefault("RATE_LIMIT_UNAUTH_PER_MINUTE", "1000")

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt

import config.redis_client as redis_module
from config.database import AsyncSessionLocal, Base, engine
from config.redis_client import get_redis
from main import app
from services.auth.provider import get_identity_provider
from services.payment.gateway import SUCCEEDED, Authorization, Refund, get_payment_gateway
from shared.exceptions import AuthError, UpstreamError
from shared.models.models import Companion, Conversation, Profile, UserType


# ── Tokens ─────────────────────────────────────────────────────────────────────

def access_token(profile: Profile, session_id: str = None) -> str:
    """Provider-style access token for the profile."""
    payload = {
        "sub": str(profile.id),
        "email": profile.email,
        "aud": "authenticated",
        "exp": int(time.time()) + 3600,
        "user_metadata": {"user_type": UserType(profile.user_type).value},
        "session_id": session_id or str(uuid.uuid4()),
    }
    return jwt.encode(payload, os.environ["IDENTITY_JWT_SECRET"], algorithm="HS256")


def auth_headers(profile: Profile, session_id: str = None) -> dict:
    """Bearer header carrying a provider-style access token for the profile."""
    return {"Authorization": f"Bearer {access_token(profile, session_id)}"}


# ── Fakes ──────────────────────────────────────────────────────────────────────

class FakePubSub:
    """Receives only what is published after subscribe(), like Redis."""

    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.channels = []
        self.closed = False
        self.inbox: asyncio.Queue = asyncio.Queue()

    async def subscribe(self, channel):
        self.channels.append(channel)
        self.inbox.put_nowait({"type": "subscribe", "channel": channel, "data": len(self.channels)})

    async def unsubscribe(self, *channels):
        self.channels = [c for c in self.channels if channels and c not in channels]

    async def aclose(self):
        self.channels = []
        self.closed = True

    async def listen(self):
        while True:
            yield await self.inbox.get()


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.published = []
        self.pubsubs = []
        self.last_pubsub = None

    async def setex(self, key, ttl, value):
        self.store[key] = value

    async def exists(self, key):
        return 1 if key in self.store else 0

    async def incr(self, key):
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    async def expire(self, key, seconds):
        return True

    async def publish(self, channel, message):
        self.published.append((channel, message))
        receivers = [p for p in self.pubsubs if channel in p.channels]
        for pubsub in receivers:
            pubsub.inbox.put_nowait({"type": "message", "channel": channel, "data": message})
        return len(receivers)

    async def ping(self):
        return True

    def pubsub(self):
        self.last_pubsub = FakePubSub(self)
        self.pubsubs.append(self.last_pubsub)
        return self.last_pubsub


class FakeIdentityProvider:
    """Keeps accounts in memory and issues session payloads like GoTrue."""

    def __init__(self):
        self.accounts = {}
        self.signed_out = []
        self.reset_requests = []
        self.password_updates = []

    def _session(self, account: dict) -> dict:
        return {
            "access_token": f"access-{uuid.uuid4().hex}",
            "refresh_token": f"refresh-{uuid.uuid4().hex}",
            "expires_in": 3600,
            "user": account,
        }

    async def sign_up(self, email, password, user_type):
        if email in self.accounts:
            raise AuthError("User already registered", status_code=400)
        account = {
            "id": str(uuid.uuid4()),
            "email": email,
            "user_metadata": {"user_type": user_type},
            "_password": password,
        }
        self.accounts[email] = account
        return self._session(account)

    async def sign_in_with_password(self, email, password):
        account = self.accounts.get(email)
        if not account or account["_password"] != password:
            raise AuthError("Invalid login credentials", status_code=400)
        return self._session(account)

    async def sign_out(self, access_token):
        self.signed_out.append(access_token)

    async def reset_password_for_email(self, email, redirect_to):
        self.reset_requests.append((email, redirect_to))

    async def update_user(self, access_token, **attributes):
        self.password_updates.append(attributes)
        return {"id": "unused"}

    async def get_user(self, access_token):
        return {"id": "provider-user", "aud": "authenticated"}


class FakeGateway:
    """Razorpay stand-in. Orders start unpaid; tests call mark_paid()."""

    def __init__(self):
        self.orders = {}
        self.refunds = []

    def create_authorization(self, amount_minor, currency, receipt, notes):
        order_id = f"order_{uuid.uuid4().hex[:14]}"
        self.orders[order_id] = {
            "status": "requires_payment",
            "amount": amount_minor,
            "currency": currency.upper(),
            "payment_id": None,
            "notes": notes,
        }
        return Authorization(order_id, "requires_payment", amount_minor, currency.upper())

    def mark_paid(self, order_id):
        self.orders[order_id]["status"] = SUCCEEDED
        self.orders[order_id]["payment_id"] = f"pay_{uuid.uuid4().hex[:14]}"

    def retrieve_authorization(self, authorization_id):
        order = self.orders.get(authorization_id)
        if order is None:
            raise UpstreamError("Payment gateway error: order not found")
        return Authorization(
            authorization_id,
            order["status"],
            order["amount"],
            order["currency"],
            order["payment_id"],
        )

    def create_refund(self, payment_id, amount_minor, notes):
        refund = Refund(f"rfnd_{uuid.uuid4().hex[:14]}", amount_minor, "processed")
        self.refunds.append((payment_id, amount_minor, notes))
        return refund


# ── Infrastructure Fixtures ────────────────────────────────────────────────────

@pytest.fixture
async def setup_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def fake_redis():
    fake = FakeRedis()
    redis_module.redis_client = fake
    yield fake
    redis_module.redis_client = None


@pytest.fixture
def identity():
    return FakeIdentityProvider()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
async def db(setup_db):
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
async def client(setup_db, fake_redis, identity, gateway):
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_identity_provider] = lambda: identity
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Data Fixtures ──────────────────────────────────────────────────────────────

async def _profile(db, user_type: UserType, name: str) -> Profile:
    profile = Profile(
        id=uuid.uuid4(),
        email=f"{name}-{uuid.uuid4().hex[:6]}@example.com",
        user_type=user_type,
        display_name=name.title(),
    )
    db.add(profile)
    await db.commit()
    return profile


@pytest.fixture
async def client_profile(db) -> Profile:
    return await _profile(db, UserType.CLIENT, "client")


@pytest.fixture
async def other_client(db) -> Profile:
    return await _profile(db, UserType.CLIENT, "outsider")


@pytest.fixture
async def admin_profile(db) -> Profile:
    return await _profile(db, UserType.ADMIN, "admin")


@pytest.fixture
async def companion_profile(db) -> Profile:
    profile = await _profile(db, UserType.COMPANION, "companion")
    db.add(Companion(id=profile.id, hourly_rate=Decimal("100.00"), bio="Museum walks"))
    await db.commit()
    return profile


@pytest.fixture
async def conversation(db, client_profile, companion_profile) -> Conversation:
    conv = Conversation(participant_1=client_profile.id, participant_2=companion_profile.id)
    db.add(conv)
    await db.commit()
    return conv
