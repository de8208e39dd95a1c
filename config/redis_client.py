"""
config/redis_client.py
Async Redis client for the session deny-list, rate limiting,
and the per-conversation message pub/sub channel.
"""

import json
from typing import Any, Awaitable, Callable, Optional
import redis.asyncio as aioredis
from redis.asyncio.client import PubSub

from config.settings import settings


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    # Test connection
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


def message_channel(conversation_id: Any) -> str:
    return f"messages:{conversation_id}"


class RedisCache:
    """Helper class for the Redis patterns used across services."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    # ── Session Deny List ─────────────────────────────────────
    async def revoke_token(self, token_key: str, ttl_seconds: int) -> None:
        """Add a session token key to the deny list until it expires."""
        await self.client.setex(f"session_revoked:{token_key}", ttl_seconds, "1")

    async def is_token_revoked(self, token_key: str) -> bool:
        return await self.client.exists(f"session_revoked:{token_key}") == 1

    # ── Message Pub/Sub ───────────────────────────────────────
    async def publish_message(self, conversation_id: Any, payload: dict) -> int:
        """Fan a newly stored message out to live subscribers."""
        return await self.client.publish(
            message_channel(conversation_id), json.dumps(payload, default=str)
        )

    async def subscribe_messages(self, conversation_id: Any) -> PubSub:
        """
        Subscribe to the conversation channel and return the open PubSub.
        Everything published after this returns is buffered for
        listen_messages, so callers can query history in between.
        """
        pubsub = self.client.pubsub()
        await pubsub.subscribe(message_channel(conversation_id))
        return pubsub

    async def listen_messages(
        self,
        pubsub: PubSub,
        on_message: Callable[[dict], Awaitable[None]],
    ) -> None:
        """
        Block on a subscription from subscribe_messages, invoking on_message
        once per published message in publish order. Returns only when
        cancelled or when the connection drops. Missed messages are not
        replayed. The subscription is closed on the way out.
        """
        try:
            async for item in pubsub.listen():
                if item.get("type") != "message":
                    continue
                await on_message(json.loads(item["data"]))
        finally:
            await pubsub.unsubscribe()
            await pubsub.aclose()

    # ── Rate Limiting ─────────────────────────────────────────
    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """
        Fixed window rate limiter.
        Returns True if request is allowed, False if rate limited.
        """
        count = await self.client.incr(key)
        if count == 1:
            await self.client.expire(key, window_seconds)
        return count <= limit
