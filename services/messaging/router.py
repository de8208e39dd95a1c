"""
services/messaging/router.py
Client ↔ companion conversations: start, list, send, mark read,
and a live WebSocket feed per conversation.
"""

import asyncio
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db, get_db_context
from config.redis_client import RedisCache, get_redis
from services.messaging import service
from shared.exceptions import AppError
from shared.middleware.auth import get_current_user, profile_from_token
from shared.models.models import Profile
from shared.schemas.schemas import (
    ChatMessageCreateRequest,
    ChatMessageResponse,
    ConversationResponse,
    ConversationStartRequest,
    ConversationWithParticipantsResponse,
    MessageResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/conversations", tags=["Messaging"])

# WebSocket close codes mirror HTTP statuses
WS_CLOSE_CODES = {401: 4401, 403: 4403, 404: 4404}


@router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def start_conversation(
    data: ConversationStartRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Open (or return the existing) conversation with another profile."""
    return await service.start_conversation(db, current_user, data.participant_id)


@router.get("", response_model=list[ConversationWithParticipantsResponse])
async def list_conversations(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await service.list_conversations(db, current_user)


@router.get("/{conversation_id}/messages", response_model=list[ChatMessageResponse])
async def list_messages(
    conversation_id: UUID,
    after: Optional[UUID] = Query(None, description="Return only messages after this message id"),
    limit: int = Query(50, ge=1, le=200),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await service.list_messages(db, conversation_id, current_user, after=after, limit=limit)


@router.post(
    "/{conversation_id}/messages",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    data: ChatMessageCreateRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    return await service.send_message(
        db,
        RedisCache(redis),
        conversation_id,
        current_user,
        content=data.content,
        message_type=data.message_type,
    )


@router.post("/{conversation_id}/read", response_model=MessageResponse)
async def mark_read(
    conversation_id: UUID,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    marked = await service.mark_read(db, conversation_id, current_user)
    return MessageResponse(message=f"{marked} messages marked as read")


# ── Live feed ─────────────────────────────────────────────────

@router.websocket("/{conversation_id}/ws")
async def conversation_feed(
    websocket: WebSocket,
    conversation_id: UUID,
    token: str = Query(...),
    after: Optional[UUID] = Query(None),
):
    """
    Streams every message stored in the conversation as JSON.
    Pass `after` (last seen message id) to receive what was missed first.
    """
    redis = get_redis()
    cache = RedisCache(redis)
    queue: asyncio.Queue = asyncio.Queue()
    pubsub = None

    try:
        async with get_db_context() as db:
            user = await profile_from_token(token, db, redis)
            await service.get_conversation_for(db, conversation_id, user.id)
            # Subscribed before the backlog query, so nothing lands in between
            pubsub = await service.open_subscription(cache, conversation_id)
            backlog = (
                await service.list_messages(db, conversation_id, user, after=after, limit=200)
                if after is not None
                else []
            )
    except AppError as e:
        if pubsub is not None:
            await pubsub.aclose()
        await websocket.close(code=WS_CLOSE_CODES.get(e.status_code, 1008))
        return
    except Exception:
        if pubsub is not None:
            await pubsub.aclose()
        raise

    listener = asyncio.create_task(
        service.subscribe(cache, conversation_id, queue.put, pubsub=pubsub)
    )
    await websocket.accept()
    sent = set()

    async def pump() -> None:
        for message in backlog:
            payload = service.message_payload(message)
            sent.add(payload["id"])
            await websocket.send_json(payload)
        while True:
            payload = await queue.get()
            if payload.get("id") in sent:
                continue
            await websocket.send_json(payload)

    sender = asyncio.create_task(pump())
    try:
        # Inbound frames are ignored; receiving detects disconnects
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"Feed for conversation {conversation_id} disconnected")
    finally:
        sender.cancel()
        listener.cancel()
        await asyncio.gather(sender, listener, return_exceptions=True)
        # No-op unless the listener was cancelled before it ever ran
        await pubsub.aclose()
