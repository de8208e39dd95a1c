"""
services/messaging/service.py
Conversations between two profiles: message send with unread bookkeeping,
read receipts, listings, and live delivery over Redis pub/sub.

Unread counters are positional (unread_count_1 ↔ participant_1). Each send
stores the message and updates the summary in one transaction, using an
in-database increment so concurrent sends do not lose counts.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from redis.asyncio.client import PubSub
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from config.redis_client import RedisCache
from config.settings import settings
from shared.exceptions import Forbidden, InvalidRequest, NotFound
from shared.models.models import Conversation, Message, Profile

logger = logging.getLogger(__name__)


def message_payload(message: Message) -> dict:
    return {
        "id": str(message.id),
        "conversation_id": str(message.conversation_id),
        "sender_id": str(message.sender_id),
        "recipient_id": str(message.recipient_id),
        "content": message.content,
        "message_type": message.message_type,
        "read_at": message.read_at.isoformat() if message.read_at else None,
        "created_at": message.created_at.isoformat(),
    }


async def get_conversation_for(
    db: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID
) -> Conversation:
    conversation = await db.scalar(select(Conversation).where(Conversation.id == conversation_id))
    if not conversation:
        raise NotFound("Conversation not found")
    if not conversation.is_participant(user_id):
        raise Forbidden("Not a participant in this conversation")
    return conversation


async def start_conversation(
    db: AsyncSession, user: Profile, participant_id: uuid.UUID
) -> Conversation:
    """Get or create the conversation between the caller and another profile."""
    if participant_id == user.id:
        raise InvalidRequest("Cannot start a conversation with yourself", status_code=400)
    other = await db.scalar(select(Profile).where(Profile.id == participant_id))
    if not other:
        raise NotFound("Profile not found")

    existing = await db.scalar(
        select(Conversation).where(
            or_(
                and_(Conversation.participant_1 == user.id, Conversation.participant_2 == participant_id),
                and_(Conversation.participant_1 == participant_id, Conversation.participant_2 == user.id),
            )
        )
    )
    if existing:
        return existing

    conversation = Conversation(participant_1=user.id, participant_2=participant_id)
    db.add(conversation)
    await db.commit()
    return conversation


async def send_message(
    db: AsyncSession,
    cache: Optional[RedisCache],
    conversation_id: uuid.UUID,
    sender: Profile,
    content: str,
    message_type: str = "text",
) -> Message:
    conversation = await get_conversation_for(db, conversation_id, sender.id)
    recipient_id = conversation.other_participant(sender.id)
    now = datetime.now(timezone.utc)

    message = Message(
        conversation_id=conversation.id,
        sender_id=sender.id,
        recipient_id=recipient_id,
        content=content,
        message_type=message_type,
        created_at=now,
    )
    db.add(message)

    # Only the recipient's counter moves
    if conversation.participant_1 == recipient_id:
        counter = {"unread_count_1": Conversation.unread_count_1 + 1}
    else:
        counter = {"unread_count_2": Conversation.unread_count_2 + 1}

    await db.execute(
        update(Conversation)
        .where(Conversation.id == conversation.id)
        .values(
            last_message_at=now,
            last_message_preview=content[: settings.MESSAGE_PREVIEW_LENGTH],
            **counter,
        )
    )
    await db.commit()

    if cache is not None:
        await cache.publish_message(conversation.id, message_payload(message))
    return message


async def mark_read(db: AsyncSession, conversation_id: uuid.UUID, user: Profile) -> int:
    """
    Stamp read_at on the caller's unread received messages and zero the
    caller's counter. Already-read messages keep their read_at.
    Returns the number of messages newly marked.
    """
    conversation = await get_conversation_for(db, conversation_id, user.id)

    result = await db.execute(
        update(Message)
        .where(
            Message.conversation_id == conversation.id,
            Message.recipient_id == user.id,
            Message.read_at.is_(None),
        )
        .values(read_at=datetime.now(timezone.utc))
    )

    counter_field = "unread_count_1" if conversation.participant_1 == user.id else "unread_count_2"
    await db.execute(
        update(Conversation)
        .where(Conversation.id == conversation.id)
        .values({counter_field: 0})
    )
    await db.commit()
    return result.rowcount


async def list_conversations(db: AsyncSession, user: Profile) -> list[dict]:
    """Caller's conversations, most recently active first, with both profiles."""
    P1 = aliased(Profile)
    P2 = aliased(Profile)
    result = await db.execute(
        select(Conversation, P1, P2)
        .outerjoin(P1, P1.id == Conversation.participant_1)
        .outerjoin(P2, P2.id == Conversation.participant_2)
        .where(or_(Conversation.participant_1 == user.id, Conversation.participant_2 == user.id))
        .order_by(Conversation.last_message_at.desc().nulls_last())
    )
    conversations = []
    for conversation, p1, p2 in result.all():
        data = {col.name: getattr(conversation, col.name) for col in Conversation.__table__.columns}
        data["participant_1_profile"] = p1
        data["participant_2_profile"] = p2
        conversations.append(data)
    return conversations


async def list_messages(
    db: AsyncSession,
    conversation_id: uuid.UUID,
    user: Profile,
    after: Optional[uuid.UUID] = None,
    limit: int = 50,
) -> list[Message]:
    """
    Messages in insertion order. `after` is a resume token: the id of the
    last message the client saw; only newer messages are returned.
    """
    conversation = await get_conversation_for(db, conversation_id, user.id)
    query = select(Message).where(Message.conversation_id == conversation.id)

    if after is not None:
        anchor = await db.scalar(
            select(Message).where(Message.id == after, Message.conversation_id == conversation.id)
        )
        if not anchor:
            raise NotFound("Resume message not found")
        query = query.where(
            or_(
                Message.created_at > anchor.created_at,
                and_(Message.created_at == anchor.created_at, Message.id > anchor.id),
            )
        )

    result = await db.execute(query.order_by(Message.created_at.asc(), Message.id.asc()).limit(limit))
    return list(result.scalars().all())


async def open_subscription(cache: RedisCache, conversation_id: uuid.UUID) -> PubSub:
    """Start buffering the conversation's live messages; pair with subscribe(pubsub=...)."""
    logger.debug(f"Subscribing to conversation {conversation_id}")
    return await cache.subscribe_messages(conversation_id)


async def subscribe(
    cache: RedisCache,
    conversation_id: uuid.UUID,
    on_message: Callable[[dict], Awaitable[None]],
    pubsub: Optional[PubSub] = None,
) -> None:
    """
    Invoke on_message once per message published to the conversation, in
    publish order. Runs until cancelled. Messages sent while disconnected
    are not replayed here; resume with list_messages(after=last_seen_id).
    Pass a pubsub from open_subscription to receive everything published
    since it was opened.
    """
    if pubsub is None:
        pubsub = await open_subscription(cache, conversation_id)
    await cache.listen_messages(pubsub, on_message)
