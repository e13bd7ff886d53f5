"""Conversation and message repository."""
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Conversation, Message

logger = logging.getLogger(__name__)


async def get_conversation(
    session: AsyncSession, conversation_id: UUID
) -> Optional[Conversation]:
    result = await session.execute(
        select(Conversation).where(Conversation.id == conversation_id)
    )
    return result.scalar_one_or_none()


async def create_conversation(session: AsyncSession, data: dict) -> Conversation:
    """Create a conversation.

    data dict keys: organization_id, instance_id, phone, contact_name, status
    """
    conversation = Conversation(**data)
    session.add(conversation)
    await session.flush()
    return conversation


async def get_message_by_provider_id(
    session: AsyncSession, provider_message_id: str
) -> Optional[Message]:
    result = await session.execute(
        select(Message).where(Message.provider_message_id == provider_message_id)
    )
    return result.scalar_one_or_none()


async def get_recent_messages(
    session: AsyncSession, conversation_id: UUID, limit: int = 20
) -> list[Message]:
    """Return the last `limit` messages of a conversation, oldest first."""
    result = await session.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc())
        .limit(limit)
    )
    return list(reversed(result.scalars().all()))


async def append_message(
    session: AsyncSession,
    conversation_id: UUID,
    organization_id: UUID,
    direction: str,
    body: str,
    provider_message_id: Optional[str] = None,
    sent_by: Optional[str] = None,
    status: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Message:
    """Append a message and bump the conversation's last-message fields."""
    if created_at is None:
        created_at = datetime.now(timezone.utc)
    message = Message(
        conversation_id=conversation_id,
        organization_id=organization_id,
        direction=direction,
        body=body,
        provider_message_id=provider_message_id,
        sent_by=sent_by,
        status=status or ("received" if direction == "inbound" else "sent"),
        created_at=created_at,
    )
    session.add(message)
    await session.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(last_message_text=body[:500], last_message_at=created_at)
    )
    await session.flush()
    return message


async def set_ai_active(
    session: AsyncSession,
    conversation_id: UUID,
    active: bool,
    reason: Optional[str] = None,
) -> Optional[Conversation]:
    """Turn automated handling on or off for a conversation.

    Reactivating clears the pause reason; pausing records it with a timestamp.
    """
    if active:
        values = {"ai_active": True, "ai_paused_reason": None, "ai_paused_at": None}
    else:
        values = {
            "ai_active": False,
            "ai_paused_reason": reason,
            "ai_paused_at": datetime.now(timezone.utc),
        }
    result = await session.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(**values)
        .returning(Conversation)
    )
    await session.flush()
    return result.scalar_one_or_none()
