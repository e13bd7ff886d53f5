"""Chat memory repository: durable facts per conversation, upserted by key."""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.dialect import insert_for
from db.models import ChatMemory
from schemas.intelligence import ExtractedMemory

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8


async def get_memories(session: AsyncSession, conversation_id: UUID) -> list[ChatMemory]:
    """Return every memory of a conversation, most recently updated first."""
    result = await session.execute(
        select(ChatMemory)
        .where(ChatMemory.conversation_id == conversation_id)
        .order_by(ChatMemory.updated_at.desc())
    )
    return list(result.scalars().all())


async def get_memory(
    session: AsyncSession, conversation_id: UUID, key: str
) -> Optional[ChatMemory]:
    result = await session.execute(
        select(ChatMemory)
        .where(ChatMemory.conversation_id == conversation_id)
        .where(ChatMemory.key == key)
    )
    return result.scalar_one_or_none()


async def upsert_memory(
    session: AsyncSession,
    conversation_id: UUID,
    key: str,
    value: str,
    memory_type: str = "fact",
    context: Optional[str] = None,
    confidence: float = DEFAULT_CONFIDENCE,
    source_message_id: Optional[UUID] = None,
    organization_id: Optional[UUID] = None,
) -> ChatMemory:
    """Insert a memory, or overwrite the existing one with the same key.

    (conversation_id, key) is the dedup key: the second write replaces
    value/type/context/confidence in place, never adding a row.
    """
    now = datetime.now(timezone.utc)
    data = {
        "memory_type": memory_type,
        "value": value,
        "context": context,
        "confidence": confidence,
        "source_message_id": source_message_id,
        "updated_at": now,
    }
    stmt = (
        insert_for(session, ChatMemory)
        .values(
            conversation_id=conversation_id,
            organization_id=organization_id,
            key=key,
            **data,
        )
        .on_conflict_do_update(index_elements=["conversation_id", "key"], set_=data)
        .returning(ChatMemory)
    )
    result = await session.execute(stmt, execution_options={"populate_existing": True})
    await session.flush()
    return result.scalar_one()


async def upsert_memories(
    session: AsyncSession,
    conversation_id: UUID,
    memories: Iterable[ExtractedMemory],
    source_message_id: Optional[UUID] = None,
    organization_id: Optional[UUID] = None,
) -> list[ChatMemory]:
    """Upsert extracted memories in order; a later entry with the same key wins."""
    saved = []
    for memory in memories:
        saved.append(await upsert_memory(
            session,
            conversation_id,
            key=memory.key,
            value=memory.value,
            memory_type=memory.memory_type,
            context=memory.context,
            confidence=memory.confidence,
            source_message_id=source_message_id,
            organization_id=organization_id,
        ))
    if saved:
        logger.info("Upserted %d memories for conversation %s", len(saved), conversation_id)
    return saved


async def delete_memory(session: AsyncSession, conversation_id: UUID, key: str) -> bool:
    result = await session.execute(
        delete(ChatMemory)
        .where(ChatMemory.conversation_id == conversation_id)
        .where(ChatMemory.key == key)
        .returning(ChatMemory.id)
    )
    await session.flush()
    return result.first() is not None
