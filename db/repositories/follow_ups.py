"""Follow-up repository: scheduling, cancellation and the claim/lease lifecycle.

Every transition out of `processing` is conditional on the caller still
holding the claim (status='processing' AND claimed_by=worker_id), so a stale
worker can never move a row out of a terminal state or overwrite a newer claim.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from db.models import Conversation, FollowUp
from schemas.follow_up import FollowUpContext

logger = logging.getLogger(__name__)

# processing is a claimed pending row, so it counts as active too.
ACTIVE_STATUSES = ("pending", "processing", "sent")
TERMINAL_STATUSES = ("sent", "cancelled", "failed")
DEFAULT_MAX_RETRIES = 2


async def create_follow_up(
    session: AsyncSession,
    conversation_id: UUID,
    organization_id: UUID,
    instance_id: UUID,
    trigger_at: datetime,
    context: FollowUpContext,
    detected_intent: Optional[str] = None,
    intent_confidence: Optional[float] = None,
    original_customer_message: Optional[str] = None,
    original_message_id: Optional[UUID] = None,
    follow_up_type: str = "smart",
    max_retries: int = DEFAULT_MAX_RETRIES,
    created_by: str = "ai",
) -> FollowUp:
    follow_up = FollowUp(
        conversation_id=conversation_id,
        organization_id=organization_id,
        instance_id=instance_id,
        trigger_at=trigger_at,
        status="pending",
        follow_up_type=follow_up_type,
        detected_intent=detected_intent,
        intent_confidence=intent_confidence,
        context=context.model_dump(exclude_none=True),
        original_customer_message=original_customer_message,
        original_message_id=original_message_id,
        max_retries=max_retries,
        created_by=created_by,
    )
    session.add(follow_up)
    await session.flush()
    return follow_up


def context_of(follow_up: FollowUp) -> FollowUpContext:
    return FollowUpContext.model_validate(follow_up.context or {})


async def get_follow_up(session: AsyncSession, follow_up_id: UUID) -> Optional[FollowUp]:
    result = await session.execute(
        select(FollowUp)
        .where(FollowUp.id == follow_up_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_for_conversation(
    session: AsyncSession, conversation_id: UUID, status: Optional[str] = None
) -> list[FollowUp]:
    stmt = select(FollowUp).where(FollowUp.conversation_id == conversation_id)
    if status is not None:
        stmt = stmt.where(FollowUp.status == status)
    result = await session.execute(
        stmt.order_by(FollowUp.trigger_at).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def count_active(session: AsyncSession, conversation_id: UUID) -> int:
    """Count follow-ups that are waiting or already sent (checked against the per-conversation cap)."""
    result = await session.execute(
        select(func.count())
        .select_from(FollowUp)
        .where(FollowUp.conversation_id == conversation_id)
        .where(FollowUp.status.in_(ACTIVE_STATUSES))
    )
    return int(result.scalar_one())


async def cancel_pending(session: AsyncSession, conversation_id: UUID) -> int:
    """Cancel every unclaimed pending follow-up of a conversation.

    Returns the count of follow-ups that were cancelled. Rows already claimed
    by a worker finish their current attempt.
    """
    result = await session.execute(
        update(FollowUp)
        .where(FollowUp.conversation_id == conversation_id)
        .where(FollowUp.status == "pending")
        .values(status="cancelled")
        .returning(FollowUp.id)
    )
    await session.flush()
    count = len(result.fetchall())
    if count:
        logger.info("Cancelled %d pending follow-ups for conversation %s", count, conversation_id)
    return count


# ---------------------------------------------------------------------------
# Worker side
# ---------------------------------------------------------------------------


def _claimable(now: datetime):
    return or_(
        and_(FollowUp.status == "pending", FollowUp.trigger_at <= now),
        and_(FollowUp.status == "processing", FollowUp.lease_expires_at < now),
    )


async def get_due(session: AsyncSession, now: datetime, limit: int = 50) -> list[FollowUp]:
    """Return due pending rows plus rows whose worker lease expired, oldest trigger first."""
    result = await session.execute(
        select(FollowUp)
        .where(_claimable(now))
        .order_by(FollowUp.trigger_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def claim(
    session: AsyncSession,
    follow_up_id: UUID,
    worker_id: str,
    now: datetime,
    lease_seconds: int,
) -> bool:
    """Atomically move a due row to `processing` under a time-bounded lease.

    Fails when the row is no longer claimable or another row of the same
    conversation is held under a live lease.
    """
    if session.get_bind().dialect.name == "postgresql":
        await _lock_conversation_of(session, follow_up_id)

    other = aliased(FollowUp)
    busy_conversation = (
        select(other.id)
        .where(other.conversation_id == FollowUp.conversation_id)
        .where(other.id != FollowUp.id)
        .where(other.status == "processing")
        .where(other.lease_expires_at >= now)
        .correlate(FollowUp)
        .exists()
    )
    result = await session.execute(
        update(FollowUp)
        .where(FollowUp.id == follow_up_id)
        .where(_claimable(now))
        .where(~busy_conversation)
        .values(
            status="processing",
            claimed_by=worker_id,
            lease_expires_at=now + timedelta(seconds=lease_seconds),
        )
        .returning(FollowUp.id)
    )
    await session.flush()
    return result.first() is not None


async def _lock_conversation_of(session: AsyncSession, follow_up_id: UUID) -> None:
    # Under READ COMMITTED the NOT EXISTS check cannot see another tick's
    # uncommitted claim, so claims on one conversation take its row lock first.
    conversation_id = (
        select(FollowUp.conversation_id)
        .where(FollowUp.id == follow_up_id)
        .scalar_subquery()
    )
    await session.execute(
        select(Conversation.id)
        .where(Conversation.id == conversation_id)
        .with_for_update()
    )


def _held_by(follow_up_id: UUID, worker_id: str):
    return and_(
        FollowUp.id == follow_up_id,
        FollowUp.status == "processing",
        FollowUp.claimed_by == worker_id,
    )


async def cache_generated_message(
    session: AsyncSession, follow_up_id: UUID, worker_id: str, message: str
) -> bool:
    result = await session.execute(
        update(FollowUp)
        .where(_held_by(follow_up_id, worker_id))
        .values(generated_message=message)
        .returning(FollowUp.id)
    )
    await session.flush()
    return result.first() is not None


async def mark_sent(
    session: AsyncSession,
    follow_up_id: UUID,
    worker_id: str,
    sent_message_id: Optional[UUID],
    sent_at: datetime,
) -> Optional[FollowUp]:
    result = await session.execute(
        update(FollowUp)
        .where(_held_by(follow_up_id, worker_id))
        .values(
            status="sent",
            sent_message_id=sent_message_id,
            sent_at=sent_at,
            claimed_by=None,
            lease_expires_at=None,
            last_error=None,
        )
        .returning(FollowUp)
    )
    await session.flush()
    return result.scalar_one_or_none()


async def mark_failed(
    session: AsyncSession, follow_up_id: UUID, worker_id: str, error: str
) -> Optional[FollowUp]:
    """Terminal failure; no further retries."""
    result = await session.execute(
        update(FollowUp)
        .where(_held_by(follow_up_id, worker_id))
        .values(status="failed", last_error=error, claimed_by=None, lease_expires_at=None)
        .returning(FollowUp)
    )
    await session.flush()
    return result.scalar_one_or_none()


async def reschedule(
    session: AsyncSession, follow_up_id: UUID, worker_id: str, trigger_at: datetime
) -> Optional[FollowUp]:
    """Release the claim back to pending at a later trigger time. retry_count is untouched."""
    result = await session.execute(
        update(FollowUp)
        .where(_held_by(follow_up_id, worker_id))
        .values(status="pending", trigger_at=trigger_at, claimed_by=None, lease_expires_at=None)
        .returning(FollowUp)
    )
    await session.flush()
    return result.scalar_one_or_none()


async def record_retry(
    session: AsyncSession,
    follow_up_id: UUID,
    worker_id: str,
    error: str,
    now: datetime,
    backoff_seconds: int = 0,
) -> Optional[FollowUp]:
    """Count a failed attempt.

    The row becomes `failed` once retry_count reaches max_retries, otherwise it
    returns to `pending`. With a non-zero backoff the next trigger is pushed to
    now + backoff * retry_count; without one it stays due for the next poll.
    """
    follow_up = await get_follow_up(session, follow_up_id)
    if follow_up is None or follow_up.status != "processing" or follow_up.claimed_by != worker_id:
        logger.warning("Follow-up %s is no longer held by worker %s", follow_up_id, worker_id)
        return None

    retry_count = follow_up.retry_count + 1
    values = {
        "retry_count": retry_count,
        "last_error": error[:500],
        "claimed_by": None,
        "lease_expires_at": None,
    }
    if retry_count >= follow_up.max_retries:
        values["status"] = "failed"
    else:
        values["status"] = "pending"
        if backoff_seconds > 0:
            values["trigger_at"] = now + timedelta(seconds=backoff_seconds * retry_count)

    result = await session.execute(
        update(FollowUp)
        .where(_held_by(follow_up_id, worker_id))
        .values(**values)
        .returning(FollowUp)
    )
    await session.flush()
    return result.scalar_one_or_none()
