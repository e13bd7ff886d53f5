"""Lead score repository: bounded score, temperature and history per conversation."""
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.dialect import insert_for
from db.models import LeadScore

logger = logging.getLogger(__name__)

MIN_SCORE = 0
MAX_SCORE = 100
HISTORY_LIMIT = 50
DEFAULT_BUYING_STAGE = "awareness"

# Checked in order; the first threshold the score reaches wins.
TEMPERATURE_THRESHOLDS = (
    (80, "on_fire"),
    (60, "hot"),
    (30, "warm"),
)


def clamp_score(value: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, value))


def temperature_for(score: int) -> str:
    for threshold, temperature in TEMPERATURE_THRESHOLDS:
        if score >= threshold:
            return temperature
    return "cold"


def format_delta(delta: int) -> str:
    return f"Delta: {delta:+d}"


async def get_lead_score(session: AsyncSession, conversation_id: UUID) -> Optional[LeadScore]:
    result = await session.execute(
        select(LeadScore).where(LeadScore.conversation_id == conversation_id)
    )
    return result.scalar_one_or_none()


async def apply_delta(
    session: AsyncSession,
    conversation_id: UUID,
    delta: int,
    factors: Optional[dict[str, float]] = None,
    buying_stage: Optional[str] = None,
    organization_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> LeadScore:
    """Apply a score delta and upsert the conversation's single LeadScore row.

    new score = clamp(current + delta, 0, 100), current defaults to 0.
    Temperature is derived from the new score only. Factors are shallow-merged
    and history keeps the most recent HISTORY_LIMIT entries.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    current = await session.execute(
        select(LeadScore)
        .where(LeadScore.conversation_id == conversation_id)
        .with_for_update()
    )
    existing = current.scalar_one_or_none()

    base_score = existing.score if existing else 0
    new_score = clamp_score(base_score + int(delta))

    merged_factors = dict(existing.factors or {}) if existing else {}
    merged_factors.update(factors or {})

    history = list(existing.history or []) if existing else []
    history.append({
        "score": new_score,
        "timestamp": now.isoformat(),
        "reason": format_delta(int(delta)),
    })
    history = history[-HISTORY_LIMIT:]

    stage = buying_stage or (existing.buying_stage if existing else None) or DEFAULT_BUYING_STAGE

    data = {
        "score": new_score,
        "temperature": temperature_for(new_score),
        "buying_stage": stage,
        "factors": merged_factors,
        "history": history,
        "updated_at": now,
    }
    stmt = (
        insert_for(session, LeadScore)
        .values(conversation_id=conversation_id, organization_id=organization_id, **data)
        .on_conflict_do_update(index_elements=["conversation_id"], set_=data)
        .returning(LeadScore)
    )
    result = await session.execute(stmt, execution_options={"populate_existing": True})
    await session.flush()
    score = result.scalar_one()
    logger.debug(
        "Lead score for %s: %d -> %d (%s)",
        conversation_id, base_score, new_score, score.temperature,
    )
    return score
