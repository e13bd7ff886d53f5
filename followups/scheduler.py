"""Follow-up scheduling and cancellation."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from db.models import AutomationConfig, Conversation, FollowUp
from db.repositories import audit
from db.repositories import follow_ups as follow_ups_repo
from schemas.follow_up import FollowUpContext
from schemas.intelligence import MAX_DELAY_MINUTES, ConversationIntelligence

logger = logging.getLogger(__name__)

DEFAULT_DELAY_MINUTES = 30
DEFAULT_MAX_PER_CONVERSATION = 3


async def schedule_follow_up(
    session: AsyncSession,
    conversation: Conversation,
    config: AutomationConfig,
    intelligence: ConversationIntelligence,
    incoming_text: str,
    source_message_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> Optional[FollowUp]:
    """Create a pending follow-up when the merged result asks for one.

    Returns None when no follow-up is requested or the conversation already
    holds `follow_up_max_per_conversation` active follow-ups.
    """
    decision = intelligence.follow_up
    if decision is None or not decision.should_schedule:
        return None

    cap = config.follow_up_max_per_conversation
    if cap is None:
        cap = DEFAULT_MAX_PER_CONVERSATION
    active = await follow_ups_repo.count_active(session, conversation.id)
    if active >= cap:
        logger.info(
            "Follow-up cap reached for conversation %s (%d/%d)", conversation.id, active, cap
        )
        return None

    delay = decision.delay_minutes or config.follow_up_default_delay_minutes or DEFAULT_DELAY_MINUTES
    delay = min(delay, MAX_DELAY_MINUTES)
    if now is None:
        now = datetime.now(timezone.utc)
    trigger_at = now + timedelta(minutes=delay)

    context = FollowUpContext(
        context_for_message=decision.context_for_message or intelligence.summary or "",
        urgency_hook=decision.urgency_hook,
        customer_name=conversation.contact_name,
        matched_pattern=decision.intent,
    )
    follow_up = await follow_ups_repo.create_follow_up(
        session,
        conversation_id=conversation.id,
        organization_id=conversation.organization_id,
        instance_id=conversation.instance_id,
        trigger_at=trigger_at,
        context=context,
        detected_intent=decision.intent,
        intent_confidence=decision.confidence,
        original_customer_message=incoming_text,
        original_message_id=source_message_id,
    )
    await audit.log_action(
        session,
        "follow_up_scheduled",
        conversation_id=conversation.id,
        organization_id=conversation.organization_id,
        details={
            "follow_up_id": str(follow_up.id),
            "intent": decision.intent,
            "trigger_at": trigger_at.isoformat(),
            "delay_minutes": delay,
        },
        message_id=source_message_id,
        triggered_by="ai",
    )
    logger.info(
        "Scheduled follow-up %s for conversation %s in %d min (%s)",
        follow_up.id, conversation.id, delay, decision.intent,
    )
    return follow_up


async def cancel_pending_follow_ups(
    session: AsyncSession,
    conversation_id: UUID,
    reason: str = "customer_replied",
    organization_id: Optional[UUID] = None,
    triggered_by: str = "system",
) -> int:
    """Cancel the conversation's pending follow-ups; called when a human or the customer takes over."""
    count = await follow_ups_repo.cancel_pending(session, conversation_id)
    if count:
        await audit.log_action(
            session,
            "follow_up_cancelled",
            conversation_id=conversation_id,
            organization_id=organization_id,
            details={"count": count, "reason": reason},
            triggered_by=triggered_by,
        )
    return count
