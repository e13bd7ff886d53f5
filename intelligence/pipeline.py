"""Inbound message pipeline.

For every inbound customer message:
  1. Dedup by provider message id and append it to the conversation
  2. Cancel pending follow-ups (the customer replied)
  3. Analyze the message (local patterns + optional AI)
  4. Persist memories, score delta and labels
  5. Schedule a follow-up if one was requested and the cap allows it
  6. Smart-pause when the customer asks for a human

Every step runs in the caller's session; storage errors propagate.
"""
import asyncio
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from db.models import AutomationConfig, ChannelInstance, Conversation, Message
from db.repositories import audit
from db.repositories import conversations as conversations_repo
from db.repositories import instances as instances_repo
from db.repositories import labels as labels_repo
from db.repositories import lead_scores as lead_scores_repo
from db.repositories import memory as memory_repo
from followups.scheduler import cancel_pending_follow_ups, schedule_follow_up
from intelligence.extractor import HISTORY_WINDOW, analyze_message, format_history
from schemas.intelligence import ConversationIntelligence
from tools import zapi_tools

logger = logging.getLogger(__name__)

SMART_PAUSE_REASON = "smart_pause"

SENTIMENT_WEIGHTS = {
    "very_positive": 2,
    "positive": 1,
    "neutral": 0,
    "negative": -1,
    "very_negative": -2,
}


async def handle_inbound_message(
    session: AsyncSession,
    conversation_id: UUID,
    body: str,
    provider_message_id: Optional[str] = None,
    completion=None,
    gateway=None,
) -> Optional[ConversationIntelligence]:
    """Record an inbound message and run the intelligence pipeline on it.

    Returns None for duplicates, empty bodies, and conversations whose
    automation is paused or disabled.
    """
    conversation = await conversations_repo.get_conversation(session, conversation_id)
    if conversation is None:
        raise LookupError(f"Conversation {conversation_id} not found")

    if provider_message_id:
        duplicate = await conversations_repo.get_message_by_provider_id(session, provider_message_id)
        if duplicate is not None:
            logger.info("Ignoring duplicate inbound message %s", provider_message_id)
            return None

    history = await conversations_repo.get_recent_messages(
        session, conversation.id, limit=HISTORY_WINDOW
    )
    message = await conversations_repo.append_message(
        session,
        conversation_id=conversation.id,
        organization_id=conversation.organization_id,
        direction="inbound",
        body=body,
        provider_message_id=provider_message_id,
        sent_by="customer",
    )

    await cancel_pending_follow_ups(
        session,
        conversation.id,
        reason="customer_replied",
        organization_id=conversation.organization_id,
    )

    if not body.strip():
        return None

    config = await instances_repo.get_automation_config(session, conversation.instance_id)
    if config is None or not config.ai_enabled or not conversation.ai_active:
        return None

    memories = await memory_repo.get_memories(session, conversation.id)
    intelligence = await analyze_message(
        session,
        conversation.organization_id,
        format_history(history),
        body,
        memories,
        config,
        completion=completion,
    )
    await apply_intelligence(
        session, conversation, config, intelligence, message, gateway=gateway
    )
    return intelligence


async def apply_intelligence(
    session: AsyncSession,
    conversation: Conversation,
    config: AutomationConfig,
    intelligence: ConversationIntelligence,
    message: Message,
    gateway=None,
) -> None:
    """Persist an analysis result according to the instance's feature switches."""
    organization_id = conversation.organization_id

    if config.memory_enabled and intelligence.memories:
        await memory_repo.upsert_memories(
            session,
            conversation.id,
            intelligence.memories,
            source_message_id=message.id,
            organization_id=organization_id,
        )
        await audit.log_action(
            session,
            "memory_extracted",
            conversation_id=conversation.id,
            organization_id=organization_id,
            details={
                "count": len(intelligence.memories),
                "keys": [m.key for m in intelligence.memories],
            },
            message_id=message.id,
        )

    if config.lead_scoring_enabled and intelligence.lead_score_delta != 0:
        score = await lead_scores_repo.apply_delta(
            session,
            conversation.id,
            intelligence.lead_score_delta,
            factors=_score_factors(intelligence),
            buying_stage=intelligence.buying_stage,
            organization_id=organization_id,
        )
        await audit.log_action(
            session,
            "lead_score_updated",
            conversation_id=conversation.id,
            organization_id=organization_id,
            details={
                "delta": intelligence.lead_score_delta,
                "new_score": score.score,
                "temperature": score.temperature,
            },
            message_id=message.id,
        )

    if config.auto_label_enabled and intelligence.suggested_labels:
        await labels_repo.ensure_default_labels(session, organization_id)
        for name in intelligence.suggested_labels:
            assigned = await labels_repo.assign_label_by_name(
                session, organization_id, conversation.id, name
            )
            if assigned is not None:
                await audit.log_action(
                    session,
                    "label_assigned",
                    conversation_id=conversation.id,
                    organization_id=organization_id,
                    details={"label": name},
                    message_id=message.id,
                )

    if config.follow_up_enabled:
        await schedule_follow_up(
            session,
            conversation,
            config,
            intelligence,
            incoming_text=message.body,
            source_message_id=message.id,
        )

    if config.smart_pause_enabled and intelligence.should_pause:
        await pause_automation(
            session,
            conversation,
            reason=intelligence.pause_reason or SMART_PAUSE_REASON,
            triggered_by="ai",
        )
        if config.transfer_message:
            await _send_transfer_message(session, conversation, config.transfer_message, gateway)


def _score_factors(intelligence: ConversationIntelligence) -> dict[str, float]:
    factors: dict[str, float] = {
        f"intent:{intent.intent}": intent.confidence for intent in intelligence.intents
    }
    if intelligence.source == "ai":
        factors["sentiment"] = SENTIMENT_WEIGHTS[intelligence.sentiment]
    return factors


async def pause_automation(
    session: AsyncSession,
    conversation: Conversation,
    reason: str,
    triggered_by: str = "ai",
) -> None:
    """Hand the conversation to a human: stop automation and cancel pending follow-ups."""
    await conversations_repo.set_ai_active(session, conversation.id, False, reason=reason)
    cancelled = await cancel_pending_follow_ups(
        session,
        conversation.id,
        reason=reason,
        organization_id=conversation.organization_id,
        triggered_by=triggered_by,
    )
    await audit.log_action(
        session,
        "smart_paused",
        conversation_id=conversation.id,
        organization_id=conversation.organization_id,
        details={"reason": reason, "cancelled_follow_ups": cancelled},
        triggered_by=triggered_by,
    )
    logger.info("Automation paused for conversation %s: %s", conversation.id, reason)


async def resume_automation(
    session: AsyncSession, conversation: Conversation, triggered_by: str = "system"
) -> None:
    await conversations_repo.set_ai_active(session, conversation.id, True)
    await audit.log_action(
        session,
        "resumed",
        conversation_id=conversation.id,
        organization_id=conversation.organization_id,
        triggered_by=triggered_by,
    )


async def _send_transfer_message(
    session: AsyncSession, conversation: Conversation, text: str, gateway=None
) -> None:
    instance: Optional[ChannelInstance] = await instances_repo.get_instance(
        session, conversation.instance_id
    )
    if instance is None or instance.status != "connected":
        logger.warning("Transfer message not sent: instance %s unavailable", conversation.instance_id)
        return
    send = gateway or zapi_tools.send_text
    try:
        provider_message_id = await asyncio.to_thread(
            send, zapi_tools.credentials_for(instance), conversation.phone, text
        )
    except zapi_tools.ZApiError as e:
        logger.warning("Transfer message to %s failed: %s", conversation.id, e)
        return
    await conversations_repo.append_message(
        session,
        conversation_id=conversation.id,
        organization_id=conversation.organization_id,
        direction="outbound",
        body=text,
        provider_message_id=provider_message_id or None,
        sent_by="ai_agent",
        status="sent",
    )
