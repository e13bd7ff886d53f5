"""Integration tests for the inbound message pipeline and follow-up scheduling."""
import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from db import get_db
from db.models import Message
from db.repositories import audit
from db.repositories import conversations as conversations_repo
from db.repositories import follow_ups as follow_ups_repo
from db.repositories import labels as labels_repo
from db.repositories import lead_scores as lead_scores_repo
from db.repositories import settings as settings_repo
from followups.scheduler import schedule_follow_up
from intelligence.matcher import analyze_locally
from intelligence.pipeline import handle_inbound_message, resume_automation
from schemas.intelligence import MAX_DELAY_MINUTES


class FakeGateway:
    def __init__(self):
        self.sent = []

    def __call__(self, credentials, to_address, body):
        self.sent.append(body)
        return f"zapi-{len(self.sent)}"


async def _inbound(session_factory, seeded, body, provider_message_id=None, gateway=None, completion=None):
    async with get_db(session_factory) as session:
        return await handle_inbound_message(
            session, seeded.conversation.id, body,
            provider_message_id=provider_message_id, gateway=gateway, completion=completion,
        )


@pytest.mark.asyncio
async def test_spouse_message_schedules_follow_up(session_factory, seed):
    seeded = await seed()
    before = datetime.now(timezone.utc)

    result = await _inbound(session_factory, seeded, "vou ver com minha esposa", "wamid-1")

    assert result.source == "local"
    async with get_db(session_factory) as session:
        pending = await follow_ups_repo.list_for_conversation(session, seeded.conversation.id, "pending")
        score = await lead_scores_repo.get_lead_score(session, seeded.conversation.id)
        labels = await labels_repo.get_conversation_labels(session, seeded.conversation.id)
        actions = await audit.list_actions(session, seeded.conversation.id)
        conversation = await conversations_repo.get_conversation(session, seeded.conversation.id)

    assert len(pending) == 1
    follow_up = pending[0]
    assert follow_up.detected_intent == "check_with_spouse"
    assert follow_up.original_customer_message == "vou ver com minha esposa"
    assert follow_up.context["customer_name"] == "Ana"
    assert before + timedelta(minutes=30) <= follow_up.trigger_at
    assert follow_up.trigger_at <= datetime.now(timezone.utc) + timedelta(minutes=30)

    assert score.score == 5
    assert score.temperature == "cold"
    assert score.factors == {"intent:check_with_spouse": 0.85}
    assert [label.name for label in labels] == ["Aguardando"]
    assert {a.action for a in actions} == {"follow_up_scheduled", "lead_score_updated", "label_assigned"}
    assert conversation.last_message_text == "vou ver com minha esposa"


@pytest.mark.asyncio
async def test_duplicate_provider_message_is_ignored(session_factory, seed):
    seeded = await seed()

    first = await _inbound(session_factory, seeded, "quanto custa?", "wamid-dup")
    second = await _inbound(session_factory, seeded, "quanto custa?", "wamid-dup")

    assert first is not None
    assert second is None
    async with get_db(session_factory) as session:
        count = (await session.execute(
            select(func.count()).select_from(Message).where(Message.provider_message_id == "wamid-dup")
        )).scalar_one()
        score = await lead_scores_repo.get_lead_score(session, seeded.conversation.id)
    assert count == 1
    assert score.score == 15


@pytest.mark.asyncio
async def test_customer_reply_cancels_pending_follow_up(session_factory, seed):
    seeded = await seed()
    await _inbound(session_factory, seeded, "vou ver com minha esposa", "wamid-1")

    await _inbound(session_factory, seeded, "bom dia", "wamid-2")

    async with get_db(session_factory) as session:
        rows = await follow_ups_repo.list_for_conversation(session, seeded.conversation.id)
        cancelled = await audit.list_actions(session, seeded.conversation.id, action="follow_up_cancelled")
    assert [row.status for row in rows] == ["cancelled"]
    assert cancelled[0].details == {"count": 1, "reason": "customer_replied"}


@pytest.mark.asyncio
async def test_request_for_human_pauses_automation(session_factory, seed):
    seeded = await seed(transfer_message="Vou te passar para um atendente, só um instante.")
    gateway = FakeGateway()

    await _inbound(session_factory, seeded, "quero falar com um atendente", "wamid-1", gateway=gateway)

    async with get_db(session_factory) as session:
        conversation = await conversations_repo.get_conversation(session, seeded.conversation.id)
        paused = await audit.list_actions(session, seeded.conversation.id, action="smart_paused")
        messages = await conversations_repo.get_recent_messages(session, seeded.conversation.id)
    assert conversation.ai_active is False
    assert conversation.ai_paused_reason == "customer_requested_human"
    assert conversation.ai_paused_at is not None
    assert paused[0].details["reason"] == "customer_requested_human"
    assert gateway.sent == ["Vou te passar para um atendente, só um instante."]
    assert [(m.direction, m.sent_by) for m in messages] == [("inbound", "customer"), ("outbound", "ai_agent")]

    # While paused, messages are recorded but not analyzed.
    result = await _inbound(session_factory, seeded, "vou ver com minha esposa", "wamid-2")
    assert result is None
    async with get_db(session_factory) as session:
        assert await follow_ups_repo.count_active(session, seeded.conversation.id) == 0

    async with get_db(session_factory) as session:
        await resume_automation(session, conversation)
    async with get_db(session_factory) as session:
        conversation = await conversations_repo.get_conversation(session, seeded.conversation.id)
    assert conversation.ai_active is True
    assert conversation.ai_paused_reason is None


@pytest.mark.asyncio
async def test_disabled_switches_skip_side_effects(session_factory, seed):
    seeded = await seed(lead_scoring_enabled=False, auto_label_enabled=False, follow_up_enabled=False)

    result = await _inbound(session_factory, seeded, "vou ver com minha esposa", "wamid-1")

    assert [i.intent for i in result.intents] == ["check_with_spouse"]
    async with get_db(session_factory) as session:
        assert await lead_scores_repo.get_lead_score(session, seeded.conversation.id) is None
        assert await labels_repo.get_conversation_labels(session, seeded.conversation.id) == []
        assert await follow_ups_repo.count_active(session, seeded.conversation.id) == 0


@pytest.mark.asyncio
async def test_unknown_conversation_raises(session_factory):
    import uuid

    with pytest.raises(LookupError):
        async with get_db(session_factory) as session:
            await handle_inbound_message(session, uuid.uuid4(), "oi")


@pytest.mark.asyncio
async def test_huge_ai_delay_is_clamped_and_message_kept(session_factory, seed):
    seeded = await seed()
    async with get_db(session_factory) as session:
        await settings_repo.upsert_organization_settings(session, seeded.organization_id, {
            "ai_provider": "openai",
            "ai_model": "gpt-4o-mini",
            "ai_openai_key": "sk-test",
        })

    async def completion(prompt, credentials, max_tokens=1500):
        return json.dumps({
            "intents": [{"intent": "think_about_it", "confidence": 0.9}],
            "follow_up": {"should_schedule": True, "delay_minutes": 10**13},
        })

    before = datetime.now(timezone.utc)
    result = await _inbound(session_factory, seeded, "vou pensar", "wamid-1", completion=completion)

    assert result.source == "ai"
    async with get_db(session_factory) as session:
        pending = await follow_ups_repo.list_for_conversation(session, seeded.conversation.id, "pending")
        messages = await conversations_repo.get_recent_messages(session, seeded.conversation.id)
    assert [m.body for m in messages] == ["vou pensar"]
    assert len(pending) == 1
    assert pending[0].trigger_at >= before + timedelta(minutes=MAX_DELAY_MINUTES)
    assert pending[0].trigger_at <= datetime.now(timezone.utc) + timedelta(minutes=MAX_DELAY_MINUTES)


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_schedule_respects_per_conversation_cap(session_factory, seed):
    seeded = await seed(follow_up_max_per_conversation=1)
    intelligence = analyze_locally("vou pensar")

    async with get_db(session_factory) as session:
        first = await schedule_follow_up(
            session, seeded.conversation, seeded.config, intelligence, incoming_text="vou pensar"
        )
        second = await schedule_follow_up(
            session, seeded.conversation, seeded.config, intelligence, incoming_text="vou pensar"
        )

    assert first is not None
    assert second is None
    async with get_db(session_factory) as session:
        assert await follow_ups_repo.count_active(session, seeded.conversation.id) == 1


@pytest.mark.asyncio
async def test_schedule_falls_back_to_default_delay(session_factory, seed):
    seeded = await seed(follow_up_default_delay_minutes=90)
    intelligence = analyze_locally("vou pensar")
    intelligence.follow_up.delay_minutes = 0
    now = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)

    async with get_db(session_factory) as session:
        follow_up = await schedule_follow_up(
            session, seeded.conversation, seeded.config, intelligence,
            incoming_text="vou pensar", now=now,
        )

    assert follow_up.trigger_at == now + timedelta(minutes=90)
    assert follow_up.detected_intent == "think_about_it"


@pytest.mark.asyncio
async def test_nothing_scheduled_without_request(session_factory, seed):
    seeded = await seed()

    async with get_db(session_factory) as session:
        follow_up = await schedule_follow_up(
            session, seeded.conversation, seeded.config,
            analyze_locally("quero fechar, manda o contrato"), incoming_text="quero fechar",
        )

    assert follow_up is None


@pytest.mark.asyncio
async def test_schedule_caps_delay(session_factory, seed):
    seeded = await seed()
    intelligence = analyze_locally("vou pensar")
    intelligence.follow_up.delay_minutes = 10**9
    now = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)

    async with get_db(session_factory) as session:
        follow_up = await schedule_follow_up(
            session, seeded.conversation, seeded.config, intelligence,
            incoming_text="vou pensar", now=now,
        )

    assert follow_up.trigger_at == now + timedelta(minutes=MAX_DELAY_MINUTES)
