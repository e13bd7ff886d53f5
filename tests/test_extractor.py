"""Tests for AI analysis parsing, merge policy and best-effort fallback."""
import asyncio
import json
from types import SimpleNamespace

import pytest

from db import get_db
from db.repositories import settings as settings_repo
from intelligence.extractor import (
    analyze_message,
    build_analysis_prompt,
    extract_json_object,
    format_history,
    parse_analysis,
)
from intelligence.matcher import analyze_locally
from intelligence.merge import merge_intents, prefer_confident_ai
from intelligence.patterns import DEFAULT_INTENT_PATTERNS
from schemas.intelligence import MAX_DELAY_MINUTES, DetectedIntent


ALL_FEATURES = SimpleNamespace(memory_enabled=True, follow_up_enabled=True, auto_label_enabled=True)

AI_ANSWER = {
    "intents": [{"intent": "check_with_spouse", "confidence": 0.95, "follow_up_delay_minutes": 45}],
    "memories": [{"memory_type": "family", "key": "spouse_name", "value": "Maria"}],
    "sentiment": "positive",
    "lead_score_delta": 8,
    "buying_stage": "consideration",
    "suggested_labels": ["Aguardando"],
    "should_pause": False,
    "follow_up": {
        "should_schedule": True,
        "delay_minutes": 45,
        "context_for_message": "Cliente vai conversar com a esposa Maria",
        "urgency_hook": "condição válida até sexta",
    },
}


class FakeCompletion:
    def __init__(self, text=None, error=None, delay=0):
        self.text = text
        self.error = error
        self.delay = delay
        self.calls = []

    async def __call__(self, prompt, credentials, max_tokens=1500):
        self.calls.append((prompt, credentials, max_tokens))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.text


async def _with_openai_key(session_factory, organization_id):
    async with get_db(session_factory) as session:
        await settings_repo.upsert_organization_settings(session, organization_id, {
            "ai_provider": "openai",
            "ai_model": "gpt-4o-mini",
            "ai_openai_key": "sk-test",
        })


# ---------------------------------------------------------------------------
# JSON extraction and lenient parsing
# ---------------------------------------------------------------------------


class TestExtractJson:
    def test_object_wrapped_in_prose(self):
        text = 'Claro! Segue a análise:\n```json\n{"a": {"b": 1}}\n```\nQualquer dúvida, avise.'

        assert json.loads(extract_json_object(text)) == {"a": {"b": 1}}

    def test_braces_inside_strings(self):
        text = 'resultado: {"summary": "usa {chaves} e \\"aspas\\"", "n": 2} fim'

        assert json.loads(extract_json_object(text))["n"] == 2

    def test_no_object(self):
        assert extract_json_object("não consegui analisar") is None
        assert extract_json_object("{ incompleto") is None


class TestParseAnalysis:
    def test_missing_and_wrong_fields_get_defaults(self):
        text = json.dumps({
            "intents": "not-a-list",
            "sentiment": "ecstatic",
            "lead_score_delta": "12.6",
            "memories": [
                {"key": "budget", "value": 5000, "confidence": 3},
                {"key": "no_value"},
                {"memory_type": "weird", "key": "city", "value": "Campinas"},
            ],
            "buying_stage": "dreaming",
            "should_pause": "yes",
        })

        result = parse_analysis(text, "msg")

        assert result.intents == []
        assert result.sentiment == "neutral"
        assert result.lead_score_delta == 13
        assert result.buying_stage is None
        assert result.should_pause is False
        assert [(m.key, m.value, m.memory_type) for m in result.memories] == [
            ("budget", "5000", "fact"),
            ("city", "Campinas", "fact"),
        ]
        assert result.memories[0].confidence == 1.0
        assert result.memories[1].confidence == pytest.approx(0.7)
        assert result.source == "ai"

    def test_intent_confidence_defaults_and_message_is_attached(self):
        text = json.dumps({"intents": [{"intent": "price_inquiry"}, {"confidence": 0.9}]})

        result = parse_analysis(text, "quanto custa?")

        assert len(result.intents) == 1
        assert result.intents[0].confidence == pytest.approx(0.7)
        assert result.intents[0].customer_message == "quanto custa?"

    def test_out_of_range_delays_are_clamped(self):
        text = json.dumps({
            "intents": [{"intent": "think_about_it", "follow_up_delay_minutes": 10**13}],
            "follow_up": {"should_schedule": True, "delay_minutes": 10**13},
        })

        result = parse_analysis(text, "vou pensar")

        assert result.intents[0].follow_up_delay_minutes == MAX_DELAY_MINUTES
        assert result.follow_up.delay_minutes == MAX_DELAY_MINUTES

    def test_no_json(self):
        assert parse_analysis("Desculpe, não entendi.", "msg") is None
        assert parse_analysis("[1, 2, 3]", "msg") is None


def test_prompt_carries_memories_history_and_message():
    history = format_history([
        SimpleNamespace(direction="outbound", body="Oi, tudo bem?"),
        SimpleNamespace(direction="inbound", body="Tudo, quanto custa?"),
    ])

    prompt = build_analysis_prompt("- [budget] budget: R$ 5.000", history, "vou ver com minha esposa")

    assert "Assistente: Oi, tudo bem?" in prompt
    assert "Cliente: Tudo, quanto custa?" in prompt
    assert "- [budget] budget: R$ 5.000" in prompt
    assert "vou ver com minha esposa" in prompt
    assert "{memories}" not in prompt


# ---------------------------------------------------------------------------
# Merge policy
# ---------------------------------------------------------------------------


class TestMerge:
    def test_one_entry_per_intent_with_max_confidence(self):
        local = [DetectedIntent(intent="budget_hold", confidence=0.85, context={"matched_pattern": "budget_hold"})]
        ai = [
            DetectedIntent(intent="budget_hold", confidence=0.92),
            DetectedIntent(intent="price_inquiry", confidence=0.6),
        ]

        merged = merge_intents(local, ai)

        assert [(i.intent, i.confidence) for i in merged] == [
            ("budget_hold", 0.92),
            ("price_inquiry", 0.6),
        ]

    def test_equal_confidence_keeps_local_entry(self):
        local = [DetectedIntent(intent="budget_hold", confidence=0.85, context={"matched_pattern": "budget_hold"})]
        ai = [DetectedIntent(intent="budget_hold", confidence=0.85)]

        merged = merge_intents(local, ai)

        assert merged[0].context == {"matched_pattern": "budget_hold"}

    def test_local_values_fill_gaps(self):
        local = analyze_locally("quero falar com um atendente, tá caro")
        ai = parse_analysis(json.dumps({"sentiment": "negative"}), "x")

        merged = prefer_confident_ai(local, ai, DEFAULT_INTENT_PATTERNS)

        assert merged.should_pause is True
        assert merged.pause_reason == "customer_requested_human"
        assert merged.lead_score_delta == local.lead_score_delta
        assert merged.suggested_labels == ["Objeção"]
        assert merged.sentiment == "negative"
        assert merged.follow_up.intent == "budget_hold"


# ---------------------------------------------------------------------------
# analyze_message
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ai_result_is_merged(session_factory, seed):
    seeded = await seed()
    await _with_openai_key(session_factory, seeded.organization_id)
    completion = FakeCompletion(text="Aqui está:\n" + json.dumps(AI_ANSWER) + "\nAbraço")

    async with get_db(session_factory) as session:
        result = await analyze_message(
            session, seeded.organization_id, "", "vou ver com minha esposa", [],
            ALL_FEATURES, completion=completion,
        )

    prompt, credentials, max_tokens = completion.calls[0]
    assert credentials.model == "openai/gpt-4o-mini"
    assert max_tokens == 1500
    assert "vou ver com minha esposa" in prompt

    assert result.source == "ai"
    assert [(i.intent, i.confidence) for i in result.intents] == [("check_with_spouse", 0.95)]
    assert result.memories[0].key == "spouse_name"
    assert result.lead_score_delta == 8
    assert result.buying_stage == "consideration"
    assert result.follow_up.delay_minutes == 45
    assert result.follow_up.intent == "check_with_spouse"
    assert result.follow_up.urgency_hook == "condição válida até sexta"
    assert result.summary == "Cliente vai conversar com a esposa Maria"


@pytest.mark.asyncio
async def test_no_credentials_uses_local_analysis(session_factory, seed):
    seeded = await seed()
    completion = FakeCompletion(text=json.dumps(AI_ANSWER))

    async with get_db(session_factory) as session:
        result = await analyze_message(
            session, seeded.organization_id, "", "vou ver com minha esposa", [],
            ALL_FEATURES, completion=completion,
        )

    assert completion.calls == []
    assert result == analyze_locally("vou ver com minha esposa")


@pytest.mark.asyncio
async def test_disabled_features_skip_ai(session_factory, seed):
    seeded = await seed()
    await _with_openai_key(session_factory, seeded.organization_id)
    completion = FakeCompletion(text=json.dumps(AI_ANSWER))
    config = SimpleNamespace(memory_enabled=False, follow_up_enabled=False, auto_label_enabled=False)

    async with get_db(session_factory) as session:
        result = await analyze_message(
            session, seeded.organization_id, "", "vou ver com minha esposa", [],
            config, completion=completion,
        )

    assert completion.calls == []
    assert result.source == "local"


@pytest.mark.asyncio
@pytest.mark.parametrize("completion", [
    FakeCompletion(text="Não foi possível analisar."),
    FakeCompletion(error=RuntimeError("provider unavailable")),
    FakeCompletion(text=json.dumps(AI_ANSWER), delay=1),
])
async def test_ai_problems_degrade_to_local(session_factory, seed, completion):
    seeded = await seed()
    await _with_openai_key(session_factory, seeded.organization_id)

    async with get_db(session_factory) as session:
        result = await analyze_message(
            session, seeded.organization_id, "", "vou ver com minha esposa", [],
            ALL_FEATURES, completion=completion, timeout=0.05,
        )

    assert result.source == "local"
    assert [i.intent for i in result.intents] == ["check_with_spouse"]
