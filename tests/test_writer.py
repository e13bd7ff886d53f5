"""Unit tests for follow-up message generation."""
from types import SimpleNamespace

import pytest

from intelligence.writer import build_follow_up_prompt, fallback_message, generate_follow_up_message
from model_config import AICredentials
from schemas.follow_up import FollowUpContext


CREDS = AICredentials(provider="google", model="gemini/gemini-2.5-flash", api_key="g-key")
CONTEXT = FollowUpContext(
    context_for_message="Cliente ia conversar com a esposa sobre o pacote",
    urgency_hook="vagas limitadas para março",
)
MEMORIES = [SimpleNamespace(memory_type="family", key="spouse_name", value="Maria")]


def _completion(text=None, error=None):
    calls = []

    async def complete(prompt, credentials, max_tokens=1500):
        calls.append((prompt, max_tokens))
        if error:
            raise error
        return text

    complete.calls = calls
    return complete


def test_prompt_includes_context_tone_and_memories():
    prompt = build_follow_up_prompt(
        CONTEXT, "Ana", "vou ver com minha esposa", "check_with_spouse", "friendly", MEMORIES
    )

    assert "Ana" in prompt
    assert "vou ver com minha esposa" in prompt
    assert "check_with_spouse" in prompt
    assert "friendly" in prompt
    assert "vagas limitadas para março" in prompt
    assert "- [family] spouse_name: Maria" in prompt


@pytest.mark.asyncio
async def test_generated_text_is_stripped():
    complete = _completion(text="  Oi Ana! Conseguiu conversar com a Maria?  ")

    message = await generate_follow_up_message(
        CONTEXT, "Ana", "vou ver com minha esposa", "check_with_spouse", "friendly",
        MEMORIES, CREDS, completion=complete,
    )

    assert message == "Oi Ana! Conseguiu conversar com a Maria?"
    assert complete.calls[0][1] == 300


@pytest.mark.asyncio
async def test_no_credentials_uses_fallback():
    complete = _completion(text="never used")

    message = await generate_follow_up_message(
        CONTEXT, "Ana", None, None, "friendly", [], None, completion=complete,
    )

    assert message == fallback_message("Ana", "no_credentials")
    assert "Ana" in message
    assert complete.calls == []


@pytest.mark.asyncio
async def test_empty_answer_uses_fallback():
    message = await generate_follow_up_message(
        CONTEXT, None, None, None, "formal", [], CREDS, completion=_completion(text="   "),
    )

    assert message == fallback_message(None, "empty")
    assert message.startswith("Olá!")


@pytest.mark.asyncio
async def test_provider_error_uses_fallback():
    message = await generate_follow_up_message(
        CONTEXT, "Ana", None, None, "casual", [], CREDS,
        completion=_completion(error=RuntimeError("quota exceeded")),
    )

    assert message == fallback_message("Ana", "error")
