"""Conversation analysis: local pattern matching enriched by a best-effort AI pass.

analyze_message() always returns a usable result. Missing credentials, provider
errors, timeouts and unparseable answers all degrade to the local-only result;
storage errors (settings lookup) propagate.
"""
import asyncio
import json
import logging
import os
from typing import Any, Iterable, Optional, Sequence
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from db.repositories import settings as settings_repo
from intelligence.matcher import analyze_locally
from intelligence.merge import MergeStrategy, prefer_confident_ai
from intelligence.patterns import DEFAULT_INTENT_PATTERNS, IntentPattern
from intelligence.templates import load_prompt, render
from model_config import resolve_credentials
from schemas.intelligence import AIAnalysis, ConversationIntelligence
from tools import completion_tools

logger = logging.getLogger(__name__)

ANALYSIS_TEMPLATE = load_prompt("conversation_analysis.md")
ANALYSIS_MAX_TOKENS = 1500
HISTORY_WINDOW = 20
AI_TIMEOUT_SECONDS = float(os.environ.get("AI_TIMEOUT_SECONDS", "20"))

NO_MEMORIES = "Nenhuma memória registrada ainda."
NO_HISTORY = "(sem mensagens anteriores)"


# ---------------------------------------------------------------------------
# Prompt building
# ---------------------------------------------------------------------------


def format_memories(memories: Iterable[Any], empty: str = NO_MEMORIES) -> str:
    """Render memories (ORM rows or ExtractedMemory) as '- [type] key: value' bullets."""
    lines = [f"- [{m.memory_type}] {m.key}: {m.value}" for m in memories]
    return "\n".join(lines) if lines else empty


def format_history(messages: Sequence[Any], window: int = HISTORY_WINDOW) -> str:
    """Render the last `window` messages as 'Cliente:' / 'Assistente:' lines."""
    lines = []
    for message in list(messages)[-window:]:
        speaker = "Cliente" if message.direction == "inbound" else "Assistente"
        lines.append(f"{speaker}: {message.body}")
    return "\n".join(lines) if lines else NO_HISTORY


def build_analysis_prompt(memories_text: str, conversation: str, message: str) -> str:
    return render(ANALYSIS_TEMPLATE, {
        "memories": memories_text,
        "conversation": conversation,
        "message": message,
    })


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def extract_json_object(text: str) -> Optional[str]:
    """Return the first balanced {...} block in `text`, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:index + 1]
        # Unbalanced from this brace; try the next one.
        start = text.find("{", start + 1)
    return None


def parse_analysis(text: str, incoming_message: str) -> Optional[ConversationIntelligence]:
    """Turn raw model output into ConversationIntelligence, or None if it holds no JSON object."""
    block = extract_json_object(text or "")
    if block is None:
        return None
    try:
        payload = json.loads(block)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    try:
        analysis = AIAnalysis.model_validate(payload)
    except ValidationError:
        return None

    intents = [
        intent.model_copy(update={"customer_message": incoming_message})
        for intent in analysis.intents
    ]
    summary = analysis.follow_up.context_for_message if analysis.follow_up else None
    return ConversationIntelligence(
        intents=intents,
        memories=analysis.memories,
        sentiment=analysis.sentiment,
        lead_score_delta=analysis.lead_score_delta,
        buying_stage=analysis.buying_stage,
        suggested_labels=analysis.suggested_labels,
        should_pause=analysis.should_pause,
        pause_reason=analysis.pause_reason,
        summary=summary or None,
        follow_up=analysis.follow_up,
        source="ai",
    )


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


async def analyze_with_ai(
    session: AsyncSession,
    organization_id: UUID,
    conversation_history: str,
    incoming_message: str,
    existing_memories: Iterable[Any],
    completion=None,
    timeout: Optional[float] = None,
) -> Optional[ConversationIntelligence]:
    """Run the AI pass. Returns None instead of raising on any AI-side problem."""
    settings = await settings_repo.get_organization_settings(session, organization_id)
    credentials = resolve_credentials(settings)
    if credentials is None:
        logger.debug("No AI credentials for organization %s; using local analysis", organization_id)
        return None

    prompt = build_analysis_prompt(
        format_memories(existing_memories),
        conversation_history,
        incoming_message,
    )
    complete = completion or completion_tools.complete
    try:
        text = await asyncio.wait_for(
            complete(prompt, credentials, max_tokens=ANALYSIS_MAX_TOKENS),
            timeout=timeout or AI_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.warning("AI analysis timed out for organization %s", organization_id)
        return None
    except Exception as e:
        logger.warning("AI analysis failed for organization %s: %s", organization_id, e, exc_info=True)
        return None

    result = parse_analysis(text, incoming_message)
    if result is None:
        logger.warning("AI analysis returned no usable JSON for organization %s", organization_id)
    return result


async def analyze_message(
    session: AsyncSession,
    organization_id: UUID,
    conversation_history: str,
    incoming_message: str,
    existing_memories: Iterable[Any],
    config,
    patterns: Sequence[IntentPattern] = DEFAULT_INTENT_PATTERNS,
    merge: MergeStrategy = prefer_confident_ai,
    completion=None,
    timeout: Optional[float] = None,
) -> ConversationIntelligence:
    """Classify an inbound message and extract memories, score, labels and pause/follow-up decisions.

    The AI pass only runs when memory, follow-up or auto-label features are
    enabled in `config`.
    """
    local = analyze_locally(incoming_message, patterns)
    if not (config.memory_enabled or config.follow_up_enabled or config.auto_label_enabled):
        return local

    ai = await analyze_with_ai(
        session,
        organization_id,
        conversation_history,
        incoming_message,
        existing_memories,
        completion=completion,
        timeout=timeout,
    )
    if ai is None:
        return local
    return merge(local, ai, patterns)
