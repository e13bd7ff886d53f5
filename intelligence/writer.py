"""Follow-up message generation."""
import asyncio
import json
import logging
import os
from typing import Any, Iterable, Optional

from intelligence.extractor import format_memories
from intelligence.templates import load_prompt, render
from model_config import AICredentials
from schemas.follow_up import FollowUpContext
from tools import completion_tools

logger = logging.getLogger(__name__)

FOLLOW_UP_TEMPLATE = load_prompt("follow_up_message.md")
FOLLOW_UP_MAX_TOKENS = 300
AI_TIMEOUT_SECONDS = float(os.environ.get("AI_TIMEOUT_SECONDS", "20"))

NO_MEMORIES = "Nenhuma memória registrada."

_FALLBACKS = {
    "no_credentials": "Olá{name}! Tudo bem? Gostaria de retomar nossa conversa. Posso ajudar com algo?",
    "empty": "Olá{name}! Gostaria de retomar nossa conversa. Posso ajudar?",
    "error": "Olá{name}! Tudo bem? Gostaria de saber se ainda posso ajudar com algo.",
}


def fallback_message(customer_name: Optional[str], reason: str = "no_credentials") -> str:
    name = f" {customer_name}" if customer_name else ""
    return _FALLBACKS[reason].format(name=name)


def build_follow_up_prompt(
    context: FollowUpContext,
    customer_name: Optional[str],
    original_message: Optional[str],
    intent: Optional[str],
    tone: str,
    memories: Iterable[Any],
) -> str:
    extra = context.context_for_message or json.dumps(
        context.model_dump(exclude_none=True), ensure_ascii=False
    )
    return render(FOLLOW_UP_TEMPLATE, {
        "customer_name": customer_name or "Cliente",
        "original_message": original_message or "",
        "intent": intent or "follow_up",
        "context": extra,
        "urgency_hook": context.urgency_hook or "",
        "tone": tone,
        "memories": format_memories(memories, empty=NO_MEMORIES),
    })


async def generate_follow_up_message(
    context: FollowUpContext,
    customer_name: Optional[str],
    original_message: Optional[str],
    intent: Optional[str],
    tone: str,
    memories: Iterable[Any],
    credentials: Optional[AICredentials],
    completion=None,
    timeout: Optional[float] = None,
) -> str:
    """Write a short follow-up in the agent's tone, falling back to a canned greeting.

    Never raises: no credentials, provider errors, timeouts and empty answers
    all produce a fallback text.
    """
    if credentials is None:
        return fallback_message(customer_name, "no_credentials")

    prompt = build_follow_up_prompt(
        context, customer_name, original_message, intent, tone, memories
    )
    complete = completion or completion_tools.complete
    try:
        text = await asyncio.wait_for(
            complete(prompt, credentials, max_tokens=FOLLOW_UP_MAX_TOKENS),
            timeout=timeout or AI_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.warning("Follow-up generation timed out; using fallback text")
        return fallback_message(customer_name, "error")
    except Exception as e:
        logger.warning("Follow-up generation failed; using fallback text: %s", e, exc_info=True)
        return fallback_message(customer_name, "error")

    text = (text or "").strip()
    return text or fallback_message(customer_name, "empty")
