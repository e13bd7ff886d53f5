"""Merge policy for local pattern results and AI analysis.

A strategy takes (local, ai, table) and returns the merged intelligence, so
the AI-vs-local authority can be tuned without touching the pipeline.
"""
from typing import Callable, Dict, List, Optional, Sequence

from intelligence.matcher import follow_up_for
from intelligence.patterns import IntentPattern
from schemas.intelligence import ConversationIntelligence, DetectedIntent, FollowUpDecision

MergeStrategy = Callable[
    [ConversationIntelligence, ConversationIntelligence, Sequence[IntentPattern]],
    ConversationIntelligence,
]


def merge_intents(
    local: Sequence[DetectedIntent], ai: Sequence[DetectedIntent]
) -> List[DetectedIntent]:
    """One entry per intent name; an AI entry replaces a local one only with strictly higher confidence."""
    merged: Dict[str, DetectedIntent] = {}
    for intent in list(local) + list(ai):
        existing = merged.get(intent.intent)
        if existing is None or intent.confidence > existing.confidence:
            merged[intent.intent] = intent
    return list(merged.values())


def primary_intent(intents: Sequence[DetectedIntent]) -> Optional[DetectedIntent]:
    """Highest-confidence intent, preferring those that carry a follow-up delay."""
    with_delay = [i for i in intents if i.follow_up_delay_minutes]
    best = None
    for intent in with_delay or intents:
        if best is None or intent.confidence > best.confidence:
            best = intent
    return best


def _merged_follow_up(
    ai: ConversationIntelligence,
    intents: Sequence[DetectedIntent],
    table: Sequence[IntentPattern],
) -> Optional[FollowUpDecision]:
    if ai.follow_up is None:
        return follow_up_for(intents, table, context_for_message=ai.summary or "")
    if not ai.follow_up.should_schedule or ai.follow_up.intent:
        return ai.follow_up
    primary = primary_intent(intents)
    if primary is None:
        return ai.follow_up
    return ai.follow_up.model_copy(update={
        "intent": primary.intent,
        "confidence": primary.confidence,
    })


def prefer_confident_ai(
    local: ConversationIntelligence,
    ai: ConversationIntelligence,
    table: Sequence[IntentPattern],
) -> ConversationIntelligence:
    """Default strategy: AI values win when present, local values fill the gaps."""
    intents = merge_intents(local.intents, ai.intents)
    should_pause = ai.should_pause or local.should_pause
    return ConversationIntelligence(
        intents=intents,
        memories=ai.memories,
        sentiment=ai.sentiment,
        lead_score_delta=ai.lead_score_delta or local.lead_score_delta,
        buying_stage=ai.buying_stage or local.buying_stage,
        suggested_labels=ai.suggested_labels or local.suggested_labels,
        should_pause=should_pause,
        pause_reason=(ai.pause_reason or local.pause_reason) if should_pause else None,
        summary=ai.summary,
        follow_up=_merged_follow_up(ai, intents, table),
        source="ai",
    )
