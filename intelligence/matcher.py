"""Local intent detection over the pattern table.

Pure functions: the same message and table always give the same result.
"""
from typing import List, Optional, Sequence

from intelligence.patterns import DEFAULT_INTENT_PATTERNS, IntentPattern, find_pattern
from schemas.intelligence import ConversationIntelligence, DetectedIntent, FollowUpDecision

# Trust weight for pattern hits; kept below the AI's usual confidence so a
# confident AI reading replaces it on merge.
LOCAL_CONFIDENCE = 0.85

WANTS_HUMAN = "wants_human"
HUMAN_REQUESTED_REASON = "customer_requested_human"


def detect_intents(
    message: str,
    table: Sequence[IntentPattern] = DEFAULT_INTENT_PATTERNS,
) -> List[DetectedIntent]:
    """Return one DetectedIntent per table entry with a matching pattern, in table order."""
    intents = []
    for entry in table:
        for regex in entry.patterns:
            if regex.search(message):
                intents.append(DetectedIntent(
                    intent=entry.intent,
                    confidence=LOCAL_CONFIDENCE,
                    follow_up_delay_minutes=entry.follow_up_delay_minutes,
                    customer_message=message,
                    context={"matched_pattern": entry.intent},
                ))
                break
    return intents


def score_delta_for(
    intents: Sequence[DetectedIntent],
    table: Sequence[IntentPattern] = DEFAULT_INTENT_PATTERNS,
) -> int:
    total = 0
    for intent in intents:
        entry = find_pattern(table, intent.intent)
        if entry is not None:
            total += entry.score_delta
    return total


def labels_for(
    intents: Sequence[DetectedIntent],
    table: Sequence[IntentPattern] = DEFAULT_INTENT_PATTERNS,
) -> List[str]:
    labels: List[str] = []
    for intent in intents:
        entry = find_pattern(table, intent.intent)
        if entry is not None and entry.label and entry.label not in labels:
            labels.append(entry.label)
    return labels


def follow_up_for(
    intents: Sequence[DetectedIntent],
    table: Sequence[IntentPattern] = DEFAULT_INTENT_PATTERNS,
    context_for_message: str = "",
) -> Optional[FollowUpDecision]:
    """Pick the highest-confidence intent with a non-zero delay; earlier intents win ties."""
    best: Optional[DetectedIntent] = None
    best_delay = 0
    for intent in intents:
        delay = intent.follow_up_delay_minutes
        if delay is None:
            entry = find_pattern(table, intent.intent)
            delay = entry.follow_up_delay_minutes if entry else 0
        if not delay:
            continue
        if best is None or intent.confidence > best.confidence:
            best, best_delay = intent, delay
    if best is None:
        return None
    return FollowUpDecision(
        should_schedule=True,
        delay_minutes=best_delay,
        context_for_message=context_for_message,
        intent=best.intent,
        confidence=best.confidence,
    )


def wants_human(intents: Sequence[DetectedIntent]) -> bool:
    return any(intent.intent == WANTS_HUMAN for intent in intents)


def analyze_locally(
    message: str,
    table: Sequence[IntentPattern] = DEFAULT_INTENT_PATTERNS,
) -> ConversationIntelligence:
    """Intelligence derived from the pattern table alone."""
    intents = detect_intents(message, table)
    pause = wants_human(intents)
    return ConversationIntelligence(
        intents=intents,
        sentiment="neutral",
        lead_score_delta=score_delta_for(intents, table),
        suggested_labels=labels_for(intents, table),
        should_pause=pause,
        pause_reason=HUMAN_REQUESTED_REASON if pause else None,
        follow_up=follow_up_for(intents, table),
        source="local",
    )
