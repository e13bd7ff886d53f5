"""Conversation intelligence schemas.

DetectedIntent / ExtractedMemory / ConversationIntelligence are the merged,
caller-facing result. AIAnalysis is the lenient parser for the model's raw
JSON: wrong or missing fields fall back to defaults instead of failing.
"""
import math
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Sentiment = Literal["very_positive", "positive", "neutral", "negative", "very_negative"]
BuyingStage = Literal[
    "awareness",
    "interest",
    "consideration",
    "decision",
    "negotiation",
    "closed_won",
    "closed_lost",
]
MemoryType = Literal[
    "fact",
    "preference",
    "objection",
    "family",
    "timeline",
    "budget",
    "interest",
    "personal",
    "interaction",
]

SENTIMENTS = ("very_positive", "positive", "neutral", "negative", "very_negative")
BUYING_STAGES = (
    "awareness",
    "interest",
    "consideration",
    "decision",
    "negotiation",
    "closed_won",
    "closed_lost",
)
MEMORY_TYPES = (
    "fact",
    "preference",
    "objection",
    "family",
    "timeline",
    "budget",
    "interest",
    "personal",
    "interaction",
)

DEFAULT_AI_CONFIDENCE = 0.7
# 30 days; larger AI delays are clamped.
MAX_DELAY_MINUTES = 43200


class DetectedIntent(BaseModel):
    intent: str
    confidence: float = Field(ge=0, le=1)
    follow_up_delay_minutes: Optional[int] = None
    customer_message: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)


class ExtractedMemory(BaseModel):
    memory_type: MemoryType = "fact"
    key: str
    value: str
    context: Optional[str] = None
    confidence: float = Field(default=DEFAULT_AI_CONFIDENCE, ge=0, le=1)


class FollowUpDecision(BaseModel):
    should_schedule: bool = False
    delay_minutes: int = Field(default=0, ge=0)
    context_for_message: str = ""
    urgency_hook: Optional[str] = None
    intent: Optional[str] = None
    confidence: Optional[float] = None


class ConversationIntelligence(BaseModel):
    intents: List[DetectedIntent] = Field(default_factory=list)
    memories: List[ExtractedMemory] = Field(default_factory=list)
    sentiment: Sentiment = "neutral"
    lead_score_delta: int = 0
    buying_stage: Optional[BuyingStage] = None
    suggested_labels: List[str] = Field(default_factory=list)
    should_pause: bool = False
    pause_reason: Optional[str] = None
    summary: Optional[str] = None
    follow_up: Optional[FollowUpDecision] = None
    source: Literal["local", "ai"] = "local"


# ---------------------------------------------------------------------------
# Raw AI output
# ---------------------------------------------------------------------------


def _as_confidence(value: Any, default: float = DEFAULT_AI_CONFIDENCE) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return min(1.0, max(0.0, number))


def _as_int(value: Any, default: Optional[int] = 0) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return int(round(number))


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


class AIAnalysis(BaseModel):
    intents: List[DetectedIntent] = Field(default_factory=list)
    memories: List[ExtractedMemory] = Field(default_factory=list)
    sentiment: Sentiment = "neutral"
    lead_score_delta: int = 0
    buying_stage: Optional[BuyingStage] = None
    suggested_labels: List[str] = Field(default_factory=list)
    should_pause: bool = False
    pause_reason: Optional[str] = None
    follow_up: Optional[FollowUpDecision] = None

    @field_validator("intents", mode="before")
    @classmethod
    def _clean_intents(cls, value: Any) -> list:
        if not isinstance(value, list):
            return []
        cleaned = []
        for item in value:
            if not isinstance(item, dict):
                continue
            name = _as_text(item.get("intent"))
            if not name:
                continue
            delay = _as_int(item.get("follow_up_delay_minutes"), default=None)
            context = item.get("context")
            cleaned.append({
                "intent": name,
                "confidence": _as_confidence(item.get("confidence")),
                "follow_up_delay_minutes": min(delay, MAX_DELAY_MINUTES) if delay and delay > 0 else None,
                "context": context if isinstance(context, dict) else {},
            })
        return cleaned

    @field_validator("memories", mode="before")
    @classmethod
    def _clean_memories(cls, value: Any) -> list:
        if not isinstance(value, list):
            return []
        cleaned = []
        for item in value:
            if not isinstance(item, dict):
                continue
            key = _as_text(item.get("key"))
            text = _as_text(item.get("value"))
            if not key or not text:
                continue
            memory_type = item.get("memory_type")
            cleaned.append({
                "memory_type": memory_type if memory_type in MEMORY_TYPES else "fact",
                "key": key,
                "value": text,
                "context": _as_text(item.get("context")),
                "confidence": _as_confidence(item.get("confidence")),
            })
        return cleaned

    @field_validator("sentiment", mode="before")
    @classmethod
    def _clean_sentiment(cls, value: Any) -> str:
        return value if value in SENTIMENTS else "neutral"

    @field_validator("lead_score_delta", mode="before")
    @classmethod
    def _clean_delta(cls, value: Any) -> int:
        return _as_int(value, default=0)

    @field_validator("buying_stage", mode="before")
    @classmethod
    def _clean_stage(cls, value: Any) -> Optional[str]:
        return value if value in BUYING_STAGES else None

    @field_validator("suggested_labels", mode="before")
    @classmethod
    def _clean_labels(cls, value: Any) -> list:
        if not isinstance(value, list):
            return []
        labels = []
        for item in value:
            name = _as_text(item)
            if name and name not in labels:
                labels.append(name)
        return labels

    @field_validator("should_pause", mode="before")
    @classmethod
    def _clean_pause(cls, value: Any) -> bool:
        return value is True

    @field_validator("pause_reason", mode="before")
    @classmethod
    def _clean_reason(cls, value: Any) -> Optional[str]:
        return _as_text(value)

    @field_validator("follow_up", mode="before")
    @classmethod
    def _clean_follow_up(cls, value: Any) -> Optional[dict]:
        if not isinstance(value, dict):
            return None
        delay = _as_int(value.get("delay_minutes"), default=0)
        return {
            "should_schedule": value.get("should_schedule") is True,
            "delay_minutes": min(max(0, delay), MAX_DELAY_MINUTES),
            "context_for_message": _as_text(value.get("context_for_message")) or "",
            "urgency_hook": _as_text(value.get("urgency_hook")),
        }
