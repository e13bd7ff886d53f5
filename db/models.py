"""SQLAlchemy 2.0 ORM models for the follow-up automation service.

Covers 11 tables:
  - configuration: organization_settings, channel_instances, automation_configs
  - conversations: conversations, messages
  - intelligence: chat_memories, lead_scores, labels, conversation_labels
  - scheduling: follow_ups
  - audit: automation_logs
"""

import uuid
from datetime import datetime, time
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

from db.types import UTCDateTime


# ---------------------------------------------------------------------------
# Shared base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    pass


def _in_check(column: str, values: tuple[str, ...]) -> str:
    return f"{column} IN (" + ", ".join(f"'{v}'" for v in values) + ")"


# ---------------------------------------------------------------------------
# Enumerated values used in CHECK constraints
# ---------------------------------------------------------------------------

AI_PROVIDERS = ("google", "openai", "anthropic")
INSTANCE_STATUSES = ("disconnected", "connecting", "connected", "banned")
AGENT_TONES = ("professional", "friendly", "casual", "formal")
CONVERSATION_STATUSES = ("open", "closed", "archived")
MESSAGE_DIRECTIONS = ("inbound", "outbound")
MESSAGE_SENDERS = ("customer", "ai_agent", "human", "follow_up")
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
TEMPERATURES = ("cold", "warm", "hot", "on_fire")
BUYING_STAGES = (
    "awareness",
    "interest",
    "consideration",
    "decision",
    "negotiation",
    "closed_won",
    "closed_lost",
)
FOLLOW_UP_STATUSES = ("pending", "processing", "sent", "cancelled", "failed", "skipped")
FOLLOW_UP_TYPES = ("smart", "scheduled", "reminder", "nurture", "reactivation")
LOG_ACTIONS = (
    "follow_up_scheduled",
    "follow_up_sent",
    "follow_up_failed",
    "follow_up_retry",
    "follow_up_rescheduled",
    "follow_up_cancelled",
    "memory_extracted",
    "lead_score_updated",
    "label_assigned",
    "smart_paused",
    "resumed",
)


# ===========================================================================
# Configuration
# ===========================================================================


class OrganizationSettings(Base):
    """AI provider selection and credentials for one organization."""

    __tablename__ = "organization_settings"
    __table_args__ = (
        CheckConstraint(_in_check("ai_provider", AI_PROVIDERS), name="ck_settings_ai_provider"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    ai_provider: Mapped[str] = mapped_column(Text, nullable=False, server_default="google")
    ai_model: Mapped[str] = mapped_column(Text, nullable=False, server_default="gemini-2.5-flash")
    ai_google_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_openai_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_anthropic_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


class ChannelInstance(Base):
    """A connected messaging-provider account (one phone number)."""

    __tablename__ = "channel_instances"
    __table_args__ = (
        CheckConstraint(_in_check("status", INSTANCE_STATUSES), name="ck_instance_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    provider_instance_id: Mapped[str] = mapped_column(Text, nullable=False)
    token: Mapped[str] = mapped_column(Text, nullable=False)
    client_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, server_default="disconnected")
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )


class AutomationConfig(Base):
    """Per-instance automation switches, follow-up limits and quiet hours."""

    __tablename__ = "automation_configs"
    __table_args__ = (
        CheckConstraint(_in_check("agent_tone", AGENT_TONES), name="ck_config_agent_tone"),
        CheckConstraint(
            "follow_up_max_per_conversation >= 0", name="ck_config_follow_up_max"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    instance_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("channel_instances.id"), unique=True, nullable=False
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    ai_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    agent_name: Mapped[str] = mapped_column(Text, default="Assistente", nullable=False)
    agent_tone: Mapped[str] = mapped_column(Text, default="friendly", nullable=False)
    transfer_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    memory_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    follow_up_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_label_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    lead_scoring_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    smart_pause_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    follow_up_default_delay_minutes: Mapped[int] = mapped_column(
        Integer, default=30, nullable=False
    )
    follow_up_max_per_conversation: Mapped[int] = mapped_column(
        Integer, default=3, nullable=False
    )
    follow_up_quiet_hours_start: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    follow_up_quiet_hours_end: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    timezone: Mapped[str] = mapped_column(Text, default="UTC", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


# ===========================================================================
# Conversations
# ===========================================================================


class Conversation(Base):
    """One-to-one chat with a customer on a channel instance."""

    __tablename__ = "conversations"
    __table_args__ = (
        CheckConstraint(_in_check("status", CONVERSATION_STATUSES), name="ck_conversation_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    instance_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("channel_instances.id"), nullable=False
    )
    phone: Mapped[str] = mapped_column(Text, nullable=False)
    contact_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, default="open", nullable=False)
    ai_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    ai_paused_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_paused_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_message_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


class Message(Base):
    """Append-only message log. provider_message_id is the inbound dedup key."""

    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint(_in_check("direction", MESSAGE_DIRECTIONS), name="ck_message_direction"),
        CheckConstraint(
            "sent_by IS NULL OR " + _in_check("sent_by", MESSAGE_SENDERS),
            name="ck_message_sent_by",
        ),
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id"), nullable=False
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    direction: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    provider_message_id: Mapped[Optional[str]] = mapped_column(Text, unique=True, nullable=True)
    status: Mapped[str] = mapped_column(Text, default="received", nullable=False)
    sent_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ===========================================================================
# Conversation intelligence
# ===========================================================================


class ChatMemory(Base):
    """A durable fact about the customer, unique per (conversation, key)."""

    __tablename__ = "chat_memories"
    __table_args__ = (
        CheckConstraint(_in_check("memory_type", MEMORY_TYPES), name="ck_memory_type"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_memory_confidence"),
        UniqueConstraint("conversation_id", "key", name="uq_memory_conversation_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id"), nullable=False
    )
    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    memory_type: Mapped[str] = mapped_column(Text, nullable=False)
    key: Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence: Mapped[float] = mapped_column(Float, default=0.8, nullable=False)
    source_message_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class LeadScore(Base):
    """Bounded lead score, temperature and score history (one row per conversation)."""

    __tablename__ = "lead_scores"
    __table_args__ = (
        CheckConstraint("score >= 0 AND score <= 100", name="ck_lead_score_range"),
        CheckConstraint(_in_check("temperature", TEMPERATURES), name="ck_lead_temperature"),
        CheckConstraint(_in_check("buying_stage", BUYING_STAGES), name="ck_lead_buying_stage"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id"), unique=True, nullable=False
    )
    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    temperature: Mapped[str] = mapped_column(Text, default="cold", nullable=False)
    buying_stage: Mapped[str] = mapped_column(Text, default="awareness", nullable=False)
    factors: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class Label(Base):
    """Organization label catalog."""

    __tablename__ = "labels"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_label_org_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    color: Mapped[str] = mapped_column(Text, default="#6b7280", nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_assign: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )


class ConversationLabel(Base):
    """Label assignment; unique per (conversation, label)."""

    __tablename__ = "conversation_labels"
    __table_args__ = (
        UniqueConstraint("conversation_id", "label_id", name="uq_conversation_label"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id"), nullable=False
    )
    label_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("labels.id"), nullable=False)
    assigned_by: Mapped[str] = mapped_column(Text, default="ai", nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ===========================================================================
# Scheduling
# ===========================================================================


class FollowUp(Base):
    """A due-dated outbound follow-up message.

    Lifecycle: pending -> processing -> sent | failed, pending -> cancelled.
    A claimed row (processing) returns to pending on quiet-hour deferral or a
    retryable failure. sent, cancelled and failed are terminal.
    """

    __tablename__ = "follow_ups"
    __table_args__ = (
        CheckConstraint(_in_check("status", FOLLOW_UP_STATUSES), name="ck_follow_up_status"),
        CheckConstraint(_in_check("follow_up_type", FOLLOW_UP_TYPES), name="ck_follow_up_type"),
        CheckConstraint("retry_count >= 0", name="ck_follow_up_retry_count"),
        Index("ix_follow_ups_status_trigger", "status", "trigger_at"),
        Index("ix_follow_ups_conversation_status", "conversation_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id"), nullable=False
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    instance_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    trigger_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[str] = mapped_column(Text, default="pending", nullable=False)
    follow_up_type: Mapped[str] = mapped_column(Text, default="smart", nullable=False)
    detected_intent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    intent_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    context: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    original_customer_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    original_message_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    generated_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    sent_message_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    claimed_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_by: Mapped[str] = mapped_column(Text, default="ai", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


# ===========================================================================
# Audit
# ===========================================================================


class AutomationLog(Base):
    """Audit trail of automated actions (follow-ups, labels, pauses)."""

    __tablename__ = "automation_logs"
    __table_args__ = (
        CheckConstraint(_in_check("action", LOG_ACTIONS), name="ck_log_action"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    message_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    triggered_by: Mapped[str] = mapped_column(Text, default="ai", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )
