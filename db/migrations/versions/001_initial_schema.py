"""Initial schema: configuration, conversations, intelligence, follow-ups, audit.

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _now():
    return sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    # ─── Configuration ───────────────────────────────────────────────────────

    op.create_table(
        "organization_settings",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("organization_id", sa.Uuid, nullable=False),
        sa.Column("ai_provider", sa.Text, nullable=False, server_default="google"),
        sa.Column("ai_model", sa.Text, nullable=False, server_default="gemini-2.5-flash"),
        sa.Column("ai_google_key", sa.Text, nullable=True),
        sa.Column("ai_openai_key", sa.Text, nullable=True),
        sa.Column("ai_anthropic_key", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.CheckConstraint(
            "ai_provider IN ('google', 'openai', 'anthropic')", name="ck_settings_ai_provider"
        ),
        sa.UniqueConstraint("organization_id", name="uq_settings_organization"),
    )

    op.create_table(
        "channel_instances",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("organization_id", sa.Uuid, nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("provider_instance_id", sa.Text, nullable=False),
        sa.Column("token", sa.Text, nullable=False),
        sa.Column("client_token", sa.Text, nullable=True),
        sa.Column("phone", sa.Text, nullable=True),
        sa.Column("status", sa.Text, nullable=False, server_default="disconnected"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.CheckConstraint(
            "status IN ('disconnected', 'connecting', 'connected', 'banned')",
            name="ck_instance_status",
        ),
    )

    op.create_table(
        "automation_configs",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("instance_id", sa.Uuid, nullable=False),
        sa.Column("organization_id", sa.Uuid, nullable=False),
        sa.Column("ai_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("agent_name", sa.Text, nullable=False, server_default="Assistente"),
        sa.Column("agent_tone", sa.Text, nullable=False, server_default="friendly"),
        sa.Column("transfer_message", sa.Text, nullable=True),
        sa.Column("memory_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("follow_up_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("auto_label_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("lead_scoring_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("smart_pause_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("follow_up_default_delay_minutes", sa.Integer, nullable=False, server_default="30"),
        sa.Column("follow_up_max_per_conversation", sa.Integer, nullable=False, server_default="3"),
        sa.Column("follow_up_quiet_hours_start", sa.Time, nullable=True),
        sa.Column("follow_up_quiet_hours_end", sa.Time, nullable=True),
        sa.Column("timezone", sa.Text, nullable=False, server_default="UTC"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.CheckConstraint(
            "agent_tone IN ('professional', 'friendly', 'casual', 'formal')",
            name="ck_config_agent_tone",
        ),
        sa.CheckConstraint("follow_up_max_per_conversation >= 0", name="ck_config_follow_up_max"),
        sa.ForeignKeyConstraint(
            ["instance_id"], ["channel_instances.id"], name="fk_config_instance", ondelete="CASCADE"
        ),
        sa.UniqueConstraint("instance_id", name="uq_config_instance"),
    )

    # ─── Conversations ───────────────────────────────────────────────────────

    op.create_table(
        "conversations",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("organization_id", sa.Uuid, nullable=False),
        sa.Column("instance_id", sa.Uuid, nullable=False),
        sa.Column("phone", sa.Text, nullable=False),
        sa.Column("contact_name", sa.Text, nullable=True),
        sa.Column("status", sa.Text, nullable=False, server_default="open"),
        sa.Column("ai_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("ai_paused_reason", sa.Text, nullable=True),
        sa.Column("ai_paused_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_message_text", sa.Text, nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.CheckConstraint(
            "status IN ('open', 'closed', 'archived')", name="ck_conversation_status"
        ),
        sa.ForeignKeyConstraint(
            ["instance_id"], ["channel_instances.id"], name="fk_conversation_instance", ondelete="CASCADE"
        ),
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("conversation_id", sa.Uuid, nullable=False),
        sa.Column("organization_id", sa.Uuid, nullable=False),
        sa.Column("direction", sa.Text, nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("provider_message_id", sa.Text, nullable=True),
        sa.Column("status", sa.Text, nullable=False, server_default="received"),
        sa.Column("sent_by", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("direction IN ('inbound', 'outbound')", name="ck_message_direction"),
        sa.CheckConstraint(
            "sent_by IS NULL OR sent_by IN ('customer', 'ai_agent', 'human', 'follow_up')",
            name="ck_message_sent_by",
        ),
        sa.ForeignKeyConstraint(
            ["conversation_id"], ["conversations.id"], name="fk_message_conversation", ondelete="CASCADE"
        ),
        sa.UniqueConstraint("provider_message_id", name="uq_message_provider_id"),
    )
    op.create_index(
        "ix_messages_conversation_created", "messages", ["conversation_id", "created_at"]
    )

    # ─── Intelligence ────────────────────────────────────────────────────────

    op.create_table(
        "chat_memories",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("conversation_id", sa.Uuid, nullable=False),
        sa.Column("organization_id", sa.Uuid, nullable=True),
        sa.Column("memory_type", sa.Text, nullable=False),
        sa.Column("key", sa.Text, nullable=False),
        sa.Column("value", sa.Text, nullable=False),
        sa.Column("context", sa.Text, nullable=True),
        sa.Column("confidence", sa.Float, nullable=False, server_default="0.8"),
        sa.Column("source_message_id", sa.Uuid, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "memory_type IN ('fact', 'preference', 'objection', 'family', 'timeline', "
            "'budget', 'interest', 'personal', 'interaction')",
            name="ck_memory_type",
        ),
        sa.CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_memory_confidence"),
        sa.ForeignKeyConstraint(
            ["conversation_id"], ["conversations.id"], name="fk_memory_conversation", ondelete="CASCADE"
        ),
        sa.UniqueConstraint("conversation_id", "key", name="uq_memory_conversation_key"),
    )

    op.create_table(
        "lead_scores",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("conversation_id", sa.Uuid, nullable=False),
        sa.Column("organization_id", sa.Uuid, nullable=True),
        sa.Column("score", sa.Integer, nullable=False, server_default="0"),
        sa.Column("temperature", sa.Text, nullable=False, server_default="cold"),
        sa.Column("buying_stage", sa.Text, nullable=False, server_default="awareness"),
        sa.Column("factors", sa.JSON, nullable=False),
        sa.Column("history", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("score >= 0 AND score <= 100", name="ck_lead_score_range"),
        sa.CheckConstraint(
            "temperature IN ('cold', 'warm', 'hot', 'on_fire')", name="ck_lead_temperature"
        ),
        sa.CheckConstraint(
            "buying_stage IN ('awareness', 'interest', 'consideration', 'decision', "
            "'negotiation', 'closed_won', 'closed_lost')",
            name="ck_lead_buying_stage",
        ),
        sa.ForeignKeyConstraint(
            ["conversation_id"], ["conversations.id"], name="fk_lead_score_conversation", ondelete="CASCADE"
        ),
        sa.UniqueConstraint("conversation_id", name="uq_lead_score_conversation"),
    )

    op.create_table(
        "labels",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("organization_id", sa.Uuid, nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("color", sa.Text, nullable=False, server_default="#6b7280"),
        sa.Column("icon", sa.Text, nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("is_system", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("auto_assign", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.UniqueConstraint("organization_id", "name", name="uq_label_org_name"),
    )

    op.create_table(
        "conversation_labels",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("conversation_id", sa.Uuid, nullable=False),
        sa.Column("label_id", sa.Uuid, nullable=False),
        sa.Column("assigned_by", sa.Text, nullable=False, server_default="ai"),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["conversation_id"], ["conversations.id"], name="fk_conv_label_conversation", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["label_id"], ["labels.id"], name="fk_conv_label_label", ondelete="CASCADE"
        ),
        sa.UniqueConstraint("conversation_id", "label_id", name="uq_conversation_label"),
    )

    # ─── Scheduling ──────────────────────────────────────────────────────────

    op.create_table(
        "follow_ups",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("conversation_id", sa.Uuid, nullable=False),
        sa.Column("organization_id", sa.Uuid, nullable=False),
        sa.Column("instance_id", sa.Uuid, nullable=False),
        sa.Column("trigger_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="pending"),
        sa.Column("follow_up_type", sa.Text, nullable=False, server_default="smart"),
        sa.Column("detected_intent", sa.Text, nullable=True),
        sa.Column("intent_confidence", sa.Float, nullable=True),
        sa.Column("context", sa.JSON, nullable=False),
        sa.Column("original_customer_message", sa.Text, nullable=True),
        sa.Column("original_message_id", sa.Uuid, nullable=True),
        sa.Column("generated_message", sa.Text, nullable=True),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="2"),
        sa.Column("sent_message_id", sa.Uuid, nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("claimed_by", sa.Text, nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.Text, nullable=False, server_default="ai"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'sent', 'cancelled', 'failed', 'skipped')",
            name="ck_follow_up_status",
        ),
        sa.CheckConstraint(
            "follow_up_type IN ('smart', 'scheduled', 'reminder', 'nurture', 'reactivation')",
            name="ck_follow_up_type",
        ),
        sa.CheckConstraint("retry_count >= 0", name="ck_follow_up_retry_count"),
        sa.ForeignKeyConstraint(
            ["conversation_id"], ["conversations.id"], name="fk_follow_up_conversation", ondelete="CASCADE"
        ),
    )
    op.create_index("ix_follow_ups_status_trigger", "follow_ups", ["status", "trigger_at"])
    op.create_index(
        "ix_follow_ups_conversation_status", "follow_ups", ["conversation_id", "status"]
    )

    # ─── Audit ───────────────────────────────────────────────────────────────

    op.create_table(
        "automation_logs",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("conversation_id", sa.Uuid, nullable=True),
        sa.Column("organization_id", sa.Uuid, nullable=True),
        sa.Column("action", sa.Text, nullable=False),
        sa.Column("details", sa.JSON, nullable=False),
        sa.Column("message_id", sa.Uuid, nullable=True),
        sa.Column("triggered_by", sa.Text, nullable=False, server_default="ai"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.CheckConstraint(
            "action IN ('follow_up_scheduled', 'follow_up_sent', 'follow_up_failed', "
            "'follow_up_retry', 'follow_up_rescheduled', 'follow_up_cancelled', "
            "'memory_extracted', 'lead_score_updated', 'label_assigned', 'smart_paused', 'resumed')",
            name="ck_log_action",
        ),
    )
    op.create_index("ix_automation_logs_conversation", "automation_logs", ["conversation_id"])


def downgrade() -> None:
    op.drop_index("ix_automation_logs_conversation", table_name="automation_logs")
    op.drop_index("ix_follow_ups_conversation_status", table_name="follow_ups")
    op.drop_index("ix_follow_ups_status_trigger", table_name="follow_ups")
    op.drop_index("ix_messages_conversation_created", table_name="messages")
    # Drop in reverse dependency order
    op.drop_table("automation_logs")
    op.drop_table("follow_ups")
    op.drop_table("conversation_labels")
    op.drop_table("labels")
    op.drop_table("lead_scores")
    op.drop_table("chat_memories")
    op.drop_table("messages")
    op.drop_table("conversations")
    op.drop_table("automation_configs")
    op.drop_table("channel_instances")
    op.drop_table("organization_settings")
