"""Repository layer for the follow-up automation service.

Async query and upsert helpers over the ORM models. Functions flush but never
commit; the caller's get_db() block owns the transaction.
- conversations: get_conversation, append_message, get_recent_messages, set_ai_active
- instances: get_instance, get_automation_config, upsert_automation_config
- settings: get_organization_settings, upsert_organization_settings
- memory: get_memories, upsert_memory, upsert_memories, delete_memory
- lead_scores: get_lead_score, apply_delta
- labels: ensure_default_labels, assign_label, assign_label_by_name, remove_label
- follow_ups: create_follow_up, count_active, cancel_pending, get_due, claim,
              mark_sent, mark_failed, reschedule, record_retry
- audit: log_action, list_actions
"""
