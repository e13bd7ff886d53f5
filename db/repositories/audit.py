"""Automation audit log repository."""
import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import AutomationLog

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100


def preview(text: Optional[str]) -> str:
    """Truncate message content for audit details."""
    return (text or "")[:PREVIEW_LENGTH]


async def log_action(
    session: AsyncSession,
    action: str,
    conversation_id: Optional[UUID] = None,
    organization_id: Optional[UUID] = None,
    details: Optional[dict[str, Any]] = None,
    message_id: Optional[UUID] = None,
    triggered_by: str = "ai",
) -> AutomationLog:
    """Append an audit entry. triggered_by is 'ai', 'system' or 'user:<id>'."""
    entry = AutomationLog(
        conversation_id=conversation_id,
        organization_id=organization_id,
        action=action,
        details=details or {},
        message_id=message_id,
        triggered_by=triggered_by,
    )
    session.add(entry)
    await session.flush()
    logger.debug("Audit %s conversation=%s details=%s", action, conversation_id, details)
    return entry


async def list_actions(
    session: AsyncSession,
    conversation_id: UUID,
    action: Optional[str] = None,
) -> list[AutomationLog]:
    """Return the audit entries of a conversation, oldest first."""
    stmt = select(AutomationLog).where(AutomationLog.conversation_id == conversation_id)
    if action is not None:
        stmt = stmt.where(AutomationLog.action == action)
    result = await session.execute(stmt.order_by(AutomationLog.created_at, AutomationLog.id))
    return list(result.scalars().all())
