"""Label catalog and conversation label assignment."""
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.dialect import insert_for
from db.models import ConversationLabel, Label

logger = logging.getLogger(__name__)

# System labels created for every organization.
DEFAULT_LABELS = (
    {"name": "Quente", "color": "#ef4444", "icon": "flame", "sort_order": 1, "auto_assign": True,
     "description": "Lead muito interessado, alta probabilidade de conversão"},
    {"name": "Morno", "color": "#f59e0b", "icon": "thermometer", "sort_order": 2, "auto_assign": True,
     "description": "Lead com interesse moderado"},
    {"name": "Frio", "color": "#3b82f6", "icon": "snowflake", "sort_order": 3, "auto_assign": True,
     "description": "Lead com pouco interesse ou contato inicial"},
    {"name": "Interessado", "color": "#10b981", "icon": "star", "sort_order": 4, "auto_assign": True,
     "description": "Demonstrou interesse ativo em produto/serviço"},
    {"name": "Objeção", "color": "#f97316", "icon": "shield", "sort_order": 5, "auto_assign": True,
     "description": "Levantou objeções ou preocupações"},
    {"name": "Aguardando", "color": "#8b5cf6", "icon": "clock", "sort_order": 6, "auto_assign": True,
     "description": "Aguardando resposta ou decisão do cliente"},
    {"name": "Negociando", "color": "#06b6d4", "icon": "handshake", "sort_order": 7, "auto_assign": True,
     "description": "Em fase de negociação ativa"},
    {"name": "Fechado", "color": "#22c55e", "icon": "check-circle", "sort_order": 8, "auto_assign": False,
     "description": "Negócio fechado/convertido"},
    {"name": "Perdido", "color": "#6b7280", "icon": "x-circle", "sort_order": 9, "auto_assign": False,
     "description": "Lead perdido ou desistiu"},
)


async def ensure_default_labels(session: AsyncSession, organization_id: UUID) -> None:
    """Create the system labels for an organization. Existing names are left untouched."""
    stmt = (
        insert_for(session, Label)
        .values([
            {"organization_id": organization_id, "is_system": True, **label}
            for label in DEFAULT_LABELS
        ])
        .on_conflict_do_nothing(index_elements=["organization_id", "name"])
    )
    await session.execute(stmt)
    await session.flush()


async def list_labels(session: AsyncSession, organization_id: UUID) -> list[Label]:
    result = await session.execute(
        select(Label)
        .where(Label.organization_id == organization_id)
        .order_by(Label.sort_order, Label.name)
    )
    return list(result.scalars().all())


async def get_label_by_name(
    session: AsyncSession, organization_id: UUID, name: str
) -> Optional[Label]:
    result = await session.execute(
        select(Label)
        .where(Label.organization_id == organization_id)
        .where(Label.name == name)
    )
    return result.scalar_one_or_none()


async def get_conversation_labels(session: AsyncSession, conversation_id: UUID) -> list[Label]:
    result = await session.execute(
        select(Label)
        .join(ConversationLabel, ConversationLabel.label_id == Label.id)
        .where(ConversationLabel.conversation_id == conversation_id)
        .order_by(Label.sort_order, Label.name)
    )
    return list(result.scalars().all())


async def assign_label(
    session: AsyncSession,
    conversation_id: UUID,
    label_id: UUID,
    assigned_by: str = "ai",
) -> ConversationLabel:
    """Attach a label to a conversation. Re-assigning only refreshes assigned_by/at."""
    now = datetime.now(timezone.utc)
    stmt = (
        insert_for(session, ConversationLabel)
        .values(
            conversation_id=conversation_id,
            label_id=label_id,
            assigned_by=assigned_by,
            assigned_at=now,
        )
        .on_conflict_do_update(
            index_elements=["conversation_id", "label_id"],
            set_={"assigned_by": assigned_by, "assigned_at": now},
        )
        .returning(ConversationLabel)
    )
    result = await session.execute(stmt, execution_options={"populate_existing": True})
    await session.flush()
    return result.scalar_one()


async def assign_label_by_name(
    session: AsyncSession,
    organization_id: UUID,
    conversation_id: UUID,
    name: str,
    assigned_by: str = "ai",
) -> Optional[ConversationLabel]:
    """Assign a catalog label by name. Returns None when the organization has no such label."""
    label = await get_label_by_name(session, organization_id, name)
    if label is None:
        logger.info("Label %r not found for organization %s", name, organization_id)
        return None
    return await assign_label(session, conversation_id, label.id, assigned_by=assigned_by)


async def remove_label(session: AsyncSession, conversation_id: UUID, label_id: UUID) -> bool:
    result = await session.execute(
        delete(ConversationLabel)
        .where(ConversationLabel.conversation_id == conversation_id)
        .where(ConversationLabel.label_id == label_id)
        .returning(ConversationLabel.id)
    )
    await session.flush()
    return result.first() is not None
