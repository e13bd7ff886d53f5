"""Channel instance and automation config repository."""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.dialect import insert_for
from db.models import AutomationConfig, ChannelInstance

logger = logging.getLogger(__name__)


async def get_instance(session: AsyncSession, instance_id: UUID) -> Optional[ChannelInstance]:
    result = await session.execute(
        select(ChannelInstance).where(ChannelInstance.id == instance_id)
    )
    return result.scalar_one_or_none()


async def create_instance(session: AsyncSession, data: dict) -> ChannelInstance:
    """Register a channel instance.

    data dict keys: organization_id, name, provider_instance_id, token,
    client_token, phone, status
    """
    instance = ChannelInstance(**data)
    session.add(instance)
    await session.flush()
    return instance


async def update_status(
    session: AsyncSession, instance_id: UUID, status: str
) -> Optional[ChannelInstance]:
    result = await session.execute(
        update(ChannelInstance)
        .where(ChannelInstance.id == instance_id)
        .values(status=status)
        .returning(ChannelInstance)
    )
    await session.flush()
    return result.scalar_one_or_none()


async def get_automation_config(
    session: AsyncSession, instance_id: UUID
) -> Optional[AutomationConfig]:
    result = await session.execute(
        select(AutomationConfig).where(AutomationConfig.instance_id == instance_id)
    )
    return result.scalar_one_or_none()


async def upsert_automation_config(
    session: AsyncSession, instance_id: UUID, organization_id: UUID, data: dict
) -> AutomationConfig:
    """Insert or update the automation config of an instance (one per instance)."""
    values = {"instance_id": instance_id, "organization_id": organization_id, **data}
    stmt = (
        insert_for(session, AutomationConfig)
        .values(**values)
        .on_conflict_do_update(
            index_elements=["instance_id"],
            set_={k: v for k, v in values.items() if k != "instance_id"},
        )
        .returning(AutomationConfig)
    )
    result = await session.execute(stmt, execution_options={"populate_existing": True})
    await session.flush()
    return result.scalar_one()
