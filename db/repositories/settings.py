"""Organization settings repository (AI provider and credentials)."""
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.dialect import insert_for
from db.models import OrganizationSettings


async def get_organization_settings(
    session: AsyncSession, organization_id: UUID
) -> Optional[OrganizationSettings]:
    result = await session.execute(
        select(OrganizationSettings).where(
            OrganizationSettings.organization_id == organization_id
        )
    )
    return result.scalar_one_or_none()


async def upsert_organization_settings(
    session: AsyncSession, organization_id: UUID, data: dict
) -> OrganizationSettings:
    """Insert or update settings by organization_id.

    data dict keys: ai_provider, ai_model, ai_google_key, ai_openai_key,
    ai_anthropic_key
    """
    stmt = (
        insert_for(session, OrganizationSettings)
        .values(organization_id=organization_id, **data)
        .on_conflict_do_update(index_elements=["organization_id"], set_=data)
        .returning(OrganizationSettings)
    )
    result = await session.execute(stmt, execution_options={"populate_existing": True})
    await session.flush()
    return result.scalar_one()
