"""Shared fixtures: a throwaway SQLite database and seeded conversations."""
import os
import tempfile
import uuid
from types import SimpleNamespace

import pytest_asyncio

# Point the engine at a scratch SQLite file before db.connection is imported.
_DB_DIR = tempfile.mkdtemp(prefix="followups-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"

from db import get_db  # noqa: E402
from db.connection import AsyncSessionLocal, engine  # noqa: E402
from db.models import Base  # noqa: E402
from db.repositories import conversations as conversations_repo  # noqa: E402
from db.repositories import instances as instances_repo  # noqa: E402


@pytest_asyncio.fixture
async def session_factory():
    """Fresh schema per test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield AsyncSessionLocal
    await engine.dispose()


@pytest_asyncio.fixture
async def seed(session_factory):
    """Factory that creates an instance, its automation config and one conversation.

    Keyword arguments override automation config columns; `instance_status`
    and `contact_name` are also accepted.
    """

    async def _seed(instance_status="connected", contact_name="Ana", **config):
        organization_id = uuid.uuid4()
        async with get_db(session_factory) as session:
            instance = await instances_repo.create_instance(session, {
                "organization_id": organization_id,
                "name": "Vendas",
                "provider_instance_id": "3C0FFEE",
                "token": "tok-123",
                "client_token": "client-456",
                "phone": "5511900000000",
                "status": instance_status,
            })
            cfg = await instances_repo.upsert_automation_config(
                session, instance.id, organization_id, {"agent_tone": "friendly", **config}
            )
            conversation = await conversations_repo.create_conversation(session, {
                "organization_id": organization_id,
                "instance_id": instance.id,
                "phone": "+55 (11) 98888-7777",
                "contact_name": contact_name,
            })
        return SimpleNamespace(
            organization_id=organization_id,
            instance=instance,
            config=cfg,
            conversation=conversation,
        )

    return _seed
