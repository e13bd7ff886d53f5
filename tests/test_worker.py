"""Tests for the worker CLI entry points."""
import uuid

import pytest

from db import get_db
from db.repositories import follow_ups as follow_ups_repo
from followups.scheduler import schedule_follow_up
from intelligence.matcher import analyze_locally
from worker import _build_arg_parser, run_analyze, run_process


def test_arg_parser_commands():
    parser = _build_arg_parser()

    assert parser.parse_args(["run", "--interval", "15"]).interval == 15
    assert parser.parse_args(["analyze", "--text", "oi"]).text == "oi"
    conversation_id = uuid.uuid4()
    args = parser.parse_args(["cancel", "--conversation-id", str(conversation_id)])
    assert args.conversation_id == conversation_id


def test_run_analyze_is_json_ready():
    result = run_analyze("vou ver com minha esposa")

    assert result["intents"][0]["intent"] == "check_with_spouse"
    assert result["follow_up"]["delay_minutes"] == 30
    assert result["source"] == "local"


@pytest.mark.asyncio
async def test_run_process_with_nothing_due(session_factory, seed):
    seeded = await seed()
    async with get_db(session_factory) as session:
        await schedule_follow_up(
            session, seeded.conversation, seeded.config,
            analyze_locally("vou pensar"), incoming_text="vou pensar",
        )

    counts = await run_process()

    assert counts == {"processed": 0, "sent": 0, "failed": 0, "skipped": 0}
    async with get_db(session_factory) as session:
        assert await follow_ups_repo.count_active(session, seeded.conversation.id) == 1
