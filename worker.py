"""Follow-up worker and maintenance CLI.

Usage:
  # Drain due follow-ups once (e.g. from cron every minute)
  python worker.py process

  # Keep draining on a fixed cadence
  python worker.py run --interval 60

  # Local intent detection for a message (no database, no AI)
  python worker.py analyze --text "vou ver com minha esposa"

  # Cancel pending follow-ups of a conversation (human took over)
  python worker.py cancel --conversation-id 6f1c...
"""
import argparse
import asyncio
import json
import logging
import os
import sys
import uuid

from llm_init import init_llm

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = int(os.environ.get("FOLLOW_UP_POLL_INTERVAL_SECONDS", "60"))


async def run_process() -> dict:
    from followups.processor import process_follow_ups

    result = await process_follow_ups()
    return result.model_dump()


async def run_once() -> dict:
    from db.connection import dispose_engine

    try:
        return await run_process()
    finally:
        await dispose_engine()


async def run_loop(interval: int) -> None:
    """Run a processor tick every `interval` seconds until interrupted."""
    from db.connection import dispose_engine

    try:
        while True:
            try:
                counts = await run_process()
                if counts["processed"]:
                    print(json.dumps(counts))
            except Exception as e:
                logger.error("Follow-up tick failed (loop continues): %s", e, exc_info=True)
            await asyncio.sleep(interval)
    finally:
        await dispose_engine()


async def run_cancel(conversation_id: uuid.UUID) -> int:
    from db.connection import dispose_engine, get_db
    from followups.scheduler import cancel_pending_follow_ups

    try:
        async with get_db() as session:
            return await cancel_pending_follow_ups(
                session, conversation_id, reason="manual_cancel", triggered_by="system"
            )
    finally:
        await dispose_engine()


def run_analyze(text: str) -> dict:
    from intelligence.matcher import analyze_locally

    return analyze_locally(text).model_dump(mode="json")


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Conversation follow-up worker")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("process", help="Drain one batch of due follow-ups")

    loop_p = sub.add_parser("run", help="Drain due follow-ups on a fixed cadence")
    loop_p.add_argument("--interval", type=int, default=POLL_INTERVAL_SECONDS,
                        help=f"Seconds between ticks (default {POLL_INTERVAL_SECONDS})")

    analyze_p = sub.add_parser("analyze", help="Detect intents in a message with the local patterns")
    analyze_p.add_argument("--text", required=True, help="Customer message text")

    cancel_p = sub.add_parser("cancel", help="Cancel pending follow-ups of a conversation")
    cancel_p.add_argument("--conversation-id", required=True, type=uuid.UUID)

    return parser


if __name__ == "__main__":
    parser = _build_arg_parser()
    args = parser.parse_args()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "analyze":
        print(json.dumps(run_analyze(args.text), indent=2, ensure_ascii=False))

    elif args.command == "process":
        init_llm()
        print(json.dumps(asyncio.run(run_once()), indent=2))

    elif args.command == "run":
        init_llm()
        print(f"Processing follow-ups every {args.interval}s (Ctrl+C to stop)")
        try:
            asyncio.run(run_loop(args.interval))
        except KeyboardInterrupt:
            print("\nStopped.")

    elif args.command == "cancel":
        count = asyncio.run(run_cancel(args.conversation_id))
        print(f"Cancelled {count} pending follow-up(s) for {args.conversation_id}")

    else:
        parser.print_help()
        sys.exit(1)
