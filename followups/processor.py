"""Follow-up processor: drains due follow-ups on a fixed external cadence.

For each due follow-up:
  1. Claim it (pending -> processing under a lease); skip if another worker won
  2. Fail terminally if the instance is disconnected or has no automation config
  3. Defer past quiet hours (back to pending, retry budget untouched)
  4. Reuse the cached message or generate one with AI + memory
  5. Send through the gateway, persist the outbound message, mark sent
  6. Re-activate automation on the conversation and write an audit entry

Rows of different conversations run concurrently under a semaphore; rows of
the same conversation run one after another. A failure in one row never stops
the batch: it consumes one retry, and the row fails once max_retries is hit.
"""
import asyncio
import logging
import os
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import async_sessionmaker

from db.connection import get_db
from db.repositories import audit
from db.repositories import conversations as conversations_repo
from db.repositories import follow_ups as follow_ups_repo
from db.repositories import instances as instances_repo
from db.repositories import memory as memory_repo
from db.repositories import settings as settings_repo
from followups.quiet_hours import quiet_hours_resume_at
from intelligence.writer import generate_follow_up_message
from model_config import resolve_credentials
from schemas.follow_up import ProcessResult
from tools import zapi_tools

logger = logging.getLogger(__name__)

BATCH_SIZE = int(os.environ.get("FOLLOW_UP_BATCH_SIZE", "50"))
CONCURRENCY = int(os.environ.get("FOLLOW_UP_CONCURRENCY", "4"))
LEASE_SECONDS = int(os.environ.get("FOLLOW_UP_LEASE_SECONDS", "300"))
RETRY_BACKOFF_SECONDS = int(os.environ.get("FOLLOW_UP_RETRY_BACKOFF_SECONDS", "0"))
GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "15"))

# gateway(credentials, to_address, body) -> provider message id
Gateway = Callable[[zapi_tools.ZApiCredentials, str, str], str]


class _Worker:
    """One processor invocation: shared settings and counters for its rows."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker],
        gateway: Gateway,
        completion,
        now: datetime,
        lease_seconds: int,
        retry_backoff_seconds: int,
        gateway_timeout: float,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.completion = completion
        self.now = now
        self.lease_seconds = lease_seconds
        self.retry_backoff_seconds = retry_backoff_seconds
        self.gateway_timeout = gateway_timeout
        self.worker_id = uuid.uuid4().hex
        self.result = ProcessResult()

    # ------------------------------------------------------------------
    # Per-row driver
    # ------------------------------------------------------------------

    async def run_group(self, follow_up_ids: list[UUID], semaphore: asyncio.Semaphore) -> None:
        async with semaphore:
            for follow_up_id in follow_up_ids:
                await self.process_one(follow_up_id)

    async def process_one(self, follow_up_id: UUID) -> None:
        try:
            async with get_db(self.session_factory) as session:
                claimed = await follow_ups_repo.claim(
                    session, follow_up_id, self.worker_id, self.now, self.lease_seconds
                )
        except Exception:
            logger.exception("Could not claim follow-up %s", follow_up_id)
            return
        if not claimed:
            logger.debug("Follow-up %s already claimed or no longer due", follow_up_id)
            return

        self.result.processed += 1
        try:
            outcome = await self.deliver(follow_up_id)
        except Exception as exc:
            logger.error("Error processing follow-up %s: %s", follow_up_id, exc, exc_info=True)
            self.result.failed += 1
            await self.record_failure(follow_up_id, exc)
            return

        if outcome == "sent":
            self.result.sent += 1
        elif outcome == "skipped":
            self.result.skipped += 1
        else:
            self.result.failed += 1

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def deliver(self, follow_up_id: UUID) -> str:
        async with get_db(self.session_factory) as session:
            follow_up = await follow_ups_repo.get_follow_up(session, follow_up_id)
            instance = await instances_repo.get_instance(session, follow_up.instance_id)
            if instance is None or instance.status != "connected":
                await self._fail(session, follow_up, "instance_not_connected")
                return "failed"

            config = await instances_repo.get_automation_config(session, instance.id)
            if config is None:
                await self._fail(session, follow_up, "automation_config_missing")
                return "failed"

            resume_at = quiet_hours_resume_at(
                self.now,
                config.follow_up_quiet_hours_start,
                config.follow_up_quiet_hours_end,
                config.timezone,
            )
            if resume_at is not None:
                await follow_ups_repo.reschedule(session, follow_up.id, self.worker_id, resume_at)
                await audit.log_action(
                    session,
                    "follow_up_rescheduled",
                    conversation_id=follow_up.conversation_id,
                    organization_id=follow_up.organization_id,
                    details={
                        "follow_up_id": str(follow_up.id),
                        "reason": "quiet_hours",
                        "trigger_at": resume_at.isoformat(),
                    },
                    triggered_by="system",
                )
                logger.info("Follow-up %s deferred to %s (quiet hours)", follow_up.id, resume_at)
                return "skipped"

            conversation = await conversations_repo.get_conversation(
                session, follow_up.conversation_id
            )
            if conversation is None:
                await self._fail(session, follow_up, "conversation_missing")
                return "failed"

            message = follow_up.generated_message
            if not message:
                memories = await memory_repo.get_memories(session, conversation.id)
                settings = await settings_repo.get_organization_settings(
                    session, follow_up.organization_id
                )

        if not message:
            message = await generate_follow_up_message(
                follow_ups_repo.context_of(follow_up),
                customer_name=conversation.contact_name,
                original_message=follow_up.original_customer_message,
                intent=follow_up.detected_intent,
                tone=config.agent_tone,
                memories=memories,
                credentials=resolve_credentials(settings),
                completion=self.completion,
            )
            async with get_db(self.session_factory) as session:
                await follow_ups_repo.cache_generated_message(
                    session, follow_up.id, self.worker_id, message
                )

        provider_message_id = await asyncio.wait_for(
            asyncio.to_thread(
                self.gateway,
                zapi_tools.credentials_for(instance),
                conversation.phone,
                message,
            ),
            timeout=self.gateway_timeout,
        )

        async with get_db(self.session_factory) as session:
            sent = await conversations_repo.append_message(
                session,
                conversation_id=conversation.id,
                organization_id=conversation.organization_id,
                direction="outbound",
                body=message,
                provider_message_id=provider_message_id or None,
                sent_by="follow_up",
                status="sent",
            )
            marked = await follow_ups_repo.mark_sent(
                session, follow_up.id, self.worker_id, sent.id, datetime.now(timezone.utc)
            )
            if marked is None:
                logger.warning("Follow-up %s was sent after its lease was lost", follow_up.id)
            await conversations_repo.set_ai_active(session, conversation.id, True)
            await audit.log_action(
                session,
                "follow_up_sent",
                conversation_id=conversation.id,
                organization_id=conversation.organization_id,
                details={
                    "follow_up_id": str(follow_up.id),
                    "detected_intent": follow_up.detected_intent,
                    "message_preview": audit.preview(message),
                },
                message_id=sent.id,
                triggered_by="ai",
            )
        logger.info("Follow-up %s sent to conversation %s", follow_up.id, conversation.id)
        return "sent"

    async def _fail(self, session, follow_up, reason: str) -> None:
        await follow_ups_repo.mark_failed(session, follow_up.id, self.worker_id, reason)
        await audit.log_action(
            session,
            "follow_up_failed",
            conversation_id=follow_up.conversation_id,
            organization_id=follow_up.organization_id,
            details={"follow_up_id": str(follow_up.id), "reason": reason, "terminal": True},
            triggered_by="system",
        )
        logger.warning("Follow-up %s failed: %s", follow_up.id, reason)

    async def record_failure(self, follow_up_id: UUID, exc: Exception) -> None:
        error = str(exc) or type(exc).__name__
        try:
            async with get_db(self.session_factory) as session:
                row = await follow_ups_repo.record_retry(
                    session,
                    follow_up_id,
                    self.worker_id,
                    error,
                    now=datetime.now(timezone.utc),
                    backoff_seconds=self.retry_backoff_seconds,
                )
                if row is None:
                    return
                await audit.log_action(
                    session,
                    "follow_up_failed" if row.status == "failed" else "follow_up_retry",
                    conversation_id=row.conversation_id,
                    organization_id=row.organization_id,
                    details={
                        "follow_up_id": str(row.id),
                        "error": error[:200],
                        "retry_count": row.retry_count,
                        "max_retries": row.max_retries,
                        "terminal": row.status == "failed",
                    },
                    triggered_by="system",
                )
        except Exception:
            logger.exception("Could not record failure for follow-up %s", follow_up_id)


async def process_follow_ups(
    session_factory: Optional[async_sessionmaker] = None,
    gateway: Optional[Gateway] = None,
    completion=None,
    now: Optional[datetime] = None,
    batch_size: int = BATCH_SIZE,
    concurrency: int = CONCURRENCY,
    lease_seconds: int = LEASE_SECONDS,
    retry_backoff_seconds: int = RETRY_BACKOFF_SECONDS,
    gateway_timeout: float = GATEWAY_TIMEOUT_SECONDS,
) -> ProcessResult:
    """Drain one batch of due follow-ups and return {processed, sent, failed, skipped}.

    All per-row configuration is read from the store; `gateway` and
    `completion` default to the Z-API and LiteLLM clients.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    worker = _Worker(
        session_factory,
        gateway or zapi_tools.send_text,
        completion,
        now,
        lease_seconds,
        retry_backoff_seconds,
        gateway_timeout,
    )

    async with get_db(session_factory) as session:
        due = await follow_ups_repo.get_due(session, now, limit=batch_size)
        groups: "OrderedDict[UUID, list[UUID]]" = OrderedDict()
        for row in due:
            groups.setdefault(row.conversation_id, []).append(row.id)

    if not groups:
        return worker.result

    semaphore = asyncio.Semaphore(max(1, concurrency))
    await asyncio.gather(*(worker.run_group(ids, semaphore) for ids in groups.values()))

    logger.info(
        "Follow-up tick %s: processed=%d sent=%d failed=%d skipped=%d",
        worker.worker_id,
        worker.result.processed,
        worker.result.sent,
        worker.result.failed,
        worker.result.skipped,
    )
    return worker.result
