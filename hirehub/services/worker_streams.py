# hirehub/services/worker_streams.py
"""
Redis Streams worker for resume evaluations.

    python -m hirehub.services.worker_streams [consumer_name] [max_retries]

- reclaims pending entries idle for >= WORKER_CLAIM_IDLE_MS
- reads new entries with XREADGROUP
- on failure marks the job `delayed` and leaves the entry pending for reclaim;
  after `max_retries` failures the entry goes to the dead-letter stream and the
  evaluation is marked failed
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from hirehub.core.config import configure_logging, settings
from hirehub.models.evaluation import EvaluationStep
from hirehub.services.evaluation import EvaluationOrchestrator
from hirehub.services.queue import (
    GROUP_NAME,
    STREAM_KEY,
    JobStore,
    ensure_group_exists,
    move_to_dlq,
)

logger = logging.getLogger(__name__)

PENDING_BATCH = 10


class EvaluationWorker:
    def __init__(self, client, orchestrator: EvaluationOrchestrator, storage, job_store: JobStore,
                 consumer_name: Optional[str] = None, max_retries: int = 3,
                 read_block_ms: int = 5000, claim_idle_ms: int = 30_000):
        self.client = client
        self.orchestrator = orchestrator
        self.storage = storage
        self.job_store = job_store
        self.consumer_name = consumer_name or f"worker-{uuid.uuid4().hex[:8]}"
        self.max_retries = max_retries
        self.read_block_ms = read_block_ms
        self.claim_idle_ms = claim_idle_ms

    async def process_message(self, message_id: str, data: Dict[str, Any]) -> bool:
        """
        Run one stream entry. Returns True when the entry is finished with
        (evaluation completed or failed terminally), False to retry it.
        """
        try:
            payload = json.loads(data.get("payload") or "{}")
        except json.JSONDecodeError:
            logger.error("Message %s has an unreadable payload; dropping", message_id)
            return True
        evaluation_id = payload.get("evaluation_id")
        if not evaluation_id:
            logger.error("Message %s has no evaluation_id; dropping", message_id)
            return True

        try:
            await self.job_store.set_state(evaluation_id, "active", processed_at=datetime.now(timezone.utc))
            await self.job_store.record_attempt(evaluation_id)

            file_key = payload.get("file_key")
            if not file_key:
                await self.orchestrator.abandon(evaluation_id, "Uploaded file reference missing")
                await self.job_store.set_state(evaluation_id, "failed", failed_reason="missing file_key",
                                               finished_at=datetime.now(timezone.utc))
                return True
            logger.info("Fetching resume %s for evaluation %s", file_key, evaluation_id)
            file_bytes = await self.storage.download_to_bytes(file_key)

            job = await self.orchestrator.run(evaluation_id, file_bytes, payload.get("ocr_text"))
        except Exception as exc:
            logger.exception("Processing message %s (evaluation %s) failed", message_id, evaluation_id)
            await self._mark_delayed(evaluation_id, str(exc))
            return False

        state = "completed" if job.step == EvaluationStep.COMPLETED else "failed"
        await self.job_store.update_progress(evaluation_id, job.progress)
        await self.job_store.set_state(evaluation_id, state, failed_reason=job.error,
                                       finished_at=datetime.now(timezone.utc))
        logger.info("Message %s processed -> evaluation %s %s", message_id, evaluation_id, state)
        return True

    async def _mark_delayed(self, evaluation_id: str, reason: str) -> None:
        record = await self.job_store.get(evaluation_id)
        if record is None:
            return
        next_retry = datetime.now(timezone.utc) + timedelta(milliseconds=self.claim_idle_ms)
        await self.job_store.set_state(evaluation_id, "delayed", failed_reason=reason, next_retry_at=next_retry)

    async def _finish(self, message_id: str) -> None:
        await self.client.xack(STREAM_KEY, GROUP_NAME, message_id)
        await self.client.xdel(STREAM_KEY, message_id)
        await self.client.delete(f"retries:{message_id}")

    async def _handle_failure(self, message_id: str, data: Dict[str, Any]) -> None:
        retries_key = f"retries:{message_id}"
        retries = await self.client.incr(retries_key)
        await self.client.expire(retries_key, 60 * 60 * 24)
        logger.warning("Message %s failed (retry %s/%s)", message_id, retries, self.max_retries)
        if retries < self.max_retries:
            return
        try:
            payload = json.loads(data.get("payload") or "{}")
        except json.JSONDecodeError:
            payload = {"_raw": data.get("payload")}
        reason = f"exceeded {self.max_retries} retries"
        await move_to_dlq(self.client, message_id, payload, reason=reason)
        evaluation_id = payload.get("evaluation_id")
        if evaluation_id:
            await self.orchestrator.abandon(evaluation_id, f"Evaluation could not be processed ({reason})")
            await self.job_store.set_state(evaluation_id, "failed", failed_reason=reason,
                                           finished_at=datetime.now(timezone.utc))
        await self._finish(message_id)

    async def handle_entry(self, message_id: str, data: Dict[str, Any]) -> bool:
        ok = await self.process_message(message_id, data)
        if ok:
            await self._finish(message_id)
        else:
            await self._handle_failure(message_id, data)
        return ok

    async def handle_pending_claims(self) -> None:
        """Claim and re-run pending entries idle for at least `claim_idle_ms`."""
        pending = await self.client.xpending_range(
            STREAM_KEY, GROUP_NAME, min="-", max="+", count=PENDING_BATCH, idle=self.claim_idle_ms
        )
        for item in pending or []:
            msg_id = item["message_id"]
            claimed = await self.client.xclaim(
                STREAM_KEY, GROUP_NAME, self.consumer_name,
                min_idle_time=self.claim_idle_ms, message_ids=[msg_id],
            )
            for cid, data in claimed or []:
                if data is None:
                    # entry was deleted while pending
                    await self.client.xack(STREAM_KEY, GROUP_NAME, cid)
                    continue
                logger.info("Reclaimed pending message %s", cid)
                await self.handle_entry(cid, dict(data))

    async def run_once(self) -> int:
        entries: List[Tuple[str, List[Tuple[str, Dict[str, str]]]]] = await self.client.xreadgroup(
            groupname=GROUP_NAME,
            consumername=self.consumer_name,
            streams={STREAM_KEY: ">"},
            count=1,
            block=self.read_block_ms,
        )
        handled = 0
        for _stream, messages in entries or []:
            for msg_id, data in messages:
                await self.handle_entry(msg_id, dict(data))
                handled += 1
        return handled

    async def run_forever(self) -> None:
        logger.info("Worker '%s' starting", self.consumer_name)
        await ensure_group_exists(self.client)
        while True:
            try:
                try:
                    await self.handle_pending_claims()
                except Exception:
                    logger.exception("Error while handling pending claims")
                if not await self.run_once():
                    await asyncio.sleep(0.05)
            except asyncio.CancelledError:
                logger.info("Worker '%s' cancelled, shutting down.", self.consumer_name)
                raise
            except Exception:
                logger.exception("Worker main loop error, sleeping briefly before retrying")
                await asyncio.sleep(1)


async def worker_loop(consumer_name: Optional[str] = None, max_retries: Optional[int] = None) -> None:
    # worker processes share the app's services but not its HTTP surface
    from hirehub.main import build_services

    services = build_services(settings, role="worker")
    if services.redis is None:
        raise RuntimeError("The stream worker needs EVALUATION_DISPATCH=stream")
    await services.startup()
    worker = EvaluationWorker(
        client=services.redis,
        orchestrator=services.orchestrator,
        storage=services.storage,
        job_store=services.job_store,
        consumer_name=consumer_name,
        max_retries=max_retries or settings.WORKER_MAX_RETRIES,
        read_block_ms=settings.WORKER_READ_BLOCK_MS,
        claim_idle_ms=settings.WORKER_CLAIM_IDLE_MS,
    )
    try:
        await worker.run_forever()
    finally:
        await services.shutdown()


if __name__ == "__main__":
    import sys

    configure_logging()
    cname = sys.argv[1] if len(sys.argv) >= 2 else None
    m_retries = None
    if len(sys.argv) >= 3:
        try:
            m_retries = int(sys.argv[2])
        except ValueError:
            logger.warning("Ignoring non-numeric max_retries %r", sys.argv[2])

    logger.info("Starting worker (consumer=%s, max_retries=%s)...", cname or "auto", m_retries or "default")
    try:
        asyncio.run(worker_loop(consumer_name=cname, max_retries=m_retries))
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user; exiting.")
