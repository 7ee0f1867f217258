# hirehub/services/dispatch.py
"""
Hands accepted evaluations to whatever runs them.

    inline  background task in this process (development / single node)
    stream  Redis Streams entry picked up by `worker_streams`

Either way a job record is created in the job store so the queue API reports
both modes the same way.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Set

from hirehub.models.evaluation import EvaluationJob, EvaluationStep
from hirehub.services.evaluation import EvaluationOrchestrator
from hirehub.services.queue import JobStore, enqueue_evaluation

logger = logging.getLogger(__name__)


def _payload(job: EvaluationJob) -> dict:
    return {"evaluationId": job.id, "userId": job.user_id, "jobName": job.job_title, "fileType": job.file_type}


class InlineDispatcher:
    mode = "inline"

    def __init__(self, orchestrator: EvaluationOrchestrator, job_store: JobStore):
        self.orchestrator = orchestrator
        self.job_store = job_store
        self._tasks: Set[asyncio.Task] = set()

    async def dispatch(self, job: EvaluationJob, file_bytes: bytes, ocr_text: Optional[str] = None) -> None:
        await self.job_store.create(job.id, _payload(job), max_attempts=1)
        task = asyncio.get_running_loop().create_task(self._run(job.id, file_bytes, ocr_text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, job_id: str, file_bytes: bytes, ocr_text: Optional[str]) -> None:
        await self.job_store.set_state(job_id, "active", processed_at=datetime.now(timezone.utc))
        await self.job_store.record_attempt(job_id)
        try:
            result = await self.orchestrator.run(job_id, file_bytes, ocr_text)
        except Exception as exc:
            logger.exception("Inline evaluation %s crashed", job_id)
            await self.job_store.set_state(job_id, "failed", failed_reason=str(exc),
                                           finished_at=datetime.now(timezone.utc))
            return
        state = "completed" if result.step == EvaluationStep.COMPLETED else "failed"
        await self.job_store.update_progress(job_id, result.progress)
        await self.job_store.set_state(job_id, state, failed_reason=result.error,
                                       finished_at=datetime.now(timezone.utc))

    async def drain(self) -> None:
        """Wait for every in-flight evaluation to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)


class StreamDispatcher:
    mode = "stream"

    def __init__(self, client, job_store: JobStore, max_attempts: int = 3):
        self.client = client
        self.job_store = job_store
        self.max_attempts = max_attempts

    async def dispatch(self, job: EvaluationJob, file_bytes: bytes, ocr_text: Optional[str] = None) -> None:
        # the worker reads the bytes back from storage
        await self.job_store.create(job.id, _payload(job), max_attempts=self.max_attempts)
        await enqueue_evaluation(self.client, job.id, job.file_key, ocr_text)

    async def drain(self) -> None:
        return None

    async def shutdown(self) -> None:
        # the Redis client belongs to whoever built this dispatcher
        return None
