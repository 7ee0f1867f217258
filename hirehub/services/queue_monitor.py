# hirehub/services/queue_monitor.py
"""Read-side view over a job store: aggregate counts, per-job status, cleanup."""

import logging
import time
from datetime import datetime
from typing import Optional

from hirehub.models.queue import JobRecord, JobStatus, QueueStats
from hirehub.services.queue import JobStore

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def to_job_status(record: JobRecord, queue_name: Optional[str] = None) -> JobStatus:
    return JobStatus(
        job_id=record.id,
        status=record.state,
        progress=record.progress,
        attempts=record.attempts,
        max_attempts=record.max_attempts,
        next_retry=_iso(record.next_retry_at),
        payload=record.payload,
        created_at=_iso(record.created_at),
        processed_at=_iso(record.processed_at),
        queue_name=queue_name,
    )


class QueueMonitor:
    def __init__(self, job_store: JobStore):
        self.job_store = job_store

    async def get_queue_stats(self) -> QueueStats:
        return QueueStats(
            waiting=await self.job_store.count("waiting"),
            active=await self.job_store.count("active"),
            completed=await self.job_store.count("completed"),
            failed=await self.job_store.count("failed"),
            delayed=await self.job_store.count("delayed"),
        )

    async def get_job_status(self, job_id: str) -> Optional[JobStatus]:
        record = await self.job_store.get(job_id)
        if record is None:
            return None
        return to_job_status(record, self.job_store.queue_name)

    async def cleanup_completed_jobs(self, max_age_seconds: float = 24 * 60 * 60, max_count: int = 100) -> int:
        """Remove up to `max_count` completed jobs older than `max_age_seconds`; returns how many went."""
        cutoff = time.time() - max_age_seconds
        candidates = await self.job_store.list_ids("completed", older_than=cutoff, limit=max_count)
        removed = 0
        for job_id in candidates:
            try:
                if await self.job_store.remove(job_id):
                    removed += 1
            except Exception:
                logger.exception("Failed to remove completed job %s; continuing sweep", job_id)
        logger.info("Cleaned up %d of %d completed job(s)", removed, len(candidates))
        return removed
