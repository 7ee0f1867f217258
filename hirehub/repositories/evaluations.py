# hirehub/repositories/evaluations.py
"""
Evaluation job persistence.

Stores own the job state machine: `advance()` accepts only the forward moves in
ALLOWED_TRANSITIONS, and a job in a terminal step is never written again.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from pymongo import DESCENDING, ReturnDocument

from hirehub.core.errors import InvalidTransitionError, NotFoundError
from hirehub.db.mongo import EVALUATIONS_COLLECTION
from hirehub.models.evaluation import (
    ALLOWED_TRANSITIONS,
    EvaluationJob,
    EvaluationResult,
    EvaluationStep,
    clamp_progress,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def check_transition(job: EvaluationJob, step: EvaluationStep) -> None:
    if job.is_terminal:
        raise InvalidTransitionError(
            f"Evaluation {job.id} is already {job.step.value}", job_id=job.id, step=job.step.value
        )
    if step != job.step and step not in ALLOWED_TRANSITIONS[job.step]:
        raise InvalidTransitionError(
            f"Cannot move evaluation {job.id} from {job.step.value} to {step.value}",
            job_id=job.id,
        )


class EvaluationStore(Protocol):
    async def create(self, job: EvaluationJob) -> EvaluationJob: ...

    async def get(self, job_id: str) -> Optional[EvaluationJob]: ...

    async def advance(self, job_id: str, step: EvaluationStep, progress: Optional[float] = None,
                      details: Optional[str] = None, error: Optional[str] = None,
                      result: Optional[EvaluationResult] = None) -> EvaluationJob: ...

    async def list_for_user(self, user_id: str, limit: int = 20, skip: int = 0) -> List[EvaluationJob]: ...


def _apply(job: EvaluationJob, step: EvaluationStep, progress, details, error, result) -> EvaluationJob:
    check_transition(job, step)
    update: Dict[str, Any] = {"step": step, "updated_at": _now()}
    if progress is not None:
        update["progress"] = clamp_progress(progress)
    if details is not None:
        update["details"] = details
    if error is not None:
        update["error"] = error
    if result is not None:
        update["result"] = result
    return job.model_copy(update=update)


class InMemoryEvaluationStore:
    def __init__(self) -> None:
        self._jobs: Dict[str, EvaluationJob] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: EvaluationJob) -> EvaluationJob:
        self._jobs[job.id] = job
        return job

    async def get(self, job_id: str) -> Optional[EvaluationJob]:
        return self._jobs.get(job_id)

    async def advance(self, job_id, step, progress=None, details=None, error=None, result=None) -> EvaluationJob:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(f"Evaluation {job_id} not found")
            updated = _apply(job, step, progress, details, error, result)
            self._jobs[job_id] = updated
            return updated

    async def list_for_user(self, user_id: str, limit: int = 20, skip: int = 0) -> List[EvaluationJob]:
        jobs = sorted(
            (j for j in self._jobs.values() if j.user_id == user_id),
            key=lambda j: j.created_at,
            reverse=True,
        )
        return jobs[skip:skip + limit]


class MongoEvaluationStore:
    def __init__(self, db):
        self._col = db[EVALUATIONS_COLLECTION]

    @staticmethod
    def _from_doc(doc: Optional[Dict[str, Any]]) -> Optional[EvaluationJob]:
        if not doc:
            return None
        doc = dict(doc)
        doc["id"] = str(doc.pop("_id"))
        return EvaluationJob.model_validate(doc)

    async def create(self, job: EvaluationJob) -> EvaluationJob:
        doc = job.model_dump(mode="json", exclude={"id"})
        doc["_id"] = job.id
        doc["created_at"] = job.created_at
        doc["updated_at"] = job.updated_at
        await self._col.insert_one(doc)
        return job

    async def get(self, job_id: str) -> Optional[EvaluationJob]:
        return self._from_doc(await self._col.find_one({"_id": job_id}))

    async def advance(self, job_id, step, progress=None, details=None, error=None, result=None) -> EvaluationJob:
        job = await self.get(job_id)
        if job is None:
            raise NotFoundError(f"Evaluation {job_id} not found")
        updated = _apply(job, step, progress, details, error, result)
        fields = updated.model_dump(mode="json", include={"step", "progress", "details", "error", "result"})
        fields["updated_at"] = updated.updated_at
        # compare-and-set on the step we validated against
        doc = await self._col.find_one_and_update(
            {"_id": job_id, "step": job.step.value},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise InvalidTransitionError(f"Evaluation {job_id} changed concurrently", job_id=job_id)
        return self._from_doc(doc)

    async def list_for_user(self, user_id: str, limit: int = 20, skip: int = 0) -> List[EvaluationJob]:
        cur = self._col.find({"user_id": user_id}).sort("created_at", DESCENDING).skip(skip).limit(limit)
        return [self._from_doc(d) async for d in cur]
