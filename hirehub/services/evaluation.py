# hirehub/services/evaluation.py
"""
Resume evaluation pipeline.

    queued -> extracting_text -> scoring -> completed
       \\             \\            \\-> failed

Every transition (and every scoring attempt) is pushed as a `resume:status`
event through the notifier. Submissions are validated before a job exists, so
a rejected upload never produces a status event. A job in a terminal step is
never touched again.
"""

import asyncio
import inspect
import logging
import uuid
from typing import Iterable, Optional

from hirehub.core.errors import HireHubError, InvalidTransitionError, NotFoundError, ValidationError
from hirehub.models.evaluation import (
    EvaluationJob,
    EvaluationResult,
    EvaluationStep,
    GradingScores,
    StatusEvent,
    StepStatus,
)
from hirehub.repositories.evaluations import EvaluationStore
from hirehub.services.extraction import TextExtractor, normalize_file_type
from hirehub.services.grading import ModelFallbackGrader
from hirehub.services.rate_limit import SlidingWindowLimiter
from hirehub.services.resume_parser import parse_resume

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_TYPES = (".pdf", ".doc", ".docx", ".txt", ".jpg", ".jpeg", ".png")

# progress checkpoints
PROGRESS_QUEUED = 0
PROGRESS_EXTRACTING = 10
PROGRESS_SCORING = 30
PROGRESS_SCORING_SPAN = 60
PROGRESS_DONE = 100


class EvaluationOrchestrator:
    def __init__(self, store: EvaluationStore, extractor: TextExtractor, grader: ModelFallbackGrader,
                 notifier=None, storage=None, rate_limiter: Optional[SlidingWindowLimiter] = None,
                 allowed_types: Iterable[str] = DEFAULT_ALLOWED_TYPES, max_bytes: int = 10 * 1024 * 1024):
        self.store = store
        self.extractor = extractor
        self.grader = grader
        self.notifier = notifier
        self.storage = storage
        self.rate_limiter = rate_limiter
        self.allowed_types = frozenset(t.lower() for t in allowed_types)
        self.max_bytes = max_bytes

    # ---- validation / submission ------------------------------------------

    def validate_submission(self, filename: Optional[str], size: int, job_description: Optional[str],
                            job_title: Optional[str], content_type: Optional[str] = None) -> str:
        """Return the normalized file type, or raise ValidationError."""
        file_type = normalize_file_type(filename, content_type)
        if not file_type or file_type not in self.allowed_types:
            raise ValidationError(
                f"Unsupported file type: {file_type or 'unknown'}. Allowed: {', '.join(sorted(self.allowed_types))}"
            )
        if size <= 0:
            raise ValidationError("Uploaded file is empty")
        if size > self.max_bytes:
            raise ValidationError(f"File too large: {size} bytes (max {self.max_bytes})")
        if not job_description or not job_description.strip():
            raise ValidationError("Job description is required")
        if not job_title or not job_title.strip():
            raise ValidationError("Job title is required")
        return file_type

    def check_rate_limit(self, user_id: str) -> None:
        if self.rate_limiter is not None:
            self.rate_limiter.hit(user_id, "resume:evaluate")

    async def submit(self, user_id: str, file_type: str, job_description: str, job_title: str,
                     file_url: Optional[str] = None, file_key: Optional[str] = None) -> EvaluationJob:
        """Create the queued record for an already stored file."""
        self.check_rate_limit(user_id)
        return await self._create(user_id, file_type, job_description, job_title, file_url, file_key)

    async def _create(self, user_id: str, file_type: str, job_description: str, job_title: str,
                      file_url: Optional[str], file_key: Optional[str]) -> EvaluationJob:
        job = EvaluationJob(
            id=uuid.uuid4().hex,
            user_id=user_id,
            file_url=file_url,
            file_key=file_key,
            file_type=file_type,
            job_title=job_title.strip(),
            job_description=job_description.strip(),
            details="Resume queued for evaluation",
        )
        job = await self.store.create(job)
        logger.info("Evaluation %s queued for user %s (%s)", job.id, user_id, file_type)
        await self._emit(job, EvaluationStep.QUEUED, StepStatus.IN_PROGRESS, PROGRESS_QUEUED, job.details)
        return job

    async def accept(self, user_id: str, file_bytes: bytes, filename: Optional[str], job_description: str,
                     job_title: str, content_type: Optional[str] = None) -> EvaluationJob:
        """Validate, store the upload and create the queued job."""
        file_type = self.validate_submission(filename, len(file_bytes or b""), job_description, job_title,
                                             content_type)
        self.check_rate_limit(user_id)
        stored = None
        if self.storage is not None:
            stored = await self.storage.store_resume_bytes(file_bytes, filename, content_type)
        return await self._create(
            user_id,
            file_type,
            job_description,
            job_title,
            file_url=stored.url if stored else None,
            file_key=stored.key if stored else None,
        )

    # ---- execution -----------------------------------------------------------

    async def run(self, job_id: str, file_bytes: bytes, ocr_text: Optional[str] = None) -> EvaluationJob:
        job = await self.store.get(job_id)
        if job is None:
            raise NotFoundError(f"Evaluation {job_id} not found")
        if job.is_terminal:
            logger.info("Evaluation %s already %s; not re-running", job.id, job.step.value)
            return job

        try:
            job = await self._advance(job, EvaluationStep.EXTRACTING_TEXT, PROGRESS_EXTRACTING,
                                      "Extracting text from resume")
            text = await self.extractor.extract(file_bytes, job.file_type, ocr_text)
            parsed = parse_resume(text)

            job = await self._advance(job, EvaluationStep.SCORING, PROGRESS_SCORING,
                                      "Scoring resume against the job description")

            async def on_attempt(model: str, attempt: int, call: int, budget: int) -> None:
                progress = PROGRESS_SCORING + PROGRESS_SCORING_SPAN * (call - 1) / budget
                details = f"Scoring with {model} (attempt {attempt})"
                # stored so a failure event carries the last reported progress
                current = await self.store.advance(job_id, EvaluationStep.SCORING, progress=progress,
                                                   details=details)
                await self._emit(current, EvaluationStep.SCORING, StepStatus.IN_PROGRESS, current.progress,
                                 details)

            grading = await self.grader.grade(parsed, job.job_description, job.job_title, on_attempt=on_attempt)
            result = EvaluationResult(
                scores=grading.scores,
                review_text=grading.review_text,
                suggestions=grading.suggestions,
                model=grading.model,
                resume=parsed,
            )
            job = await self.store.advance(job.id, EvaluationStep.COMPLETED, progress=PROGRESS_DONE,
                                           details="Evaluation complete", result=result)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return await self._fail(job, exc)

        logger.info("Evaluation %s completed (overall=%s, model=%s)",
                    job.id, result.scores.overall, result.model)
        await self._emit(job, EvaluationStep.COMPLETED, StepStatus.COMPLETED, PROGRESS_DONE, job.details,
                         scores=result.scores)
        return job

    async def evaluate(self, user_id: str, file_bytes: bytes, filename: Optional[str], job_description: str,
                       job_title: str, ocr_text: Optional[str] = None,
                       content_type: Optional[str] = None) -> EvaluationJob:
        job = await self.accept(user_id, file_bytes, filename, job_description, job_title, content_type)
        return await self.run(job.id, file_bytes, ocr_text)

    async def abandon(self, job_id: str, reason: str) -> Optional[EvaluationJob]:
        """Mark a job failed from outside the pipeline (e.g. the worker gave up on it)."""
        job = await self.store.get(job_id)
        if job is None or job.is_terminal:
            return job
        return await self._fail(job, HireHubError(reason))

    async def _advance(self, job: EvaluationJob, step: EvaluationStep, progress: int, details: str) -> EvaluationJob:
        job = await self.store.advance(job.id, step, progress=progress, details=details)
        logger.info("Evaluation %s -> %s", job.id, step.value)
        await self._emit(job, step, StepStatus.IN_PROGRESS, progress, details)
        return job

    async def _fail(self, job: EvaluationJob, exc: BaseException) -> EvaluationJob:
        if isinstance(exc, HireHubError):
            message = exc.message
            logger.warning("Evaluation %s failed at %s: %s", job.id, job.step.value, message)
        else:
            message = "Internal error during evaluation"
            logger.exception("Evaluation %s crashed at %s", job.id, job.step.value)
        try:
            job = await self.store.advance(job.id, EvaluationStep.FAILED, details="Evaluation failed", error=message)
        except InvalidTransitionError:
            current = await self.store.get(job.id)
            logger.warning("Evaluation %s could not be marked failed (now %s)",
                           job.id, current.step.value if current else "missing")
            return current or job
        await self._emit(job, EvaluationStep.FAILED, StepStatus.FAILED, job.progress, job.details, error=message)
        return job

    async def _emit(self, job: EvaluationJob, step: EvaluationStep, status: StepStatus, progress: Optional[float],
                    details: Optional[str], scores: Optional[GradingScores] = None,
                    error: Optional[str] = None) -> None:
        if self.notifier is None:
            return
        event = StatusEvent(
            evaluation_id=job.id,
            step=step,
            status=status,
            progress=progress,
            details=details,
            job_name=job.job_title,
            file_url=job.file_url,
            scores=scores,
            error=error,
        )
        try:
            sent = self.notifier.send_resume_status(job.user_id, event)
            if inspect.isawaitable(sent):
                await sent
        except Exception:
            # delivery is best-effort; the job state is already persisted
            logger.exception("Failed to emit resume:status for %s", job.id)
