# hirehub/services/grading.py
"""
Resume grading against a job description, with model fallback.

Policy, for each model in priority order, up to `max_attempts` tries:

    not_found / quota     -> abandon the model, move to the next one
    overloaded / other    -> back off `attempt * base_delay` seconds, retry
    success               -> return

An unparsable or mis-shaped response counts as "other". With K models and N
attempts per model at most K*N calls are made before ScoringExhaustedError.
"""

import asyncio
import inspect
import json
import logging
import re
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from hirehub.core.errors import (
    HireHubError,
    InvalidScoringResponseError,
    ModelNotFoundError,
    ModelOverloadedError,
    QuotaExceededError,
    ScoringExhaustedError,
)
from hirehub.models.evaluation import GradingResult, GradingScores, GradingSuggestion, ParsedResume
from hirehub.services.scorers.base import Scorer

logger = logging.getLogger(__name__)

RAW_TEXT_PROMPT_LIMIT = 2000
SCORE_FIELDS = ("overall", "ats", "keyword", "format")

AttemptHook = Callable[[str, int, int, int], Union[None, Awaitable[None]]]


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    QUOTA = "quota"
    OVERLOADED = "overloaded"
    OTHER = "other"


# no retry on the same model
FATAL_KINDS = frozenset({ErrorKind.NOT_FOUND, ErrorKind.QUOTA})


def _http_status(exc: BaseException) -> Optional[int]:
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    if isinstance(code, int):
        return code
    for attr in ("status_code", "code", "status"):
        code = getattr(exc, attr, None)
        if isinstance(code, int):
            return code
    return None


def classify_error(exc: BaseException) -> ErrorKind:
    """Typed scorer errors first, then HTTP status codes, then message text."""
    if isinstance(exc, ModelNotFoundError):
        return ErrorKind.NOT_FOUND
    if isinstance(exc, QuotaExceededError):
        return ErrorKind.QUOTA
    if isinstance(exc, ModelOverloadedError):
        return ErrorKind.OVERLOADED
    if isinstance(exc, HireHubError):
        return ErrorKind.OTHER

    status = _http_status(exc)
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status == 429:
        return ErrorKind.QUOTA
    if status in (502, 503, 504, 529):
        return ErrorKind.OVERLOADED

    msg = str(exc).lower()
    if "not found" in msg or "not supported" in msg or "unsupported model" in msg:
        return ErrorKind.NOT_FOUND
    if "quota" in msg or "rate limit" in msg or "resource_exhausted" in msg or "too many requests" in msg:
        return ErrorKind.QUOTA
    if "overloaded" in msg or "unavailable" in msg:
        return ErrorKind.OVERLOADED
    return ErrorKind.OTHER


def build_prompt(parsed: ParsedResume, job_description: str, job_title: Optional[str] = None) -> str:
    resume_summary = {
        "personalInfo": parsed.personal_info.model_dump(exclude_none=True),
        "summary": parsed.summary,
        "experience": [e.model_dump(exclude_none=True) for e in parsed.experience],
        "education": parsed.education,
        "skills": parsed.skills,
        "projects": parsed.projects,
        "certifications": parsed.certifications,
        "rawText": parsed.raw_text[:RAW_TEXT_PROMPT_LIMIT],
    }
    return f"""You are an expert resume evaluator. Analyze the following resume against the job description and provide a comprehensive evaluation.

JOB TITLE: {job_title or 'Not specified'}

JOB DESCRIPTION:
{job_description}

RESUME DATA:
{json.dumps(resume_summary, indent=2)}

Respond with ONLY valid JSON in exactly this shape:

{{
  "scores": {{
    "overall": <integer 0-100>,
    "ats": <integer 0-100>,
    "keyword": <integer 0-100>,
    "format": <integer 0-100>,
    "experience": <integer 0-100>
  }},
  "reviewText": "<multi-paragraph review of strengths, weaknesses and fit for the role>",
  "suggestions": [
    {{
      "id": "s_001",
      "title": "<suggestion title>",
      "description": "<what to change and why>",
      "example": "<optional example>",
      "category": "<achievements|keywords|format|experience|skills|education>",
      "priority": <1-5 where 1 is highest>
    }}
  ]
}}

Provide 4-10 suggestions. Scores are integers between 0 and 100."""


_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def strip_code_fences(raw: str) -> str:
    cleaned = _FENCE_OPEN.sub("", raw.strip())
    return _FENCE_CLOSE.sub("", cleaned).strip()


def clamp_score(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidScoringResponseError(f"Score must be a number, got {value!r}")
    return int(round(max(0.0, min(100.0, float(value)))))


def _normalize_suggestions(items: Sequence[Any]) -> List[GradingSuggestion]:
    out = []
    for index, s in enumerate(items):
        if not isinstance(s, dict) or not s.get("title") or not s.get("description"):
            raise InvalidScoringResponseError(f"Suggestion {index + 1} is missing title or description")
        priority = s.get("priority")
        if isinstance(priority, bool) or not isinstance(priority, (int, float)):
            priority = 3
        out.append(GradingSuggestion(
            id=str(s.get("id") or f"s_{index + 1:03d}"),
            title=str(s["title"]),
            description=str(s["description"]),
            example=s.get("example") or None,
            category=str(s.get("category") or "general"),
            priority=int(max(1, min(5, round(priority)))),
            status=str(s.get("status") or "pending"),
        ))
    return out


def parse_grading_response(raw: str, min_review_length: int = 100, model: Optional[str] = None) -> GradingResult:
    """Parse and normalize a scorer response; shape problems raise InvalidScoringResponseError."""
    if not raw or not raw.strip():
        raise InvalidScoringResponseError("Empty scorer response")
    try:
        data = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as exc:
        raise InvalidScoringResponseError(f"Failed to parse JSON response: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidScoringResponseError("Scorer response is not a JSON object")

    scores = data.get("scores")
    if not isinstance(scores, dict):
        raise InvalidScoringResponseError("Missing scores object")
    missing = [f for f in SCORE_FIELDS if f not in scores]
    if missing:
        raise InvalidScoringResponseError(f"Missing scores: {', '.join(missing)}")
    normalized = {f: clamp_score(scores[f]) for f in SCORE_FIELDS}
    if scores.get("experience") is not None:
        normalized["experience"] = clamp_score(scores["experience"])

    review = data.get("reviewText", data.get("review_text"))
    if not isinstance(review, str) or len(review.strip()) < min_review_length:
        raise InvalidScoringResponseError(f"reviewText must be at least {min_review_length} characters")

    suggestions = data.get("suggestions")
    if not isinstance(suggestions, list) or not suggestions:
        raise InvalidScoringResponseError("suggestions must be a non-empty list")

    return GradingResult(
        scores=GradingScores(**normalized),
        review_text=review.strip(),
        suggestions=_normalize_suggestions(suggestions),
        model=model,
    )


class ModelFallbackGrader:
    def __init__(self, scorer: Scorer, models: Sequence[str], max_attempts: int = 3,
                 base_delay: float = 1.0, min_review_length: int = 100,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        if not models:
            raise ValueError("at least one scoring model is required")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.scorer = scorer
        self.models = list(models)
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.min_review_length = min_review_length
        self._sleep = sleep

    @property
    def attempt_budget(self) -> int:
        return len(self.models) * self.max_attempts

    async def grade(self, parsed: ParsedResume, job_description: str, job_title: Optional[str] = None,
                    on_attempt: Optional[AttemptHook] = None) -> GradingResult:
        prompt = build_prompt(parsed, job_description, job_title)
        models_tried: List[str] = []
        last_model: Optional[str] = None
        last_error: Optional[BaseException] = None
        calls = 0

        for model in self.models:
            models_tried.append(model)
            for attempt in range(1, self.max_attempts + 1):
                calls += 1
                last_model = model
                if on_attempt is not None:
                    maybe = on_attempt(model, attempt, calls, self.attempt_budget)
                    if inspect.isawaitable(maybe):
                        await maybe
                try:
                    raw = await self.scorer.score(prompt, model)
                    result = parse_grading_response(raw, self.min_review_length, model=model)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    last_error = exc
                    kind = classify_error(exc)
                    logger.warning("Scoring attempt %d/%d on %s failed (%s): %s",
                                   attempt, self.max_attempts, model, kind.value, exc)
                    if kind in FATAL_KINDS:
                        break
                    if attempt < self.max_attempts:
                        await self._sleep(attempt * self.base_delay)
                    continue
                logger.info("Graded with %s on attempt %d (%d call(s) total)", model, attempt, calls)
                return result

        raise ScoringExhaustedError(
            f"All scoring models failed. Last model: {last_model}. Last error: {last_error}",
            models_tried=models_tried,
            last_model=last_model,
            last_error=last_error,
        )
