# hirehub/models/evaluation.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EvaluationStep(str, Enum):
    QUEUED = "queued"
    EXTRACTING_TEXT = "extracting_text"
    SCORING = "scoring"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STEPS = frozenset({EvaluationStep.COMPLETED, EvaluationStep.FAILED})

# legal forward moves; FAILED is reachable from every non-terminal step
ALLOWED_TRANSITIONS: Dict[EvaluationStep, frozenset] = {
    EvaluationStep.QUEUED: frozenset({EvaluationStep.EXTRACTING_TEXT, EvaluationStep.FAILED}),
    EvaluationStep.EXTRACTING_TEXT: frozenset({EvaluationStep.SCORING, EvaluationStep.FAILED}),
    EvaluationStep.SCORING: frozenset({EvaluationStep.COMPLETED, EvaluationStep.FAILED}),
    EvaluationStep.COMPLETED: frozenset(),
    EvaluationStep.FAILED: frozenset(),
}


class StepStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


def clamp_progress(value: Optional[float]) -> Optional[int]:
    if value is None:
        return None
    return int(round(max(0.0, min(100.0, float(value)))))


class GradingScores(BaseModel):
    overall: int
    ats: int
    keyword: int
    format: int
    experience: Optional[int] = None


class GradingSuggestion(BaseModel):
    id: str
    title: str
    description: str
    example: Optional[str] = None
    category: str = "general"
    priority: int = Field(default=3, ge=1, le=5)
    status: str = "pending"


class GradingResult(BaseModel):
    scores: GradingScores
    review_text: str
    suggestions: List[GradingSuggestion]
    model: Optional[str] = None


class PersonalInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    linkedin: Optional[str] = None
    github: Optional[str] = None
    website: Optional[str] = None


class ExperienceEntry(BaseModel):
    company: Optional[str] = None
    position: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    highlights: List[str] = Field(default_factory=list)


class ParsedResume(BaseModel):
    personal_info: PersonalInfo = Field(default_factory=PersonalInfo)
    summary: Optional[str] = None
    experience: List[ExperienceEntry] = Field(default_factory=list)
    education: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    projects: List[str] = Field(default_factory=list)
    certifications: List[str] = Field(default_factory=list)
    raw_text: str = ""


class EvaluationResult(BaseModel):
    scores: GradingScores
    review_text: str
    suggestions: List[GradingSuggestion]
    model: Optional[str] = None
    resume: Optional[ParsedResume] = None


class EvaluationJob(BaseModel):
    id: str
    user_id: str
    file_url: Optional[str] = None
    file_key: Optional[str] = None
    file_type: str
    job_title: str
    job_description: str
    step: EvaluationStep = EvaluationStep.QUEUED
    progress: int = 0
    details: Optional[str] = None
    error: Optional[str] = None
    result: Optional[EvaluationResult] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def is_terminal(self) -> bool:
        return self.step in TERMINAL_STEPS


class StatusEvent(BaseModel):
    """`resume:status` payload streamed on the dedicated status channel."""

    evaluation_id: str = Field(serialization_alias="evaluationId")
    step: EvaluationStep
    status: StepStatus
    progress: Optional[int] = None
    details: Optional[str] = None
    job_name: Optional[str] = Field(default=None, serialization_alias="jobName")
    file_url: Optional[str] = Field(default=None, serialization_alias="fileUrl")
    scores: Optional[GradingScores] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)

    @field_validator("progress", mode="before")
    @classmethod
    def _clamp(cls, v):
        return clamp_progress(v)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
