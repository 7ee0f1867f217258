# hirehub/models/queue.py
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

QUEUE_STATES = ("waiting", "active", "completed", "failed", "delayed")


class QueueStats(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0


class JobRecord(BaseModel):
    """Raw job record as kept by a job store."""

    id: str
    state: str = "waiting"
    progress: int = 0
    attempts: int = 0
    max_attempts: int = 3
    next_retry_at: Optional[datetime] = None
    failed_reason: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class JobStatus(BaseModel):
    """Store-agnostic shape served by the public status API."""

    job_id: str = Field(serialization_alias="jobId")
    status: str
    progress: int = 0
    attempts: int = 0
    max_attempts: int = 3
    next_retry: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    processed_at: Optional[str] = None
    queue_name: Optional[str] = None
