"""Job data models: queue descriptor, lifecycle state and update events."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def epoch_ms() -> int:
    return int(utcnow().timestamp() * 1000)


class JobStatus(str, Enum):
    WAITING = "waiting"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobDescriptor(BaseModel):
    """One unit of work as handed out by the queue. Read-only to the engine.

    Serialized with the field names the upload endpoint enqueues
    (``jobId``, ``filePath``, ``fileName``, ...).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    job_id: str = Field(alias="jobId")
    source_locator: str = Field(alias="filePath")
    display_name: str = Field(default="", alias="fileName")
    size_hint: int = Field(default=0, alias="fileSize")
    owner_id: Optional[str] = Field(default=None, alias="userId")
    submitted_at: datetime = Field(default_factory=utcnow, alias="timestamp")


class JobState(BaseModel):
    """Lifecycle of one job execution.

    waiting -> processing -> completed | failed. Failed is reachable from any
    non-terminal state. Progress never goes backwards while processing, and a
    terminal state never changes again: transition methods return False
    instead of applying the change.
    """

    job_id: str
    status: JobStatus = JobStatus.WAITING
    progress: int = 0
    last_error: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def advance(self, progress: int) -> bool:
        if self.is_terminal:
            return False
        self.status = JobStatus.PROCESSING
        self.progress = max(self.progress, min(100, max(0, progress)))
        return True

    def complete(self) -> bool:
        if self.status != JobStatus.PROCESSING:
            return False
        self.status = JobStatus.COMPLETED
        self.progress = 100
        self.completed_at = utcnow()
        return True

    def fail(self, error: str, progress: int = 0) -> bool:
        if self.is_terminal:
            return False
        self.status = JobStatus.FAILED
        self.progress = progress
        self.last_error = error
        self.completed_at = utcnow()
        return True


class JobUpdate(BaseModel):
    """Status/progress event published to listeners."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    status: JobStatus
    progress: int
    error: Optional[str] = None
    stats: Optional[Dict[str, Any]] = None
    lines_processed: Optional[int] = Field(default=None, alias="linesProcessed")
    user_id: Optional[str] = Field(default=None, alias="userId")
    timestamp: int = Field(default_factory=epoch_ms)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
