"""Render task API schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class TaskStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    FAILED = "failed"
    DONE = "done"


class AttemptStatus(str, Enum):
    PROCESSING = "processing"
    FAILED = "failed"
    DONE = "done"


class ReportKind(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class RenderTaskAttemptLog(BaseModel):
    id: int
    attempt_id: int
    severity: ReportKind
    message: str
    created_at: datetime


class RenderTaskAttempt(BaseModel):
    id: int
    task_id: int
    slave_id: str
    status: AttemptStatus
    progress: int
    created_at: datetime
    last_report_at: datetime | None = None


class RenderTask(BaseModel):
    id: int
    owner_id: str | None = None
    status: TaskStatus
    attempts: list[RenderTaskAttempt]
    created_at: datetime
    updated_at: datetime | None = None
