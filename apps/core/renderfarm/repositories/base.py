"""Persistence records and the repository interface consumed by report processing."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Union

from renderfarm.schemas.task import AttemptStatus, ReportKind, TaskStatus


@dataclass(slots=True)
class RenderTaskRecord:
    id: int | None
    status: TaskStatus
    created_at: datetime
    owner_id: str | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class RenderTaskAttemptRecord:
    id: int | None
    task_id: int
    slave_id: str
    status: AttemptStatus
    created_at: datetime
    progress: int = 0
    last_report_at: datetime | None = None


@dataclass(slots=True)
class RenderTaskAttemptLogRecord:
    id: int | None
    attempt_id: int
    severity: ReportKind
    message: str
    created_at: datetime


@dataclass(slots=True)
class TaskWithAttempts:
    task: RenderTaskRecord
    attempts: list[RenderTaskAttemptRecord]


Entity = Union[RenderTaskRecord, RenderTaskAttemptRecord, RenderTaskAttemptLogRecord]


class RenderTaskRepository(ABC):
    """Storage-neutral data access used by the report state machine.

    Returned records are detached copies: mutating them has no effect until
    they are passed back to ``save``.
    """

    @abstractmethod
    def find_task_with_attempts(self, task_id: int) -> TaskWithAttempts | None:
        """Load a task and its attempts ordered by creation."""

    @abstractmethod
    def find_active_attempt(self, task_id: int) -> RenderTaskAttemptRecord | None:
        """Return the task's attempt in ``processing`` status, if any."""

    @abstractmethod
    def find_attempt(self, attempt_id: int) -> RenderTaskAttemptRecord | None:
        """Return one attempt by id."""

    @abstractmethod
    def list_attempt_logs(self, attempt_id: int) -> list[RenderTaskAttemptLogRecord]:
        """Return an attempt's log entries in append order."""

    @abstractmethod
    def save(self, entity: Entity, *, expected_status: TaskStatus | AttemptStatus | None = None) -> Entity:
        """Insert or update an entity and return the persisted copy.

        When ``expected_status`` is given the update only applies if the stored
        status still equals it; otherwise ``ConflictError`` is raised.
        """

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Unit of work: every save inside commits together or not at all."""


__all__ = [
    "Entity",
    "RenderTaskAttemptLogRecord",
    "RenderTaskAttemptRecord",
    "RenderTaskRecord",
    "RenderTaskRepository",
    "TaskWithAttempts",
]
