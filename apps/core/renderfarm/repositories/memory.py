"""In-memory repository used by local runs and tests."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
import threading
from typing import Any, Literal

from renderfarm.errors import ConflictError, NotFoundError, StoreUnavailableError
from renderfarm.repositories.base import (
    Entity,
    RenderTaskAttemptLogRecord,
    RenderTaskAttemptRecord,
    RenderTaskRecord,
    RenderTaskRepository,
    TaskWithAttempts,
)
from renderfarm.schemas.task import AttemptStatus, TaskStatus

_SaveFailpointEntity = Literal["task", "attempt", "log"]


@dataclass(slots=True)
class InMemoryStore(RenderTaskRepository):
    """Simple, deterministic persistence layer for local runs and tests.

    Stored records are never handed out directly; readers get copies and
    writers go through ``save``. A re-entrant lock serialises transactions so
    several consumer threads can share one store.
    """

    tasks: dict[int, RenderTaskRecord] = field(default_factory=dict)
    attempts: dict[int, RenderTaskAttemptRecord] = field(default_factory=dict)
    attempt_logs: list[RenderTaskAttemptLogRecord] = field(default_factory=list)
    task_write_count: int = 0
    attempt_write_count: int = 0
    log_write_count: int = 0
    unavailable_transactions: int = 0
    unavailable_message: str = "Injected store outage"
    save_failpoint_entity: _SaveFailpointEntity | None = None
    save_failpoint_message: str = "Injected store write failure"
    _next_ids: dict[str, int] = field(default_factory=lambda: {"task": 1, "attempt": 1, "log": 1})
    _lock: Any = field(default_factory=threading.RLock, repr=False, compare=False)
    _transaction_depth: int = 0

    def create_task(self, *, owner_id: str | None = None) -> RenderTaskRecord:
        now = datetime.now(UTC)
        return self.save(
            RenderTaskRecord(
                id=None,
                status=TaskStatus.QUEUED,
                created_at=now,
                owner_id=owner_id,
                updated_at=now,
            )
        )

    def get_task(self, task_id: int) -> RenderTaskRecord | None:
        with self._lock:
            task = self.tasks.get(task_id)
            return replace(task) if task is not None else None

    def find_task_with_attempts(self, task_id: int) -> TaskWithAttempts | None:
        with self._lock:
            task = self.tasks.get(task_id)
            if task is None:
                return None
            return TaskWithAttempts(
                task=replace(task),
                attempts=[replace(attempt) for attempt in self._attempts_for_task(task_id)],
            )

    def find_active_attempt(self, task_id: int) -> RenderTaskAttemptRecord | None:
        with self._lock:
            for attempt in self._attempts_for_task(task_id):
                if attempt.status is AttemptStatus.PROCESSING:
                    return replace(attempt)
            return None

    def find_attempt(self, attempt_id: int) -> RenderTaskAttemptRecord | None:
        with self._lock:
            attempt = self.attempts.get(attempt_id)
            return replace(attempt) if attempt is not None else None

    def list_attempt_logs(self, attempt_id: int) -> list[RenderTaskAttemptLogRecord]:
        with self._lock:
            return [replace(entry) for entry in self.attempt_logs if entry.attempt_id == attempt_id]

    def save(
        self,
        entity: Entity,
        *,
        expected_status: TaskStatus | AttemptStatus | None = None,
    ) -> Entity:
        with self._lock:
            if isinstance(entity, RenderTaskRecord):
                return self._save_task(entity, expected_status=expected_status)
            if isinstance(entity, RenderTaskAttemptRecord):
                return self._save_attempt(entity, expected_status=expected_status)
            if isinstance(entity, RenderTaskAttemptLogRecord):
                return self._append_log(entity)
            raise TypeError(f"Unsupported entity type: {type(entity).__name__}")

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Apply every save inside the block atomically; rollback everything on failure."""
        with self._lock:
            if self._transaction_depth:
                self._transaction_depth += 1
                try:
                    yield
                finally:
                    self._transaction_depth -= 1
                return

            if self.unavailable_transactions > 0:
                self.unavailable_transactions -= 1
                raise StoreUnavailableError(self.unavailable_message)

            previous_tasks = dict(self.tasks)
            previous_attempts = dict(self.attempts)
            previous_log_count = len(self.attempt_logs)
            previous_task_write_count = self.task_write_count
            previous_attempt_write_count = self.attempt_write_count
            previous_log_write_count = self.log_write_count

            self._transaction_depth = 1
            try:
                yield
            except Exception:
                self.tasks.clear()
                self.tasks.update(previous_tasks)
                self.attempts.clear()
                self.attempts.update(previous_attempts)
                del self.attempt_logs[previous_log_count:]
                self.task_write_count = previous_task_write_count
                self.attempt_write_count = previous_attempt_write_count
                self.log_write_count = previous_log_write_count
                raise
            finally:
                self._transaction_depth = 0

    def _save_task(
        self,
        task: RenderTaskRecord,
        *,
        expected_status: TaskStatus | AttemptStatus | None,
    ) -> RenderTaskRecord:
        self._maybe_raise_save_failpoint("task")
        if task.id is None:
            stored = replace(task, id=self._allocate_id("task"))
        else:
            current = self.tasks.get(task.id)
            if current is None:
                raise NotFoundError(
                    f'Render task with id "{task.id}" does not exist',
                    details={"task_id": task.id},
                )
            self._ensure_expected_status(current.status, expected_status, entity="task", entity_id=task.id)
            stored = replace(task, updated_at=datetime.now(UTC))

        self.tasks[stored.id] = stored
        self.task_write_count += 1
        return replace(stored)

    def _save_attempt(
        self,
        attempt: RenderTaskAttemptRecord,
        *,
        expected_status: TaskStatus | AttemptStatus | None,
    ) -> RenderTaskAttemptRecord:
        self._maybe_raise_save_failpoint("attempt")
        if attempt.task_id not in self.tasks:
            raise NotFoundError(
                f'Render task with id "{attempt.task_id}" does not exist',
                details={"task_id": attempt.task_id},
            )

        if attempt.id is not None:
            current = self.attempts.get(attempt.id)
            if current is None:
                raise NotFoundError(
                    f'Render task attempt with id "{attempt.id}" does not exist',
                    details={"attempt_id": attempt.id},
                )
            if current.slave_id != attempt.slave_id or current.task_id != attempt.task_id:
                raise ConflictError(
                    "Attempt slave and task binding cannot change",
                    details={"attempt_id": attempt.id},
                    code="ATTEMPT_BINDING_IMMUTABLE",
                )
            self._ensure_expected_status(current.status, expected_status, entity="attempt", entity_id=attempt.id)

        # Unique active attempt per task.
        if attempt.status is AttemptStatus.PROCESSING:
            for other in self._attempts_for_task(attempt.task_id):
                if other.id != attempt.id and other.status is AttemptStatus.PROCESSING:
                    raise ConflictError(
                        "Task already has a processing attempt",
                        details={"task_id": attempt.task_id, "active_attempt_id": other.id},
                        code="ACTIVE_ATTEMPT_EXISTS",
                    )

        stored = replace(attempt) if attempt.id is not None else replace(attempt, id=self._allocate_id("attempt"))
        self.attempts[stored.id] = stored
        self.attempt_write_count += 1
        return replace(stored)

    def _append_log(self, entry: RenderTaskAttemptLogRecord) -> RenderTaskAttemptLogRecord:
        self._maybe_raise_save_failpoint("log")
        if entry.id is not None:
            raise ConflictError(
                "Attempt log entries are append-only",
                details={"log_id": entry.id},
                code="LOG_APPEND_ONLY",
            )
        if entry.attempt_id not in self.attempts:
            raise NotFoundError(
                f'Render task attempt with id "{entry.attempt_id}" does not exist',
                details={"attempt_id": entry.attempt_id},
            )

        stored = replace(entry, id=self._allocate_id("log"))
        self.attempt_logs.append(stored)
        self.log_write_count += 1
        return replace(stored)

    def _attempts_for_task(self, task_id: int) -> list[RenderTaskAttemptRecord]:
        return sorted(
            (attempt for attempt in self.attempts.values() if attempt.task_id == task_id),
            key=lambda attempt: attempt.id,
        )

    def _allocate_id(self, kind: str) -> int:
        allocated = self._next_ids[kind]
        self._next_ids[kind] = allocated + 1
        return allocated

    @staticmethod
    def _ensure_expected_status(
        current: TaskStatus | AttemptStatus,
        expected: TaskStatus | AttemptStatus | None,
        *,
        entity: str,
        entity_id: int,
    ) -> None:
        if expected is None or current is expected:
            return
        raise ConflictError(
            f"{entity.capitalize()} status changed concurrently",
            details={
                f"{entity}_id": entity_id,
                "expected_status": expected,
                "current_status": current,
            },
            code="CONCURRENT_UPDATE",
        )

    def _maybe_raise_save_failpoint(self, entity: _SaveFailpointEntity) -> None:
        if self.save_failpoint_entity != entity:
            return

        self.save_failpoint_entity = None
        raise StoreUnavailableError(self.save_failpoint_message, details={"entity": entity})
