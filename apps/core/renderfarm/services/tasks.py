"""Read-side render task service layer."""

from renderfarm.errors import ApiError
from renderfarm.repositories.base import (
    RenderTaskAttemptLogRecord,
    RenderTaskAttemptRecord,
    RenderTaskRepository,
)
from renderfarm.schemas.task import RenderTask, RenderTaskAttempt, RenderTaskAttemptLog


class TaskQueryService:
    def __init__(self, store: RenderTaskRepository) -> None:
        self._store = store

    def get_task(self, *, task_id: int) -> RenderTask:
        loaded = self._store.find_task_with_attempts(task_id)
        if loaded is None:
            raise ApiError(status_code=404, code="RESOURCE_NOT_FOUND", message="Resource not found")

        task = loaded.task
        return RenderTask(
            id=task.id,
            owner_id=task.owner_id,
            status=task.status,
            attempts=[self._to_attempt(attempt) for attempt in loaded.attempts],
            created_at=task.created_at,
            updated_at=task.updated_at,
        )

    def list_attempt_logs(self, *, task_id: int, attempt_id: int) -> list[RenderTaskAttemptLog]:
        attempt = self._store.find_attempt(attempt_id)
        # Attempts are addressed through their task; a mismatched pair is a miss.
        if attempt is None or attempt.task_id != task_id:
            raise ApiError(status_code=404, code="RESOURCE_NOT_FOUND", message="Resource not found")

        return [self._to_log(entry) for entry in self._store.list_attempt_logs(attempt_id)]

    @staticmethod
    def _to_attempt(record: RenderTaskAttemptRecord) -> RenderTaskAttempt:
        return RenderTaskAttempt(
            id=record.id,
            task_id=record.task_id,
            slave_id=record.slave_id,
            status=record.status,
            progress=record.progress,
            created_at=record.created_at,
            last_report_at=record.last_report_at,
        )

    @staticmethod
    def _to_log(record: RenderTaskAttemptLogRecord) -> RenderTaskAttemptLog:
        return RenderTaskAttemptLog(
            id=record.id,
            attempt_id=record.attempt_id,
            severity=record.severity,
            message=record.message,
            created_at=record.created_at,
        )
