"""Append-only audit log for render task attempts."""

from datetime import UTC, datetime
import logging

from renderfarm.repositories.base import RenderTaskAttemptLogRecord, RenderTaskAttemptRecord, RenderTaskRepository
from renderfarm.schemas.task import ReportKind

logger = logging.getLogger(__name__)


class AttemptLogAppender:
    def __init__(self, store: RenderTaskRepository) -> None:
        self._store = store

    def append(self, *, attempt: RenderTaskAttemptRecord, severity: ReportKind, message: str) -> RenderTaskAttemptLogRecord:
        if attempt.id is None:
            raise ValueError("Cannot log against an attempt that has not been saved")

        entry = self._store.save(
            RenderTaskAttemptLogRecord(
                id=None,
                attempt_id=attempt.id,
                severity=severity,
                message=message,
                created_at=datetime.now(UTC),
            )
        )
        logger.debug(
            "attempt_log.appended task_id=%s attempt_id=%s log_id=%s severity=%s",
            attempt.task_id,
            attempt.id,
            entry.id,
            severity.value,
        )
        return entry
