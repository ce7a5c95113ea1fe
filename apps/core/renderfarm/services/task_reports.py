"""Render task report service layer."""

from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
import logging

from renderfarm.core.logging_safety import safe_log_identifier
from renderfarm.domain.task_fsm import ensure_attempt_transition, ensure_task_transition, terminal_statuses_for
from renderfarm.errors import AuthorizationError, ConflictError, NotFoundError
from renderfarm.repositories.base import RenderTaskAttemptRecord, RenderTaskRecord, RenderTaskRepository
from renderfarm.schemas.report import FinishMessage, ProgressMessage, ReportData, StartMessage
from renderfarm.schemas.task import AttemptStatus, ReportKind, TaskStatus
from renderfarm.services.attempt_logs import AttemptLogAppender

logger = logging.getLogger(__name__)

_LEGACY_MISSING_MESSAGE_TEXT = "undefined"


@dataclass(slots=True)
class ReportResult:
    action: str
    task_id: int
    attempt_id: int
    task_status: TaskStatus
    attempt_status: AttemptStatus
    replayed: bool = False


class TaskReportService:
    """Applies worker reports to render tasks and their attempts.

    Every handler runs inside one store transaction: either all of its writes
    (status, progress and the audit log entry) land, or none do.
    """

    def __init__(
        self,
        store: RenderTaskRepository,
        *,
        stale_attempt_timeout_seconds: float | None = None,
        legacy_missing_message_text: bool = False,
    ) -> None:
        self._store = store
        self._log_appender = AttemptLogAppender(store)
        self._stale_attempt_timeout = (
            timedelta(seconds=stale_attempt_timeout_seconds) if stale_attempt_timeout_seconds is not None else None
        )
        self._legacy_missing_message_text = legacy_missing_message_text

    def handle_start(self, message: StartMessage) -> ReportResult:
        safe_slave_id = safe_log_identifier(message.slave, prefix="sid")

        with self._store.transaction():
            loaded = self._store.find_task_with_attempts(message.task)
            if loaded is None:
                raise NotFoundError(
                    f'Render task with id "{message.task}" does not exist',
                    details={"task_id": message.task},
                )
            task = loaded.task

            if any(attempt.status is AttemptStatus.DONE for attempt in loaded.attempts):
                raise ConflictError(
                    f'Task with id "{task.id}" is already finished with positive status',
                    details={"task_id": task.id},
                    code="TASK_ALREADY_DONE",
                )

            active = next((a for a in loaded.attempts if a.status is AttemptStatus.PROCESSING), None)
            if active is not None:
                if active.slave_id == message.slave:
                    # Redelivered start from the bound slave: the attempt already exists.
                    logger.info(
                        "report.start.replayed task_id=%s attempt_id=%s slave_id=%s",
                        task.id,
                        active.id,
                        safe_slave_id,
                    )
                    return ReportResult(
                        action="start",
                        task_id=task.id,
                        attempt_id=active.id,
                        task_status=task.status,
                        attempt_status=active.status,
                        replayed=True,
                    )
                self._reclaim_stale_attempt(task=task, active=active, slave=message.slave)

            previous_status = task.status
            ensure_task_transition(previous_status, TaskStatus.PROCESSING)
            if previous_status is not TaskStatus.PROCESSING:
                task = self._store.save(
                    replace(task, status=TaskStatus.PROCESSING),
                    expected_status=previous_status,
                )

            now = datetime.now(UTC)
            attempt = self._store.save(
                RenderTaskAttemptRecord(
                    id=None,
                    task_id=task.id,
                    slave_id=message.slave,
                    status=AttemptStatus.PROCESSING,
                    created_at=now,
                    progress=0,
                    last_report_at=now,
                )
            )
            self._log_appender.append(
                attempt=attempt,
                severity=ReportKind.INFO,
                message=f'Starting render process on slave "{message.slave}".',
            )

        logger.info(
            "report.start.applied task_id=%s attempt_id=%s slave_id=%s prev_status=%s new_status=%s",
            task.id,
            attempt.id,
            safe_slave_id,
            previous_status.value,
            task.status.value,
        )
        return ReportResult(
            action="start",
            task_id=task.id,
            attempt_id=attempt.id,
            task_status=task.status,
            attempt_status=attempt.status,
        )

    def handle_report(self, message: ProgressMessage) -> ReportResult:
        with self._store.transaction():
            attempt = self._require_active_attempt(message.task)
            self._ensure_slave_binding(attempt, message.slave)

            updated = replace(attempt, last_report_at=datetime.now(UTC))
            if message.data.progress is not None:
                # No monotonicity: workers may legitimately restart a frame range.
                updated.progress = int(message.data.progress)
            attempt = self._store.save(updated, expected_status=AttemptStatus.PROCESSING)

            self._log_appender.append(
                attempt=attempt,
                severity=message.report_type,
                message=self._log_message(message.data),
            )

        logger.info(
            "report.progress.applied task_id=%s attempt_id=%s kind=%s progress=%s",
            message.task,
            attempt.id,
            message.report_type.value,
            attempt.progress,
        )
        return ReportResult(
            action="report",
            task_id=message.task,
            attempt_id=attempt.id,
            task_status=TaskStatus.PROCESSING,
            attempt_status=attempt.status,
        )

    def handle_finish(self, message: FinishMessage) -> ReportResult:
        attempt_status, task_status = terminal_statuses_for(message.report_type)

        with self._store.transaction():
            attempt = self._require_active_attempt(message.task)
            loaded = self._store.find_task_with_attempts(message.task)
            if loaded is None:
                raise NotFoundError(
                    f'Render task with id "{message.task}" does not exist',
                    details={"task_id": message.task},
                )
            task = loaded.task
            self._ensure_slave_binding(attempt, message.slave)

            previous_task_status = task.status
            ensure_attempt_transition(attempt.status, attempt_status)
            ensure_task_transition(previous_task_status, task_status)

            self._log_appender.append(
                attempt=attempt,
                severity=message.report_type,
                message=self._log_message(message.data),
            )

            finished = replace(attempt, status=attempt_status, last_report_at=datetime.now(UTC))
            if attempt_status is AttemptStatus.DONE:
                finished.progress = 100
            attempt = self._store.save(finished, expected_status=AttemptStatus.PROCESSING)
            task = self._store.save(replace(task, status=task_status), expected_status=previous_task_status)

        logger.info(
            "report.finish.applied task_id=%s attempt_id=%s kind=%s prev_status=%s new_status=%s",
            task.id,
            attempt.id,
            message.report_type.value,
            previous_task_status.value,
            task.status.value,
        )
        return ReportResult(
            action="finish",
            task_id=task.id,
            attempt_id=attempt.id,
            task_status=task.status,
            attempt_status=attempt.status,
        )

    def _require_active_attempt(self, task_id: int) -> RenderTaskAttemptRecord:
        attempt = self._store.find_active_attempt(task_id)
        if attempt is None:
            raise NotFoundError(
                "No processing attempt has been found",
                details={"task_id": task_id},
                code="ACTIVE_ATTEMPT_NOT_FOUND",
            )
        return attempt

    @staticmethod
    def _ensure_slave_binding(attempt: RenderTaskAttemptRecord, slave: str) -> None:
        if attempt.slave_id != slave:
            raise AuthorizationError(
                f'Task attempt "{attempt.id}" belongs to another slave',
                details={"task_id": attempt.task_id, "attempt_id": attempt.id},
            )

    def _reclaim_stale_attempt(self, *, task: RenderTaskRecord, active: RenderTaskAttemptRecord, slave: str) -> None:
        last_seen = active.last_report_at or active.created_at
        idle_for = datetime.now(UTC) - last_seen
        if self._stale_attempt_timeout is None or idle_for <= self._stale_attempt_timeout:
            raise ConflictError(
                f'Task with id "{task.id}" is already processing on another slave',
                details={"task_id": task.id, "active_attempt_id": active.id},
                code="ATTEMPT_ALREADY_PROCESSING",
            )

        ensure_attempt_transition(active.status, AttemptStatus.FAILED)
        abandoned = self._store.save(
            replace(active, status=AttemptStatus.FAILED),
            expected_status=AttemptStatus.PROCESSING,
        )
        self._log_appender.append(
            attempt=abandoned,
            severity=ReportKind.WARNING,
            message=(
                f'Attempt superseded by slave "{slave}" after {int(idle_for.total_seconds())}s without reports.'
            ),
        )
        logger.warning(
            "report.start.reclaimed task_id=%s attempt_id=%s idle_seconds=%s new_slave_id=%s",
            task.id,
            abandoned.id,
            int(idle_for.total_seconds()),
            safe_log_identifier(slave, prefix="sid"),
        )

    def _log_message(self, data: ReportData) -> str:
        if data.message is not None:
            return data.message
        return _LEGACY_MISSING_MESSAGE_TEXT if self._legacy_missing_message_text else ""
