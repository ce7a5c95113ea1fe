"""Task report message dispatcher."""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any

from renderfarm.core.logging_safety import safe_log_text
from renderfarm.errors import ReportProcessingError
from renderfarm.schemas.report import decode_report_message
from renderfarm.services.task_reports import ReportResult, TaskReportService

logger = logging.getLogger(__name__)


class DispatchStatus(str, Enum):
    APPLIED = "applied"
    REJECTED = "rejected"
    RETRY = "retry"


@dataclass(slots=True)
class DispatchOutcome:
    status: DispatchStatus
    action: str | None = None
    result: ReportResult | None = None
    error: ReportProcessingError | None = None


class ReportDispatcher:
    """Decodes one report payload and routes it to the matching handler.

    Handler failures never escape: each one is logged once at ERROR level and
    returned as a ``DispatchOutcome`` so the caller can decide acknowledgement.
    """

    def __init__(self, service: TaskReportService) -> None:
        self._handlers: dict[str, Callable[[Any], ReportResult]] = {
            "start": service.handle_start,
            "report": service.handle_report,
            "finish": service.handle_finish,
        }

    def dispatch(self, body: bytes | str) -> DispatchOutcome:
        action: str | None = None
        task_id: int | None = None
        try:
            message = decode_report_message(body)
            action = message.action
            task_id = message.task
            result = self._handlers[message.action](message)
        except ReportProcessingError as exc:
            logger.error(
                "report.rejected action=%s task_id=%s code=%s transient=%s reason=%s",
                action or "-",
                task_id if task_id is not None else "-",
                exc.code,
                exc.transient,
                safe_log_text(exc),
            )
            return DispatchOutcome(
                status=DispatchStatus.RETRY if exc.transient else DispatchStatus.REJECTED,
                action=action,
                error=exc,
            )
        except Exception as exc:
            logger.exception(
                "report.failed action=%s task_id=%s reason=%s",
                action or "-",
                task_id if task_id is not None else "-",
                type(exc).__name__,
            )
            return DispatchOutcome(
                status=DispatchStatus.REJECTED,
                action=action,
                error=ReportProcessingError(
                    "Unexpected failure while applying report",
                    details={"exception": type(exc).__name__},
                ),
            )

        return DispatchOutcome(status=DispatchStatus.APPLIED, action=action, result=result)
