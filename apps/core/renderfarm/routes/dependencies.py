"""Dependency wiring for routes."""

from __future__ import annotations

import logging
from secrets import compare_digest
from typing import Annotated
from uuid import uuid4

from fastapi import Depends, Request, Security
from fastapi.security import APIKeyHeader

from renderfarm.core.config import Settings, get_settings
from renderfarm.core.logging_safety import safe_log_identifier
from renderfarm.errors import ApiError
from renderfarm.messaging.dispatcher import ReportDispatcher
from renderfarm.repositories.base import RenderTaskRepository
from renderfarm.services.task_reports import TaskReportService
from renderfarm.services.tasks import TaskQueryService

internal_secret_scheme = APIKeyHeader(
    name="X-Internal-Secret",
    auto_error=False,
    scheme_name="internalSecret",
)
logger = logging.getLogger(__name__)


def _request_correlation_id(request: Request) -> str:
    existing = getattr(request.state, "correlation_id", None)
    if isinstance(existing, str) and existing:
        return existing

    correlation_id = request.headers.get("X-Correlation-Id")
    if correlation_id:
        request.state.correlation_id = correlation_id
        return correlation_id

    generated = f"req-{uuid4()}"
    request.state.correlation_id = generated
    return generated


async def require_internal_secret(
    request: Request,
    internal_secret: Annotated[str | None, Security(internal_secret_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """Validate the shared secret guarding every internal endpoint."""
    correlation_id = _request_correlation_id(request)
    safe_correlation_id = safe_log_identifier(correlation_id, prefix="cid")
    expected = settings.internal_secret
    if expected is None or internal_secret is None or not compare_digest(internal_secret, expected):
        logger.warning(
            "internal.auth_rejected correlation_id=%s method=%s path=%s reason=invalid_internal_secret",
            safe_correlation_id,
            request.method,
            request.url.path,
        )
        raise ApiError(status_code=401, code="UNAUTHORIZED", message="Invalid internal authentication")


def get_store(request: Request) -> RenderTaskRepository:
    return request.app.state.store


def get_task_query_service(
    store: Annotated[RenderTaskRepository, Depends(get_store)],
) -> TaskQueryService:
    return TaskQueryService(store)


def get_report_dispatcher(
    store: Annotated[RenderTaskRepository, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ReportDispatcher:
    service = TaskReportService(
        store,
        stale_attempt_timeout_seconds=settings.stale_attempt_timeout_seconds,
        legacy_missing_message_text=settings.legacy_missing_message_text,
    )
    return ReportDispatcher(service)
