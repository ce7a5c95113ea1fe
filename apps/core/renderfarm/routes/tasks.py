"""Render task inspection routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Path

from renderfarm.routes.dependencies import get_task_query_service, require_internal_secret
from renderfarm.schemas.error import ErrorResponse
from renderfarm.schemas.task import RenderTask, RenderTaskAttemptLog
from renderfarm.services.tasks import TaskQueryService

router = APIRouter(tags=["Tasks"], dependencies=[Depends(require_internal_secret)])


@router.get(
    "/tasks/{taskId}",
    response_model=RenderTask,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_task(
    task_id: Annotated[int, Path(alias="taskId")],
    service: Annotated[TaskQueryService, Depends(get_task_query_service)],
) -> RenderTask:
    return service.get_task(task_id=task_id)


@router.get(
    "/tasks/{taskId}/attempts/{attemptId}/logs",
    response_model=list[RenderTaskAttemptLog],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def list_attempt_logs(
    task_id: Annotated[int, Path(alias="taskId")],
    attempt_id: Annotated[int, Path(alias="attemptId")],
    service: Annotated[TaskQueryService, Depends(get_task_query_service)],
) -> list[RenderTaskAttemptLog]:
    return service.list_attempt_logs(task_id=task_id, attempt_id=attempt_id)
