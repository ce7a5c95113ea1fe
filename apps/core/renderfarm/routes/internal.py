"""Internal report ingestion routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from renderfarm.messaging.dispatcher import DispatchStatus, ReportDispatcher
from renderfarm.routes.dependencies import get_report_dispatcher, require_internal_secret
from renderfarm.schemas.error import ErrorResponse
from renderfarm.schemas.report import ReportReplayResponse

router = APIRouter(prefix="/internal", tags=["Internal"])

_REPORT_REQUEST_BODY = {
    "required": True,
    "content": {"application/json": {"schema": {"type": "object"}}},
}


@router.post(
    "/task-reports",
    status_code=status.HTTP_204_NO_CONTENT,
    openapi_extra={"requestBody": _REPORT_REQUEST_BODY},
    responses={
        200: {"model": ReportReplayResponse},
        204: {"description": "Report applied"},
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def post_task_report(
    request: Request,
    __: Annotated[None, Depends(require_internal_secret)],
    dispatcher: Annotated[ReportDispatcher, Depends(get_report_dispatcher)],
) -> Response:
    # Raw body on purpose: the same strict decoder as the queue path applies.
    outcome = dispatcher.dispatch(await request.body())
    if outcome.status is not DispatchStatus.APPLIED:
        error = outcome.error
        return JSONResponse(
            status_code=error.status_code,
            content=error.payload.model_dump(mode="json", exclude_none=True),
        )

    result = outcome.result
    if result.replayed:
        replay_payload = ReportReplayResponse(
            task_id=result.task_id,
            attempt_id=result.attempt_id,
            replayed=True,
            task_status=result.task_status,
            attempt_status=result.attempt_status,
        )
        return JSONResponse(status_code=status.HTTP_200_OK, content=replay_payload.model_dump(mode="json"))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
