"""Task report message schemas and strict decoder."""

from __future__ import annotations

import json
import math
import re
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, TypeAdapter, field_validator
from pydantic import ValidationError as SchemaValidationError

from renderfarm.errors import ParseError, ValidationError
from renderfarm.schemas.task import AttemptStatus, ReportKind, TaskStatus

REPORT_ACTIONS: tuple[str, ...] = ("start", "report", "finish")

# Plain decimal with optional exponent; no underscores, hex or inf/nan words.
_DECIMAL_TEXT = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


class ReportData(BaseModel):
    """Free-form part of a report; only progress and message are recognised."""

    model_config = ConfigDict(extra="forbid")

    progress: float | None = None
    message: StrictStr | None = None

    @field_validator("progress", mode="before")
    @classmethod
    def _parse_progress(cls, value: Any) -> Any:
        if value is None:
            return None
        # bool is an int subclass; a worker sending true/false is a bug, not 1/0.
        if isinstance(value, bool):
            raise ValueError("progress must be a number")
        if isinstance(value, str):
            text = value.strip()
            if not _DECIMAL_TEXT.fullmatch(text):
                raise ValueError("progress must be a number")
            value = float(text)
        if not isinstance(value, (int, float)):
            raise ValueError("progress must be a number")
        if not math.isfinite(value):
            raise ValueError("progress must be a finite number")
        if value < 0 or value > 100:
            raise ValueError("progress must be between 0 and 100")
        return value


class _ReportMessageBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    task: StrictInt
    slave: StrictStr = Field(min_length=1)


class StartMessage(_ReportMessageBase):
    action: Literal["start"]
    # Workers send the same envelope for every action; start ignores kind and data.
    report_type: ReportKind | None = Field(default=None, alias="reportType")
    data: ReportData | None = None


class _KindedReportMessage(_ReportMessageBase):
    report_type: ReportKind = Field(alias="reportType")
    data: ReportData


class ProgressMessage(_KindedReportMessage):
    action: Literal["report"]


class FinishMessage(_KindedReportMessage):
    action: Literal["finish"]


ReportMessage = Annotated[
    Union[StartMessage, ProgressMessage, FinishMessage],
    Field(discriminator="action"),
]

_REPORT_MESSAGE_ADAPTER: TypeAdapter[ReportMessage] = TypeAdapter(ReportMessage)


def _summarize_schema_errors(exc: SchemaValidationError) -> list[dict[str, str]]:
    # Raw inputs are left out: payloads come from remote workers.
    return [
        {
            "loc": ".".join(str(part) for part in error["loc"]),
            "type": error["type"],
            "msg": error["msg"],
        }
        for error in exc.errors(include_url=False)
    ]


def decode_report_message(body: bytes | str) -> ReportMessage:
    """Decode a raw queue payload into a typed report message.

    Raises ``ParseError`` when the payload is not a JSON object and
    ``ValidationError`` when the object does not match any report shape.
    """
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise ParseError(
            "Report payload is not valid JSON",
            details={"reason": type(exc).__name__},
        ) from exc

    if not isinstance(payload, dict):
        raise ParseError(
            "Report payload must be a JSON object",
            details={"received_type": type(payload).__name__},
        )

    action = payload.get("action")
    if not isinstance(action, str) or action not in REPORT_ACTIONS:
        raise ValidationError(
            "Incorrect action type, expected 'start' | 'report' | 'finish'",
            details={
                "action": action if isinstance(action, str) else None,
                "allowed_actions": list(REPORT_ACTIONS),
            },
        )

    try:
        return _REPORT_MESSAGE_ADAPTER.validate_python(payload)
    except SchemaValidationError as exc:
        raise ValidationError(
            "Report payload failed schema validation",
            details={"action": action, "errors": _summarize_schema_errors(exc)},
        ) from exc


class ReportReplayResponse(BaseModel):
    task_id: int
    attempt_id: int
    replayed: bool
    task_status: TaskStatus
    attempt_status: AttemptStatus
