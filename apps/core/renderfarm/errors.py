"""Application exception types."""

from typing import Any

from renderfarm.schemas.error import ErrorResponse


class ApiError(Exception):
    """Structured HTTP error that maps directly to contract error payloads."""

    def __init__(self, status_code: int, code: str, message: str, details: dict | None = None) -> None:
        self.status_code = status_code
        self.payload = ErrorResponse(code=code, message=message, details=details)
        super().__init__(message)


class ReportProcessingError(Exception):
    """Base for every failure raised while decoding or applying a task report.

    ``transient`` marks failures worth redelivering; everything else is a
    permanent rejection of the message.
    """

    status_code = 500
    code = "REPORT_PROCESSING_FAILED"
    transient = False

    def __init__(self, message: str, details: dict[str, Any] | None = None, *, code: str | None = None) -> None:
        if code is not None:
            self.code = code
        self.payload = ErrorResponse(code=self.code, message=message, details=details)
        super().__init__(message)

    @property
    def details(self) -> dict[str, Any] | None:
        return self.payload.details


class ParseError(ReportProcessingError):
    """Payload is not a decodable structured record."""

    status_code = 400
    code = "REPORT_PARSE_FAILED"


class ValidationError(ReportProcessingError):
    """Payload decoded but violates the report schema."""

    status_code = 400
    code = "REPORT_VALIDATION_FAILED"


class NotFoundError(ReportProcessingError):
    status_code = 404
    code = "RESOURCE_NOT_FOUND"


class ConflictError(ReportProcessingError):
    """Requested transition contradicts the current task or attempt state."""

    status_code = 409
    code = "STATE_CONFLICT"


class AuthorizationError(ReportProcessingError):
    """Reporting slave is not the one bound to the attempt."""

    status_code = 403
    code = "SLAVE_MISMATCH"


class StoreUnavailableError(ReportProcessingError):
    """Data store could not complete the operation; safe to retry."""

    status_code = 503
    code = "STORE_UNAVAILABLE"
    transient = True


__all__ = [
    "ApiError",
    "AuthorizationError",
    "ConflictError",
    "NotFoundError",
    "ParseError",
    "ReportProcessingError",
    "StoreUnavailableError",
    "ValidationError",
]
