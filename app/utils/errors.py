"""Custom exception classes and error handling."""
from typing import Any, List, Optional
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from app.utils.logger import get_logger
from app.config.sentry import capture_exception, add_breadcrumb, settings

logger = get_logger(__name__)


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or "APP_ERROR"
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    """Validation error."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            code="VALIDATION_ERROR",
            details=details or {},
        )


class NotFoundError(AppError):
    """Resource not found error."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message += f" (id: {identifier})"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            code="NOT_FOUND",
        )


# EDI parsing errors


class EDIError(AppError):
    """Base class for errors raised while reading an 835 file."""

    def __init__(self, message: str, code: str = "EDI_ERROR", details: Optional[dict] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code=code,
            details=details or {},
        )


class TokenizeError(EDIError):
    """Input is empty or cannot be decoded into segments. Always fatal."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, code="TOKENIZE_ERROR", details=details)


class EnvelopeError(EDIError):
    """Interchange, group or transaction envelope is corrupt. Always fatal."""

    def __init__(self, message: str, segment_id: Optional[str] = None, position: Optional[int] = None):
        details = {}
        if segment_id:
            details["segment_id"] = segment_id
        if position is not None:
            details["position"] = position
        super().__init__(message, code="ENVELOPE_ERROR", details=details)
        self.segment_id = segment_id
        self.position = position


class SegmentError(EDIError):
    """A segment inside a claim loop is structurally malformed."""

    def __init__(self, message: str, segment_id: Optional[str] = None, position: Optional[int] = None):
        super().__init__(
            message,
            code="SEGMENT_ERROR",
            details={"segment_id": segment_id, "position": position},
        )
        self.segment_id = segment_id
        self.position = position


class ClaimMappingError(EDIError):
    """A claim loop element violates a domain constraint (amount, date, code)."""

    def __init__(self, message: str, segment_id: Optional[str] = None, position: Optional[int] = None):
        super().__init__(
            message,
            code="CLAIM_MAPPING_ERROR",
            details={"segment_id": segment_id, "position": position},
        )
        self.segment_id = segment_id
        self.position = position


# Matching and posting errors


class ClaimMatchError(AppError):
    """No single internal claim could be resolved for a remittance claim."""

    NOT_FOUND = "NOT_FOUND"
    AMBIGUOUS = "AMBIGUOUS"

    def __init__(self, reason: str, message: str, candidate_ids: Optional[List[int]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND if reason == self.NOT_FOUND else status.HTTP_409_CONFLICT,
            code=reason,
            details={"candidate_ids": candidate_ids or []},
        )
        self.reason = reason
        self.candidate_ids = candidate_ids or []


class PostingError(AppError):
    """A claim posting could not be written."""

    CONFLICT = "CONFLICT"
    VALIDATION = "VALIDATION"
    INVALID_STATE = "INVALID_STATE"
    ALREADY_POSTED = "ALREADY_POSTED"
    WRITE_FAILED = "WRITE_FAILED"

    def __init__(self, reason: str, message: str, transient: bool = False, details: Optional[dict] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            code=reason,
            details=details or {},
        )
        self.reason = reason
        self.transient = transient


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle application errors."""
    add_breadcrumb(
        message=f"Application error: {exc.code}",
        category="error",
        level="warning" if exc.status_code < 500 else "error",
        data={
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
        },
    )

    logger.warning(
        "Application error",
        error=exc.code,
        message=exc.message,
        path=request.url.path,
        status_code=exc.status_code,
    )

    # Server errors always alert; client errors only when alert_on_errors is set
    should_alert = settings.enable_alerts and (
        exc.status_code >= 500 or settings.alert_on_errors
    )
    if should_alert:
        capture_exception(
            exc,
            level="error" if exc.status_code >= 500 else "warning",
            context={
                "request": {
                    "path": request.url.path,
                    "method": request.method,
                },
                "error": {
                    "code": exc.code,
                    "message": exc.message,
                    "status_code": exc.status_code,
                },
            },
            tags={
                "error_type": exc.code,
                "status_code": str(exc.status_code),
                "path": request.url.path,
            },
        )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.code,
            "message": exc.message,
            "details": exc.details,
        },
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle validation errors."""
    add_breadcrumb(
        message="Request validation failed",
        category="validation",
        level="warning",
        data={
            "path": request.url.path,
            "method": request.method,
        },
    )

    logger.warning(
        "Validation error",
        path=request.url.path,
        errors=exc.errors(),
    )

    if settings.enable_alerts and settings.alert_on_warnings:
        capture_exception(
            exc,
            level="warning",
            context={"request": {"path": request.url.path, "method": request.method}},
            tags={"error_type": "VALIDATION_ERROR", "path": request.url.path},
        )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": _jsonable_errors(exc.errors()),
        },
    )


def _jsonable_errors(errors: Any) -> Any:
    """Strip non-serializable context (raw exceptions) from pydantic error lists."""
    cleaned = []
    for error in errors:
        error = dict(error)
        error.pop("ctx", None)
        error.pop("input", None)
        cleaned.append(error)
    return cleaned


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    add_breadcrumb(
        message=f"Unexpected error: {type(exc).__name__}",
        category="exception",
        level="error",
        data={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
        },
    )

    logger.error(
        "Unexpected error",
        error=str(exc),
        path=request.url.path,
        exc_info=True,
    )

    if settings.enable_alerts:
        capture_exception(
            exc,
            level="error",
            context={
                "request": {
                    "path": request.url.path,
                    "method": request.method,
                    "url": str(request.url),
                },
            },
            tags={
                "error_type": type(exc).__name__,
                "path": request.url.path,
            },
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
        },
    )
