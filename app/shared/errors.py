"""
Error taxonomy and standardized error responses for the knowledge service.

Domain code raises the exceptions below; the FastAPI handler registered in
main.py turns them into the shared JSON envelope with the correlation ID and
the elapsed request time, so callers can tell user error from system failure.

Usage:
    from app.shared.errors import ValidationError, NotFoundError

    if not query.strip():
        raise ValidationError("Query is required", details={"field": "query"})

Output format:
    {
        "success": false,
        "error": {
            "code": "VALIDATION_ERROR",
            "message": "Query is required",
            "details": {"field": "query"},
            "correlation_id": "abc123",
            "elapsed_ms": 3
        }
    }
"""

import logging
import time
from enum import Enum
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger("Javari.Errors")


class ErrorCode(str, Enum):
    """Standard error codes used across the knowledge service."""

    # Client errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"

    # Server errors (5xx)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UPSTREAM_PROVIDER_ERROR = "UPSTREAM_PROVIDER_ERROR"
    TRACKING_FAILURE = "TRACKING_FAILURE"


class KnowledgeServiceError(Exception):
    """Base class for errors that map onto an HTTP error envelope."""

    code = ErrorCode.INTERNAL_ERROR
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(KnowledgeServiceError):
    """Missing or malformed required input. Never retried."""

    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class NotFoundError(KnowledgeServiceError):
    """A caller-supplied identifier does not exist."""

    code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class UpstreamProviderError(KnowledgeServiceError):
    """The embedding provider or the knowledge store failed."""

    code = ErrorCode.UPSTREAM_PROVIDER_ERROR
    status_code = 502

    def __init__(self, service_name: str, message: str):
        super().__init__(message, details={"service": service_name})
        self.service_name = service_name


class TrackingFailure(KnowledgeServiceError):
    """A best-effort side-channel write failed. Logged, never surfaced."""

    code = ErrorCode.TRACKING_FAILURE


class ErrorDetail(BaseModel):
    """Structured error detail model."""
    code: str
    message: str
    details: Optional[dict[str, Any]] = None
    correlation_id: Optional[str] = None
    elapsed_ms: Optional[int] = None


def elapsed_ms_since(request: Optional[Request]) -> Optional[int]:
    """Milliseconds since the correlation middleware stamped the request."""
    if request is None:
        return None
    started_at = getattr(request.state, "started_at", None)
    if started_at is None:
        return None
    return int((time.perf_counter() - started_at) * 1000)


def error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[dict[str, Any]] = None,
    correlation_id: Optional[str] = None,
    elapsed_ms: Optional[int] = None,
) -> JSONResponse:
    """
    Create a standardized JSON error response.

    Args:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        status_code: HTTP status code
        details: Optional additional error details
        correlation_id: Request correlation ID for tracing
        elapsed_ms: Time spent on the request before it failed

    Returns:
        JSONResponse with standardized error format
    """
    error_detail = ErrorDetail(
        code=code.value,
        message=message,
        details=details,
        correlation_id=correlation_id,
        elapsed_ms=elapsed_ms,
    )
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error_detail.model_dump(exclude_none=True)},
    )


async def knowledge_error_handler(request: Request, exc: KnowledgeServiceError) -> JSONResponse:
    """Render a domain exception as the standard error envelope."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code.value}: {exc.message}")
    else:
        logger.info(f"{exc.code.value}: {exc.message}")

    return error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        correlation_id=getattr(request.state, "correlation_id", None),
        elapsed_ms=elapsed_ms_since(request),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Last-resort handler so no failure path crashes the process.

    Note: Only the exception message is exposed; the traceback stays in logs.
    """
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message=str(exc) or "Internal server error",
        status_code=500,
        correlation_id=getattr(request.state, "correlation_id", None),
        elapsed_ms=elapsed_ms_since(request),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies and parameters use the same envelope as ValidationError."""
    logger.info(f"{ErrorCode.VALIDATION_ERROR.value}: invalid request on {request.url.path}")
    return error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Invalid request",
        status_code=ValidationError.status_code,
        details={"errors": jsonable_encoder(exc.errors())},
        correlation_id=getattr(request.state, "correlation_id", None),
        elapsed_ms=elapsed_ms_since(request),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the error envelope handlers to the application."""
    app.add_exception_handler(KnowledgeServiceError, knowledge_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
