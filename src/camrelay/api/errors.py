"""Standardized error handling and response schemas for the REST API.

Maps the domain exceptions of the session manager onto HTTP responses and
keeps every error body in one shape:

    {
        "code": "NOT_FOUND",
        "message": "Human-readable description",
        "details": {"additional": "context"}
    }

Status Mapping:
    BAD_REQUEST       -> 400
    NOT_FOUND         -> 404
    NOT_READY         -> 409
    VALIDATION_ERROR  -> 422
    CAPTURE_FAILED    -> 500
    TRANSCODE_FAILED  -> 502
    STARTUP_TIMEOUT   -> 504
    INTERNAL_ERROR    -> 500

Logging Strategy:
    DEBUG - Error response creation
    INFO  - Client errors (4xx)
    WARN  - Request validation failures, upstream failures (502/504)
    ERROR - Server errors (5xx), unexpected exceptions
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional
import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..services.errors import StreamError

logger = logging.getLogger(__name__)

# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response schema for all API errors.

    Attributes:
        code: Machine-readable error code (from ErrorCode enum)
        message: Human-readable error message for display
        details: Optional additional context
    """

    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error details")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "code": "STARTUP_TIMEOUT",
                    "message": "Stream startup timed out",
                    "details": {"session_id": "550e8400-e29b-41d4-a716-446655440000"}
                }
            ]
        }
    }


# ============================================================================
# Error Codes Enum
# ============================================================================

class ErrorCode(str, Enum):
    """Error codes returned by the API."""

    # Client errors
    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    NOT_READY = "NOT_READY"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Transcoder errors
    TRANSCODE_FAILED = "TRANSCODE_FAILED"
    STARTUP_TIMEOUT = "STARTUP_TIMEOUT"
    CAPTURE_FAILED = "CAPTURE_FAILED"

    # System errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


# ============================================================================
# Error Response Factory
# ============================================================================

def create_error_response(
    code: ErrorCode | str,
    message: str,
    details: Optional[dict[str, Any]] = None
) -> ErrorResponse:
    """Create a standardized error response.

    Example:
        >>> error = create_error_response(ErrorCode.NOT_FOUND, "Stream not found")
        >>> error.code
        'NOT_FOUND'
    """
    code_str = code.value if isinstance(code, ErrorCode) else code
    logger.debug(f"Creating error response: code={code_str}, message={message}")
    return ErrorResponse(code=code_str, message=message, details=details)


# ============================================================================
# Exception Handlers
# ============================================================================

async def stream_error_handler(request: Request, exc: StreamError) -> JSONResponse:
    """Translate domain exceptions into their HTTP status and error body."""
    summary = f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}"
    if exc.status_code in (status.HTTP_502_BAD_GATEWAY, status.HTTP_504_GATEWAY_TIMEOUT):
        logger.warning(summary)
    elif exc.status_code >= 500:
        logger.error(summary)
    else:
        logger.info(summary)

    error = create_error_response(exc.code, exc.message, exc.details)
    return JSONResponse(status_code=exc.status_code, content=error.model_dump())


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic request validation errors (422)."""
    error_count = len(exc.errors())
    logger.warning(
        f"Validation failed: {request.method} {request.url.path} "
        f"({error_count} error(s))"
    )
    logger.debug(f"Validation errors: {exc.errors()}")

    error = create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        details={"errors": jsonable_errors(exc)}
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error.model_dump()
    )


async def http_exception_handler(
    request: Request,
    exc: HTTPException
) -> JSONResponse:
    """Handle HTTPException (routing 404/405 and explicit raises).

    Passes pre-formatted bodies through; wraps everything else.
    """
    if exc.status_code >= 500:
        logger.error(
            f"Server error: {request.method} {request.url.path} "
            f"-> {exc.status_code}: {exc.detail}"
        )
    else:
        logger.info(
            f"Client error: {request.method} {request.url.path} "
            f"-> {exc.status_code}: {exc.detail}"
        )

    if isinstance(exc.detail, dict) and "code" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)

    code = ErrorCode.NOT_FOUND if exc.status_code == status.HTTP_404_NOT_FOUND else ErrorCode.INTERNAL_ERROR
    error = create_error_response(
        code=code,
        message=str(exc.detail) if exc.detail else "An error occurred"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error.model_dump(),
        headers=getattr(exc, "headers", None)
    )


async def general_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions.

    Logs the full stack trace but returns a generic message so nothing
    sensitive (source URLs, paths) leaks to clients.
    """
    logger.error(
        f"Unhandled exception: {request.method} {request.url.path} "
        f"-> {type(exc).__name__}: {str(exc)}",
        exc_info=exc
    )

    error = create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An internal server error occurred"
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error.model_dump()
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Validation error entries reduced to JSON-safe fields."""
    return [
        {
            "loc": list(err.get("loc", ())),
            "msg": str(err.get("msg", "")),
            "type": str(err.get("type", "")),
        }
        for err in exc.errors()
    ]


def register_exception_handlers(app: FastAPI) -> None:
    """Install all handlers on an application."""
    app.add_exception_handler(StreamError, stream_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
