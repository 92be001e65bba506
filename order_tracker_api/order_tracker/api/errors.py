"""
Error envelope rendering.

Every failure leaving the API, whether a domain error, an HTTPException, a
request validation problem or an unexpected exception, is returned as an
ErrorResponse so clients can branch on `error.kind` alone.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from order_tracker.core.errors import OrderTrackerError
from order_tracker.schemas.common import ErrorInfo, ErrorResponse

logger = logging.getLogger(__name__)

# Keys of a pydantic error entry that are always JSON serializable.
VALIDATION_ERROR_KEYS = ("loc", "msg", "type")


# PUBLIC_INTERFACE
def error_response(
    request: Request,
    status_code: int,
    kind: str,
    message: str,
    details: Any | None = None,
) -> JSONResponse:
    """Render one ErrorResponse for the current request."""
    envelope = ErrorResponse(
        status=status_code,
        error=ErrorInfo(kind=kind, message=message, details=details),
        correlation_id=getattr(request.state, "correlation_id", None),
        path=request.url.path,
        method=request.method,
        timestamp=datetime.now(tz=timezone.utc),
    )
    return JSONResponse(status_code=status_code, content=envelope.model_dump(mode="json"))


def validation_details(exc: RequestValidationError) -> List[Dict[str, Any]]:
    """Strip raw inputs and contexts from validation errors."""
    return [
        {key: value for key, value in entry.items() if key in VALIDATION_ERROR_KEYS}
        for entry in exc.errors()
    ]


async def _on_domain_error(request: Request, exc: OrderTrackerError) -> JSONResponse:
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, "%s %s rejected (%s): %s", request.method, request.url.path, exc.kind, exc.message)
    return error_response(request, exc.status_code, exc.kind, exc.message, exc.details)


async def _on_http_error(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, str):
        message, details = exc.detail, None
    else:
        message, details = "HTTP Error", exc.detail
    return error_response(request, exc.status_code, "http_error", message, details)


async def _on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request, 422, "validation_error", "Request validation failed", validation_details(exc)
    )


async def _on_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    # Logged with the traceback; the client only sees the stable kind.
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(request, 500, "internal_error", "An unexpected error occurred")


# PUBLIC_INTERFACE
def register_exception_handlers(app: FastAPI) -> None:
    """Attach the envelope-producing handlers to an application."""
    app.add_exception_handler(OrderTrackerError, _on_domain_error)
    app.add_exception_handler(HTTPException, _on_http_error)
    app.add_exception_handler(RequestValidationError, _on_validation_error)
    app.add_exception_handler(Exception, _on_unexpected_error)
