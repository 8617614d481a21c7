"""Global exception handlers for consistent error responses.

The request pipeline already turns handler failures into error envelopes.
These handlers cover everything that fails outside it (unknown routes,
framework-level request validation, bugs in the glue code) so callers always
receive the same shape:

    {"success": false, "error": {"code": ..., "message": ..., "request_id": ...}}

The failed request is also written to the request log and metrics (0 ms, no
cache hit), so it counts toward the error rate like pipeline failures do.

Design:
- AppError subclasses → their own HTTP status (400, 404, 429, 500)
- Starlette HTTP errors → status preserved, ``not_found`` for 404
- Request validation errors → 400 ``validation_error``
- Unexpected Exception → generic 500 (safety net, no details leaked)
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.container import ServiceContainer
from app.core.errors import AppError
from app.core.logging import get_request_id
from app.core.pipeline import build_pipeline_request

logger = logging.getLogger(__name__)

_HTTP_ERROR_CODES = {
    400: "bad_request",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limit_exceeded",
}


def _record_failure(request: Request, status_code: int) -> None:
    """Log and count a request that failed before reaching the pipeline.

    Such requests take 0 ms and never hit the cache. Apps built without the
    service container (bare routers) have nothing to record into.
    """

    services = getattr(request.app.state, "services", None)
    if isinstance(services, ServiceContainer):
        services.pipeline.record(build_pipeline_request(request), status_code, 0.0)


def _error_response(status_code: int, code: str, message: str, *, details: dict | None = None) -> JSONResponse:
    error_content: dict = {
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if details:
        error_content["details"] = details
    return JSONResponse(status_code=status_code, content={"success": False, "error": error_content})


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors raised outside the pipeline.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with the status code bound to the error class.
    """

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": exc.status_code,
            "has_details": bool(exc.details),
            "request_path": request.url.path,
        },
    )
    _record_failure(request, exc.status_code)
    return _error_response(exc.status_code, exc.code, exc.message, details=dict(exc.details or {}))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap Starlette HTTP errors (unknown routes, wrong methods) in the envelope."""

    code = _HTTP_ERROR_CODES.get(exc.status_code, "server_error" if exc.status_code >= 500 else "bad_request")
    if exc.status_code == 404:
        message = f"Route not found: {request.url.path}"
    else:
        message = str(exc.detail)
    _record_failure(request, exc.status_code)
    response = _error_response(exc.status_code, code, message)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    logger.info(
        "request_validation_failed",
        extra={"request_path": request.url.path, "error_count": len(errors)},
    )
    _record_failure(request, 400)
    return _error_response(400, "validation_error", "Invalid request parameters")


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic message.
    Prevents information leakage (no stack traces to client).
    """

    logger.error(
        "unhandled_exception",
        exc_info=exc,
        extra={
            "error_type": type(exc).__name__,
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )
    _record_failure(request, 500)
    return _error_response(500, "server_error", "An unexpected error occurred. Please try again later.")


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""

    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(StarletteHTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(request_validation_handler)
    app.exception_handler(Exception)(general_exception_handler)
