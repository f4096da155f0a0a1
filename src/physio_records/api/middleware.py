"""Middleware configuration for the records API.

This module sets up middleware for correlation ids, request logging and
last-resort error handling.
"""

import logging
import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from physio_records.api.errors import error_body
from physio_records.api.logging_config import correlation_id_var

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-Id"
MAX_CORRELATION_ID_LENGTH = 128


def resolve_correlation_id(raw: Optional[str]) -> str:
    """Use the caller's correlation id when it is usable, else generate one."""
    if raw:
        candidate = raw.strip()
        if candidate and len(candidate) <= MAX_CORRELATION_ID_LENGTH:
            return candidate
    return uuid.uuid4().hex


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Bind a correlation id to the request and echo it on the response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = resolve_correlation_id(request.headers.get(CORRELATION_HEADER))
        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log one line per request and report the handling time."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Time the request and log its outcome.

        Parameters:
            request: Incoming HTTP request
            call_next: Next middleware or route handler

        Returns:
            Response: HTTP response with X-Process-Time header
        """
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started
        response.headers["X-Process-Time"] = f"{elapsed:.3f}"

        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} in {elapsed:.3f}s",
            extra={"extra_fields": {
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(elapsed * 1000, 1),
            }},
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware for global error handling."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Handle unexpected errors globally.

        Expected outcomes never reach this point; they are returned as Result
        values and rendered by the ApiError handler.
        """
        try:
            return await call_next(request)
        except ValueError as e:
            logger.warning(f"Invalid request on {request.url.path}: {type(e).__name__}")
            return JSONResponse(status_code=400, content=error_body("invalid_request"))
        except Exception:
            logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=True)
            return JSONResponse(status_code=500, content=error_body("internal_error"))


def setup_middleware(app) -> None:
    """Setup application middleware.

    Parameters:
        app: FastAPI application instance

    Middleware Order (outermost first):
        1. CorrelationIdMiddleware - binds the id before anything logs
        2. LoggingMiddleware - logs requests/responses
        3. ErrorHandlingMiddleware - converts unexpected errors to 400/500
    """
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
