"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles browser clients

Error bodies always have the shape ``{"error", "message", "details"}``.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from geo_escrow.domain.exceptions import (
    AuthorizationError,
    ConditionNotMetError,
    EscrowError,
    InvariantViolationError,
    StateConflictError,
    TransferNotFoundError,
    UnsupportedEventError,
    UpstreamError,
    ValidationError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)


def status_code_for(exc: EscrowError) -> int:
    """HTTP status for a domain error."""
    if isinstance(exc, ValidationError | ConditionNotMetError):
        return 400
    if isinstance(exc, AuthorizationError):
        return 403
    if isinstance(exc, TransferNotFoundError):
        return 404
    if isinstance(exc, StateConflictError):
        return 409
    if isinstance(exc, UnsupportedEventError):
        return 422
    if isinstance(exc, UpstreamError):
        return 503 if exc.transient else 502
    if isinstance(exc, InvariantViolationError):
        return 500
    return 400


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            principal_id=request.headers.get("X-Principal-Id"),
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except EscrowError as exc:
            status_code = status_code_for(exc)
            if status_code >= 500:
                logger.error("request.failed", code=exc.code, error=exc.message, details=exc.details)
            else:
                logger.warning("request.rejected", code=exc.code, status=status_code)
            return JSONResponse(status_code=status_code, content=exc.to_dict())
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                    "details": {},
                },
            )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed bodies as VALIDATION_ERROR (400), like domain validation."""
    errors = exc.errors()
    first = errors[0] if errors else {"loc": (), "msg": "Invalid request"}
    field = ".".join(str(part) for part in first["loc"] if part != "body") or None
    return JSONResponse(
        status_code=400,
        content=ValidationError(first["msg"], field=field).to_dict(),
    )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
