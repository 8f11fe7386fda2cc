"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles the browser front end
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from title_registry.domain.exceptions import (
    AccountNotFoundError,
    AuthorizationError,
    ChainError,
    ChainRejectedError,
    ChainTransientError,
    ConfirmationTimeoutError,
    ConsistencyError,
    DocumentUploadError,
    DuplicateAccountError,
    DuplicatePropertyError,
    EventMissingError,
    InvalidStateTransitionError,
    PropertyNotFoundError,
    RegistrationNotFoundError,
    TitleRegistryError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

# First match wins, so subclasses must precede their bases
_STATUS_CODES: tuple[tuple[type[TitleRegistryError], int], ...] = (
    (PropertyNotFoundError, 404),
    (RegistrationNotFoundError, 404),
    (AccountNotFoundError, 404),
    (DuplicatePropertyError, 409),
    (DuplicateAccountError, 409),
    (AuthorizationError, 403),
    (DocumentUploadError, 502),
    (ChainTransientError, 503),
    (ChainRejectedError, 422),
    (ConfirmationTimeoutError, 504),
    (EventMissingError, 502),
    (ChainError, 502),
    (ConsistencyError, 500),
)


def status_code_for(exc: TitleRegistryError) -> int:
    """HTTP status for a domain error; input errors default to 400."""
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 400


def _error_body(exc: TitleRegistryError) -> dict:
    body = {"error": exc.code, "message": exc.message}
    tx_hash = getattr(exc, "tx_hash", None)
    if tx_hash:
        body["tx_hash"] = tx_hash
    return body


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        # Bind to structlog context for all log entries in this request
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

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
        except InvalidStateTransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted_state,
            )
            return JSONResponse(status_code=409, content=_error_body(exc))
        except ConsistencyError as exc:
            logger.error(
                "ledger.consistency_error",
                error=exc.message,
                tx_hash=exc.tx_hash,
                property_id=exc.property_id,
            )
            body = _error_body(exc)
            body["property_id"] = exc.property_id
            body["reconcile"] = (
                "POST /api/v1/registrations/reconcile for a mint, "
                "POST /api/v1/properties/{property_id}/reconcile for a status change"
            )
            return JSONResponse(status_code=500, content=body)
        except TitleRegistryError as exc:
            status_code = status_code_for(exc)
            log = logger.error if status_code >= 500 else logger.warning
            log("domain.error", error=exc.message, code=exc.code, status_code=status_code)
            return JSONResponse(status_code=status_code, content=_error_body(exc))
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
