"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles browser clients of the marketplace UI
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from marketplace_escrow.domain.exceptions import (
    AlreadyResolvedError,
    EscrowError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    TransientStoreFailure,
    UnauthenticatedError,
    ValidationFailure,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

_STATUS_CODES: dict[type[EscrowError], int] = {
    NotFoundError: 404,
    UnauthenticatedError: 401,
    ForbiddenError: 403,
    AlreadyResolvedError: 409,
    InvalidStateTransitionError: 409,
    ValidationFailure: 400,
    TransientStoreFailure: 503,
}


def _error_body(exc: EscrowError) -> dict:
    return {"error": exc.code, "message": exc.message, **exc.details}


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
        except AlreadyResolvedError as exc:
            # The client UI shows the final state from this body, not an error.
            logger.info(
                "confirmation.already_resolved",
                confirmation_id=str(exc.confirmation_id),
                resolution=exc.resolution,
            )
            return JSONResponse(status_code=409, content=_error_body(exc))
        except TransientStoreFailure as exc:
            logger.error("ledger.unavailable", error=exc.message, path=request.url.path)
            return JSONResponse(status_code=503, content=_error_body(exc))
        except EscrowError as exc:
            status_code = _STATUS_CODES.get(type(exc), 400)
            logger.warning("domain.error", code=exc.code, error=exc.message, status=status_code)
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

    Order matters: middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(ErrorHandlerMiddleware)

    app.add_middleware(RequestIDMiddleware)
