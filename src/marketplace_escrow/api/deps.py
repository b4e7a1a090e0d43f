"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the clock, the authenticated principal and the sweep worker. Tests override
them through ``app.dependency_overrides``.

Authentication happens upstream: the gateway in front of this service
validates credentials and forwards the caller's identity in X-Principal-*
headers. This module only reads them. The payment gateway is the exception:
it calls the notification endpoint directly and proves itself with a shared
secret in X-Gateway-Secret.
"""

from __future__ import annotations

import hmac
from typing import TYPE_CHECKING

from fastapi import Depends, Request

from marketplace_escrow.config import Settings, get_settings
from marketplace_escrow.domain.clock import Clock, SystemClock  # noqa: TC001
from marketplace_escrow.domain.exceptions import ForbiddenError, UnauthenticatedError
from marketplace_escrow.domain.principal import Principal
from marketplace_escrow.infrastructure.database.engine import (
    get_async_session,
    get_session_factory,
)
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.services.sweep_worker import ExpirySweepWorker

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession


PRINCIPAL_ID_HEADER = "X-Principal-Id"
PRINCIPAL_EMAIL_HEADER = "X-Principal-Email"
PRINCIPAL_PROVIDER_HEADER = "X-Principal-Provider"
GATEWAY_SECRET_HEADER = "X-Gateway-Secret"

_TRUTHY = {"1", "true", "yes"}
_system_clock = SystemClock()
logger = get_logger(__name__)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_clock() -> Clock:
    """Provide the time source."""
    return _system_clock


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def resolve_principal(request: Request) -> Principal | None:
    """Read the caller identity forwarded by the auth gateway, if any."""
    principal_id = request.headers.get(PRINCIPAL_ID_HEADER, "").strip()
    if not principal_id:
        return None
    return Principal(
        id=principal_id,
        email=request.headers.get(PRINCIPAL_EMAIL_HEADER),
        is_provider=request.headers.get(PRINCIPAL_PROVIDER_HEADER, "").lower() in _TRUTHY,
    )


def get_current_principal(request: Request) -> Principal:
    """Provide the authenticated principal or fail with 401."""
    principal = resolve_principal(request)
    if principal is None:
        raise UnauthenticatedError()
    return principal


def require_sweep_operator(
    principal: Principal = Depends(get_current_principal),
    settings: Settings = Depends(get_app_settings),
) -> Principal:
    """Only principals on the configured operator allow-list may trigger sweeps."""
    if principal.id not in settings.sweep_operator_id_set:
        raise ForbiddenError(principal.id, "trigger an expiry sweep")
    return principal


def get_sweep_worker(clock: Clock = Depends(get_clock)) -> ExpirySweepWorker:
    """Provide a sweep worker bound to the application's session factory."""
    return ExpirySweepWorker(get_session_factory(), clock)


def require_gateway(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Accept only callers presenting the configured gateway secret.

    A missing header is 401. A wrong secret, or no secret configured at all,
    is 403.
    """
    presented = request.headers.get(GATEWAY_SECRET_HEADER, "")
    if not presented:
        raise UnauthenticatedError()
    expected = settings.gateway_webhook_secret
    if not expected or not hmac.compare_digest(presented.encode(), expected.encode()):
        logger.warning("gateway.rejected", path=request.url.path)
        raise ForbiddenError("payment-gateway", "deliver payment notifications")
