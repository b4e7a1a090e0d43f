"""Service request REST API routes.

Routes:
    POST   /api/v1/requests                 — Client opens a request
    GET    /api/v1/requests/{id}            — Get request details
    GET    /api/v1/requests/{id}/events     — Get audit trail
    POST   /api/v1/requests/{id}/assign     — Provider takes the request
    POST   /api/v1/requests/{id}/price      — Provider quotes a price
    POST   /api/v1/requests/{id}/start      — Provider starts the work
    POST   /api/v1/requests/{id}/complete   — Provider finishes; opens the confirmation window
    POST   /api/v1/requests/{id}/cancel     — Client or provider cancels
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path parameter types at runtime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from marketplace_escrow.api.deps import get_clock, get_current_principal, get_db_session
from marketplace_escrow.domain.clock import Clock  # noqa: TC001
from marketplace_escrow.domain.principal import Principal  # noqa: TC001
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.schemas.escrow import (
    ConfirmationResponse,
    CreateServiceRequest,
    EscrowEventResponse,
    ServiceRequestResponse,
    SetPriceRequest,
)
from marketplace_escrow.services.request_service import RequestService

router = APIRouter(prefix="/api/v1/requests", tags=["Requests"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=ServiceRequestResponse,
    status_code=201,
    summary="Open a new service request",
)
async def create_request(
    request: CreateServiceRequest,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
) -> ServiceRequestResponse:
    """Create a service request in PENDING state owned by the caller."""
    svc = RequestService(session, clock)
    service_request = await svc.create_request(
        client_id=principal.id,
        service_type_id=request.service_type_id,
        description=request.description,
    )
    return ServiceRequestResponse.model_validate(service_request)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post(
    "/{request_id}/assign",
    response_model=ServiceRequestResponse,
    summary="Provider takes a pending request",
)
async def assign_provider(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
) -> ServiceRequestResponse:
    svc = RequestService(session, clock)
    service_request = await svc.assign_provider(request_id, principal)
    return ServiceRequestResponse.model_validate(service_request)


@router.post(
    "/{request_id}/price",
    response_model=ServiceRequestResponse,
    summary="Provider quotes a price",
)
async def set_price(
    request_id: uuid.UUID,
    request: SetPriceRequest,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
) -> ServiceRequestResponse:
    svc = RequestService(session, clock)
    service_request = await svc.set_price(request_id, principal.id, request.price)
    return ServiceRequestResponse.model_validate(service_request)


@router.post(
    "/{request_id}/start",
    response_model=ServiceRequestResponse,
    summary="Provider starts the work",
)
async def start_work(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
) -> ServiceRequestResponse:
    svc = RequestService(session, clock)
    service_request = await svc.start_work(request_id, principal.id)
    return ServiceRequestResponse.model_validate(service_request)


@router.post(
    "/{request_id}/complete",
    response_model=ConfirmationResponse,
    status_code=201,
    summary="Provider completes the work",
)
async def complete_request(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
) -> ConfirmationResponse:
    """Mark the request COMPLETED and open the client's confirmation window.

    Returns the new confirmation. If the client does not confirm before
    ``expires_at``, the sweep releases the escrow automatically.
    """
    svc = RequestService(session, clock)
    confirmation = await svc.complete_request(request_id, principal.id)
    return ConfirmationResponse.model_validate(confirmation)


@router.post(
    "/{request_id}/cancel",
    response_model=ServiceRequestResponse,
    summary="Cancel a request before work starts",
)
async def cancel_request(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
) -> ServiceRequestResponse:
    svc = RequestService(session, clock)
    service_request = await svc.cancel_request(request_id, principal.id)
    return ServiceRequestResponse.model_validate(service_request)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@router.get(
    "/{request_id}",
    response_model=ServiceRequestResponse,
    summary="Get request details",
)
async def get_request(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
) -> ServiceRequestResponse:
    svc = RequestService(session)
    service_request = await svc.get_request(request_id, principal.id)
    return ServiceRequestResponse.model_validate(service_request)


@router.get(
    "/{request_id}/events",
    response_model=list[EscrowEventResponse],
    summary="Get request audit trail",
)
async def get_request_events(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
) -> list[EscrowEventResponse]:
    """All lifecycle, payment and confirmation events for the request, oldest first."""
    svc = RequestService(session)
    events = await svc.get_events(request_id, principal.id)
    return [EscrowEventResponse.model_validate(e) for e in events]
