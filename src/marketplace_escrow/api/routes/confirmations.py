"""Task confirmation REST API routes.

Routes:
    POST   /api/v1/confirmations/{id}/confirm  — Client approves completed work
    GET    /api/v1/confirmations                — Caller's confirmations awaiting approval
    GET    /api/v1/confirmations/provider       — Provider's unresolved confirmations
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path parameter types at runtime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from marketplace_escrow.api.deps import get_clock, get_current_principal, get_db_session
from marketplace_escrow.domain.clock import Clock  # noqa: TC001
from marketplace_escrow.domain.principal import Principal  # noqa: TC001
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.schemas.escrow import ConfirmationResponse, PendingConfirmationResponse
from marketplace_escrow.services.confirmation_service import ConfirmationService
from marketplace_escrow.services.query_service import EscrowQueryService

router = APIRouter(prefix="/api/v1/confirmations", tags=["Confirmations"])
logger = get_logger(__name__)


@router.post(
    "/{confirmation_id}/confirm",
    response_model=ConfirmationResponse,
    summary="Confirm completed work and release escrow",
    responses={409: {"description": "Already confirmed or auto-released"}},
)
async def confirm_task(
    confirmation_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
) -> ConfirmationResponse:
    """Client approves the work. The escrowed payment is released to the provider."""
    svc = ConfirmationService(session, clock)
    confirmation = await svc.confirm(confirmation_id, principal.id)
    return ConfirmationResponse.model_validate(confirmation)


@router.get(
    "",
    response_model=list[PendingConfirmationResponse],
    summary="List confirmations awaiting the caller",
)
async def list_my_pending_confirmations(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
) -> list[PendingConfirmationResponse]:
    svc = EscrowQueryService(session)
    confirmations = await svc.list_client_pending_confirmations(principal.id)
    return [PendingConfirmationResponse.from_confirmation(c) for c in confirmations]


@router.get(
    "/provider",
    response_model=list[PendingConfirmationResponse],
    summary="List a provider's unresolved confirmations",
)
async def list_provider_pending_confirmations(
    provider_id: str = Query(..., alias="providerId", min_length=1),
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
) -> list[PendingConfirmationResponse]:
    """Confirmations on the provider's completed requests, newest first."""
    svc = EscrowQueryService(session)
    confirmations = await svc.list_pending_confirmations(principal.id, provider_id)
    return [PendingConfirmationResponse.from_confirmation(c) for c in confirmations]
