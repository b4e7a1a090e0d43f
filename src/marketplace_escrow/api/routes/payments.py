"""Payment REST API routes.

Routes:
    POST   /api/v1/payments                 — Client pays for a priced request
    POST   /api/v1/payments/notifications   — Gateway reports an outcome (shared secret)
    GET    /api/v1/payments/escrow          — Provider's payments held in escrow
    GET    /api/v1/payments/provider-stats  — Provider's released/escrow/pending totals
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from marketplace_escrow.api.deps import (
    get_clock,
    get_current_principal,
    get_db_session,
    require_gateway,
)
from marketplace_escrow.domain.clock import Clock  # noqa: TC001
from marketplace_escrow.domain.principal import Principal  # noqa: TC001
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.schemas.escrow import (
    CreatePaymentRequest,
    EscrowPaymentResponse,
    GatewayNotificationRequest,
    PaymentResponse,
    ProviderStatsResponse,
)
from marketplace_escrow.services.payment_service import PaymentService
from marketplace_escrow.services.query_service import EscrowQueryService

router = APIRouter(prefix="/api/v1/payments", tags=["Payments"])
logger = get_logger(__name__)


@router.post(
    "",
    response_model=PaymentResponse,
    status_code=201,
    summary="Create a payment for a priced request",
)
async def create_payment(
    request: CreatePaymentRequest,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
) -> PaymentResponse:
    """Open a PENDING payment. The gateway later reports whether funds are held."""
    svc = PaymentService(session, clock)
    payment = await svc.create_payment(request.request_id, principal.id)
    return PaymentResponse.model_validate(payment)


@router.post(
    "/notifications",
    response_model=PaymentResponse,
    summary="Apply a payment gateway notification",
    dependencies=[Depends(require_gateway)],
)
async def gateway_notification(
    notification: GatewayNotificationRequest,
    session: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
) -> PaymentResponse:
    """Correlate the notification by external reference and apply its status.

    Only the payment gateway may call this; it authenticates with the shared
    secret in X-Gateway-Secret.

    ``approved`` holds the funds in escrow, ``rejected`` fails the payment,
    anything else is recorded and ignored.
    """
    svc = PaymentService(session, clock)
    payment = await svc.apply_gateway_notification(
        external_reference=notification.external_reference,
        gateway_status=notification.status,
        gateway_payment_id=notification.gateway_payment_id,
        details=notification.details,
    )
    return PaymentResponse.model_validate(payment)


@router.get(
    "/escrow",
    response_model=list[EscrowPaymentResponse],
    summary="List a provider's escrowed payments",
)
async def list_escrow_payments(
    provider_id: str = Query(..., alias="providerId", min_length=1),
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
) -> list[EscrowPaymentResponse]:
    svc = EscrowQueryService(session)
    payments = await svc.list_escrow_payments(principal.id, provider_id)
    return [EscrowPaymentResponse.model_validate(p) for p in payments]


@router.get(
    "/provider-stats",
    response_model=ProviderStatsResponse,
    summary="Summarize a provider's payments",
)
async def provider_stats(
    provider_id: str = Query(..., alias="providerId", min_length=1),
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
) -> ProviderStatsResponse:
    svc = EscrowQueryService(session)
    stats = await svc.provider_stats(principal.id, provider_id)
    return ProviderStatsResponse.model_validate(stats)
