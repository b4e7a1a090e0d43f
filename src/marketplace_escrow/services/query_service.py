"""Escrow Query Service — read projections for provider and client views.

Pure filtered joins over the ledger; nothing here mutates state.
Provider projections are only visible to that provider.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from marketplace_escrow.domain.enums import PaymentStatus
from marketplace_escrow.domain.exceptions import ForbiddenError
from marketplace_escrow.infrastructure.database.repositories import (
    ConfirmationRepository,
    PaymentRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_escrow.infrastructure.database.orm_models import (
        Payment,
        TaskConfirmation,
    )


@dataclass(frozen=True)
class ProviderStats:
    released_count: int
    released_amount: Decimal
    escrow_count: int
    escrow_amount: Decimal
    pending_confirmation_count: int
    pending_confirmation_amount: Decimal


def _total(payments: list[Payment]) -> Decimal:
    return sum((Decimal(p.amount) for p in payments), Decimal("0"))


class EscrowQueryService:
    def __init__(self, session: AsyncSession) -> None:
        self._confirmations = ConfirmationRepository(session)
        self._payments = PaymentRepository(session)

    async def list_pending_confirmations(
        self,
        principal_id: str,
        provider_id: str,
    ) -> list[TaskConfirmation]:
        """Unresolved confirmations on the provider's completed requests, newest first."""
        _require_same_provider(principal_id, provider_id, "pending confirmations")
        return await self._confirmations.list_pending_for_provider(provider_id)

    async def list_escrow_payments(self, principal_id: str, provider_id: str) -> list[Payment]:
        """Escrowed payments for work in progress or completed without a confirmation."""
        _require_same_provider(principal_id, provider_id, "escrow payments")
        return await self._payments.list_escrow_for_provider(provider_id)

    async def list_client_pending_confirmations(self, principal_id: str) -> list[TaskConfirmation]:
        """Confirmations still waiting on this client, soonest expiry first."""
        return await self._confirmations.list_pending_for_client(principal_id)

    async def provider_stats(self, principal_id: str, provider_id: str) -> ProviderStats:
        _require_same_provider(principal_id, provider_id, "payment stats")

        released = await self._payments.list_by_provider(provider_id, PaymentStatus.APPROVED)
        escrow = await self._payments.list_escrow_for_provider(provider_id)
        awaiting = await self._payments.list_awaiting_confirmation_for_provider(provider_id)

        return ProviderStats(
            released_count=len(released),
            released_amount=_total(released),
            escrow_count=len(escrow),
            escrow_amount=_total(escrow),
            pending_confirmation_count=len(awaiting),
            pending_confirmation_amount=_total(awaiting),
        )


def _require_same_provider(principal_id: str, provider_id: str, what: str) -> None:
    if principal_id != provider_id:
        raise ForbiddenError(principal_id, f"view {what} of provider {provider_id}")
