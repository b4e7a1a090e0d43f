"""Repository classes for database access (the escrow ledger).

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

The two writes that decide a confirmation's outcome (mark_confirmed and
mark_auto_released) are compare-and-set updates: they only match a row that
is still unresolved, and report whether they won.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import and_, or_, select, update

from marketplace_escrow.domain.enums import PaymentStatus, RequestStatus
from marketplace_escrow.domain.exceptions import TransientStoreFailure
from marketplace_escrow.infrastructure.database.engine import STORE_ERRORS
from marketplace_escrow.infrastructure.database.orm_models import (
    EscrowEvent,
    Payment,
    ServiceRequest,
    TaskConfirmation,
)

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.sql import Executable

    from marketplace_escrow.domain.enums import EventType


class _Repository:
    """Session holder that turns driver failures into TransientStoreFailure."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _execute(self, statement: Executable):  # noqa: ANN202
        try:
            return await self._session.execute(statement)
        except STORE_ERRORS as err:
            raise TransientStoreFailure(f"Ledger query failed: {err}") from err

    async def _add(self, instance: object) -> None:
        self._session.add(instance)
        try:
            await self._session.flush()
        except STORE_ERRORS as err:
            raise TransientStoreFailure(f"Ledger write failed: {err}") from err

    async def _flush(self) -> None:
        try:
            await self._session.flush()
        except STORE_ERRORS as err:
            raise TransientStoreFailure(f"Ledger write failed: {err}") from err


class ServiceRequestRepository(_Repository):
    """Data access for service requests."""

    async def create(self, request: ServiceRequest) -> ServiceRequest:
        await self._add(request)
        return request

    async def get_by_id(self, request_id: uuid.UUID) -> ServiceRequest | None:
        result = await self._execute(
            select(ServiceRequest).where(ServiceRequest.id == request_id)
        )
        return result.scalar_one_or_none()

    async def save(self, request: ServiceRequest, now: datetime) -> ServiceRequest:
        """Flush pending attribute changes (call AFTER state machine validation)."""
        request.updated_at = now
        await self._flush()
        return request


class PaymentRepository(_Repository):
    """Data access for payments."""

    async def create(self, payment: Payment) -> Payment:
        await self._add(payment)
        return payment

    async def get_by_id(self, payment_id: uuid.UUID) -> Payment | None:
        result = await self._execute(select(Payment).where(Payment.id == payment_id))
        return result.scalar_one_or_none()

    async def get_by_request(self, request_id: uuid.UUID) -> Payment | None:
        result = await self._execute(
            select(Payment)
            .where(Payment.request_id == request_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_external_reference(self, external_reference: str) -> Payment | None:
        result = await self._execute(
            select(Payment).where(Payment.external_reference == external_reference)
        )
        return result.scalar_one_or_none()

    async def save(self, payment: Payment, now: datetime) -> Payment:
        payment.updated_at = now
        await self._flush()
        return payment

    async def release_escrowed(self, payment_id: uuid.UUID, now: datetime) -> bool:
        """Move a payment ESCROW -> APPROVED. Returns False if it was not in ESCROW."""
        result = await self._execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status == PaymentStatus.ESCROW.value,
            )
            .values(status=PaymentStatus.APPROVED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_by_provider(
        self,
        provider_id: str,
        status: PaymentStatus,
    ) -> list[Payment]:
        result = await self._execute(
            select(Payment)
            .where(Payment.provider_id == provider_id, Payment.status == status.value)
            .order_by(Payment.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_escrow_for_provider(self, provider_id: str) -> list[Payment]:
        """ESCROW payments whose request is in progress, or completed with no confirmation."""
        result = await self._execute(
            select(Payment)
            .join(ServiceRequest, Payment.request_id == ServiceRequest.id)
            .outerjoin(TaskConfirmation, TaskConfirmation.request_id == ServiceRequest.id)
            .where(
                Payment.provider_id == provider_id,
                Payment.status == PaymentStatus.ESCROW.value,
                or_(
                    ServiceRequest.status == RequestStatus.IN_PROGRESS.value,
                    and_(
                        ServiceRequest.status == RequestStatus.COMPLETED.value,
                        TaskConfirmation.id.is_(None),
                    ),
                ),
            )
            .order_by(Payment.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_awaiting_confirmation_for_provider(self, provider_id: str) -> list[Payment]:
        """ESCROW payments whose confirmation window is still open."""
        result = await self._execute(
            select(Payment)
            .join(TaskConfirmation, TaskConfirmation.request_id == Payment.request_id)
            .where(
                Payment.provider_id == provider_id,
                Payment.status == PaymentStatus.ESCROW.value,
                TaskConfirmation.confirmed.is_(False),
                TaskConfirmation.auto_released.is_(False),
            )
            .order_by(Payment.created_at.desc())
        )
        return list(result.scalars().all())


class ConfirmationRepository(_Repository):
    """Data access for task confirmations."""

    async def create(self, confirmation: TaskConfirmation) -> TaskConfirmation:
        await self._add(confirmation)
        return confirmation

    async def get_by_id(
        self,
        confirmation_id: uuid.UUID,
        *,
        refresh: bool = False,
    ) -> TaskConfirmation | None:
        """Fetch a confirmation. ``refresh`` re-reads stored state over cached objects."""
        statement = select(TaskConfirmation).where(TaskConfirmation.id == confirmation_id)
        if refresh:
            statement = statement.execution_options(populate_existing=True)
        result = await self._execute(statement)
        return result.scalar_one_or_none()

    async def find_expired_pending(
        self,
        now: datetime,
        *,
        limit: int | None = None,
        after: tuple[uuid.UUID, datetime] | None = None,
    ) -> list[tuple[uuid.UUID, datetime]]:
        """Unresolved confirmations whose window elapsed at or before ``now``.

        Rows are ``(id, expires_at)`` ordered by ``(expires_at, id)``. Passing
        the last row of one page as ``after`` returns the next page.
        """
        statement = (
            select(TaskConfirmation.id, TaskConfirmation.expires_at)
            .where(
                TaskConfirmation.expires_at <= now,
                TaskConfirmation.confirmed.is_(False),
                TaskConfirmation.auto_released.is_(False),
            )
            .order_by(TaskConfirmation.expires_at, TaskConfirmation.id)
        )
        if after is not None:
            last_id, last_expires_at = after
            statement = statement.where(
                or_(
                    TaskConfirmation.expires_at > last_expires_at,
                    and_(
                        TaskConfirmation.expires_at == last_expires_at,
                        TaskConfirmation.id > last_id,
                    ),
                )
            )
        if limit is not None:
            statement = statement.limit(limit)
        result = await self._execute(statement)
        return [(row.id, row.expires_at) for row in result.all()]

    async def mark_confirmed(self, confirmation_id: uuid.UUID, now: datetime) -> bool:
        """Compare-and-set the confirmed flag. Returns False if already resolved."""
        return await self._resolve(confirmation_id, confirmed=True, confirmed_at=now)

    async def mark_auto_released(self, confirmation_id: uuid.UUID, now: datetime) -> bool:
        """Compare-and-set the auto_released flag. Returns False if already resolved."""
        return await self._resolve(confirmation_id, auto_released=True, auto_released_at=now)

    async def _resolve(self, confirmation_id: uuid.UUID, **values: object) -> bool:
        result = await self._execute(
            update(TaskConfirmation)
            .where(
                TaskConfirmation.id == confirmation_id,
                TaskConfirmation.confirmed.is_(False),
                TaskConfirmation.auto_released.is_(False),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_pending_for_provider(self, provider_id: str) -> list[TaskConfirmation]:
        result = await self._execute(
            select(TaskConfirmation)
            .join(ServiceRequest, TaskConfirmation.request_id == ServiceRequest.id)
            .where(
                ServiceRequest.provider_id == provider_id,
                ServiceRequest.status == RequestStatus.COMPLETED.value,
                TaskConfirmation.confirmed.is_(False),
                TaskConfirmation.auto_released.is_(False),
            )
            .order_by(TaskConfirmation.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_pending_for_client(self, client_id: str) -> list[TaskConfirmation]:
        result = await self._execute(
            select(TaskConfirmation)
            .join(ServiceRequest, TaskConfirmation.request_id == ServiceRequest.id)
            .where(
                ServiceRequest.client_id == client_id,
                TaskConfirmation.confirmed.is_(False),
                TaskConfirmation.auto_released.is_(False),
            )
            .order_by(TaskConfirmation.expires_at.asc())
        )
        return list(result.scalars().all())


class EventRepository(_Repository):
    """Data access for the append-only audit event log."""

    async def record(
        self,
        request_id: uuid.UUID,
        event_type: EventType,
        occurred_at: datetime,
        actor: str = "SYSTEM",
        confirmation_id: uuid.UUID | None = None,
        payment_id: uuid.UUID | None = None,
        metadata: dict | None = None,
    ) -> EscrowEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = EscrowEvent(
            request_id=request_id,
            event_type=event_type.value,
            actor=actor,
            confirmation_id=confirmation_id,
            payment_id=payment_id,
            metadata_json=metadata,
            created_at=occurred_at,
        )
        await self._add(evt)
        return evt

    async def get_by_request(self, request_id: uuid.UUID) -> list[EscrowEvent]:
        """Fetch all events for a request in chronological order."""
        result = await self._execute(
            select(EscrowEvent)
            .where(EscrowEvent.request_id == request_id)
            .order_by(EscrowEvent.created_at.asc())
        )
        return list(result.scalars().all())
