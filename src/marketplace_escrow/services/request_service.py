"""Request Service — service request lifecycle up to the confirmation window.

Coordinates between:
    - Domain state machine (transition guard)
    - Repositories (data access)
    - Event log (audit trail)

The step that matters for escrow is complete_request(): the provider marks
the work done, the request becomes COMPLETED and exactly one
TaskConfirmation is opened with a fixed expiry, all in one transaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_escrow.config import get_settings
from marketplace_escrow.domain.clock import SystemClock
from marketplace_escrow.domain.enums import EventType, PaymentStatus, RequestStatus
from marketplace_escrow.domain.exceptions import (
    ForbiddenError,
    NotFoundError,
    ValidationFailure,
)
from marketplace_escrow.domain.state_machine import (
    ServiceRequestStateMachine,
    apply_transition,
)
from marketplace_escrow.infrastructure.database.orm_models import (
    ServiceRequest,
    TaskConfirmation,
)
from marketplace_escrow.infrastructure.database.repositories import (
    ConfirmationRepository,
    EventRepository,
    ServiceRequestRepository,
)
from marketplace_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from datetime import timedelta
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_escrow.domain.clock import Clock
    from marketplace_escrow.domain.principal import Principal
    from marketplace_escrow.infrastructure.database.orm_models import EscrowEvent

logger = get_logger(__name__)


class RequestService:
    """Manages the service request lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock | None = None,
        confirmation_window: timedelta | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._confirmation_window = confirmation_window or get_settings().confirmation_window
        self._requests = ServiceRequestRepository(session)
        self._confirmations = ConfirmationRepository(session)
        self._events = EventRepository(session)

    # ------------------------------------------------------------------
    # Creation & assignment
    # ------------------------------------------------------------------

    async def create_request(
        self,
        client_id: str,
        service_type_id: str,
        description: str | None = None,
    ) -> ServiceRequest:
        """Create a new service request in PENDING state."""
        now = self._clock.now()
        request = ServiceRequest(
            client_id=client_id,
            service_type_id=service_type_id,
            description=description,
            status=RequestStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        request = await self._requests.create(request)

        await self._events.record(
            request_id=request.id,
            event_type=EventType.REQUEST_CREATED,
            occurred_at=now,
            actor=client_id,
            metadata={"service_type_id": service_type_id},
        )

        logger.info("request.created", request_id=str(request.id), client_id=client_id)
        return request

    async def assign_provider(
        self,
        request_id: uuid.UUID,
        principal: Principal,
    ) -> ServiceRequest:
        """A provider takes a pending, unassigned request."""
        request = await self._get_request_or_raise(request_id)

        if not principal.is_provider:
            raise ForbiddenError(principal.id, f"take request {request_id}")
        if request.client_id == principal.id:
            raise ForbiddenError(principal.id, f"provide their own request {request_id}")
        if request.status != RequestStatus.PENDING.value:
            raise ValidationFailure(f"Request {request_id} is {request.status}, not PENDING")
        if request.provider_id is not None:
            raise ValidationFailure(f"Request {request_id} already has a provider")

        now = self._clock.now()
        request.provider_id = principal.id
        await self._requests.save(request, now)

        await self._events.record(
            request_id=request.id,
            event_type=EventType.PROVIDER_ASSIGNED,
            occurred_at=now,
            actor=principal.id,
        )

        logger.info("request.provider_assigned", request_id=str(request_id), provider=principal.id)
        return request

    # ------------------------------------------------------------------
    # Pricing & work
    # ------------------------------------------------------------------

    async def set_price(
        self,
        request_id: uuid.UUID,
        principal_id: str,
        price: Decimal,
    ) -> ServiceRequest:
        """Assigned provider quotes a price. PENDING/PRICED -> PRICED."""
        request = await self._get_request_or_raise(request_id)
        self._require_provider(request, principal_id, "price")

        if price <= 0:
            raise ValidationFailure("Price must be greater than zero")

        old_status = request.status
        request.status = apply_transition(ServiceRequestStateMachine, request.status, "price_set")
        request.price = price

        now = self._clock.now()
        await self._requests.save(request, now)
        await self._events.record(
            request_id=request.id,
            event_type=EventType.REQUEST_PRICED,
            occurred_at=now,
            actor=principal_id,
            metadata={"price": str(price), "previous_status": old_status},
        )

        logger.info("request.priced", request_id=str(request_id), price=str(price))
        return request

    async def start_work(self, request_id: uuid.UUID, principal_id: str) -> ServiceRequest:
        """Assigned provider starts the work. PRICED -> IN_PROGRESS."""
        request = await self._get_request_or_raise(request_id)
        self._require_provider(request, principal_id, "start")

        if request.price is None or request.price <= 0:
            raise ValidationFailure(f"Request {request_id} must be priced before work starts")

        request.status = apply_transition(
            ServiceRequestStateMachine, request.status, "work_started"
        )

        now = self._clock.now()
        await self._requests.save(request, now)
        await self._events.record(
            request_id=request.id,
            event_type=EventType.REQUEST_STARTED,
            occurred_at=now,
            actor=principal_id,
        )

        logger.info("request.started", request_id=str(request_id))
        return request

    async def complete_request(
        self,
        request_id: uuid.UUID,
        principal_id: str,
    ) -> TaskConfirmation:
        """Provider marks the work done and opens the client's confirmation window.

        IN_PROGRESS -> COMPLETED, and a TaskConfirmation expiring after the
        configured window is created in the same transaction.
        """
        request = await self._get_request_or_raise(request_id)
        self._require_provider(request, principal_id, "complete")

        payment = request.payment
        if payment is None or payment.status != PaymentStatus.ESCROW.value:
            raise ValidationFailure(f"Request {request_id} has no payment held in escrow")
        if request.confirmation is not None:
            raise ValidationFailure(f"Request {request_id} already has a confirmation")

        request.status = apply_transition(
            ServiceRequestStateMachine, request.status, "work_completed"
        )

        now = self._clock.now()
        await self._requests.save(request, now)

        confirmation = TaskConfirmation(
            request=request,
            created_at=now,
            expires_at=now + self._confirmation_window,
            confirmed=False,
            auto_released=False,
        )
        confirmation = await self._confirmations.create(confirmation)

        await self._events.record(
            request_id=request.id,
            event_type=EventType.TASK_COMPLETED,
            occurred_at=now,
            actor=principal_id,
            confirmation_id=confirmation.id,
            payment_id=payment.id,
            metadata={"expires_at": confirmation.expires_at.isoformat()},
        )

        logger.info(
            "request.completed",
            request_id=str(request_id),
            confirmation_id=str(confirmation.id),
            expires_at=confirmation.expires_at.isoformat(),
        )
        return confirmation

    async def cancel_request(self, request_id: uuid.UUID, principal_id: str) -> ServiceRequest:
        """Client or assigned provider cancels before work starts."""
        request = await self._get_request_or_raise(request_id)
        if principal_id not in {request.client_id, request.provider_id}:
            raise ForbiddenError(principal_id, f"cancel request {request_id}")

        old_status = request.status
        request.status = apply_transition(
            ServiceRequestStateMachine, request.status, "request_cancelled"
        )

        now = self._clock.now()
        await self._requests.save(request, now)
        await self._events.record(
            request_id=request.id,
            event_type=EventType.REQUEST_CANCELLED,
            occurred_at=now,
            actor=principal_id,
            metadata={"previous_status": old_status},
        )

        logger.info("request.cancelled", request_id=str(request_id), by=principal_id)
        return request

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_request(self, request_id: uuid.UUID, principal_id: str) -> ServiceRequest:
        """Get a request visible to its client or provider."""
        request = await self._get_request_or_raise(request_id)
        if principal_id not in {request.client_id, request.provider_id}:
            raise ForbiddenError(principal_id, f"view request {request_id}")
        return request

    async def get_events(self, request_id: uuid.UUID, principal_id: str) -> list[EscrowEvent]:
        """Get the audit trail of a request."""
        await self.get_request(request_id, principal_id)
        return await self._events.get_by_request(request_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_request_or_raise(self, request_id: uuid.UUID) -> ServiceRequest:
        request = await self._requests.get_by_id(request_id)
        if request is None:
            raise NotFoundError("Service request", request_id)
        return request

    @staticmethod
    def _require_provider(request: ServiceRequest, principal_id: str, action: str) -> None:
        if request.provider_id is None or request.provider_id != principal_id:
            raise ForbiddenError(principal_id, f"{action} request {request.id}")
