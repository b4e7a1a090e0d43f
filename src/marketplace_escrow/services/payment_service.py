"""Payment Service — payment creation and payment-gateway notifications.

The gateway itself (checkout pages, card processing) is an external
collaborator. This service only keeps the local Payment record in step:

    - create_payment():              client opens a PENDING payment for a priced request.
    - apply_gateway_notification():  the gateway reports the outcome, correlated by
                                     external_reference. "approved" puts the funds in
                                     ESCROW, "rejected" marks the payment REJECTED.

Releasing escrow is not done here; see ConfirmationService.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from marketplace_escrow.domain.clock import SystemClock
from marketplace_escrow.domain.enums import (
    EventType,
    GatewayStatus,
    PaymentStatus,
    RequestStatus,
)
from marketplace_escrow.domain.exceptions import (
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationFailure,
)
from marketplace_escrow.domain.state_machine import PaymentStateMachine, apply_transition
from marketplace_escrow.infrastructure.database.orm_models import Payment
from marketplace_escrow.infrastructure.database.repositories import (
    EventRepository,
    PaymentRepository,
    ServiceRequestRepository,
)
from marketplace_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_escrow.domain.clock import Clock

logger = get_logger(__name__)

GATEWAY_ACTOR = "SYSTEM:gateway"

# Funds are held only while work is in progress; completing a request
# requires them to be held already.
_ESCROW_ELIGIBLE_STATUS = RequestStatus.IN_PROGRESS.value

_GATEWAY_EVENTS = {
    GatewayStatus.APPROVED: ("funds_held", PaymentStatus.ESCROW, EventType.PAYMENT_ESCROWED),
    GatewayStatus.REJECTED: ("gateway_rejected", PaymentStatus.REJECTED, EventType.PAYMENT_REJECTED),
}


class PaymentService:
    """Keeps payments in step with the request lifecycle and the gateway."""

    def __init__(self, session: AsyncSession, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._payments = PaymentRepository(session)
        self._requests = ServiceRequestRepository(session)
        self._events = EventRepository(session)

    async def create_payment(self, request_id: uuid.UUID, principal_id: str) -> Payment:
        """Open a PENDING payment for the request's quoted price.

        Only the request's client may pay, once, and only after a provider
        is assigned and a price is set.
        """
        request = await self._requests.get_by_id(request_id)
        if request is None:
            raise NotFoundError("Service request", request_id)
        if request.client_id != principal_id:
            raise ForbiddenError(principal_id, f"pay for request {request_id}")
        if request.payment is not None:
            raise ValidationFailure(f"Request {request_id} already has a payment")
        if request.provider_id is None:
            raise ValidationFailure(f"Request {request_id} has no provider assigned")
        if request.price is None:
            raise ValidationFailure(f"Request {request_id} has no price")
        if request.status == RequestStatus.CANCELLED.value:
            raise ValidationFailure(f"Request {request_id} is cancelled")

        now = self._clock.now()
        external_reference = uuid.uuid4().hex
        payment = Payment(
            request=request,
            user_id=principal_id,
            provider_id=request.provider_id,
            amount=request.price,
            status=PaymentStatus.PENDING.value,
            external_reference=external_reference,
            metadata_json={"externalReference": external_reference},
            created_at=now,
            updated_at=now,
        )
        payment = await self._payments.create(payment)

        await self._events.record(
            request_id=request.id,
            event_type=EventType.PAYMENT_CREATED,
            occurred_at=now,
            actor=principal_id,
            payment_id=payment.id,
            metadata={"amount": str(payment.amount), "external_reference": external_reference},
        )

        logger.info(
            "payment.created",
            payment_id=str(payment.id),
            request_id=str(request_id),
            amount=str(payment.amount),
        )
        return payment

    async def apply_gateway_notification(
        self,
        external_reference: str,
        gateway_status: str,
        gateway_payment_id: str | None = None,
        details: dict | None = None,
    ) -> Payment:
        """Apply a gateway outcome to the payment it correlates to.

        Statuses other than approved/rejected are recorded in metadata and
        otherwise ignored. Redelivered notifications are no-ops.

        Raises:
            NotFoundError: No payment carries this external reference.
            InvalidStateTransitionError: The transition is illegal, e.g. the
                gateway approved a payment whose request has not started yet.
        """
        payment = await self._payments.get_by_external_reference(external_reference)
        if payment is None:
            raise NotFoundError("Payment", external_reference)

        now = self._clock.now()
        payment.metadata_json = {
            **(payment.metadata_json or {}),
            "gatewayStatus": gateway_status,
            **({"gatewayPaymentId": gateway_payment_id} if gateway_payment_id else {}),
            **({"gatewayDetails": details} if details else {}),
        }

        try:
            outcome = GatewayStatus(gateway_status.lower())
        except ValueError:
            logger.info(
                "payment.gateway_status_ignored",
                payment_id=str(payment.id),
                gateway_status=gateway_status,
            )
            return await self._payments.save(payment, now)

        event_name, target_status, event_type = _GATEWAY_EVENTS[outcome]
        if payment.status == target_status.value:
            logger.info("payment.gateway_redelivery", payment_id=str(payment.id))
            return await self._payments.save(payment, now)

        if (
            target_status is PaymentStatus.ESCROW
            and payment.request.status != _ESCROW_ELIGIBLE_STATUS
        ):
            raise InvalidStateTransitionError(payment.request.status, event_name)

        old_status = payment.status
        payment.status = apply_transition(PaymentStateMachine, payment.status, event_name)
        await self._payments.save(payment, now)

        await self._events.record(
            request_id=payment.request_id,
            event_type=event_type,
            occurred_at=now,
            actor=GATEWAY_ACTOR,
            payment_id=payment.id,
            metadata={"previous_status": old_status, "gateway_payment_id": gateway_payment_id},
        )

        logger.info(
            "payment.gateway_applied",
            payment_id=str(payment.id),
            old_status=old_status,
            new_status=payment.status,
        )
        return payment
