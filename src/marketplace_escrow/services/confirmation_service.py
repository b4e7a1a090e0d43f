"""Confirmation Service — the two ways escrowed funds get released.

A completed request opens a confirmation window. The payment leaves escrow
exactly once, through one of two producers:

    - confirm():       the client approves the work explicitly.
    - auto_release():  the window elapsed and the sweep worker resolves it.

Both funnel into the same commit point: a conditional update on the
confirmation that only matches while it is unresolved, followed by the
payment cascade, inside the caller's transaction. Whichever commits first
wins; the other sees zero matched rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from marketplace_escrow.domain.clock import SystemClock
from marketplace_escrow.domain.enums import EventType, PaymentStatus
from marketplace_escrow.domain.exceptions import (
    AlreadyResolvedError,
    DataIntegrityWarning,
    ForbiddenError,
    NotFoundError,
)
from marketplace_escrow.domain.state_machine import (
    ConfirmationStateMachine,
    PaymentStateMachine,
    apply_transition,
    is_due,
)
from marketplace_escrow.infrastructure.database.repositories import (
    ConfirmationRepository,
    EventRepository,
    PaymentRepository,
)
from marketplace_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_escrow.domain.clock import Clock
    from marketplace_escrow.infrastructure.database.orm_models import TaskConfirmation

logger = get_logger(__name__)

SYSTEM_ACTOR = "SYSTEM:auto-release"


@dataclass(frozen=True)
class AutoReleaseResult:
    """Outcome of one auto_release attempt."""

    released: bool
    warning: DataIntegrityWarning | None = None


class ConfirmationService:
    """Resolves task confirmations and releases the linked payment."""

    def __init__(self, session: AsyncSession, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._confirmations = ConfirmationRepository(session)
        self._payments = PaymentRepository(session)
        self._events = EventRepository(session)

    # ------------------------------------------------------------------
    # Client confirmation
    # ------------------------------------------------------------------

    async def confirm(
        self,
        confirmation_id: uuid.UUID,
        principal_id: str,
    ) -> TaskConfirmation:
        """Client approves the work; the escrowed payment is released.

        Raises:
            NotFoundError: No such confirmation.
            ForbiddenError: The principal is not the request's client.
            AlreadyResolvedError: Confirmed or auto-released already, including
                by a sweep that committed between our read and our write.
        """
        confirmation = await self._get_confirmation_or_raise(confirmation_id)

        if confirmation.request.client_id != principal_id:
            raise ForbiddenError(principal_id, f"confirm {confirmation_id}")

        self._guard(confirmation, "client_confirms")

        now = self._clock.now()
        if not await self._confirmations.mark_confirmed(confirmation.id, now):
            current = await self._confirmations.get_by_id(confirmation.id, refresh=True)
            logger.info(
                "confirmation.lost_race",
                confirmation_id=str(confirmation.id),
                resolution=current.state,
            )
            raise AlreadyResolvedError(confirmation.id, current.state)

        await self._events.record(
            request_id=confirmation.request_id,
            event_type=EventType.CLIENT_CONFIRMED,
            occurred_at=now,
            actor=principal_id,
            confirmation_id=confirmation.id,
        )
        warning = await self._release_payment(confirmation, now, actor=principal_id)

        await self._session.refresh(confirmation)
        logger.info(
            "confirmation.confirmed",
            confirmation_id=str(confirmation.id),
            request_id=str(confirmation.request_id),
            payment_warning=warning.message if warning else None,
        )
        return confirmation

    # ------------------------------------------------------------------
    # Timeout release
    # ------------------------------------------------------------------

    async def auto_release(
        self,
        confirmation_id: uuid.UUID,
        now: datetime | None = None,
    ) -> AutoReleaseResult:
        """Release escrow for a confirmation whose window has elapsed.

        A confirmation that is already terminal, not yet due, or resolved by a
        concurrent writer is a no-op rather than an error, so the sweep can
        safely process the same record more than once.

        Raises:
            NotFoundError: No such confirmation.
        """
        now = now or self._clock.now()
        confirmation = await self._get_confirmation_or_raise(confirmation_id)

        sm = ConfirmationStateMachine(confirmation.state)
        if sm.is_terminal:
            return AutoReleaseResult(released=False)
        if not is_due(confirmation.expires_at, now):
            logger.debug(
                "confirmation.not_due",
                confirmation_id=str(confirmation.id),
                expires_at=confirmation.expires_at.isoformat(),
            )
            return AutoReleaseResult(released=False)
        sm.window_elapsed()

        if not await self._confirmations.mark_auto_released(confirmation.id, now):
            logger.info("confirmation.auto_release_skipped", confirmation_id=str(confirmation.id))
            return AutoReleaseResult(released=False)

        await self._events.record(
            request_id=confirmation.request_id,
            event_type=EventType.AUTO_RELEASED,
            occurred_at=now,
            actor=SYSTEM_ACTOR,
            confirmation_id=confirmation.id,
            metadata={"expires_at": confirmation.expires_at.isoformat()},
        )
        warning = await self._release_payment(confirmation, now, actor=SYSTEM_ACTOR)

        logger.info(
            "confirmation.auto_released",
            confirmation_id=str(confirmation.id),
            request_id=str(confirmation.request_id),
        )
        return AutoReleaseResult(released=True, warning=warning)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_confirmation(self, confirmation_id: uuid.UUID) -> TaskConfirmation:
        return await self._get_confirmation_or_raise(confirmation_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_confirmation_or_raise(self, confirmation_id: uuid.UUID) -> TaskConfirmation:
        confirmation = await self._confirmations.get_by_id(confirmation_id)
        if confirmation is None:
            raise NotFoundError("Confirmation", confirmation_id)
        return confirmation

    def _guard(self, confirmation: TaskConfirmation, event_name: str) -> None:
        """Reject events on a resolved confirmation with the resolution it reached."""
        sm = ConfirmationStateMachine(confirmation.state)
        if sm.is_terminal:
            raise AlreadyResolvedError(confirmation.id, sm.status)
        getattr(sm, event_name)()

    async def _release_payment(
        self,
        confirmation: TaskConfirmation,
        now: datetime,
        actor: str,
    ) -> DataIntegrityWarning | None:
        """Cascade the resolution to the payment: ESCROW -> APPROVED.

        A missing payment, or one that is not in ESCROW, does not undo the
        resolution. It is reported as a DataIntegrityWarning and audited.
        """
        payment = await self._payments.get_by_request(confirmation.request_id)

        if payment is None:
            return await self._report_integrity_warning(
                confirmation,
                now,
                f"Confirmation {confirmation.id} resolved but request "
                f"{confirmation.request_id} has no payment",
            )

        if payment.status != PaymentStatus.ESCROW.value:
            return await self._report_integrity_warning(
                confirmation,
                now,
                f"Confirmation {confirmation.id} resolved but payment {payment.id} "
                f"is {payment.status}, not ESCROW",
                payment_id=payment.id,
            )

        apply_transition(PaymentStateMachine, payment.status, "funds_released")
        if not await self._payments.release_escrowed(payment.id, now):
            return await self._report_integrity_warning(
                confirmation,
                now,
                f"Payment {payment.id} left ESCROW concurrently",
                payment_id=payment.id,
            )

        await self._events.record(
            request_id=confirmation.request_id,
            event_type=EventType.PAYMENT_RELEASED,
            occurred_at=now,
            actor=actor,
            confirmation_id=confirmation.id,
            payment_id=payment.id,
            metadata={"amount": str(payment.amount), "provider_id": payment.provider_id},
        )
        return None

    async def _report_integrity_warning(
        self,
        confirmation: TaskConfirmation,
        now: datetime,
        message: str,
        payment_id: uuid.UUID | None = None,
    ) -> DataIntegrityWarning:
        warning = DataIntegrityWarning(message, confirmation_id=confirmation.id)
        logger.warning(
            "confirmation.data_integrity_warning",
            confirmation_id=str(confirmation.id),
            request_id=str(confirmation.request_id),
            detail=message,
        )
        await self._events.record(
            request_id=confirmation.request_id,
            event_type=EventType.DATA_INTEGRITY_WARNING,
            occurred_at=now,
            confirmation_id=confirmation.id,
            payment_id=payment_id,
            metadata={"detail": message},
        )
        return warning
