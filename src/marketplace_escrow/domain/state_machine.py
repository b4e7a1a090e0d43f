"""State machine guards for the escrow lifecycle.

Uses python-statemachine to enforce legal transitions at the domain level.
No matter what the API or the sweep worker does, an illegal transition
(e.g., PENDING -> IN_PROGRESS, or ESCROW -> APPROVED twice) is rejected here
before any stored status changes.

Service request:
    PENDING      -> PRICED        (price_set)
    PRICED       -> PRICED        (price_set)
    PRICED       -> IN_PROGRESS   (work_started)
    IN_PROGRESS  -> COMPLETED     (work_completed)
    PENDING      -> CANCELLED     (request_cancelled)
    PRICED       -> CANCELLED     (request_cancelled)

Payment:
    PENDING      -> ESCROW        (funds_held)
    PENDING      -> REJECTED      (gateway_rejected)
    ESCROW       -> APPROVED      (funds_released)

Task confirmation:
    AWAITING_CONFIRMATION -> CONFIRMED      (client_confirms)
    AWAITING_CONFIRMATION -> AUTO_RELEASED  (window_elapsed)

The machines only validate. Persisting the new status is the caller's job,
and for confirmations that write is a conditional update (see
ConfirmationRepository) so the check is repeated against stored state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from marketplace_escrow.domain.enums import ConfirmationState
from marketplace_escrow.domain.exceptions import InvalidStateTransitionError

if TYPE_CHECKING:
    from datetime import datetime


def _check_status(machine: StateMachine, current_status: str) -> None:
    valid_values = {s.value for s in machine.states}
    if current_status not in valid_values:
        valid = ", ".join(sorted(valid_values))
        raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")


class _StatusMixin:
    """Helpers shared by the lifecycle machines."""

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches the status enums)."""
        return str(self.current_state.value)

    @property
    def is_terminal(self) -> bool:
        return bool(self.current_state.final)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.name for event in self.allowed_events]


class ServiceRequestStateMachine(_StatusMixin, StateMachine):
    """Guards the service request lifecycle."""

    PENDING = State("PENDING", initial=True)
    PRICED = State("PRICED")
    IN_PROGRESS = State("IN_PROGRESS")
    COMPLETED = State("COMPLETED", final=True)
    CANCELLED = State("CANCELLED", final=True)

    price_set = PENDING.to(PRICED) | PRICED.to.itself()
    work_started = PRICED.to(IN_PROGRESS)
    work_completed = IN_PROGRESS.to(COMPLETED)
    request_cancelled = PENDING.to(CANCELLED) | PRICED.to(CANCELLED)

    def __init__(self, current_status: str = "PENDING") -> None:
        _check_status(self, current_status)
        super().__init__(start_value=current_status)


class PaymentStateMachine(_StatusMixin, StateMachine):
    """Guards the payment lifecycle. APPROVED is reachable once and never left."""

    PENDING = State("PENDING", initial=True)
    ESCROW = State("ESCROW")
    APPROVED = State("APPROVED", final=True)
    REJECTED = State("REJECTED", final=True)

    funds_held = PENDING.to(ESCROW)
    gateway_rejected = PENDING.to(REJECTED)
    funds_released = ESCROW.to(APPROVED)

    def __init__(self, current_status: str = "PENDING") -> None:
        _check_status(self, current_status)
        super().__init__(start_value=current_status)


class ConfirmationStateMachine(_StatusMixin, StateMachine):
    """Guards a single task confirmation.

    Usage:
        sm = ConfirmationStateMachine(confirmation_state(False, False))
        sm.client_confirms()
        sm.status  # "CONFIRMED"
    """

    AWAITING_CONFIRMATION = State("AWAITING_CONFIRMATION", initial=True)
    CONFIRMED = State("CONFIRMED", final=True)
    AUTO_RELEASED = State("AUTO_RELEASED", final=True)

    client_confirms = AWAITING_CONFIRMATION.to(CONFIRMED)
    window_elapsed = AWAITING_CONFIRMATION.to(AUTO_RELEASED)

    def __init__(self, current_status: str = "AWAITING_CONFIRMATION") -> None:
        _check_status(self, current_status)
        super().__init__(start_value=current_status)


def confirmation_state(confirmed: bool, auto_released: bool) -> ConfirmationState:
    """Derive the confirmation state from its stored flags.

    Raises:
        ValueError: If both flags are set (the records are mutually exclusive).
    """
    if confirmed and auto_released:
        raise ValueError("A confirmation cannot be both confirmed and auto-released")
    if confirmed:
        return ConfirmationState.CONFIRMED
    if auto_released:
        return ConfirmationState.AUTO_RELEASED
    return ConfirmationState.AWAITING_CONFIRMATION


def is_due(expires_at: datetime, now: datetime) -> bool:
    """Return True once the confirmation window has elapsed.

    The boundary is inclusive: a window expiring exactly at ``now`` is due.
    """
    return expires_at <= now


def apply_transition(
    machine_cls: type[StateMachine],
    current_status: str,
    event_name: str,
) -> str:
    """Validate a transition and return the new status.

    Creates a temporary machine at ``current_status``, fires ``event_name``
    and returns the resulting status string.

    Raises:
        InvalidStateTransitionError: If the transition is illegal from
            ``current_status``.
        ValueError: If the status or event name is unknown.
    """
    sm = machine_cls(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    try:
        event_method()
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(current_status, event_name) from err
    return sm.status
