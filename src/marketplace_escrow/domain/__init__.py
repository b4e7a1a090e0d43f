"""Domain layer — pure business logic with zero framework dependencies."""

from marketplace_escrow.domain.clock import Clock, FixedClock, SystemClock
from marketplace_escrow.domain.enums import (
    ConfirmationState,
    EventType,
    GatewayStatus,
    PaymentStatus,
    RequestStatus,
)
from marketplace_escrow.domain.exceptions import (
    AlreadyResolvedError,
    DataIntegrityWarning,
    EscrowError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    TransientStoreFailure,
    UnauthenticatedError,
    ValidationFailure,
)
from marketplace_escrow.domain.principal import Principal
from marketplace_escrow.domain.state_machine import (
    ConfirmationStateMachine,
    PaymentStateMachine,
    ServiceRequestStateMachine,
    apply_transition,
    confirmation_state,
    is_due,
)

__all__ = [
    "Clock",
    "FixedClock",
    "SystemClock",
    "ConfirmationState",
    "EventType",
    "GatewayStatus",
    "PaymentStatus",
    "RequestStatus",
    "AlreadyResolvedError",
    "DataIntegrityWarning",
    "EscrowError",
    "ForbiddenError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "TransientStoreFailure",
    "UnauthenticatedError",
    "ValidationFailure",
    "Principal",
    "ConfirmationStateMachine",
    "PaymentStateMachine",
    "ServiceRequestStateMachine",
    "apply_transition",
    "confirmation_state",
    "is_due",
]
