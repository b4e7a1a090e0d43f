"""Domain exceptions for the marketplace escrow core.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
"""

from __future__ import annotations


class EscrowError(Exception):
    """Base exception for all domain errors."""

    def __init__(
        self,
        message: str,
        code: str = "ESCROW_ERROR",
        details: dict | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


# --- Lookup / access errors ---


class NotFoundError(EscrowError):
    """Raised when a referenced id has no record."""

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(
            message=f"{entity} not found: {entity_id}",
            code="NOT_FOUND",
        )
        self.entity = entity
        self.entity_id = entity_id


class UnauthenticatedError(EscrowError):
    """Raised when no principal could be resolved for a call."""

    def __init__(self) -> None:
        super().__init__(message="Authentication required", code="UNAUTHENTICATED")


class ForbiddenError(EscrowError):
    """Raised when a principal lacks rights over the target aggregate."""

    def __init__(self, principal_id: str, action: str) -> None:
        super().__init__(
            message=f"Principal {principal_id} is not allowed to {action}",
            code="FORBIDDEN",
        )
        self.principal_id = principal_id
        self.action = action


# --- State errors ---


class AlreadyResolvedError(EscrowError):
    """Raised when a confirmation already reached a terminal state.

    Carries the final resolution so callers can show the real outcome
    instead of a generic failure.
    """

    def __init__(self, confirmation_id: object, resolution: str) -> None:
        super().__init__(
            message=f"Confirmation {confirmation_id} was already resolved as {resolution}",
            code="ALREADY_RESOLVED",
            details={"resolution": resolution},
        )
        self.confirmation_id = confirmation_id
        self.resolution = resolution


class InvalidStateTransitionError(EscrowError):
    """Raised when an attempted state transition is not allowed.

    Example: PENDING -> IN_PROGRESS (the request must be priced first).
    """

    def __init__(self, current_state: str, attempted_event: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {attempted_event} from {current_state}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_event = attempted_event


class ValidationFailure(EscrowError):
    """Raised when an operation's inputs violate a business rule."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="VALIDATION_FAILED")


# --- Anomalies and infrastructure ---


class DataIntegrityWarning(EscrowError):
    """Non-fatal anomaly found while releasing escrow.

    Never raised to callers. It is logged and written to the audit trail,
    e.g. when an auto-released confirmation has no linked payment.
    """

    def __init__(self, message: str, confirmation_id: object | None = None) -> None:
        super().__init__(message=message, code="DATA_INTEGRITY_WARNING")
        self.confirmation_id = confirmation_id


class TransientStoreFailure(EscrowError):
    """Raised when a ledger operation fails for infrastructure reasons."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="TRANSIENT_STORE_FAILURE")
