"""Domain enumerations for the marketplace escrow core.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class RequestStatus(enum.StrEnum):
    """Lifecycle states of a service request.

    Transitions are enforced by ServiceRequestStateMachine.
    """

    PENDING = "PENDING"
    PRICED = "PRICED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(enum.StrEnum):
    """Lifecycle states of the payment tied to a service request.

    ESCROW means the platform holds the funds; APPROVED means they were
    released to the provider. APPROVED is reached exactly once.
    """

    PENDING = "PENDING"
    ESCROW = "ESCROW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ConfirmationState(enum.StrEnum):
    """Derived state of a task confirmation.

    Only the boolean flags are stored; this is computed from them.
    """

    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    CONFIRMED = "CONFIRMED"
    AUTO_RELEASED = "AUTO_RELEASED"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the escrow_events table.

    Every escrow transition produces exactly one event, written in the same
    transaction as the transition itself.
    """

    # Request lifecycle
    REQUEST_CREATED = "REQUEST_CREATED"
    PROVIDER_ASSIGNED = "PROVIDER_ASSIGNED"
    REQUEST_PRICED = "REQUEST_PRICED"
    REQUEST_STARTED = "REQUEST_STARTED"
    REQUEST_CANCELLED = "REQUEST_CANCELLED"

    # Payment lifecycle
    PAYMENT_CREATED = "PAYMENT_CREATED"
    PAYMENT_ESCROWED = "PAYMENT_ESCROWED"
    PAYMENT_REJECTED = "PAYMENT_REJECTED"

    # Confirmation window
    TASK_COMPLETED = "TASK_COMPLETED"
    CLIENT_CONFIRMED = "CLIENT_CONFIRMED"
    AUTO_RELEASED = "AUTO_RELEASED"
    PAYMENT_RELEASED = "PAYMENT_RELEASED"

    # Anomalies
    DATA_INTEGRITY_WARNING = "DATA_INTEGRITY_WARNING"


class GatewayStatus(enum.StrEnum):
    """Payment-gateway notification statuses the core reacts to."""

    APPROVED = "approved"
    REJECTED = "rejected"
