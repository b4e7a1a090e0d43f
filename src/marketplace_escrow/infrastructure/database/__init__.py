"""Database infrastructure — engine, ORM models, and repositories."""

from marketplace_escrow.infrastructure.database.engine import (
    close_db,
    get_async_session,
    get_session_factory,
    init_db,
    make_session_factory,
    unit_of_work,
)
from marketplace_escrow.infrastructure.database.orm_models import (
    Base,
    EscrowEvent,
    Payment,
    ServiceRequest,
    TaskConfirmation,
)
from marketplace_escrow.infrastructure.database.repositories import (
    ConfirmationRepository,
    EventRepository,
    PaymentRepository,
    ServiceRequestRepository,
)

__all__ = [
    "Base",
    "EscrowEvent",
    "Payment",
    "ServiceRequest",
    "TaskConfirmation",
    "ConfirmationRepository",
    "EventRepository",
    "PaymentRepository",
    "ServiceRequestRepository",
    "close_db",
    "get_async_session",
    "get_session_factory",
    "init_db",
    "make_session_factory",
    "unit_of_work",
]
