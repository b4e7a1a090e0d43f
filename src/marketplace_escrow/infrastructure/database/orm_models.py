"""SQLAlchemy 2.0 ORM models for the marketplace escrow core.

Four tables:
    1. service_requests    — One unit of work between a client and a provider.
    2. payments            — The payment tied 1:1 to a service request.
    3. task_confirmations  — The client's confirmation window, 1:1 with a request.
    4. escrow_events       — Append-only audit log of every escrow transition.

Design decisions:
    - UUIDs as primary keys; user ids are opaque strings owned by the auth service.
    - Decimal for money (no floating point rounding errors).
    - Portable column types so the same models run on PostgreSQL and SQLite.
    - CHECK constraints mirror the domain invariants (valid statuses, positive
      amounts, price before work starts, confirmed/auto_released exclusive).
    - Timestamps are written from the injected Clock, never from the database.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    TypeDecorator,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from marketplace_escrow.domain.state_machine import confirmation_state

JSONType = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator):
    """Timezone-aware DateTime that always stores and returns UTC.

    SQLite drops tzinfo on the way in, so values read back are re-tagged.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001, ANN201
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):  # noqa: ANN001, ANN201
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. service_requests
# ---------------------------------------------------------------------------
class ServiceRequest(Base):
    """A unit of work requested by a client and performed by a provider."""

    __tablename__ = "service_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Participants ---
    client_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Principal id of the client who created the request",
    )
    provider_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        default=None,
        comment="Principal id of the assigned provider (set on assignment)",
    )
    service_type_id: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Status & price ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="PENDING",
        comment="Current lifecycle state (guarded by ServiceRequestStateMachine)",
    )
    price: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        default=None,
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    # --- Relationships ---
    payment: Mapped[Payment | None] = relationship(
        "Payment",
        back_populates="request",
        uselist=False,
        lazy="selectin",
    )
    confirmation: Mapped[TaskConfirmation | None] = relationship(
        "TaskConfirmation",
        back_populates="request",
        uselist=False,
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'PRICED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')",
            name="ck_request_valid_status",
        ),
        CheckConstraint("price IS NULL OR price > 0", name="ck_request_positive_price"),
        CheckConstraint(
            "status NOT IN ('IN_PROGRESS', 'COMPLETED') OR price IS NOT NULL",
            name="ck_request_priced_before_work",
        ),
        Index("idx_request_client", "client_id"),
        Index("idx_request_provider_status", "provider_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<ServiceRequest id={self.id} status={self.status} price={self.price}>"


# ---------------------------------------------------------------------------
# 2. payments
# ---------------------------------------------------------------------------
class Payment(Base):
    """The monetary instrument for a service request."""

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("service_requests.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, comment="Payer")
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False, comment="Payee")

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="PENDING",
        comment="Current lifecycle state (guarded by PaymentStateMachine)",
    )
    external_reference: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="Payment-gateway correlation key",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    request: Mapped[ServiceRequest] = relationship(
        "ServiceRequest",
        back_populates="payment",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'ESCROW', 'APPROVED', 'REJECTED')",
            name="ck_payment_valid_status",
        ),
        CheckConstraint("amount > 0", name="ck_payment_positive_amount"),
        Index("idx_payment_provider_status", "provider_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Payment id={self.id} status={self.status} amount={self.amount}>"


# ---------------------------------------------------------------------------
# 3. task_confirmations
# ---------------------------------------------------------------------------
class TaskConfirmation(Base):
    """The client's confirmation window for a completed request.

    Terminal fields (confirmed/auto_released and their timestamps) are written
    once, by a conditional update. Records are never deleted.
    """

    __tablename__ = "task_confirmations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("service_requests.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    auto_released: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_released_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    request: Mapped[ServiceRequest] = relationship(
        "ServiceRequest",
        back_populates="confirmation",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(
            "NOT (confirmed AND auto_released)",
            name="ck_confirmation_single_resolution",
        ),
        Index("idx_confirmation_sweep", "confirmed", "auto_released", "expires_at"),
    )

    @property
    def state(self) -> str:
        return confirmation_state(self.confirmed, self.auto_released).value

    def __repr__(self) -> str:
        return f"<TaskConfirmation id={self.id} state={self.state} expires_at={self.expires_at}>"


# ---------------------------------------------------------------------------
# 4. escrow_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EscrowEvent(Base):
    """Immutable audit record of an escrow transition or anomaly.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "escrow_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("service_requests.id", ondelete="RESTRICT"),
        nullable=False,
    )
    confirmation_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    payment_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="SYSTEM",
        comment="Principal id that triggered this event, or SYSTEM",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_event_request", "request_id"),
        Index("idx_event_type", "event_type"),
    )

    def __repr__(self) -> str:
        return f"<EscrowEvent id={self.id} type={self.event_type} request={self.request_id}>"
