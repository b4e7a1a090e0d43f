"""Pydantic schemas for the escrow API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models to maintain clean boundaries between the API and
database layers.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateServiceRequest(BaseModel):
    """Request body for a client opening a new service request."""

    service_type_id: str = Field(..., min_length=1, max_length=64)
    description: str | None = Field(
        default=None,
        max_length=5000,
        description="What the client needs done",
        examples=["Fix a leaking kitchen faucet"],
    )


class SetPriceRequest(BaseModel):
    """Request body for the assigned provider quoting a price."""

    price: Decimal = Field(
        ...,
        gt=0,
        max_digits=12,
        decimal_places=2,
        description="Quoted price for the whole service",
        examples=["150.00"],
    )


class CreatePaymentRequest(BaseModel):
    """Request body for a client paying for a priced request."""

    request_id: uuid.UUID


class GatewayNotificationRequest(BaseModel):
    """Outcome reported by the payment gateway for one payment."""

    external_reference: str = Field(..., min_length=1, max_length=64)
    status: str = Field(
        ...,
        min_length=1,
        max_length=32,
        description='Gateway status. "approved" holds funds in escrow, "rejected" fails the payment.',
        examples=["approved"],
    )
    gateway_payment_id: str | None = Field(default=None, max_length=64)
    details: dict | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class PaymentResponse(BaseModel):
    """Response schema for a payment."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_id: uuid.UUID
    user_id: str
    provider_id: str
    amount: Decimal
    status: str
    external_reference: str
    metadata: dict | None = Field(
        default=None,
        validation_alias=AliasChoices("metadata_json", "metadata"),
    )
    created_at: datetime
    updated_at: datetime


class ServiceRequestResponse(BaseModel):
    """Response schema for a service request."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    client_id: str
    provider_id: str | None
    service_type_id: str
    description: str | None
    status: str
    price: Decimal | None
    created_at: datetime
    updated_at: datetime


class ConfirmationResponse(BaseModel):
    """Response schema for a task confirmation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_id: uuid.UUID
    state: str = Field(description="AWAITING_CONFIRMATION, CONFIRMED or AUTO_RELEASED")
    created_at: datetime
    expires_at: datetime
    confirmed: bool
    confirmed_at: datetime | None
    auto_released: bool
    auto_released_at: datetime | None


class PendingConfirmationResponse(ConfirmationResponse):
    """A confirmation together with the request and payment it settles."""

    request: ServiceRequestResponse
    payment: PaymentResponse | None = None

    @classmethod
    def from_confirmation(cls, confirmation: Any) -> PendingConfirmationResponse:
        base = ConfirmationResponse.model_validate(confirmation).model_dump()
        request = confirmation.request
        return cls(
            **base,
            request=ServiceRequestResponse.model_validate(request),
            payment=PaymentResponse.model_validate(request.payment) if request.payment else None,
        )


class EscrowPaymentResponse(PaymentResponse):
    """An escrowed payment together with its request."""

    request: ServiceRequestResponse


class ProviderStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    released_count: int
    released_amount: Decimal
    escrow_count: int
    escrow_amount: Decimal
    pending_confirmation_count: int
    pending_confirmation_amount: Decimal


class EscrowEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_id: uuid.UUID
    confirmation_id: uuid.UUID | None
    payment_id: uuid.UUID | None
    event_type: str
    actor: str
    metadata: dict | None = Field(
        default=None,
        validation_alias=AliasChoices("metadata_json", "metadata"),
    )
    created_at: datetime


class SweepResponse(BaseModel):
    """Result of one expiry sweep."""

    model_config = ConfigDict(from_attributes=True)

    processed: int = Field(description="Confirmations auto-released by this sweep")
    timestamp: datetime = Field(description="Instant the sweep evaluated expiry against")
    failed: int = 0
    warnings: int = 0


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
