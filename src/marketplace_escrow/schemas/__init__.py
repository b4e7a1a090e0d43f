"""Pydantic API schemas."""

from marketplace_escrow.schemas.escrow import (
    ConfirmationResponse,
    CreatePaymentRequest,
    CreateServiceRequest,
    EscrowEventResponse,
    EscrowPaymentResponse,
    GatewayNotificationRequest,
    HealthResponse,
    PaymentResponse,
    PendingConfirmationResponse,
    ProviderStatsResponse,
    ServiceRequestResponse,
    SetPriceRequest,
    SweepResponse,
)

__all__ = [
    "ConfirmationResponse",
    "CreatePaymentRequest",
    "CreateServiceRequest",
    "EscrowEventResponse",
    "EscrowPaymentResponse",
    "GatewayNotificationRequest",
    "HealthResponse",
    "PaymentResponse",
    "PendingConfirmationResponse",
    "ProviderStatsResponse",
    "ServiceRequestResponse",
    "SetPriceRequest",
    "SweepResponse",
]
