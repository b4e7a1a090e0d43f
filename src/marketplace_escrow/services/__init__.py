"""Application services — use case orchestration."""

from marketplace_escrow.services.confirmation_service import (
    AutoReleaseResult,
    ConfirmationService,
)
from marketplace_escrow.services.payment_service import PaymentService
from marketplace_escrow.services.query_service import EscrowQueryService, ProviderStats
from marketplace_escrow.services.request_service import RequestService
from marketplace_escrow.services.sweep_worker import (
    ExpirySweepWorker,
    SweepResult,
    run_periodically,
)

__all__ = [
    "AutoReleaseResult",
    "ConfirmationService",
    "EscrowQueryService",
    "ExpirySweepWorker",
    "PaymentService",
    "ProviderStats",
    "RequestService",
    "SweepResult",
    "run_periodically",
]
