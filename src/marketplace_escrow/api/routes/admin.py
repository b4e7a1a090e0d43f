"""Operator REST API routes.

Routes:
    POST   /api/v1/admin/sweeps  — Run one expiry sweep now
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from marketplace_escrow.api.deps import get_sweep_worker, require_sweep_operator
from marketplace_escrow.domain.principal import Principal  # noqa: TC001
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.schemas.escrow import SweepResponse
from marketplace_escrow.services.sweep_worker import ExpirySweepWorker  # noqa: TC001

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])
logger = get_logger(__name__)


@router.post(
    "/sweeps",
    response_model=SweepResponse,
    summary="Auto-release expired confirmations",
    responses={503: {"description": "The ledger could not be queried; retry later"}},
)
async def trigger_sweep(
    operator: Principal = Depends(require_sweep_operator),
    worker: ExpirySweepWorker = Depends(get_sweep_worker),
) -> SweepResponse:
    """Release escrow for every confirmation whose window has elapsed."""
    logger.info("sweep.triggered", operator=operator.id)
    result = await worker.run_sweep()
    return SweepResponse.model_validate(result)
