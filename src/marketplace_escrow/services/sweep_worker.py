"""Expiry Sweep Worker — auto-releases escrow when confirmation windows elapse.

One sweep:
    1. Takes ``now`` once from the clock and pages through every confirmation
       with expires_at <= now that is neither confirmed nor auto-released,
       ``batch_size`` rows at a time in (expires_at, id) order.
    2. Releases each one in its own transaction (ConfirmationService.auto_release),
       bounded by a semaphore and fenced by a per-record timeout. A failing or
       stalled record is logged and counted; the rest carry on.
    3. Returns how many records it transitioned and the instant it ran at.

The worker keeps no state between runs. Overlapping sweeps, or a sweep racing
a client confirmation, are safe: the release itself is a conditional update,
so a record resolved elsewhere is skipped rather than released twice. A
failure of a page query (step 1) is the only fatal error. Records released
by earlier pages stay released; the rest wait for the next sweep.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from marketplace_escrow.config import get_settings
from marketplace_escrow.domain.clock import SystemClock
from marketplace_escrow.domain.exceptions import TransientStoreFailure
from marketplace_escrow.infrastructure.database.engine import unit_of_work
from marketplace_escrow.infrastructure.database.repositories import ConfirmationRepository
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.services.confirmation_service import ConfirmationService

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from marketplace_escrow.domain.clock import Clock

logger = get_logger(__name__)


class RecordOutcome(enum.StrEnum):
    RELEASED = "released"
    RELEASED_WITH_WARNING = "released_with_warning"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class SweepResult:
    """Summary of one sweep. ``processed`` counts records actually transitioned."""

    processed: int
    timestamp: datetime
    failed: int = 0
    warnings: int = 0


class ExpirySweepWorker:
    """Drives expired, unresolved confirmations to auto-release."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock | None = None,
        *,
        max_concurrency: int | None = None,
        record_timeout_seconds: float | None = None,
        batch_size: int | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._max_concurrency = max_concurrency or settings.sweep_max_concurrency
        self._record_timeout = record_timeout_seconds or settings.sweep_record_timeout_seconds
        self._batch_size = batch_size or settings.sweep_batch_size

    async def run_sweep(self) -> SweepResult:
        """Run one sweep over all expired, unresolved confirmations.

        Raises:
            TransientStoreFailure: A page of the expired set could not be read.
                The next scheduled sweep picks up whatever is still unresolved.
        """
        now = self._clock.now()
        log = logger.bind(sweep_at=now.isoformat())
        log.info("sweep.started", batch_size=self._batch_size)

        semaphore = asyncio.Semaphore(self._max_concurrency)
        outcomes: list[RecordOutcome] = []
        cursor: tuple[uuid.UUID, datetime] | None = None
        while True:
            async with unit_of_work(self._session_factory) as session:
                page = await ConfirmationRepository(session).find_expired_pending(
                    now, limit=self._batch_size, after=cursor
                )
            if not page:
                break

            log.debug("sweep.page", size=len(page))
            outcomes.extend(
                await asyncio.gather(
                    *(self._process_record(cid, now, semaphore) for cid, _ in page)
                )
            )
            if len(page) < self._batch_size:
                break
            cursor = page[-1]

        released = outcomes.count(RecordOutcome.RELEASED)
        warned = outcomes.count(RecordOutcome.RELEASED_WITH_WARNING)
        result = SweepResult(
            processed=released + warned,
            timestamp=now,
            failed=outcomes.count(RecordOutcome.FAILED),
            warnings=warned,
        )

        log.info(
            "sweep.finished",
            expired=len(outcomes),
            processed=result.processed,
            skipped=outcomes.count(RecordOutcome.SKIPPED),
            failed=result.failed,
            warnings=result.warnings,
        )
        return result

    async def _process_record(
        self,
        confirmation_id: uuid.UUID,
        now: datetime,
        semaphore: asyncio.Semaphore,
    ) -> RecordOutcome:
        """Release one record; never raises."""
        log = logger.bind(confirmation_id=str(confirmation_id), sweep_at=now.isoformat())
        async with semaphore:
            try:
                return await asyncio.wait_for(
                    self._release(confirmation_id, now),
                    timeout=self._record_timeout,
                )
            except TimeoutError:
                log.error("sweep.record_timeout", timeout_seconds=self._record_timeout)
            except TransientStoreFailure as exc:
                log.error("sweep.record_store_failure", error=exc.message)
            except Exception:
                log.exception("sweep.record_failed")
        return RecordOutcome.FAILED

    async def _release(self, confirmation_id: uuid.UUID, now: datetime) -> RecordOutcome:
        async with unit_of_work(self._session_factory) as session:
            service = ConfirmationService(session, self._clock)
            result = await service.auto_release(confirmation_id, now=now)

        if not result.released:
            return RecordOutcome.SKIPPED
        if result.warning is not None:
            return RecordOutcome.RELEASED_WITH_WARNING
        return RecordOutcome.RELEASED


async def run_periodically(
    worker: ExpirySweepWorker,
    interval_seconds: float,
    stop: asyncio.Event | None = None,
) -> None:
    """Run sweeps every ``interval_seconds`` until cancelled or ``stop`` is set.

    A failed sweep is logged and retried on the next tick.
    """
    stop = stop or asyncio.Event()
    while not stop.is_set():
        structlog.contextvars.clear_contextvars()
        try:
            await worker.run_sweep()
        except TransientStoreFailure as exc:
            logger.warning("sweep.deferred", error=exc.message)
        except Exception:
            logger.exception("sweep.crashed")

        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        except TimeoutError:
            pass
