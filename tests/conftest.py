"""Shared test fixtures for the marketplace escrow test suite.

Provides:
    - A throwaway SQLite ledger per test (file-backed, so separate sessions
      see each other's commits the way they would on PostgreSQL)
    - A FixedClock pinned at T0
    - A seeding helper that drives a request through the lifecycle
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import create_async_engine

from marketplace_escrow.domain.clock import FixedClock
from marketplace_escrow.domain.principal import Principal
from marketplace_escrow.infrastructure.database.engine import make_session_factory, unit_of_work
from marketplace_escrow.infrastructure.database.orm_models import (
    Base,
    EscrowEvent,
    Payment,
    ServiceRequest,
    TaskConfirmation,
)
from marketplace_escrow.services.payment_service import PaymentService
from marketplace_escrow.services.request_service import RequestService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
WINDOW = timedelta(hours=48)

CLIENT_ID = "client-alice"
PROVIDER_ID = "provider-bob"

STAGES = ("pending", "priced", "in_progress", "escrow", "completed")


@dataclass(frozen=True)
class Seeded:
    """Ids of a request created through the seeding helper."""

    request_id: uuid.UUID
    client_id: str
    provider_id: str
    payment_id: uuid.UUID | None = None
    external_reference: str | None = None
    confirmation_id: uuid.UUID | None = None


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """A fresh SQLite ledger with all tables created."""
    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------


@pytest.fixture
def seed(
    session_factory: async_sessionmaker[AsyncSession],
    clock: FixedClock,
) -> Callable[..., Awaitable[Seeded]]:
    """Return a coroutine that creates a request and advances it to ``stage``.

    Stages: pending, priced, in_progress, escrow (in progress, payment held),
    completed (confirmation window opened at the clock's current time).
    """

    async def _seed(
        stage: str = "completed",
        *,
        client_id: str = CLIENT_ID,
        provider_id: str = PROVIDER_ID,
        price: Decimal = Decimal("100.00"),
    ) -> Seeded:
        assert stage in STAGES, f"unknown stage {stage}"
        target = STAGES.index(stage)
        provider = Principal(id=provider_id, is_provider=True)
        payment_id = external_reference = confirmation_id = None

        async with unit_of_work(session_factory) as session:
            svc = RequestService(session, clock, WINDOW)
            request = await svc.create_request(client_id, "plumbing", "Fix the sink")
            request_id = request.id
            if target >= STAGES.index("priced"):
                await svc.assign_provider(request_id, provider)
                await svc.set_price(request_id, provider_id, price)
            if target >= STAGES.index("in_progress"):
                await svc.start_work(request_id, provider_id)

        if target >= STAGES.index("escrow"):
            async with unit_of_work(session_factory) as session:
                payment = await PaymentService(session, clock).create_payment(
                    request_id, client_id
                )
                payment_id, external_reference = payment.id, payment.external_reference
            async with unit_of_work(session_factory) as session:
                await PaymentService(session, clock).apply_gateway_notification(
                    external_reference, "approved"
                )

        if target >= STAGES.index("completed"):
            async with unit_of_work(session_factory) as session:
                confirmation = await RequestService(session, clock, WINDOW).complete_request(
                    request_id, provider_id
                )
                confirmation_id = confirmation.id

        return Seeded(
            request_id=request_id,
            client_id=client_id,
            provider_id=provider_id,
            payment_id=payment_id,
            external_reference=external_reference,
            confirmation_id=confirmation_id,
        )

    return _seed


# ---------------------------------------------------------------------------
# Ledger inspection helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def ledger(session_factory: async_sessionmaker[AsyncSession]) -> LedgerReader:
    return LedgerReader(session_factory)


class LedgerReader:
    """Reads stored state on a fresh session, bypassing any cached objects."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    async def confirmation(self, confirmation_id: uuid.UUID) -> TaskConfirmation:
        async with self._factory() as session:
            return await session.get(TaskConfirmation, confirmation_id)

    async def payment(self, payment_id: uuid.UUID) -> Payment | None:
        async with self._factory() as session:
            return await session.get(Payment, payment_id)

    async def request(self, request_id: uuid.UUID) -> ServiceRequest:
        async with self._factory() as session:
            return await session.get(ServiceRequest, request_id)

    async def event_types(self, request_id: uuid.UUID) -> list[str]:
        async with self._factory() as session:
            result = await session.execute(
                select(EscrowEvent.event_type).where(EscrowEvent.request_id == request_id)
            )
            return list(result.scalars().all())

    async def count_events(self, request_id: uuid.UUID, event_type: str) -> int:
        async with self._factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(EscrowEvent)
                .where(EscrowEvent.request_id == request_id, EscrowEvent.event_type == event_type)
            )
            return result.scalar_one()

    async def delete_payment(self, request_id: uuid.UUID) -> None:
        async with unit_of_work(self._factory) as session:
            await session.execute(delete(Payment).where(Payment.request_id == request_id))

    async def set_payment_status(self, payment_id: uuid.UUID, status: str) -> None:
        async with unit_of_work(self._factory) as session:
            payment = await session.get(Payment, payment_id)
            payment.status = status
