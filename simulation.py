#!/usr/bin/env python3
"""Marketplace Escrow — End-to-End Simulation.

Simulates three scenarios with a ClientBot and a ProviderBot on a controlled
clock. Each request goes PENDING -> PRICED -> IN_PROGRESS with its payment
held in ESCROW, then COMPLETED at T0, which opens a 48h confirmation window.

    Scenario 1: Client Confirms
        - Client confirms at T0+47h -> payment APPROVED
        - Sweep at T0+49h -> processes 0 (already resolved)

    Scenario 2: Window Elapses
        - Nobody confirms
        - Sweep at T0+48h+1s -> processes 1, payment APPROVED by the system

    Scenario 3: Missing Payment
        - The payment row is lost after completion
        - Sweep at T0+48h+1s -> confirmation still auto-released and counted,
          a data integrity warning is logged and audited

Usage:
    # Option A: Against the database in DATABASE_URL (PostgreSQL must be running):
    uv run python simulation.py

    # Option B: Throwaway SQLite file, no server needed:
    uv run python simulation.py --sqlite

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path

from sqlalchemy import delete

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from marketplace_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from marketplace_escrow.domain.clock import FixedClock  # noqa: E402
from marketplace_escrow.domain.principal import Principal  # noqa: E402
from marketplace_escrow.infrastructure.database.engine import (  # noqa: E402
    make_session_factory,
    unit_of_work,
)
from marketplace_escrow.infrastructure.database.orm_models import Base, Payment  # noqa: E402
from marketplace_escrow.services import (  # noqa: E402
    ConfirmationService,
    ExpirySweepWorker,
    PaymentService,
    RequestService,
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
WINDOW = timedelta(hours=48)

# Module-level state
_engine = None
_session_factory = None
_tmpdir: tempfile.TemporaryDirectory | None = None


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize database engine and create tables."""
    global _engine, _session_factory, _tmpdir

    if use_sqlite:
        from sqlalchemy.ext.asyncio import create_async_engine

        _tmpdir = tempfile.TemporaryDirectory(prefix="escrow-sim-")
        db_path = Path(_tmpdir.name) / "simulation.db"
        _engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)
        _session_factory = make_session_factory(_engine)
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized", path=str(db_path))
    else:
        from marketplace_escrow.infrastructure.database.engine import (
            get_session_factory,
            init_db,
        )

        await init_db()
        _session_factory = get_session_factory()


async def shutdown_database() -> None:
    """Close database connections."""
    global _engine, _session_factory, _tmpdir

    if _engine is not None:
        await _engine.dispose()
        _engine = None
    else:
        from marketplace_escrow.infrastructure.database.engine import close_db

        await close_db()
    _session_factory = None
    if _tmpdir is not None:
        _tmpdir.cleanup()
        _tmpdir = None


# ---------------------------------------------------------------------------
# Bots
# ---------------------------------------------------------------------------
@dataclass
class ClientBot:
    """Simulated client who orders a service, pays, and confirms."""

    clock: FixedClock
    principal_id: str = field(default_factory=lambda: "client-" + uuid.uuid4().hex[:8])

    async def open_request(self, description: str) -> uuid.UUID:
        async with unit_of_work(_session_factory) as session:
            svc = RequestService(session, self.clock, WINDOW)
            request = await svc.create_request(self.principal_id, "home-repair", description)
        logger.info("🔵 CLIENT: Request opened", request_id=str(request.id))
        return request.id

    async def pay(self, request_id: uuid.UUID) -> str:
        """Create the payment and have the gateway approve it. Returns the payment's reference."""
        async with unit_of_work(_session_factory) as session:
            payment = await PaymentService(session, self.clock).create_payment(
                request_id, self.principal_id
            )
        async with unit_of_work(_session_factory) as session:
            payment = await PaymentService(session, self.clock).apply_gateway_notification(
                payment.external_reference,
                "approved",
                gateway_payment_id="gw-" + uuid.uuid4().hex[:10],
            )
        logger.info(
            "🔵 CLIENT: Payment held in escrow",
            payment_id=str(payment.id),
            amount=str(payment.amount),
        )
        return payment.external_reference

    async def confirm(self, confirmation_id: uuid.UUID) -> None:
        async with unit_of_work(_session_factory) as session:
            await ConfirmationService(session, self.clock).confirm(
                confirmation_id, self.principal_id
            )
        logger.info("🔵 CLIENT: Work confirmed", confirmation_id=str(confirmation_id))


@dataclass
class ProviderBot:
    """Simulated provider who takes, prices, and completes requests."""

    clock: FixedClock
    principal_id: str = field(default_factory=lambda: "provider-" + uuid.uuid4().hex[:8])

    @property
    def principal(self) -> Principal:
        return Principal(id=self.principal_id, is_provider=True)

    async def take_and_price(self, request_id: uuid.UUID, price: Decimal) -> None:
        async with unit_of_work(_session_factory) as session:
            svc = RequestService(session, self.clock, WINDOW)
            await svc.assign_provider(request_id, self.principal)
            await svc.set_price(request_id, self.principal_id, price)
        logger.info("🟢 PROVIDER: Request priced", request_id=str(request_id), price=str(price))

    async def start(self, request_id: uuid.UUID) -> None:
        async with unit_of_work(_session_factory) as session:
            await RequestService(session, self.clock, WINDOW).start_work(
                request_id, self.principal_id
            )
        logger.info("🟢 PROVIDER: Work started", request_id=str(request_id))

    async def complete(self, request_id: uuid.UUID) -> uuid.UUID:
        async with unit_of_work(_session_factory) as session:
            confirmation = await RequestService(session, self.clock, WINDOW).complete_request(
                request_id, self.principal_id
            )
        logger.info(
            "🟢 PROVIDER: Work completed",
            confirmation_id=str(confirmation.id),
            expires_at=confirmation.expires_at.isoformat(),
        )
        return confirmation.id


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


async def print_audit_trail(client: ClientBot, request_id: uuid.UUID) -> None:
    """Print the full audit trail for a request."""
    async with unit_of_work(_session_factory) as session:
        svc = RequestService(session, client.clock, WINDOW)
        request = await svc.get_request(request_id, client.principal_id)
        events = await svc.get_events(request_id, client.principal_id)
        payment_status = request.payment.status if request.payment else "—"
        confirmation_state = request.confirmation.state if request.confirmation else "—"

    print("\n  📜 Audit Trail:")
    for i, evt in enumerate(events, 1):
        print(f"    {i}. {evt.created_at:%d %b %H:%M:%S} [{evt.event_type}] (by {evt.actor})")
    print(f"\n  Request: {request.status}  Payment: {payment_status}  "
          f"Confirmation: {confirmation_state}\n")


async def run_sweep(clock: FixedClock) -> None:
    worker = ExpirySweepWorker(_session_factory, clock, max_concurrency=1)
    result = await worker.run_sweep()
    print(
        f"  🧹 Sweep at {result.timestamp:%d %b %H:%M:%S}: processed={result.processed} "
        f"failed={result.failed} warnings={result.warnings}"
    )


async def setup_completed_request(
    client: ClientBot,
    provider: ProviderBot,
    description: str,
    price: Decimal,
) -> tuple[uuid.UUID, uuid.UUID]:
    """Drive a request to COMPLETED at T0. Returns (request_id, confirmation_id)."""
    client.clock.set(T0 - timedelta(hours=6))
    request_id = await client.open_request(description)
    await provider.take_and_price(request_id, price)
    await provider.start(request_id)
    await client.pay(request_id)

    client.clock.set(T0)
    confirmation_id = await provider.complete(request_id)
    return request_id, confirmation_id


# ===========================================================================
# Scenario 1: Client Confirms
# ===========================================================================
async def scenario_1_client_confirms() -> None:
    """Client confirms within the window; the later sweep has nothing to do."""
    banner("SCENARIO 1: Client Confirms Before the Window Elapses")

    clock = FixedClock(T0)
    client = ClientBot(clock)
    provider = ProviderBot(clock)

    section("Step 1: Request completed at T0")
    request_id, confirmation_id = await setup_completed_request(
        client, provider, "Fix a leaking kitchen faucet", Decimal("120.00")
    )

    section("Step 2: Client confirms at T0+47h")
    clock.set(T0 + timedelta(hours=47))
    await client.confirm(confirmation_id)

    section("Step 3: Sweep at T0+49h")
    clock.set(T0 + timedelta(hours=49))
    await run_sweep(clock)

    await print_audit_trail(client, request_id)


# ===========================================================================
# Scenario 2: Window Elapses
# ===========================================================================
async def scenario_2_auto_release() -> None:
    """Nobody confirms; the sweep releases the payment after 48h."""
    banner("SCENARIO 2: Window Elapses — Auto-Release")

    clock = FixedClock(T0)
    client = ClientBot(clock)
    provider = ProviderBot(clock)

    section("Step 1: Request completed at T0")
    request_id, _ = await setup_completed_request(
        client, provider, "Assemble two bookshelves", Decimal("80.00")
    )

    section("Step 2: Client stays silent; sweep at T0+48h+1s")
    clock.set(T0 + WINDOW + timedelta(seconds=1))
    await run_sweep(clock)

    await print_audit_trail(client, request_id)


# ===========================================================================
# Scenario 3: Missing Payment
# ===========================================================================
async def scenario_3_missing_payment() -> None:
    """The payment disappears; auto-release still resolves the confirmation."""
    banner("SCENARIO 3: Missing Payment — Release With Warning")

    clock = FixedClock(T0)
    client = ClientBot(clock)
    provider = ProviderBot(clock)

    section("Step 1: Request completed at T0")
    request_id, _ = await setup_completed_request(
        client, provider, "Repaint the garden fence", Decimal("300.00")
    )

    section("Step 2: Payment row lost")
    async with unit_of_work(_session_factory) as session:
        await session.execute(delete(Payment).where(Payment.request_id == request_id))
    print("  ⚠️  Payment deleted out of band")

    section("Step 3: Sweep at T0+48h+1s")
    clock.set(T0 + WINDOW + timedelta(seconds=1))
    await run_sweep(clock)

    await print_audit_trail(client, request_id)


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_client_confirms,
    2: scenario_2_auto_release,
    3: scenario_3_missing_payment,
}


async def run(scenario: int = 0, use_sqlite: bool = False) -> None:
    """Run one scenario, or all of them sequentially when ``scenario`` is 0."""
    if scenario and scenario not in SCENARIOS:
        print(f"Unknown scenario {scenario}. Available: 1, 2, 3")
        return

    await init_database(use_sqlite=use_sqlite)
    try:
        print("\n" + "🚀" * 35)
        print("  MARKETPLACE ESCROW — SIMULATION")
        print(f"  Database: {'SQLite (temporary file)' if use_sqlite else 'configured DATABASE_URL'}")
        print("🚀" * 35 + "\n")

        for num, fn in SCENARIOS.items():
            if scenario in (0, num):
                await fn()

        print("\n" + "=" * 70)
        print("  ✅ SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Marketplace Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use a temporary SQLite file instead of the configured database.",
    )
    args = parser.parse_args()

    asyncio.run(run(scenario=args.scenario, use_sqlite=args.sqlite))
