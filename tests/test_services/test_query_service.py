"""Tests for EscrowQueryService read projections."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from marketplace_escrow.domain.exceptions import ForbiddenError
from marketplace_escrow.infrastructure.database.engine import unit_of_work
from marketplace_escrow.services.confirmation_service import ConfirmationService
from marketplace_escrow.services.query_service import EscrowQueryService
from tests.conftest import CLIENT_ID, PROVIDER_ID, T0, WINDOW


@pytest.fixture
def query(session_factory):
    async def _query(method: str, *args):
        async with session_factory() as session:
            return await getattr(EscrowQueryService(session), method)(*args)

    return _query


class TestPendingConfirmations:
    @pytest.mark.asyncio
    async def test_lists_unresolved_newest_first(self, seed, clock, query) -> None:
        older = await seed()
        clock.advance(timedelta(hours=1))
        newer = await seed(client_id="client-carol")

        pending = await query("list_pending_confirmations", PROVIDER_ID, PROVIDER_ID)

        assert [c.id for c in pending] == [newer.confirmation_id, older.confirmation_id]
        assert pending[0].request.payment.status == "ESCROW"

    @pytest.mark.asyncio
    async def test_resolved_confirmations_are_excluded(
        self, seed, session_factory, clock, query
    ) -> None:
        seeded = await seed()
        async with unit_of_work(session_factory) as session:
            await ConfirmationService(session, clock).confirm(seeded.confirmation_id, CLIENT_ID)

        assert await query("list_pending_confirmations", PROVIDER_ID, PROVIDER_ID) == []

    @pytest.mark.asyncio
    async def test_other_provider_sees_nothing_of_mine(self, seed, query) -> None:
        await seed()
        assert await query("list_pending_confirmations", "provider-eve", "provider-eve") == []

    @pytest.mark.asyncio
    async def test_cannot_view_another_provider(self, seed, query) -> None:
        await seed()
        with pytest.raises(ForbiddenError):
            await query("list_pending_confirmations", "provider-eve", PROVIDER_ID)

    @pytest.mark.asyncio
    async def test_client_view_soonest_expiry_first(self, seed, clock, query) -> None:
        clock.set(T0 + timedelta(hours=5))
        later = await seed()
        clock.set(T0)
        sooner = await seed()

        pending = await query("list_client_pending_confirmations", CLIENT_ID)
        assert [c.id for c in pending] == [sooner.confirmation_id, later.confirmation_id]


class TestEscrowPayments:
    @pytest.mark.asyncio
    async def test_escrow_lists_in_progress_only(self, seed, query) -> None:
        in_progress = await seed("escrow")
        await seed("completed", client_id="client-carol")

        payments = await query("list_escrow_payments", PROVIDER_ID, PROVIDER_ID)
        assert [p.id for p in payments] == [in_progress.payment_id]
        assert payments[0].request.status == "IN_PROGRESS"

    @pytest.mark.asyncio
    async def test_cannot_view_another_provider(self, query) -> None:
        with pytest.raises(ForbiddenError):
            await query("list_escrow_payments", CLIENT_ID, PROVIDER_ID)


class TestProviderStats:
    @pytest.mark.asyncio
    async def test_totals_by_bucket(self, seed, session_factory, clock, query) -> None:
        await seed("escrow", price=Decimal("10.00"))
        await seed("completed", client_id="client-2", price=Decimal("20.00"))
        released = await seed("completed", client_id="client-3", price=Decimal("30.00"))
        await seed("completed", client_id="client-4", price=Decimal("40.00"))

        clock.set(T0 + WINDOW)
        async with unit_of_work(session_factory) as session:
            await ConfirmationService(session, clock).auto_release(released.confirmation_id)

        stats = await query("provider_stats", PROVIDER_ID, PROVIDER_ID)

        assert stats.released_count == 1
        assert stats.released_amount == Decimal("30.00")
        assert stats.escrow_count == 1
        assert stats.escrow_amount == Decimal("10.00")
        assert stats.pending_confirmation_count == 2
        assert stats.pending_confirmation_amount == Decimal("60.00")
