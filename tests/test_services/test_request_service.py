"""Tests for RequestService: the service request lifecycle."""

from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from marketplace_escrow.domain.exceptions import (
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationFailure,
)
from marketplace_escrow.domain.principal import Principal
from marketplace_escrow.infrastructure.database.engine import unit_of_work
from marketplace_escrow.services.request_service import RequestService
from tests.conftest import CLIENT_ID, PROVIDER_ID, T0, WINDOW

PROVIDER = Principal(id=PROVIDER_ID, is_provider=True)


@pytest.fixture
def run(session_factory, clock):
    """Run one RequestService call in its own transaction."""

    async def _run(method: str, *args, **kwargs):
        async with unit_of_work(session_factory) as session:
            svc = RequestService(session, clock, WINDOW)
            return await getattr(svc, method)(*args, **kwargs)

    return _run


class TestCreateAndAssign:
    @pytest.mark.asyncio
    async def test_create_request_is_pending(self, run, ledger) -> None:
        request = await run("create_request", CLIENT_ID, "plumbing", "Leaky tap")

        assert request.status == "PENDING"
        assert request.client_id == CLIENT_ID
        assert request.provider_id is None
        assert request.created_at == T0
        assert await ledger.event_types(request.id) == ["REQUEST_CREATED"]

    @pytest.mark.asyncio
    async def test_provider_takes_request(self, run, seed) -> None:
        seeded = await seed("pending")
        request = await run("assign_provider", seeded.request_id, PROVIDER)
        assert request.provider_id == PROVIDER_ID

    @pytest.mark.asyncio
    async def test_non_provider_cannot_take(self, run, seed) -> None:
        seeded = await seed("pending")
        with pytest.raises(ForbiddenError):
            await run("assign_provider", seeded.request_id, Principal(id="someone"))

    @pytest.mark.asyncio
    async def test_client_cannot_provide_own_request(self, run, seed) -> None:
        seeded = await seed("pending")
        with pytest.raises(ForbiddenError):
            await run("assign_provider", seeded.request_id, Principal(CLIENT_ID, is_provider=True))

    @pytest.mark.asyncio
    async def test_cannot_take_assigned_request(self, run, seed) -> None:
        seeded = await seed("priced")
        other = Principal(id="provider-eve", is_provider=True)
        with pytest.raises(ValidationFailure):
            await run("assign_provider", seeded.request_id, other)

    @pytest.mark.asyncio
    async def test_unknown_request(self, run) -> None:
        with pytest.raises(NotFoundError):
            await run("assign_provider", uuid.uuid4(), PROVIDER)


class TestPricingAndWork:
    @pytest.mark.asyncio
    async def test_set_price_and_reprice(self, run, seed) -> None:
        seeded = await seed("priced")
        request = await run("set_price", seeded.request_id, PROVIDER_ID, Decimal("75.50"))
        assert request.status == "PRICED"
        assert request.price == Decimal("75.50")

    @pytest.mark.asyncio
    async def test_price_must_be_positive(self, run, seed) -> None:
        seeded = await seed("priced")
        with pytest.raises(ValidationFailure):
            await run("set_price", seeded.request_id, PROVIDER_ID, Decimal("0"))

    @pytest.mark.asyncio
    async def test_only_assigned_provider_prices(self, run, seed) -> None:
        seeded = await seed("priced")
        with pytest.raises(ForbiddenError):
            await run("set_price", seeded.request_id, "provider-eve", Decimal("10"))

    @pytest.mark.asyncio
    async def test_cannot_start_before_pricing(self, run, seed) -> None:
        seeded = await seed("pending")
        await run("assign_provider", seeded.request_id, PROVIDER)
        with pytest.raises(ValidationFailure):
            await run("start_work", seeded.request_id, PROVIDER_ID)

    @pytest.mark.asyncio
    async def test_start_work(self, run, seed) -> None:
        seeded = await seed("priced")
        request = await run("start_work", seeded.request_id, PROVIDER_ID)
        assert request.status == "IN_PROGRESS"

    @pytest.mark.asyncio
    async def test_cannot_reprice_in_progress(self, run, seed) -> None:
        seeded = await seed("in_progress")
        with pytest.raises(InvalidStateTransitionError):
            await run("set_price", seeded.request_id, PROVIDER_ID, Decimal("10"))


class TestComplete:
    @pytest.mark.asyncio
    async def test_complete_opens_confirmation_window(self, run, seed, clock, ledger) -> None:
        seeded = await seed("escrow")
        clock.advance(timedelta(hours=2))

        confirmation = await run("complete_request", seeded.request_id, PROVIDER_ID)

        completed_at = T0 + timedelta(hours=2)
        assert confirmation.request_id == seeded.request_id
        assert confirmation.created_at == completed_at
        assert confirmation.expires_at == completed_at + WINDOW
        assert confirmation.state == "AWAITING_CONFIRMATION"
        assert (await ledger.request(seeded.request_id)).status == "COMPLETED"
        assert await ledger.count_events(seeded.request_id, "TASK_COMPLETED") == 1

    @pytest.mark.asyncio
    async def test_complete_requires_escrowed_payment(self, run, seed) -> None:
        seeded = await seed("in_progress")
        with pytest.raises(ValidationFailure, match="escrow"):
            await run("complete_request", seeded.request_id, PROVIDER_ID)

    @pytest.mark.asyncio
    async def test_complete_twice_is_rejected(self, run, seed) -> None:
        seeded = await seed("completed")
        with pytest.raises(ValidationFailure):
            await run("complete_request", seeded.request_id, PROVIDER_ID)

    @pytest.mark.asyncio
    async def test_only_provider_completes(self, run, seed) -> None:
        seeded = await seed("escrow")
        with pytest.raises(ForbiddenError):
            await run("complete_request", seeded.request_id, CLIENT_ID)


class TestCancelAndRead:
    @pytest.mark.asyncio
    async def test_client_cancels_priced_request(self, run, seed) -> None:
        seeded = await seed("priced")
        request = await run("cancel_request", seeded.request_id, CLIENT_ID)
        assert request.status == "CANCELLED"

    @pytest.mark.asyncio
    async def test_cannot_cancel_in_progress(self, run, seed) -> None:
        seeded = await seed("in_progress")
        with pytest.raises(InvalidStateTransitionError):
            await run("cancel_request", seeded.request_id, CLIENT_ID)

    @pytest.mark.asyncio
    async def test_stranger_cannot_cancel(self, run, seed) -> None:
        seeded = await seed("pending")
        with pytest.raises(ForbiddenError):
            await run("cancel_request", seeded.request_id, "someone")

    @pytest.mark.asyncio
    async def test_get_request_visible_to_parties_only(self, run, seed) -> None:
        seeded = await seed("priced")
        assert (await run("get_request", seeded.request_id, CLIENT_ID)).id == seeded.request_id
        assert (await run("get_request", seeded.request_id, PROVIDER_ID)).id == seeded.request_id
        with pytest.raises(ForbiddenError):
            await run("get_request", seeded.request_id, "someone")

    @pytest.mark.asyncio
    async def test_events_cover_full_lifecycle(self, run, seed) -> None:
        seeded = await seed("completed")
        events = await run("get_events", seeded.request_id, CLIENT_ID)
        assert {e.event_type for e in events} == {
            "REQUEST_CREATED",
            "PROVIDER_ASSIGNED",
            "REQUEST_PRICED",
            "REQUEST_STARTED",
            "PAYMENT_CREATED",
            "PAYMENT_ESCROWED",
            "TASK_COMPLETED",
        }
