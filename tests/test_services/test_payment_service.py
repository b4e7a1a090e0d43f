"""Tests for PaymentService: payment creation and gateway notifications."""

from __future__ import annotations

from decimal import Decimal

import pytest

from marketplace_escrow.domain.exceptions import (
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationFailure,
)
from marketplace_escrow.infrastructure.database.engine import unit_of_work
from marketplace_escrow.services.payment_service import PaymentService
from tests.conftest import CLIENT_ID, PROVIDER_ID


@pytest.fixture
def run(session_factory, clock):
    async def _run(method: str, *args, **kwargs):
        async with unit_of_work(session_factory) as session:
            return await getattr(PaymentService(session, clock), method)(*args, **kwargs)

    return _run


class TestCreatePayment:
    @pytest.mark.asyncio
    async def test_client_pays_quoted_price(self, run, seed) -> None:
        seeded = await seed("priced", price=Decimal("250.00"))

        payment = await run("create_payment", seeded.request_id, CLIENT_ID)

        assert payment.status == "PENDING"
        assert payment.amount == Decimal("250.00")
        assert payment.user_id == CLIENT_ID
        assert payment.provider_id == PROVIDER_ID
        assert payment.metadata_json == {"externalReference": payment.external_reference}

    @pytest.mark.asyncio
    async def test_only_client_pays(self, run, seed) -> None:
        seeded = await seed("priced")
        with pytest.raises(ForbiddenError):
            await run("create_payment", seeded.request_id, PROVIDER_ID)

    @pytest.mark.asyncio
    async def test_unpriced_request_cannot_be_paid(self, run, seed) -> None:
        seeded = await seed("pending")
        with pytest.raises(ValidationFailure):
            await run("create_payment", seeded.request_id, CLIENT_ID)

    @pytest.mark.asyncio
    async def test_one_payment_per_request(self, run, seed) -> None:
        seeded = await seed("escrow")
        with pytest.raises(ValidationFailure, match="already has a payment"):
            await run("create_payment", seeded.request_id, CLIENT_ID)


class TestGatewayNotification:
    @pytest.mark.asyncio
    async def test_approved_holds_funds_in_escrow(self, run, seed, ledger) -> None:
        seeded = await seed("in_progress")
        created = await run("create_payment", seeded.request_id, CLIENT_ID)

        payment = await run(
            "apply_gateway_notification",
            created.external_reference,
            "approved",
            gateway_payment_id="gw-123",
        )

        assert payment.status == "ESCROW"
        assert payment.metadata_json["gatewayStatus"] == "approved"
        assert payment.metadata_json["gatewayPaymentId"] == "gw-123"
        assert await ledger.count_events(seeded.request_id, "PAYMENT_ESCROWED") == 1

    @pytest.mark.asyncio
    async def test_rejected(self, run, seed) -> None:
        seeded = await seed("priced")
        created = await run("create_payment", seeded.request_id, CLIENT_ID)

        payment = await run("apply_gateway_notification", created.external_reference, "REJECTED")
        assert payment.status == "REJECTED"

    @pytest.mark.asyncio
    async def test_unknown_status_is_recorded_only(self, run, seed) -> None:
        seeded = await seed("in_progress")
        created = await run("create_payment", seeded.request_id, CLIENT_ID)

        payment = await run("apply_gateway_notification", created.external_reference, "in_process")
        assert payment.status == "PENDING"
        assert payment.metadata_json["gatewayStatus"] == "in_process"

    @pytest.mark.asyncio
    async def test_redelivery_is_noop(self, run, seed, ledger) -> None:
        seeded = await seed("escrow")

        payment = await run("apply_gateway_notification", seeded.external_reference, "approved")
        assert payment.status == "ESCROW"
        assert await ledger.count_events(seeded.request_id, "PAYMENT_ESCROWED") == 1

    @pytest.mark.asyncio
    async def test_escrow_requires_work_started(self, run, seed) -> None:
        seeded = await seed("priced")
        created = await run("create_payment", seeded.request_id, CLIENT_ID)

        with pytest.raises(InvalidStateTransitionError):
            await run("apply_gateway_notification", created.external_reference, "approved")

    @pytest.mark.asyncio
    async def test_escrow_refused_once_work_is_completed(self, run, seed, ledger) -> None:
        seeded = await seed("completed")
        await ledger.set_payment_status(seeded.payment_id, "PENDING")

        with pytest.raises(InvalidStateTransitionError):
            await run("apply_gateway_notification", seeded.external_reference, "approved")
        assert (await ledger.payment(seeded.payment_id)).status == "PENDING"

    @pytest.mark.asyncio
    async def test_approved_payment_cannot_be_rejected(self, run, seed, ledger) -> None:
        seeded = await seed("escrow")
        with pytest.raises(InvalidStateTransitionError):
            await run("apply_gateway_notification", seeded.external_reference, "rejected")
        assert (await ledger.payment(seeded.payment_id)).status == "ESCROW"

    @pytest.mark.asyncio
    async def test_unknown_reference(self, run) -> None:
        with pytest.raises(NotFoundError):
            await run("apply_gateway_notification", "nope", "approved")
