"""Tests for the lifecycle state machine guards.

These tests verify that:
    1. All valid transitions are allowed.
    2. All invalid transitions are blocked.
    3. The convenience function apply_transition works.
    4. Confirmation state derivation and the expiry boundary behave correctly.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from statemachine.exceptions import TransitionNotAllowed

from marketplace_escrow.domain.enums import ConfirmationState
from marketplace_escrow.domain.exceptions import InvalidStateTransitionError
from marketplace_escrow.domain.state_machine import (
    ConfirmationStateMachine,
    PaymentStateMachine,
    ServiceRequestStateMachine,
    apply_transition,
    confirmation_state,
    is_due,
)


class TestServiceRequestLifecycle:
    def test_full_lifecycle(self) -> None:
        sm = ServiceRequestStateMachine("PENDING")
        sm.price_set()
        assert sm.status == "PRICED"

        sm.work_started()
        assert sm.status == "IN_PROGRESS"

        sm.work_completed()
        assert sm.status == "COMPLETED"
        assert sm.is_terminal

    def test_reprice_keeps_priced(self) -> None:
        sm = ServiceRequestStateMachine("PRICED")
        sm.price_set()
        assert sm.status == "PRICED"

    @pytest.mark.parametrize("start", ["PENDING", "PRICED"])
    def test_cancel_before_work(self, start: str) -> None:
        sm = ServiceRequestStateMachine(start)
        sm.request_cancelled()
        assert sm.status == "CANCELLED"

    def test_cannot_start_unpriced(self) -> None:
        sm = ServiceRequestStateMachine("PENDING")
        with pytest.raises(TransitionNotAllowed):
            sm.work_started()

    def test_cannot_cancel_in_progress(self) -> None:
        sm = ServiceRequestStateMachine("IN_PROGRESS")
        with pytest.raises(TransitionNotAllowed):
            sm.request_cancelled()

    def test_completed_is_terminal(self) -> None:
        sm = ServiceRequestStateMachine("COMPLETED")
        assert sm.get_allowed_events() == []


class TestPaymentLifecycle:
    def test_escrow_then_release(self) -> None:
        sm = PaymentStateMachine("PENDING")
        sm.funds_held()
        assert sm.status == "ESCROW"
        sm.funds_released()
        assert sm.status == "APPROVED"
        assert sm.is_terminal

    def test_rejected_from_pending(self) -> None:
        sm = PaymentStateMachine("PENDING")
        sm.gateway_rejected()
        assert sm.status == "REJECTED"

    def test_cannot_release_twice(self) -> None:
        sm = PaymentStateMachine("APPROVED")
        with pytest.raises(TransitionNotAllowed):
            sm.funds_released()

    def test_cannot_release_pending(self) -> None:
        sm = PaymentStateMachine("PENDING")
        with pytest.raises(TransitionNotAllowed):
            sm.funds_released()


class TestConfirmationLifecycle:
    def test_client_confirms(self) -> None:
        sm = ConfirmationStateMachine()
        sm.client_confirms()
        assert sm.status == "CONFIRMED"

    def test_window_elapsed(self) -> None:
        sm = ConfirmationStateMachine()
        sm.window_elapsed()
        assert sm.status == "AUTO_RELEASED"

    @pytest.mark.parametrize("terminal", ["CONFIRMED", "AUTO_RELEASED"])
    def test_terminal_states_accept_nothing(self, terminal: str) -> None:
        sm = ConfirmationStateMachine(terminal)
        assert sm.is_terminal
        with pytest.raises(TransitionNotAllowed):
            sm.client_confirms()
        with pytest.raises(TransitionNotAllowed):
            sm.window_elapsed()

    def test_allowed_events_from_awaiting(self) -> None:
        sm = ConfirmationStateMachine("AWAITING_CONFIRMATION")
        assert set(sm.get_allowed_events()) == {"client_confirms", "window_elapsed"}

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            ConfirmationStateMachine("MAYBE")


class TestConfirmationState:
    def test_flags_map_to_states(self) -> None:
        assert confirmation_state(False, False) is ConfirmationState.AWAITING_CONFIRMATION
        assert confirmation_state(True, False) is ConfirmationState.CONFIRMED
        assert confirmation_state(False, True) is ConfirmationState.AUTO_RELEASED

    def test_both_flags_is_invalid(self) -> None:
        with pytest.raises(ValueError, match="both"):
            confirmation_state(True, True)


class TestIsDue:
    now = datetime(2026, 3, 4, 9, 0, tzinfo=UTC)

    def test_expiry_equal_to_now_is_due(self) -> None:
        assert is_due(self.now, self.now)

    def test_expiry_in_past_is_due(self) -> None:
        assert is_due(self.now - timedelta(seconds=1), self.now)

    def test_expiry_one_microsecond_ahead_is_not_due(self) -> None:
        assert not is_due(self.now + timedelta(microseconds=1), self.now)


class TestApplyTransition:
    def test_valid_transition_returns_new_status(self) -> None:
        assert apply_transition(PaymentStateMachine, "ESCROW", "funds_released") == "APPROVED"

    def test_invalid_transition_raises_domain_error(self) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            apply_transition(ServiceRequestStateMachine, "PENDING", "work_completed")
        assert exc_info.value.current_state == "PENDING"
        assert exc_info.value.attempted_event == "work_completed"

    def test_unknown_event_raises_value_error(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            apply_transition(PaymentStateMachine, "PENDING", "refund")
