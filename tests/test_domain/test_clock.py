"""Tests for the clock implementations."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from marketplace_escrow.domain.clock import FixedClock, SystemClock


class TestSystemClock:
    def test_now_is_timezone_aware_utc(self) -> None:
        now = SystemClock().now()
        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)


class TestFixedClock:
    start = datetime(2026, 1, 1, tzinfo=UTC)

    def test_now_does_not_move(self) -> None:
        clock = FixedClock(self.start)
        assert clock.now() == clock.now() == self.start

    def test_advance(self) -> None:
        clock = FixedClock(self.start)
        assert clock.advance(timedelta(hours=48)) == self.start + timedelta(hours=48)
        assert clock.now() == self.start + timedelta(hours=48)

    def test_set(self) -> None:
        clock = FixedClock(self.start)
        later = datetime(2026, 2, 1, tzinfo=UTC)
        clock.set(later)
        assert clock.now() == later

    def test_naive_datetime_rejected(self) -> None:
        with pytest.raises(ValueError, match="timezone-aware"):
            FixedClock(datetime(2026, 1, 1))
        clock = FixedClock(self.start)
        with pytest.raises(ValueError, match="timezone-aware"):
            clock.set(datetime(2026, 1, 2))
