"""Tests for the injectable clocks."""

from datetime import datetime, timedelta, timezone

from crm_kernel.domain.clock import DeterministicClock, SystemClock


class TestDeterministicClock:

    def test_default_time_is_stable(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now() == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_advance_and_tick(self):
        clock = DeterministicClock()
        start = clock.now()

        clock.advance(30)
        assert clock.now() == start + timedelta(seconds=30)
        assert clock.tick() == start + timedelta(seconds=31)

    def test_set_time_resets_offset(self):
        clock = DeterministicClock()
        clock.advance(100)
        moment = datetime(2025, 6, 1, tzinfo=timezone.utc)

        clock.set_time(moment)

        assert clock.now() == moment


class TestSystemClock:

    def test_now_is_timezone_aware(self):
        assert SystemClock().now().tzinfo is not None
