"""
Rate Limiter Tests
"""

import pytest

from milksync.rate_limiter import RateLimiter

from fakes import FakeClock


class TestRateLimiter:
    """Tests for the cooldown gate."""

    @pytest.fixture
    def limiter(self, clock):
        return RateLimiter(60, clock)

    def test_ready_before_first_firing(self, limiter):
        assert limiter.is_ready()
        assert limiter.seconds_until_ready == 0.0

    def test_not_ready_until_interval_elapses(self, limiter, clock):
        limiter.have_fired()
        assert not limiter.is_ready()

        clock.advance(59.5)
        assert not limiter.is_ready()
        assert limiter.seconds_until_ready == pytest.approx(0.5)

        clock.advance(0.5)
        assert limiter.is_ready()

    def test_firing_again_restarts_interval(self, limiter, clock):
        limiter.have_fired()
        clock.advance(60)
        limiter.have_fired()
        clock.advance(30)
        assert not limiter.is_ready()

    def test_reset(self, limiter):
        limiter.have_fired()
        limiter.reset()
        assert limiter.is_ready()

    def test_zero_interval_always_ready(self):
        limiter = RateLimiter(0, FakeClock())
        limiter.have_fired()
        assert limiter.is_ready()
