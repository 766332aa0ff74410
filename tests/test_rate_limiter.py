"""
Tests for the per-key sliding-window rate limiter used by the sync endpoint.
"""

import pytest

from app.services.rate_limiter import RateLimiter


@pytest.fixture
def limiter():
    return RateLimiter(cleanup_interval_s=60.0)


# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------

class TestAllow:
    def test_allows_within_limit(self, limiter):
        for i in range(3):
            assert limiter.allow("sync:10.0.0.1", 3, 60.0, now=1000.0 + i)

    def test_blocks_above_limit(self, limiter):
        for i in range(3):
            limiter.allow("sync:10.0.0.1", 3, 60.0, now=1000.0 + i)

        assert limiter.allow("sync:10.0.0.1", 3, 60.0, now=1003.0) is False

    def test_different_keys_independent(self, limiter):
        for i in range(3):
            limiter.allow("sync:10.0.0.1", 3, 60.0, now=1000.0 + i)

        assert limiter.allow("sync:10.0.0.2", 3, 60.0, now=1003.0) is True

    def test_window_expiry(self, limiter):
        for i in range(3):
            limiter.allow("sync:10.0.0.1", 3, 60.0, now=1000.0 + i)
        assert limiter.allow("sync:10.0.0.1", 3, 60.0, now=1010.0) is False

        # All earlier requests have aged out of the window
        assert limiter.allow("sync:10.0.0.1", 3, 60.0, now=1100.0) is True

    def test_rejected_requests_count(self, limiter):
        """Hammering while blocked keeps the key blocked."""
        for i in range(5):
            limiter.allow("k", 2, 10.0, now=100.0 + i)
        # Requests at 102-104 are still inside the window at 111
        assert limiter.allow("k", 2, 10.0, now=111.0) is False

    def test_reset(self, limiter):
        for i in range(3):
            limiter.allow("k", 1, 60.0, now=100.0 + i)
        limiter.reset()

        assert len(limiter) == 0
        assert limiter.allow("k", 1, 60.0, now=103.0) is True


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------

class TestCleanup:
    def test_idle_keys_dropped(self):
        limiter = RateLimiter(cleanup_interval_s=0.0)
        limiter.allow("a", 5, 10.0, now=100.0)
        limiter.allow("b", 5, 10.0, now=100.0)
        assert len(limiter) == 2

        # Cleanup runs before "c" is recorded; a and b are idle by now
        limiter.allow("c", 5, 10.0, now=200.0)

        assert len(limiter) == 1

    def test_active_keys_kept(self):
        limiter = RateLimiter(cleanup_interval_s=0.0)
        limiter.allow("a", 5, 10.0, now=100.0)
        limiter.allow("b", 5, 10.0, now=105.0)

        limiter.allow("b", 5, 10.0, now=108.0)

        assert len(limiter) == 2
