"""
Tests for the per-user rate limiter.
"""

from issuedesk_auth.auth.rate_limit import RateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_allows_up_to_limit():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=5, window=60, clock=clock)

    results = [limiter.check("user:1") for _ in range(5)]
    assert all(r.allowed for r in results)
    assert [r.remaining for r in results] == [4, 3, 2, 1, 0]

    blocked = limiter.check("user:1")
    assert not blocked.allowed
    assert blocked.retry_after == 60


def test_identifiers_are_independent():
    limiter = RateLimiter(max_requests=1, window=60, clock=FakeClock())

    assert limiter.check("user:1").allowed
    assert limiter.check("user:2").allowed
    assert not limiter.check("user:1").allowed


def test_window_slides():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=2, window=60, clock=clock)

    limiter.check("user:1")
    clock.now += 30
    limiter.check("user:1")
    assert not limiter.check("user:1").allowed

    clock.now += 31
    result = limiter.check("user:1")
    assert result.allowed
    assert result.remaining == 0


def test_retry_after_counts_down():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=1, window=60, clock=clock)

    limiter.check("user:1")
    clock.now += 45
    assert limiter.check("user:1").retry_after == 15


def test_reset():
    limiter = RateLimiter(max_requests=1, window=60, clock=FakeClock())
    limiter.check("user:1")

    limiter.reset("user:1")
    assert limiter.check("user:1").allowed
