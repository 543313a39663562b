"""
Tests for the per-client rate limiter
"""

from concurrent.futures import ThreadPoolExecutor

from guestlist.utils.security import RateLimiter

def test_limit_and_retry_after():
    """Requests over the limit are refused until the oldest leaves the window"""
    limiter = RateLimiter(window_seconds=60)

    assert limiter.check("10.0.0.1", 2, now=1000.0) == (True, 0)
    assert limiter.check("10.0.0.1", 2, now=1010.0) == (True, 0)
    assert limiter.check("10.0.0.1", 2, now=1030.0) == (False, 30)
    assert limiter.check("10.0.0.1", 2, now=1060.0) == (True, 0)

def test_clients_are_counted_separately():
    limiter = RateLimiter(window_seconds=60)

    assert limiter.check("a", 1, now=1000.0) == (True, 0)
    assert limiter.check("b", 1, now=1000.0) == (True, 0)
    assert limiter.check("a", 1, now=1001.0)[0] is False

def test_idle_clients_are_dropped():
    """A client with no requests left in the window no longer holds an entry"""
    limiter = RateLimiter(window_seconds=60)
    for n in range(100):
        limiter.check(f"10.0.1.{n}", 5, now=1000.0)
    assert len(limiter) == 100

    limiter.check("10.0.2.1", 5, now=1061.0)

    assert len(limiter) == 1
    assert "10.0.1.0" not in limiter
    assert "10.0.2.1" in limiter

def test_active_clients_survive_the_sweep():
    limiter = RateLimiter(window_seconds=60)
    limiter.check("old", 5, now=1000.0)
    limiter.check("busy", 5, now=1030.0)

    limiter.check("new", 5, now=1065.0)

    assert "old" not in limiter
    assert "busy" in limiter
    assert limiter.check("busy", 2, now=1070.0) == (True, 0)
    assert limiter.check("busy", 2, now=1071.0) == (False, 19)

def test_concurrent_checks_never_exceed_limit():
    """Parallel requests from one client are admitted at most `limit` times"""
    limiter = RateLimiter(window_seconds=60)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: limiter.check("10.0.0.9", 25, now=1000.0), range(200)))

    assert sum(1 for allowed, _ in results if allowed) == 25
