import unittest
from unittest.mock import MagicMock, patch

from quadratic_api.ratelimit import InMemoryRateLimiter, RateLimitResult, RedisRateLimiter


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class InMemoryRateLimiterTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.limiter = InMemoryRateLimiter(max_requests=3, window_ms=10_000, clock=self.clock)

    def test_allows_up_to_the_limit(self):
        results = [self.limiter.hit("auth0|alice") for _ in range(4)]
        self.assertEqual([r.allowed for r in results], [True, True, True, False])
        self.assertEqual([r.remaining for r in results], [2, 1, 0, 0])

    def test_window_resets_after_it_expires(self):
        for _ in range(4):
            self.limiter.hit("auth0|alice")
        self.clock.now += 5
        self.assertFalse(self.limiter.hit("auth0|alice").allowed)

        self.clock.now += 5
        result = self.limiter.hit("auth0|alice")
        self.assertTrue(result.allowed)
        self.assertEqual(result.count, 1)
        self.assertEqual(result.reset_after_ms, 10_000)

    def test_keys_are_independent(self):
        for _ in range(4):
            self.limiter.hit("auth0|alice")
        self.assertTrue(self.limiter.hit("anonymous").allowed)

    def test_expired_windows_are_dropped(self):
        for subject in ("auth0|alice", "auth0|bob", "auth0|carol"):
            self.limiter.hit(subject)
        self.assertEqual(len(self.limiter.windows), 3)

        self.clock.now += 10
        self.limiter.hit("auth0|dave")
        self.assertEqual(list(self.limiter.windows), ["auth0|dave"])

    def test_reset_clears_a_key(self):
        for _ in range(4):
            self.limiter.hit("auth0|alice")
        self.limiter.reset("auth0|alice")
        self.assertEqual(self.limiter.hit("auth0|alice").count, 1)


class RateLimitResultTests(unittest.TestCase):
    def test_headers(self):
        allowed = RateLimitResult(limit=25, count=1, reset_after_ms=1500).headers()
        self.assertEqual(
            allowed,
            {"RateLimit-Limit": "25", "RateLimit-Remaining": "24", "RateLimit-Reset": "2"},
        )
        rejected = RateLimitResult(limit=25, count=26, reset_after_ms=1000).headers()
        self.assertEqual(rejected["RateLimit-Remaining"], "0")
        self.assertEqual(rejected["Retry-After"], "1")


class RedisRateLimiterTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("quadratic_api.ratelimit.redis.Redis.from_url")
        self.from_url = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = MagicMock()
        self.from_url.return_value = self.client
        self.pipe = self.client.pipeline.return_value
        self.limiter = RedisRateLimiter(
            url="redis://localhost:6379/0", max_requests=2, window_ms=60_000
        )

    def test_first_hit_sets_window_expiry(self):
        self.pipe.execute.return_value = [1, -1]
        result = self.limiter.hit("auth0|alice")
        self.pipe.incr.assert_called_once_with("quadratic:ratelimit:auth0|alice")
        self.client.pexpire.assert_called_once_with("quadratic:ratelimit:auth0|alice", 60_000)
        self.assertTrue(result.allowed)
        self.assertEqual(result.reset_after_ms, 60_000)

    def test_hit_over_limit_uses_remaining_ttl(self):
        self.pipe.execute.return_value = [3, 500]
        result = self.limiter.hit("auth0|alice")
        self.client.pexpire.assert_not_called()
        self.assertFalse(result.allowed)
        self.assertEqual(result.headers()["RateLimit-Reset"], "1")

    def test_reset_deletes_key(self):
        self.limiter.reset("auth0|alice")
        self.client.delete.assert_called_once_with("quadratic:ratelimit:auth0|alice")


if __name__ == "__main__":
    unittest.main()
