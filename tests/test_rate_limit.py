"""Sliding window rate limiter tests."""

import unittest

from fieldproof.rate_limit import RateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestRateLimiter(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.limiter = RateLimiter(3, window_seconds=60, clock=self.clock)

    def test_limit_per_window(self):
        self.assertEqual([self.limiter.allow("a") for _ in range(4)], [True, True, True, False])

    def test_keys_independent(self):
        for _ in range(3):
            self.limiter.allow("a")
        self.assertFalse(self.limiter.allow("a"))
        self.assertTrue(self.limiter.allow("b"))

    def test_window_slides(self):
        for _ in range(3):
            self.limiter.allow("a")
        self.clock.now += 30
        self.assertFalse(self.limiter.allow("a"))
        self.clock.now += 30
        self.assertTrue(self.limiter.allow("a"))

    def test_check_metadata(self):
        first = self.limiter.check("a")
        self.assertEqual(first.remaining, 2)
        self.limiter.check("a")
        self.limiter.check("a")
        blocked = self.limiter.check("a")
        self.assertFalse(blocked.allowed)
        self.assertEqual(blocked.remaining, 0)
        self.assertEqual(blocked.retry_after, 60)

    def test_reset_and_cleanup(self):
        self.limiter.allow("a")
        self.limiter.allow("b")
        self.limiter.reset("a")
        self.assertEqual(self.limiter.check("a").remaining, 2)
        self.clock.now += 120
        self.assertEqual(self.limiter.cleanup_expired(), 2)
        self.limiter.reset()
        self.assertTrue(self.limiter.allow("b"))

    def test_idle_keys_swept_by_later_hits(self):
        for n in range(50):
            self.limiter.allow(f"client-{n}")
        self.assertEqual(len(self.limiter), 50)
        self.clock.now += 61
        self.assertTrue(self.limiter.allow("late"))
        self.assertEqual(len(self.limiter), 1)

    def test_no_sweep_inside_window(self):
        self.limiter.allow("a")
        self.clock.now += 30
        self.limiter.allow("b")
        self.assertEqual(len(self.limiter), 2)


if __name__ == "__main__":
    unittest.main()
