import unittest
from unittest import IsolatedAsyncioTestCase

from dockerfile_image_update.ratelimit import RateLimit, RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestRateLimit(unittest.TestCase):
    def test_from_string(self):
        cases = [
            ("500-per-s", RateLimit(500, 1, 0.002)),
            ("60-per-m", RateLimit(60, 60, 1)),
            ("30-per-2h", RateLimit(30, 7200, 240)),
            ("30-per-h", RateLimit(30, 3600, 120)),
            ("500-PT1M", RateLimit(500, 60, 0.12)),
            ("10-pt2s", RateLimit(10, 2, 0.2)),
            ("100", RateLimit(100, 3600, 36)),
            (" 60-per-m ", RateLimit(60, 60, 1)),
        ]
        for value, expected in cases:
            with self.subTest(value=value):
                self.assertEqual(RateLimit.from_string(value), expected)

    def test_from_string_invalid(self):
        for value in (None, "", "abc", "-5", "0", "0-per-s", "10-per-0s", "10-per-x", "10-per-2d", "10-PT1D"):
            with self.subTest(value=value):
                with self.assertRaisesRegex(ValueError, "Unexpected format or unit"):
                    RateLimit.from_string(value)

    def test_default(self):
        self.assertEqual(RateLimit(), RateLimit(30, 3600, 120))

    def test_invalid_values(self):
        with self.assertRaises(ValueError):
            RateLimit(0, 10, 1)
        with self.assertRaises(ValueError):
            RateLimit(1, 10, 0)


class TestRateLimiter(IsolatedAsyncioTestCase):
    def test_from_options(self):
        self.assertIsNone(RateLimiter.from_options(False, "5-per-m"))
        self.assertEqual(RateLimiter.from_options(True).rate_limit, RateLimit())
        self.assertEqual(RateLimiter.from_options(True, "5-per-m").rate_limit, RateLimit(5, 60, 12))

    async def test_try_consume(self):
        clock = FakeClock()
        limiter = RateLimiter(RateLimit(2, 10, 1), clock=clock, sleep=clock.sleep)

        self.assertEqual(await limiter.try_consume(), 0)
        # the token adding rate allows one token per second
        self.assertEqual(await limiter.try_consume(), 1)

        clock.now = 1
        self.assertEqual(await limiter.try_consume(), 0)

        # both tokens of the window are used up until t=10
        clock.now = 2
        self.assertEqual(await limiter.try_consume(), 8)

        clock.now = 10
        self.assertEqual(await limiter.try_consume(), 0)

    async def test_consume_waits(self):
        clock = FakeClock()
        limiter = RateLimiter(RateLimit(2, 10, 1), clock=clock, sleep=clock.sleep)

        for _ in range(3):
            await limiter.consume()

        self.assertEqual(clock.sleeps, [1, 9])
        self.assertEqual(clock.now, 10)

    async def test_consume_without_waiting(self):
        clock = FakeClock()
        limiter = RateLimiter(RateLimit(5, 5, 1), clock=clock, sleep=clock.sleep)
        for i in range(5):
            clock.now = i
            await limiter.consume()
        self.assertEqual(clock.sleeps, [])


if __name__ == "__main__":
    unittest.main()
