import asyncio
import logging
import re
import time
from typing import Awaitable, Callable, List, Optional

from dockerfile_image_update import constants

_LOGGER = logging.getLogger(__name__)

ERROR_MESSAGE = ("Unexpected format or unit encountered, valid input is <integer>[-per-[<integer>]<s|m|h>]. "
                 "Example: 500-per-s means 500 per second, 30-per-2h means 30 per 2 hours. "
                 "ISO-8601 durations such as 500-PT1M are accepted as well.")

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 60 * 60}
_PER_PATTERN = re.compile(r"^(\d+)-per-(\d*)([smh])$", re.IGNORECASE)
_ISO_PATTERN = re.compile(r"^(\d+)-PT(\d+)([SMH])$", re.IGNORECASE)
_RATE_ONLY_PATTERN = re.compile(r"^(\d+)$")


class RateLimit:
    """
    How many pull requests may be opened in a time window.

    :param rate: Maximum number of pull requests per `duration`
    :param duration: Window length in seconds
    :param token_adding_rate: Seconds between two single tokens added to the bucket; smooths bursts
    """
    def __init__(self, rate: int = constants.DEFAULT_RATE_LIMIT,
                 duration: float = constants.DEFAULT_RATE_LIMIT_DURATION,
                 token_adding_rate: float = constants.DEFAULT_TOKEN_ADDING_RATE):
        if rate <= 0 or duration <= 0 or token_adding_rate <= 0:
            raise ValueError("rate, duration and token adding rate must be positive")
        self.rate = rate
        self.duration = duration
        self.token_adding_rate = token_adding_rate

    @classmethod
    def from_string(cls, value: Optional[str]) -> "RateLimit":
        """
        Parses `<rate>`, `<rate>-per-[<n>]<s|m|h>` or `<rate>-PT<n><S|M|H>`.
        The token adding rate is spread evenly over the window: duration / rate.
        :raises ValueError: if the value can't be parsed
        """
        if not value:
            raise ValueError(ERROR_MESSAGE)
        value = value.strip()
        match = _PER_PATTERN.match(value) or _ISO_PATTERN.match(value)
        if match:
            rate = int(match.group(1))
            amount = int(match.group(2)) if match.group(2) else 1
            duration = amount * _UNIT_SECONDS[match.group(3).lower()]
        else:
            match = _RATE_ONLY_PATTERN.match(value)
            if not match:
                raise ValueError(ERROR_MESSAGE)
            rate = int(match.group(1))
            duration = constants.DEFAULT_RATE_LIMIT_DURATION
        if rate <= 0 or duration <= 0:
            raise ValueError(ERROR_MESSAGE)
        token_adding_rate = duration / rate
        _LOGGER.info("constructing rate limit with rate: %s, duration: %ss, and token adding rate: %ss",
                     rate, duration, token_adding_rate)
        return cls(rate, duration, token_adding_rate)

    def __eq__(self, other):
        if not isinstance(other, RateLimit):
            return NotImplemented
        return (self.rate, self.duration, self.token_adding_rate) == \
            (other.rate, other.duration, other.token_adding_rate)

    def __repr__(self):
        return f"RateLimit(rate={self.rate}, duration={self.duration}, token_adding_rate={self.token_adding_rate})"


class _Bandwidth:
    """ A bucket of `capacity` tokens refilled with `refill_tokens` at the end of each `refill_period` """
    def __init__(self, capacity: int, refill_tokens: int, refill_period: float, now: float):
        self.capacity = capacity
        self.refill_tokens = refill_tokens
        self.refill_period = refill_period
        self.tokens = capacity
        self.last_refill = now

    def refill(self, now: float):
        periods = int((now - self.last_refill) // self.refill_period)
        if periods > 0:
            self.tokens = min(self.capacity, self.tokens + periods * self.refill_tokens)
            self.last_refill += periods * self.refill_period

    def seconds_until_available(self, now: float) -> float:
        if self.tokens >= 1:
            return 0
        # an empty bucket always waits, even when rounding puts the refill in the past
        return max(0.001, self.last_refill + self.refill_period - now)


class RateLimiter:
    """
    Token bucket shared by every pull request creation of a run.

    A token is granted only if both limits have one: `rate` tokens per `duration`, and one token per
    `token_adding_rate`. consume() never fails, it only waits; the wait is an asyncio.sleep, so cancelling the
    caller interrupts it.
    """
    def __init__(self, rate_limit: Optional[RateLimit] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable] = asyncio.sleep):
        self.rate_limit = rate_limit or RateLimit()
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        now = clock()
        self._bandwidths: List[_Bandwidth] = [
            _Bandwidth(self.rate_limit.rate, self.rate_limit.rate, self.rate_limit.duration, now),
            _Bandwidth(1, 1, self.rate_limit.token_adding_rate, now),
        ]

    @classmethod
    def from_options(cls, enabled: bool, rate_limit_spec: Optional[str] = None) -> Optional["RateLimiter"]:
        """ Returns None when rate limiting is disabled, meaning pull requests are not throttled """
        if not enabled:
            return None
        rate_limit = RateLimit.from_string(rate_limit_spec) if rate_limit_spec else RateLimit()
        return cls(rate_limit)

    async def try_consume(self) -> float:
        """ Takes a token if both limits have one and returns 0; otherwise returns the seconds to wait """
        async with self._lock:
            now = self._clock()
            for bandwidth in self._bandwidths:
                bandwidth.refill(now)
            wait = max(bandwidth.seconds_until_available(now) for bandwidth in self._bandwidths)
            if wait <= 0:
                for bandwidth in self._bandwidths:
                    bandwidth.tokens -= 1
            return wait

    async def consume(self):
        while True:
            wait = await self.try_consume()
            if wait <= 0:
                return
            _LOGGER.info("Pull request rate limit reached. Waiting %.1fs for a token...", wait)
            await self._sleep(wait)
