"""Pacer - randomized spacing for traffic aimed at third-party registrars.

WHOIS servers and registrars rate-limit and flag bulk lookups, so batches of
domain checks are spread out with a uniformly random gap between dispatches
instead of being fired together. Every gap is a real suspension point.
"""
import asyncio
import logging
import random
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class Pacer:
    """Produces randomized delays between dispatches."""

    def __init__(
        self,
        min_delay_ms: int = 3000,
        max_delay_ms: int = 5000,
        rng: Optional[random.Random] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        if min_delay_ms < 0 or max_delay_ms < min_delay_ms:
            raise ValueError(f"Invalid pacing window [{min_delay_ms}, {max_delay_ms}]ms")
        self.min_delay_ms = min_delay_ms
        self.max_delay_ms = max_delay_ms
        self._rng = rng or random.Random()
        self._sleep = sleep

    def next_delay(self, min_delay_ms: Optional[int] = None, max_delay_ms: Optional[int] = None) -> float:
        """A random delay in seconds within the window."""
        low = self.min_delay_ms if min_delay_ms is None else min_delay_ms
        high = self.max_delay_ms if max_delay_ms is None else max_delay_ms
        return self._rng.uniform(low, high) / 1000

    async def jitter(self, min_delay_ms: Optional[int] = None, max_delay_ms: Optional[int] = None) -> float:
        """Sleep once for a random delay and return it (seconds)."""
        delay = self.next_delay(min_delay_ms, max_delay_ms)
        await self._sleep(delay)
        return delay

    async def pace_sequence(
        self,
        items: Iterable[T],
        min_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
    ) -> AsyncIterator[T]:
        """Yield items one by one; the first immediately, each next one after a random gap."""
        first = True
        for item in items:
            if not first:
                delay = await self.jitter(min_delay_ms, max_delay_ms)
                logger.debug(f"Paced dispatch after {delay:.2f}s")
            first = False
            yield item
