"""Adaptive inter-request delay for polite crawling."""

import asyncio
import random
from datetime import datetime
from typing import Callable, Optional

import structlog

from seek.config import settings

logger = structlog.get_logger()

# Requests past the threshold are grouped in steps; each step doubles the delay
BACKOFF_STEP = 10


class AdaptiveDelay:
    """Per-retailer delay between navigations.

    The delay starts from the retailer's base delay and is adjusted for:
    - Peak hours (local clock within [peak_start, peak_end)): multiplied
    - Random jitter of +/- jitter_ratio of the delay
    - Exponential backoff once a session issues more than backoff_threshold
      requests

    The result never exceeds max_delay seconds.
    """

    def __init__(
        self,
        base_delay: float,
        peak_start: int = settings.PEAK_HOURS_START,
        peak_end: int = settings.PEAK_HOURS_END,
        peak_multiplier: float = settings.PEAK_DELAY_MULTIPLIER,
        jitter_ratio: float = settings.DELAY_JITTER_RATIO,
        backoff_threshold: int = settings.BACKOFF_REQUEST_THRESHOLD,
        max_delay: float = settings.MAX_DELAY_SECONDS,
        rng: Optional[random.Random] = None,
        sleep: Callable = asyncio.sleep,
    ):
        """Initialize the delay policy.

        Args:
            base_delay: Retailer base delay in seconds
            peak_start: First peak hour (inclusive)
            peak_end: Last peak hour (exclusive)
            peak_multiplier: Factor applied during peak hours
            jitter_ratio: Maximum relative jitter, 0 disables jitter
            backoff_threshold: Request count after which backoff starts
            max_delay: Upper bound in seconds
            rng: Random source, injectable for deterministic tests
            sleep: Awaitable sleep function, injectable for tests
        """
        self.base_delay = max(0.0, base_delay)
        self.peak_start = peak_start
        self.peak_end = peak_end
        self.peak_multiplier = peak_multiplier
        self.jitter_ratio = jitter_ratio
        self.backoff_threshold = backoff_threshold
        self.max_delay = max_delay
        self.request_count = 0
        self._rng = rng or random.Random()
        self._sleep = sleep

    def is_peak(self, now: datetime) -> bool:
        return self.peak_start <= now.hour < self.peak_end

    def backoff_factor(self) -> float:
        if self.request_count <= self.backoff_threshold:
            return 1.0
        steps = (self.request_count - self.backoff_threshold) // BACKOFF_STEP + 1
        return float(2 ** steps)

    def compute_delay(self, now: Optional[datetime] = None) -> float:
        """Delay in seconds for the next navigation, without sleeping."""
        now = now or datetime.now()
        delay = self.base_delay

        if self.is_peak(now):
            delay *= self.peak_multiplier

        if self.jitter_ratio > 0:
            delay += delay * self._rng.uniform(-self.jitter_ratio, self.jitter_ratio)

        delay *= self.backoff_factor()
        return max(0.0, min(delay, self.max_delay))

    async def wait(self, now: Optional[datetime] = None) -> float:
        """Sleep for the computed delay and count the request."""
        self.request_count += 1
        delay = self.compute_delay(now)
        if self.request_count > self.backoff_threshold:
            logger.debug("crawl_backoff_active", requests=self.request_count, delay=round(delay, 2))
        await self._sleep(delay)
        return delay

    def reset(self) -> None:
        self.request_count = 0
