import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import structlog

from harvest_insights.models.config import RateLimitConfig
from harvest_insights.observability.metrics import (
    RATE_LIMIT_EMBARGOES,
    RATE_LIMIT_REMAINING,
    THROTTLE_WAIT,
)

logger = structlog.get_logger()

# Upper bound on the advisory stagger delay near the limit
MAX_STAGGER_MS = 500


@dataclass
class RateLimitStatus:
    remaining: int
    total: int
    reset_ms: float
    is_throttled: bool


class RateLimiter:
    """Sliding window rate limiter shared by every gateway.

    Tracks request timestamps over the last `window_ms` milliseconds and an
    optional embargo deadline set by a 429 response. Decisions are advisory
    (`acquire_permit`) or enforced (`throttle`).

    All state changes happen inside synchronous method bodies, so each call
    is atomic with respect to other coroutines on the event loop.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._timestamps: List[float] = []
        self._embargo_until_ms = 0.0

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _prune(self, now: float) -> None:
        cutoff = now - self.config.window_ms
        self._timestamps = [ts for ts in self._timestamps if ts > cutoff]

    def _blocking_wait_ms(self, now: float) -> float:
        """Wait imposed by the embargo or a full window (0 when clear)"""
        self._prune(now)
        if self._embargo_until_ms > now:
            return self._embargo_until_ms - now
        if len(self._timestamps) >= self.config.max_requests:
            oldest = min(self._timestamps)
            return max(0.0, (oldest + self.config.window_ms) - now)
        return 0.0

    def acquire_permit(self) -> float:
        """Milliseconds the caller should wait before sending a request.

        Returns:
            Remaining embargo, time until the oldest request leaves a full
            window, a short stagger delay near the warning threshold, or 0.
        """
        now = self._now_ms()
        blocking = self._blocking_wait_ms(now)
        if blocking > 0:
            return blocking

        count = len(self._timestamps)
        if count >= self.config.max_requests * self.config.warning_threshold:
            remaining = self.config.max_requests - count
            delay = math.floor(self.config.window_ms / remaining / 2)
            return float(min(delay, MAX_STAGGER_MS))

        return 0.0

    def record_request(self) -> None:
        now = self._now_ms()
        self._timestamps.append(now)
        RATE_LIMIT_REMAINING.set(
            max(0, self.config.max_requests - len(self._timestamps))
        )

    def handle_rate_limit(self, retry_after_seconds: float) -> None:
        """Start an embargo after a 429 response.

        Args:
            retry_after_seconds: Value of the Retry-After header.
        """
        self._embargo_until_ms = self._now_ms() + retry_after_seconds * 1000.0
        RATE_LIMIT_EMBARGOES.inc()
        logger.warning("rate_limit_embargo", retry_after_seconds=retry_after_seconds)

    async def throttle(self) -> float:
        """Wait for a permit and record the request.

        The stagger delay is honoured once; after sleeping only the hard
        limit and the embargo are re-checked. The final check and the
        timestamp append run without an intervening await.

        Returns:
            Total milliseconds waited.
        """
        waited = 0.0
        delay = self.acquire_permit()
        while delay > 0:
            logger.debug("rate_limit_wait", wait_ms=delay)
            await asyncio.sleep(delay / 1000.0)
            waited += delay
            delay = self._blocking_wait_ms(self._now_ms())

        self.record_request()
        THROTTLE_WAIT.observe(waited / 1000.0)
        return waited

    def get_status(self) -> RateLimitStatus:
        now = self._now_ms()
        self._prune(now)
        count = len(self._timestamps)

        reset_ms = 0.0
        if self._timestamps:
            reset_ms = max(0.0, (min(self._timestamps) + self.config.window_ms) - now)

        is_throttled = (
            self._embargo_until_ms > now
            or count >= self.config.max_requests * self.config.warning_threshold
        )
        return RateLimitStatus(
            remaining=max(0, self.config.max_requests - count),
            total=self.config.max_requests,
            reset_ms=reset_ms,
            is_throttled=is_throttled,
        )

    def reset(self) -> None:
        self._timestamps = []
        self._embargo_until_ms = 0.0
