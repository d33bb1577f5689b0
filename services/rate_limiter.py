"""
Token-bucket throttle for outbound provider calls.

Tokens refill continuously in proportion to elapsed time (capped at
capacity), so a caller that drains the bucket waits only for the tokens it
needs instead of for the next full interval.

This only bounds call *rate*. The provider's credit balance lives in the
CreditLedger returned by ProfileProviderClient.get_credit_usage().
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from constants import RATE_LIMIT_CAPACITY, RATE_LIMIT_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Async token bucket with an injectable clock.

    Args:
        capacity: Maximum tokens (and tokens added per interval)
        interval: Seconds it takes to refill a full bucket
        clock: Monotonic time source in seconds
        sleep: Awaitable sleep used while waiting for tokens
    """

    def __init__(
        self,
        capacity: int = RATE_LIMIT_CAPACITY,
        interval: float = RATE_LIMIT_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.capacity = capacity
        self.interval = interval
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._tokens = float(capacity)
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @property
    def refill_rate(self) -> float:
        """Tokens added per second."""
        return self.capacity / self.interval

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(
                float(self.capacity), self._tokens + elapsed * self.refill_rate
            )
            self._last_refill = now

    def peek(self) -> float:
        """Return tokens currently available, without consuming any."""
        self._refill()
        return self._tokens

    async def acquire(self, cost: int = 1) -> None:
        """
        Wait until `cost` tokens are available, then debit them.

        Raises:
            ValueError: If cost is not positive or exceeds capacity
        """
        if cost <= 0:
            raise ValueError("cost must be positive")
        if cost > self.capacity:
            raise ValueError(
                f"cost {cost} exceeds bucket capacity {self.capacity}"
            )

        # Waiters are served one at a time, in arrival order
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= cost:
                    self._tokens -= cost
                    return

                deficit = cost - self._tokens
                wait_time = deficit / self.refill_rate
                logger.debug(
                    f"[RateLimiter] Bucket empty ({self._tokens:.2f} tokens), "
                    f"waiting {wait_time:.3f}s"
                )
                await self._sleep(wait_time)
