"""
Retry policy for outbound collaborator calls.

One reusable object (max attempts, base delay, jitter) applied by every
channel adapter, so business logic never hand-rolls retry loops. Delays
grow exponentially: min(base * multiplier^attempt, max_delay) ± jitter.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransientError(Exception):
    """A failure worth retrying (5xx, connection reset, rate limit)."""


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff with jitter.

    Usage:
        policy = RetryPolicy(max_attempts=3, base_delay=0.5)
        result = await policy.call(send, recipient, alert)

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates on the first attempt.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter_range: float = 0.5
    retry_on: tuple[type[BaseException], ...] = (TransientError,)

    def delay_for(self, attempt: int) -> float:
        """Backoff delay before retry number ``attempt`` (0-based)."""
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        jitter = delay * random.uniform(-self.jitter_range, self.jitter_range)
        return max(0.0, delay + jitter)

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        **kwargs,
    ) -> T:
        """Await ``func(*args, **kwargs)``, retrying retryable errors.

        Raises:
            The last retryable error once attempts are exhausted, or any
            non-retryable error immediately.
        """
        for attempt in range(self.max_attempts):
            try:
                return await func(*args, **kwargs)
            except self.retry_on as e:
                if attempt >= self.max_attempts - 1:
                    logger.warning(
                        "All %d attempts exhausted for %s: %s",
                        self.max_attempts, getattr(func, "__name__", func), e,
                    )
                    raise
                delay = self.delay_for(attempt)
                logger.debug(
                    "Attempt %d of %s failed (%s), retrying in %.2fs",
                    attempt + 1, getattr(func, "__name__", func), e, delay,
                )
                await asyncio.sleep(delay)
        raise RuntimeError("unreachable")  # pragma: no cover


NO_RETRY = RetryPolicy(max_attempts=1)
