"""
Retry Manager for source fetching.

Failed fetch attempts are retried with exponential backoff and random jitter.
Cancellation is never retried: ``asyncio.CancelledError`` is not an
``Exception`` subclass and passes straight through.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from .config import RetryConfig

T = TypeVar("T")


@dataclass
class RetryResult(Generic[T]):
    """What happened across all attempts of one operation."""

    success: bool
    result: Optional[T]
    attempts: int
    last_error: Optional[Exception]
    total_delay: float = 0.0


class RetryManager:
    """
    Runs an async operation again on failure, backing off exponentially.

    The wait before attempt ``n + 1`` is ``base * 2**(n - 1)`` plus a random
    jitter of up to ``jitter_ratio`` of that backoff, capped at
    ``max_delay_seconds``. No wait follows the final attempt.
    """

    def __init__(
        self,
        config: RetryConfig,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rand: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Args:
            config: Retry configuration with attempt count and delays
            sleep: Awaitable sleep function (defaults to asyncio.sleep)
            rand: Source of uniform floats in [0, 1) used for jitter
        """
        self._config = config
        self._sleep = sleep or asyncio.sleep
        self._rand = rand or random.random

    @property
    def max_attempts(self) -> int:
        return max(1, self._config.attempts)

    def _calculate_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        backoff = self._config.base_delay_seconds * (2 ** (attempt - 1))
        jitter = backoff * self._config.jitter_ratio * self._rand()
        return min(backoff + jitter, self._config.max_delay_seconds)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
    ) -> RetryResult[T]:
        """
        Await ``operation`` until it succeeds or the attempts run out.

        Every exception earns another attempt, an HTTP 404 included. The
        final error is returned in the result, never raised.
        """
        last_error: Optional[Exception] = None
        total_delay = 0.0

        attempt = 0
        while True:
            attempt += 1
            try:
                value = await operation()
            except Exception as e:
                last_error = e
            else:
                return RetryResult(True, value, attempt, None, total_delay)

            if attempt == self.max_attempts:
                return RetryResult(False, None, attempt, last_error, total_delay)

            delay = self._calculate_delay(attempt)
            total_delay += delay
            await self._sleep(delay)
