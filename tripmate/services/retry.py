"""
RetryPolicy - Bounded retries with exponential backoff and jitter.

Only transient failures are retried: timeouts, network errors and
classified server errors. Everything else surfaces on the first attempt.
The wait between attempts can be interrupted by a cancellation event.
"""

import asyncio
import random
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from tripmate.services.errors import (
    ApiError,
    ApiErrorType,
    RetryAbortedError,
)

T = TypeVar("T")

RETRYABLE_TYPES = frozenset(
    {
        ApiErrorType.TIMEOUT,
        ApiErrorType.SERVER_ERROR,
        ApiErrorType.NETWORK_ERROR,
    }
)


@dataclass
class RetryConfig:
    """Configuration for retry policy."""

    max_retries: int = 3  # Attempts after the first
    base_delay: timedelta = timedelta(milliseconds=100)
    max_delay: timedelta = timedelta(milliseconds=400)
    jitter_ratio: float = 0.3  # Max jitter as a share of the exponential term


class RetryPolicy:
    """
    Retry an async operation with exponential backoff.

    Usage:
        policy = RetryPolicy(RetryConfig(max_retries=2))
        result = await policy.execute(lambda: fetch(url), "openweathermap")
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        rand: Callable[[], float] = random.random,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self._rand = rand
        self._sleep = sleep

    @staticmethod
    def is_retryable(error: BaseException) -> bool:
        """Check if an error is worth retrying."""
        if isinstance(error, ApiError):
            return error.error_type in RETRYABLE_TYPES
        return False

    def base_delay_for(self, attempt: int) -> float:
        """Non-jittered delay in seconds for a 0-indexed attempt."""
        base = self.config.base_delay.total_seconds()
        return min(self.config.max_delay.total_seconds(), base * (2**attempt))

    def calculate_backoff(self, attempt: int) -> float:
        """Delay in seconds before the attempt after `attempt`, with jitter."""
        exponential = self.config.base_delay.total_seconds() * (2**attempt)
        jitter = self._rand() * self.config.jitter_ratio * exponential
        return min(self.config.max_delay.total_seconds(), exponential + jitter)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        service_id: str,
        cancel: asyncio.Event | None = None,
    ) -> T:
        """
        Run operation, retrying transient failures.

        Raises:
            RetryAbortedError: If cancel fires while waiting between attempts
            The last error from operation otherwise
        """
        max_retries = self.config.max_retries

        for attempt in range(max_retries + 1):
            try:
                return await operation()
            except Exception as e:
                if attempt >= max_retries or not self.is_retryable(e):
                    raise

                delay = self.calculate_backoff(attempt)
                logger.warning(
                    f"{service_id} request failed "
                    f"(attempt {attempt + 1}/{max_retries + 1}), "
                    f"retrying in {delay * 1000:.0f}ms: {e}"
                )
                await self._wait(delay, service_id, attempt, cancel, e)

        # The loop either returns or raises
        raise AssertionError("unreachable")

    async def _wait(
        self,
        delay: float,
        service_id: str,
        attempt: int,
        cancel: asyncio.Event | None,
        last_error: Exception,
    ) -> None:
        if cancel is None:
            await self._sleep(delay)
            return

        if cancel.is_set():
            raise RetryAbortedError(service_id, attempt) from last_error

        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            waiter.cancel()

        if cancel.is_set():
            raise RetryAbortedError(service_id, attempt) from last_error
