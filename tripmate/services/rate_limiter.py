"""
RateLimiter - Token bucket admission control for a single service.

Tokens refill continuously at refill_rate per second up to max_tokens.
Refill is computed lazily whenever tokens are requested; there is no
background timer. A caller that finds too few tokens sleeps for exactly
the time the deficit needs to refill and then tries again.
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable

from loguru import logger


class RateLimiter:
    """
    Token bucket rate limiter.

    Usage:
        limiter = RateLimiter("openweathermap", max_tokens=60, refill_rate=1.0)
        await limiter.acquire()
        response = await make_request()
    """

    def __init__(
        self,
        service_id: str,
        max_tokens: float,
        refill_rate: float,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")

        self.service_id = service_id
        self.max_tokens = float(max_tokens)
        self.refill_rate = float(refill_rate)  # tokens per second
        self._clock = clock
        self._sleep = sleep

        self._tokens = self.max_tokens
        self._last_refill = clock()

    @property
    def tokens(self) -> float:
        """Token count as of the last refill."""
        return self._tokens

    @property
    def available_tokens(self) -> float:
        """Token count after applying any pending refill."""
        self.refill()
        return self._tokens

    def refill(self) -> None:
        """Add tokens for the time elapsed since the last refill."""
        now = self._clock()
        elapsed = (now - self._last_refill).total_seconds()
        if elapsed > 0:
            self._tokens = min(self.max_tokens, self._tokens + elapsed * self.refill_rate)
        self._last_refill = now

    def try_acquire(self, tokens: float = 1) -> bool:
        """Take tokens if they are available right now, without waiting."""
        self._validate(tokens)
        self.refill()
        if self._tokens >= tokens:
            self._tokens -= tokens
            return True
        return False

    def wait_time(self, tokens: float = 1) -> float:
        """Seconds until `tokens` would be available (0 if available now)."""
        self.refill()
        deficit = tokens - self._tokens
        if deficit <= 0:
            return 0.0
        return deficit / self.refill_rate

    async def acquire(self, tokens: float = 1) -> bool:
        """
        Wait until `tokens` are available, then deduct them.

        Raises:
            ValueError: If tokens is not positive or exceeds the bucket size
        """
        self._validate(tokens)

        while not self.try_acquire(tokens):
            delay = self.wait_time(tokens)
            logger.debug(
                f"Rate limiter '{self.service_id}' waiting {delay:.3f}s "
                f"for {tokens} token(s)"
            )
            await self._sleep(delay)

        return True

    def reset(self) -> None:
        """Refill the bucket to capacity."""
        self._tokens = self.max_tokens
        self._last_refill = self._clock()

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "service_id": self.service_id,
            "tokens": round(self.available_tokens, 3),
            "max_tokens": self.max_tokens,
            "refill_rate": self.refill_rate,
        }

    def _validate(self, tokens: float) -> None:
        if tokens <= 0:
            raise ValueError("tokens must be positive")
        if tokens > self.max_tokens:
            raise ValueError(
                f"Cannot acquire {tokens} tokens from a bucket of {self.max_tokens}"
            )
