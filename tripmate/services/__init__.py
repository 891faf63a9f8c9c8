"""
Service layer infrastructure - resilience patterns for external API calls.

Provides:
- TTLCache: In-memory cache with per-entry expiry
- RateLimiter: Token bucket per service
- RetryPolicy: Exponential backoff with jitter and cancellation
- CircuitBreaker: Prevents cascading failures
- Gateway: Unified HTTP client combining all patterns
"""

from tripmate.services.errors import (
    ApiError,
    ApiErrorType,
    CircuitOpenError,
    LocationNotFoundError,
    NotConfiguredError,
    RequestTimeoutError,
    RetryAbortedError,
    ServiceError,
    describe_error,
)
from tripmate.services.cache import CacheEntry, CacheStats, TTLCache
from tripmate.services.rate_limiter import RateLimiter
from tripmate.services.retry import RetryConfig, RetryPolicy
from tripmate.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from tripmate.services.gateway import Gateway, RequestOptions, ServiceConfig
from tripmate.services.sweeper import CacheSweeper

__all__ = [
    # Errors
    "ApiError",
    "ApiErrorType",
    "CircuitOpenError",
    "LocationNotFoundError",
    "NotConfiguredError",
    "RequestTimeoutError",
    "RetryAbortedError",
    "ServiceError",
    "describe_error",
    # Cache
    "CacheEntry",
    "CacheStats",
    "TTLCache",
    "CacheSweeper",
    # Rate limiting
    "RateLimiter",
    # Retry
    "RetryConfig",
    "RetryPolicy",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Gateway
    "Gateway",
    "RequestOptions",
    "ServiceConfig",
]
