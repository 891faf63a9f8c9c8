"""
Gateway - Resilient outbound HTTP calls to a fixed set of named services.

Every call is threaded through:
- CircuitBreaker (per service) gating whether the call is attempted at all
- RetryPolicy retrying transient failures with backoff
- A single HTTP attempt bounded by a timeout and an optional abort signal

Rate limiting and caching are applied by the caller (the service facade)
using the per-service RateLimiter this gateway owns.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from loguru import logger

from tripmate.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitBreakerState,
)
from tripmate.services.errors import (
    MalformedResponseError,
    NetworkError,
    QuotaExceededError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    ServiceError,
    UnauthorizedError,
    UnknownApiError,
    provider_name,
)
from tripmate.services.rate_limiter import RateLimiter
from tripmate.services.retry import RetryPolicy

T = TypeVar("T")

DEFAULT_TIMEOUT = 10.0


@dataclass
class RateLimitConfig:
    """Token bucket sizing for a service."""

    max_tokens: float
    refill_rate: float  # tokens per second


@dataclass
class ServiceConfig:
    """Configuration for a specific service."""

    service_id: str
    timeout: float = DEFAULT_TIMEOUT
    cache_ttl: timedelta = timedelta(hours=1)
    circuit_breaker_config: CircuitBreakerConfig = field(
        default_factory=CircuitBreakerConfig
    )
    rate_limit: RateLimitConfig = field(
        default_factory=lambda: RateLimitConfig(max_tokens=60, refill_rate=1.0)
    )


def default_services(timeout: float = DEFAULT_TIMEOUT) -> list[ServiceConfig]:
    """Service configurations sized to each provider's published limits."""
    return [
        ServiceConfig(
            service_id="openweathermap",
            timeout=timeout,
            cache_ttl=timedelta(minutes=30),
            circuit_breaker_config=CircuitBreakerConfig(
                failure_threshold=5,
                reset_timeout=timedelta(minutes=1),
                monitoring_period=timedelta(seconds=30),
            ),
            # 60 requests per minute
            rate_limit=RateLimitConfig(max_tokens=60, refill_rate=1.0),
        ),
        ServiceConfig(
            service_id="googleplaces",
            timeout=timeout,
            cache_ttl=timedelta(hours=1),
            circuit_breaker_config=CircuitBreakerConfig(
                failure_threshold=5,
                reset_timeout=timedelta(minutes=1),
                monitoring_period=timedelta(seconds=30),
            ),
            # 100 requests per 100 seconds
            rate_limit=RateLimitConfig(max_tokens=100, refill_rate=1.0),
        ),
        ServiceConfig(
            service_id="booking",
            timeout=timeout,
            cache_ttl=timedelta(hours=1),
            circuit_breaker_config=CircuitBreakerConfig(
                failure_threshold=3,
                reset_timeout=timedelta(seconds=90),
                monitoring_period=timedelta(seconds=45),
            ),
            # 50 requests per 10 seconds
            rate_limit=RateLimitConfig(max_tokens=50, refill_rate=5.0),
        ),
    ]


@dataclass
class RequestOptions:
    """Per-request HTTP options."""

    method: str = "GET"
    params: dict[str, Any] | None = None
    headers: dict[str, str] | None = None
    json_data: dict[str, Any] | None = None
    signal: asyncio.Event | None = None  # Set to abort the call


class ServiceRegistry:
    """
    Per-service breaker, limiter and configuration.

    One registry lives for the lifetime of a Gateway; every named service
    has independent state so one provider's outage does not throttle another.
    """

    def __init__(
        self,
        services: list[ServiceConfig] | None = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._configs: dict[str, ServiceConfig] = {}
        self._limiters: dict[str, RateLimiter] = {}
        self.breakers = CircuitBreakerRegistry(clock=clock)

        for config in services if services is not None else default_services():
            self.register(config)

    def register(self, config: ServiceConfig) -> None:
        """Register a service configuration."""
        self._configs[config.service_id] = config
        self.breakers.register(config.service_id, config.circuit_breaker_config)
        self._limiters[config.service_id] = RateLimiter(
            config.service_id,
            max_tokens=config.rate_limit.max_tokens,
            refill_rate=config.rate_limit.refill_rate,
            clock=self._clock,
            sleep=self._sleep,
        )
        logger.debug(f"Registered service: {config.service_id}")

    def __contains__(self, service_id: str) -> bool:
        return service_id in self._configs

    @property
    def service_ids(self) -> list[str]:
        return list(self._configs)

    def get_config(self, service_id: str) -> ServiceConfig:
        self._ensure_known(service_id)
        return self._configs[service_id]

    def get_breaker(self, service_id: str) -> CircuitBreaker:
        self._ensure_known(service_id)
        return self.breakers.get(service_id)

    def get_limiter(self, service_id: str) -> RateLimiter:
        self._ensure_known(service_id)
        return self._limiters[service_id]

    def get_all_limiter_status(self) -> dict[str, dict[str, Any]]:
        return {sid: limiter.get_status() for sid, limiter in self._limiters.items()}

    def _ensure_known(self, service_id: str) -> None:
        if service_id not in self._configs:
            raise ServiceError(f"Unknown service ID: {service_id}", service_id=service_id)


class Gateway:
    """
    Unified HTTP gateway with circuit breaker, retry and timeout handling.

    Usage:
        async with Gateway() as gateway:
            limiter = gateway.get_rate_limiter("openweathermap")
            await limiter.acquire()
            data = await gateway.fetch_json(
                "https://api.openweathermap.org/data/2.5/weather",
                RequestOptions(params={"q": "Tokyo", "appid": key}),
                service_id="openweathermap",
            )
    """

    def __init__(
        self,
        services: list[ServiceConfig] | None = None,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.registry = ServiceRegistry(services, clock=clock, sleep=sleep)
        self._retry = retry_policy or RetryPolicy(sleep=sleep)
        self._transport = transport

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(DEFAULT_TIMEOUT),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    def get_rate_limiter(self, service_id: str) -> RateLimiter:
        return self.registry.get_limiter(service_id)

    async def fetch(
        self,
        url: str,
        options: RequestOptions | None = None,
        *,
        service_id: str,
        timeout: float | None = None,
    ) -> httpx.Response:
        """
        Perform one logical outbound call.

        Returns:
            The successful (2xx) response

        Raises:
            CircuitOpenError: If the circuit breaker is open
            RequestTimeoutError: If every attempt timed out or was aborted
            ApiError: For classified HTTP and network failures
            RetryAbortedError: If the abort signal fired between attempts
        """
        options = options or RequestOptions()
        req_timeout = timeout or self.registry.get_config(service_id).timeout

        async def attempt() -> httpx.Response:
            return await self._execute_request(url, options, service_id, req_timeout)

        return await self._run(attempt, service_id, options)

    async def fetch_json(
        self,
        url: str,
        options: RequestOptions | None = None,
        *,
        service_id: str,
        timeout: float | None = None,
        validate: Callable[[Any], None] | None = None,
    ) -> Any:
        """
        Like fetch(), but decode the JSON body inside the attempt.

        `validate` may raise a ServiceError for provider errors reported in a
        2xx body; it runs within the breaker so such errors are counted.
        """
        options = options or RequestOptions()
        req_timeout = timeout or self.registry.get_config(service_id).timeout

        async def attempt() -> Any:
            response = await self._execute_request(url, options, service_id, req_timeout)
            try:
                body = response.json()
            except ValueError as e:
                raise MalformedResponseError(
                    f"{provider_name(service_id)} returned a malformed response",
                    service_id=service_id,
                    status_code=response.status_code,
                ) from e
            if validate is not None:
                validate(body)
            return body

        return await self._run(attempt, service_id, options)

    async def _run(
        self,
        attempt: Callable[[], Awaitable[T]],
        service_id: str,
        options: RequestOptions,
    ) -> T:
        breaker = self.registry.get_breaker(service_id)
        return await breaker.execute(
            lambda: self._retry.execute(attempt, service_id, options.signal),
            service_id,
        )

    async def _execute_request(
        self,
        url: str,
        options: RequestOptions,
        service_id: str,
        timeout: float,
    ) -> httpx.Response:
        """Execute a single HTTP attempt, racing timeout and abort signal."""
        signal = options.signal
        if signal is not None and signal.is_set():
            raise RequestTimeoutError(
                service_id,
                timeout,
                message=f"Request to service '{service_id}' was aborted",
            )

        client = await self._get_http_client()
        request = asyncio.ensure_future(
            client.request(
                method=options.method,
                url=url,
                params=options.params,
                headers=options.headers,
                json=options.json_data,
                timeout=timeout,
            )
        )
        waiters: set[asyncio.Future[Any]] = {request}
        aborted: asyncio.Future[Any] | None = None
        if signal is not None:
            aborted = asyncio.ensure_future(signal.wait())
            waiters.add(aborted)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            pending = [task for task in waiters if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if request not in done:
            if aborted is not None and aborted in done:
                raise RequestTimeoutError(
                    service_id,
                    timeout,
                    message=f"Request to service '{service_id}' was aborted",
                )
            raise RequestTimeoutError(service_id, timeout)

        try:
            response = request.result()
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(service_id, timeout) from e
        except httpx.RequestError as e:
            raise NetworkError(
                f"Network error calling {provider_name(service_id)}: {e}",
                service_id=service_id,
            ) from e

        if not response.is_success:
            raise_for_status(response, service_id, url)

        return response

    # Health and status methods

    def get_circuit_breaker_state(self, service_id: str) -> CircuitBreakerState | None:
        """Get circuit breaker state for monitoring."""
        if service_id not in self.registry:
            return None
        return self.registry.get_breaker(service_id).get_state()

    def reset_circuit_breaker(self, service_id: str) -> bool:
        """Reset circuit breaker for a service."""
        return self.registry.breakers.reset(service_id)

    def reset_all_circuit_breakers(self) -> None:
        self.registry.breakers.reset_all()

    def get_health_status(self) -> dict[str, Any]:
        """Get health status of all services."""
        return {
            "circuit_breakers": self.registry.breakers.get_all_status(),
            "rate_limiters": self.registry.get_all_limiter_status(),
            "open_circuits": self.registry.breakers.get_open_circuits(),
        }

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("Gateway closed")

    async def __aenter__(self) -> "Gateway":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


UNAUTHORIZED_MESSAGES = {
    "openweathermap": (
        "Invalid OpenWeatherMap API key. "
        "Please check your API key configuration in settings."
    ),
    "googleplaces": (
        "Invalid Google Places API key. Please check your API key configuration "
        "in settings and verify that the Places API is enabled."
    ),
    "booking": "Invalid Booking API key. Please check your API key configuration.",
}

QUOTA_MESSAGES = {
    "openweathermap": (
        "OpenWeatherMap API quota exceeded. Please upgrade your plan "
        "or wait for the quota to reset."
    ),
    "googleplaces": (
        "Google Places API quota exceeded. Please check your Google Cloud "
        "Console for billing details and quota limits."
    ),
    "booking": "Booking API quota exceeded. Please check your API usage limits.",
}


def raise_for_status(response: httpx.Response, service_id: str, url: str) -> None:
    """Translate a non-2xx response into a typed ApiError."""
    status = response.status_code
    detail = response.reason_phrase or ""
    body_says_quota = False

    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        if service_id == "openweathermap":
            detail = str(body.get("message") or body.get("error") or detail)
            body_says_quota = str(body.get("cod")) == "429"
        elif service_id in ("googleplaces", "booking"):
            detail = str(body.get("error_message") or body.get("error") or detail)
            body_says_quota = body.get("status") == "OVER_QUERY_LIMIT"
        else:
            detail = str(body.get("error") or body.get("message") or detail)

    name = provider_name(service_id)
    logger.debug(f"{name} returned HTTP {status} for {url.split('?')[0]}")

    if status in (401, 403):
        message = UNAUTHORIZED_MESSAGES.get(service_id, f"Invalid {name} API key.")
        raise UnauthorizedError(
            f"{name} API error ({status}): {message}",
            service_id=service_id,
            status_code=status,
        )

    if status == 429:
        retry_after = _parse_retry_after(response.headers.get("Retry-After"))
        if retry_after is not None:
            raise RateLimitError(service_id, retry_after=retry_after)
        message = QUOTA_MESSAGES.get(service_id, f"{name} API quota exceeded.")
        raise QuotaExceededError(
            f"{name} API error ({status}): {message}",
            service_id=service_id,
            status_code=status,
        )

    if status in (408, 504):
        raise RequestTimeoutError(
            service_id,
            DEFAULT_TIMEOUT,
            status_code=status,
            message=f"{name} API error ({status}): {detail or 'gateway timeout'}",
        )

    if status >= 500:
        raise ServerError(
            f"{name} API error ({status}): The {name} service is currently "
            f"experiencing issues. Please try again later.",
            service_id=service_id,
            status_code=status,
        )

    if body_says_quota:
        message = QUOTA_MESSAGES.get(service_id, f"{name} API quota exceeded.")
        raise QuotaExceededError(
            f"{name} API error ({status}): {message}",
            service_id=service_id,
            status_code=status,
        )

    raise UnknownApiError(
        f"{name} API error ({status}): {detail}",
        service_id=service_id,
        status_code=status,
    )


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
