"""
Base data source interface.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable

from tripmate.services.gateway import Gateway, RequestOptions


class BaseDataSource(ABC):
    """
    Abstract base class for provider data sources.

    All data sources should:
    - Use the Gateway for HTTP requests (circuit breaker, retry, timeout)
    - Map provider payloads into the domain models
    - Let gateway errors propagate; never turn failures into empty results
    """

    def __init__(
        self,
        gateway: Gateway,
        api_key: str = "",
        proxy_base_url: str | None = None,
    ):
        self.gateway = gateway
        self.api_key = api_key
        self.proxy_base_url = proxy_base_url.rstrip("/") if proxy_base_url else None

    @property
    @abstractmethod
    def service_id(self) -> str:
        """Unique identifier for this data source."""
        ...

    def is_configured(self) -> bool:
        """Check if the data source has a credential."""
        return bool(self.api_key)

    def can_use_proxy(self) -> bool:
        return bool(self.proxy_base_url)

    async def _get_json(
        self,
        url: str,
        params: dict[str, Any],
        service_id: str | None = None,
        validate: Callable[[Any], None] | None = None,
        signal: asyncio.Event | None = None,
    ) -> Any:
        return await self.gateway.fetch_json(
            url,
            RequestOptions(params=params, signal=signal),
            service_id=service_id or self.service_id,
            validate=validate,
        )
