"""
ExternalApiService - one method per capability for the planning assistant.

Each call goes: cache → rate limiter → gateway (breaker → retry → HTTP),
and the mapped result is written back to the cache. Results are tagged
with their provenance: "api", "cache" or "mock".

Concurrent identical requests are not de-duplicated: callers that miss the
cache at the same time each reach the provider.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Literal

from loguru import logger

from tripmate.datasource.base import BaseDataSource
from tripmate.datasource.mock import MockDataSource
from tripmate.datasource.models import (
    DateRange,
    Hotel,
    Place,
    PlaceType,
    WeatherResult,
    with_source,
)
from tripmate.datasource.places.google_places import GooglePlacesSource
from tripmate.datasource.places.lodging import LodgingSource
from tripmate.datasource.weather.openweathermap import OpenWeatherMapSource
from tripmate.services.cache import TTLCache
from tripmate.services.errors import NotConfiguredError
from tripmate.services.gateway import Gateway
from tripmate.services.sweeper import CacheSweeper
from tripmate.settings import Settings, global_settings, load_settings

FetchMode = Literal["api", "proxy", "mock"]


class ExternalApiService:
    """
    Facade over the weather, places and hotel providers.

    Usage:
        async with Gateway() as gateway:
            service = ExternalApiService(gateway)
            weather = await service.get_weather("Tokyo")
            print(weather.source)  # "api", then "cache" on a repeat call
    """

    def __init__(
        self,
        gateway: Gateway,
        settings: Settings | None = None,
        cache: TTLCache | None = None,
        mock: MockDataSource | None = None,
    ):
        settings = settings or global_settings
        self.gateway = gateway
        self.settings = settings
        # An empty TTLCache is falsy, so test against None
        if cache is None:
            cache = TTLCache(
                default_ttl=timedelta(minutes=settings.cache_default_ttl_minutes),
                debug=settings.cache_debug,
            )
        self.cache = cache
        self.sweeper = CacheSweeper(self.cache, settings.cache_cleanup_interval_minutes)
        self.mock = mock or MockDataSource(currency=settings.hotel_currency)

        proxy_url = settings.proxy_base_url if settings.use_proxy else None
        self.weather = OpenWeatherMapSource(
            gateway,
            api_key=settings.openweather_api_key,
            language=settings.weather_language,
            proxy_base_url=proxy_url,
        )
        self.places = GooglePlacesSource(
            gateway,
            api_key=settings.google_places_api_key,
            language=settings.api_language,
            proxy_base_url=proxy_url,
        )
        self.lodging = LodgingSource(self.places, currency=settings.hotel_currency)
        self.booking_api_key = settings.booking_api_key
        self.use_mock_data = settings.use_mock_data

    # Weather

    async def get_weather(
        self, city: str, signal: asyncio.Event | None = None
    ) -> WeatherResult:
        """Current conditions and a 5-day forecast for a city."""
        city = city.strip()
        if not city:
            raise ValueError("city must not be empty")

        cache_key = self.cache.generate_key("weather", {"city": city})
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached.model_copy(update={"source": "cache"}, deep=True)

        mode = self._fetch_mode(self.weather, "OPENWEATHER_API_KEY")
        if mode == "mock":
            return self.mock.weather(city)

        await self._acquire(self.weather.service_id)
        if mode == "api":
            result = await self.weather.fetch_weather(city, signal=signal)
        else:
            result = await self.weather.fetch_weather_via_proxy(city, signal=signal)

        self._store(
            self.weather.service_id,
            cache_key,
            result.model_copy(update={"cached_at": datetime.now()}, deep=True),
        )
        return result

    # Places

    async def search_places(
        self,
        query: str,
        location: str,
        place_type: PlaceType | str = PlaceType.ATTRACTION,
        signal: asyncio.Event | None = None,
    ) -> list[Place]:
        """Search attractions, restaurants, hotels or shopping near a location."""
        place_type = PlaceType(place_type)
        if not location.strip():
            raise ValueError("location must not be empty")

        cache_key = self.cache.generate_key(
            "places",
            {"type": place_type, "query": query, "location": location},
        )
        cached = self.cache.get(cache_key)
        if cached is not None:
            return with_source(cached, "cache")

        mode = self._fetch_mode(self.places, "GOOGLE_PLACES_API_KEY")
        if mode == "mock":
            return self.mock.places(query, location, place_type)

        await self._acquire(self.places.service_id)
        if mode == "api":
            places = await self.places.search(query, location, place_type, signal=signal)
        else:
            places = await self.places.search_via_proxy(
                query, location, place_type, signal=signal
            )

        self._store(
            self.places.service_id,
            cache_key,
            [place.model_copy(deep=True) for place in places],
        )
        return places

    # Hotels

    async def search_hotels(
        self,
        location: str,
        dates: DateRange,
        signal: asyncio.Event | None = None,
    ) -> list[Hotel]:
        """Search lodging for a stay."""
        if not location.strip():
            raise ValueError("location must not be empty")

        cache_key = self.cache.generate_key(
            "hotels",
            {"location": location, "start": dates.start_date, "end": dates.end_date},
        )
        cached = self.cache.get(cache_key)
        if cached is not None:
            return with_source(cached, "cache")

        # Hotel search runs on the Places credential
        mode = self._fetch_mode(self.lodging, "GOOGLE_PLACES_API_KEY", self.places.service_id)
        if mode == "mock":
            return self.mock.hotels(location, dates)

        await self._acquire(self.lodging.service_id)
        if mode == "api":
            hotels = await self.lodging.search_hotels(location, dates, signal=signal)
        else:
            hotels = await self.lodging.search_hotels_via_proxy(location, dates, signal=signal)

        self._store(
            self.lodging.service_id,
            cache_key,
            [hotel.model_copy(deep=True) for hotel in hotels],
        )
        return hotels

    # Configuration and maintenance

    def get_api_status(self) -> dict[str, bool]:
        """Whether a credential is configured, per provider."""
        return {
            self.weather.service_id: self.weather.is_configured(),
            self.places.service_id: self.places.is_configured(),
            self.lodging.service_id: bool(self.booking_api_key),
        }

    def set_api_keys(
        self,
        open_weather_map: str | None = None,
        google_places: str | None = None,
        booking: str | None = None,
    ) -> None:
        """Set provider keys at runtime. None leaves a key as is; "" clears it."""
        if open_weather_map is not None:
            self.weather.api_key = open_weather_map
        if google_places is not None:
            self.places.api_key = google_places
        if booking is not None:
            self.booking_api_key = booking
        logger.info(f"API keys updated: {self.get_api_status()}")

    def refresh_api_keys(self, settings: Settings | None = None) -> None:
        """Reload keys from settings (the environment by default)."""
        settings = settings or load_settings()
        self.set_api_keys(
            open_weather_map=settings.openweather_api_key,
            google_places=settings.google_places_api_key,
            booking=settings.booking_api_key,
        )

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("External API cache cleared")

    def reset_circuit_breaker(self, service_id: str) -> bool:
        return self.gateway.reset_circuit_breaker(service_id)

    def reset_all_circuit_breakers(self) -> None:
        self.gateway.reset_all_circuit_breakers()

    def get_health_status(self) -> dict[str, Any]:
        """Breakers, limiters, cache statistics and credential status."""
        status = self.gateway.get_health_status()
        status["cache"] = self.cache.get_stats().to_dict()
        status["api_keys"] = self.get_api_status()
        return status

    def start(self) -> None:
        """Start the periodic cache sweep (needs a running event loop)."""
        self.sweeper.start()

    def stop(self) -> None:
        if self.sweeper.is_running():
            self.sweeper.stop()

    def _fetch_mode(
        self,
        source: BaseDataSource | LodgingSource,
        setting: str,
        credential_service_id: str | None = None,
    ) -> FetchMode:
        if source.is_configured():
            return "api"
        if source.can_use_proxy():
            return "proxy"
        if self.use_mock_data:
            logger.debug(f"No key for {source.service_id}, serving mock data")
            return "mock"
        raise NotConfiguredError(credential_service_id or source.service_id, setting)

    async def _acquire(self, service_id: str) -> None:
        await self.gateway.get_rate_limiter(service_id).acquire()

    def _store(self, service_id: str, cache_key: str, data: Any) -> None:
        ttl = self.gateway.registry.get_config(service_id).cache_ttl
        self.cache.set(cache_key, data, ttl)
