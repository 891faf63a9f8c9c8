"""
Test the ExternalApiService facade end to end against mocked providers
"""
import asyncio
from datetime import date

import httpx
import pytest

from tests.payloads import ProviderRouter, current_weather, geocode
from tripmate.datasource.facade import ExternalApiService
from tripmate.datasource.models import DateRange, PlaceType
from tripmate.services.cache import TTLCache
from tripmate.services.circuit_breaker import CircuitState
from tripmate.services.errors import (
    CircuitOpenError,
    LocationNotFoundError,
    NotConfiguredError,
    QuotaExceededError,
    RetryAbortedError,
    ServerError,
    UnauthorizedError,
)
from tripmate.services.gateway import Gateway
from tripmate.services.retry import RetryConfig, RetryPolicy
from tripmate.settings import Settings

STAY = DateRange(start_date=date(2024, 6, 1), end_date=date(2024, 6, 4))


def make_service(router, clock, sleep, max_retries=0, **settings):
    gateway = Gateway(
        retry_policy=RetryPolicy(RetryConfig(max_retries=max_retries), sleep=sleep),
        transport=httpx.MockTransport(router),
        clock=clock,
        sleep=sleep,
    )
    values = {"openweather_api_key": "owm-key", "google_places_api_key": "gp-key"}
    values.update(settings)
    return ExternalApiService(
        gateway,
        settings=Settings(**values),
        cache=TTLCache(clock=clock),
    )


class TestWeather:
    @pytest.mark.asyncio
    async def test_maps_current_and_forecast(self, clock, sleep):
        router = ProviderRouter()
        service = make_service(router, clock, sleep)

        weather = await service.get_weather("Tokyo")

        assert weather.source == "api"
        assert weather.city == "Tokyo"
        assert weather.country == "JP"
        assert weather.current.temp == 22
        assert weather.current.feels_like == 20
        assert weather.current.description == "多云"
        # Six days of readings, capped at five midday entries
        assert len(weather.forecast) == 5
        assert all(day.date.hour == 12 for day in weather.forecast)
        assert weather.forecast[0].temp_max == 22

        params = router.requests[0].url.params
        assert params["appid"] == "owm-key"
        assert params["units"] == "metric"
        assert params["lang"] == "zh_cn"
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self, clock, sleep):
        router = ProviderRouter()
        service = make_service(router, clock, sleep)

        first = await service.get_weather("Tokyo")
        second = await service.get_weather(" tokyo ")

        assert first.source == "api"
        assert first.cached_at is None
        assert second.source == "cache"
        assert second.cached_at is not None
        assert second.current == first.current
        assert router.calls["/data/2.5/weather"] == 1
        assert router.calls["/data/2.5/forecast"] == 1
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_cache_expires_after_service_ttl(self, clock, sleep):
        """Weather results are cached for thirty minutes"""
        router = ProviderRouter()
        service = make_service(router, clock, sleep)

        await service.get_weather("Tokyo")
        clock.advance(31 * 60)
        refreshed = await service.get_weather("Tokyo")

        assert refreshed.source == "api"
        assert router.calls["/data/2.5/weather"] == 2
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_consumes_a_rate_limit_token(self, clock, sleep):
        service = make_service(ProviderRouter(), clock, sleep)

        await service.get_weather("Tokyo")

        assert service.gateway.get_rate_limiter("openweathermap").tokens == 59
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_empty_city_is_rejected(self, clock, sleep):
        service = make_service(ProviderRouter(), clock, sleep)
        with pytest.raises(ValueError):
            await service.get_weather("  ")

    @pytest.mark.asyncio
    async def test_invalid_key(self, clock, sleep):
        router = ProviderRouter(
            {"/data/2.5/weather": lambda r: httpx.Response(401, json={"cod": 401, "message": "Invalid API key"})}
        )
        service = make_service(router, clock, sleep)

        with pytest.raises(UnauthorizedError, match="Invalid OpenWeatherMap API key"):
            await service.get_weather("Tokyo")
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, clock, sleep):
        responses = iter([httpx.Response(500), httpx.Response(200, json=current_weather())])
        router = ProviderRouter({"/data/2.5/weather": lambda r: next(responses)})
        service = make_service(router, clock, sleep)

        with pytest.raises(ServerError):
            await service.get_weather("Tokyo")
        weather = await service.get_weather("Tokyo")

        assert weather.source == "api"
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_injected_cache_is_used_even_when_empty(self, clock, sleep):
        cache = TTLCache(clock=clock)
        gateway = Gateway(transport=httpx.MockTransport(ProviderRouter()), clock=clock, sleep=sleep)
        service = ExternalApiService(
            gateway,
            settings=Settings(openweather_api_key="owm-key"),
            cache=cache,
        )

        assert len(cache) == 0
        assert service.cache is cache

        await service.get_weather("Tokyo")
        assert len(cache) == 1
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_changing_a_result_leaves_the_cache_intact(self, clock, sleep):
        service = make_service(ProviderRouter(), clock, sleep)

        weather = await service.get_weather("Tokyo")
        weather.forecast.clear()
        weather.current.temp = -40

        cached = await service.get_weather("Tokyo")
        assert cached.source == "cache"
        assert len(cached.forecast) == 5
        assert cached.current.temp == 22

        cached.forecast.clear()
        assert len((await service.get_weather("Tokyo")).forecast) == 5
        await service.gateway.close()


class TestPlaces:
    @pytest.mark.asyncio
    async def test_geocodes_then_searches(self, clock, sleep):
        router = ProviderRouter()
        service = make_service(router, clock, sleep)

        places = await service.search_places("temples", "Tokyo", PlaceType.ATTRACTION)

        assert [p.name for p in places] == ["Senso-ji", "Tokyo Tower"]
        senso = places[0]
        assert senso.source == "api"
        assert senso.type == PlaceType.ATTRACTION
        assert senso.address == "2-3-1 Asakusa, Taito City"
        assert senso.opening_hours == "营业中"
        assert senso.photos[0].endswith("photoreference=ref-1&key=gp-key")
        assert places[1].address == "4-2-8 Shibakoen, Minato City"
        assert places[1].coordinates is None

        search = router.requests[-1].url.params
        assert search["type"] == "tourist_attraction"
        assert search["location"] == "35.6762,139.6503"
        assert search["radius"] == "10000"
        assert search["language"] == "zh"
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_type_accepts_plain_strings(self, clock, sleep):
        router = ProviderRouter()
        service = make_service(router, clock, sleep)

        places = await service.search_places("sushi", "Tokyo", "restaurant")

        assert places[0].type == PlaceType.RESTAURANT
        assert router.requests[-1].url.params["type"] == "restaurant"
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_unknown_type_is_rejected(self, clock, sleep):
        service = make_service(ProviderRouter(), clock, sleep)
        with pytest.raises(ValueError):
            await service.search_places("x", "Tokyo", "museum")

    @pytest.mark.asyncio
    async def test_unknown_location(self, clock, sleep):
        """An empty geocode is an error, not an empty list, and does not trip the breaker"""
        router = ProviderRouter(
            {"/maps/api/geocode/json": lambda r: httpx.Response(200, json=geocode(None))}
        )
        service = make_service(router, clock, sleep)

        with pytest.raises(LocationNotFoundError):
            await service.search_places("temples", "Atlantis")

        assert router.calls["/maps/api/place/textsearch/json"] == 0
        assert service.gateway.registry.get_breaker("googleplaces").failure_count == 0
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_over_query_limit_in_body(self, clock, sleep):
        router = ProviderRouter(
            {
                "/maps/api/place/textsearch/json": lambda r: httpx.Response(
                    200, json={"status": "OVER_QUERY_LIMIT", "results": []}
                )
            }
        )
        service = make_service(router, clock, sleep)

        with pytest.raises(QuotaExceededError):
            await service.search_places("temples", "Tokyo")

        assert service.gateway.registry.get_breaker("googleplaces").failure_count == 1
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_request_denied_in_body(self, clock, sleep):
        router = ProviderRouter(
            {
                "/maps/api/geocode/json": lambda r: httpx.Response(
                    200, json={"status": "REQUEST_DENIED", "error_message": "API key invalid"}
                )
            }
        )
        service = make_service(router, clock, sleep)

        with pytest.raises(UnauthorizedError, match="API key invalid"):
            await service.search_places("temples", "Tokyo")
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_changing_results_leaves_the_cache_intact(self, clock, sleep):
        router = ProviderRouter()
        service = make_service(router, clock, sleep)

        places = await service.search_places("temples", "Tokyo")
        places[0].photos.clear()
        places.clear()

        cached = await service.search_places("temples", "Tokyo")
        assert [p.name for p in cached] == ["Senso-ji", "Tokyo Tower"]
        assert {p.source for p in cached} == {"cache"}
        assert cached[0].photos
        assert router.calls["/maps/api/place/textsearch/json"] == 1
        await service.gateway.close()


class TestHotels:
    @pytest.mark.asyncio
    async def test_lodging_search_with_price_estimates(self, clock, sleep):
        router = ProviderRouter()
        service = make_service(router, clock, sleep)

        hotels = await service.search_hotels("Tokyo", STAY)

        assert hotels[0].name == "Senso-ji"
        assert hotels[0].price_per_night.amount == 400
        assert hotels[0].price_per_night.currency == "CNY"
        assert hotels[1].price_per_night is None
        assert all(h.source == "api" for h in hotels)
        assert router.requests[-1].url.params["type"] == "lodging"
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_hotels_use_their_own_breaker_and_limiter(self, clock, sleep):
        router = ProviderRouter()
        service = make_service(router, clock, sleep)

        await service.search_hotels("Tokyo", STAY)

        gateway = service.gateway
        assert gateway.get_rate_limiter("booking").tokens == 49
        assert gateway.get_rate_limiter("googleplaces").tokens == 100
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_cache_key_includes_dates(self, clock, sleep):
        router = ProviderRouter()
        service = make_service(router, clock, sleep)
        other_stay = DateRange(start_date=date(2024, 7, 1), end_date=date(2024, 7, 2))

        await service.search_hotels("Tokyo", STAY)
        await service.search_hotels("Tokyo", other_stay)
        cached = await service.search_hotels("Tokyo", STAY)

        assert router.calls["/maps/api/place/textsearch/json"] == 2
        assert all(h.source == "cache" for h in cached)
        await service.gateway.close()


class TestTokyoTrip:
    @pytest.mark.asyncio
    async def test_each_endpoint_called_once_across_repeat_requests(self, clock, sleep):
        """A repeat of the whole trip lookup is answered entirely from cache"""
        router = ProviderRouter()
        service = make_service(router, clock, sleep)

        weather = await service.get_weather("Tokyo")
        places = await service.search_places("temples", "Tokyo")
        hotels = await service.search_hotels("Tokyo", STAY)
        assert {weather.source, places[0].source, hotels[0].source} == {"api"}

        weather = await service.get_weather("Tokyo")
        places = await service.search_places("temples", "Tokyo")
        hotels = await service.search_hotels("Tokyo", STAY)
        assert {weather.source, places[0].source, hotels[0].source} == {"cache"}

        assert router.calls["/data/2.5/weather"] == 1
        assert router.calls["/data/2.5/forecast"] == 1
        # One geocode and one search each for places and hotels
        assert router.calls["/maps/api/geocode/json"] == 2
        assert router.calls["/maps/api/place/textsearch/json"] == 2

        stats = service.get_health_status()["cache"]
        assert stats["hits"] == 3
        assert stats["size"] == 3
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_outage_opens_circuit_without_further_requests(self, clock, sleep):
        router = ProviderRouter({"/data/2.5/weather": lambda r: httpx.Response(500)})
        service = make_service(router, clock, sleep)

        for _ in range(5):
            with pytest.raises(ServerError):
                await service.get_weather("Tokyo")

        with pytest.raises(CircuitOpenError):
            await service.get_weather("Tokyo")

        assert router.calls["/data/2.5/weather"] == 5
        assert service.get_health_status()["open_circuits"] == ["openweathermap"]

        # Places keep working while weather is down
        places = await service.search_places("temples", "Tokyo")
        assert places

        assert service.reset_circuit_breaker("openweathermap") is True
        state = service.gateway.get_circuit_breaker_state("openweathermap")
        assert state.state == CircuitState.CLOSED
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_places_outage_opens_circuit_without_further_requests(self, clock, sleep):
        router = ProviderRouter({"/maps/api/geocode/json": lambda r: httpx.Response(500)})
        service = make_service(router, clock, sleep)

        for _ in range(5):
            with pytest.raises(ServerError):
                await service.search_places("temples", "Tokyo")

        with pytest.raises(CircuitOpenError):
            await service.search_places("temples", "Tokyo")

        assert router.calls["/maps/api/geocode/json"] == 5
        assert router.calls["/maps/api/place/textsearch/json"] == 0
        assert service.get_health_status()["open_circuits"] == ["googleplaces"]

        # Weather keeps working while places are down
        weather = await service.get_weather("Tokyo")
        assert weather.source == "api"
        await service.gateway.close()

    @pytest.mark.asyncio
    async def test_abort_signal(self, clock, sleep):
        router = ProviderRouter()
        service = make_service(router, clock, sleep, max_retries=2)
        signal = asyncio.Event()
        signal.set()

        with pytest.raises(RetryAbortedError):
            await service.get_weather("Tokyo", signal=signal)

        assert router.calls["/data/2.5/weather"] == 0
        await service.gateway.close()


class TestKeylessModes:
    @pytest.mark.asyncio
    async def test_missing_key_raises_not_configured(self, clock, sleep):
        router = ProviderRouter()
        service = make_service(router, clock, sleep, openweather_api_key="")

        with pytest.raises(NotConfiguredError, match="OPENWEATHER_API_KEY"):
            await service.get_weather("Tokyo")

        assert router.requests == []

    @pytest.mark.asyncio
    async def test_hotels_need_places_key(self, clock, sleep):
        service = make_service(ProviderRouter(), clock, sleep, google_places_api_key="")

        with pytest.raises(NotConfiguredError) as exc_info:
            await service.search_hotels("Tokyo", STAY)

        assert exc_info.value.setting == "GOOGLE_PLACES_API_KEY"
        assert "Google Places" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_mock_mode(self, clock, sleep):
        router = ProviderRouter()
        service = make_service(
            router,
            clock,
            sleep,
            openweather_api_key="",
            google_places_api_key="",
            use_mock_data=True,
        )

        weather = await service.get_weather("Tokyo")
        places = await service.search_places("temples", "Tokyo", PlaceType.SHOPPING)
        hotels = await service.search_hotels("Tokyo", STAY)

        assert weather.source == "mock"
        assert len(weather.forecast) == 5
        assert {p.type for p in places} == {PlaceType.SHOPPING}
        assert all(h.source == "mock" and h.price_per_night for h in hotels)
        assert router.requests == []
        # Deterministic for the same inputs
        assert await service.get_weather("Tokyo") == weather

    @pytest.mark.asyncio
    async def test_proxy_mode(self, clock, sleep):
        router = ProviderRouter(
            {
                "/api/weather": lambda r: httpx.Response(
                    200, json={"current": current_weather(), "forecast": None}
                ),
            }
        )
        service = make_service(
            router,
            clock,
            sleep,
            openweather_api_key="",
            use_proxy=True,
            proxy_base_url="http://proxy.test/",
        )

        weather = await service.get_weather("Tokyo")

        assert weather.source == "api"
        assert weather.forecast == []
        request = router.requests[0]
        assert request.url.host == "proxy.test"
        assert request.url.params["city"] == "Tokyo"
        assert "appid" not in request.url.params
        await service.gateway.close()


class TestKeyManagement:
    def test_api_status(self, clock, sleep):
        service = make_service(ProviderRouter(), clock, sleep)
        assert service.get_api_status() == {
            "openweathermap": True,
            "googleplaces": True,
            "booking": False,
        }

    def test_set_api_keys(self, clock, sleep):
        """None leaves a key alone; an empty string clears it"""
        service = make_service(ProviderRouter(), clock, sleep)

        service.set_api_keys(google_places="", booking="bk-key")

        assert service.get_api_status() == {
            "openweathermap": True,
            "googleplaces": False,
            "booking": True,
        }

    def test_refresh_api_keys(self, clock, sleep):
        service = make_service(ProviderRouter(), clock, sleep)

        service.refresh_api_keys(Settings(openweather_api_key="", google_places_api_key="new"))

        assert service.weather.api_key == ""
        assert service.places.api_key == "new"

    @pytest.mark.asyncio
    async def test_new_key_is_used_on_next_call(self, clock, sleep):
        router = ProviderRouter()
        service = make_service(router, clock, sleep)

        service.set_api_keys(open_weather_map="rotated")
        await service.get_weather("Tokyo")

        assert router.requests[0].url.params["appid"] == "rotated"
        await service.gateway.close()


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_clear_cache(self, clock, sleep):
        router = ProviderRouter()
        service = make_service(router, clock, sleep)

        await service.get_weather("Tokyo")
        service.clear_cache()
        weather = await service.get_weather("Tokyo")

        assert weather.source == "api"
        assert router.calls["/data/2.5/weather"] == 2
        await service.gateway.close()

    def test_reset_unknown_breaker(self, clock, sleep):
        service = make_service(ProviderRouter(), clock, sleep)
        assert service.reset_circuit_breaker("yelp") is False

    def test_health_status(self, clock, sleep):
        service = make_service(ProviderRouter(), clock, sleep)
        service.reset_all_circuit_breakers()

        health = service.get_health_status()

        assert set(health) == {
            "circuit_breakers",
            "rate_limiters",
            "open_circuits",
            "cache",
            "api_keys",
        }
        assert health["open_circuits"] == []
