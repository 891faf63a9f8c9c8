"""FastAPI key proxy: forwards weather and places calls with server-side keys."""

from typing import Any, Callable

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response
from loguru import logger

from tripmate.datasource.places.google_places import (
    PHOTO_MAX_WIDTH,
    SEARCH_RADIUS_METERS,
    GooglePlacesSource,
    status_validator,
)
from tripmate.datasource.weather.openweathermap import OpenWeatherMapSource
from tripmate.exceptions import BadRequestError, ProxyError, to_proxy_error
from tripmate.services.errors import ApiError, NotConfiguredError, ServiceError
from tripmate.services.gateway import Gateway, RequestOptions
from tripmate.settings import Settings, global_settings

WEATHER_CACHE_CONTROL = "s-maxage=600, stale-while-revalidate=300"
PLACES_CACHE_CONTROL = "s-maxage=3600, stale-while-revalidate=600"
STATIC_CACHE_CONTROL = "s-maxage=86400, stale-while-revalidate=3600"


class ProxyServer:
    """HTTP server holding the provider keys so clients never see them."""

    def __init__(self, gateway: Gateway, settings: Settings | None = None):
        settings = settings or global_settings
        self.gateway = gateway
        self.settings = settings
        self.app = FastAPI(title="TripMate API Proxy")

        self.weather_service_id = OpenWeatherMapSource.SERVICE_ID
        self.places_service_id = GooglePlacesSource.SERVICE_ID

        # Register routes
        self.app.get("/api/weather")(self.weather)
        self.app.get("/api/places")(self.places)
        self.app.get("/health")(self.health_check)

        self.app.exception_handler(ProxyError)(self.handle_proxy_error)
        self.app.exception_handler(ServiceError)(self.handle_service_error)

    async def weather(self, city: str | None = Query(None)):
        """Current weather plus forecast for a city.

        Returns:
            {"current": <weather payload>, "forecast": <forecast payload> | null}
        """
        if not city:
            raise BadRequestError("city parameter is required")

        key = self.settings.openweather_api_key
        if not key:
            raise NotConfiguredError(self.weather_service_id, "OPENWEATHER_API_KEY")

        params = {
            "q": city,
            "appid": key,
            "units": "metric",
            "lang": self.settings.weather_language,
        }
        current = await self._get_json(
            f"{OpenWeatherMapSource.BASE_URL}/weather", params, self.weather_service_id
        )

        try:
            forecast = await self._get_json(
                f"{OpenWeatherMapSource.BASE_URL}/forecast",
                params,
                self.weather_service_id,
            )
        except ApiError as e:
            logger.warning(f"Forecast unavailable for {city}: {e}")
            forecast = None

        return JSONResponse(
            {"current": current, "forecast": forecast},
            headers={"Cache-Control": WEATHER_CACHE_CONTROL},
        )

    async def places(
        self,
        action: str = Query("search"),
        query: str = Query(""),
        location: str = Query(""),
        type: str = Query("tourist_attraction"),
        address: str | None = Query(None),
        ref: str = Query(""),
        maxwidth: int = Query(PHOTO_MAX_WIDTH),
    ):
        """Geocode, text search or photo download against Google Places."""
        key = self.settings.google_places_api_key
        if not key:
            raise NotConfiguredError(self.places_service_id, "GOOGLE_PLACES_API_KEY")

        if action == "geocode":
            data = await self._geocode(address or location, key)
            return JSONResponse(data, headers={"Cache-Control": STATIC_CACHE_CONTROL})

        if action == "photo":
            if not ref:
                raise BadRequestError("ref parameter required")
            return await self._photo(ref, maxwidth, key)

        if action != "search":
            raise BadRequestError(f"Unknown action '{action}'")
        if not location:
            raise BadRequestError("location parameter required")

        geocoded = await self._geocode(location, key)
        results = geocoded.get("results") or []
        coords = (results[0].get("geometry") or {}).get("location") if results else None
        if not coords:
            return {
                "status": "ZERO_RESULTS",
                "results": [],
                "error": "Could not geocode location",
            }

        data = await self._get_json(
            GooglePlacesSource.TEXT_SEARCH_URL,
            {
                "query": f"{query} {location}".strip(),
                "location": f"{coords['lat']},{coords['lng']}",
                "radius": SEARCH_RADIUS_METERS,
                "type": type,
                "key": key,
                "language": self.settings.api_language,
            },
            self.places_service_id,
            validate=status_validator(self.places_service_id),
        )
        return JSONResponse(data, headers={"Cache-Control": PLACES_CACHE_CONTROL})

    async def health_check(self):
        """Health check endpoint."""
        return {
            "status": "ok",
            "service": "tripmate-proxy",
            "gateway": self.gateway.get_health_status(),
        }

    async def handle_proxy_error(self, request: Request, exc: ProxyError):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    async def handle_service_error(self, request: Request, exc: ServiceError):
        logger.error(f"Proxy request {request.url.path} failed: {exc}")
        return await self.handle_proxy_error(request, to_proxy_error(exc))

    async def _geocode(self, address: str, key: str) -> dict[str, Any]:
        return await self._get_json(
            GooglePlacesSource.GEOCODE_URL,
            {"address": address, "key": key},
            self.places_service_id,
            validate=status_validator(self.places_service_id),
        )

    async def _photo(self, ref: str, maxwidth: int, key: str) -> Response:
        response = await self.gateway.fetch(
            GooglePlacesSource.PHOTO_URL,
            RequestOptions(
                params={"maxwidth": maxwidth, "photoreference": ref, "key": key}
            ),
            service_id=self.places_service_id,
        )
        return Response(
            content=response.content,
            media_type=response.headers.get("Content-Type", "image/jpeg"),
            headers={"Cache-Control": STATIC_CACHE_CONTROL},
        )

    async def _get_json(
        self,
        url: str,
        params: dict[str, Any],
        service_id: str,
        validate: Callable[[Any], None] | None = None,
    ) -> Any:
        return await self.gateway.fetch_json(
            url,
            RequestOptions(params=params),
            service_id=service_id,
            validate=validate,
        )


def create_proxy_app(gateway: Gateway, settings: Settings | None = None) -> FastAPI:
    """Create FastAPI app for the key proxy.

    Args:
        gateway: Gateway used for all upstream calls
        settings: Settings holding the server-side keys

    Returns:
        FastAPI app
    """
    server = ProxyServer(gateway, settings)
    return server.app
