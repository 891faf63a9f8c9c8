"""
Google Places data source: geocode a location, then text-search around it.

API Documentation: https://developers.google.com/maps/documentation/places/web-service
Get API key at: https://console.cloud.google.com/ (enable Places and Geocoding)

Google reports most failures in a 200 body `status` field, so responses are
validated inside the gateway call where the circuit breaker can count them.
"""

import asyncio
from typing import Any, Callable

from loguru import logger

from tripmate.datasource.base import BaseDataSource
from tripmate.datasource.models import (
    GOOGLE_PLACE_TYPES,
    Coordinates,
    Place,
    PlaceType,
)
from tripmate.services.errors import (
    LocationNotFoundError,
    MalformedResponseError,
    QuotaExceededError,
    UnauthorizedError,
    UnknownApiError,
    provider_name,
)
from tripmate.services.gateway import QUOTA_MESSAGES, UNAUTHORIZED_MESSAGES, Gateway

SEARCH_RADIUS_METERS = 10000
PHOTO_MAX_WIDTH = 400

OK_STATUSES = ("OK", "ZERO_RESULTS")


def status_validator(service_id: str) -> Callable[[Any], None]:
    """Build a validator mapping Google body statuses to typed errors."""

    def validate(body: Any) -> None:
        if not isinstance(body, dict):
            raise UnknownApiError(
                f"{provider_name(service_id)} returned an unexpected payload",
                service_id=service_id,
            )

        status = body.get("status")
        if status in OK_STATUSES:
            return

        detail = body.get("error_message") or body.get("error") or status
        if status == "OVER_QUERY_LIMIT":
            raise QuotaExceededError(
                QUOTA_MESSAGES.get(service_id, f"Quota exceeded: {detail}"),
                service_id=service_id,
            )
        if status == "REQUEST_DENIED":
            raise UnauthorizedError(
                f"{UNAUTHORIZED_MESSAGES.get(service_id, 'Request denied.')} ({detail})",
                service_id=service_id,
            )
        raise UnknownApiError(
            f"Places API error: {detail}",
            service_id=service_id,
        )

    return validate


class GooglePlacesSource(BaseDataSource):
    """
    Google Places data source.

    Each search is two calls: geocoding the location, then a text search
    biased to the geocoded point and filtered by Google place type.
    """

    GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
    TEXT_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/textsearch/json"
    PHOTO_URL = "https://maps.googleapis.com/maps/api/place/photo"
    SERVICE_ID = "googleplaces"

    def __init__(
        self,
        gateway: Gateway,
        api_key: str = "",
        language: str = "zh",
        proxy_base_url: str | None = None,
    ):
        super().__init__(gateway, api_key, proxy_base_url)
        self.language = language

    @property
    def service_id(self) -> str:
        return self.SERVICE_ID

    async def geocode(
        self,
        location: str,
        service_id: str | None = None,
        signal: asyncio.Event | None = None,
    ) -> Coordinates:
        """Resolve a free-form location to coordinates."""
        service_id = service_id or self.service_id
        data = await self._get_json(
            self.GEOCODE_URL,
            {"address": location, "key": self.api_key},
            service_id=service_id,
            validate=status_validator(service_id),
            signal=signal,
        )

        results = data.get("results") or []
        point = (results[0].get("geometry") or {}).get("location") if results else None
        if not point:
            raise LocationNotFoundError(service_id, location)

        return Coordinates(lat=point["lat"], lng=point["lng"])

    async def search(
        self,
        query: str,
        location: str,
        place_type: PlaceType = PlaceType.ATTRACTION,
        service_id: str | None = None,
        signal: asyncio.Event | None = None,
    ) -> list[Place]:
        """Geocode `location`, then text-search `query` around it."""
        service_id = service_id or self.service_id
        coords = await self.geocode(location, service_id=service_id, signal=signal)

        data = await self._get_json(
            self.TEXT_SEARCH_URL,
            {
                "query": f"{query} {location}".strip(),
                "location": f"{coords.lat},{coords.lng}",
                "radius": SEARCH_RADIUS_METERS,
                "type": GOOGLE_PLACE_TYPES.get(place_type, "establishment"),
                "key": self.api_key,
                "language": self.language,
            },
            service_id=service_id,
            validate=status_validator(service_id),
            signal=signal,
        )

        places = self._to_places(data, place_type, self._photo_url, service_id)
        logger.info(f"Found {len(places)} {place_type.value} places for '{query}' in {location}")
        return places

    async def search_via_proxy(
        self,
        query: str,
        location: str,
        place_type: PlaceType = PlaceType.ATTRACTION,
        service_id: str | None = None,
        signal: asyncio.Event | None = None,
    ) -> list[Place]:
        """Search through the server-side key proxy (geocoding happens there)."""
        service_id = service_id or self.service_id
        data = await self._get_json(
            f"{self.proxy_base_url}/api/places",
            {
                "action": "search",
                "query": query,
                "location": location,
                "type": GOOGLE_PLACE_TYPES.get(place_type, "establishment"),
            },
            service_id=service_id,
            validate=status_validator(service_id),
            signal=signal,
        )

        return self._to_places(data, place_type, self._proxy_photo_url, service_id)

    def _photo_url(self, reference: str) -> str:
        return (
            f"{self.PHOTO_URL}?maxwidth={PHOTO_MAX_WIDTH}"
            f"&photoreference={reference}&key={self.api_key}"
        )

    def _proxy_photo_url(self, reference: str) -> str:
        return (
            f"{self.proxy_base_url}/api/places?action=photo"
            f"&ref={reference}&maxwidth={PHOTO_MAX_WIDTH}"
        )

    def _to_places(
        self,
        data: dict[str, Any],
        place_type: PlaceType,
        photo_url: Callable[[str], str],
        service_id: str,
    ) -> list[Place]:
        try:
            return [
                self._to_place(item, place_type, photo_url)
                for item in data.get("results") or []
            ]
        except (KeyError, TypeError) as e:
            raise MalformedResponseError(
                f"Places response missing field: {e}", service_id=service_id
            ) from e

    def _to_place(
        self,
        item: dict[str, Any],
        place_type: PlaceType,
        photo_url: Callable[[str], str],
    ) -> Place:
        """Convert a Google result to a Place."""
        point = (item.get("geometry") or {}).get("location")
        hours = item.get("opening_hours")

        return Place(
            id=item["place_id"],
            name=item.get("name", ""),
            type=place_type,
            description=", ".join(item.get("types") or []) or None,
            address=item.get("vicinity") or item.get("formatted_address") or "",
            coordinates=Coordinates(lat=point["lat"], lng=point["lng"]) if point else None,
            rating=item.get("rating"),
            price_level=item.get("price_level"),
            photos=[
                photo_url(photo["photo_reference"])
                for photo in item.get("photos") or []
                if photo.get("photo_reference")
            ],
            opening_hours=self._opening_hours(hours) if hours else None,
            source="api",
        )

    def _opening_hours(self, hours: dict[str, Any]) -> str | None:
        if "open_now" not in hours:
            return None
        if self.language.startswith("zh"):
            return "营业中" if hours["open_now"] else "已打烊"
        return "Open now" if hours["open_now"] else "Closed"
