"""
Hotel search built on the Google Places lodging type.

Calls go out under the "booking" service id so hotel traffic has its own
circuit breaker and rate limiter, independent of general place searches.
"""

import asyncio

from loguru import logger

from tripmate.datasource.models import DateRange, Hotel, Place, PlaceType, Price
from tripmate.datasource.places.google_places import GooglePlacesSource

# Rough nightly price by Google price_level (0=Free .. 4=Very Expensive)
PRICE_LEVEL_ESTIMATES = [0, 200, 400, 800, 1500]
DEFAULT_PRICE_ESTIMATE = 400


def estimate_nightly_price(price_level: int) -> float:
    """Estimate a nightly rate from a Google price level."""
    if 0 < price_level < len(PRICE_LEVEL_ESTIMATES):
        return PRICE_LEVEL_ESTIMATES[price_level]
    return DEFAULT_PRICE_ESTIMATE


class LodgingSource:
    """Hotel search on top of GooglePlacesSource."""

    SERVICE_ID = "booking"
    QUERY = "hotel"

    def __init__(self, places: GooglePlacesSource, currency: str = "CNY"):
        self.places = places
        self.currency = currency

    @property
    def service_id(self) -> str:
        return self.SERVICE_ID

    def is_configured(self) -> bool:
        return self.places.is_configured()

    def can_use_proxy(self) -> bool:
        return self.places.can_use_proxy()

    async def search_hotels(
        self,
        location: str,
        dates: DateRange,
        signal: asyncio.Event | None = None,
    ) -> list[Hotel]:
        """Search lodging near a location directly via Google Places."""
        places = await self.places.search(
            self.QUERY,
            location,
            PlaceType.HOTEL,
            service_id=self.SERVICE_ID,
            signal=signal,
        )
        hotels = [self._to_hotel(place) for place in places]
        logger.info(
            f"Found {len(hotels)} hotels in {location} "
            f"for {dates.start_date} to {dates.end_date}"
        )
        return hotels

    async def search_hotels_via_proxy(
        self,
        location: str,
        dates: DateRange,
        signal: asyncio.Event | None = None,
    ) -> list[Hotel]:
        places = await self.places.search_via_proxy(
            self.QUERY,
            location,
            PlaceType.HOTEL,
            service_id=self.SERVICE_ID,
            signal=signal,
        )
        return [self._to_hotel(place) for place in places]

    def _to_hotel(self, place: Place) -> Hotel:
        """Convert a lodging Place to a Hotel."""
        price = None
        if place.price_level:
            price = Price(
                amount=estimate_nightly_price(place.price_level),
                currency=self.currency,
            )

        return Hotel(
            id=place.id,
            name=place.name,
            description=place.description,
            address=place.address,
            coordinates=place.coordinates,
            rating=place.rating,
            price_per_night=price,
            photos=place.photos,
            source=place.source,
        )
