"""
Deterministic synthetic data for network-isolated runs and demos.

Only used when mock mode is switched on explicitly; results are tagged
source="mock" so they can never be mistaken for live answers.
"""

import hashlib
from datetime import datetime, time, timedelta

from tripmate.datasource.models import (
    Coordinates,
    CurrentWeather,
    DailyForecast,
    DateRange,
    Hotel,
    Place,
    PlaceType,
    Price,
    WeatherResult,
)
from tripmate.datasource.places.lodging import estimate_nightly_price

CONDITIONS = [
    ("Clear", "clear sky", "01d"),
    ("Clouds", "scattered clouds", "03d"),
    ("Rain", "light rain", "10d"),
    ("Clouds", "overcast clouds", "04d"),
]

PLACE_NAMES = {
    PlaceType.ATTRACTION: ["Old Town Square", "City Museum", "Riverside Park"],
    PlaceType.RESTAURANT: ["Harbor Kitchen", "Noodle House", "Market Bistro"],
    PlaceType.HOTEL: ["Central Hotel", "Garden Inn", "Station Suites"],
    PlaceType.SHOPPING: ["Main Street Mall", "Night Market", "Design Arcade"],
}


def _seed(*parts: object) -> int:
    text = "|".join(str(p).strip().lower() for p in parts)
    return int(hashlib.sha256(text.encode()).hexdigest()[:8], 16)


class MockDataSource:
    """Synthetic weather, places and hotels derived from the request inputs."""

    def __init__(self, clock=datetime.now, currency: str = "CNY"):
        self._clock = clock
        self.currency = currency

    def weather(self, city: str) -> WeatherResult:
        seed = _seed("weather", city)
        base_temp = 5 + seed % 25
        today = self._clock().date()

        forecast = []
        for offset in range(5):
            condition, _, icon = CONDITIONS[(seed + offset) % len(CONDITIONS)]
            forecast.append(
                DailyForecast(
                    date=datetime.combine(today + timedelta(days=offset), time(12)),
                    temp_min=base_temp - 4 + offset % 3,
                    temp_max=base_temp + 3 + offset % 3,
                    condition=condition,
                    icon=icon,
                )
            )

        condition, description, icon = CONDITIONS[seed % len(CONDITIONS)]
        return WeatherResult(
            city=city.strip(),
            country="",
            current=CurrentWeather(
                temp=base_temp,
                feels_like=base_temp - 1,
                condition=condition,
                description=description,
                icon=icon,
                humidity=40 + seed % 50,
                wind_speed=round(1 + (seed % 70) / 10, 1),
            ),
            forecast=forecast,
            source="mock",
        )

    def places(self, query: str, location: str, place_type: PlaceType) -> list[Place]:
        seed = _seed("places", query, location, place_type.value)
        lat = (seed % 18000) / 100 - 90
        lng = (seed // 18000 % 36000) / 100 - 180

        return [
            Place(
                id=f"mock-{place_type.value}-{seed:x}-{i}",
                name=f"{name} ({location.strip()})",
                type=place_type,
                description=f"Sample {place_type.value} for '{query}'",
                address=f"{i + 1} Example Road, {location.strip()}",
                coordinates=Coordinates(lat=lat + i * 0.01, lng=lng + i * 0.01),
                rating=round(3.5 + ((seed >> i) % 15) / 10, 1),
                price_level=1 + (seed + i) % 4,
                source="mock",
            )
            for i, name in enumerate(PLACE_NAMES[place_type])
        ]

    def hotels(self, location: str, dates: DateRange) -> list[Hotel]:
        return [
            Hotel(
                id=place.id,
                name=place.name,
                description=place.description,
                address=place.address,
                coordinates=place.coordinates,
                rating=place.rating,
                price_per_night=Price(
                    amount=estimate_nightly_price(place.price_level or 0),
                    currency=self.currency,
                ),
                source="mock",
            )
            for place in self.places("hotel", location, PlaceType.HOTEL)
        ]
