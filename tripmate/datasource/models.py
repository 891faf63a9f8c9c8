"""
Domain models returned by the service facade.

Every result carries a `source` field telling callers whether it came from
a live provider call, the response cache, or the mock provider.
"""

from datetime import date, datetime
from enum import Enum
from typing import Literal, Sequence, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator

Source = Literal["api", "cache", "mock"]


class PlaceType(str, Enum):
    """Place categories the assistant asks for."""

    ATTRACTION = "attraction"
    RESTAURANT = "restaurant"
    HOTEL = "hotel"
    SHOPPING = "shopping"


# PlaceType -> Google Places type
GOOGLE_PLACE_TYPES = {
    PlaceType.ATTRACTION: "tourist_attraction",
    PlaceType.RESTAURANT: "restaurant",
    PlaceType.HOTEL: "lodging",
    PlaceType.SHOPPING: "shopping_mall",
}


class Coordinates(BaseModel):
    lat: float
    lng: float


class CurrentWeather(BaseModel):
    """Current conditions."""

    temp: float
    feels_like: float
    condition: str
    description: str
    icon: str
    humidity: float
    wind_speed: float


class DailyForecast(BaseModel):
    """One forecast reading per day, taken around midday."""

    date: datetime
    temp_min: float
    temp_max: float
    condition: str
    icon: str


class WeatherResult(BaseModel):
    """Weather for a city: current conditions plus up to 5 days."""

    city: str
    country: str
    current: CurrentWeather
    forecast: list[DailyForecast] = Field(default_factory=list, max_length=5)
    source: Source
    cached_at: datetime | None = None


class Place(BaseModel):
    """A point of interest."""

    id: str
    name: str
    type: PlaceType
    description: str | None = None
    address: str
    coordinates: Coordinates | None = None
    rating: float | None = None
    price_level: int | None = None
    photos: list[str] = Field(default_factory=list)
    opening_hours: str | None = None
    source: Source


class Price(BaseModel):
    amount: float
    currency: str


class Hotel(BaseModel):
    """A lodging option."""

    id: str
    name: str
    description: str | None = None
    address: str
    coordinates: Coordinates | None = None
    rating: float | None = None
    price_per_night: Price | None = None
    amenities: list[str] = Field(default_factory=list)
    photos: list[str] = Field(default_factory=list)
    booking_url: str | None = None
    source: Source


class DateRange(BaseModel):
    """Stay dates; end_date must not precede start_date."""

    start_date: date
    end_date: date

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _drop_time(cls, value):
        if isinstance(value, datetime):
            return value.date()
        return value

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    @property
    def nights(self) -> int:
        return (self.end_date - self.start_date).days


M = TypeVar("M", bound=BaseModel)


def with_source(items: Sequence[M], source: Source) -> list[M]:
    """Copy models with a different provenance tag."""
    return [item.model_copy(update={"source": source}, deep=True) for item in items]
