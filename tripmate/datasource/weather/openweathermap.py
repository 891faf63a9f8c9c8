"""
OpenWeatherMap data source for current conditions and the 5-day forecast.

API Documentation: https://openweathermap.org/current
Free tier: 60 calls/minute
Get API key at: https://openweathermap.org/api
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

from loguru import logger

from tripmate.datasource.base import BaseDataSource
from tripmate.datasource.models import CurrentWeather, DailyForecast, WeatherResult
from tripmate.services.errors import MalformedResponseError
from tripmate.services.gateway import Gateway

FORECAST_DAYS = 5

# Forecast entries come every 3 hours; keep the one closest to midday
MIDDAY_HOURS = range(11, 14)


class OpenWeatherMapSource(BaseDataSource):
    """
    OpenWeatherMap weather data source.

    Makes two calls per city (current conditions and forecast) in metric
    units. Without a key, the same payloads can be fetched through the
    server-side proxy.
    """

    BASE_URL = "https://api.openweathermap.org/data/2.5"
    SERVICE_ID = "openweathermap"

    def __init__(
        self,
        gateway: Gateway,
        api_key: str = "",
        language: str = "zh_cn",
        proxy_base_url: str | None = None,
    ):
        super().__init__(gateway, api_key, proxy_base_url)
        self.language = language

    @property
    def service_id(self) -> str:
        return self.SERVICE_ID

    async def fetch_weather(
        self, city: str, signal: asyncio.Event | None = None
    ) -> WeatherResult:
        """Fetch current weather and forecast directly from OpenWeatherMap."""
        params = {
            "q": city,
            "appid": self.api_key,
            "units": "metric",
            "lang": self.language,
        }

        current = await self._get_json(
            f"{self.BASE_URL}/weather", params, signal=signal
        )
        forecast = await self._get_json(
            f"{self.BASE_URL}/forecast", params, signal=signal
        )

        result = self._transform_response(city, current, forecast)
        logger.info(
            f"Fetched weather for {result.city}: {len(result.forecast)} forecast days"
        )
        return result

    async def fetch_weather_via_proxy(
        self, city: str, signal: asyncio.Event | None = None
    ) -> WeatherResult:
        """Fetch the same payloads through the server-side key proxy."""
        data = await self._get_json(
            f"{self.proxy_base_url}/api/weather", {"city": city}, signal=signal
        )
        if not isinstance(data, dict) or "current" not in data:
            raise MalformedResponseError(
                "Weather proxy returned an unexpected payload",
                service_id=self.service_id,
            )

        return self._transform_response(city, data["current"], data.get("forecast"))

    def _transform_response(
        self,
        city: str,
        current: dict[str, Any],
        forecast: dict[str, Any] | None,
    ) -> WeatherResult:
        """Transform OpenWeatherMap payloads into a WeatherResult."""
        try:
            main = current["main"]
            condition = (current.get("weather") or [{}])[0]
            return WeatherResult(
                city=current.get("name") or city,
                country=(current.get("sys") or {}).get("country", ""),
                current=CurrentWeather(
                    temp=round(main["temp"]),
                    feels_like=round(main.get("feels_like", main["temp"])),
                    condition=condition.get("main", "Unknown"),
                    description=condition.get("description", ""),
                    icon=condition.get("icon", "01d"),
                    humidity=main.get("humidity", 0),
                    wind_speed=(current.get("wind") or {}).get("speed", 0),
                ),
                forecast=self._daily_forecast(forecast),
                source="api",
            )
        except (KeyError, TypeError, IndexError) as e:
            raise MalformedResponseError(
                f"OpenWeatherMap response missing field: {e}",
                service_id=self.service_id,
            ) from e

    def _daily_forecast(self, forecast: dict[str, Any] | None) -> list[DailyForecast]:
        """Pick one midday reading per calendar day, up to FORECAST_DAYS."""
        if not forecast or not forecast.get("list"):
            return []

        offset = (forecast.get("city") or {}).get("timezone", 0)
        tz = timezone(timedelta(seconds=offset))

        days: list[DailyForecast] = []
        seen_dates = set()
        for item in forecast["list"]:
            when = datetime.fromtimestamp(item["dt"], tz=tz)
            day = when.date()
            if day in seen_dates or when.hour not in MIDDAY_HOURS:
                continue

            condition = (item.get("weather") or [{}])[0]
            days.append(
                DailyForecast(
                    date=when,
                    temp_min=item["main"]["temp_min"],
                    temp_max=item["main"]["temp_max"],
                    condition=condition.get("main", "Unknown"),
                    icon=condition.get("icon", "01d"),
                )
            )
            seen_dates.add(day)

            if len(days) >= FORECAST_DAYS:
                break

        return days
