import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Provider API keys (each optional)
    openweather_api_key: str = Field(default="", alias="OPENWEATHER_API_KEY")
    google_places_api_key: str = Field(default="", alias="GOOGLE_PLACES_API_KEY")
    booking_api_key: str = Field(default="", alias="BOOKING_API_KEY")

    # Keyless modes
    use_proxy: bool = Field(default=False, alias="USE_PROXY")
    proxy_base_url: str = Field(default="http://127.0.0.1:8787", alias="PROXY_BASE_URL")
    use_mock_data: bool = Field(default=False, alias="USE_MOCK_DATA")

    # Request behaviour
    api_request_timeout: float = Field(default=10.0, alias="API_REQUEST_TIMEOUT")
    api_language: str = Field(default="zh", alias="API_LANGUAGE")
    weather_language: str = Field(default="zh_cn", alias="WEATHER_LANGUAGE")
    hotel_currency: str = Field(default="CNY", alias="HOTEL_CURRENCY")

    # Cache Configuration
    cache_default_ttl_minutes: int = Field(default=60, alias="CACHE_DEFAULT_TTL_MINUTES")
    cache_cleanup_interval_minutes: int = Field(
        default=10, alias="CACHE_CLEANUP_INTERVAL_MINUTES"
    )
    cache_debug: bool = Field(default=False, alias="CACHE_DEBUG")

    # Proxy server
    proxy_host: str = Field(default="127.0.0.1", alias="PROXY_HOST")
    proxy_port: int = Field(default=8787, alias="PROXY_PORT")


def load_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings.model_validate(dict(os.environ))


global_settings = load_settings()
