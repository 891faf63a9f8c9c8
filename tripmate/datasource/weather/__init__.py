"""
OpenWeatherMap data source.
"""

from tripmate.datasource.weather.openweathermap import OpenWeatherMapSource

__all__ = ["OpenWeatherMapSource"]
