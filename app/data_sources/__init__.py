"""External provider clients and the weather provider factory."""

from .base import CallableWeatherProvider, HourlyForecast, WeatherProvider
from .factory import build_weather_providers

__all__ = [
    "build_weather_providers",
    "CallableWeatherProvider",
    "HourlyForecast",
    "WeatherProvider",
]
