"""Factory helpers for wiring the primary and fallback weather providers."""

from __future__ import annotations

from typing import Tuple

from app.data_sources import noaa_client, open_meteo_client
from app.data_sources.base import CallableWeatherProvider, WeatherProvider
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="data_sources/factory")


def build_weather_providers() -> Tuple[WeatherProvider, WeatherProvider]:
    """Return ``(primary, secondary)``: NOAA hourly first, Open-Meteo as the global fallback."""
    primary = CallableWeatherProvider(name=noaa_client.NOAA_SOURCE,
                                      fetch=noaa_client.fetch_primary_forecast)
    secondary = CallableWeatherProvider(name=open_meteo_client.OPEN_METEO_SOURCE,
                                        fetch=open_meteo_client.fetch_fallback_forecast)
    logger.debug("Weather providers configured", extra={"primary": primary.name, "secondary": secondary.name})
    return primary, secondary
