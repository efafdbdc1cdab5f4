"""Interfaces and helpers for hourly weather providers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from app.domain import WeatherSnapshot


@dataclass
class HourlyForecast:
    """A provider's hourly forecast resolved to the selected date and start."""
    snapshot: WeatherSnapshot
    selected_date: str
    date_range: dict


class WeatherProvider(Protocol):
    """Interface for anything that can produce a start-anchored weather snapshot."""

    name: str

    def fetch_forecast(
        self,
        lat: float,
        lon: float,
        *,
        selected_date: Optional[str],
        start_clock: Optional[str],
        travel_window_hours: int,
    ) -> HourlyForecast:
        """Return the hourly forecast anchored to the planned start."""
        ...


@dataclass
class CallableWeatherProvider(WeatherProvider):
    """Wrap a fetch callable so providers can be swapped in tests or by configuration."""

    name: str
    fetch: Callable[..., HourlyForecast]

    def fetch_forecast(self, lat: float, lon: float, **kwargs) -> HourlyForecast:
        """Delegate to the configured fetch callable."""
        return self.fetch(lat, lon, **kwargs)
