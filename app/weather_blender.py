"""Merge a primary hourly forecast with a global fallback, field by field."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from app.data_sources.base import HourlyForecast, WeatherProvider
from app.data_sources.http_gateway import ProviderResult, call_provider
from app.domain import ProviderStatus, WeatherSnapshot
from app.weather_math import build_visibility_risk, unavailable_weather
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="weather_blender")

MIN_TREND_POINTS = 6

# Snapshot attribute -> provenance key. Only these are ever copied from the secondary.
SUPPLEMENT_FIELDS = {
    "wind_direction": "windDirection",
    "issued_time": "issuedTime",
    "timezone": "timezone",
    "forecast_end_time": "forecastEndTime",
    "dew_point": "dewPoint",
    "temperature_context_24h": "temperatureContext24h",
    "cloud_cover": "cloudCover",
    "pressure": "pressure",
}
TRIGGER_FIELDS = ("wind_direction", "issued_time", "pressure", "cloud_cover")


@dataclass
class BlendedWeather:
    snapshot: WeatherSnapshot
    selected_date: Optional[str]
    date_range: Optional[dict]
    # degraded: the fallback provider stood in for a failed primary
    status: ProviderStatus = ProviderStatus.OK


def needs_supplement(snapshot: WeatherSnapshot) -> bool:
    """True when key fields are missing or the trend is too short."""
    if any(getattr(snapshot, name) is None for name in TRIGGER_FIELDS):
        return True
    return len(snapshot.trend) < MIN_TREND_POINTS


def supplement_snapshot(primary: WeatherSnapshot, secondary: WeatherSnapshot, secondary_name: str) -> WeatherSnapshot:
    """Copy only fields missing from ``primary``; present primary fields are never overwritten."""
    merged = primary.model_copy(deep=True)
    copied = []
    for attr, key in SUPPLEMENT_FIELDS.items():
        if getattr(merged, attr) is None and getattr(secondary, attr) is not None:
            setattr(merged, attr, getattr(secondary, attr))
            merged.source_details.field_sources[key] = secondary_name
            copied.append(key)
    if len(merged.trend) < MIN_TREND_POINTS and len(secondary.trend) > len(merged.trend):
        merged.trend = [point.model_copy() for point in secondary.trend]
        merged.source_details.field_sources["trend"] = secondary_name
        copied.append("trend")
    if copied:
        merged.source_details.blended = True
        if secondary_name not in merged.source_details.supplemental_sources:
            merged.source_details.supplemental_sources.append(secondary_name)
        merged.visibility_risk = build_visibility_risk(merged)
        logger.info("Supplemented primary weather", extra={"fields": copied, "source": secondary_name})
    return merged


def blend_weather(primary: WeatherProvider, secondary: WeatherProvider, lat: float, lon: float, *,
                  selected_date: Optional[str], start_clock: Optional[str],
                  travel_window_hours: int) -> BlendedWeather:
    """Primary first; secondary fills gaps or replaces it; explicit placeholder when both fail."""
    kwargs = dict(selected_date=selected_date, start_clock=start_clock, travel_window_hours=travel_window_hours)
    primary_result: ProviderResult[HourlyForecast] = call_provider(primary.name, primary.fetch_forecast,
                                                                   lat, lon, **kwargs)
    if primary_result.available:
        forecast = primary_result.data
        snapshot = forecast.snapshot
        if needs_supplement(snapshot):
            secondary_result = call_provider(secondary.name, secondary.fetch_forecast, lat, lon,
                                             selected_date=forecast.selected_date, start_clock=start_clock,
                                             travel_window_hours=travel_window_hours)
            if secondary_result.available:
                snapshot = supplement_snapshot(snapshot, secondary_result.data.snapshot, secondary.name)
        return BlendedWeather(snapshot=snapshot, selected_date=forecast.selected_date,
                              date_range=forecast.date_range)

    logger.info("Primary weather unavailable; using fallback provider", extra={"source": secondary.name})
    secondary_result = call_provider(secondary.name, secondary.fetch_forecast, lat, lon, **kwargs)
    if secondary_result.available:
        fallback = ProviderResult.degraded(secondary.name, secondary_result.data, error=primary_result.error)
        forecast = fallback.data
        return BlendedWeather(snapshot=forecast.snapshot, selected_date=forecast.selected_date,
                              date_range=forecast.date_range, status=fallback.status)

    logger.warning("All weather providers failed", extra={"lat": lat, "lon": lon})
    return BlendedWeather(snapshot=unavailable_weather(lat, lon, selected_date),
                          selected_date=selected_date, date_range=None, status=ProviderStatus.UNAVAILABLE)
