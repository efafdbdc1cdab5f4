"""Helpers for fetching hourly forecasts and active alerts from the NOAA/NWS API."""
from __future__ import annotations

from typing import List, Optional, Tuple

from app.data_sources import http_gateway
from app.data_sources.base import HourlyForecast
from app.domain import SourceDetails, TrendPoint, WeatherSnapshot
from app.errors import InputValidationError
from app.weather_math import (
    FT_PER_METER,
    build_elevation_bands,
    build_temperature_context,
    build_visibility_risk,
    clamp_percent,
    clamp_travel_window_hours,
    compute_feels_like,
    estimate_gust,
    normalize_dew_point_f,
    normalize_pressure_hpa,
    parse_clock_minutes,
    parse_wind_mph,
    resolve_noaa_cloud_cover,
    to_float,
)
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="noaa_client")

NOAA_POINTS_URL = "https://api.weather.gov/points/{lat:.4f},{lon:.4f}"
NOAA_ALERTS_URL = "https://api.weather.gov/alerts/active"
NOAA_SOURCE = "NOAA"


def _quantity(field) -> Optional[float]:
    if isinstance(field, dict):
        return to_float(field.get("value"))
    return to_float(field)


def _normalize_direction(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    text = value.strip().upper()
    return text or None


def nearest_wind_direction(periods: List[dict], anchor: int) -> Optional[str]:
    """Direction at ``anchor``, else the closest period (forward first) that has one."""
    if not periods or anchor < 0 or anchor >= len(periods):
        return None
    direct = _normalize_direction(periods[anchor].get("windDirection"))
    if direct:
        return direct
    for offset in range(1, len(periods)):
        for index in (anchor + offset, anchor - offset):
            if 0 <= index < len(periods):
                found = _normalize_direction(periods[index].get("windDirection"))
                if found:
                    return found
    return None


def infer_wind_gust(periods: List[dict], anchor: int, wind_mph: Optional[float]) -> Tuple[Optional[float], str]:
    """Reported gust, else a gust/wind ratio borrowed from a nearby period, else an estimate."""
    if wind_mph is None:
        return None, "Unavailable"
    wind = max(0.0, float(round(wind_mph)))
    fallback = max(wind, estimate_gust(wind) or wind)
    if not periods or anchor < 0 or anchor >= len(periods):
        return fallback, "estimated_from_wind"

    direct = parse_wind_mph(periods[anchor].get("windGust"))
    if direct is not None:
        return max(wind, float(round(direct))), "reported"

    for offset in range(1, min(12, len(periods) - 1) + 1):
        for index in (anchor - offset, anchor + offset):
            if index < 0 or index >= len(periods):
                continue
            nearby_gust = parse_wind_mph(periods[index].get("windGust"))
            if nearby_gust is None:
                continue
            nearby_wind = parse_wind_mph(periods[index].get("windSpeed"))
            if nearby_wind and wind > 0:
                ratio = min(1.8, max(1.05, nearby_gust / nearby_wind))
                return max(wind, float(round(wind * ratio))), "inferred_nearby"
            return max(wind, float(round(nearby_gust))), "inferred_nearby"
    return fallback, "estimated_from_wind"


def select_start_index(periods: List[dict], selected_date: str, start_clock: Optional[str]) -> int:
    """First period of the date at/after the start clock, else the day's last period."""
    day_indexes = [i for i, p in enumerate(periods) if str(p.get("startTime", ""))[:10] == selected_date]
    if not day_indexes:
        return 0
    target = parse_clock_minutes(start_clock)
    if target is None:
        return day_indexes[0]
    for index in day_indexes:
        clock = str(periods[index].get("startTime", ""))[11:16]
        minutes = parse_clock_minutes(clock)
        if minutes is not None and minutes >= target:
            return index
    return day_indexes[-1]


def _trend_point(periods: List[dict], index: int) -> TrendPoint:
    period = periods[index]
    wind = parse_wind_mph(period.get("windSpeed"))
    gust, _ = infer_wind_gust(periods, index, wind)
    cloud, _ = resolve_noaa_cloud_cover(period)
    direction = _normalize_direction(period.get("windDirection"))
    if direction is None and wind is not None and wind <= 2:
        direction = "CALM"
    return TrendPoint(
        time_iso=period.get("startTime"),
        temp=to_float(period.get("temperature")),
        wind=wind,
        gust=gust,
        wind_direction=direction,
        precip_chance=clamp_percent(_quantity(period.get("probabilityOfPrecipitation"))),
        humidity=clamp_percent(_quantity(period.get("relativeHumidity"))),
        dew_point=normalize_dew_point_f(period.get("dewpoint")),
        cloud_cover=cloud,
        condition=period.get("shortForecast"),
        is_daytime=period.get("isDaytime") if isinstance(period.get("isDaytime"), bool) else None,
    )


def build_primary_forecast(forecast: dict, *, lat: float, lon: float, selected_date: Optional[str],
                           start_clock: Optional[str], travel_window_hours: int,
                           timezone: Optional[str] = None) -> HourlyForecast:
    """Turn a NOAA hourly forecast payload into a start-anchored snapshot.

    Raises ``InputValidationError`` when ``selected_date`` falls outside the
    dates the forecast covers.
    """
    props = forecast.get("properties") or {}
    periods = props.get("periods") or []
    if not periods:
        raise ValueError("NOAA hourly forecast returned no periods")

    dates = sorted({str(p.get("startTime", ""))[:10] for p in periods if p.get("startTime")})
    date_range = {"start": dates[0], "end": dates[-1]}
    if selected_date and selected_date not in dates:
        raise InputValidationError(
            "Requested forecast date is outside NOAA forecast range",
            details=f"Choose a date between {date_range['start']} and {date_range['end']}.",
            available_range=date_range,
        )
    resolved_date = selected_date or dates[0]
    index = select_start_index(periods, resolved_date, start_clock)
    period = periods[index]

    window = clamp_travel_window_hours(travel_window_hours)
    trend = [_trend_point(periods, i) for i in range(index, min(len(periods), index + window))]
    current = trend[0]

    wind = current.wind
    gust, gust_source = infer_wind_gust(periods, index, wind)
    direction = nearest_wind_direction(periods, index)
    if direction is None and wind is not None and wind <= 2:
        direction = "CALM"
    cloud, cloud_source = resolve_noaa_cloud_cover(period)
    pressure = normalize_pressure_hpa(period.get("barometricPressure"))
    elevation_m = _quantity(props.get("elevation"))
    elevation_ft = float(round(elevation_m * FT_PER_METER)) if elevation_m is not None else None

    context_rows = [(p.get("startTime"), to_float(p.get("temperature")),
                     p.get("isDaytime") if isinstance(p.get("isDaytime"), bool) else None)
                    for p in periods[index:index + 24]]

    field_sources = {name: NOAA_SOURCE for name in (
        "temp", "feelsLike", "dewPoint", "description", "windSpeed", "humidity", "precipChance",
        "isDaytime", "issuedTime", "forecastStartTime", "forecastEndTime", "trend", "temperatureContext24h")}
    field_sources["windGust"] = NOAA_SOURCE if gust_source == "reported" else f"{NOAA_SOURCE} ({gust_source})"
    field_sources["cloudCover"] = cloud_source
    if direction is not None:
        field_sources["windDirection"] = NOAA_SOURCE
    if pressure is not None:
        field_sources["pressure"] = NOAA_SOURCE

    snapshot = WeatherSnapshot(
        status="ok",
        temp=current.temp,
        feels_like=compute_feels_like(current.temp, wind),
        dew_point=current.dew_point,
        humidity=current.humidity,
        cloud_cover=cloud,
        precip_chance=current.precip_chance,
        pressure=pressure,
        wind_speed=wind,
        wind_gust=gust,
        wind_direction=direction,
        is_daytime=current.is_daytime,
        description=period.get("shortForecast") or "Unknown",
        elevation=elevation_ft,
        elevation_source="NOAA gridpoint elevation" if elevation_ft is not None else None,
        issued_time=props.get("updateTime") or props.get("generatedAt"),
        timezone=timezone,
        forecast_start_time=period.get("startTime"),
        forecast_end_time=period.get("endTime"),
        forecast_date=resolved_date,
        trend=trend,
        temperature_context_24h=build_temperature_context(context_rows, timezone=timezone),
        forecast_link=f"https://forecast.weather.gov/MapClick.php?lat={lat}&lon={lon}",
        source_details=SourceDetails(primary=NOAA_SOURCE, field_sources=field_sources),
    )
    snapshot.elevation_forecast = build_elevation_bands(elevation_ft, snapshot.temp, wind, gust)
    snapshot.elevation_forecast_note = (
        "Estimated from objective elevation down through terrain bands using lapse-rate adjustments per 1,000 ft."
        if snapshot.elevation_forecast else
        "Objective elevation unavailable; elevation-based estimate could not be generated."
    )
    snapshot.visibility_risk = build_visibility_risk(snapshot)
    return HourlyForecast(snapshot=snapshot, selected_date=resolved_date, date_range=date_range)


def fetch_primary_forecast(lat: float, lon: float, *, selected_date: Optional[str], start_clock: Optional[str],
                           travel_window_hours: int) -> HourlyForecast:
    """Fetch the NOAA gridpoint metadata and hourly forecast for a point."""
    points = http_gateway.get_json(NOAA_POINTS_URL.format(lat=lat, lon=lon))
    props = points.get("properties") or {}
    hourly_url = props.get("forecastHourly")
    if not hourly_url:
        raise ValueError("NOAA points response did not include an hourly forecast URL")
    forecast = http_gateway.get_json(hourly_url)
    logger.debug("Fetched NOAA hourly forecast", extra={"url": hourly_url})
    return build_primary_forecast(forecast, lat=lat, lon=lon, selected_date=selected_date,
                                  start_clock=start_clock, travel_window_hours=travel_window_hours,
                                  timezone=props.get("timeZone"))


def fetch_active_alerts(lat: float, lon: float) -> List[dict]:
    """Return raw GeoJSON features for alerts active at a point."""
    payload = http_gateway.get_json(NOAA_ALERTS_URL, params={"point": f"{lat:.4f},{lon:.4f}"})
    features = payload.get("features")
    if not isinstance(features, list):
        raise ValueError("NOAA alerts response did not include a features list")
    return features
