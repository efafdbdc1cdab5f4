"""Helpers for fetching fallback forecasts, air quality and precipitation from the Open-Meteo APIs."""
from __future__ import annotations

import datetime as dt
from email.utils import parsedate_to_datetime
from typing import List, Optional

import requests

from app.data_sources import http_gateway
from app.data_sources.base import HourlyForecast
from app.domain import (
    AirQualityReport,
    RainfallExpected,
    RainfallReport,
    RainfallTotals,
    SourceDetails,
    TrendPoint,
    WeatherSnapshot,
)
from app.weather_math import (
    build_elevation_bands,
    build_temperature_context,
    build_visibility_risk,
    clamp_percent,
    clamp_travel_window_hours,
    cm_to_inches,
    compute_feels_like,
    degrees_to_cardinal,
    estimate_gust,
    mm_to_inches,
    normalize_pressure_hpa,
    open_meteo_code_to_text,
    parse_clock_minutes,
    parse_iso,
    round_or_none,
    to_float,
)
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag='open_meteo_client')

OPEN_METEO_SOURCE = "Open-Meteo"
OPEN_METEO_HOSTS = ("api.open-meteo.com", "customer-api.open-meteo.com")
OPEN_METEO_ATTEMPTS_PER_HOST = 3
OPEN_METEO_AIR_URL = "https://air-quality-api.open-meteo.com/v1/air-quality"
OPEN_METEO_PRECIP_URL = "https://api.open-meteo.com/v1/forecast"

HOURLY_WEATHER_VARS = [
    "temperature_2m", "dew_point_2m", "relative_humidity_2m", "precipitation_probability", "cloud_cover",
    "surface_pressure", "weather_code", "wind_speed_10m", "wind_gusts_10m", "wind_direction_10m", "is_day",
]


def _series_value(hourly: dict, key: str, index: int) -> Optional[float]:
    """Value at ``index`` of an hourly series, or None. Missing data is never read as zero."""
    series = hourly.get(key)
    if not isinstance(series, list) or index < 0 or index >= len(series):
        return None
    return to_float(series[index])


def _nearest_cardinal(hourly: dict, index: int) -> Optional[str]:
    series = hourly.get("wind_direction_10m")
    if not isinstance(series, list):
        return None
    for offset in range(len(series)):
        for candidate in (index + offset, index - offset):
            if 0 <= candidate < len(series):
                cardinal = degrees_to_cardinal(series[candidate])
                if cardinal:
                    return cardinal
    return None


def _with_offset(value, offset: dt.timezone) -> str:
    """Attach the payload's UTC offset to a naive local timestamp."""
    text = str(value)
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        return text
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=offset)
    return parsed.isoformat()


def _period_end(start_iso: str) -> str:
    """End of the hourly slot that starts at ``start_iso``."""
    start = parse_iso(start_iso)
    if start is None:
        return start_iso
    return (start + dt.timedelta(hours=1)).isoformat()


def _issued_time_from_headers(headers) -> str:
    date_header = headers.get("Date") if headers else None
    if date_header:
        try:
            return parsedate_to_datetime(date_header).astimezone(dt.timezone.utc).isoformat()
        except (TypeError, ValueError):
            pass
    return dt.datetime.now(dt.timezone.utc).isoformat()


def _fetch_forecast_payload(lat: float, lon: float) -> tuple[dict, str]:
    """Fetch the hourly forecast, trying each host a bounded number of times.

    Attempts bypass the retrying session so the total stays at hosts x attempts.
    """
    params = {
        "latitude": lat,
        "longitude": lon,
        "hourly": ",".join(HOURLY_WEATHER_VARS),
        "temperature_unit": "fahrenheit",
        "wind_speed_unit": "mph",
        "timezone": "auto",
        "forecast_days": 16,
    }
    last_error: Optional[Exception] = None
    for host in OPEN_METEO_HOSTS:
        for attempt in range(1, OPEN_METEO_ATTEMPTS_PER_HOST + 1):
            try:
                resp = http_gateway.get_response(f"https://{host}/v1/forecast", params=params, retrying=False)
                return resp.json(), _issued_time_from_headers(resp.headers)
            except (requests.RequestException, ValueError) as exc:
                last_error = exc
                logger.info("Open-Meteo forecast attempt failed",
                            extra={"host": host, "attempt": attempt, "error": repr(exc)})
    raise last_error or ValueError("Open-Meteo forecast failed")


def build_fallback_forecast(payload: dict, *, issued_time: Optional[str], lat: float, lon: float,
                            selected_date: Optional[str], start_clock: Optional[str],
                            travel_window_hours: int) -> HourlyForecast:
    """Turn an Open-Meteo hourly payload into a start-anchored snapshot."""
    hourly = payload.get("hourly") or {}
    times = hourly.get("time") or []
    if not times:
        raise ValueError("Open-Meteo forecast response did not include hourly time series.")
    timezone = payload.get("timezone")
    try:
        offset = dt.timezone(dt.timedelta(seconds=int(payload.get("utc_offset_seconds") or 0)))
    except (TypeError, ValueError):
        offset = dt.timezone.utc

    dates: List[str] = []
    for value in times:
        day = str(value)[:10]
        if day and day not in dates:
            dates.append(day)
    resolved_date = selected_date if selected_date in dates else dates[0]
    day_indexes = [i for i, value in enumerate(times) if str(value)[:10] == resolved_date]
    index = day_indexes[0]
    target = parse_clock_minutes(start_clock)
    if target is not None:
        later = [i for i in day_indexes if (parse_clock_minutes(str(times[i])[11:16]) or 0) >= target]
        index = later[0] if later else day_indexes[-1]

    def point(row: int) -> TrendPoint:
        wind = round_or_none(_series_value(hourly, "wind_speed_10m", row))
        raw_gust = _series_value(hourly, "wind_gusts_10m", row)
        if raw_gust is not None:
            gust = max(wind or 0.0, float(round(raw_gust)))
        else:
            gust = None if wind is None else max(wind, estimate_gust(wind) or wind)
        is_day = _series_value(hourly, "is_day", row)
        return TrendPoint(
            time_iso=_with_offset(times[row], offset),
            temp=round_or_none(_series_value(hourly, "temperature_2m", row)),
            wind=wind,
            gust=gust,
            wind_direction=_nearest_cardinal(hourly, row),
            precip_chance=clamp_percent(_series_value(hourly, "precipitation_probability", row)),
            humidity=clamp_percent(_series_value(hourly, "relative_humidity_2m", row)),
            dew_point=round_or_none(_series_value(hourly, "dew_point_2m", row)),
            cloud_cover=clamp_percent(_series_value(hourly, "cloud_cover", row)),
            pressure=normalize_pressure_hpa(_series_value(hourly, "surface_pressure", row)),
            condition=open_meteo_code_to_text(_series_value(hourly, "weather_code", row)),
            is_daytime=None if is_day is None else is_day >= 1,
        )

    window = clamp_travel_window_hours(travel_window_hours)
    trend = [point(row) for row in range(index, min(len(times), index + window))]
    current = trend[0]
    context_rows = [(_with_offset(times[row], offset), round_or_none(_series_value(hourly, "temperature_2m", row)),
                     point(row).is_daytime) for row in range(index, min(len(times), index + 24))]

    gust_source = OPEN_METEO_SOURCE if _series_value(hourly, "wind_gusts_10m", index) is not None \
        else "Estimated from Open-Meteo sustained wind"
    field_sources = {name: OPEN_METEO_SOURCE for name in (
        "temp", "feelsLike", "dewPoint", "description", "windSpeed", "windDirection", "humidity",
        "cloudCover", "precipChance", "isDaytime", "timezone", "forecastStartTime", "forecastEndTime",
        "trend", "temperatureContext24h")}
    field_sources["windGust"] = gust_source
    field_sources["issuedTime"] = "Open-Meteo response timestamp"
    if current.pressure is not None:
        field_sources["pressure"] = OPEN_METEO_SOURCE

    snapshot = WeatherSnapshot(
        status="ok",
        temp=current.temp,
        feels_like=compute_feels_like(current.temp, current.wind),
        dew_point=current.dew_point,
        humidity=current.humidity,
        cloud_cover=current.cloud_cover,
        precip_chance=current.precip_chance,
        pressure=current.pressure,
        wind_speed=current.wind,
        wind_gust=current.gust,
        wind_direction=current.wind_direction,
        is_daytime=current.is_daytime,
        description=current.condition or "Unknown",
        elevation=None,
        issued_time=issued_time,
        timezone=timezone,
        forecast_start_time=current.time_iso,
        forecast_end_time=_period_end(current.time_iso),
        forecast_date=resolved_date,
        trend=trend,
        temperature_context_24h=build_temperature_context(context_rows, timezone=timezone),
        forecast_link=f"https://open-meteo.com/en/docs#latitude={lat}&longitude={lon}",
        source_details=SourceDetails(primary=OPEN_METEO_SOURCE, field_sources=field_sources),
    )
    elevation_m = to_float(payload.get("elevation"))
    if elevation_m is not None:
        snapshot.elevation = float(round(elevation_m * 3.28084))
        snapshot.elevation_source = "Open-Meteo model elevation"
    snapshot.elevation_forecast = build_elevation_bands(snapshot.elevation, snapshot.temp,
                                                        snapshot.wind_speed, snapshot.wind_gust)
    snapshot.visibility_risk = build_visibility_risk(snapshot)
    return HourlyForecast(snapshot=snapshot, selected_date=resolved_date,
                          date_range={"start": dates[0], "end": dates[-1]})


def fetch_fallback_forecast(lat: float, lon: float, *, selected_date: Optional[str], start_clock: Optional[str],
                            travel_window_hours: int) -> HourlyForecast:
    """Fetch Open-Meteo hourly data and anchor it to the planned start."""
    payload, issued_time = _fetch_forecast_payload(lat, lon)
    return build_fallback_forecast(payload, issued_time=issued_time, lat=lat, lon=lon,
                                   selected_date=selected_date, start_clock=start_clock,
                                   travel_window_hours=travel_window_hours)


# ---------------------------------------------------------------------------
# Air quality
# ---------------------------------------------------------------------------


def classify_us_aqi(aqi: Optional[float]) -> str:
    if aqi is None:
        return "Unknown"
    if aqi <= 50:
        return "Good"
    if aqi <= 100:
        return "Moderate"
    if aqi <= 150:
        return "Unhealthy for Sensitive Groups"
    if aqi <= 200:
        return "Unhealthy"
    if aqi <= 300:
        return "Very Unhealthy"
    return "Hazardous"


def _closest_index(times: List[str], target: dt.datetime) -> Optional[int]:
    best, best_delta = None, None
    for i, value in enumerate(times):
        parsed = parse_iso(str(value))
        if parsed is None:
            continue
        delta = abs((parsed - target).total_seconds())
        if best_delta is None or delta < best_delta:
            best, best_delta = i, delta
    return best


def fetch_air_quality(lat: float, lon: float, target_time: dt.datetime) -> AirQualityReport:
    """US AQI and pollutants for the hour closest to the planned start."""
    params = {
        "latitude": lat,
        "longitude": lon,
        "hourly": "us_aqi,pm2_5,pm10,ozone",
        "timezone": "UTC",
        "forecast_days": 7,
    }
    payload = http_gateway.get_json(OPEN_METEO_AIR_URL, params=params)
    hourly = payload.get("hourly") or {}
    times = hourly.get("time") or []
    index = _closest_index(times, target_time)
    if index is None:
        return AirQualityReport(status="no_data")
    aqi = _series_value(hourly, "us_aqi", index)
    if aqi is None:
        return AirQualityReport(status="no_data", measured_time=str(times[index]))
    return AirQualityReport(
        status="ok",
        us_aqi=float(round(aqi)),
        category=classify_us_aqi(aqi),
        pm25=_series_value(hourly, "pm2_5", index),
        pm10=_series_value(hourly, "pm10", index),
        ozone=_series_value(hourly, "ozone", index),
        measured_time=str(times[index]),
    )


# ---------------------------------------------------------------------------
# Precipitation history and expected window
# ---------------------------------------------------------------------------


def _rolling_sum(times: List[dt.datetime], values: List, end: dt.datetime, hours: int) -> Optional[float]:
    start = end - dt.timedelta(hours=hours)
    samples = [to_float(v) for t, v in zip(times, values) if start <= t <= end]
    finite = [s for s in samples if s is not None]
    return sum(finite) if finite else None


def _forward_sum(times: List[dt.datetime], values: List, start: dt.datetime, hours: int) -> Optional[float]:
    end = start + dt.timedelta(hours=hours)
    samples = [to_float(v) for t, v in zip(times, values) if start <= t < end]
    finite = [s for s in samples if s is not None]
    return sum(finite) if finite else None


def precipitation_source_link(lat: float, lon: float) -> str:
    return (f"{OPEN_METEO_PRECIP_URL}?latitude={lat}&longitude={lon}&timezone=UTC"
            f"&past_days=3&forecast_days=8&hourly=precipitation,rain,snowfall")


def build_rainfall_report(payload: dict, *, target_time: dt.datetime, travel_window_hours: int,
                          lat: float, lon: float) -> RainfallReport:
    """Rolling past totals ending at the anchor hour plus the forward travel-window total."""
    hourly = payload.get("hourly") or {}
    raw_times = hourly.get("time") or []
    parsed = [parse_iso(str(t)) for t in raw_times]
    pairs = [(t, i) for i, t in enumerate(parsed) if t is not None]
    link = precipitation_source_link(lat, lon)
    if not pairs:
        return RainfallReport(status="no_data", note="Precipitation feed returned no hourly samples.", link=link)

    times = [t for t, _ in pairs]
    rain = [(hourly.get("rain") or hourly.get("precipitation") or [None] * len(raw_times))[i] for _, i in pairs]
    snow = [(hourly.get("snowfall") or [None] * len(raw_times))[i] for _, i in pairs]
    anchor = min(times, key=lambda t: abs((t - target_time).total_seconds()))

    def totals(values: List, hours: int) -> Optional[float]:
        value = _rolling_sum(times, values, anchor, hours)
        return None if value is None else round(value, 2)

    rain_mm = {h: totals(rain, h) for h in (12, 24, 48)}
    snow_cm = {h: totals(snow, h) for h in (12, 24, 48)}

    window = clamp_travel_window_hours(travel_window_hours)
    forward_start = next((t for t in times if t >= target_time), None)
    expected = RainfallExpected(travel_window_hours=window)
    if forward_start is not None:
        rain_window = _forward_sum(times, rain, forward_start, window)
        snow_window = _forward_sum(times, snow, forward_start, window)
        expected = RainfallExpected(
            status="ok" if rain_window is not None or snow_window is not None else "no_data",
            travel_window_hours=window,
            start_time=forward_start.isoformat(),
            end_time=(forward_start + dt.timedelta(hours=window)).isoformat(),
            rain_window_mm=None if rain_window is None else round(rain_window, 2),
            rain_window_in=mm_to_inches(rain_window),
            snow_window_cm=None if snow_window is None else round(snow_window, 2),
            snow_window_in=cm_to_inches(snow_window),
            note=f"Expected precipitation over the {window}h travel window.",
        )

    return RainfallReport(
        status="ok",
        anchor_time=anchor.isoformat(),
        totals=RainfallTotals(
            rain_past_12h_mm=rain_mm[12], rain_past_24h_mm=rain_mm[24], rain_past_48h_mm=rain_mm[48],
            rain_past_12h_in=mm_to_inches(rain_mm[12]), rain_past_24h_in=mm_to_inches(rain_mm[24]),
            rain_past_48h_in=mm_to_inches(rain_mm[48]),
            snow_past_12h_cm=snow_cm[12], snow_past_24h_cm=snow_cm[24], snow_past_48h_cm=snow_cm[48],
            snow_past_12h_in=cm_to_inches(snow_cm[12]), snow_past_24h_in=cm_to_inches(snow_cm[24]),
            snow_past_48h_in=cm_to_inches(snow_cm[48]),
        ),
        expected=expected,
        note="Rolling rain/snow totals end at the hour closest to the planned start.",
        link=link,
    )


def fetch_rainfall(lat: float, lon: float, target_time: dt.datetime, travel_window_hours: int) -> RainfallReport:
    params = {
        "latitude": lat,
        "longitude": lon,
        "timezone": "UTC",
        "past_days": 3,
        "forecast_days": 8,
        "hourly": "precipitation,rain,snowfall",
    }
    payload = http_gateway.get_json(OPEN_METEO_PRECIP_URL, params=params)
    return build_rainfall_report(payload, target_time=target_time, travel_window_hours=travel_window_hours,
                                 lat=lat, lon=lon)


def zeroed_rainfall_fallback(lat: float, lon: float, travel_window_hours: int) -> RainfallReport:
    """Placeholder when the precipitation feed is down; totals stay None."""
    return RainfallReport(
        status="partial",
        fallback_mode="zeroed_totals",
        expected=RainfallExpected(travel_window_hours=clamp_travel_window_hours(travel_window_hours)),
        note="Precipitation feed unavailable; totals could not be computed.",
        link=precipitation_source_link(lat, lon),
    )
