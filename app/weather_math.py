"""Pure unit conversions and derived-weather helpers shared by the weather providers."""
from __future__ import annotations

import datetime as dt
import math
import re
from typing import Iterable, List, Optional, Sequence, Tuple

from app.domain import (
    ElevationBand,
    SourceDetails,
    TemperatureContext,
    TrendPoint,
    VisibilityRisk,
    WeatherSnapshot,
)

FT_PER_METER = 3.28084
TEMP_LAPSE_F_PER_1000FT = 3.3
WIND_INCREASE_MPH_PER_1000FT = 2.0
GUST_INCREASE_MPH_PER_1000FT = 2.5

UNAVAILABLE_DESCRIPTION = "Weather data unavailable"
VISIBILITY_RISK_SOURCE = "Derived from weather description, precipitation, wind, humidity, and cloud cover signals"

OPEN_METEO_CODE_LABELS = {
    0: "Clear",
    1: "Mainly Clear",
    2: "Partly Cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Depositing Rime Fog",
    51: "Light Drizzle",
    53: "Moderate Drizzle",
    55: "Dense Drizzle",
    56: "Light Freezing Drizzle",
    57: "Dense Freezing Drizzle",
    61: "Slight Rain",
    63: "Moderate Rain",
    65: "Heavy Rain",
    66: "Light Freezing Rain",
    67: "Heavy Freezing Rain",
    71: "Slight Snow Fall",
    73: "Moderate Snow Fall",
    75: "Heavy Snow Fall",
    77: "Snow Grains",
    80: "Slight Rain Showers",
    81: "Moderate Rain Showers",
    82: "Violent Rain Showers",
    85: "Slight Snow Showers",
    86: "Heavy Snow Showers",
    95: "Thunderstorm",
    96: "Thunderstorm with Slight Hail",
    99: "Thunderstorm with Heavy Hail",
}

CARDINALS = ["N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
             "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW"]


def to_float(value) -> Optional[float]:
    """Coerce to a finite float, or None. Blank strings and bools are not numbers."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    return numeric if math.isfinite(numeric) else None


def round_or_none(value: Optional[float]) -> Optional[float]:
    return None if value is None else float(round(value))


def parse_iso(value: Optional[str]) -> Optional[dt.datetime]:
    """Parse an ISO-8601 timestamp; naive values are read as UTC."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def parse_clock_minutes(value: Optional[str]) -> Optional[int]:
    """Parse ``HH:MM`` (optionally with AM/PM) to minutes after midnight."""
    if not value or not isinstance(value, str):
        return None
    match = re.match(r"^\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*([AaPp][Mm])?\s*$", value)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    meridiem = (match.group(3) or "").upper()
    if meridiem:
        if hour < 1 or hour > 12:
            return None
        hour = hour % 12 + (12 if meridiem == "PM" else 0)
    if hour > 23 or minute > 59:
        return None
    return hour * 60 + minute


def clamp_travel_window_hours(value, fallback: int = 12) -> int:
    numeric = to_float(value)
    if numeric is None:
        return fallback
    return max(1, min(24, int(round(numeric))))


def mm_to_inches(mm: Optional[float]) -> Optional[float]:
    return None if mm is None else round(mm / 25.4, 2)


def cm_to_inches(cm: Optional[float]) -> Optional[float]:
    return None if cm is None else round(cm / 2.54, 2)


def compute_feels_like(temp_f: Optional[float], wind_mph: Optional[float]) -> Optional[float]:
    """NWS wind chill when cold and breezy, otherwise the air temperature."""
    if temp_f is None:
        return None
    wind = wind_mph or 0.0
    if temp_f <= 50 and wind >= 3:
        factor = math.pow(wind, 0.16)
        return float(round(35.74 + 0.6215 * temp_f - 35.75 * factor + 0.4275 * temp_f * factor))
    return float(round(temp_f))


def parse_wind_mph(text) -> Optional[float]:
    """Parse NOAA wind strings such as ``"10 to 15 mph"``; the larger number wins."""
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        return to_float(text)
    if not isinstance(text, str):
        return None
    numbers = [float(n) for n in re.findall(r"\d+(?:\.\d+)?", text)]
    if not numbers:
        return None
    return max(numbers)


def estimate_gust(wind_mph: Optional[float]) -> Optional[float]:
    """Estimate a gust from sustained wind when the provider reports none."""
    if wind_mph is None:
        return None
    if wind_mph <= 5:
        return float(round(wind_mph + 2))
    if wind_mph <= 15:
        return float(round(wind_mph * 1.25))
    if wind_mph <= 30:
        return float(round(wind_mph * 1.35))
    return float(round(wind_mph * 1.45))


def degrees_to_cardinal(degrees) -> Optional[str]:
    value = to_float(degrees)
    if value is None:
        return None
    return CARDINALS[int(round((value % 360) / 22.5)) % 16]


def open_meteo_code_to_text(code) -> str:
    value = to_float(code)
    if value is None:
        return "Unknown"
    return OPEN_METEO_CODE_LABELS.get(int(value), "Unknown")


def normalize_dew_point_f(field) -> Optional[float]:
    """NOAA quantitative value to whole degrees F."""
    if not isinstance(field, dict):
        return None
    value = to_float(field.get("value"))
    if value is None:
        return None
    unit = str(field.get("unitCode") or "").lower()
    if "degc" in unit:
        value = value * 9 / 5 + 32
    return float(round(value))


def normalize_pressure_hpa(field) -> Optional[float]:
    """Accept a raw number or a NOAA quantitative value; return hPa to one decimal."""
    if field is None:
        return None
    if isinstance(field, dict):
        value = to_float(field.get("value"))
        if value is None:
            return None
        unit = str(field.get("unitCode") or "").lower()
        if any(token in unit for token in ("hpa", "hectopascal", "millibar", "mb")):
            return round(value, 1)
        if "pa" in unit or value > 2000:
            return round(value / 100, 1)
        return round(value, 1)
    value = to_float(field)
    if value is None:
        return None
    return round(value / 100 if value > 2000 else value, 1)


def clamp_percent(value) -> Optional[float]:
    numeric = to_float(value)
    if numeric is None:
        return None
    return float(max(0, min(100, round(numeric))))


def _cloud_from_icon(icon) -> Optional[float]:
    text = str(icon or "").lower()
    if not text:
        return None
    tokens = [token.strip() for token in re.split(r"[/,?]", text) if token.strip()]
    for prefix, value in (("ovc", 95.0), ("bkn", 75.0), ("sct", 50.0), ("few", 20.0)):
        if any(token.startswith(prefix) for token in tokens):
            return value
    if any(token in ("skc", "clr") for token in tokens):
        return 5.0
    return None


def _cloud_from_text(short_forecast) -> Optional[float]:
    text = " ".join(str(short_forecast or "").lower().split())
    if not text:
        return None
    if "overcast" in text:
        return 95.0
    if "mostly cloudy" in text:
        return 80.0
    if "partly cloudy" in text or "partly sunny" in text:
        return 50.0
    if "mostly sunny" in text:
        return 25.0
    if "sunny" in text or "clear" in text:
        return 10.0
    if "cloudy" in text:
        return 70.0
    return None


def resolve_noaa_cloud_cover(period: dict) -> Tuple[Optional[float], str]:
    """Cloud cover from skyCover, else icon tokens, else the short forecast text."""
    sky = period.get("skyCover") if isinstance(period.get("skyCover"), dict) else {}
    value = clamp_percent(sky.get("value"))
    if value is not None:
        return value, "NOAA skyCover"
    value = _cloud_from_icon(period.get("icon"))
    if value is not None:
        return value, "NOAA icon-derived cloud cover"
    value = _cloud_from_text(period.get("shortForecast"))
    if value is not None:
        return value, "NOAA shortForecast-derived cloud cover"
    return None, "Unavailable"


def build_temperature_context(points: Sequence[Tuple[Optional[str], Optional[float], Optional[bool]]],
                              timezone: Optional[str] = None,
                              window_hours: int = 24) -> Optional[TemperatureContext]:
    """Summarize ``(time_iso, temp_f, is_daytime)`` rows over the next ``window_hours``."""
    rows = [row for row in list(points)[:max(1, window_hours)] if row[1] is not None]
    if not rows:
        return None
    temps = [row[1] for row in rows]
    day = [temp for _, temp, is_day in rows if is_day is True]
    night = [temp for _, temp, is_day in rows if is_day is False]
    return TemperatureContext(
        window_hours=max(1, window_hours),
        timezone=timezone,
        min_temp_f=min(temps),
        max_temp_f=max(temps),
        overnight_low_f=min(night) if night else None,
        daytime_high_f=max(day) if day else None,
    )


_BAND_TEMPLATES = [
    (13000, [("Approach Terrain", -3500), ("Mid Mountain", -2200), ("Near Objective", -1000), ("Objective Elevation", 0)]),
    (9000, [("Approach Terrain", -2800), ("Mid Mountain", -1700), ("Near Objective", -800), ("Objective Elevation", 0)]),
    (6000, [("Lower Terrain", -2000), ("Mid Terrain", -1200), ("Near Objective", -500), ("Objective Elevation", 0)]),
    (0, [("Lower Terrain", -1000), ("Mid Terrain", -500), ("Near Objective", -200), ("Objective Elevation", 0)]),
]


def build_elevation_bands(base_elevation_ft: Optional[float], temp_f: Optional[float],
                          wind_mph: Optional[float], gust_mph: Optional[float]) -> List[ElevationBand]:
    """Project start conditions down through terrain bands with fixed lapse rates."""
    if base_elevation_ft is None or temp_f is None:
        return []
    objective = max(0, int(round(base_elevation_ft)))
    template = next(bands for floor, bands in _BAND_TEMPLATES if objective >= floor)
    seen = set()
    bands: List[ElevationBand] = []
    for label, delta in template:
        elevation = max(0, min(objective, objective + delta))
        if elevation in seen:
            continue
        seen.add(elevation)
        delta_kft = (elevation - objective) / 1000
        band_temp = float(round(temp_f - delta_kft * TEMP_LAPSE_F_PER_1000FT))
        band_wind = float(max(0, round((wind_mph or 0) + delta_kft * WIND_INCREASE_MPH_PER_1000FT)))
        band_gust = float(max(0, round((gust_mph or 0) + delta_kft * GUST_INCREASE_MPH_PER_1000FT)))
        bands.append(ElevationBand(
            label=label,
            delta_from_objective_ft=elevation - objective,
            elevation_ft=elevation,
            temp=band_temp,
            feels_like=compute_feels_like(band_temp, band_wind),
            wind_speed=band_wind,
            wind_gust=band_gust,
        ))
    return sorted(bands, key=lambda band: band.elevation_ft)


def _trend_hour_obscured(point: TrendPoint) -> bool:
    condition = (point.condition or "").lower()
    effective_wind = max(point.wind or 0, point.gust or 0)
    signals = 0
    if re.search(r"whiteout|blizzard|snow squall|blowing snow|fog|mist|haze|smoke", condition):
        signals += 2
    if point.precip_chance is not None and point.precip_chance >= 60:
        signals += 2
    elif point.precip_chance is not None and point.precip_chance >= 40:
        signals += 1
    if point.humidity is not None and point.cloud_cover is not None \
            and point.humidity >= 92 and point.cloud_cover >= 92:
        signals += 2
    elif point.cloud_cover is not None and point.cloud_cover >= 90:
        signals += 1
    if effective_wind >= 35:
        signals += 2
    elif effective_wind >= 25:
        signals += 1
    return signals >= 3


def build_visibility_risk(snapshot: WeatherSnapshot) -> VisibilityRisk:
    """Score whiteout / reduced-visibility potential from 0 to 100."""
    description = (snapshot.description or "").lower().strip()
    precip = snapshot.precip_chance
    humidity = snapshot.humidity
    cloud = snapshot.cloud_cover
    trend = snapshot.trend
    if (not description or "unavailable" in description) and precip is None and humidity is None \
            and cloud is None and snapshot.wind_speed is None and snapshot.wind_gust is None and not trend:
        return VisibilityRisk(summary="Visibility/whiteout signal unavailable for this selected period.",
                              source=VISIBILITY_RISK_SOURCE)

    score = 0
    factors: List[str] = []

    def add(points: int, message: str) -> None:
        nonlocal score
        score += points
        factors.append(message)

    if re.search(r"whiteout|ground blizzard|blizzard", description):
        add(55, "whiteout/blizzard wording in forecast")
    elif re.search(r"snow squall|heavy snow|blowing snow|snow showers", description):
        add(38, "snowfall or blowing-snow signal")
    elif re.search(r"\bsnow\b", description):
        add(12, "light snow signal")
    elif re.search(r"dense fog|freezing fog|fog|mist|haze|smoke", description):
        add(30, "fog/smoke/haze signal")
    elif re.search(r"drizzle|rain|showers", description):
        add(12, "rain/drizzle signal")

    if precip is not None:
        for threshold, points, prefix in ((80, 22, "high"), (60, 16, "elevated"), (40, 10, "moderate"), (25, 4, "minor")):
            if precip >= threshold:
                add(points, f"{prefix} precip chance ({round(precip)}%)")
                break

    effective_wind = max(snapshot.wind_speed or 0, snapshot.wind_gust or 0)
    if effective_wind >= 45:
        add(20, f"strong transport winds ({round(effective_wind)} mph)")
    elif effective_wind >= 35:
        add(14, f"wind-driven visibility reduction possible ({round(effective_wind)} mph)")
    elif effective_wind >= 25:
        add(8, f"moderate wind signal ({round(effective_wind)} mph)")

    if humidity is not None and cloud is not None and humidity >= 92 and cloud >= 92:
        add(18, f"saturated low-contrast air mass ({round(humidity)}% RH / {round(cloud)}% cloud)")
    elif humidity is not None and humidity >= 90:
        add(8, f"very high humidity ({round(humidity)}%)")

    if cloud is not None and cloud >= 95:
        add(8, f"overcast signal ({round(cloud)}% cloud)")
    elif cloud is not None and cloud >= 80:
        add(4, f"mostly overcast signal ({round(cloud)}% cloud)")

    active_hours = sum(1 for point in trend if _trend_hour_obscured(point))
    if active_hours >= 6:
        add(12, f"{active_hours}/{len(trend)} trend hours show persistent reduced visibility")
    elif active_hours >= 3:
        add(7, f"{active_hours}/{len(trend)} trend hours show reduced visibility")
    elif active_hours >= 1:
        add(3, f"{active_hours}/{len(trend)} trend hours show brief reduced visibility")

    if snapshot.is_daytime is False:
        add(6, "nighttime period reduces terrain contrast")

    bounded = max(0, min(100, int(round(score))))
    if bounded >= 80:
        level, summary = "Extreme", "Whiteout conditions are plausible; terrain contrast and navigation margin may collapse quickly."
    elif bounded >= 60:
        level, summary = "High", "Poor visibility is likely during this window. Expect route-finding and terrain-reading difficulty."
    elif bounded >= 40:
        level, summary = "Moderate", "Intermittent visibility reductions are possible. Keep close navigation checks."
    elif bounded >= 20:
        level, summary = "Low", "Mostly workable visibility with occasional reduced-contrast periods."
    else:
        level, summary = "Minimal", "No strong whiteout signal in the selected period."
    return VisibilityRisk(score=bounded, level=level, summary=summary, factors=factors[:4],
                          active_hours=active_hours, window_hours=len(trend), source=VISIBILITY_RISK_SOURCE)


def unavailable_weather(lat: float, lon: float, forecast_date: Optional[str]) -> WeatherSnapshot:
    """Explicit placeholder when every weather provider failed; numbers stay None."""
    snapshot = WeatherSnapshot(
        status="unavailable",
        description=UNAVAILABLE_DESCRIPTION,
        forecast_date=forecast_date,
        elevation_forecast_note="Weather forecast data unavailable; elevation-based estimate could not be generated.",
        forecast_link=f"https://forecast.weather.gov/MapClick.php?lat={lat}&lon={lon}",
        source_details=SourceDetails(primary="Unavailable"),
    )
    snapshot.visibility_risk = build_visibility_risk(snapshot)
    return snapshot


def finite_values(values: Iterable[Optional[float]]) -> List[float]:
    return [value for value in values if value is not None]
