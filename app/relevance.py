"""Decide whether avalanche hazard applies to the objective at all.

Severity and relevance are separate questions: a Low rating in January is
relevant, while an uncovered desert objective in July is not. Every branch
returns a human-readable reason.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

from app.domain import CoverageStatus, HazardBulletin, RainfallReport, SnowpackReport, WeatherSnapshot

WINTER_MONTHS = frozenset({11, 12, 1, 2, 3, 4})
SHOULDER_MONTHS = frozenset({5, 6, 10})

SNOTEL_MAX_DISTANCE_KM = 80
MATERIAL_DEPTH_IN = 6.0
MATERIAL_SWE_IN = 1.5
MEASURABLE_DEPTH_IN = 2.0
MEASURABLE_SWE_IN = 0.5
LOW_DEPTH_IN = 1.0
LOW_SWE_IN = 0.25

HIGH_ELEVATION_FT = 8500
MID_ELEVATION_FT = 6500
HIGH_LATITUDE = 42
WINTRY_PATTERN = re.compile(r"snow|sleet|blizzard|ice|freezing|wintry|graupel|flurr|rime")


@dataclass
class SnowpackSignal:
    level: str  # material | measurable | low | mixed | unknown
    reason: Optional[str] = None


@dataclass
class Relevance:
    relevant: bool
    reason: str


def parse_month(date_value: Optional[str]) -> Optional[int]:
    if not date_value:
        return None
    match = re.match(r"^(\d{4})-(\d{2})-(\d{2})$", date_value.strip())
    if not match:
        return None
    month = int(match.group(2))
    return month if 1 <= month <= 12 else None


def _describe(depth: Optional[float], swe: Optional[float], swe_digits: int = 1) -> str:
    parts: List[str] = []
    if depth is not None:
        parts.append(f"depth ~{depth:.1f} in")
    if swe is not None:
        parts.append(f"SWE ~{swe:.{swe_digits}f} in")
    return ", ".join(parts)


def evaluate_snowpack_signal(snowpack: Optional[SnowpackReport]) -> SnowpackSignal:
    """Classify the deepest observed depth and SWE across station and grid sources."""
    if snowpack is None:
        return SnowpackSignal(level="unknown")
    depths: List[float] = []
    swes: List[float] = []
    snotel = snowpack.snotel
    if snotel is not None and (snotel.distance_km is None or snotel.distance_km <= SNOTEL_MAX_DISTANCE_KM):
        if snotel.snow_depth_in is not None:
            depths.append(snotel.snow_depth_in)
        if snotel.swe_in is not None:
            swes.append(snotel.swe_in)
    if snowpack.nohrsc is not None:
        if snowpack.nohrsc.snow_depth_in is not None:
            depths.append(snowpack.nohrsc.snow_depth_in)
        if snowpack.nohrsc.swe_in is not None:
            swes.append(snowpack.nohrsc.swe_in)
    if not depths and not swes:
        return SnowpackSignal(level="unknown")

    depth = max(depths) if depths else None
    swe = max(swes) if swes else None
    if (depth is not None and depth >= MATERIAL_DEPTH_IN) or (swe is not None and swe >= MATERIAL_SWE_IN):
        return SnowpackSignal("material", f"Snowpack observations show material snowpack ({_describe(depth, swe)}).")
    if (depth is not None and depth >= MEASURABLE_DEPTH_IN) or (swe is not None and swe >= MEASURABLE_SWE_IN):
        return SnowpackSignal("measurable", f"Snowpack observations show measurable snowpack ({_describe(depth, swe)}).")
    if depth is not None and depth <= LOW_DEPTH_IN and (swe is None or swe <= LOW_SWE_IN):
        return SnowpackSignal("low", f"Snowpack observations show very low snow signal ({_describe(depth, swe, 2)}).")
    return SnowpackSignal("mixed", "Snowpack observations are mixed or patchy and below the measurable threshold.")


def has_wintry_signal(weather: WeatherSnapshot, rainfall: Optional[RainfallReport]) -> bool:
    description = (weather.description or "").lower()
    if WINTRY_PATTERN.search(description):
        return True
    if weather.temp is not None and weather.temp <= 34:
        return True
    if weather.feels_like is not None and weather.feels_like <= 30:
        return True
    if (weather.precip_chance is not None and weather.precip_chance >= 50
            and weather.temp is not None and weather.temp <= 38):
        return True
    expected_snow = rainfall.expected.snow_window_in if rainfall is not None else None
    return expected_snow is not None and expected_snow >= 6


def evaluate_relevance(lat: float, selected_date: Optional[str], weather: WeatherSnapshot,
                       bulletin: HazardBulletin, snowpack: Optional[SnowpackReport],
                       rainfall: Optional[RainfallReport]) -> Relevance:
    """Ordered relevance decision; earlier branches win."""
    if bulletin.coverage_status == CoverageStatus.EXPIRED_FOR_SELECTED_START:
        return Relevance(True, "Avalanche product expired before the selected start time; shown as stale guidance only.")
    if bulletin.coverage_status == CoverageStatus.REPORTED and not bulletin.danger_unknown:
        return Relevance(True, "Official avalanche center forecast covers this objective.")

    if has_wintry_signal(weather, rainfall):
        return Relevance(True, "Forecast includes wintry signals (snow, ice or freezing conditions).")

    signal = evaluate_snowpack_signal(snowpack)
    if signal.level in ("material", "measurable"):
        return Relevance(True, signal.reason or "Snowpack observations indicate meaningful snowpack.")

    if signal.level == "low" and bulletin.coverage_status in (CoverageStatus.NO_ACTIVE_FORECAST,
                                                              CoverageStatus.NO_CENTER_COVERAGE):
        if bulletin.coverage_status == CoverageStatus.NO_ACTIVE_FORECAST:
            return Relevance(False, f"{signal.reason} Local avalanche center is out of forecast season.")
        return Relevance(False, f"{signal.reason} No local avalanche center coverage for this objective.")

    month = parse_month(selected_date or weather.forecast_date)
    elevation = weather.elevation
    high_elevation = elevation is not None and elevation >= HIGH_ELEVATION_FT
    mid_elevation = elevation is not None and elevation >= MID_ELEVATION_FT
    unknown_season = month is None
    winter = unknown_season or month in WINTER_MONTHS or (high_elevation and month == 5)
    shoulder = unknown_season or month in SHOULDER_MONTHS

    if high_elevation and (winter or shoulder):
        return Relevance(True, "High-elevation objective has meaningful seasonal snow potential.")
    if mid_elevation and abs(lat) >= HIGH_LATITUDE and winter:
        return Relevance(True, "Mid-elevation objective in winter window at snow-prone latitude.")
    return Relevance(False, "Objective appears typically low-snow for the selected season and forecast.")


def apply_relevance(bulletin: HazardBulletin, relevance: Relevance) -> HazardBulletin:
    return bulletin.model_copy(update={"relevant": relevance.relevant, "relevance_reason": relevance.reason})
