"""Domain vocabulary and strict schemas for trip safety reports.

This module defines the stable contract between the provider clients, the
hazard evaluators and the HTTP layer: enums, coverage codes, and Pydantic
models for every section of the report payload. No interpretation logic lives
here apart from the bulletin invariant check.

Models use snake_case attributes and serialize with camelCase aliases, so
``model_dump(by_alias=True)`` yields the wire shape clients consume.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _StrictBaseModel(BaseModel):
    """Base model with strict extra handling and camelCase wire names."""

    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict:
        """Serialize to the JSON-ready camelCase payload."""
        return self.model_dump(by_alias=True, mode="json")


class ProviderStatus(str, Enum):
    """Outcome of a single external provider call."""
    OK = "ok"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


class MatchMode(str, Enum):
    """How a point was matched to a hazard-forecast zone."""
    POLYGON = "polygon"
    NEAREST = "nearest"
    NONE = "none"


class CoverageStatus(str, Enum):
    """Freshness/availability state of a hazard bulletin."""
    REPORTED = "reported"
    NO_CENTER_COVERAGE = "no_center_coverage"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"
    NO_ACTIVE_FORECAST = "no_active_forecast"
    EXPIRED_FOR_SELECTED_START = "expired_for_selected_start"


class HazardGroup(str, Enum):
    """Score groups; each carries its own deduction cap."""
    AVALANCHE = "avalanche"
    WEATHER = "weather"
    ALERTS = "alerts"
    AIR_QUALITY = "airQuality"
    FIRE = "fire"


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


DANGER_LABELS: List[str] = ["None", "Low", "Moderate", "Considerable", "High", "Extreme"]


def danger_label(level: int) -> str:
    """Return the North American danger scale label for a 0-5 level."""
    if 0 <= level < len(DANGER_LABELS):
        return DANGER_LABELS[level]
    return "Unknown"


# ---------------------------------------------------------------------------
# Weather
# ---------------------------------------------------------------------------


class TrendPoint(_StrictBaseModel):
    """One hourly forecast row inside the travel window."""
    time_iso: Optional[str] = None
    temp: Optional[float] = None
    wind: Optional[float] = None
    gust: Optional[float] = None
    wind_direction: Optional[str] = None
    precip_chance: Optional[float] = None
    humidity: Optional[float] = None
    dew_point: Optional[float] = None
    cloud_cover: Optional[float] = None
    pressure: Optional[float] = None
    condition: Optional[str] = None
    is_daytime: Optional[bool] = None


class TemperatureContext(_StrictBaseModel):
    """Min/max and day/night extremes over the next 24 forecast hours."""
    window_hours: int = 24
    timezone: Optional[str] = None
    min_temp_f: Optional[float] = None
    max_temp_f: Optional[float] = None
    overnight_low_f: Optional[float] = None
    daytime_high_f: Optional[float] = None


class ElevationBand(_StrictBaseModel):
    """Lapse-rate projection of start conditions to a lower terrain band."""
    label: str
    delta_from_objective_ft: int
    elevation_ft: int
    temp: float
    feels_like: Optional[float] = None
    wind_speed: float
    wind_gust: float


class VisibilityRisk(_StrictBaseModel):
    score: Optional[int] = None
    level: str = "Unknown"
    summary: str
    factors: List[str] = Field(default_factory=list)
    active_hours: Optional[int] = None
    window_hours: Optional[int] = None
    source: str


class SourceDetails(_StrictBaseModel):
    """Per-field provenance for a blended weather snapshot."""
    primary: str
    blended: bool = False
    field_sources: Dict[str, str] = Field(default_factory=dict)
    supplemental_sources: List[str] = Field(default_factory=list)


class WeatherSnapshot(_StrictBaseModel):
    """Start-time weather anchored to the objective.

    Every numeric field is optional: an unavailable snapshot carries ``None``
    and ``status="unavailable"``, never zeros.
    """
    status: str = "ok"
    temp: Optional[float] = None
    feels_like: Optional[float] = None
    dew_point: Optional[float] = None
    humidity: Optional[float] = None
    cloud_cover: Optional[float] = None
    precip_chance: Optional[float] = None
    pressure: Optional[float] = None
    wind_speed: Optional[float] = None
    wind_gust: Optional[float] = None
    wind_direction: Optional[str] = None
    is_daytime: Optional[bool] = None
    description: str = "Weather data unavailable"
    elevation: Optional[float] = None
    elevation_source: Optional[str] = None
    elevation_unit: str = "ft"
    issued_time: Optional[str] = None
    timezone: Optional[str] = None
    forecast_start_time: Optional[str] = None
    forecast_end_time: Optional[str] = None
    forecast_date: Optional[str] = None
    trend: List[TrendPoint] = Field(default_factory=list)
    temperature_context_24h: Optional[TemperatureContext] = None
    visibility_risk: Optional[VisibilityRisk] = None
    elevation_forecast: List[ElevationBand] = Field(default_factory=list)
    elevation_forecast_note: Optional[str] = None
    forecast_link: Optional[str] = None
    source_details: SourceDetails = Field(default_factory=lambda: SourceDetails(primary="Unavailable"))

    @property
    def unavailable(self) -> bool:
        return self.status == "unavailable"


class SolarTimes(_StrictBaseModel):
    sunrise: str = "N/A"
    sunset: str = "N/A"
    day_length: str = "N/A"


# ---------------------------------------------------------------------------
# Avalanche bulletin
# ---------------------------------------------------------------------------


class ElevationRating(_StrictBaseModel):
    level: int
    label: str


class ElevationBands(_StrictBaseModel):
    """Danger per band: below, at and above treeline."""
    below: ElevationRating
    at: ElevationRating
    above: ElevationRating

    def levels(self) -> List[int]:
        return [self.below.level, self.at.level, self.above.level]


class ProblemSummary(_StrictBaseModel):
    id: Optional[int] = None
    name: str
    likelihood: Optional[str] = None
    size: Optional[str] = None
    location: List[str] = Field(default_factory=list)


class HazardBulletin(_StrictBaseModel):
    """Avalanche bulletin resolved for the objective.

    Invariant: an unknown danger carries no elevation bands and level 0.
    """
    center: Optional[str] = None
    center_id: Optional[str] = None
    zone: Optional[str] = None
    zone_id: Optional[str] = None
    link: Optional[str] = None
    danger_level: int = 0
    risk_label: str = "Unknown"
    danger_unknown: bool = True
    coverage_status: CoverageStatus = CoverageStatus.NO_CENTER_COVERAGE
    elevation_bands: Optional[ElevationBands] = None
    problems: List[ProblemSummary] = Field(default_factory=list)
    bottom_line: Optional[str] = None
    published_time: Optional[str] = None
    expires_time: Optional[str] = None
    relevant: bool = True
    relevance_reason: Optional[str] = None
    match_mode: MatchMode = MatchMode.NONE
    fallback_distance_km: Optional[float] = None

    @model_validator(mode="after")
    def unknown_danger_has_no_bands(self) -> "HazardBulletin":
        if self.danger_unknown and (self.elevation_bands is not None or self.danger_level != 0):
            raise ValueError("Unknown danger must not carry elevation bands or a danger level")
        if self.coverage_status == CoverageStatus.EXPIRED_FOR_SELECTED_START and self.danger_unknown:
            raise ValueError("Expired bulletins keep their last known danger")
        return self


# ---------------------------------------------------------------------------
# Supporting feeds
# ---------------------------------------------------------------------------


class AlertItem(_StrictBaseModel):
    event: str = "Alert"
    severity: str = "Unknown"
    urgency: Optional[str] = None
    certainty: Optional[str] = None
    headline: Optional[str] = None
    description: Optional[str] = None
    instruction: Optional[str] = None
    area_desc: List[str] = Field(default_factory=list)
    sent: Optional[str] = None
    effective: Optional[str] = None
    onset: Optional[str] = None
    ends: Optional[str] = None
    expires: Optional[str] = None
    link: Optional[str] = None


class AlertsReport(_StrictBaseModel):
    source: str = "NOAA/NWS Active Alerts"
    status: str = "unavailable"
    active_count: int = 0
    total_active_count: int = 0
    highest_severity: str = "None"
    note: Optional[str] = None
    alerts: List[AlertItem] = Field(default_factory=list)


class AirQualityReport(_StrictBaseModel):
    source: str = "Open-Meteo Air Quality API"
    status: str = "unavailable"
    us_aqi: Optional[float] = None
    category: str = "Unknown"
    pm25: Optional[float] = None
    pm10: Optional[float] = None
    ozone: Optional[float] = None
    measured_time: Optional[str] = None


class RainfallTotals(_StrictBaseModel):
    rain_past_12h_mm: Optional[float] = None
    rain_past_24h_mm: Optional[float] = None
    rain_past_48h_mm: Optional[float] = None
    rain_past_12h_in: Optional[float] = None
    rain_past_24h_in: Optional[float] = None
    rain_past_48h_in: Optional[float] = None
    snow_past_12h_cm: Optional[float] = None
    snow_past_24h_cm: Optional[float] = None
    snow_past_48h_cm: Optional[float] = None
    snow_past_12h_in: Optional[float] = None
    snow_past_24h_in: Optional[float] = None
    snow_past_48h_in: Optional[float] = None


class RainfallExpected(_StrictBaseModel):
    status: str = "unavailable"
    travel_window_hours: int = 12
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    rain_window_mm: Optional[float] = None
    rain_window_in: Optional[float] = None
    snow_window_cm: Optional[float] = None
    snow_window_in: Optional[float] = None
    note: str = "Expected precipitation forecast unavailable."


class RainfallReport(_StrictBaseModel):
    source: str = "Open-Meteo Precipitation History"
    status: str = "unavailable"
    fallback_mode: Optional[str] = None
    anchor_time: Optional[str] = None
    timezone: str = "UTC"
    totals: RainfallTotals = Field(default_factory=RainfallTotals)
    expected: RainfallExpected = Field(default_factory=RainfallExpected)
    note: str = "Precipitation history and forecast unavailable."
    link: Optional[str] = None


class SnotelObservation(_StrictBaseModel):
    station_id: str
    station_name: Optional[str] = None
    distance_km: Optional[float] = None
    elevation_ft: Optional[float] = None
    observed_date: Optional[str] = None
    snow_depth_in: Optional[float] = None
    swe_in: Optional[float] = None


class NohrscObservation(_StrictBaseModel):
    snow_depth_in: Optional[float] = None
    swe_in: Optional[float] = None


class SnowpackReport(_StrictBaseModel):
    source: str = "NRCS SNOTEL + NOAA NOHRSC"
    status: str = "unavailable"
    snotel: Optional[SnotelObservation] = None
    nohrsc: Optional[NohrscObservation] = None
    summary: str = "Snowpack observations unavailable."


class FireRisk(_StrictBaseModel):
    source: str = "Derived from NOAA weather, NWS alerts, and air-quality signals"
    status: str = "unavailable"
    level: Optional[int] = None
    label: str = "Unknown"
    guidance: str = "Fire risk signal unavailable."
    reasons: List[str] = Field(default_factory=lambda: ["Fire risk signal unavailable."])
    alerts_considered: List[str] = Field(default_factory=list)


class HeatRisk(_StrictBaseModel):
    source: str = "Derived from forecast temperature, apparent temperature, and humidity"
    status: str = "unavailable"
    level: int = 0
    label: str = "Low"
    guidance: str = "Heat-risk signal unavailable."
    reasons: List[str] = Field(default_factory=lambda: ["Heat-risk signal unavailable."])
    peak_temp_f: Optional[float] = None
    peak_feels_like_f: Optional[float] = None
    lower_terrain_label: Optional[str] = None
    lower_terrain_feels_like_f: Optional[float] = None


class SnowProfile(_StrictBaseModel):
    code: str
    label: str
    summary: str
    confidence: ConfidenceTier
    reasons: List[str] = Field(default_factory=list)


class TerrainCondition(_StrictBaseModel):
    code: str
    label: str
    impact: str
    recommended_travel: str
    snow_profile: SnowProfile
    confidence: ConfidenceTier
    summary: str
    reasons: List[str] = Field(default_factory=list)
    signals: Dict[str, Optional[float]] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Safety score
# ---------------------------------------------------------------------------


class HazardFactor(_StrictBaseModel):
    """One scored hazard contribution; impact is always positive."""
    hazard: str
    impact: int = Field(gt=0)
    group: HazardGroup
    message: str
    source: str


class GroupImpact(_StrictBaseModel):
    raw: int
    capped: int
    cap: int


class SafetyScore(_StrictBaseModel):
    score: int = Field(ge=0, le=100)
    confidence: int = Field(ge=20, le=100)
    primary_hazard: str
    explanations: List[str]
    factors: List[HazardFactor]
    group_impacts: Dict[str, GroupImpact]
    confidence_reasons: List[str]
    sources_used: List[str]
    air_quality_category: str = "Unknown"
