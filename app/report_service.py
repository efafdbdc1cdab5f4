"""Assemble the full trip safety report for one coordinate, date and start time.

Two concurrent batches drive a request. Batch 1 fetches blended weather with
solar times alongside the avalanche zone catalog. The zone match then flows
through the bulletin cascade. Batch 2 fetches alerts, air quality, rainfall
and snowpack. Pure evaluators (relevance, terrain, fire, heat, score) run last.

Any provider failure is replaced by a placeholder section; only input
validation is terminal.
"""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from app import alerts as alerts_service
from app.bulletin_cascade import build_bulletin, unknown_bulletin
from app.config import settings
from app.data_sources import build_weather_providers, open_meteo_client, solar_client
from app.data_sources.http_gateway import call_provider, utc_now
from app.data_sources.snowpack_client import fetch_snowpack
from app.domain import (
    AirQualityReport,
    AlertsReport,
    CoverageStatus,
    FireRisk,
    HazardBulletin,
    HeatRisk,
    ProviderStatus,
    RainfallReport,
    SnowpackReport,
    SolarTimes,
    WeatherSnapshot,
)
from app.errors import InputValidationError
from app.fire_heat import build_fire_risk, build_heat_risk
from app.relevance import apply_relevance, evaluate_relevance
from app.scoring import compute_safety_score
from app.task_group import TaskGroup
from app.terrain_condition import derive_terrain_condition
from app.weather_blender import BlendedWeather, blend_weather
from app.weather_math import clamp_travel_window_hours, parse_clock_minutes, parse_iso, to_float, unavailable_weather
from app.zone_resolver import ZoneCatalog, resolve_zone, zone_catalog
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="report_service")

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
PARTIAL_FAILURE_MESSAGE = "Report partially failed to generate due to upstream API errors."
WEATHER_WARNING = ("Weather providers are unavailable; wind, precipitation and temperature hazards could not be "
                   "assessed.")


@dataclass(frozen=True)
class ReportRequest:
    """Validated request inputs."""
    lat: float
    lon: float
    requested_date: Optional[str]
    start_clock: Optional[str]
    travel_window_hours: int


def validate_request(lat: Optional[str], lon: Optional[str], date: Optional[str] = None,
                     start: Optional[str] = None, travel_window_hours: Optional[str] = None) -> ReportRequest:
    """Parse raw query values; raises ``InputValidationError`` with the client-facing message."""
    if lat is None or lon is None or not str(lat).strip() or not str(lon).strip():
        raise InputValidationError("Latitude and longitude are required")
    parsed_lat, parsed_lon = to_float(lat), to_float(lon)
    if (parsed_lat is None or parsed_lon is None or not -90 <= parsed_lat <= 90
            or not -180 <= parsed_lon <= 180):
        raise InputValidationError("Latitude/longitude must be valid decimal coordinates.")

    requested_date = (date or "").strip() or None
    if requested_date is not None:
        if not ISO_DATE.match(requested_date):
            raise InputValidationError("Invalid date format. Use YYYY-MM-DD.")
        try:
            dt.date.fromisoformat(requested_date)
        except ValueError:
            raise InputValidationError("Invalid date format. Use YYYY-MM-DD.") from None

    start_clock = (start or "").strip() or None
    if start_clock is not None:
        minutes = parse_clock_minutes(start_clock)
        if minutes is None:
            raise InputValidationError("Invalid start time format. Use HH:MM.")
        start_clock = f"{minutes // 60:02d}:{minutes % 60:02d}"

    return ReportRequest(
        lat=parsed_lat,
        lon=parsed_lon,
        requested_date=requested_date,
        start_clock=start_clock,
        travel_window_hours=clamp_travel_window_hours(travel_window_hours, settings.default_travel_window_hours),
    )


@dataclass
class WeatherBundle:
    blended: BlendedWeather
    solar: SolarTimes


def fetch_weather_and_solar(request: ReportRequest) -> WeatherBundle:
    """Blended weather, then solar times for whichever date the weather resolved to."""
    primary, secondary = build_weather_providers()
    blended = blend_weather(primary, secondary, request.lat, request.lon,
                            selected_date=request.requested_date, start_clock=request.start_clock,
                            travel_window_hours=request.travel_window_hours)
    solar = SolarTimes()
    solar_date = blended.selected_date or request.requested_date
    if solar_date:
        result = call_provider("sunrise-sunset", solar_client.fetch_solar_times, request.lat, request.lon, solar_date)
        if result.available:
            solar = result.data
    return WeatherBundle(blended=blended, solar=solar)


def planned_start(weather: WeatherSnapshot, selected_date: Optional[str]) -> Optional[dt.datetime]:
    """Start of the selected forecast period, else noon UTC on the selected date."""
    start = parse_iso(weather.forecast_start_time)
    if start is None and selected_date:
        start = parse_iso(f"{selected_date}T12:00:00Z")
    return start


def fetch_rainfall_or_placeholder(lat: float, lon: float, target: dt.datetime, window: int) -> RainfallReport:
    result = call_provider("Open-Meteo precipitation", open_meteo_client.fetch_rainfall, lat, lon, target, window)
    if result.available:
        return result.data
    logger.info("Using zeroed rainfall placeholder", extra={"lat": lat, "lon": lon})
    return open_meteo_client.zeroed_rainfall_fallback(lat, lon, window)


def _stamp(section: Any, generated: str) -> Optional[dict]:
    if section is None:
        return None
    payload = section.to_payload()
    payload["generatedTime"] = generated
    return payload


class ReportService:
    """Runs the two fan-out batches and assembles the response payload."""

    def __init__(self, catalog: Optional[ZoneCatalog] = None, *, now=utc_now) -> None:
        self.catalog = catalog or zone_catalog
        self._now = now

    def build_report(self, request: ReportRequest) -> Dict[str, Any]:
        sections: Dict[str, Any] = {}
        try:
            return self._assemble(request, sections)
        except InputValidationError:
            raise
        except Exception as exc:
            logger.exception("Report assembly failed", extra={"lat": request.lat, "lon": request.lon})
            return self._partial_payload(request, sections, exc)

    def _assemble(self, request: ReportRequest, sections: Dict[str, Any]) -> Dict[str, Any]:
        lat, lon = request.lat, request.lon

        with TaskGroup(max_workers=2) as batch:
            batch.submit("weather", fetch_weather_and_solar, request)
            batch.submit("catalog", self.catalog.features)
        batch.raise_terminal()
        outcomes = batch.results()

        bundle: Optional[WeatherBundle] = outcomes["weather"].unwrap_or(None)
        if bundle is None:
            weather = unavailable_weather(lat, lon, request.requested_date)
            blended = BlendedWeather(snapshot=weather, selected_date=request.requested_date, date_range=None,
                                     status=ProviderStatus.UNAVAILABLE)
            solar = SolarTimes()
        else:
            blended, solar = bundle.blended, bundle.solar
            weather = blended.snapshot
        selected_date = blended.selected_date or request.requested_date
        sections.update(weather=weather, solar=solar, selected_date=selected_date, date_range=blended.date_range)

        target = planned_start(weather, selected_date)
        features = outcomes["catalog"].unwrap_or(None)
        if features is None:
            bulletin = unknown_bulletin(CoverageStatus.TEMPORARILY_UNAVAILABLE)
        else:
            match = resolve_zone(lat, lon, features)
            bulletin = build_bulletin(match, lat, lon, planned_start=target)
        sections["avalanche"] = bulletin

        alert_target = target or self._now()
        with TaskGroup(max_workers=4) as batch:
            batch.submit("alerts", alerts_service.fetch_alerts, lat, lon, alert_target)
            batch.submit("air_quality", open_meteo_client.fetch_air_quality, lat, lon, alert_target)
            batch.submit("rainfall", fetch_rainfall_or_placeholder, lat, lon, alert_target,
                         request.travel_window_hours)
            batch.submit("snowpack", fetch_snowpack, lat, lon, selected_date)
        outcomes = batch.results()
        alerts: AlertsReport = outcomes["alerts"].unwrap_or(AlertsReport())
        air_quality: AirQualityReport = outcomes["air_quality"].unwrap_or(AirQualityReport())
        rainfall: RainfallReport = outcomes["rainfall"].unwrap_or(
            open_meteo_client.zeroed_rainfall_fallback(lat, lon, request.travel_window_hours))
        snowpack: SnowpackReport = outcomes["snowpack"].unwrap_or(SnowpackReport())
        sections.update(alerts=alerts, air_quality=air_quality, rainfall=rainfall, snowpack=snowpack)

        fire = build_fire_risk(weather, alerts, air_quality)
        heat = build_heat_risk(weather)
        relevance = evaluate_relevance(lat, selected_date, weather, bulletin, snowpack, rainfall)
        bulletin = apply_relevance(bulletin, relevance)
        terrain = derive_terrain_condition(weather, snowpack, rainfall)
        sections.update(avalanche=bulletin, fire=fire, heat=heat, terrain=terrain)

        safety = compute_safety_score(
            weather=weather, bulletin=bulletin, alerts=alerts, air_quality=air_quality, fire=fire, heat=heat,
            rainfall=rainfall, solar=solar, selected_date=selected_date, start_clock=request.start_clock,
            now=self._now(),
        )

        generated = self._now().isoformat()
        payload: Dict[str, Any] = {
            "lat": lat,
            "lon": lon,
            "requestedDate": request.requested_date,
            "selectedForecastDate": selected_date,
            "forecastDateRange": blended.date_range,
            "weather": _stamp(weather, generated),
            "solar": _stamp(solar, generated),
            "avalanche": _stamp(bulletin, generated),
            "alerts": _stamp(alerts, generated),
            "airQuality": _stamp(air_quality, generated),
            "rainfall": _stamp(rainfall, generated),
            "snowpack": _stamp(snowpack, generated),
            "fireRisk": _stamp(fire, generated),
            "heatRisk": _stamp(heat, generated),
            "terrainCondition": _stamp(terrain, generated),
            "trail": terrain.label,
            "safety": _stamp(safety, generated),
        }
        if weather.unavailable:
            payload["partialData"] = True
            payload["apiWarning"] = WEATHER_WARNING
        logger.info("Report assembled", extra={"lat": lat, "lon": lon, "score": safety.score,
                                               "confidence": safety.confidence,
                                               "primary_hazard": safety.primary_hazard})
        return payload

    def _partial_payload(self, request: ReportRequest, sections: Dict[str, Any], exc: Exception) -> Dict[str, Any]:
        """Whatever sections were built, plus a score over safe placeholders."""
        selected_date = (sections.get("selected_date") or request.requested_date
                         or self._now().date().isoformat())
        weather: WeatherSnapshot = sections.get("weather") or unavailable_weather(request.lat, request.lon,
                                                                                  selected_date)
        bulletin: HazardBulletin = sections.get("avalanche") or unknown_bulletin(
            CoverageStatus.TEMPORARILY_UNAVAILABLE)
        generated = self._now().isoformat()
        payload: Dict[str, Any] = {
            "error": PARTIAL_FAILURE_MESSAGE,
            "details": str(exc),
            "lat": request.lat,
            "lon": request.lon,
            "requestedDate": request.requested_date,
            "selectedForecastDate": selected_date,
            "weather": _stamp(weather, generated),
            "avalanche": _stamp(bulletin, generated),
            "partialData": True,
        }
        try:
            safety = compute_safety_score(
                weather=weather, bulletin=bulletin,
                alerts=sections.get("alerts") or AlertsReport(),
                air_quality=sections.get("air_quality") or AirQualityReport(),
                fire=sections.get("fire") or FireRisk(),
                heat=sections.get("heat") or HeatRisk(),
                rainfall=sections.get("rainfall") or RainfallReport(),
                solar=sections.get("solar") or SolarTimes(),
                selected_date=selected_date,
                start_clock=request.start_clock,
                now=self._now(),
            )
            payload["safety"] = _stamp(safety, generated)
        except Exception as score_exc:
            logger.error("Partial score failed", extra={"error": repr(score_exc)})
        keys: List[tuple] = [("solar", "solar"), ("alerts", "alerts"), ("air_quality", "airQuality"),
                             ("rainfall", "rainfall"), ("snowpack", "snowpack"), ("fire", "fireRisk"),
                             ("heat", "heatRisk"), ("terrain", "terrainCondition")]
        for key, wire_key in keys:
            if sections.get(key) is not None:
                payload[wire_key] = _stamp(sections[key], generated)
        return payload


report_service = ReportService()


def build_safety_report(lat: Optional[str], lon: Optional[str], date: Optional[str] = None,
                        start: Optional[str] = None, travel_window_hours: Optional[str] = None) -> Dict[str, Any]:
    """Validate raw inputs and build the report with the process-wide service."""
    request = validate_request(lat, lon, date, start, travel_window_hours)
    return report_service.build_report(request)
