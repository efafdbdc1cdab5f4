"""SNOTEL station observations and NOHRSC gridded snow analysis."""
from __future__ import annotations

import datetime as dt
import re
import time
from typing import Callable, List, Optional, Tuple

from app.caches import TTLCache
from app.config import settings
from app.data_sources import http_gateway
from app.domain import NohrscObservation, SnotelObservation, SnowpackReport
from app.task_group import TaskGroup
from app.weather_math import to_float
from app.zone_resolver import haversine_km
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="snowpack_client")

AWDB_STATIONS_URL = "https://wcc.sc.egov.usda.gov/awdbRestApi/services/v1/stations"
AWDB_DATA_URL = "https://wcc.sc.egov.usda.gov/awdbRestApi/services/v1/data"
NOHRSC_IDENTIFY_URL = ("https://mapservices.weather.noaa.gov/raster/rest/services/snow/"
                       "NOHRSC_Snow_Analysis/MapServer/identify")

SNOTEL_NETWORKS = frozenset({"SNTL", "SNTLT", "MSNT"})
SNOTEL_MAX_DISTANCE_KM = 140.0
SNOTEL_LOOKBACK_DAYS = 14

NOHRSC_DEPTH_LAYER = 3
NOHRSC_SWE_LAYER = 7
MAX_NOHRSC_DEPTH_M = 20.0
MAX_NOHRSC_SWE_MM = 5000.0
NOHRSC_EXTENT_PADDING_DEG = 0.6

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def fetch_station_list() -> List[dict]:
    """Active SNOTEL-family stations with usable coordinates."""
    params = {"elements": "WTEQ,SNWD,PREC", "durations": "DAILY", "activeOnly": "true"}
    payload = http_gateway.get_json(AWDB_STATIONS_URL, params=params)
    if not isinstance(payload, list):
        raise ValueError("AWDB station metadata was not a list")
    stations = [
        s for s in payload
        if isinstance(s, dict)
        and str(s.get("networkCode") or "").upper() in SNOTEL_NETWORKS
        and to_float(s.get("latitude")) is not None
        and to_float(s.get("longitude")) is not None
    ]
    logger.debug("Fetched SNOTEL station list", extra={"stations": len(stations)})
    return stations


class StationDirectory:
    """TTL-cached SNOTEL station metadata."""

    def __init__(self, loader: Optional[Callable[[], List[dict]]] = None, *,
                 ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._cache: TTLCache[List[dict]] = TTLCache(
            loader or fetch_station_list,
            settings.snowpack_station_ttl_seconds if ttl_seconds is None else ttl_seconds,
            name="snotel_stations",
            clock=clock,
        )

    def stations(self) -> List[dict]:
        return self._cache.get()


station_directory = StationDirectory()


def snotel_target_date(selected_date: Optional[str], today: Optional[dt.date] = None) -> str:
    """Observations can only exist up to today, so future dates clamp to today."""
    today_iso = (today or http_gateway.utc_now().date()).isoformat()
    if not selected_date or not ISO_DATE.match(selected_date):
        return today_iso
    return min(selected_date, today_iso)


def nearest_station(lat: float, lon: float, stations: List[dict],
                    max_distance_km: float = SNOTEL_MAX_DISTANCE_KM) -> Optional[Tuple[dict, float]]:
    best, best_distance = None, None
    for station in stations:
        s_lat, s_lon = to_float(station.get("latitude")), to_float(station.get("longitude"))
        if s_lat is None or s_lon is None:
            continue
        distance = haversine_km(lat, lon, s_lat, s_lon)
        if best_distance is None or distance < best_distance:
            best, best_distance = station, distance
    if best is None or best_distance > max_distance_km:
        return None
    return best, best_distance


def latest_value(values, target_date: str) -> Optional[Tuple[str, float]]:
    """Latest daily value dated on or before ``target_date``; else the latest overall."""
    if not isinstance(values, list):
        return None
    candidates = sorted(
        ((str(v.get("date")), to_float(v.get("value"))) for v in values if isinstance(v, dict)),
        key=lambda pair: pair[0],
    )
    candidates = [(d, v) for d, v in candidates if v is not None and ISO_DATE.match(d)]
    if not candidates:
        return None
    bounded = [pair for pair in candidates if pair[0] <= target_date]
    return (bounded or candidates)[-1]


def fetch_snotel(lat: float, lon: float, selected_date: Optional[str],
                 directory: Optional[StationDirectory] = None) -> Optional[SnotelObservation]:
    nearest = nearest_station(lat, lon, (directory or station_directory).stations())
    if nearest is None:
        return None
    station, distance = nearest
    triplet = str(station.get("stationTriplet") or "")
    if not triplet:
        return None

    target = snotel_target_date(selected_date)
    begin = (dt.date.fromisoformat(target) - dt.timedelta(days=SNOTEL_LOOKBACK_DAYS)).isoformat()
    params = {
        "stationTriplets": triplet,
        "elements": "WTEQ,SNWD",
        "duration": "DAILY",
        "beginDate": begin,
        "endDate": target,
        "periodRef": "END",
    }
    payload = http_gateway.get_json(AWDB_DATA_URL, params=params)
    station_data = payload[0] if isinstance(payload, list) and payload else {}
    latest = {}
    for entry in station_data.get("data") or []:
        code = str((entry.get("stationElement") or {}).get("elementCode") or "").upper()
        if code:
            latest[code] = latest_value(entry.get("values"), target)

    depth, swe = latest.get("SNWD"), latest.get("WTEQ")
    elevation = to_float(station.get("elevation"))
    return SnotelObservation(
        station_id=str(station.get("stationId") or triplet),
        station_name=station.get("name") or triplet,
        distance_km=round(distance, 1),
        elevation_ft=None if elevation is None else float(round(elevation)),
        observed_date=(depth or swe or (None, None))[0],
        snow_depth_in=depth[1] if depth else None,
        swe_in=swe[1] if swe else None,
    )


def _pixel_value(results: List[dict], layer_id: int) -> Optional[float]:
    for entry in results:
        if isinstance(entry, dict) and to_float(entry.get("layerId")) == layer_id:
            return to_float((entry.get("attributes") or {}).get("Service Pixel Value"))
    return None


def parse_nohrsc(payload: dict) -> Optional[NohrscObservation]:
    """Convert raster samples to inches; implausible values are discarded."""
    results = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(results, list):
        return None
    depth_m = _pixel_value(results, NOHRSC_DEPTH_LAYER)
    swe_mm = _pixel_value(results, NOHRSC_SWE_LAYER)
    if depth_m is not None and not 0 <= depth_m <= MAX_NOHRSC_DEPTH_M:
        depth_m = None
    if swe_mm is not None and not 0 <= swe_mm <= MAX_NOHRSC_SWE_MM:
        swe_mm = None
    if depth_m is None and swe_mm is None:
        return None
    return NohrscObservation(
        snow_depth_in=None if depth_m is None else round(depth_m * 39.3701, 1),
        swe_in=None if swe_mm is None else round(swe_mm * 0.0393701, 1),
    )


def fetch_nohrsc(lat: float, lon: float) -> Optional[NohrscObservation]:
    pad = NOHRSC_EXTENT_PADDING_DEG
    params = {
        "f": "pjson",
        "geometry": f"{lon},{lat}",
        "geometryType": "esriGeometryPoint",
        "sr": 4326,
        "tolerance": 2,
        "mapExtent": f"{lon - pad:.4f},{lat - pad:.4f},{lon + pad:.4f},{lat + pad:.4f}",
        "imageDisplay": "800,600,96",
        "returnGeometry": "false",
        "layers": f"all:{NOHRSC_DEPTH_LAYER},{NOHRSC_SWE_LAYER}",
    }
    return parse_nohrsc(http_gateway.get_json(NOHRSC_IDENTIFY_URL, params=params))


def _fmt(value: Optional[float]) -> str:
    return "N/A" if value is None else f"{value:g} in"


def summarize_snowpack(snotel: Optional[SnotelObservation], nohrsc: Optional[NohrscObservation]) -> SnowpackReport:
    if snotel is None and nohrsc is None:
        return SnowpackReport()
    parts = []
    if snotel is not None:
        parts.append(f"SNOTEL {snotel.station_name}: depth {_fmt(snotel.snow_depth_in)}, "
                     f"SWE {_fmt(snotel.swe_in)} ({snotel.distance_km} km).")
    if nohrsc is not None:
        parts.append(f"NOHRSC grid: depth {_fmt(nohrsc.snow_depth_in)}, SWE {_fmt(nohrsc.swe_in)}.")
    return SnowpackReport(
        status="ok" if snotel is not None and nohrsc is not None else "partial",
        snotel=snotel,
        nohrsc=nohrsc,
        summary=" ".join(parts),
    )


def fetch_snowpack(lat: float, lon: float, selected_date: Optional[str]) -> SnowpackReport:
    """Station and grid lookups run concurrently; either one alone gives a partial report."""
    with TaskGroup(max_workers=2) as group:
        group.submit("snotel", fetch_snotel, lat, lon, selected_date)
        group.submit("nohrsc", fetch_nohrsc, lat, lon)
    outcomes = group.results()
    report = summarize_snowpack(outcomes["snotel"].unwrap_or(None), outcomes["nohrsc"].unwrap_or(None))
    logger.debug("Snowpack summarized", extra={"status": report.status})
    return report
