"""Sunrise/sunset lookup for the selected date."""
from __future__ import annotations

from app.data_sources import http_gateway
from app.domain import SolarTimes
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="solar_client")

SUNRISE_SUNSET_URL = "https://api.sunrisesunset.io/json"


def fetch_solar_times(lat: float, lon: float, date: str) -> SolarTimes:
    payload = http_gateway.get_json(SUNRISE_SUNSET_URL, params={"lat": lat, "lng": lon, "date": date})
    if payload.get("status") != "OK":
        logger.info("Solar lookup returned no results", extra={"status": payload.get("status")})
        return SolarTimes()
    results = payload.get("results") or {}
    return SolarTimes(
        sunrise=results.get("sunrise") or "N/A",
        sunset=results.get("sunset") or "N/A",
        day_length=results.get("day_length") or "N/A",
    )
