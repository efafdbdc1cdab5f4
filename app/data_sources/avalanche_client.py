"""Raw fetchers for the avalanche zone catalog, bulletin detail endpoints and public pages."""
from __future__ import annotations

from typing import List, Optional
from urllib.parse import quote

from app.config import settings
from app.data_sources import http_gateway
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="avalanche_client")

AVALANCHE_API_BASE = "https://api.avalanche.org/v2/public"
UTAH_ADVISORY_URL = "https://utahavalanchecenter.org/forecast/{region}/json"


def fetch_zone_catalog(url: Optional[str] = None) -> List[dict]:
    """Return the zone feature list; a payload without one counts as a failure."""
    payload = http_gateway.get_json(url or settings.zone_catalog_url)
    features = payload.get("features") if isinstance(payload, dict) else None
    if not isinstance(features, list):
        raise ValueError("Zone catalog response did not include a features list")
    logger.debug("Fetched zone catalog", extra={"features": len(features)})
    return features


def detail_urls(center_id: Optional[str], zone_id: Optional[str], slug: Optional[str]) -> List[str]:
    """Ordered candidate detail endpoints for a zone."""
    urls: List[str] = []
    if center_id and zone_id:
        urls.append(f"{AVALANCHE_API_BASE}/product?type=forecast&center_id={quote(center_id)}&zone_id={quote(str(zone_id))}")
    if zone_id:
        urls.append(f"{AVALANCHE_API_BASE}/product/{quote(str(zone_id))}")
    if center_id and slug and slug != str(zone_id):
        urls.append(f"{AVALANCHE_API_BASE}/product?type=forecast&center_id={quote(center_id)}&zone_id={quote(slug)}")
    return urls


def fetch_detail_text(url: str) -> str:
    """Detail bodies are parsed permissively, so keep them as text."""
    return http_gateway.get_text(url)


def fetch_page_text(url: str) -> str:
    return http_gateway.get_text(url, headers={"Accept": "text/html,application/xhtml+xml"})


def fetch_utah_advisory(region: str) -> dict:
    return http_gateway.get_json(UTAH_ADVISORY_URL.format(region=quote(region)))
