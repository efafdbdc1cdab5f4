"""Resolve the avalanche bulletin for a matched zone.

The catalog feature gives a minimal bulletin. Detail endpoints and a public
page scrape run concurrently to enrich it; whichever path produced usable
text wins. If every enrichment path fails, the catalog advisory is kept and
labelled as an official-summary fallback.
"""
from __future__ import annotations

import datetime as dt
from typing import Any, Dict, Optional

from app.bulletin_parsing import (
    AVALANCHE_OFF_SEASON_MESSAGE,
    AVALANCHE_UNAVAILABLE_MESSAGE,
    AVALANCHE_UNKNOWN_MESSAGE,
    MWAC_FORECAST_URL,
    OFFICIAL_SUMMARY_PREFIX,
    RATED_DANGER_PATTERN,
    ScoredCandidate,
    ScrapedBulletin,
    ZoneContext,
    bands_from_detail,
    bottom_line_from_detail,
    catalog_bands,
    clean_forecast_text,
    extract_json_documents,
    first_non_empty,
    infer_expires_time,
    is_off_season_text,
    needs_scrape,
    normalize_external_link,
    parse_forecast_page,
    parse_utah_advisory,
    pick_best_candidate,
    problems_from_detail,
    resolve_center_link,
    utah_region_from_link,
    zone_slug_from_link,
)
from app.danger import DangerRule, apply_overall_danger
from app.data_sources import avalanche_client
from app.data_sources.http_gateway import RECOVERABLE_ERRORS, call_provider
from app.domain import CoverageStatus, HazardBulletin, MatchMode
from app.task_group import TaskGroup
from app.weather_math import parse_iso
from app.zone_resolver import ZoneFeature, ZoneMatch
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="bulletin_cascade")

UNKNOWN_CENTER_LABELS = {
    CoverageStatus.TEMPORARILY_UNAVAILABLE: "Avalanche Data Unavailable",
    CoverageStatus.NO_ACTIVE_FORECAST: "Avalanche Forecast Off-Season",
    CoverageStatus.NO_CENTER_COVERAGE: "No Avalanche Center Coverage",
}
UNKNOWN_BOTTOM_LINES = {
    CoverageStatus.TEMPORARILY_UNAVAILABLE: AVALANCHE_UNAVAILABLE_MESSAGE,
    CoverageStatus.NO_ACTIVE_FORECAST: AVALANCHE_OFF_SEASON_MESSAGE,
    CoverageStatus.NO_CENTER_COVERAGE: AVALANCHE_UNKNOWN_MESSAGE,
}


def unknown_bulletin(coverage: CoverageStatus = CoverageStatus.NO_CENTER_COVERAGE,
                     match: Optional[ZoneMatch] = None) -> HazardBulletin:
    """Placeholder bulletin for every path where no usable danger rating exists."""
    return HazardBulletin(
        center=UNKNOWN_CENTER_LABELS.get(coverage, "No Avalanche Center Coverage"),
        risk_label="Unknown",
        danger_level=0,
        danger_unknown=True,
        coverage_status=coverage,
        bottom_line=UNKNOWN_BOTTOM_LINES.get(coverage, AVALANCHE_UNKNOWN_MESSAGE),
        match_mode=match.mode if match else MatchMode.NONE,
        fallback_distance_km=match.fallback_distance_km if match else None,
    )


def _finalize(draft: Dict[str, Any]) -> HazardBulletin:
    """Build the model, forcing the unknown-danger invariant on the way out."""
    if draft.get("danger_unknown"):
        draft["elevation_bands"] = None
        draft["danger_level"] = 0
    return HazardBulletin(**draft)


def catalog_draft(feature: ZoneFeature, match: ZoneMatch, lat: float, lon: float) -> Dict[str, Any]:
    """Minimal bulletin fields straight from the catalog properties."""
    props = feature.properties
    try:
        main_level = int(props.get("danger_level") or 0)
    except (TypeError, ValueError):
        main_level = 0
    reported_risk = str(props.get("danger") or "").strip()
    travel_advice = str(props.get("travel_advice") or "")
    has_issued_window = bool(props.get("start_date") or props.get("end_date"))
    no_rating = main_level <= 0 and not RATED_DANGER_PATTERN.search(reported_risk.lower())
    off_season = (props.get("off_season") is True
                  or is_off_season_text(reported_risk, travel_advice)
                  or (not has_issued_window and no_rating))
    unknown = off_season or no_rating

    return {
        "center": props.get("center"),
        "center_id": feature.center_id,
        "zone": feature.name,
        "zone_id": feature.zone_id,
        "link": resolve_center_link(feature.center_id, props.get("link"), props.get("center_link"), lat, lon),
        "danger_level": 0 if unknown else max(0, min(5, main_level)),
        "risk_label": "Unknown" if off_season else (reported_risk or "No Rating"),
        "danger_unknown": unknown,
        "coverage_status": CoverageStatus.NO_ACTIVE_FORECAST if off_season else CoverageStatus.REPORTED,
        "elevation_bands": None if unknown else catalog_bands(props, max(0, min(5, main_level))),
        "bottom_line": (clean_forecast_text(travel_advice) or AVALANCHE_OFF_SEASON_MESSAGE) if off_season
        else (props.get("travel_advice") or None),
        "published_time": None if off_season else first_non_empty(props.get("start_date"), props.get("published_time")),
        "expires_time": None if off_season else first_non_empty(props.get("end_date"), props.get("expires"),
                                                                 props.get("expire_time")),
        "match_mode": match.mode,
        "fallback_distance_km": match.fallback_distance_km,
    }


def fetch_detail_candidate(url: str, context: ZoneContext) -> Optional[ScoredCandidate]:
    text = avalanche_client.fetch_detail_text(url)
    return pick_best_candidate(extract_json_documents(text), context)


def scrape_bulletin(link: Optional[str], center_id: Optional[str]) -> Optional[ScrapedBulletin]:
    """Center-specific advisory JSON when one exists, else the public forecast page."""
    if not link:
        return None
    if center_id == "UAC":
        region = utah_region_from_link(link)
        if region:
            result = call_provider("UAC advisory", avalanche_client.fetch_utah_advisory, region)
            advisory = parse_utah_advisory(result.data) if result.available else None
            if advisory is not None:
                return advisory
    return parse_forecast_page(avalanche_client.fetch_page_text(link), center_id)


def _apply_detail(draft: Dict[str, Any], best: ScoredCandidate) -> None:
    detail = best.candidate
    if len(detail) <= 5:
        return
    published = first_non_empty(detail.get("published_time"), detail.get("updated_at"))
    if published:
        draft["published_time"] = published
    expires = infer_expires_time(detail)
    if expires:
        draft["expires_time"] = expires
    bottom_line = bottom_line_from_detail(detail)
    if bottom_line and len(bottom_line) > 20:
        draft["bottom_line"] = clean_forecast_text(bottom_line)
    problems = best.problems or problems_from_detail(detail)
    if problems:
        draft["problems"] = problems
    bands = bands_from_detail(detail)
    if bands is not None and not draft["danger_unknown"]:
        draft["elevation_bands"] = bands


def _apply_scrape(draft: Dict[str, Any], scraped: ScrapedBulletin) -> None:
    if scraped.bottom_line:
        draft["bottom_line"] = scraped.bottom_line
    if scraped.problems:
        draft["problems"] = scraped.problems
    if scraped.published_time:
        draft["published_time"] = scraped.published_time
    if scraped.bands is not None and not draft["danger_unknown"]:
        draft["elevation_bands"] = scraped.bands


def enrich_draft(draft: Dict[str, Any], feature: ZoneFeature, lat: float, lon: float) -> None:
    """Run detail endpoints and the scrape concurrently and merge the winners into ``draft``."""
    props = feature.properties
    center_id = feature.center_id
    slug = zone_slug_from_link(props.get("link"))
    context = ZoneContext(center_id=center_id, zone_id=feature.zone_id, zone_slug=slug, zone_name=feature.name)
    urls = avalanche_client.detail_urls(center_id, feature.zone_id, slug)
    logger.debug("Fetching bulletin detail", extra={"zone": feature.name, "center_id": center_id, "attempts": len(urls)})

    with TaskGroup(max_workers=len(urls) + 1) as group:
        for index, url in enumerate(urls):
            group.submit(f"detail:{index}", fetch_detail_candidate, url, context)
        group.submit("scrape", scrape_bulletin, normalize_external_link(props.get("link")), center_id)
    outcomes = group.results()

    scored = [o.unwrap_or(None) for name, o in outcomes.items() if name.startswith("detail:")]
    scored = [s for s in scored if s is not None]
    best = max(scored, key=lambda s: s.score) if scored else None

    if center_id == "MWAC":
        link = draft.get("link")
        if not link or "api.avalanche.org" in link or len(link) < 30:
            draft["link"] = MWAC_FORECAST_URL
    if center_id == "CAIC":
        draft["link"] = resolve_center_link(center_id, props.get("link"), props.get("center_link"), lat, lon)

    if best is not None:
        _apply_detail(draft, best)

    scraped = outcomes["scrape"].unwrap_or(None)
    travel_advice = props.get("travel_advice")
    if scraped is not None and needs_scrape(draft.get("bottom_line"), draft.get("problems") or [], travel_advice, center_id):
        logger.info("Using scraped bulletin text", extra={"zone": feature.name, "source": scraped.source})
        _apply_scrape(draft, scraped)

    off_season = draft.get("coverage_status") == CoverageStatus.NO_ACTIVE_FORECAST
    if travel_advice and not off_season and draft.get("bottom_line") == travel_advice:
        draft["bottom_line"] = f"{OFFICIAL_SUMMARY_PREFIX}{travel_advice}"


def mark_expired(bulletin: HazardBulletin, planned_start: Optional[dt.datetime]) -> HazardBulletin:
    """Flag a known bulletin whose product expires before the planned start."""
    if planned_start is None or bulletin.danger_unknown or not bulletin.expires_time:
        return bulletin
    expires = parse_iso(bulletin.expires_time)
    if expires is None or planned_start <= expires:
        return bulletin
    notice = (f"STALE FORECAST: this avalanche product expired at {bulletin.expires_time}, "
              f"before the selected start time. Check the center for a current forecast.")
    bottom_line = f"{notice} {bulletin.bottom_line}" if bulletin.bottom_line else notice
    return bulletin.model_copy(update={
        "coverage_status": CoverageStatus.EXPIRED_FOR_SELECTED_START,
        "bottom_line": bottom_line,
    })


def build_bulletin(match: Optional[ZoneMatch], lat: float, lon: float, *,
                   planned_start: Optional[dt.datetime] = None,
                   rule: Optional[DangerRule] = None) -> HazardBulletin:
    """Full bulletin for the objective: catalog, enrichment, overall danger, expiry."""
    if match is None:
        return unknown_bulletin(CoverageStatus.TEMPORARILY_UNAVAILABLE)
    if match.feature is None:
        return unknown_bulletin(CoverageStatus.NO_CENTER_COVERAGE, match)

    feature = match.feature
    if match.mode == MatchMode.NEAREST:
        logger.info("Using nearest zone fallback",
                    extra={"zone": feature.name, "distance_km": match.fallback_distance_km})
    draft: Dict[str, Any] = {}
    try:
        draft = catalog_draft(feature, match, lat, lon)
        enrich_draft(draft, feature, lat, lon)
        bulletin = _finalize(draft)
    except RECOVERABLE_ERRORS as exc:
        logger.warning("Bulletin assembly failed", extra={"zone": feature.name, "error": repr(exc)})
        if not draft or draft.get("danger_unknown", True):
            return unknown_bulletin(CoverageStatus.TEMPORARILY_UNAVAILABLE, match)
        bulletin = _finalize(catalog_draft(feature, match, lat, lon))

    bulletin = apply_overall_danger(bulletin, rule)
    return mark_expired(bulletin, planned_start)

