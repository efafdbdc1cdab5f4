"""Filter NWS active alerts down to those in effect at the planned start."""
from __future__ import annotations

import datetime as dt
import re
from typing import List, Optional

from app.data_sources import noaa_client
from app.domain import AlertItem, AlertsReport
from app.weather_math import parse_iso
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="alerts")

SEVERITY_RANK = {"unknown": 0, "minor": 1, "moderate": 2, "severe": 3, "extreme": 4}
MAX_ALERTS = 6
NWS_ALERT_BASE = "https://api.weather.gov/alerts/"


def normalize_severity(value: Optional[str]) -> str:
    normalized = str(value or "").strip().lower()
    return normalized if normalized in SEVERITY_RANK else "unknown"


def format_severity(value: Optional[str]) -> str:
    return normalize_severity(value).capitalize()


def normalize_alert_text(value: Optional[str], max_length: int = 4000) -> Optional[str]:
    """Collapse whitespace per line and drop blank lines; long text is truncated with an ellipsis."""
    if not isinstance(value, str):
        return None
    lines = [re.sub(r"\s+", " ", line).strip() for line in value.replace("\r\n", "\n").split("\n")]
    normalized = "\n".join(line for line in lines if line).strip()
    if not normalized:
        return None
    if len(normalized) <= max_length:
        return normalized
    return normalized[:max_length - 1].rstrip() + "…"


def area_list(area_desc: Optional[str]) -> List[str]:
    if not isinstance(area_desc, str):
        return []
    return [part.strip() for part in re.split(r"[;,]", area_desc) if part.strip()][:12]


def alert_link(feature: dict, props: dict, lat: float, lon: float) -> str:
    for candidate in (feature.get("id"), props.get("@id"), props.get("id")):
        if isinstance(candidate, str) and candidate.strip():
            value = candidate.strip()
            if value.startswith("http://"):
                value = "https://" + value[7:]
            if value.startswith("https://api.weather.gov/alerts/") and not value.rstrip("/").endswith(("/alerts", "/active")):
                return value
            if not value.startswith("http"):
                return NWS_ALERT_BASE + value
    return f"{noaa_client.NOAA_ALERTS_URL}?point={lat},{lon}"


def active_at(props: dict, target: dt.datetime) -> bool:
    """Open-ended windows count; a missing start or end never excludes an alert."""
    start = parse_iso(props.get("onset")) or parse_iso(props.get("effective")) or parse_iso(props.get("sent"))
    end = parse_iso(props.get("ends")) or parse_iso(props.get("expires"))
    return (start is None or target >= start) and (end is None or target <= end)


def summarize_alerts(features: List[dict], target: dt.datetime, lat: float, lon: float) -> AlertsReport:
    if not features:
        return AlertsReport(status="none", highest_severity="None")

    active = [f for f in features if isinstance(f, dict) and active_at(f.get("properties") or {}, target)]
    if not active:
        return AlertsReport(status="none_for_selected_start", total_active_count=len(features),
                            highest_severity="None",
                            note="No currently issued alert is active at the selected start time.")

    items: List[AlertItem] = []
    highest = "unknown"
    for feature in active:
        props = feature.get("properties") or {}
        severity = normalize_severity(props.get("severity"))
        if SEVERITY_RANK[severity] > SEVERITY_RANK[highest]:
            highest = severity
        items.append(AlertItem(
            event=props.get("event") or "Weather Alert",
            severity=format_severity(severity),
            urgency=props.get("urgency") or "Unknown",
            certainty=props.get("certainty") or "Unknown",
            headline=props.get("headline") or props.get("description") or "",
            description=normalize_alert_text(props.get("description")),
            instruction=normalize_alert_text(props.get("instruction")),
            area_desc=area_list(props.get("areaDesc")),
            sent=props.get("sent"),
            effective=props.get("effective"),
            onset=props.get("onset"),
            ends=props.get("ends"),
            expires=props.get("expires"),
            link=alert_link(feature, props, lat, lon),
        ))
    items.sort(key=lambda item: SEVERITY_RANK[normalize_severity(item.severity)], reverse=True)

    return AlertsReport(
        status="ok",
        active_count=len(active),
        total_active_count=len(features),
        highest_severity=format_severity(highest),
        alerts=items[:MAX_ALERTS],
    )


def fetch_alerts(lat: float, lon: float, target: dt.datetime) -> AlertsReport:
    features = noaa_client.fetch_active_alerts(lat, lon)
    report = summarize_alerts(features, target, lat, lon)
    logger.debug("Alerts summarized", extra={"status": report.status, "active": report.active_count})
    return report
