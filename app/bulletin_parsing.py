"""Pure parsing helpers for avalanche bulletin payloads and public pages.

Nothing here touches the network. Detail endpoints return heterogeneous and
sometimes malformed bodies (several JSON documents concatenated, PHP warnings
appended, HTML pages with embedded JSON), so every helper is permissive and
returns ``None`` or an empty collection rather than raising.
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple
from urllib.parse import parse_qs, quote, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from app.domain import ElevationBands, ElevationRating, ProblemSummary, danger_label
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="bulletin_parsing")

OFFICIAL_SUMMARY_PREFIX = "OFFICIAL SUMMARY: "
AVALANCHE_UNKNOWN_MESSAGE = (
    "No official avalanche center forecast covers this objective. Avalanche terrain can still be "
    "dangerous. Treat conditions as unknown and use conservative terrain choices."
)
AVALANCHE_OFF_SEASON_MESSAGE = (
    "Local avalanche center is not currently issuing forecasts for this zone (likely off-season). "
    "This does not imply zero risk; assess snow and terrain conditions directly."
)
AVALANCHE_UNAVAILABLE_MESSAGE = (
    "Avalanche center data could not be retrieved right now. Avalanche terrain can still be "
    "dangerous. Treat risk as unknown and use conservative terrain choices."
)

OFF_SEASON_PATTERN = re.compile(
    r"no (current )?avalanche forecast|outside (the )?forecast season|not issuing forecasts"
    r"|forecast season has ended|off[- ]?season"
)
RATED_DANGER_PATTERN = re.compile(r"low|moderate|considerable|high|extreme")
HAZARD_KEYWORDS = re.compile(r"avalanche|danger|snow|terrain|slab|trigger|wind", re.IGNORECASE)

LIKELIHOOD_LABELS = {1: "unlikely", 2: "possible", 3: "likely", 4: "very likely", 5: "certain"}
SIZE_LABELS = {1: "Small", 2: "Large", 3: "Very Large", 4: "Historic", 5: "Historic"}

PROBLEM_KEYS = ("forecast_avalanche_problems", "avalanche_problems", "problems")
BOTTOM_LINE_KEYS = ("bottom_line", "bottom_line_summary", "bottom_line_summary_text", "overall_summary", "summary")
EXPIRY_KEYS = ("end_date", "expires", "expire_time", "expiration_time", "valid_until", "valid_to")
DAY_EXPIRY_KEYS = ("end_time", "expires", "valid_until", "valid_to", "valid_end")
CANDIDATE_CONTAINERS = ("features", "products", "data", "product", "properties")

MIN_SCRAPED_BOTTOM_LINE = 40
QUALITY_BOTTOM_LINE = 120
CAIC_MIN_BOTTOM_LINE = 180
MWAC_FORECAST_URL = "https://www.mountwashingtonavalanchecenter.org/forecasts/#/presidential-range"
CAIC_HOME_URL = "https://avalanche.state.co.us/"

PAGE_BOTTOM_LINE_KEYS = ("bottom_line", "bottom_line_summary", "overall_summary")
PAGE_SUMMARY_MIN = 100
PAGE_SUMMARY_SELECTOR = ".field--name-field-avalanche-summary, .field-bottom-line"
NEXT_DATA_SUMMARY_KEYS = ("bottom_line", "bottomLine", "summary", "forecastSummary", "discussion")
NEXT_DATA_SUMMARY_MIN = 80


def first_non_empty(*values: Any) -> Optional[str]:
    """First value that is a non-blank string (numbers are stringified), trimmed."""
    for value in values:
        if isinstance(value, bool) or value is None:
            continue
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------


def clean_forecast_text(text: Optional[str]) -> str:
    """Plain text of an HTML fragment: tags dropped, entities decoded, whitespace collapsed.

    Literal ``\\n`` sequences (double-escaped newlines some centers send) become spaces.
    """
    if not isinstance(text, str):
        return ""
    cleaned = text.replace("\\n", " ")
    if "<" in cleaned or "&" in cleaned:
        cleaned = BeautifulSoup(cleaned, "html.parser").get_text(" ", strip=True)
    return re.sub(r"\s+", " ", cleaned).strip()


def score_bottom_line(text: str) -> int:
    score = len(text)
    if HAZARD_KEYWORDS.search(text):
        score += 200
    if len(text) > 1500:
        score -= 250
    return score


def pick_best_bottom_line(candidates: Iterable[Optional[str]]) -> Optional[str]:
    cleaned = [clean_forecast_text(c) for c in candidates if isinstance(c, str)]
    cleaned = [c for c in cleaned if len(c) >= MIN_SCRAPED_BOTTOM_LINE]
    if not cleaned:
        return None
    return max(cleaned, key=score_bottom_line)


def is_off_season_text(*texts: Optional[str]) -> bool:
    joined = " ".join((t or "") for t in texts).lower()
    return bool(OFF_SEASON_PATTERN.search(joined))


# ---------------------------------------------------------------------------
# Permissive JSON extraction
# ---------------------------------------------------------------------------


def _balanced_chunk(text: str, start: int) -> Optional[Tuple[str, int]]:
    """Return ``(chunk, end)`` for the bracketed value opening at ``start``, string and escape aware."""
    cursor = start
    while cursor < len(text) and text[cursor].isspace():
        cursor += 1
    if cursor >= len(text) or text[cursor] not in "{[":
        return None
    opening = text[cursor]
    closing = "}" if opening == "{" else "]"
    depth = 0
    in_string = False
    escaped = False
    for idx in range(cursor, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opening:
            depth += 1
        elif ch == closing:
            depth -= 1
            if depth == 0:
                return text[cursor:idx + 1], idx + 1
    return None


def extract_json_documents(raw_text: Optional[str]) -> List[Any]:
    """Collect every JSON object or array that can be parsed out of ``raw_text``."""
    if not isinstance(raw_text, str) or not raw_text.strip():
        return []
    text = raw_text.strip()
    candidates = [text]

    warning = re.search(r"<br\b|<b>\s*warning", text, re.IGNORECASE)
    if warning and warning.start() > 0:
        candidates.append(text[:warning.start()])

    first_json = re.search(r"[\[{]", text)
    if first_json and first_json.start() > 0:
        candidates.append(text[first_json.start():])

    idx = 0
    while idx < len(text):
        if text[idx] in "{[":
            found = _balanced_chunk(text, idx)
            if found:
                candidates.append(found[0])
                idx = found[1]
                continue
        idx += 1

    documents: List[Any] = []
    seen = set()
    for chunk in candidates:
        chunk = chunk.strip()
        if not chunk or chunk in seen:
            continue
        seen.add(chunk)
        try:
            parsed = json.loads(chunk)
        except ValueError:
            continue
        if isinstance(parsed, (dict, list)):
            documents.append(parsed)
    return documents


# ---------------------------------------------------------------------------
# Problems
# ---------------------------------------------------------------------------


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number == number and abs(number) != float("inf") else None


def normalize_likelihood(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return LIKELIHOOD_LABELS.get(int(round(value)), str(value))
    if isinstance(value, list):
        parts: List[str] = []
        for entry in value:
            label = normalize_likelihood(entry)
            if label and label not in parts:
                parts.append(label)
        return " to ".join(parts) if parts else None
    if isinstance(value, dict):
        label = first_non_empty(value.get("label"), value.get("name"), value.get("text"),
                                value.get("display"), value.get("value"))
        if label:
            return normalize_likelihood(label) if label.isdigit() else label
        low = _to_number(value.get("min", value.get("low")))
        high = _to_number(value.get("max", value.get("high")))
        if low is not None and high is not None:
            return f"{normalize_likelihood(low)} to {normalize_likelihood(high)}"
        if low is not None or high is not None:
            return normalize_likelihood(low if low is not None else high)
        return None
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return normalize_likelihood(int(stripped))
        return stripped or None
    return None


def normalize_size(value: Any) -> Optional[str]:
    """Destructive-size numbers become Small/Large/Very Large/Historic bands."""
    if value is None:
        return None
    raw = value if isinstance(value, list) else [value]
    numbers = [n for n in (_to_number(v) for v in raw) if n is not None]
    if not numbers:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None
    low = SIZE_LABELS.get(max(1, min(5, int(min(numbers)))), "Small")
    high = SIZE_LABELS.get(max(1, min(5, int(max(numbers)))), "Historic")
    return low if low == high else f"{low} to {high}"


def normalize_location(value: Any) -> List[str]:
    locations: List[str] = []

    def append(entry: Any) -> None:
        if entry is None:
            return
        if isinstance(entry, list):
            for item in entry:
                append(item)
        elif isinstance(entry, str):
            locations.extend(part.strip() for part in entry.split(",") if part.strip())
        elif isinstance(entry, dict):
            for key, nested in entry.items():
                if str(key).strip():
                    locations.append(str(key).strip())
                append(nested)
        else:
            locations.append(str(entry))

    append(value)
    deduped: List[str] = []
    for location in locations:
        if location not in deduped:
            deduped.append(location)
    return deduped


def normalize_problems(raw_problems: Any) -> List[ProblemSummary]:
    if not isinstance(raw_problems, list):
        return []
    problems: List[ProblemSummary] = []
    for index, problem in enumerate(raw_problems):
        if not isinstance(problem, dict):
            continue
        name = first_non_empty(problem.get("name"), problem.get("problem"),
                               problem.get("problem_name"), problem.get("problem_type"))
        if not name:
            continue
        problem_id = next((int(n) for n in (_to_number(problem.get(k)) for k in
                                            ("id", "problem_id", "avalanche_problem_id")) if n is not None),
                          index + 1)
        likelihood = problem.get("likelihood")
        for key in ("trigger_likelihood", "probability", "chance"):
            if likelihood is None:
                likelihood = problem.get(key)
        location = problem.get("location")
        for key in ("aspect_elevation", "terrain", "aspectElevation"):
            if location is None:
                location = problem.get(key)
        problems.append(ProblemSummary(
            id=problem_id,
            name=name,
            likelihood=normalize_likelihood(likelihood),
            size=normalize_size(problem.get("size")),
            location=normalize_location(location),
        ))
    return problems


def problems_from_detail(detail: dict) -> List[ProblemSummary]:
    for key in PROBLEM_KEYS:
        if detail.get(key):
            return normalize_problems(detail.get(key))
    return []


# ---------------------------------------------------------------------------
# Detail candidates
# ---------------------------------------------------------------------------


def bottom_line_from_detail(detail: dict) -> Optional[str]:
    return first_non_empty(*(detail.get(key) for key in BOTTOM_LINE_KEYS))


def has_danger_data(detail: dict) -> bool:
    danger = detail.get("danger")
    return bool((isinstance(danger, list) and danger) or detail.get("danger_low") or detail.get("danger_mid")
                or detail.get("danger_high") or detail.get("danger_level"))


def zone_token(value: Any) -> str:
    if value is None:
        return ""
    return re.sub(r"[^a-z0-9]+", "", str(value).lower())


@dataclass
class ZoneContext:
    """What the cascade expects a matching detail candidate to describe."""
    center_id: Optional[str] = None
    zone_id: Optional[str] = None
    zone_slug: Optional[str] = None
    zone_name: Optional[str] = None


@dataclass
class ScoredCandidate:
    candidate: dict
    score: int
    useful: bool
    problems: List[ProblemSummary] = field(default_factory=list)


def score_candidate(candidate: Any, context: ZoneContext) -> Optional[ScoredCandidate]:
    """Score one detail candidate; higher means more complete and better matched."""
    if not isinstance(candidate, dict):
        return None
    bottom_line = clean_forecast_text(bottom_line_from_detail(candidate) or "")
    problems = problems_from_detail(candidate)
    has_danger = has_danger_data(candidate)
    useful = len(bottom_line) > 20 or bool(problems) or has_danger

    candidate_zone_id = first_non_empty(candidate.get("zone_id"), candidate.get("forecast_zone_id"), candidate.get("id"))
    forecast_zone = candidate.get("forecast_zone") if isinstance(candidate.get("forecast_zone"), dict) else {}
    candidate_token = zone_token(
        first_non_empty(candidate.get("zone_name"), candidate.get("name"), forecast_zone.get("name"))
        or first_non_empty(candidate.get("zone_slug"), candidate.get("slug"))
        or candidate_zone_id
    )
    expected_token = zone_token(context.zone_slug or context.zone_name or context.zone_id)

    score = 0
    if problems:
        score += 600 + min(240, len(problems) * 40)
    if bottom_line:
        score += min(320, len(bottom_line))
    if has_danger:
        score += 180
    if context.center_id and str(candidate.get("center_id") or "").upper() == context.center_id.upper():
        score += 120
    if context.zone_id and candidate_zone_id == str(context.zone_id):
        score += 900
    elif expected_token and candidate_token:
        if candidate_token == expected_token:
            score += 700
        elif expected_token in candidate_token or candidate_token in expected_token:
            score += 350
    if not useful:
        score -= 500
    return ScoredCandidate(candidate=candidate, score=score, useful=useful, problems=problems)


def extract_candidates(payload: Any) -> List[dict]:
    """Flatten the known container keys into candidate dicts, preferring ``.properties``."""
    collected: List[dict] = []

    def push(value: Any) -> None:
        if isinstance(value, list):
            for item in value:
                push(item)
        elif isinstance(value, dict):
            props = value.get("properties")
            collected.append(props if isinstance(props, dict) else value)

    if isinstance(payload, dict):
        for key in CANDIDATE_CONTAINERS:
            push(payload.get(key))
    push(payload)

    unique: List[dict] = []
    seen = set()
    for candidate in collected:
        problems = candidate.get("forecast_avalanche_problems")
        signature = (
            first_non_empty(candidate.get("id")) or "",
            first_non_empty(candidate.get("zone_id")) or "",
            first_non_empty(candidate.get("name"), candidate.get("zone_name")) or "",
            first_non_empty(candidate.get("published_time"), candidate.get("updated_at")) or "",
            len(problems) if isinstance(problems, list) else 0,
        )
        if signature in seen:
            continue
        seen.add(signature)
        unique.append(candidate)
    return unique


def pick_best_candidate(payloads: Iterable[Any], context: ZoneContext) -> Optional[ScoredCandidate]:
    """Highest scoring candidate across every payload, or ``None`` when none is useful."""
    best: Optional[ScoredCandidate] = None
    for payload in payloads:
        for candidate in extract_candidates(payload):
            scored = score_candidate(candidate, context)
            if scored and (best is None or scored.score > best.score):
                best = scored
    if best is None or not best.useful:
        return None
    return best


def infer_expires_time(detail: dict) -> Optional[str]:
    top_level = first_non_empty(*(detail.get(key) for key in EXPIRY_KEYS))
    if top_level:
        return top_level
    danger = detail.get("danger")
    if isinstance(danger, list) and danger:
        current = next((d for d in danger if isinstance(d, dict) and d.get("valid_day") == "current"), danger[0])
        if isinstance(current, dict):
            return first_non_empty(*(current.get(key) for key in DAY_EXPIRY_KEYS))
    return None


def _level(value: Any, default: int = 0) -> int:
    number = _to_number(value)
    if number is None:
        return default
    # half-up, so 2.5 rates as 3
    return max(0, min(5, math.floor(number + 0.5)))


def build_bands(below: Any, at: Any, above: Any, default: int = 0) -> ElevationBands:
    def rating(value: Any) -> ElevationRating:
        level = _level(value, default)
        return ElevationRating(level=level, label=danger_label(level))
    return ElevationBands(below=rating(below), at=rating(at), above=rating(above))


def bands_from_detail(detail: dict) -> Optional[ElevationBands]:
    danger = detail.get("danger")
    if isinstance(danger, list) and danger:
        current = next((d for d in danger if isinstance(d, dict) and d.get("valid_day") == "current"), danger[0])
        if isinstance(current, dict):
            return build_bands(current.get("lower"), current.get("middle"), current.get("upper"))
    if detail.get("danger_low"):
        return build_bands(detail.get("danger_low"), detail.get("danger_mid"), detail.get("danger_high"))
    return None


# ---------------------------------------------------------------------------
# Scrape fallback
# ---------------------------------------------------------------------------


@dataclass
class ScrapedBulletin:
    source: str
    bottom_line: Optional[str] = None
    problems: List[ProblemSummary] = field(default_factory=list)
    bands: Optional[ElevationBands] = None
    published_time: Optional[str] = None


def utah_region_from_link(link: Optional[str]) -> Optional[str]:
    if not link:
        return None
    parts = urlsplit(link)
    if parts.hostname is None or parts.hostname.lower().removeprefix("www.") != "utahavalanchecenter.org":
        return None
    match = re.match(r"^/forecast/([^/?#]+)", parts.path, re.IGNORECASE)
    if not match:
        return None
    return match.group(1).strip("/") or None


def parse_utah_advisory(payload: Any) -> Optional[ScrapedBulletin]:
    advisories = payload.get("advisories") if isinstance(payload, dict) else None
    if not isinstance(advisories, list) or not advisories or not isinstance(advisories[0], dict):
        return None
    advisory = advisories[0].get("advisory")
    if not isinstance(advisory, dict):
        return None

    bottom_line = first_non_empty(advisory.get("bottom_line"), advisory.get("current_conditions"),
                                  advisory.get("mountain_weather"))
    raw_problems = [{"id": idx, "name": advisory.get(f"avalanche_problem_{idx}")} for idx in (1, 2, 3)
                    if first_non_empty(advisory.get(f"avalanche_problem_{idx}"))]
    published = None
    issued = _to_number(advisory.get("date_issued_timestamp"))
    if issued and issued > 0:
        published = datetime.fromtimestamp(issued, tz=timezone.utc).isoformat().replace("+00:00", "Z")

    if not bottom_line and not raw_problems:
        return None
    return ScrapedBulletin(
        source="UAC_JSON",
        bottom_line=clean_forecast_text(bottom_line) if bottom_line and len(bottom_line) > 20 else None,
        problems=normalize_problems(raw_problems),
        published_time=published,
    )


def _iter_dicts(node: Any) -> Iterator[dict]:
    """Every dict nested anywhere inside a decoded JSON document, depth first."""
    if isinstance(node, dict):
        yield node
        for value in node.values():
            yield from _iter_dicts(value)
    elif isinstance(node, list):
        for value in node:
            yield from _iter_dicts(value)


def _long_strings(node: dict, keys: Iterable[str], min_length: int = 1) -> List[str]:
    return [value for value in (node.get(key) for key in keys)
            if isinstance(value, str) and len(value.strip()) >= min_length]


def parse_forecast_page(page_text: Optional[str], center_id: Optional[str]) -> ScrapedBulletin:
    """Pull the best bottom line, problem names and band ratings out of a public forecast page.

    Embedded JSON comes from the page's ``<script>`` blocks; the rendered summary
    comes from the Drupal field containers some centers use.
    """
    soup = BeautifulSoup(page_text or "", "html.parser")
    documents: List[Any] = []
    if soup.find() is None:
        # bare JSON body, no markup at all
        documents.extend(extract_json_documents(page_text))
    for script in soup.find_all("script"):
        if script.string:
            documents.extend(extract_json_documents(script.string))

    candidates: List[str] = []
    names: List[str] = []
    bands: Optional[ElevationBands] = None
    for node in (d for document in documents for d in _iter_dicts(document)):
        candidates.extend(_long_strings(node, PAGE_BOTTOM_LINE_KEYS))
        candidates.extend(_long_strings(node, ("summary",), PAGE_SUMMARY_MIN))
        name = first_non_empty(node.get("name")) if "avalanche_problem_id" in node else None
        if name and name not in names:
            names.append(name)
        ratings = [node.get(f"danger_{band}") for band in ("lower", "middle", "upper")]
        if bands is None and all(_to_number(r) is not None for r in ratings):
            bands = build_bands(*ratings)

    for block in soup.select(PAGE_SUMMARY_SELECTOR):
        candidates.append(block.get_text(" ", strip=True))
    if center_id == "CAIC":
        candidates.extend(_next_data_summaries(soup))

    return ScrapedBulletin(
        source="HTML_SCRAPE",
        bottom_line=pick_best_bottom_line(candidates),
        problems=normalize_problems([{"name": name} for name in names]),
        bands=bands,
    )


def _next_data_summaries(soup: BeautifulSoup) -> List[str]:
    script = soup.find("script", id="__NEXT_DATA__")
    if script is None or not script.string:
        return []
    try:
        data = json.loads(script.string)
    except ValueError:
        logger.debug("Unparseable __NEXT_DATA__ block")
        return []
    summaries: List[str] = []
    for node in _iter_dicts(data):
        summaries.extend(_long_strings(node, NEXT_DATA_SUMMARY_KEYS, NEXT_DATA_SUMMARY_MIN))
    return summaries


def needs_scrape(bottom_line: Optional[str], problems: List[ProblemSummary], travel_advice: Optional[str],
                 center_id: Optional[str]) -> bool:
    """Whether the scraped result should replace what the detail endpoints produced."""
    generic = not bottom_line or bottom_line == travel_advice or bottom_line.startswith(OFFICIAL_SUMMARY_PREFIX)
    detailed = bool(bottom_line) and len(bottom_line) >= QUALITY_BOTTOM_LINE and not generic
    if generic or (not problems and not detailed):
        return True
    return center_id == "CAIC" and len(bottom_line or "") < CAIC_MIN_BOTTOM_LINE


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------


def normalize_http_url(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    trimmed = value.strip()
    if re.match(r"^https://", trimmed, re.IGNORECASE):
        return trimmed
    if re.match(r"^http://", trimmed, re.IGNORECASE):
        return "https://" + trimmed[7:]
    return None


def normalize_external_link(value: Optional[str]) -> Optional[str]:
    normalized = normalize_http_url(value)
    if not normalized:
        return None
    parts = urlsplit(normalized)
    host = (parts.hostname or "").lower()
    netloc, path = parts.netloc, parts.path
    if host == "www.nwac.us":
        netloc = "nwac.us"
    elif host == "mountwashingtonavalanchecenter.org":
        netloc = "www.mountwashingtonavalanchecenter.org"
    elif host == "avalanche.state.co.us" and path.lower() == "/home":
        path = "/"
    if not path:
        path = "/"
    return urlunsplit((parts.scheme, netloc, path, parts.query, parts.fragment))


def is_api_link(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(
        re.match(r"^https?://api\.avalanche\.(org|state\.co\.us)\b", value.strip(), re.IGNORECASE))


def is_caic_homepage(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(
        re.match(r"^https?://(?:www\.)?avalanche\.state\.co\.us/?(?:[?#].*)?$", value.strip(), re.IGNORECASE))


def caic_forecast_link(lat: float, lon: float) -> str:
    return f"{CAIC_HOME_URL}?lat={quote(f'{lat:.5f}')}&lng={quote(f'{lon:.5f}')}"


def resolve_center_link(center_id: Optional[str], link: Optional[str], center_link: Optional[str],
                        lat: float, lon: float) -> Optional[str]:
    primary = normalize_external_link(link)
    fallback = normalize_external_link(center_link)
    non_api = next((c for c in (primary, fallback) if c and not is_api_link(c)), None)

    if center_id == "CAIC":
        if non_api:
            parts = urlsplit(non_api)
            query = parse_qs(parts.query)
            host = (parts.hostname or "").lower().removeprefix("www.")
            if host == "avalanche.state.co.us" and query.get("lat") and (query.get("lng") or query.get("lon")):
                return non_api
            if not is_caic_homepage(non_api):
                return non_api
        return caic_forecast_link(lat, lon)

    return non_api or primary or fallback


def zone_slug_from_link(link: Optional[str]) -> Optional[str]:
    normalized = normalize_external_link(link)
    if not normalized:
        return None
    if "#/" in normalized:
        raw = normalized.split("#/", 1)[1]
    else:
        segments = [s for s in normalized.split("/") if s]
        raw = segments[-1] if segments else ""
    slug = raw.strip().strip("/")
    return slug or None


def catalog_bands(props: Dict[str, Any], main_level: int) -> ElevationBands:
    """Bands from the catalog's per-band codes, each defaulting to the main level."""
    return build_bands(props.get("danger_low"), props.get("danger_mid"), props.get("danger_high"), default=main_level)
