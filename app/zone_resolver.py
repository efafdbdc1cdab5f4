"""Map a point to an avalanche forecast zone polygon, with nearest-zone fallbacks.

Resolution order:

1. first polygon in catalog order that covers the point;
2. globally nearest zone (minimum vertex distance) within the generic cap;
3. inside a region whose public polygons are known to be sparse, nearest zone
   of that region's own center within the wider regional cap;
4. no match, reporting the nearest distance seen.
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from shapely.errors import GEOSException, ShapelyError
from shapely.geometry import Point, shape

from app.caches import TTLCache
from app.config import settings
from app.data_sources import avalanche_client
from app.domain import MatchMode
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="zone_resolver")

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class SparseRegion:
    """Bounding box whose catalog polygons are locally inaccurate."""
    center_id: str
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, lat: float, lon: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon


SPARSE_REGIONS: Tuple[SparseRegion, ...] = (
    SparseRegion(center_id="UAC", min_lat=36.8, max_lat=42.3, min_lon=-114.2, max_lon=-108.8),
)


@dataclass(frozen=True)
class ZoneFeature:
    """Immutable catalog feature: polygon plus the issuing center's properties."""
    geometry: Optional[dict] = field(hash=False)
    properties: dict = field(hash=False, compare=False)
    zone_id: Optional[str] = None
    center_id: Optional[str] = None
    name: Optional[str] = None
    link: Optional[str] = None

    @classmethod
    def from_geojson(cls, feature: dict) -> "ZoneFeature":
        props = feature.get("properties") or {}
        zone_id = feature.get("id", props.get("id"))
        return cls(
            geometry=feature.get("geometry"),
            properties=dict(props),
            zone_id=None if zone_id is None else str(zone_id),
            center_id=(props.get("center_id") or None),
            name=props.get("name"),
            link=props.get("link"),
        )


@dataclass
class ZoneMatch:
    feature: Optional[ZoneFeature]
    mode: MatchMode
    fallback_distance_km: Optional[float] = None


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def _iter_vertices(coords) -> Iterable[Tuple[float, float]]:
    """Walk arbitrarily nested GeoJSON coordinates, yielding ``(lon, lat)``."""
    if not isinstance(coords, (list, tuple)) or not coords:
        return
    if len(coords) >= 2 and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in coords[:2]):
        yield float(coords[0]), float(coords[1])
        return
    for item in coords:
        yield from _iter_vertices(item)


def min_vertex_distance_km(lat: float, lon: float, geometry: Optional[dict]) -> Optional[float]:
    if not isinstance(geometry, dict):
        return None
    best: Optional[float] = None
    for v_lon, v_lat in _iter_vertices(geometry.get("coordinates")):
        distance = haversine_km(lat, lon, v_lat, v_lon)
        if best is None or distance < best:
            best = distance
    return best


def point_in_feature(lat: float, lon: float, feature: ZoneFeature) -> bool:
    """Shapely covers-test; malformed geometries are treated as a miss."""
    if not isinstance(feature.geometry, dict):
        return False
    try:
        return bool(shape(feature.geometry).covers(Point(lon, lat)))
    except (ShapelyError, GEOSException, ValueError, TypeError, KeyError, IndexError, AttributeError) as exc:
        logger.debug("Skipping malformed zone polygon", extra={"zone_id": feature.zone_id, "error": repr(exc)})
        return False


def _nearest(lat: float, lon: float, features: Sequence[ZoneFeature]) -> Tuple[Optional[ZoneFeature], Optional[float]]:
    best_feature, best_distance = None, None
    for feature in features:
        distance = min_vertex_distance_km(lat, lon, feature.geometry)
        if distance is None:
            continue
        if best_distance is None or distance < best_distance:
            best_feature, best_distance = feature, distance
    return best_feature, best_distance


def resolve_zone(lat: float, lon: float, features: Sequence[ZoneFeature], *,
                 nearest_cap_km: Optional[float] = None,
                 regional_cap_km: Optional[float] = None,
                 sparse_regions: Sequence[SparseRegion] = SPARSE_REGIONS) -> ZoneMatch:
    """Deterministically resolve ``(lat, lon)`` against ``features``."""
    generic_cap = settings.nearest_zone_cap_km if nearest_cap_km is None else nearest_cap_km
    regional_cap = max(generic_cap, settings.regional_zone_cap_km if regional_cap_km is None else regional_cap_km)

    for feature in features:
        if point_in_feature(lat, lon, feature):
            return ZoneMatch(feature=feature, mode=MatchMode.POLYGON, fallback_distance_km=0.0)

    nearest, nearest_distance = _nearest(lat, lon, features)
    if nearest is not None and nearest_distance <= generic_cap:
        return ZoneMatch(feature=nearest, mode=MatchMode.NEAREST, fallback_distance_km=round(nearest_distance, 1))

    for region in sparse_regions:
        if not region.contains(lat, lon):
            continue
        regional = [f for f in features if (f.center_id or "").upper() == region.center_id]
        candidate, distance = _nearest(lat, lon, regional)
        if candidate is not None and distance <= regional_cap:
            logger.info("Matched zone via regional fallback",
                        extra={"center_id": region.center_id, "distance_km": round(distance, 1)})
            return ZoneMatch(feature=candidate, mode=MatchMode.NEAREST, fallback_distance_km=round(distance, 1))

    return ZoneMatch(feature=None, mode=MatchMode.NONE,
                     fallback_distance_km=None if nearest_distance is None else round(nearest_distance, 1))


class ZoneCatalog:
    """TTL-cached zone catalog; a failed refresh keeps serving the last good catalog."""

    def __init__(self, loader: Optional[Callable[[], List[dict]]] = None, *,
                 ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._cache: TTLCache[List[ZoneFeature]] = TTLCache(
            lambda: [ZoneFeature.from_geojson(f) for f in (loader or avalanche_client.fetch_zone_catalog)()
                     if isinstance(f, dict)],
            settings.zone_catalog_ttl_seconds if ttl_seconds is None else ttl_seconds,
            name="zone_catalog",
            clock=clock,
        )

    def features(self) -> List[ZoneFeature]:
        return self._cache.get()


zone_catalog = ZoneCatalog()
