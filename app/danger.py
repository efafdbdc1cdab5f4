"""Overall avalanche danger derived from the per-elevation bands."""
from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional, Union

from app.config import settings
from app.domain import CoverageStatus, HazardBulletin, danger_label


class DangerRule(str, Enum):
    MAX = "max"
    ALMOST_WORST_CASE = "almost_worst_case"


def _clamp_level(value) -> int:
    try:
        return max(0, min(5, int(round(float(value)))))
    except (TypeError, ValueError):
        return 0


def derive_overall_danger(levels: Iterable[int], fallback_level: int = 0,
                          rule: Optional[Union[DangerRule, str]] = None) -> int:
    """Reduce band levels to one overall rating.

    ``MAX`` never downgrades the worst band. ``ALMOST_WORST_CASE`` steps one
    level down when a single band is an outlier at least two levels above the
    lowest rated band.
    """
    rule = DangerRule(rule or settings.overall_danger_rule)
    rated = [level for level in (_clamp_level(v) for v in levels) if level > 0]
    if not rated:
        return _clamp_level(fallback_level)
    highest = max(rated)
    if rule is DangerRule.ALMOST_WORST_CASE and rated.count(highest) == 1 and highest - min(rated) >= 2:
        return max(1, highest - 1)
    return highest


def apply_overall_danger(bulletin: HazardBulletin, rule: Optional[Union[DangerRule, str]] = None) -> HazardBulletin:
    """Return a copy with the derived level; only reported, known bulletins change."""
    if bulletin.danger_unknown or bulletin.coverage_status != CoverageStatus.REPORTED:
        return bulletin
    levels = bulletin.elevation_bands.levels() if bulletin.elevation_bands else []
    level = derive_overall_danger(levels, bulletin.danger_level, rule)
    return bulletin.model_copy(update={"danger_level": level, "risk_label": danger_label(level)})
