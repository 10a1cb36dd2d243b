"""
grade_scales.py - Named sets of grade levels and percentage lookup.

get_grade_for_percentage() is the core lookup: it scans levels in sort_order
and returns the first whose inclusive range contains the percentage. None is a
normal outcome (gap in the configured ranges), never an exception.
"""

import copy
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.grade_levels import (
    GradeLevel,
    _to_float,
    failing_levels,
    passing_levels,
    sort_levels,
    to_bool,
)

SCALE_TYPES = ("letter", "percentage", "points", "standards", "narrative")

DEFAULT_PASSING_THRESHOLD = float(os.getenv("PASSING_THRESHOLD", "60"))
DEFAULT_GPA_SCALE_MAX = float(os.getenv("GPA_SCALE_MAX", "4.0"))
DEFAULT_DECIMAL_PLACES = int(os.getenv("GPA_DECIMAL_PLACES", "2"))

# Max score assumed when neither configuration nor levels provide one.
TYPE_MAX_SCORE = {"points": 20.0}


@dataclass
class ScaleConfiguration:
    passing_threshold: float = DEFAULT_PASSING_THRESHOLD
    gpa_scale_max: float = DEFAULT_GPA_SCALE_MAX
    decimal_places: int = DEFAULT_DECIMAL_PLACES
    max_value: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScaleConfiguration":
        data = data or {}
        conf = cls()
        if data.get("passing_threshold") is not None:
            conf.passing_threshold = float(data["passing_threshold"])
        if data.get("gpa_scale_max") is not None:
            conf.gpa_scale_max = float(data["gpa_scale_max"])
        if data.get("decimal_places") is not None:
            conf.decimal_places = int(data["decimal_places"])
        if data.get("max_value") is not None:
            conf.max_value = float(data["max_value"])
        return conf


@dataclass
class GradeScale:
    name: str
    scale_type: str = "letter"
    is_default: bool = False
    levels: List[GradeLevel] = field(default_factory=list)
    configuration: ScaleConfiguration = field(default_factory=ScaleConfiguration)
    id: Optional[int] = None
    grading_system_id: Optional[int] = None
    school_id: Optional[int] = None

    def __post_init__(self):
        self.levels = sort_levels(self.levels)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["levels"] = [lvl.to_dict() for lvl in self.levels]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GradeScale":
        scale_type = data.get("scale_type") or "letter"
        if scale_type not in SCALE_TYPES:
            raise ValueError(f"Unknown scale type: {scale_type}")
        levels = [
            lvl if isinstance(lvl, GradeLevel) else GradeLevel.from_dict(lvl)
            for lvl in data.get("levels") or data.get("grade_levels") or []
        ]
        return cls(
            name=str(data.get("name") or "Unnamed Scale"),
            scale_type=scale_type,
            is_default=to_bool(data.get("is_default")),
            levels=levels,
            configuration=ScaleConfiguration.from_dict(data.get("configuration")),
            id=data.get("id"),
            grading_system_id=data.get("grading_system_id"),
            school_id=data.get("school_id"),
        )


# ── Lookup ──────────────────────────────────────────────────────────

def get_grade_for_percentage(scale: GradeScale, percentage: Any) -> Optional[GradeLevel]:
    """Return the level containing percentage, or None when no range matches."""
    value = _to_float(percentage)
    if value is None:
        return None
    for level in sort_levels(scale.levels):
        if level.contains(value):
            return level
    return None


def get_level_by_value(scale: GradeScale, grade_value: str) -> Optional[GradeLevel]:
    for level in sort_levels(scale.levels):
        if level.grade_value == grade_value:
            return level
    return None


def get_grade_label(scale: GradeScale, percentage: Any) -> Optional[str]:
    level = get_grade_for_percentage(scale, percentage)
    return level.display_value if level else None


def get_gpa_equivalent(scale: GradeScale, percentage: Any) -> Optional[float]:
    level = get_grade_for_percentage(scale, percentage)
    return level.gpa_points if level else None


def is_passing(scale: GradeScale, percentage: Any) -> bool:
    """False when the percentage matches no level."""
    level = get_grade_for_percentage(scale, percentage)
    return bool(level and level.is_passing)


def get_passing_grades(scale: GradeScale) -> List[str]:
    return [lvl.display_value for lvl in passing_levels(scale.levels)]


def get_failing_levels(scale: GradeScale) -> List[GradeLevel]:
    return failing_levels(scale.levels)


def get_minimum_passing_score(scale: GradeScale) -> Optional[float]:
    """Lowest percentage_min among passing levels; the configured threshold otherwise."""
    mins = [lvl.percentage_min for lvl in scale.levels if lvl.is_passing and lvl.has_range]
    if mins:
        return min(mins)
    return scale.configuration.passing_threshold


def get_max_score(scale: GradeScale) -> float:
    if scale.configuration.max_value:
        return scale.configuration.max_value
    maxes = [lvl.percentage_max for lvl in scale.levels if lvl.percentage_max is not None]
    if maxes and max(maxes) > 0:
        return max(maxes)
    return TYPE_MAX_SCORE.get(scale.scale_type, 100.0)


def convert_from_percentage(scale: GradeScale, percentage: Any) -> Optional[str]:
    """
    Express a percentage in this scale's own terms.

    Percentage scales echo the formatted value, points scales rescale onto the
    scale's max score before lookup, other scales return the matched grade value.
    """
    value = _to_float(percentage)
    if value is None:
        return None
    if scale.scale_type == "percentage":
        return f"{value:.2f}%"
    if scale.scale_type == "points":
        points = (value / 100.0) * get_max_score(scale)
        return get_grade_label(scale, points)
    level = get_grade_for_percentage(scale, value)
    return level.grade_value if level else None


def normalize_to_percentage(scale: GradeScale, score: Any) -> Optional[float]:
    """
    Express a score given in this scale's terms as a percentage.

    Percentage scales pass the score through and points scales divide by the
    max score. Label scales (letter, standards, narrative) take the midpoint of
    the level whose grade or display value matches. None when nothing fits.
    """
    if scale.scale_type in ("percentage", "points"):
        value = _to_float(score)
        if value is None:
            return None
        if scale.scale_type == "points":
            return value / get_max_score(scale) * 100.0
        return value

    if score is None:
        return None
    label = str(score).strip()
    for level in sort_levels(scale.levels):
        if label in (level.grade_value, level.display_value):
            return level.midpoint
    return None


def convert_score(scale: GradeScale, score: Any) -> Dict[str, Any]:
    """Grade details for a raw score on this scale; "error" is set when out of range."""
    result = {
        "original_score": score,
        "scale_name": scale.name,
        "scale_type": scale.scale_type,
    }
    level = get_grade_for_percentage(scale, score)
    if level is None:
        result.update(grade=None, is_passing=False, error="Score out of range")
        return result
    result.update(
        grade=level.display_value,
        grade_value=level.grade_value,
        description=level.description,
        color=level.color_code,
        gpa_equivalent=level.gpa_points,
        is_passing=level.is_passing,
    )
    return result


def convert_between_scales(score: Any, from_scale: GradeScale, to_scale: GradeScale) -> Dict[str, Any]:
    """Normalise a score on from_scale to a percentage, then express it on to_scale."""
    percentage = normalize_to_percentage(from_scale, score)
    return {
        "from_scale": from_scale.name,
        "from_score": score,
        "percentage": percentage,
        "to_scale": to_scale.name,
        "to_grade": convert_from_percentage(to_scale, percentage) if percentage is not None else None,
    }


# ── Inspection ──────────────────────────────────────────────────────

def find_coverage_gaps(scale: GradeScale) -> List[Tuple[float, float]]:
    """
    Intervals of [0, 100] that no level covers.

    Each (lo, hi) pair lies strictly between two configured ranges (or between
    a range and the 0/100 ends). Gaps are allowed; percentages inside them simply
    have no grade.
    """
    ranged = sorted(
        (lvl for lvl in scale.levels if lvl.has_range),
        key=lambda lvl: (lvl.percentage_min, lvl.percentage_max),
    )
    if not ranged:
        return [(0.0, 100.0)]

    gaps: List[Tuple[float, float]] = []
    first = ranged[0]
    if first.percentage_min > 0:
        gaps.append((0.0, first.percentage_min))
    covered = first.percentage_max
    for lvl in ranged[1:]:
        if lvl.percentage_min > covered:
            gaps.append((covered, lvl.percentage_min))
        covered = max(covered, lvl.percentage_max)
    if covered < 100:
        gaps.append((covered, 100.0))
    return gaps


def scale_thresholds(scale: GradeScale) -> List[Dict[str, Any]]:
    """Legend rows for display, in sort order."""
    return [
        {
            "min": lvl.percentage_min,
            "max": lvl.percentage_max,
            "label": lvl.display_value,
            "value": lvl.grade_value,
            "gpa_points": lvl.gpa_points,
            "is_passing": lvl.is_passing,
            "color": lvl.color_code,
        }
        for lvl in sort_levels(scale.levels)
    ]


def duplicate_scale(scale: GradeScale, new_name: str) -> GradeScale:
    """Copy a scale with its levels; the copy is never default and has no ids."""
    levels = []
    for lvl in scale.levels:
        clone = copy.deepcopy(lvl)
        clone.id = None
        clone.grade_scale_id = None
        levels.append(clone)
    return GradeScale(
        name=new_name,
        scale_type=scale.scale_type,
        is_default=False,
        levels=levels,
        configuration=copy.deepcopy(scale.configuration),
        grading_system_id=scale.grading_system_id,
        school_id=scale.school_id,
    )
