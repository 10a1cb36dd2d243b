"""
grade_levels.py - One band of a grade scale, plus write-time validation.

A level maps an inclusive percentage range [percentage_min, percentage_max] to a
grade value (e.g. "A-") with optional GPA points. Levels seeded from the
standards template carry no percentage range and are only resolvable by value.
"""

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np

COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

PERCENTAGE_BOUNDS = (0.0, 100.0)
GPA_BOUNDS = (0.0, 4.0)


def _to_float(value: Any) -> Optional[float]:
    """Coerce to float; None for missing, non-numeric, NaN or infinite values."""
    if value is None:
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if np.isnan(v) or np.isinf(v):
        return None
    return v


TRUE_STRINGS = {"true", "1", "yes", "y", "on"}
FALSE_STRINGS = {"false", "0", "no", "n", "off"}


def to_bool(value: Any, default: bool = False) -> bool:
    """Coerce a flag from JSON or form input; None, NaN and "" give default."""
    if value is None:
        return default
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, float, np.integer, np.floating)):
        if np.isnan(value):
            return default
        return bool(value != 0)
    text = str(value).strip().lower()
    if text == "":
        return default
    if text in TRUE_STRINGS:
        return True
    if text in FALSE_STRINGS:
        return False
    raise ValueError(f"Expected true or false, got {value!r}")


@dataclass
class GradeLevel:
    grade_value: str
    display_value: str = ""
    numeric_value: Optional[float] = None
    gpa_points: Optional[float] = None
    percentage_min: Optional[float] = None
    percentage_max: Optional[float] = None
    description: Optional[str] = None
    color_code: Optional[str] = None
    is_passing: bool = True
    sort_order: int = 0
    id: Optional[int] = None
    grade_scale_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.display_value:
            self.display_value = self.grade_value

    @property
    def has_range(self) -> bool:
        return self.percentage_min is not None and self.percentage_max is not None

    @property
    def midpoint(self) -> Optional[float]:
        if not self.has_range:
            return None
        return (self.percentage_min + self.percentage_max) / 2

    def contains(self, percentage: float) -> bool:
        """Inclusive on both ends."""
        if not self.has_range:
            return False
        return self.percentage_min <= percentage <= self.percentage_max

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GradeLevel":
        # Accept the short keys used by the built-in templates as well
        grade_value = data.get("grade_value", data.get("value"))
        if grade_value is None or str(grade_value).strip() == "":
            raise ValueError("grade_value is required")
        return cls(
            grade_value=str(grade_value),
            display_value=str(data.get("display_value", data.get("display")) or grade_value),
            numeric_value=_to_float(data.get("numeric_value", data.get("numeric"))),
            gpa_points=_to_float(data.get("gpa_points", data.get("gpa"))),
            percentage_min=_to_float(data.get("percentage_min", data.get("min_percent"))),
            percentage_max=_to_float(data.get("percentage_max", data.get("max_percent"))),
            description=data.get("description"),
            color_code=data.get("color_code", data.get("color")),
            is_passing=to_bool(data.get("is_passing", data.get("passing")), default=True),
            sort_order=int(data.get("sort_order") or 0),
            id=data.get("id"),
            grade_scale_id=data.get("grade_scale_id"),
            metadata=dict(data.get("metadata") or {}),
        )


# ── Ordering ────────────────────────────────────────────────────────

def sort_levels(levels: Iterable[GradeLevel]) -> List[GradeLevel]:
    """Stable sort by sort_order; ties keep insertion order."""
    return sorted(levels, key=lambda lvl: lvl.sort_order)


def next_sort_order(levels: Iterable[GradeLevel]) -> int:
    orders = [lvl.sort_order for lvl in levels]
    return (max(orders) if orders else 0) + 1


def passing_levels(levels: Iterable[GradeLevel]) -> List[GradeLevel]:
    return [lvl for lvl in sort_levels(levels) if lvl.is_passing]


def failing_levels(levels: Iterable[GradeLevel]) -> List[GradeLevel]:
    return [lvl for lvl in sort_levels(levels) if not lvl.is_passing]


# ── Range validation ────────────────────────────────────────────────

def ranges_overlap(a_min: float, a_max: float, b_min: float, b_max: float) -> bool:
    """Closed-interval intersection test; touching endpoints count as overlap."""
    return a_min <= b_max and b_min <= a_max


def overlapping_levels(
    lo: float,
    hi: float,
    levels: Iterable[GradeLevel],
    exclude_id: Optional[int] = None,
) -> List[GradeLevel]:
    """Ranged levels whose percentage range intersects [lo, hi]."""
    return [
        lvl for lvl in sort_levels(levels)
        if lvl.has_range
        and (exclude_id is None or lvl.id != exclude_id)
        and ranges_overlap(lo, hi, lvl.percentage_min, lvl.percentage_max)
    ]


def find_overlaps(levels: Iterable[GradeLevel]) -> List[Tuple[GradeLevel, GradeLevel]]:
    """Every pair of ranged levels whose percentage ranges intersect."""
    ranged = [lvl for lvl in sort_levels(levels) if lvl.has_range]
    pairs = []
    for i, a in enumerate(ranged):
        for b in overlapping_levels(a.percentage_min, a.percentage_max, ranged[i + 1:]):
            pairs.append((a, b))
    return pairs


def validate_level_data(
    data: Dict[str, Any],
    siblings: Iterable[GradeLevel] = (),
    exclude_id: Optional[int] = None,
    partial: bool = False,
) -> Dict[str, str]:
    """
    Validate level fields against the rest of its scale.

    Returns a field -> message dict; empty means valid. With partial=True
    (updates) missing fields are not reported as required.
    """
    errors: Dict[str, str] = {}

    if not partial or "grade_value" in data:
        value = data.get("grade_value")
        if value is None or str(value).strip() == "":
            errors["grade_value"] = "Grade value is required"
        elif len(str(value)) > 50:
            errors["grade_value"] = "Grade value may not exceed 50 characters"

    lo = data.get("percentage_min")
    hi = data.get("percentage_max")
    lo_f, hi_f = _to_float(lo), _to_float(hi)

    for key, raw, parsed in (("percentage_min", lo, lo_f), ("percentage_max", hi, hi_f)):
        if raw is None:
            continue
        if parsed is None:
            errors[key] = "Percentage must be numeric"
        elif not PERCENTAGE_BOUNDS[0] <= parsed <= PERCENTAGE_BOUNDS[1]:
            errors[key] = "Percentage must be between 0 and 100"

    gpa_raw = data.get("gpa_points")
    if gpa_raw is not None:
        gpa = _to_float(gpa_raw)
        if gpa is None or not GPA_BOUNDS[0] <= gpa <= GPA_BOUNDS[1]:
            errors["gpa_points"] = "GPA points must be between 0 and 4"

    try:
        to_bool(data.get("is_passing"))
    except ValueError:
        errors["is_passing"] = "is_passing must be true or false"

    color = data.get("color_code")
    if color is not None and not COLOR_RE.match(str(color)):
        errors["color_code"] = "Color code must look like #RRGGBB"

    sort_order = data.get("sort_order")
    if sort_order is not None:
        try:
            if int(sort_order) < 0:
                errors["sort_order"] = "Sort order must be zero or greater"
        except (TypeError, ValueError):
            errors["sort_order"] = "Sort order must be an integer"

    if lo_f is not None and hi_f is not None and "percentage_min" not in errors and "percentage_max" not in errors:
        if lo_f >= hi_f:
            errors["percentage_max"] = "Maximum percentage must be greater than minimum percentage"
        else:
            clashes = overlapping_levels(lo_f, hi_f, siblings, exclude_id=exclude_id)
            if clashes:
                errors["percentage_range"] = (
                    f"Percentage range overlaps with existing grade level '{clashes[0].grade_value}'"
                )

    return errors
