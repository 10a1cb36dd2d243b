"""
derivation.py - Fill in percentage_score and letter_grade on grade entries.

Order of derivation:
  1. percentage_score from points_earned / points_possible * 100, else raw_score
  2. clamp percentage_score into [0, 100]
  3. letter_grade from the scale lookup, only if the lookup matches

Fields that are already set are never overwritten, so derivation is idempotent.
"""

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from core.app_logger import get_logger
from core.grade_levels import _to_float
from core.grade_scales import GradeScale, get_grade_for_percentage

log = get_logger("derivation")

ENTRY_FIELDS = (
    "student_id", "subject", "raw_score", "points_earned", "points_possible",
    "percentage_score", "letter_grade", "weight", "credits",
)


def _clean_str(value: Any) -> Optional[str]:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    text = str(value).strip()
    return text or None


@dataclass
class GradeEntry:
    student_id: Optional[str] = None
    subject: Optional[str] = None
    raw_score: Optional[float] = None
    points_earned: Optional[float] = None
    points_possible: Optional[float] = None
    percentage_score: Optional[float] = None
    letter_grade: Optional[str] = None
    weight: Optional[float] = None
    credits: Optional[float] = None
    id: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GradeEntry":
        extra = dict(data.get("extra") or {})
        extra.update({k: v for k, v in data.items() if k not in ENTRY_FIELDS and k not in ("id", "extra")})
        return cls(
            student_id=_clean_str(data.get("student_id")),
            subject=_clean_str(data.get("subject")),
            raw_score=_to_float(data.get("raw_score")),
            points_earned=_to_float(data.get("points_earned")),
            points_possible=_to_float(data.get("points_possible")),
            percentage_score=_to_float(data.get("percentage_score")),
            letter_grade=_clean_str(data.get("letter_grade")),
            weight=_to_float(data.get("weight")),
            credits=_to_float(data.get("credits")),
            id=data.get("id"),
            extra=extra,
        )


def clamp_percentage(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return max(0.0, min(100.0, float(value)))


def derive_percentage(entry: GradeEntry) -> Optional[float]:
    """Percentage from points when both are present, else raw score, else None."""
    if entry.percentage_score is not None:
        return entry.percentage_score
    if entry.points_earned is not None and entry.points_possible is not None and entry.points_possible > 0:
        return entry.points_earned / entry.points_possible * 100
    if entry.raw_score is not None:
        return entry.raw_score
    return None


def derive_grade_entry(entry: GradeEntry, scale: Optional[GradeScale]) -> GradeEntry:
    """Return a copy of entry with missing percentage/letter filled in."""
    percentage = clamp_percentage(derive_percentage(entry))
    letter = entry.letter_grade
    if letter is None and percentage is not None and scale is not None:
        level = get_grade_for_percentage(scale, percentage)
        if level is not None:
            letter = level.grade_value
        else:
            log.debug("No grade level in '%s' covers %.2f%%", scale.name, percentage)
    return replace(entry, percentage_score=percentage, letter_grade=letter)


def validate_entry(entry: GradeEntry) -> Optional[str]:
    """Caller-side checks run before derivation; returns an error message or None."""
    if entry.points_possible is not None and entry.points_possible < 0:
        return "points_possible must not be negative"
    if entry.points_earned is not None and entry.points_earned < 0:
        return "points_earned must not be negative"
    if (
        entry.points_earned is not None
        and entry.points_possible is not None
        and entry.points_earned > entry.points_possible
    ):
        return "points_earned cannot exceed points_possible"
    return None


def split_valid_entries(records: Iterable[Dict[str, Any]]) -> Tuple[List[GradeEntry], List[Dict[str, Any]]]:
    """Parse and validate rows; returns (entries, failures) without raising."""
    entries: List[GradeEntry] = []
    failed: List[Dict[str, Any]] = []
    for idx, record in enumerate(records):
        try:
            entry = GradeEntry.from_dict(record)
        except (TypeError, ValueError, AttributeError) as exc:
            failed.append({"index": idx, "student_id": None, "error": str(exc)})
            continue
        error = validate_entry(entry)
        if error:
            failed.append({"index": idx, "student_id": entry.student_id, "error": error})
            continue
        entries.append(entry)
    return entries, failed


def derive_bulk(records: Iterable[Dict[str, Any]], scale: Optional[GradeScale]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Derive every record; invalid rows are reported, not raised.

    Returns {"successful": [entry dicts], "failed": [{"index", "student_id", "error"}]}.
    """
    entries, failed = split_valid_entries(records)
    successful = [derive_grade_entry(entry, scale).to_dict() for entry in entries]
    return {"successful": successful, "failed": failed}


def derive_grade_frame(df: pd.DataFrame, scale: Optional[GradeScale]) -> pd.DataFrame:
    """
    Vectorised derivation over a grade-entry DataFrame.

    Adds percentage_score / letter_grade columns when missing and only fills
    cells that are empty.
    """
    out = df.copy()

    def _num(col: str) -> pd.Series:
        if col in out.columns:
            return pd.to_numeric(out[col], errors="coerce")
        return pd.Series(np.nan, index=out.index, dtype="float64")

    pct = _num("percentage_score")
    earned = _num("points_earned")
    possible = _num("points_possible")
    raw = _num("raw_score")

    from_points = (earned / possible.where(possible > 0)) * 100
    pct = pct.fillna(from_points).fillna(raw)
    out["percentage_score"] = pct.clip(lower=0.0, upper=100.0)

    if "letter_grade" not in out.columns:
        out["letter_grade"] = None
    letters = out["letter_grade"].astype(object)
    letters = letters.where(~letters.isna() & (letters.astype(str).str.strip() != ""), None)

    if scale is not None:
        missing = letters.isna() & out["percentage_score"].notna()
        for idx in out.index[missing]:
            level = get_grade_for_percentage(scale, out.at[idx, "percentage_score"])
            if level is not None:
                letters.at[idx] = level.grade_value
    out["letter_grade"] = letters
    return out
