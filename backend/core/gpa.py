"""
gpa.py - Credit-weighted GPA over percentage entries.

GPA = sum(gpa_points * credits) / sum(credits), rounded half-up to 2 places.
Entries whose percentage maps to no level, or to a level without GPA points,
are left out of both sums. Nothing includable gives 0.0.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd

from core.grade_levels import _to_float
from core.grade_scales import GradeScale, get_grade_for_percentage

DEFAULT_CREDITS = 1.0


def _entry_credits(entry: Mapping[str, Any]) -> float:
    credits = _to_float(entry.get("credits"))
    return DEFAULT_CREDITS if credits is None else credits


def round_gpa(value: float, places: int = 2) -> float:
    """Round half away from zero, so 0.425 gives 0.43 rather than 0.42."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def calculate_gpa_details(
    entries: Iterable[Mapping[str, Any]],
    scale: Optional[GradeScale],
    decimal_places: int = 2,
) -> Dict[str, Any]:
    """GPA plus the counts needed to tell 'no gradable entries' from a real 0.0."""
    total_points = 0.0
    total_credits = 0.0
    included = 0
    skipped = 0

    for entry in entries:
        level = get_grade_for_percentage(scale, entry.get("percentage")) if scale else None
        credits = _entry_credits(entry)
        if level is None or level.gpa_points is None or credits <= 0:
            skipped += 1
            continue
        total_points += level.gpa_points * credits
        total_credits += credits
        included += 1

    gpa = round_gpa(total_points / total_credits, decimal_places) if total_credits > 0 else 0.0
    return {
        "gpa": gpa,
        "included_entries": included,
        "skipped_entries": skipped,
        "total_credits": round_gpa(total_credits),
    }


def calculate_gpa(entries: Iterable[Mapping[str, Any]], scale: Optional[GradeScale]) -> float:
    return calculate_gpa_details(entries, scale)["gpa"]


def compute_term_gpa(
    df: pd.DataFrame,
    scale: GradeScale,
    student_col: str = "student_id",
    percentage_col: str = "percentage_score",
    credits_col: str = "credits",
) -> pd.DataFrame:
    """
    One GPA row per student from a grade-entry frame.

    Missing credits count as 1.0; rows without a student id are ignored.
    Returns columns: student_id, gpa, included_entries, total_credits.
    """
    columns = [student_col, "gpa", "included_entries", "total_credits"]
    if df.empty or student_col not in df.columns or percentage_col not in df.columns:
        return pd.DataFrame(columns=columns)

    students = df[student_col].dropna().drop_duplicates()
    if students.empty:
        return pd.DataFrame(columns=columns)

    work = df.loc[df[student_col].notna(), [student_col, percentage_col]].copy()
    if credits_col in df.columns:
        work["credits"] = pd.to_numeric(df[credits_col], errors="coerce").fillna(DEFAULT_CREDITS)
    else:
        work["credits"] = DEFAULT_CREDITS

    work["gpa_points"] = work[percentage_col].apply(lambda p: _level_points(scale, p))
    work = work.dropna(subset=["gpa_points"])
    work = work[work["credits"] > 0]

    grouped = (
        work.assign(weighted=work["gpa_points"] * work["credits"])
        .groupby(student_col)
        .agg(weighted=("weighted", "sum"), credits=("credits", "sum"), included=("gpa_points", "size"))
        .reindex(students)
    )
    grouped["weighted"] = grouped["weighted"].fillna(0.0)
    grouped["credits"] = grouped["credits"].fillna(0.0)
    grouped["included"] = grouped["included"].fillna(0).astype(int)

    rows: List[Dict[str, Any]] = []
    for student_id, row in grouped.iterrows():
        credits = float(row["credits"])
        gpa = round_gpa(float(row["weighted"]) / credits) if credits > 0 else 0.0
        rows.append({
            student_col: student_id,
            "gpa": gpa,
            "included_entries": int(row["included"]),
            "total_credits": round_gpa(credits),
        })
    return pd.DataFrame(rows, columns=columns)


def _level_points(scale: GradeScale, percentage: Any) -> float:
    level = get_grade_for_percentage(scale, percentage)
    if level is None or level.gpa_points is None:
        return np.nan
    return level.gpa_points
