"""
templates.py - Built-in grade level templates used to seed new scales.

Each template is an ordered list of level rows, best grade first. sort_order
is assigned 1..n in that order when levels are built.
"""

from typing import Any, Dict, List

from core.grade_levels import GradeLevel


# (value, display, numeric, gpa, min %, max %, color, passing)
LETTER_GRADES = [
    ("A+", "A+", 97.0, 4.0, 97.0, 100.0, "#2ECC40", True),
    ("A", "A", 95.0, 4.0, 93.0, 96.9, "#2ECC40", True),
    ("A-", "A-", 92.0, 3.7, 90.0, 92.9, "#2ECC40", True),
    ("B+", "B+", 89.0, 3.3, 87.0, 89.9, "#01FF70", True),
    ("B", "B", 85.0, 3.0, 83.0, 86.9, "#01FF70", True),
    ("B-", "B-", 82.0, 2.7, 80.0, 82.9, "#01FF70", True),
    ("C+", "C+", 79.0, 2.3, 77.0, 79.9, "#FFDC00", True),
    ("C", "C", 75.0, 2.0, 73.0, 76.9, "#FFDC00", True),
    ("C-", "C-", 72.0, 1.7, 70.0, 72.9, "#FFDC00", True),
    ("D+", "D+", 69.0, 1.3, 67.0, 69.9, "#FF851B", True),
    ("D", "D", 65.0, 1.0, 60.0, 66.9, "#FF851B", True),
    ("F", "F", 0.0, 0.0, 0.0, 59.9, "#FF4136", False),
]

# Standards are rated directly, so no percentage ranges.
STANDARDS_GRADES = [
    ("4", "Exceeds Standards", 4.0, 4.0, None, None, "#2ECC40", True),
    ("3", "Meets Standards", 3.0, 3.0, None, None, "#01FF70", True),
    ("2", "Approaching Standards", 2.0, 2.0, None, None, "#FFDC00", True),
    ("1", "Below Standards", 1.0, 1.0, None, None, "#FF4136", False),
]

# Narrative bands carry no GPA points and are left out of GPA averages.
NARRATIVE_GRADES = [
    ("Excellent", "Excellent progress", None, None, 85.0, 100.0, "#2ECC40", True),
    ("Good", "Good progress", None, None, 70.0, 84.99, "#01FF70", True),
    ("Developing", "Developing", None, None, 60.0, 69.99, "#FFDC00", True),
    ("Needs Support", "Needs support", None, None, 0.0, 59.99, "#FF4136", False),
]

PERCENTAGE_PASSING_FLOOR = 60


def _percentage_grades() -> List[tuple]:
    rows = []
    for i in range(100, -1, -10):
        hi = min(i + 9, 100)
        rows.append((str(i), f"{i}-{hi}%", float(i), None, float(i), float(hi), None, i >= PERCENTAGE_PASSING_FLOOR))
    return rows


TEMPLATES = {
    "letter": LETTER_GRADES,
    "percentage": _percentage_grades(),
    "standards": STANDARDS_GRADES,
    "narrative": NARRATIVE_GRADES,
}


def template_rows(scale_type: str) -> List[Dict[str, Any]]:
    """Template rows for a scale type; unknown types fall back to letter grades."""
    rows = TEMPLATES.get(scale_type, LETTER_GRADES)
    out = []
    for idx, (value, display, numeric, gpa, lo, hi, color, passing) in enumerate(rows, start=1):
        out.append({
            "grade_value": value,
            "display_value": display,
            "numeric_value": numeric,
            "gpa_points": gpa,
            "percentage_min": lo,
            "percentage_max": hi,
            "color_code": color,
            "is_passing": passing,
            "sort_order": idx,
        })
    return out


def build_template_levels(scale_type: str) -> List[GradeLevel]:
    return [GradeLevel.from_dict(row) for row in template_rows(scale_type)]
