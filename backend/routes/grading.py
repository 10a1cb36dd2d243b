"""
Grading routes - stateless lookup, GPA, derivation and conversion endpoints.

Every request carries the grade scale it should be evaluated against.
"""

from fastapi import APIRouter, HTTPException
import pandas as pd

from core.derivation import GradeEntry, derive_bulk, derive_grade_entry, derive_grade_frame, split_valid_entries, validate_entry
from core.gpa import calculate_gpa_details, compute_term_gpa
from core.grade_levels import find_overlaps
from core.grade_scales import (
    SCALE_TYPES,
    GradeScale,
    convert_between_scales,
    convert_score,
    find_coverage_gaps,
    get_failing_levels,
    get_grade_for_percentage,
    scale_thresholds,
)
from core.templates import template_rows

router = APIRouter()


def _scale_from_payload(payload: dict, key: str = "scale") -> GradeScale:
    """Extract a grade scale from a request payload."""
    data = payload.get(key)
    if not data:
        raise HTTPException(400, f"No grade scale provided under '{key}'.")
    if not isinstance(data, dict):
        raise HTTPException(422, f"'{key}' must be an object.")
    try:
        return GradeScale.from_dict(data)
    except (TypeError, ValueError, AttributeError) as exc:
        raise HTTPException(422, str(exc))


def _records_from_payload(payload: dict, key: str, required: bool = True) -> list:
    """A list of row objects from the payload; 400 when missing, 422 when malformed."""
    rows = payload.get(key)
    if not rows:
        if required:
            raise HTTPException(400, f"No {key} provided.")
        return []
    if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
        raise HTTPException(422, f"'{key}' must be a list of objects.")
    return rows


@router.post("/lookup")
async def lookup(payload: dict):
    """Map a percentage to its grade level. found=false when no range covers it."""
    scale = _scale_from_payload(payload)
    if payload.get("percentage") is None:
        raise HTTPException(400, "No percentage provided.")
    level = get_grade_for_percentage(scale, payload["percentage"])
    return {
        "percentage": payload["percentage"],
        "found": level is not None,
        "level": level.to_dict() if level else None,
    }


@router.post("/gpa")
async def gpa(payload: dict):
    """Credit-weighted GPA. Expects: { "scale": {...}, "entries": [{"percentage", "credits"}] }"""
    scale = _scale_from_payload(payload)
    entries = _records_from_payload(payload, "entries", required=False)
    return calculate_gpa_details(entries, scale)


@router.post("/gpa/term")
async def term_gpa(payload: dict):
    """
    Per-student GPA from grade-entry rows (student_id, percentage_score or
    points/raw score, credits). Rows with impossible points are rejected.
    """
    scale = _scale_from_payload(payload)
    data = _records_from_payload(payload, "data")
    _, failed = split_valid_entries(data)
    if failed:
        raise HTTPException(422, {"message": "Invalid grade entries.", "failed": failed})
    derived = derive_grade_frame(pd.DataFrame(data), scale)
    result = compute_term_gpa(derived, scale)
    return {"students": result.to_dict(orient="records")}


@router.post("/derive")
async def derive(payload: dict):
    """Fill percentage_score / letter_grade on one entry."""
    scale = _scale_from_payload(payload)
    raw = payload.get("entry") or {}
    if not isinstance(raw, dict):
        raise HTTPException(422, "'entry' must be an object.")
    entry = GradeEntry.from_dict(raw)
    error = validate_entry(entry)
    if error:
        raise HTTPException(422, error)
    return derive_grade_entry(entry, scale).to_dict()


@router.post("/derive/bulk")
async def derive_many(payload: dict):
    """Derive many entries; invalid rows are listed under "failed"."""
    scale = _scale_from_payload(payload)
    data = payload.get("data")
    if not data:
        raise HTTPException(400, "No data provided.")
    if not isinstance(data, list):
        raise HTTPException(422, "'data' must be a list.")
    return derive_bulk(data, scale)


@router.post("/convert")
async def convert(payload: dict):
    """Grade details for a score on the given scale. Expects: { "scale": {...}, "score": 17 }"""
    scale = _scale_from_payload(payload)
    if payload.get("score") is None:
        raise HTTPException(400, "No score provided.")
    return convert_score(scale, payload["score"])


@router.post("/convert/between")
async def convert_between(payload: dict):
    """
    Re-express a score from one scale on another.
    Expects: { "score": "B+" | 17, "from_scale": {...}, "to_scale": {...} }
    """
    from_scale = _scale_from_payload(payload, "from_scale")
    to_scale = _scale_from_payload(payload, "to_scale")
    if payload.get("score") is None:
        raise HTTPException(400, "No score provided.")
    return convert_between_scales(payload["score"], from_scale, to_scale)


@router.post("/gaps")
async def gaps(payload: dict):
    """Coverage report: unmapped intervals, overlapping levels and the legend."""
    scale = _scale_from_payload(payload)
    return {
        "gaps": [{"from": lo, "to": hi} for lo, hi in find_coverage_gaps(scale)],
        "overlaps": [[a.grade_value, b.grade_value] for a, b in find_overlaps(scale.levels)],
        "failing": [lvl.grade_value for lvl in get_failing_levels(scale)],
        "thresholds": scale_thresholds(scale),
    }


@router.get("/templates/{scale_type}")
async def template(scale_type: str):
    """Built-in levels a new scale of this type is seeded with."""
    if scale_type not in SCALE_TYPES:
        raise HTTPException(404, f"Unknown scale type '{scale_type}'.")
    return {"scale_type": scale_type, "levels": template_rows(scale_type)}
