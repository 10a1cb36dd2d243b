"""
Systems routes - school grading systems, scales, levels and grade entries.

Backed by one process-wide GradingRegistry. GradingError subclasses raised
here are turned into JSON errors by the handlers registered in main.py.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException

from core.grade_levels import to_bool
from core.registry import GradingRegistry

router = APIRouter()

registry = GradingRegistry()


def _body(payload: Optional[dict]) -> dict:
    if not payload:
        raise HTTPException(400, "No data provided.")
    return payload


# ── Grading systems ─────────────────────────────────────────────────

@router.get("/systems")
async def list_systems(
    school_id: int,
    search: Optional[str] = None,
    system_type: Optional[str] = None,
    is_primary: Optional[bool] = None,
):
    rows = registry.list_systems(school_id, search=search, system_type=system_type, is_primary=is_primary)
    return {"systems": [s.to_dict() for s in rows], "count": len(rows)}


@router.post("/systems", status_code=201)
async def create_system(school_id: int, payload: dict):
    """Create a grading system; its default scale is seeded from the built-in templates."""
    return registry.create_system(school_id, _body(payload)).to_dict()


@router.get("/systems/primary")
async def primary_system(school_id: int):
    system = registry.get_primary_system(school_id)
    if system is None:
        raise HTTPException(404, "No primary grading system configured.")
    return system.to_dict()


@router.get("/systems/{system_id}")
async def get_system(school_id: int, system_id: int):
    return registry.get_system(system_id, school_id).to_dict()


@router.patch("/systems/{system_id}")
async def update_system(school_id: int, system_id: int, payload: dict):
    return registry.update_system(system_id, school_id, _body(payload)).to_dict()


@router.post("/systems/{system_id}/primary")
async def set_primary(school_id: int, system_id: int):
    return registry.set_primary_system(system_id, school_id).to_dict()


@router.delete("/systems/{system_id}", status_code=204)
async def delete_system(school_id: int, system_id: int):
    registry.delete_system(system_id, school_id)


# ── Grade scales ────────────────────────────────────────────────────

@router.get("/scales")
async def list_scales(
    school_id: int,
    grading_system_id: Optional[int] = None,
    scale_type: Optional[str] = None,
    is_default: Optional[bool] = None,
    search: Optional[str] = None,
):
    rows = registry.list_scales(
        school_id,
        grading_system_id=grading_system_id,
        scale_type=scale_type,
        is_default=is_default,
        search=search,
    )
    return {"scales": [s.to_dict() for s in rows], "count": len(rows)}


@router.post("/scales", status_code=201)
async def create_scale(school_id: int, payload: dict):
    """
    Create a scale. Expects: { "name", "scale_type", "is_default", "levels": [...],
    "grading_system_id": optional, "seed_levels": optional bool }
    """
    data = _body(payload)
    try:
        seed_levels = to_bool(data.get("seed_levels"))
    except ValueError as exc:
        raise HTTPException(422, str(exc))
    scale = registry.create_scale(
        school_id,
        data,
        grading_system_id=data.get("grading_system_id"),
        seed_levels=seed_levels,
    )
    return scale.to_dict()


@router.get("/scales/default")
async def default_scale(school_id: int):
    scale = registry.get_default_scale(school_id)
    if scale is None:
        raise HTTPException(404, "No default grade scale configured.")
    return scale.to_dict()


@router.get("/scales/{scale_id}")
async def get_scale(school_id: int, scale_id: int):
    return registry.get_scale(scale_id, school_id).to_dict()


@router.patch("/scales/{scale_id}")
async def update_scale(school_id: int, scale_id: int, payload: dict):
    return registry.update_scale(scale_id, school_id, _body(payload)).to_dict()


@router.post("/scales/{scale_id}/default")
async def set_default(school_id: int, scale_id: int):
    return registry.set_default_scale(scale_id, school_id).to_dict()


@router.post("/scales/{scale_id}/duplicate", status_code=201)
async def duplicate(school_id: int, scale_id: int, payload: dict):
    name = _body(payload).get("name")
    if not name:
        raise HTTPException(400, "New scale name is required.")
    return registry.duplicate_scale(scale_id, school_id, name).to_dict()


@router.delete("/scales/{scale_id}", status_code=204)
async def delete_scale(school_id: int, scale_id: int):
    registry.delete_scale(scale_id, school_id)


# ── Grade levels ────────────────────────────────────────────────────

@router.post("/scales/{scale_id}/levels", status_code=201)
async def create_level(school_id: int, scale_id: int, payload: dict):
    return registry.create_level(scale_id, school_id, _body(payload)).to_dict()


@router.patch("/levels/{level_id}")
async def update_level(school_id: int, level_id: int, payload: dict):
    return registry.update_level(level_id, school_id, _body(payload)).to_dict()


@router.delete("/levels/{level_id}", status_code=204)
async def delete_level(school_id: int, level_id: int):
    registry.delete_level(level_id, school_id)


@router.post("/levels/reorder")
async def reorder_levels(school_id: int, payload: dict):
    """Expects: { "levels": [{"id": 1, "sort_order": 3}, ...] }"""
    orders = _body(payload).get("levels") or []
    registry.reorder_levels(school_id, orders)
    return {"reordered": len(orders)}


# ── Lookup, entries & GPA ───────────────────────────────────────────

@router.get("/grade")
async def grade_for_percentage(school_id: int, percentage: float, scale_id: Optional[int] = None):
    """Lookup against a named scale, or the primary system's default scale."""
    level = registry.grade_for_percentage(school_id, percentage, scale_id=scale_id)
    return {
        "percentage": percentage,
        "found": level is not None,
        "level": level.to_dict() if level else None,
    }


@router.post("/entries", status_code=201)
async def record_entry(school_id: int, payload: dict):
    data = dict(_body(payload))
    scale_id = data.pop("scale_id", None)
    return registry.record_grade_entry(school_id, data, scale_id=scale_id).to_dict()


@router.post("/entries/bulk")
async def record_entries(school_id: int, payload: dict):
    """Expects: { "grades": [...], "scale_id": optional }"""
    data = _body(payload)
    grades = data.get("grades")
    if not grades:
        raise HTTPException(400, "No grades provided.")
    return registry.record_bulk_entries(school_id, grades, scale_id=data.get("scale_id"))


@router.get("/students/{student_id}/entries")
async def student_entries(school_id: int, student_id: str):
    rows = registry.list_entries(school_id, student_id)
    return {"entries": [e.to_dict() for e in rows], "count": len(rows)}


@router.post("/students/{student_id}/gpa")
async def student_gpa(school_id: int, student_id: str, payload: Optional[dict] = None):
    """Expects (optional): { "credits_by_subject": {"Mathematics": 4}, "scale_id": 3 }"""
    payload = payload or {}
    return registry.calculate_student_gpa(
        school_id,
        student_id,
        credits_by_subject=payload.get("credits_by_subject"),
        scale_id=payload.get("scale_id"),
    )
