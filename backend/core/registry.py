"""
registry.py - In-memory store for grading systems, scales, levels and entries.

Every mutation runs inside transaction(): a re-entrant lock plus a snapshot
that is restored if the block raises. Default-scale and primary-system flags
are cleared and set inside one transaction, so readers (which take the same
lock) never see two defaults or none for a scope that had one.

School scope is always passed explicitly as school_id.
"""

import copy
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.app_logger import get_logger
from core.derivation import GradeEntry, derive_grade_entry, split_valid_entries, validate_entry
from core.errors import (
    ConfigurationError,
    DeletionBlocked,
    ExclusivityViolation,
    InvalidGradeEntry,
    RecordNotFound,
)
from core.gpa import calculate_gpa_details
from core.grade_levels import GradeLevel, next_sort_order, sort_levels, to_bool, validate_level_data
from core.grade_scales import SCALE_TYPES, GradeScale, ScaleConfiguration, get_grade_for_percentage
from core.grade_scales import duplicate_scale as _duplicate_scale
from core.grading_systems import (
    SYSTEM_STATUSES,
    SYSTEM_TYPES,
    GradingSystem,
    active_scale,
    seed_grading_system,
)
from core.templates import build_template_levels

log = get_logger("registry")

SYSTEM_UPDATABLE = ("name", "description", "status", "applicable_grades", "applicable_subjects", "configuration")
LEVEL_UPDATABLE = (
    "grade_value", "display_value", "numeric_value", "gpa_points", "percentage_min",
    "percentage_max", "description", "color_code", "is_passing", "sort_order",
)


def _flag(data: Dict[str, Any], key: str) -> Optional[bool]:
    """Parsed boolean flag, or None when the key is absent or null."""
    if data.get(key) is None:
        return None
    try:
        return to_bool(data[key])
    except ValueError as exc:
        raise ConfigurationError(f"Invalid {key}", {key: str(exc)})


def _check_system_fields(data: Dict[str, Any]) -> None:
    if data.get("system_type") is not None and data["system_type"] not in SYSTEM_TYPES:
        raise ConfigurationError("Invalid system type", {"system_type": f"Unknown system type: {data['system_type']}"})
    if data.get("status") is not None and data["status"] not in SYSTEM_STATUSES:
        raise ConfigurationError("Invalid status", {"status": f"Unknown status: {data['status']}"})
    _flag(data, "is_primary")


class GradingRegistry:
    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0
        self._next_id = 1
        self._systems: Dict[int, GradingSystem] = {}
        self._scales: Dict[int, GradeScale] = {}
        self._entries: Dict[int, List[GradeEntry]] = {}

    # ── Transactions ────────────────────────────────────────────────

    @contextmanager
    def transaction(self):
        with self._lock:
            outer = self._depth == 0
            snapshot = self._snapshot() if outer else None
            self._depth += 1
            try:
                yield self
            except Exception:
                if outer:
                    self._restore(snapshot)
                    log.warning("Transaction rolled back")
                raise
            finally:
                self._depth -= 1

    def _snapshot(self):
        # One deepcopy call keeps scales shared between systems and the scale index.
        # Entries are append-only, so their list lengths are enough to undo.
        config = copy.deepcopy((self._next_id, self._systems, self._scales))
        lengths = {school_id: len(rows) for school_id, rows in self._entries.items()}
        return config, lengths

    def _restore(self, snapshot) -> None:
        config, lengths = snapshot
        self._next_id, self._systems, self._scales = config
        for school_id in list(self._entries):
            keep = lengths.get(school_id, 0)
            if keep:
                del self._entries[school_id][keep:]
            else:
                del self._entries[school_id]

    def _new_id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    def check_exclusivity(self, school_id: int) -> None:
        """Raise ExclusivityViolation if a scope holds more than one primary/default."""
        with self._lock:
            primaries = [s.id for s in self._systems.values() if s.school_id == school_id and s.is_primary]
            if len(primaries) > 1:
                raise ExclusivityViolation(f"School {school_id} has several primary systems: {primaries}")
            seen: Dict[Optional[int], int] = {}
            for scale in self._scales.values():
                if scale.school_id != school_id or not scale.is_default:
                    continue
                if scale.grading_system_id in seen:
                    raise ExclusivityViolation(
                        f"Scope {scale.grading_system_id} has several default scales: "
                        f"{seen[scale.grading_system_id]}, {scale.id}"
                    )
                seen[scale.grading_system_id] = scale.id

    # ── Grading systems ─────────────────────────────────────────────

    def create_system(self, school_id: int, data: Dict[str, Any]) -> GradingSystem:
        """Create a system and seed its default scale; first system of a school is primary."""
        _check_system_fields(data)
        payload = dict(data, school_id=school_id)
        payload.pop("scales", None)
        system = GradingSystem.from_dict(payload)

        with self.transaction():
            system.id = self._new_id()
            if not any(s.school_id == school_id for s in self._systems.values()):
                system.is_primary = True
            if system.is_primary:
                self._clear_primary(school_id)
            seed_grading_system(system)
            for scale in system.scales:
                self._register_scale(scale)
            self._systems[system.id] = system
            self.check_exclusivity(school_id)

        log.info(
            "Created grading system %s (%s) for school %s with %d seeded levels",
            system.id, system.system_type, school_id, sum(len(s.levels) for s in system.scales),
        )
        return system

    def get_system(self, system_id: int, school_id: int) -> GradingSystem:
        with self._lock:
            system = self._systems.get(system_id)
            if system is None or system.school_id != school_id:
                raise RecordNotFound(f"Grading system {system_id} not found")
            return system

    def list_systems(
        self,
        school_id: int,
        search: Optional[str] = None,
        system_type: Optional[str] = None,
        is_primary: Optional[bool] = None,
    ) -> List[GradingSystem]:
        with self._lock:
            rows = [s for s in self._systems.values() if s.school_id == school_id]
            if search:
                needle = search.lower()
                rows = [
                    s for s in rows
                    if needle in s.name.lower() or needle in (s.description or "").lower()
                ]
            if system_type:
                rows = [s for s in rows if s.system_type == system_type]
            if is_primary is not None:
                rows = [s for s in rows if s.is_primary == is_primary]
            return sorted(rows, key=lambda s: (not s.is_primary, s.name))

    def update_system(self, system_id: int, school_id: int, data: Dict[str, Any]) -> GradingSystem:
        _check_system_fields(data)
        primary = _flag(data, "is_primary")
        with self.transaction():
            system = self.get_system(system_id, school_id)
            for key in SYSTEM_UPDATABLE:
                if key in data and not (key == "status" and data[key] is None):
                    setattr(system, key, data[key])
            if data.get("system_type") is not None:
                system.system_type = data["system_type"]
            if primary is True:
                self.set_primary_system(system_id, school_id)
            elif primary is False:
                system.is_primary = False
        return system

    def get_primary_system(self, school_id: int) -> Optional[GradingSystem]:
        with self._lock:
            for system in self._systems.values():
                if system.school_id == school_id and system.is_primary:
                    return system
        return None

    def set_primary_system(self, system_id: int, school_id: int) -> GradingSystem:
        with self.transaction():
            system = self.get_system(system_id, school_id)
            self._clear_primary(school_id, keep_id=system_id)
            system.is_primary = True
            self.check_exclusivity(school_id)
        log.info("Grading system %s is now primary for school %s", system_id, school_id)
        return system

    def delete_system(self, system_id: int, school_id: int) -> None:
        with self.transaction():
            system = self.get_system(system_id, school_id)
            if system.is_primary:
                log.warning("Refused to delete primary grading system %s", system_id)
                raise DeletionBlocked("Cannot delete primary grading system")
            for scale in system.scales:
                for level in scale.levels:
                    if self.level_in_use(school_id, level):
                        raise DeletionBlocked("Cannot delete grading system with existing grade entries")
            for scale in system.scales:
                self._scales.pop(scale.id, None)
            del self._systems[system_id]
        log.info("Deleted grading system %s", system_id)

    def _clear_primary(self, school_id: int, keep_id: Optional[int] = None) -> None:
        for other in self._systems.values():
            if other.school_id == school_id and other.id != keep_id:
                other.is_primary = False

    # ── Grade scales ────────────────────────────────────────────────

    def _register_scale(self, scale: GradeScale) -> None:
        scale.id = self._new_id()
        for level in scale.levels:
            level.id = self._new_id()
            level.grade_scale_id = scale.id
        self._scales[scale.id] = scale

    def _clear_default(self, school_id: int, grading_system_id: Optional[int], keep_id: Optional[int] = None) -> None:
        for other in self._scales.values():
            if (
                other.school_id == school_id
                and other.grading_system_id == grading_system_id
                and other.id != keep_id
            ):
                other.is_default = False

    def _check_scale_name(self, school_id: int, grading_system_id: Optional[int], name: str, exclude_id: Optional[int] = None) -> None:
        for other in self._scales.values():
            if (
                other.school_id == school_id
                and other.grading_system_id == grading_system_id
                and other.name == name
                and other.id != exclude_id
            ):
                raise ConfigurationError(
                    "Duplicate grade scale name",
                    {"name": "Grade scale name already exists in this grading system"},
                )

    def create_scale(
        self,
        school_id: int,
        data: Dict[str, Any],
        grading_system_id: Optional[int] = None,
        seed_levels: bool = False,
    ) -> GradeScale:
        """
        Create a scale, standalone or inside a grading system.

        Levels given in data are validated for range overlaps; with seed_levels
        and no levels given, the template for the scale type is used.
        """
        scale_type = data.get("scale_type") or "letter"
        if scale_type not in SCALE_TYPES:
            raise ConfigurationError("Invalid scale type", {"scale_type": f"Unknown scale type: {scale_type}"})
        name = str(data.get("name") or "").strip()
        if not name:
            raise ConfigurationError("Grade scale name is required", {"name": "Grade scale name is required"})

        level_rows = list(data.get("levels") or [])
        levels: List[GradeLevel] = []
        for idx, row in enumerate(level_rows, start=1):
            row = dict(row)
            row.setdefault("sort_order", idx)
            errors = validate_level_data(row, levels)
            if errors:
                raise ConfigurationError(f"Invalid grade level #{idx}", errors)
            levels.append(GradeLevel.from_dict(row))
        if not levels and seed_levels:
            levels = build_template_levels(scale_type)

        with self.transaction():
            system = self.get_system(grading_system_id, school_id) if grading_system_id is not None else None
            self._check_scale_name(school_id, grading_system_id, name)
            scale = GradeScale(
                name=name,
                scale_type=scale_type,
                is_default=bool(_flag(data, "is_default")),
                levels=levels,
                configuration=ScaleConfiguration.from_dict(data.get("configuration")),
                grading_system_id=grading_system_id,
                school_id=school_id,
            )
            self._register_scale(scale)
            if scale.is_default:
                self._clear_default(school_id, grading_system_id, keep_id=scale.id)
            if system is not None:
                system.scales.append(scale)
            self.check_exclusivity(school_id)
        return scale

    def get_scale(self, scale_id: int, school_id: int) -> GradeScale:
        with self._lock:
            scale = self._scales.get(scale_id)
            if scale is None or scale.school_id != school_id:
                raise RecordNotFound(f"Grade scale {scale_id} not found")
            return scale

    def list_scales(
        self,
        school_id: int,
        grading_system_id: Optional[int] = None,
        scale_type: Optional[str] = None,
        is_default: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> List[GradeScale]:
        with self._lock:
            rows = [s for s in self._scales.values() if s.school_id == school_id]
            if grading_system_id is not None:
                rows = [s for s in rows if s.grading_system_id == grading_system_id]
            if scale_type:
                rows = [s for s in rows if s.scale_type == scale_type]
            if is_default is not None:
                rows = [s for s in rows if s.is_default == is_default]
            if search:
                rows = [s for s in rows if search.lower() in s.name.lower()]
            return sorted(rows, key=lambda s: (not s.is_default, s.name))

    def update_scale(self, scale_id: int, school_id: int, data: Dict[str, Any]) -> GradeScale:
        if "scale_type" in data and data["scale_type"] not in SCALE_TYPES:
            raise ConfigurationError("Invalid scale type", {"scale_type": f"Unknown scale type: {data['scale_type']}"})
        default = _flag(data, "is_default")
        with self.transaction():
            scale = self.get_scale(scale_id, school_id)
            if "name" in data:
                self._check_scale_name(school_id, scale.grading_system_id, data["name"], exclude_id=scale_id)
                scale.name = data["name"]
            if "scale_type" in data:
                scale.scale_type = data["scale_type"]
            if "configuration" in data:
                scale.configuration = ScaleConfiguration.from_dict(data["configuration"])
            if default is True:
                self.set_default_scale(scale_id, school_id)
            elif default is False:
                scale.is_default = False
        return scale

    def set_default_scale(self, scale_id: int, school_id: int) -> GradeScale:
        """Clear every other default in the scale's scope, then flag this one."""
        with self.transaction():
            scale = self.get_scale(scale_id, school_id)
            self._clear_default(school_id, scale.grading_system_id, keep_id=scale_id)
            scale.is_default = True
            self.check_exclusivity(school_id)
        log.info("Grade scale %s is now default (system %s)", scale_id, scale.grading_system_id)
        return scale

    def get_default_scale(self, school_id: int) -> Optional[GradeScale]:
        """Primary system's default scale, else any default scale of the school."""
        with self._lock:
            scale = self.active_scale(school_id)
            if scale is not None:
                return scale
            for candidate in self._scales.values():
                if candidate.school_id == school_id and candidate.is_default:
                    return candidate
        return None

    def delete_scale(self, scale_id: int, school_id: int) -> None:
        with self.transaction():
            scale = self.get_scale(scale_id, school_id)
            if scale.levels:
                raise DeletionBlocked("Cannot delete grade scale with existing grade levels")
            if scale.grading_system_id is not None:
                system = self._systems.get(scale.grading_system_id)
                if system is not None:
                    system.scales = [s for s in system.scales if s.id != scale_id]
            del self._scales[scale_id]

    def duplicate_scale(self, scale_id: int, school_id: int, new_name: str) -> GradeScale:
        with self.transaction():
            source = self.get_scale(scale_id, school_id)
            self._check_scale_name(school_id, source.grading_system_id, new_name)
            clone = _duplicate_scale(source, new_name)
            self._register_scale(clone)
            if clone.grading_system_id is not None:
                self._systems[clone.grading_system_id].scales.append(clone)
        return clone

    # ── Grade levels ────────────────────────────────────────────────

    def find_level(self, level_id: int, school_id: int) -> Tuple[GradeScale, GradeLevel]:
        with self._lock:
            for scale in self._scales.values():
                if scale.school_id != school_id:
                    continue
                for level in scale.levels:
                    if level.id == level_id:
                        return scale, level
        raise RecordNotFound(f"Grade level {level_id} not found")

    def create_level(self, scale_id: int, school_id: int, data: Dict[str, Any]) -> GradeLevel:
        with self.transaction():
            scale = self.get_scale(scale_id, school_id)
            errors = validate_level_data(data, scale.levels)
            if errors:
                raise ConfigurationError("Invalid grade level", errors)
            row = dict(data)
            if row.get("sort_order") is None:
                row["sort_order"] = next_sort_order(scale.levels)
            level = GradeLevel.from_dict(row)
            level.id = self._new_id()
            level.grade_scale_id = scale.id
            scale.levels = sort_levels(scale.levels + [level])
        return level

    def update_level(self, level_id: int, school_id: int, data: Dict[str, Any]) -> GradeLevel:
        with self.transaction():
            scale, level = self.find_level(level_id, school_id)
            merged = {k: v for k, v in level.to_dict().items() if k in LEVEL_UPDATABLE}
            merged.update({k: v for k, v in data.items() if k in LEVEL_UPDATABLE})
            errors = validate_level_data(merged, scale.levels, exclude_id=level_id, partial=True)
            if errors:
                raise ConfigurationError("Invalid grade level", errors)
            updated = GradeLevel.from_dict(dict(merged, id=level.id, grade_scale_id=scale.id))
            for key in LEVEL_UPDATABLE:
                setattr(level, key, getattr(updated, key))
            scale.levels = sort_levels(scale.levels)
        return level

    def level_in_use(self, school_id: int, level: GradeLevel) -> bool:
        with self._lock:
            return any(e.letter_grade == level.grade_value for e in self._entries.get(school_id, []))

    def delete_level(self, level_id: int, school_id: int) -> None:
        with self.transaction():
            scale, level = self.find_level(level_id, school_id)
            if self.level_in_use(school_id, level):
                raise DeletionBlocked("Cannot delete grade level that is being used in grade entries")
            scale.levels = [lvl for lvl in scale.levels if lvl.id != level_id]

    def reorder_levels(self, school_id: int, orders: Iterable[Dict[str, Any]]) -> None:
        """Apply [{"id": ..., "sort_order": ...}] atomically."""
        with self.transaction():
            touched = {}
            for row in orders:
                scale, level = self.find_level(int(row["id"]), school_id)
                level.sort_order = int(row["sort_order"])
                touched[scale.id] = scale
            for scale in touched.values():
                scale.levels = sort_levels(scale.levels)

    # ── Lookup & GPA ────────────────────────────────────────────────

    def active_scale(self, school_id: int) -> Optional[GradeScale]:
        with self._lock:
            return active_scale(s for s in self._systems.values() if s.school_id == school_id)

    def resolve_scale(self, school_id: int, scale_id: Optional[int] = None) -> Optional[GradeScale]:
        if scale_id is not None:
            return self.get_scale(scale_id, school_id)
        return self.active_scale(school_id)

    def grade_for_percentage(self, school_id: int, percentage: Any, scale_id: Optional[int] = None) -> Optional[GradeLevel]:
        scale = self.resolve_scale(school_id, scale_id)
        if scale is None:
            return None
        return get_grade_for_percentage(scale, percentage)

    def calculate_gpa(self, school_id: int, entries: Iterable[Dict[str, Any]], scale_id: Optional[int] = None) -> Dict[str, Any]:
        return calculate_gpa_details(entries, self.resolve_scale(school_id, scale_id))

    # ── Grade entries ───────────────────────────────────────────────

    def record_grade_entry(self, school_id: int, data: Dict[str, Any], scale_id: Optional[int] = None) -> GradeEntry:
        entry = GradeEntry.from_dict(data)
        error = validate_entry(entry)
        if error:
            raise InvalidGradeEntry(error)
        with self.transaction():
            derived = derive_grade_entry(entry, self.resolve_scale(school_id, scale_id))
            derived.id = self._new_id()
            self._entries.setdefault(school_id, []).append(derived)
        return derived

    def record_bulk_entries(
        self,
        school_id: int,
        records: Iterable[Dict[str, Any]],
        scale_id: Optional[int] = None,
    ) -> Dict[str, List[Dict[str, Any]]]:
        """Store every valid row; invalid rows come back under "failed"."""
        entries, failed = split_valid_entries(records)
        successful: List[Dict[str, Any]] = []
        with self.transaction():
            scale = self.resolve_scale(school_id, scale_id)
            for entry in entries:
                derived = derive_grade_entry(entry, scale)
                derived.id = self._new_id()
                self._entries.setdefault(school_id, []).append(derived)
                successful.append(derived.to_dict())
        if failed:
            log.info("Bulk entry for school %s: %d stored, %d rejected", school_id, len(successful), len(failed))
        return {"successful": successful, "failed": failed}

    def list_entries(self, school_id: int, student_id: Optional[str] = None) -> List[GradeEntry]:
        with self._lock:
            rows = list(self._entries.get(school_id, []))
        if student_id is not None:
            rows = [e for e in rows if e.student_id == str(student_id)]
        return rows

    def calculate_student_gpa(
        self,
        school_id: int,
        student_id: str,
        credits_by_subject: Optional[Dict[str, float]] = None,
        scale_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Term GPA for a student from stored entries.

        Credits come from credits_by_subject, then the entry's own credits, then 1.0.
        """
        credits_by_subject = credits_by_subject or {}
        rows = []
        for entry in self.list_entries(school_id, student_id):
            if entry.percentage_score is None:
                continue
            credits = credits_by_subject.get(entry.subject)
            if credits is None:
                credits = entry.credits
            rows.append({"percentage": entry.percentage_score, "credits": credits})
        details = self.calculate_gpa(school_id, rows, scale_id)
        details["student_id"] = str(student_id)
        return details
