"""
grading_systems.py - School-level grading policies and default-scale seeding.

A grading system bundles one or more grade scales. Creating one seeds a
default scale from the built-in templates so a school can grade immediately.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from core.grade_levels import to_bool
from core.grade_scales import GradeScale, ScaleConfiguration
from core.templates import build_template_levels

SYSTEM_TYPES = ("traditional_letter", "percentage", "points", "standards_based", "narrative")
SYSTEM_STATUSES = ("active", "inactive")

DEFAULT_SCALE_NAMES = {
    "traditional_letter": "Standard Letter Grades",
    "percentage": "Percentage Scale",
    "points": "Points Scale",
    "standards_based": "Standards-Based Scale",
    "narrative": "Narrative Assessment",
}

SYSTEM_TO_SCALE_TYPE = {
    "traditional_letter": "letter",
    "standards_based": "standards",
}


@dataclass
class GradingSystem:
    school_id: int
    name: str
    system_type: str = "traditional_letter"
    is_primary: bool = False
    status: str = "active"
    applicable_grades: List[str] = field(default_factory=list)
    applicable_subjects: List[str] = field(default_factory=list)
    configuration: Dict[str, Any] = field(default_factory=dict)
    scales: List[GradeScale] = field(default_factory=list)
    description: Optional[str] = None
    id: Optional[int] = None

    def is_active(self) -> bool:
        return self.status == "active"

    def supports_grade(self, grade: str) -> bool:
        return grade in (self.applicable_grades or [])

    def supports_subject(self, subject: str) -> bool:
        return subject in (self.applicable_subjects or [])

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["scales"] = [s.to_dict() for s in self.scales]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GradingSystem":
        system_type = data.get("system_type") or "traditional_letter"
        if system_type not in SYSTEM_TYPES:
            raise ValueError(f"Unknown system type: {system_type}")
        status = data.get("status") or "active"
        if status not in SYSTEM_STATUSES:
            raise ValueError(f"Unknown status: {status}")
        return cls(
            school_id=data.get("school_id"),
            name=str(data.get("name") or DEFAULT_SCALE_NAMES.get(system_type, "Grading System")),
            system_type=system_type,
            is_primary=to_bool(data.get("is_primary")),
            status=status,
            applicable_grades=list(data.get("applicable_grades") or []),
            applicable_subjects=list(data.get("applicable_subjects") or []),
            configuration=dict(data.get("configuration") or {}),
            scales=[
                s if isinstance(s, GradeScale) else GradeScale.from_dict(s)
                for s in data.get("scales") or []
            ],
            description=data.get("description"),
            id=data.get("id"),
        )


def scale_type_for(system_type: str) -> str:
    return SYSTEM_TO_SCALE_TYPE.get(system_type, system_type)


def default_scale_name(system_type: str) -> str:
    return DEFAULT_SCALE_NAMES.get(system_type, "Default Scale")


def build_default_scale(system: GradingSystem) -> GradeScale:
    """The seeded default scale for a new system, levels filled from its template."""
    scale_type = scale_type_for(system.system_type)
    return GradeScale(
        name=default_scale_name(system.system_type),
        scale_type=scale_type,
        is_default=True,
        levels=build_template_levels(scale_type),
        configuration=ScaleConfiguration.from_dict(system.configuration),
        grading_system_id=system.id,
        school_id=system.school_id,
    )


def seed_grading_system(system: GradingSystem) -> GradingSystem:
    """Attach the default scale to a freshly created system (in place)."""
    system.scales.append(build_default_scale(system))
    return system


def default_scale_for(system: Optional[GradingSystem]) -> Optional[GradeScale]:
    """The system's default scale, else its first scale, else None."""
    if system is None or not system.scales:
        return None
    for scale in system.scales:
        if scale.is_default:
            return scale
    return system.scales[0]


def primary_system(systems: Iterable[GradingSystem]) -> Optional[GradingSystem]:
    for system in systems:
        if system.is_primary:
            return system
    return None


def active_scale(systems: Iterable[GradingSystem]) -> Optional[GradeScale]:
    """Default scale of the primary system; the scale used when none is named."""
    return default_scale_for(primary_system(systems))
