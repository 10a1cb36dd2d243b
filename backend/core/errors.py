"""
errors.py - Exception types raised by the grading core.

A percentage with no matching grade level is not an error: lookups return None.
"""

from typing import Dict, Optional


class GradingError(Exception):
    """Base class for grading failures surfaced to callers."""


class ConfigurationError(GradingError):
    """Invalid grade configuration, rejected before it is stored."""

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.errors = errors or {}


class ExclusivityViolation(GradingError):
    """Two default scales (or primary systems) exist in one scope."""


class DeletionBlocked(GradingError):
    """A record cannot be deleted while it is primary or still referenced."""


class RecordNotFound(GradingError):
    """No record with the requested id in the registry."""


class InvalidGradeEntry(GradingError):
    """Grade entry input rejected before derivation (e.g. earned > possible)."""
