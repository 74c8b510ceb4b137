"""Fix generation and validation for static leak reports."""

from .generator import Edit, FixGenerator, FixStrategy, apply_edits
from .models import (
    Fix,
    FixMetadata,
    ValidationBuckets,
    ValidationIssue,
    ValidationResult,
    ValidationSummary,
)

__all__ = [
    "Edit",
    "Fix",
    "FixGenerator",
    "FixMetadata",
    "FixStrategy",
    "ValidationBuckets",
    "ValidationIssue",
    "ValidationResult",
    "ValidationSummary",
    "apply_edits",
]
