"""Pydantic models for generated fixes and their validation."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import Field

from ..analysis.models import WireModel
from ..analysis.patterns import LeakType


class FixMetadata(WireModel):
    generated_at: datetime
    estimated_impact: Literal["low", "medium", "high"] = "medium"
    risk_level: Literal["safe", "moderate", "risky"] = "safe"
    strategy: str = ""


class Fix(WireModel):
    """A source patch for exactly one leak report.

    ``original_code`` and ``fixed_code`` cover the same span of the file,
    ``[start_offset, end_offset)`` in characters. A fix is never mutated;
    regenerating produces a new ``Fix``.
    """

    id: str
    leak_id: str
    type: LeakType
    file: str
    line: int
    column: int
    original_code: str
    fixed_code: str
    description: str
    confidence: float = Field(ge=0.0, le=1.0)
    requires_manual_review: bool = False
    category: Literal["automatic", "suggested", "manual"] = "automatic"
    start_offset: int = 0
    end_offset: int = 0
    metadata: FixMetadata


class ValidationIssue(WireModel):
    fix_id: str
    error: str
    code: str
    severity: Literal["error", "warning"] = "error"
    suggestion: str | None = None


class ValidationBuckets(WireModel):
    applied: list[Fix] = Field(default_factory=list)
    failed: list[Fix] = Field(default_factory=list)
    skipped: list[Fix] = Field(default_factory=list)


class ValidationSummary(WireModel):
    total_fixes: int = 0
    successful_fixes: int = 0
    failed_fixes: int = 0
    skipped_fixes: int = 0


class ValidationResult(WireModel):
    """Outcome of validating a batch of fixes.

    Attributes:
        valid: ``True`` when no fix produced an error.
        fixes: Fixes sorted into applied, failed and skipped.
        errors: One issue per failed fix.
        warnings: Human-readable notes (skipped fixes, dry runs).
    """

    valid: bool
    fixes: ValidationBuckets = Field(default_factory=ValidationBuckets)
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)
