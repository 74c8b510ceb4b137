"""Pydantic models for leak detection results.

Field names are snake_case in Python and camelCase on the wire
(``model_dump(by_alias=True)``). Reports are frozen once built.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .patterns import LeakCategory, LeakType, Severity


class WireModel(BaseModel):
    """Base for models exchanged with external consumers."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class LeakContext(WireModel):
    """Where a leak was found, in names and character offsets.

    Attributes:
        function_name: Function owning the acquisition.
        component_name: Enclosing UI component, if any.
        hook_name: Effect hook owning the acquisition, if any.
        variable_name: Identifier the acquisition is bound to.
        scope_kind: ``module``, ``function``, ``effect`` or ``lifecycle``.
        acquisition_start: Offset of the acquisition call.
        statement_start: Offset of the statement of the owning body that
            contains the call (the concise body for expression-bodied
            arrows).
        statement_is_acquisition: The statement consists of the call alone.
        acquisition_is_statement: The call is an expression statement of
            its own, possibly nested deeper than the owning body.
        binding_start: Span a fix captures into a variable when the
            acquisition is unbound (the handler for listeners).
        scope_start: Span of source a fix may rewrite.
        body_start: Span of the owning scope's body.
        teardown_start: Span of the teardown callback's body.
    """

    function_name: str | None = None
    component_name: str | None = None
    hook_name: str | None = None
    variable_name: str | None = None
    scope_kind: str = "module"
    is_in_effect_hook: bool = False
    is_in_component: bool = False
    has_teardown_callback: bool = False
    weakly_matched: bool = False
    acquisition_start: int | None = None
    acquisition_end: int | None = None
    statement_start: int | None = None
    statement_end: int | None = None
    statement_is_acquisition: bool = False
    acquisition_is_statement: bool = False
    binding_start: int | None = None
    binding_end: int | None = None
    scope_start: int | None = None
    scope_end: int | None = None
    body_start: int | None = None
    body_end: int | None = None
    body_is_block: bool = True
    teardown_start: int | None = None
    teardown_end: int | None = None
    teardown_is_block: bool = True
    listener_target: str | None = None
    event_argument: str | None = None
    event_name: str | None = None
    release_name: str | None = None


class ReportMetadata(WireModel):
    detected_at: datetime
    detection_method: Literal["static", "runtime"]
    rule_id: str
    category: LeakCategory


class LeakReport(WireModel):
    """A single potential leak.

    ``severity``, ``confidence`` and ``requires_manual_review`` always come
    from the confidence model (or a catalog default for runtime findings).
    """

    id: str
    type: LeakType
    severity: Severity
    confidence: float = Field(ge=0.0, le=1.0)
    file: str
    line: int
    column: int
    description: str
    suggested_fix: str = ""
    code_snippet: str = ""
    requires_manual_review: bool = False
    context: LeakContext = Field(default_factory=LeakContext)
    metadata: ReportMetadata


class ProjectSummary(WireModel):
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    fixable_count: int = 0


class ProjectLeakReport(WireModel):
    """Aggregated results of a project scan.

    Attributes:
        total_leaks: Number of reports after filtering.
        leaks_by_type: Report count per leak type.
        leaks_by_severity: Report count per severity.
        files: Files with at least one report.
        files_scanned: Number of files analyzed.
        reports: Reports ordered by severity, then confidence, descending.
    """

    total_leaks: int = 0
    leaks_by_type: dict[str, int] = Field(default_factory=dict)
    leaks_by_severity: dict[str, int] = Field(default_factory=dict)
    files: list[str] = Field(default_factory=list)
    files_scanned: int = 0
    reports: list[LeakReport] = Field(default_factory=list)
    summary: ProjectSummary = Field(default_factory=ProjectSummary)
    generated_at: datetime


class MemoryUsageSummary(WireModel):
    current: float
    peak: float
    trend: Literal["increasing", "decreasing", "stable"] = "stable"


class ActiveResources(WireModel):
    event_listeners: int = 0
    intervals: int = 0
    timeouts: int = 0
    subscriptions: int = 0
    connections: int = 0


class RuntimeLeakReport(WireModel):
    memory_usage: MemoryUsageSummary
    active_resources: ActiveResources = Field(default_factory=ActiveResources)
    suspicious_patterns: list[LeakReport] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    timestamp: datetime
