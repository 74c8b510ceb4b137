"""Static leak analysis for JavaScript / TypeScript UI code.

This package parses source with tree-sitter, finds resource acquisitions
(timers, listeners, sockets, subscriptions) and checks that each one is
released in the teardown callback of the scope that owns it.

Quick start::

    from leakwatch.analysis import LeakMatcher

    matcher = LeakMatcher()
    for report in matcher.analyze_source(code, "Clock.tsx"):
        print(report.type, report.severity, report.line)
"""

from .ast_engine import ASTEngine, CallSite, ParsedAST
from .confidence import Assessment, ConfidenceModel, ConfidenceWeights
from .matcher import LeakCandidate, LeakMatcher, PairingOutcome
from .models import (
    ActiveResources,
    LeakContext,
    LeakReport,
    MemoryUsageSummary,
    ProjectLeakReport,
    ProjectSummary,
    ReportMetadata,
    RuntimeLeakReport,
)
from .patterns import (
    DEFAULT_CATALOG,
    LeakCategory,
    LeakPattern,
    LeakType,
    PatternCatalog,
    Severity,
    get_pattern,
)
from .scope import BlockExtraction, ScopeContext, ScopeExtractor
from .timers import TimerKind, TimerLeakDetector, TrackedTimer

__all__ = [
    "ASTEngine",
    "ActiveResources",
    "Assessment",
    "BlockExtraction",
    "CallSite",
    "ConfidenceModel",
    "ConfidenceWeights",
    "DEFAULT_CATALOG",
    "LeakCandidate",
    "LeakCategory",
    "LeakContext",
    "LeakMatcher",
    "LeakPattern",
    "LeakReport",
    "LeakType",
    "MemoryUsageSummary",
    "PairingOutcome",
    "ParsedAST",
    "PatternCatalog",
    "ProjectLeakReport",
    "ProjectSummary",
    "ReportMetadata",
    "RuntimeLeakReport",
    "ScopeContext",
    "ScopeExtractor",
    "Severity",
    "TimerKind",
    "TimerLeakDetector",
    "TrackedTimer",
    "get_pattern",
]
