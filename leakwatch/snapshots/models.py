"""Pydantic models for memory snapshots and their comparisons.

All memory figures are megabytes, CPU and GC times are milliseconds.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import Field

from ..analysis.models import WireModel
from ..constants import (
    DEFAULT_MEMORY_GROWTH_THRESHOLD_MB,
    DEFAULT_PERFORMANCE_DEGRADATION_PERCENT,
    DEFAULT_RESOURCE_GROWTH_THRESHOLD,
)

LeakSeverity = Literal["none", "minor", "moderate", "severe"]
RegressionType = Literal["memory", "performance", "resources", "mixed"]


class MemoryUsage(WireModel):
    heap_used: float = 0.0
    heap_total: float = 0.0
    external: float = 0.0
    array_buffers: float = 0.0
    rss: float = 0.0


class PerformanceMetrics(WireModel):
    gc_count: int = 0
    gc_duration: float = 0.0
    cpu_usage: float = 0.0


class ResourceCounts(WireModel):
    """Live resource counts; as a difference the values may be negative."""

    event_listeners: int = 0
    intervals: int = 0
    timeouts: int = 0
    subscriptions: int = 0
    connections: int = 0

    def as_list(self) -> list[int]:
        return [
            self.event_listeners,
            self.intervals,
            self.timeouts,
            self.subscriptions,
            self.connections,
        ]

    def minus(self, other: ResourceCounts) -> ResourceCounts:
        return ResourceCounts(
            event_listeners=self.event_listeners - other.event_listeners,
            intervals=self.intervals - other.intervals,
            timeouts=self.timeouts - other.timeouts,
            subscriptions=self.subscriptions - other.subscriptions,
            connections=self.connections - other.connections,
        )


class SnapshotMetadata(WireModel):
    python_version: str = ""
    platform: str = ""
    arch: str = ""
    pid: int = 0


class MemorySnapshot(WireModel):
    """Immutable point-in-time capture of memory, performance and resources."""

    id: str
    timestamp: datetime
    description: str = ""
    memory_usage: MemoryUsage = Field(default_factory=MemoryUsage)
    performance_metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    resource_counts: ResourceCounts = Field(default_factory=ResourceCounts)
    metadata: SnapshotMetadata = Field(default_factory=SnapshotMetadata)


class PerformanceImpact(WireModel):
    gc_count_change: int = 0
    gc_duration_change: float = 0.0
    cpu_usage_change: float = 0.0


class SnapshotDifferences(WireModel):
    memory_delta: float
    memory_delta_percent: float
    heap_growth: float
    external_growth: float
    resource_changes: ResourceCounts
    performance_impact: PerformanceImpact


class ComparisonAnalysis(WireModel):
    has_memory_leak: bool = False
    leak_severity: LeakSeverity = "none"
    has_resource_leak: bool = False
    has_performance_regression: bool = False
    regression_detected: bool = False
    recommendations: list[str] = Field(default_factory=list)


class ComparisonResult(WireModel):
    """Difference between two snapshots, computed fresh on every call.

    Attributes:
        before: Earlier snapshot.
        after: Later snapshot.
        differences: ``after - before`` per measurement.
        analysis: Leak and regression classification of the differences.
        duration: Milliseconds between the two snapshots.
    """

    before: MemorySnapshot
    after: MemorySnapshot
    differences: SnapshotDifferences
    analysis: ComparisonAnalysis
    duration: float

    @property
    def memory_delta(self) -> float:
        return self.differences.memory_delta


class RegressionThresholds(WireModel):
    memory_growth_threshold: float = Field(default=DEFAULT_MEMORY_GROWTH_THRESHOLD_MB, ge=0)
    resource_growth_threshold: int = Field(default=DEFAULT_RESOURCE_GROWTH_THRESHOLD, ge=0)
    performance_degradation_threshold: float = Field(
        default=DEFAULT_PERFORMANCE_DEGRADATION_PERCENT, ge=0
    )


class RegressionInfo(WireModel):
    detected: bool
    severity: LeakSeverity
    type: RegressionType
    confidence: float = Field(ge=0.0, le=1.0)


class RegressionResult(WireModel):
    baseline_snapshot: MemorySnapshot
    current_snapshot: MemorySnapshot
    comparison: ComparisonResult
    regression: RegressionInfo
    thresholds: RegressionThresholds
    recommendations: list[str] = Field(default_factory=list)


class Effectiveness(WireModel):
    memory_reduction: float
    memory_reduction_percent: float
    resources_freed: int
    performance_improvement: float
    score: float = Field(ge=0.0, le=100.0)


class FixEffectivenessResult(WireModel):
    fix_id: str
    fix_type: str
    before_snapshot: MemorySnapshot
    after_snapshot: MemorySnapshot
    comparison: ComparisonResult
    effectiveness: Effectiveness
    success: bool
    issues: list[str] = Field(default_factory=list)
