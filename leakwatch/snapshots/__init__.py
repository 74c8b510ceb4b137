"""Runtime memory snapshots, comparisons and regression detection."""

from .engine import (
    GCMonitor,
    MemorySampler,
    MemorySnapshotEngine,
    compare,
    effectiveness_score,
    leak_severity,
)
from .models import (
    ComparisonAnalysis,
    ComparisonResult,
    Effectiveness,
    FixEffectivenessResult,
    MemorySnapshot,
    MemoryUsage,
    PerformanceImpact,
    PerformanceMetrics,
    RegressionInfo,
    RegressionResult,
    RegressionThresholds,
    ResourceCounts,
    SnapshotDifferences,
    SnapshotMetadata,
)

__all__ = [
    "ComparisonAnalysis",
    "ComparisonResult",
    "Effectiveness",
    "FixEffectivenessResult",
    "GCMonitor",
    "MemorySampler",
    "MemorySnapshot",
    "MemorySnapshotEngine",
    "MemoryUsage",
    "PerformanceImpact",
    "PerformanceMetrics",
    "RegressionInfo",
    "RegressionResult",
    "RegressionThresholds",
    "ResourceCounts",
    "SnapshotDifferences",
    "SnapshotMetadata",
    "compare",
    "effectiveness_score",
    "leak_severity",
]
