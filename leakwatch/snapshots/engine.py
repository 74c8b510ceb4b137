"""Memory snapshot capture, comparison and regression scoring.

``MemorySnapshotEngine`` keeps an in-process map of immutable snapshots.
It is single-writer: creating, importing and clearing snapshots must not
race each other. Comparisons are pure functions of two stored snapshots
and are safe to run concurrently.
"""

from __future__ import annotations

import asyncio
import gc
import inspect
import json
import logging
import math
import os
import platform
import sys
import threading
import time
import tracemalloc
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import psutil
from pydantic import ValidationError

from ..constants import (
    FIX_SETTLE_DELAY_SECONDS,
    GC_SETTLE_DELAY_SECONDS,
    LEAK_MEMORY_DELTA_MB,
    MIN_RELIABLE_INTERVAL_MS,
    MODERATE_LEAK_MB,
    PERFORMANCE_REGRESSION_CPU_MS,
    SEVERE_LEAK_MB,
    SNAPSHOT_MAX_AGE_HOURS,
)
from ..core.exceptions import SnapshotImportError, SnapshotNotFoundError
from ..fixes.models import Fix
from ..logging_config import get_event_logger
from .models import (
    ComparisonAnalysis,
    ComparisonResult,
    Effectiveness,
    FixEffectivenessResult,
    LeakSeverity,
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

logger = logging.getLogger(__name__)
event_logger = get_event_logger()

_MB = 1024 * 1024

ResourceCounter = Callable[[], ResourceCounts]
TestFunction = Callable[[], Any]


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------


class GCMonitor:
    """Counts collections and accumulates their duration via ``gc.callbacks``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started: float | None = None
        self._duration_ms = 0.0
        self._installed = False

    def install(self) -> None:
        if not self._installed:
            gc.callbacks.append(self._callback)
            self._installed = True

    def uninstall(self) -> None:
        if self._installed:
            gc.callbacks.remove(self._callback)
            self._installed = False

    def _callback(self, phase: str, info: dict[str, Any]) -> None:
        now = time.perf_counter()
        with self._lock:
            if phase == "start":
                self._started = now
            elif phase == "stop" and self._started is not None:
                self._duration_ms += (now - self._started) * 1000.0
                self._started = None

    @property
    def collections(self) -> int:
        return sum(stats.get("collections", 0) for stats in gc.get_stats())

    @property
    def duration_ms(self) -> float:
        with self._lock:
            return self._duration_ms


class MemorySampler:
    """Reads process memory, CPU and GC counters through psutil.

    Mapping onto snapshot fields: ``heap_used`` and ``rss`` are the
    resident set size, ``heap_total`` the virtual size, ``external`` the
    memory traced by ``tracemalloc`` (0 unless tracing) and
    ``array_buffers`` the shared memory where the platform reports it.
    """

    def __init__(
        self,
        process: psutil.Process | None = None,
        gc_monitor: GCMonitor | None = None,
    ) -> None:
        self._process = process or psutil.Process(os.getpid())
        self.gc_monitor = gc_monitor or GCMonitor()
        self.gc_monitor.install()

    def memory_usage(self) -> MemoryUsage:
        info = self._process.memory_info()
        traced = tracemalloc.get_traced_memory()[0] if tracemalloc.is_tracing() else 0
        return MemoryUsage(
            heap_used=info.rss / _MB,
            heap_total=info.vms / _MB,
            external=traced / _MB,
            array_buffers=getattr(info, "shared", 0) / _MB,
            rss=info.rss / _MB,
        )

    def peak_mb(self) -> float:
        """Peak memory where the platform tracks it, else the current RSS."""
        info = self._process.memory_info()
        if hasattr(info, "peak_wset"):  # Windows
            return info.peak_wset / _MB
        if hasattr(info, "peak_rss"):
            return info.peak_rss / _MB
        return info.rss / _MB

    def cpu_time_ms(self) -> float:
        times = self._process.cpu_times()
        return (times.user + times.system) * 1000.0

    def performance(self) -> PerformanceMetrics:
        return PerformanceMetrics(
            gc_count=self.gc_monitor.collections,
            gc_duration=self.gc_monitor.duration_ms,
            cpu_usage=self.cpu_time_ms(),
        )

    def metadata(self) -> SnapshotMetadata:
        return SnapshotMetadata(
            python_version=platform.python_version(),
            platform=sys.platform,
            arch=platform.machine(),
            pid=self._process.pid,
        )

    def close(self) -> None:
        self.gc_monitor.uninstall()


# ---------------------------------------------------------------------------
# Pure scoring
# ---------------------------------------------------------------------------


def _finite(value: float) -> float:
    return 0.0 if math.isnan(value) else value


def effectiveness_score(
    memory_reduction: float,
    memory_reduction_percent: float,
    resources_freed: float,
    performance_improvement: float,
) -> float:
    """Score a fix from 0 to 100.

    Up to 40 points for memory reduced (2 per MB), 30 for the relative
    reduction, 20 for freed resources (4 each) and 10 for performance.
    Adverse or NaN inputs contribute nothing.
    """
    score = 0.0
    memory_reduction = _finite(memory_reduction)
    memory_reduction_percent = _finite(memory_reduction_percent)
    resources_freed = _finite(resources_freed)
    performance_improvement = _finite(performance_improvement)

    if memory_reduction > 0:
        score += min(40.0, memory_reduction * 2)
    if memory_reduction_percent > 0:
        score += min(30.0, memory_reduction_percent)
    if resources_freed > 0:
        score += min(20.0, resources_freed * 4)
    if performance_improvement > 0:
        score += min(10.0, performance_improvement)
    return min(100.0, max(0.0, score))


def leak_severity(memory_delta: float) -> LeakSeverity:
    if memory_delta <= LEAK_MEMORY_DELTA_MB:
        return "none"
    if memory_delta > SEVERE_LEAK_MB:
        return "severe"
    if memory_delta >= MODERATE_LEAK_MB:
        return "moderate"
    return "minor"


def analyze_differences(
    memory_delta: float,
    resource_changes: ResourceCounts,
    performance_impact: PerformanceImpact,
) -> ComparisonAnalysis:
    has_memory_leak = memory_delta > LEAK_MEMORY_DELTA_MB
    has_resource_leak = any(change > 0 for change in resource_changes.as_list())
    has_performance_regression = performance_impact.cpu_usage_change > PERFORMANCE_REGRESSION_CPU_MS

    recommendations = []
    if has_memory_leak:
        recommendations.append("Memory usage increased significantly. Check for memory leaks.")
    if has_resource_leak:
        recommendations.append("Resource count increased. Ensure proper cleanup of resources.")
    if has_performance_regression:
        recommendations.append("Performance degradation detected. Review recent changes.")

    return ComparisonAnalysis(
        has_memory_leak=has_memory_leak,
        leak_severity=leak_severity(memory_delta),
        has_resource_leak=has_resource_leak,
        has_performance_regression=has_performance_regression,
        regression_detected=has_memory_leak or has_resource_leak or has_performance_regression,
        recommendations=recommendations,
    )


def compare(before: MemorySnapshot, after: MemorySnapshot) -> ComparisonResult:
    """Compute the difference ``after - before`` of two snapshots."""
    memory_delta = after.memory_usage.heap_used - before.memory_usage.heap_used
    memory_delta_percent = (
        memory_delta / before.memory_usage.heap_used * 100
        if before.memory_usage.heap_used > 0
        else 0.0
    )
    resource_changes = after.resource_counts.minus(before.resource_counts)
    performance_impact = PerformanceImpact(
        gc_count_change=after.performance_metrics.gc_count - before.performance_metrics.gc_count,
        gc_duration_change=(
            after.performance_metrics.gc_duration - before.performance_metrics.gc_duration
        ),
        cpu_usage_change=after.performance_metrics.cpu_usage - before.performance_metrics.cpu_usage,
    )
    return ComparisonResult(
        before=before,
        after=after,
        differences=SnapshotDifferences(
            memory_delta=memory_delta,
            memory_delta_percent=memory_delta_percent,
            heap_growth=after.memory_usage.heap_total - before.memory_usage.heap_total,
            external_growth=after.memory_usage.external - before.memory_usage.external,
            resource_changes=resource_changes,
            performance_impact=performance_impact,
        ),
        analysis=analyze_differences(memory_delta, resource_changes, performance_impact),
        duration=(after.timestamp - before.timestamp).total_seconds() * 1000.0,
    )


def regression_confidence(comparison: ComparisonResult) -> float:
    confidence = 0.5
    if abs(comparison.differences.memory_delta) > 10:
        confidence += 0.2
    changes = comparison.differences.resource_changes.as_list()
    if all(c >= 0 for c in changes) or all(c <= 0 for c in changes):
        confidence += 0.2
    if comparison.duration < MIN_RELIABLE_INTERVAL_MS:
        confidence -= 0.1
    return round(min(1.0, max(0.0, confidence)), 4)


def regression_recommendations(regression_type: str, severity: str) -> list[str]:
    recommendations = []
    if regression_type in ("memory", "mixed"):
        recommendations.append("Review recent code changes for memory leaks")
        recommendations.append("Check for uncleaned event listeners, intervals, or subscriptions")
    if regression_type in ("resources", "mixed"):
        recommendations.append("Audit resource cleanup in component lifecycle methods")
        recommendations.append("Verify proper cleanup in useEffect hooks")
    if regression_type in ("performance", "mixed"):
        recommendations.append("Profile CPU usage to identify performance bottlenecks")
        recommendations.append("Consider optimizing expensive operations")
    if severity == "severe":
        recommendations.append("Consider rolling back recent changes until issue is resolved")
    return recommendations


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _no_resources() -> ResourceCounts:
    return ResourceCounts()


class MemorySnapshotEngine:
    """Captures snapshots and derives comparisons, regressions and fix scores.

    Args:
        sampler: Process sampler; a psutil-backed one is created by default.
        resource_counter: Returns the live resource counts stored in each
            snapshot.
        gc_settle_seconds: Pause after a forced collection before sampling.
        fix_settle_seconds: Pause between a fix test run and the "after"
            snapshot.
    """

    def __init__(
        self,
        sampler: MemorySampler | None = None,
        resource_counter: ResourceCounter | None = None,
        gc_settle_seconds: float = GC_SETTLE_DELAY_SECONDS,
        fix_settle_seconds: float = FIX_SETTLE_DELAY_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.sampler = sampler or MemorySampler()
        self.resource_counter = resource_counter or _no_resources
        self.gc_settle_seconds = gc_settle_seconds
        self.fix_settle_seconds = fix_settle_seconds
        self._clock = clock
        self._snapshots: dict[str, MemorySnapshot] = {}
        self._baselines: dict[str, MemorySnapshot] = {}

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def create_snapshot(
        self, snapshot_id: str, description: str = "", force_gc: bool = True
    ) -> MemorySnapshot:
        """Collect garbage, let it settle, then sample the process.

        Args:
            snapshot_id: Key under which the snapshot is stored. An existing
                snapshot with the same id is superseded.
            description: Free-form label.
            force_gc: Run a full collection before sampling.

        Returns:
            The stored snapshot.
        """
        if force_gc:
            gc.collect()
            await asyncio.sleep(self.gc_settle_seconds)

        snapshot = MemorySnapshot(
            id=snapshot_id,
            timestamp=self._clock(),
            description=description,
            memory_usage=self.sampler.memory_usage(),
            performance_metrics=self.sampler.performance(),
            resource_counts=self.resource_counter(),
            metadata=self.sampler.metadata(),
        )
        self.register_snapshot(snapshot)
        event_logger.info(
            "Snapshot created",
            extra={"event": "snapshot_created", "snapshot_id": snapshot_id},
        )
        return snapshot

    def register_snapshot(self, snapshot: MemorySnapshot) -> MemorySnapshot:
        """Store an already-built snapshot under its id."""
        if snapshot.id in self._snapshots:
            logger.debug("Superseding snapshot %s", snapshot.id)
        self._snapshots[snapshot.id] = snapshot
        return snapshot

    def get_snapshot(self, snapshot_id: str) -> MemorySnapshot | None:
        return self._snapshots.get(snapshot_id)

    def get_all_snapshots(self) -> list[MemorySnapshot]:
        return list(self._snapshots.values())

    def latest_snapshot(self) -> MemorySnapshot | None:
        if not self._snapshots:
            return None
        return max(self._snapshots.values(), key=lambda s: s.timestamp)

    def set_baseline(self, snapshot_id: str, name: str) -> None:
        """Register the snapshot *snapshot_id* as baseline *name*.

        Raises:
            SnapshotNotFoundError: If no such snapshot exists.
        """
        self._baselines[name] = self._require(snapshot_id)
        event_logger.info(
            "Baseline set",
            extra={"event": "baseline_set", "snapshot_id": snapshot_id, "baseline_id": name},
        )

    def get_baseline(self, name: str) -> MemorySnapshot | None:
        return self._baselines.get(name)

    def clear_old_snapshots(self, max_age: timedelta | None = None) -> int:
        """Drop snapshots older than *max_age* (24 hours by default).

        Baselines keep the snapshots they reference. Returns the number of
        snapshots dropped.
        """
        max_age = max_age if max_age is not None else timedelta(hours=SNAPSHOT_MAX_AGE_HOURS)
        cutoff = self._clock() - max_age
        stale = [sid for sid, snap in self._snapshots.items() if snap.timestamp < cutoff]
        for sid in stale:
            del self._snapshots[sid]
        if stale:
            logger.info("Cleared %d snapshots older than %s", len(stale), max_age)
        return len(stale)

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def compare_snapshots(self, before_id: str, after_id: str) -> ComparisonResult:
        """Compare two stored snapshots.

        Raises:
            SnapshotNotFoundError: If either id is unknown.
        """
        return compare(self._require(before_id), self._require(after_id))

    def detect_regression(
        self,
        baseline_id: str,
        current_id: str,
        thresholds: RegressionThresholds | None = None,
    ) -> RegressionResult:
        """Check *current_id* against *baseline_id* for regressions.

        *baseline_id* may name a stored snapshot or a baseline set with
        ``set_baseline``.

        Raises:
            SnapshotNotFoundError: If either id is unknown.
        """
        thresholds = thresholds or RegressionThresholds()
        baseline = self._require(baseline_id, allow_baseline=True)
        current = self._require(current_id)
        comparison = compare(baseline, current)
        differences = comparison.differences

        memory_regression = differences.memory_delta > thresholds.memory_growth_threshold
        resource_regression = any(
            change > thresholds.resource_growth_threshold
            for change in differences.resource_changes.as_list()
        )
        performance_regression = differences.performance_impact.cpu_usage_change > (
            baseline.performance_metrics.cpu_usage
            * thresholds.performance_degradation_threshold
            / 100
        )

        crossed = [
            name
            for name, hit in (
                ("memory", memory_regression),
                ("resources", resource_regression),
                ("performance", performance_regression),
            )
            if hit
        ]
        detected = bool(crossed)
        regression_type = "memory"
        severity: LeakSeverity = "none"
        if detected:
            regression_type = crossed[0] if len(crossed) == 1 else "mixed"
            limit = thresholds.memory_growth_threshold
            if differences.memory_delta > limit * 3:
                severity = "severe"
            elif differences.memory_delta > limit * 2:
                severity = "moderate"
            else:
                severity = "minor"

        if detected:
            event_logger.warning(
                "Regression detected",
                extra={
                    "event": "regression_detected",
                    "snapshot_id": current_id,
                    "baseline_id": baseline_id,
                    "severity": severity,
                    "memory_delta": differences.memory_delta,
                },
            )

        return RegressionResult(
            baseline_snapshot=baseline,
            current_snapshot=current,
            comparison=comparison,
            regression=RegressionInfo(
                detected=detected,
                severity=severity,
                type=regression_type,
                confidence=regression_confidence(comparison),
            ),
            thresholds=thresholds,
            recommendations=regression_recommendations(regression_type, severity) if detected else [],
        )

    async def measure_fix_effectiveness(
        self, fix: Fix, test_fn: TestFunction
    ) -> FixEffectivenessResult:
        """Snapshot around *test_fn* and score how much *fix* helped.

        A failing *test_fn* is logged and the measurement continues.
        """
        before = await self.create_snapshot(
            f"fix-{fix.id}-before", f"Before applying fix: {fix.description}"
        )
        try:
            result = test_fn()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("Test function for fix %s failed: %s", fix.id, e, exc_info=True)

        await asyncio.sleep(self.fix_settle_seconds)
        after = await self.create_snapshot(
            f"fix-{fix.id}-after", f"After applying fix: {fix.description}"
        )

        comparison = compare(before, after)
        differences = comparison.differences
        memory_reduction = -differences.memory_delta
        memory_reduction_percent = (
            memory_reduction / before.memory_usage.heap_used * 100
            if before.memory_usage.heap_used > 0
            else 0.0
        )
        resources_freed = sum(max(0, -c) for c in differences.resource_changes.as_list())
        impact = differences.performance_impact
        performance_improvement = (10.0 if impact.gc_duration_change < 0 else 0.0) + (
            10.0 if impact.cpu_usage_change < 0 else 0.0
        )
        score = effectiveness_score(
            memory_reduction, memory_reduction_percent, resources_freed, performance_improvement
        )

        issues = []
        if differences.memory_delta > 0:
            issues.append("Memory usage increased after applying fix")
        if comparison.analysis.regression_detected:
            issues.append("Regression detected after applying fix")
        if any(c > 0 for c in differences.resource_changes.as_list()):
            issues.append("Resource count increased after applying fix")

        return FixEffectivenessResult(
            fix_id=fix.id,
            fix_type=fix.type.value,
            before_snapshot=before,
            after_snapshot=after,
            comparison=comparison,
            effectiveness=Effectiveness(
                memory_reduction=memory_reduction,
                memory_reduction_percent=memory_reduction_percent,
                resources_freed=resources_freed,
                performance_improvement=performance_improvement,
                score=score,
            ),
            success=score > 50 and not comparison.analysis.regression_detected,
            issues=issues,
        )

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_snapshots(self) -> str:
        """Serialize snapshots and baselines as JSON."""
        data = {
            "snapshots": [
                [sid, snap.model_dump(mode="json", by_alias=True)]
                for sid, snap in self._snapshots.items()
            ],
            "baselines": [
                [name, snap.model_dump(mode="json", by_alias=True)]
                for name, snap in self._baselines.items()
            ],
            "exportedAt": self._clock().isoformat(),
        }
        return json.dumps(data, indent=2)

    def import_snapshots(self, data: str) -> None:
        """Load snapshots and baselines produced by ``export_snapshots``.

        Nothing is stored unless the whole payload is valid.

        Raises:
            SnapshotImportError: If the payload cannot be parsed.
        """
        try:
            parsed = json.loads(data)
            snapshots = {
                sid: MemorySnapshot.model_validate(raw)
                for sid, raw in parsed.get("snapshots") or []
            }
            baselines = {
                name: MemorySnapshot.model_validate(raw)
                for name, raw in parsed.get("baselines") or []
            }
        except (ValueError, TypeError, AttributeError, ValidationError) as e:
            raise SnapshotImportError(f"Failed to import snapshots: {e}") from e

        self._snapshots.update(snapshots)
        self._baselines.update(baselines)
        logger.info("Imported %d snapshots and %d baselines", len(snapshots), len(baselines))

    def close(self) -> None:
        self.sampler.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, snapshot_id: str, allow_baseline: bool = False) -> MemorySnapshot:
        snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None and allow_baseline:
            snapshot = self._baselines.get(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(snapshot_id)
        return snapshot
