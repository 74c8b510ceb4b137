"""Tests for memory snapshots, comparisons and regression detection."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from leakwatch.analysis.patterns import LeakType
from leakwatch.core.exceptions import SnapshotImportError, SnapshotNotFoundError
from leakwatch.fixes import Fix, FixMetadata
from leakwatch.snapshots import (
    MemorySampler,
    MemorySnapshot,
    MemorySnapshotEngine,
    MemoryUsage,
    PerformanceMetrics,
    RegressionThresholds,
    ResourceCounts,
    SnapshotMetadata,
    compare,
    effectiveness_score,
    leak_severity,
)

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class SteppingClock:
    """Returns T0, then advances by *step* on every call."""

    def __init__(self, step=timedelta(seconds=2)):
        self.current = T0
        self.step = step

    def __call__(self):
        value = self.current
        self.current += self.step
        return value


def snapshot(snapshot_id, heap_used, at=T0, resources=None, cpu=0.0):
    return MemorySnapshot(
        id=snapshot_id,
        timestamp=at,
        memory_usage=MemoryUsage(heap_used=heap_used, rss=heap_used),
        performance_metrics=PerformanceMetrics(cpu_usage=cpu),
        resource_counts=resources or ResourceCounts(),
    )


@pytest.fixture
def sampler():
    mock = MagicMock(spec=MemorySampler)
    mock.memory_usage.return_value = MemoryUsage(heap_used=50.0, rss=50.0)
    mock.performance.return_value = PerformanceMetrics()
    mock.metadata.return_value = SnapshotMetadata(pid=1234)
    return mock


@pytest.fixture
def engine(sampler):
    return MemorySnapshotEngine(
        sampler=sampler,
        gc_settle_seconds=0,
        fix_settle_seconds=0,
        clock=SteppingClock(),
    )


class TestCompare:
    def test_growth_is_moderate_leak(self):
        before = snapshot("a", 50.0)
        after = snapshot("b", 70.0, at=T0 + timedelta(seconds=2))

        result = compare(before, after)

        assert result.memory_delta == pytest.approx(20.0)
        assert result.differences.memory_delta_percent == pytest.approx(40.0)
        assert result.duration == pytest.approx(2000.0)
        assert result.analysis.has_memory_leak is True
        assert result.analysis.leak_severity == "moderate"
        assert result.analysis.regression_detected is True

    def test_antisymmetric(self):
        a = snapshot("a", 50.0, resources=ResourceCounts(intervals=2))
        b = snapshot("b", 65.0, at=T0 + timedelta(seconds=5), resources=ResourceCounts(intervals=5))

        forward, backward = compare(a, b), compare(b, a)

        assert forward.memory_delta == pytest.approx(-backward.memory_delta)
        assert forward.differences.resource_changes.intervals == 3
        assert backward.differences.resource_changes.intervals == -3
        assert forward.duration == pytest.approx(-backward.duration)

    def test_identical_snapshots(self):
        a = snapshot("a", 50.0)
        result = compare(a, a)

        assert result.memory_delta == 0
        assert result.analysis.leak_severity == "none"
        assert result.analysis.regression_detected is False
        assert result.analysis.recommendations == []

    def test_zero_baseline_has_zero_percent(self):
        result = compare(snapshot("a", 0.0), snapshot("b", 10.0))
        assert result.differences.memory_delta_percent == 0.0

    @pytest.mark.parametrize(
        "delta,expected",
        [(0, "none"), (5, "none"), (6, "minor"), (20, "moderate"), (50, "moderate"), (51, "severe")],
    )
    def test_leak_severity(self, delta, expected):
        assert leak_severity(delta) == expected


class TestEffectivenessScore:
    def test_caps(self):
        assert effectiveness_score(100, 100, 100, 100) == 100.0

    def test_components(self):
        assert effectiveness_score(10, 15, 2, 5) == pytest.approx(20 + 15 + 8 + 5)

    def test_adverse_inputs_score_zero(self):
        assert effectiveness_score(-30, -10, -3, -5) == 0.0

    def test_nan_contributes_nothing(self):
        assert effectiveness_score(float("nan"), float("nan"), 1, 0) == pytest.approx(4.0)


class TestEngine:
    @pytest.mark.asyncio
    async def test_create_snapshot_uses_sampler_and_counter(self, sampler):
        counter = MagicMock(return_value=ResourceCounts(intervals=2))
        engine = MemorySnapshotEngine(
            sampler=sampler, resource_counter=counter, gc_settle_seconds=0, clock=SteppingClock()
        )

        snap = await engine.create_snapshot("s1", "first")

        assert snap.memory_usage.heap_used == 50.0
        assert snap.resource_counts.intervals == 2
        assert snap.metadata.pid == 1234
        assert engine.get_snapshot("s1") is snap
        assert engine.latest_snapshot() is snap

    @pytest.mark.asyncio
    async def test_recreated_id_supersedes(self, engine):
        await engine.create_snapshot("s1")
        second = await engine.create_snapshot("s1")

        assert engine.get_all_snapshots() == [second]

    def test_unknown_snapshot_raises(self, engine):
        engine.register_snapshot(snapshot("a", 50.0))

        with pytest.raises(SnapshotNotFoundError) as exc_info:
            engine.compare_snapshots("a", "missing")
        assert exc_info.value.snapshot_id == "missing"

        with pytest.raises(SnapshotNotFoundError):
            engine.set_baseline("missing", "release")

    def test_clear_old_snapshots(self, engine):
        engine.register_snapshot(snapshot("old", 50.0, at=T0 - timedelta(days=2)))
        engine.register_snapshot(snapshot("recent", 50.0, at=T0 - timedelta(hours=1)))

        assert engine.clear_old_snapshots() == 1
        assert [s.id for s in engine.get_all_snapshots()] == ["recent"]
        assert engine.clear_old_snapshots(timedelta(minutes=30)) == 1

    def test_baseline_survives_clear(self, engine):
        engine.register_snapshot(snapshot("base", 50.0, at=T0 - timedelta(days=2)))
        engine.set_baseline("base", "release-1")
        engine.clear_old_snapshots()

        assert engine.get_snapshot("base") is None
        assert engine.get_baseline("release-1").id == "base"


class TestRegression:
    @pytest.fixture
    def engine(self, engine):
        engine.register_snapshot(snapshot("base", 50.0))
        return engine

    def test_memory_regression_by_baseline_name(self, engine):
        engine.set_baseline("base", "release-1")
        engine.register_snapshot(snapshot("now", 70.0, at=T0 + timedelta(seconds=2)))

        result = engine.detect_regression("release-1", "now")

        assert result.regression.detected is True
        assert result.regression.type == "memory"
        assert result.regression.severity == "minor"
        assert result.regression.confidence == pytest.approx(0.9)
        assert "Review recent code changes for memory leaks" in result.recommendations

    def test_mixed_severe_regression(self, engine):
        engine.register_snapshot(
            snapshot(
                "now",
                90.0,
                at=T0 + timedelta(seconds=2),
                resources=ResourceCounts(intervals=10),
            )
        )

        result = engine.detect_regression("base", "now")

        assert result.regression.type == "mixed"
        assert result.regression.severity == "severe"
        assert "Consider rolling back recent changes until issue is resolved" in result.recommendations

    def test_no_regression(self, engine):
        engine.register_snapshot(snapshot("now", 52.0, at=T0 + timedelta(seconds=2)))

        result = engine.detect_regression("base", "now")

        assert result.regression.detected is False
        assert result.regression.severity == "none"
        assert result.recommendations == []

    def test_custom_thresholds(self, engine):
        engine.register_snapshot(snapshot("now", 52.0, at=T0 + timedelta(seconds=2)))

        result = engine.detect_regression(
            "base", "now", RegressionThresholds(memory_growth_threshold=1.0)
        )

        assert result.regression.detected is True
        assert result.thresholds.memory_growth_threshold == 1.0

    def test_short_interval_lowers_confidence(self, engine):
        engine.register_snapshot(snapshot("now", 70.0, at=T0 + timedelta(milliseconds=100)))

        result = engine.detect_regression("base", "now")
        assert result.regression.confidence == pytest.approx(0.8)


class TestFixEffectiveness:
    @pytest.fixture
    def fix(self):
        return Fix(
            id="fix-1",
            leak_id="leak-1",
            type=LeakType.UNCLEANED_INTERVAL,
            file="Clock.tsx",
            line=2,
            column=14,
            original_code="a",
            fixed_code="b",
            description="Release the interval",
            confidence=0.9,
            metadata=FixMetadata(generated_at=T0),
        )

    @pytest.mark.asyncio
    async def test_successful_fix(self, sampler, fix):
        sampler.memory_usage.side_effect = [
            MemoryUsage(heap_used=100.0),
            MemoryUsage(heap_used=80.0),
        ]
        counter = MagicMock(side_effect=[ResourceCounts(intervals=3), ResourceCounts()])
        engine = MemorySnapshotEngine(
            sampler=sampler,
            resource_counter=counter,
            gc_settle_seconds=0,
            fix_settle_seconds=0,
            clock=SteppingClock(),
        )
        test_fn = MagicMock()

        result = await engine.measure_fix_effectiveness(fix, test_fn)

        test_fn.assert_called_once()
        assert result.before_snapshot.id == "fix-fix-1-before"
        assert result.after_snapshot.id == "fix-fix-1-after"
        assert result.effectiveness.memory_reduction == pytest.approx(20.0)
        assert result.effectiveness.resources_freed == 3
        assert result.effectiveness.score == pytest.approx(40 + 20 + 12)
        assert result.success is True
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_failing_test_function_is_tolerated(self, engine, fix):
        async def broken():
            raise RuntimeError("boom")

        result = await engine.measure_fix_effectiveness(fix, broken)

        assert result.success is False
        assert result.effectiveness.score == 0.0


class TestExportImport:
    def test_round_trip(self, engine):
        engine.register_snapshot(snapshot("a", 50.0))
        engine.set_baseline("a", "release-1")

        exported = engine.export_snapshots()
        payload = json.loads(exported)
        assert "exportedAt" in payload
        assert payload["snapshots"][0][1]["memoryUsage"]["heapUsed"] == 50.0

        restored = MemorySnapshotEngine(sampler=MagicMock(spec=MemorySampler))
        restored.import_snapshots(exported)

        assert restored.get_snapshot("a") == engine.get_snapshot("a")
        assert restored.get_baseline("release-1").id == "a"

    @pytest.mark.parametrize("data", ["not json", "[]", '{"snapshots": [["a", {"id": "a"}]]}'])
    def test_bad_import_leaves_state_untouched(self, engine, data):
        engine.register_snapshot(snapshot("keep", 50.0))

        with pytest.raises(SnapshotImportError, match="Failed to import snapshots"):
            engine.import_snapshots(data)
        assert [s.id for s in engine.get_all_snapshots()] == ["keep"]
