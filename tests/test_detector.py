"""Tests for the MemoryLeakDetector facade."""

import asyncio
import time
from unittest.mock import MagicMock, patch

import pytest

from leakwatch import MemoryLeakDetector, ScanOptions
from leakwatch.analysis.patterns import LeakType, Severity
from leakwatch.config import LeakDetectionConfig, merge_config
from leakwatch.core.exceptions import RuntimeDetectionDisabledError
from leakwatch.detector import discover_files, glob_match
from leakwatch.snapshots import (
    MemorySampler,
    MemorySnapshotEngine,
    MemoryUsage,
    PerformanceMetrics,
    SnapshotMetadata,
)

CLOCK = """\
export function Clock() {
  useEffect(() => {
    const id = setInterval(tick, 1000);
  }, []);
  return <div />;
}
"""

BANNER = """\
export function Banner() {
  useEffect(() => {
    const t = setTimeout(hide, 5000);
  }, []);
  return <p />;
}
"""

CHAT = """\
export function Chat() {
  useEffect(() => {
    const ws = new WebSocket(url);
    return () => ws.close();
  }, []);
  return <ul />;
}
"""


def make_detector(overrides=None):
    config = LeakDetectionConfig()
    if overrides:
        config = merge_config(config, overrides)
    sampler = MagicMock(spec=MemorySampler)
    sampler.memory_usage.return_value = MemoryUsage(heap_used=64.0, rss=64.0)
    sampler.peak_mb.return_value = 80.0
    sampler.performance.return_value = PerformanceMetrics()
    sampler.metadata.return_value = SnapshotMetadata()
    engine = MemorySnapshotEngine(sampler=sampler, gc_settle_seconds=0, fix_settle_seconds=0)
    return MemoryLeakDetector(config, snapshot_engine=engine)


@pytest.fixture
def detector():
    detector = make_detector()
    yield detector
    detector.close()


@pytest.fixture
def project(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "Clock.tsx").write_text(CLOCK, encoding="utf-8")
    (src / "Banner.jsx").write_text(BANNER, encoding="utf-8")
    (src / "Chat.tsx").write_text(CHAT, encoding="utf-8")
    (src / "types.d.ts").write_text(CLOCK, encoding="utf-8")
    (src / "Clock.test.tsx").write_text(CLOCK, encoding="utf-8")
    (src / "README.md").write_text("setInterval(f, 1)", encoding="utf-8")
    vendor = tmp_path / "node_modules" / "lib"
    vendor.mkdir(parents=True)
    (vendor / "index.js").write_text(CLOCK, encoding="utf-8")
    return tmp_path


class TestDiscovery:
    @pytest.mark.parametrize(
        "path,pattern,expected",
        [
            ("src/App.tsx", "**/*.tsx", True),
            ("App.tsx", "**/*.tsx", True),
            ("node_modules/", "**/node_modules/**", True),
            ("src/node_modules/", "**/node_modules/**", True),
            ("src/App.ts", "**/*.tsx", False),
        ],
    )
    def test_glob_match(self, path, pattern, expected):
        assert glob_match(path, pattern) is expected

    def test_discover_files(self, project):
        config = LeakDetectionConfig()
        files = discover_files(
            project, config.detection.scan_patterns, config.detection.exclude_patterns, 100
        )

        assert [f.name for f in files] == ["Banner.jsx", "Chat.tsx", "Clock.tsx"]

    def test_max_files(self, project):
        files = discover_files(project, ["**/*.tsx", "**/*.jsx"], [], 2)
        assert len(files) == 2


class TestScanFile:
    @pytest.mark.asyncio
    async def test_reports_component_interval(self, detector, project):
        reports = await detector.scan_file(project / "src" / "Clock.tsx")

        assert len(reports) == 1
        assert reports[0].type is LeakType.UNCLEANED_INTERVAL
        assert reports[0].severity is Severity.CRITICAL
        assert reports[0].context.component_name == "Clock"

    @pytest.mark.asyncio
    async def test_inline_code(self, detector):
        assert await detector.scan_file("Chat.tsx", code=CHAT) == []

    @pytest.mark.asyncio
    async def test_results_are_cached_by_content(self, detector, project):
        path = project / "src" / "Clock.tsx"
        with patch.object(detector, "_analyze", wraps=detector._analyze) as analyze:
            first = await detector.scan_file(path)
            second = await detector.scan_file(path)
            assert analyze.call_count == 1
            assert first == second

            path.write_text(CHAT, encoding="utf-8")
            assert await detector.scan_file(path) == []
            assert analyze.call_count == 2

    @pytest.mark.asyncio
    async def test_update_config_clears_cache(self, detector, project):
        path = project / "src" / "Clock.tsx"
        assert len(await detector.scan_file(path)) == 1

        detector.update_config({"rules": {"uncleaned-interval": {"enabled": False}}})

        assert await detector.scan_file(path) == []

    @pytest.mark.asyncio
    async def test_large_file_is_skipped(self, project):
        detector = make_detector({"detection": {"maxFileSize": 10}})
        try:
            assert await detector.scan_file(project / "src" / "Clock.tsx") == []
        finally:
            detector.close()

    @pytest.mark.asyncio
    async def test_unsupported_extension(self, detector):
        assert await detector.scan_file("notes.txt", code="setInterval(f, 10);") == []

    @pytest.mark.asyncio
    async def test_missing_file(self, detector, tmp_path):
        assert await detector.scan_file(tmp_path / "missing.tsx") == []

    @pytest.mark.asyncio
    async def test_timeout_yields_no_reports(self):
        detector = make_detector({"detection": {"timeout": 0.05}})

        def slow(path, source):
            time.sleep(0.3)
            return []

        try:
            with patch.object(detector, "_analyze", side_effect=slow):
                assert await detector.scan_file("Clock.tsx", code=CLOCK) == []
        finally:
            detector.close()

    @pytest.mark.asyncio
    async def test_thresholds_and_overrides(self):
        detector = make_detector(
            {
                "detection": {"severityThreshold": "high"},
                "rules": {"uncleaned-timeout": {"severity": "critical"}},
            }
        )
        try:
            reports = await detector.scan_file("Banner.jsx", code=BANNER)
            assert [r.severity for r in reports] == [Severity.CRITICAL]
        finally:
            detector.close()

    @pytest.mark.asyncio
    async def test_static_analysis_disabled_keeps_timers(self):
        detector = make_detector({"detection": {"enableStaticAnalysis": False}})
        code = CLOCK.replace("return <div />;", "const ws = new WebSocket(url);\n  return <div />;")
        try:
            reports = await detector.scan_file("Clock.tsx", code=code)
            assert [r.type for r in reports] == [LeakType.UNCLEANED_INTERVAL]
        finally:
            detector.close()


class TestScanProject:
    @pytest.mark.asyncio
    async def test_scan_project(self, detector, project):
        result = await detector.scan_project(ScanOptions(root=project))

        assert result.files_scanned == 3
        assert result.total_leaks == 2
        assert [r.severity for r in result.reports] == [Severity.CRITICAL, Severity.MEDIUM]
        assert sorted(result.files) == sorted(
            [str(project / "src" / "Clock.tsx"), str(project / "src" / "Banner.jsx")]
        )
        assert result.leaks_by_type == {"uncleaned-interval": 1, "uncleaned-timeout": 1}
        assert result.summary.critical_count == 1
        assert result.summary.medium_count == 1

    @pytest.mark.asyncio
    async def test_severity_and_type_filters(self, detector, project):
        by_severity = await detector.scan_project(
            ScanOptions(root=project, severity=[Severity.MEDIUM], parallel=False)
        )
        by_type = await detector.scan_project(
            ScanOptions(root=project, types=[LeakType.UNCLEANED_INTERVAL])
        )

        assert [r.type for r in by_severity.reports] == [LeakType.UNCLEANED_TIMEOUT]
        assert [r.type for r in by_type.reports] == [LeakType.UNCLEANED_INTERVAL]

    @pytest.mark.asyncio
    async def test_custom_patterns(self, detector, project):
        result = await detector.scan_project(
            ScanOptions(root=project, include_patterns=["**/*.js"], exclude_patterns=["**/dist/**"])
        )

        assert result.files_scanned == 1
        assert result.files == [str(project / "node_modules" / "lib" / "index.js")]


class TestRuntime:
    @pytest.mark.asyncio
    async def test_disabled(self):
        detector = make_detector({"detection": {"enableRuntimeDetection": False}})
        try:
            with pytest.raises(RuntimeDetectionDisabledError):
                await detector.analyze_runtime()
        finally:
            detector.close()

    @pytest.mark.asyncio
    async def test_no_concerns(self, detector):
        report = await detector.analyze_runtime()

        assert report.memory_usage.current == 64.0
        assert report.memory_usage.peak == 80.0
        assert report.memory_usage.trend == "stable"
        assert report.suspicious_patterns == []
        assert report.recommendations == ["No immediate memory leak concerns detected."]

    @pytest.mark.asyncio
    async def test_long_running_timer(self):
        detector = make_detector({"monitoring": {"longRunningThresholdMinutes": 0.0001}})
        try:
            detector.timer_detector.track_timer("poller", "interval", {"component": "Clock"})
            await asyncio.sleep(0.05)

            report = await detector.analyze_runtime()

            assert report.active_resources.intervals == 1
            assert len(report.suspicious_patterns) == 1
            leak = report.suspicious_patterns[0]
            assert leak.id.startswith("runtime-timer-")
            assert leak.metadata.detection_method == "runtime"
            assert leak.file == "runtime"
            assert leak.context.function_name == "Clock"
            assert any("suspicious patterns" in r for r in report.recommendations)
        finally:
            detector.close()

    @pytest.mark.asyncio
    async def test_snapshot_counts_tracked_timers(self):
        config = LeakDetectionConfig()
        detector = MemoryLeakDetector(config)
        detector.snapshot_engine.sampler.close()
        sampler = MagicMock(spec=MemorySampler)
        sampler.memory_usage.return_value = MemoryUsage(heap_used=10.0)
        sampler.performance.return_value = PerformanceMetrics()
        sampler.metadata.return_value = SnapshotMetadata()
        detector.snapshot_engine.sampler = sampler
        detector.snapshot_engine.gc_settle_seconds = 0
        try:
            detector.timer_detector.track_timer("t1", "timeout")
            snap = await detector.create_snapshot("s1")
            assert snap.resource_counts.timeouts == 1
        finally:
            detector.close()

    @pytest.mark.asyncio
    async def test_memory_trend(self, detector):
        detector.snapshot_engine.sampler.memory_usage.side_effect = [
            MemoryUsage(heap_used=50.0),
            MemoryUsage(heap_used=60.0),
            MemoryUsage(heap_used=60.0),
        ]
        await detector.create_snapshot("a")
        await asyncio.sleep(0.01)
        await detector.create_snapshot("b")

        report = await detector.analyze_runtime()
        assert report.memory_usage.trend == "increasing"

    def test_cleanup_cancels_tracked_timers(self, detector):
        handle = MagicMock()
        detector.timer_detector.track_timer(handle, "timeout")

        detector.cleanup()

        handle.cancel.assert_called_once()
        assert detector.resource_counts().timeouts == 0


class TestFixes:
    @pytest.mark.asyncio
    async def test_generate_and_validate(self, detector, project):
        result = await detector.scan_project(ScanOptions(root=project))
        fixes = await detector.generate_fixes(result.reports)

        assert len(fixes) == 2
        validation = await detector.validate_fixes(fixes)

        assert validation.valid is True
        assert validation.summary.successful_fixes == 2
        assert any(w.startswith("Dry run") for w in validation.warnings)

    @pytest.mark.asyncio
    async def test_batch_limit(self, project):
        detector = make_detector({"fixes": {"maxBatchSize": 1}})
        try:
            result = await detector.scan_project(ScanOptions(root=project))
            assert len(await detector.generate_fixes(result.reports)) == 1
        finally:
            detector.close()

    @pytest.mark.asyncio
    async def test_validation_buckets(self, detector, project):
        result = await detector.scan_project(ScanOptions(root=project))
        good, stale = await detector.generate_fixes(result.reports)

        missing = good.model_copy(update={"id": "missing", "file": str(project / "gone.tsx")})
        broken = good.model_copy(update={"id": "broken", "fixed_code": "clearInterval(__ID__);"})
        (project / "src" / "Banner.jsx").write_text("// rewritten\n", encoding="utf-8")

        validation = await detector.validate_fixes([good, stale, missing, broken])

        assert validation.valid is False
        assert [f.id for f in validation.fixes.applied] == [good.id]
        codes = {issue.fix_id: issue.code for issue in validation.errors}
        assert codes == {
            stale.id: "VALIDATION_ERROR",
            "missing": "FILE_NOT_FOUND",
            "broken": "INVALID_SYNTAX",
        }
        assert validation.summary.failed_fixes == 3

    @pytest.mark.asyncio
    async def test_manual_review_fixes_skipped_without_review(self, project):
        detector = make_detector({"fixes": {"requireReviewForHighRisk": False}})
        try:
            fix = (await detector.generate_fixes(
                (await detector.scan_project(ScanOptions(root=project))).reports
            ))[0]
            manual = fix.model_copy(update={"requires_manual_review": True})

            validation = await detector.validate_fixes([manual])

            assert validation.fixes.skipped == [manual]
            assert validation.valid is True
        finally:
            detector.close()
