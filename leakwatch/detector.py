"""High-level leak detector combining static analysis, runtime checks,
fix generation and memory snapshots.

``MemoryLeakDetector`` is the entry point used by command-line tools,
lint and build integrations. Every collaborator is injected, so several
detectors with independent configuration and caches can coexist::

    detector = MemoryLeakDetector(load_config())
    report = await detector.scan_project(ScanOptions(root="src"))
    for leak in report.reports:
        print(leak.file, leak.line, leak.type.value, leak.severity.value)
"""

from __future__ import annotations

import asyncio
import fnmatch
import hashlib
import logging
import os
import time
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .analysis.ast_engine import ASTEngine
from .analysis.confidence import ConfidenceModel
from .analysis.matcher import LeakMatcher
from .analysis.models import (
    ActiveResources,
    LeakContext,
    LeakReport,
    MemoryUsageSummary,
    ProjectLeakReport,
    ProjectSummary,
    ReportMetadata,
    RuntimeLeakReport,
)
from .analysis.patterns import (
    DEFAULT_CATALOG,
    LeakCategory,
    LeakType,
    PatternCatalog,
    Severity,
    severity_at_least,
)
from .analysis.scope import ScopeExtractor
from .analysis.timers import TIMER_CATEGORIES, TimerKind, TimerLeakDetector, TrackedTimer
from .config import LeakDetectionConfig, get_profile, merge_config
from .constants import (
    DEFAULT_MAX_FILES,
    MAX_ACTIVE_INTERVALS,
    MAX_ACTIVE_TIMEOUTS,
    MEMORY_TREND_TOLERANCE_MB,
    RUNTIME_TIMER_CONFIDENCE,
    RUNTIME_TIMER_RULE_ID,
)
from .core.cache import ScanCache
from .core.exceptions import (
    AnalysisError,
    AnalysisTimeoutError,
    FixGenerationError,
    FixValidationError,
    RuntimeDetectionDisabledError,
)
from .fixes.generator import FixGenerator
from .fixes.models import (
    Fix,
    ValidationBuckets,
    ValidationIssue,
    ValidationResult,
    ValidationSummary,
)
from .logging_config import get_event_logger
from .snapshots.engine import MemorySnapshotEngine, TestFunction
from .snapshots.models import (
    ComparisonResult,
    FixEffectivenessResult,
    MemorySnapshot,
    RegressionResult,
    RegressionThresholds,
    ResourceCounts,
)

logger = logging.getLogger(__name__)
event_logger = get_event_logger()

_TIMER_TYPES = {
    TimerKind.INTERVAL: (LeakType.UNCLEANED_INTERVAL, LeakCategory.INTERVAL),
    TimerKind.TIMEOUT: (LeakType.UNCLEANED_TIMEOUT, LeakCategory.TIMEOUT),
}


class ScanOptions(BaseModel):
    """Options for ``MemoryLeakDetector.scan_project``.

    Unset patterns fall back to the detector configuration; unset
    ``severity`` and ``types`` keep every report.
    """

    root: Path | None = None
    include_patterns: list[str] | None = None
    exclude_patterns: list[str] | None = None
    severity: list[Severity] | None = None
    types: list[LeakType] | None = None
    max_files: int = Field(default=DEFAULT_MAX_FILES, gt=0)
    parallel: bool = True


def content_hash(source: str) -> str:
    return hashlib.sha256(source.encode("utf-8")).hexdigest()


def glob_match(relative_path: str, pattern: str) -> bool:
    """Match a POSIX relative path; a leading ``**/`` also matches the root."""
    if fnmatch.fnmatch(relative_path, pattern):
        return True
    return pattern.startswith("**/") and fnmatch.fnmatch(relative_path, pattern[3:])


def discover_files(
    root: Path,
    include_patterns: Iterable[str],
    exclude_patterns: Iterable[str],
    max_files: int,
) -> list[Path]:
    """Walk *root* in sorted order and collect files to scan."""
    include = list(include_patterns)
    exclude = list(exclude_patterns)
    files: list[Path] = []

    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        rel_dir = current.relative_to(root).as_posix()
        prefix = "" if rel_dir == "." else f"{rel_dir}/"
        dirnames[:] = sorted(
            d for d in dirnames if not any(glob_match(f"{prefix}{d}/", p) for p in exclude)
        )
        for name in sorted(filenames):
            rel = f"{prefix}{name}"
            if any(glob_match(rel, p) for p in exclude):
                continue
            if any(glob_match(rel, p) for p in include):
                files.append(current / name)
                if len(files) >= max_files:
                    logger.info("Reached max_files=%d, stopping discovery", max_files)
                    return files
    return files


class MemoryLeakDetector:
    """Facade over the static, runtime, fix and snapshot engines.

    Args:
        config: Detector configuration; the ``LEAKWATCH_ENV`` profile when
            omitted.
        cache: Scan cache shared across scans of this detector.
        snapshot_engine: Snapshot engine; one counting the tracked timers
            as resources is created when omitted.
        catalog: Pattern catalog for static analysis.
    """

    def __init__(
        self,
        config: LeakDetectionConfig | None = None,
        cache: ScanCache | None = None,
        snapshot_engine: MemorySnapshotEngine | None = None,
        catalog: PatternCatalog | None = None,
    ) -> None:
        self.config = config or get_profile()
        self.cache = cache or ScanCache()
        self.catalog = catalog or DEFAULT_CATALOG

        engine = ASTEngine()
        confidence_model = ConfidenceModel()
        static_categories = frozenset(
            p.category for p in self.catalog.static_patterns() if p.category not in TIMER_CATEGORIES
        )
        self.static_matcher = LeakMatcher(
            catalog=self.catalog,
            categories=static_categories,
            confidence_model=confidence_model,
            engine=engine,
        )
        self.timer_detector = TimerLeakDetector(
            catalog=self.catalog, confidence_model=confidence_model, engine=engine
        )
        self.fix_generator = FixGenerator(self.catalog)
        self.snapshot_engine = snapshot_engine or MemorySnapshotEngine(
            resource_counter=self.resource_counts,
            gc_settle_seconds=self.config.monitoring.gc_settle_delay,
            fix_settle_seconds=self.config.monitoring.fix_settle_delay,
        )
        self._engine = engine

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(self) -> LeakDetectionConfig:
        return self.config.model_copy(deep=True)

    def update_config(self, overrides: dict[str, Any]) -> LeakDetectionConfig:
        """Merge *overrides* into the configuration and drop cached results.

        Raises:
            ConfigurationError: If the merged configuration is invalid.
        """
        self.config = merge_config(self.config, overrides)
        self.cache.clear()
        return self.config

    # ------------------------------------------------------------------
    # Static scanning
    # ------------------------------------------------------------------

    async def scan_file(self, file_path: str | Path, code: str | None = None) -> list[LeakReport]:
        """Scan one file and return its filtered reports.

        Never raises: oversized files, unreadable files, unsupported
        languages, analysis errors and timeouts are logged and yield ``[]``.

        Args:
            file_path: Path of the file; also selects the grammar.
            code: File content. Read from disk when omitted.
        """
        path = str(file_path)
        start = time.perf_counter()
        detection = self.config.detection
        try:
            if code is None:
                size = (await asyncio.to_thread(os.stat, path)).st_size
            else:
                size = len(code.encode("utf-8"))
            if size > detection.max_file_size:
                logger.warning("Skipping large file: %s (%d bytes)", path, size)
                return []

            if code is None:
                code = await asyncio.to_thread(Path(path).read_text, encoding="utf-8")
            digest = content_hash(code)
            cached = self.cache.lookup(path, digest)
            if cached is not None:
                return list(cached)

            try:
                reports = await asyncio.wait_for(
                    asyncio.to_thread(self._analyze, path, code), timeout=detection.timeout
                )
            except asyncio.TimeoutError:
                raise AnalysisTimeoutError(
                    f"Analysis timed out after {detection.timeout}s", path, detection.timeout
                ) from None

            reports = self._filter(reports)
            self.cache.store(path, digest, reports)
            event_logger.info(
                "File scanned",
                extra={
                    "event": "file_scanned",
                    "file": path,
                    "leak_count": len(reports),
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                },
            )
            return list(reports)
        except AnalysisTimeoutError as e:
            logger.warning("Timed out scanning %s: %s", path, e)
            event_logger.warning(
                "File scan timed out",
                extra={"event": "scan_timeout", "file": path, "error": str(e)},
            )
            return []
        except AnalysisError as e:
            logger.error("Error analyzing %s: %s", path, e)
            return []
        except Exception as e:
            logger.error("Error scanning file %s: %s", path, e, exc_info=True)
            return []

    def _analyze(self, path: str, source: str) -> list[LeakReport]:
        matchers: list[LeakMatcher] = [self.timer_detector]
        if self.config.detection.enable_static_analysis:
            matchers.insert(0, self.static_matcher)

        tokens = frozenset().union(
            *(self.catalog.acquisition_tokens(m.categories) for m in matchers)
        )
        if not ScopeExtractor.prefilter(source, tokens):
            return []
        if not ScopeExtractor.has_balanced_braces(source):
            logger.debug("Unbalanced braces in %s, relying on error-tolerant parse", path)

        try:
            ast = self._engine.parse(source, self._engine.language_for_path(path))
        except ValueError as e:
            raise AnalysisError(str(e), path) from e

        reports: list[LeakReport] = []
        for matcher in matchers:
            reports.extend(matcher.analyze(ast, path))
        return reports

    def _filter(self, reports: Iterable[LeakReport]) -> list[LeakReport]:
        """Apply rules, then the confidence and severity thresholds."""
        detection = self.config.detection
        kept = []
        for report in reports:
            rule = self.config.rule_for(report.type)
            if not rule.enabled:
                continue
            if rule.severity is not None and rule.severity is not report.severity:
                report = report.model_copy(update={"severity": rule.severity})
            if report.confidence < detection.confidence_threshold:
                continue
            if not severity_at_least(report.severity, detection.severity_threshold):
                continue
            kept.append(report)
        return kept

    async def scan_project(self, options: ScanOptions | None = None) -> ProjectLeakReport:
        """Scan every matching file under the project root.

        Individual file failures never abort the scan.
        """
        options = options or ScanOptions()
        detection = self.config.detection
        root = Path(options.root) if options.root is not None else Path.cwd()
        start = time.perf_counter()

        files = await asyncio.to_thread(
            discover_files,
            root,
            options.include_patterns or detection.scan_patterns,
            options.exclude_patterns or detection.exclude_patterns,
            options.max_files,
        )
        logger.info("Found %d files to scan under %s", len(files), root)

        if options.parallel:
            results = await asyncio.gather(*(self.scan_file(f) for f in files))
        else:
            results = [await self.scan_file(f) for f in files]

        severities = set(options.severity) if options.severity else None
        types = set(options.types) if options.types else None
        reports: list[LeakReport] = []
        files_with_leaks: list[str] = []
        for file_path, file_reports in zip(files, results):
            kept = [
                r
                for r in file_reports
                if (severities is None or r.severity in severities)
                and (types is None or r.type in types)
            ]
            if kept:
                files_with_leaks.append(str(file_path))
                reports.extend(kept)

        project_report = self._project_report(reports, files_with_leaks, len(files))
        event_logger.info(
            "Project scanned",
            extra={
                "event": "project_scanned",
                "files_scanned": len(files),
                "leak_count": project_report.total_leaks,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return project_report

    @staticmethod
    def sort_reports(reports: Iterable[LeakReport]) -> list[LeakReport]:
        """Order by severity, then confidence, both descending."""
        return sorted(reports, key=lambda r: (r.severity.rank, r.confidence), reverse=True)

    def _project_report(
        self, reports: list[LeakReport], files: list[str], files_scanned: int
    ) -> ProjectLeakReport:
        by_type: dict[str, int] = {}
        by_severity = {severity.value: 0 for severity in Severity}
        fixable = 0
        for report in reports:
            by_type[report.type.value] = by_type.get(report.type.value, 0) + 1
            by_severity[report.severity.value] += 1
            if report.suggested_fix:
                fixable += 1

        return ProjectLeakReport(
            total_leaks=len(reports),
            leaks_by_type=by_type,
            leaks_by_severity=by_severity,
            files=files,
            files_scanned=files_scanned,
            reports=self.sort_reports(reports),
            summary=ProjectSummary(
                critical_count=by_severity[Severity.CRITICAL.value],
                high_count=by_severity[Severity.HIGH.value],
                medium_count=by_severity[Severity.MEDIUM.value],
                low_count=by_severity[Severity.LOW.value],
                fixable_count=fixable,
            ),
            generated_at=datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------
    # Runtime analysis
    # ------------------------------------------------------------------

    def resource_counts(self) -> ResourceCounts:
        """Live resources known to this process (tracked timers)."""
        counts = self.timer_detector.counts()
        return ResourceCounts(
            intervals=counts[TimerKind.INTERVAL.value],
            timeouts=counts[TimerKind.TIMEOUT.value],
        )

    async def analyze_runtime(self) -> RuntimeLeakReport:
        """Inspect process memory and tracked timers.

        Raises:
            RuntimeDetectionDisabledError: If runtime detection is disabled.
        """
        if not self.config.detection.enable_runtime_detection:
            raise RuntimeDetectionDisabledError("Runtime detection is disabled")

        memory_usage = await asyncio.to_thread(self._memory_summary)
        counts = self.timer_detector.counts()
        latest = self.snapshot_engine.latest_snapshot()
        tracked = latest.resource_counts if latest is not None else ResourceCounts()
        active = ActiveResources(
            event_listeners=tracked.event_listeners,
            intervals=counts[TimerKind.INTERVAL.value],
            timeouts=counts[TimerKind.TIMEOUT.value],
            subscriptions=tracked.subscriptions,
            connections=tracked.connections,
        )

        detected_at = datetime.now(timezone.utc)
        suspicious = [
            self._timer_report(timer, detected_at)
            for timer in self.timer_detector.detect_long_running(
                self.config.monitoring.long_running_threshold_minutes
            )
            if self.config.is_enabled(_TIMER_TYPES[timer.kind][0])
        ]

        return RuntimeLeakReport(
            memory_usage=memory_usage,
            active_resources=active,
            suspicious_patterns=suspicious,
            recommendations=self._runtime_recommendations(memory_usage, active, suspicious),
            timestamp=detected_at,
        )

    def _memory_summary(self) -> MemoryUsageSummary:
        sampler = self.snapshot_engine.sampler
        current = sampler.memory_usage().heap_used
        return MemoryUsageSummary(
            current=current,
            peak=max(current, sampler.peak_mb()),
            trend=self._memory_trend(),
        )

    def _memory_trend(self) -> str:
        snapshots = sorted(self.snapshot_engine.get_all_snapshots(), key=lambda s: s.timestamp)
        if len(snapshots) < 2:
            return "stable"
        delta = snapshots[-1].memory_usage.heap_used - snapshots[-2].memory_usage.heap_used
        if delta > MEMORY_TREND_TOLERANCE_MB:
            return "increasing"
        if delta < -MEMORY_TREND_TOLERANCE_MB:
            return "decreasing"
        return "stable"

    def _timer_report(self, timer: TrackedTimer, detected_at: datetime) -> LeakReport:
        leak_type, category = _TIMER_TYPES[timer.kind]
        kind = timer.kind.value
        age = timer.age_seconds(self.timer_detector.now())
        owner = timer.context.get("component") or timer.context.get("callback") or "unknown"
        handle_key = hashlib.sha1(repr(timer.handle).encode("utf-8")).hexdigest()[:8]
        return LeakReport(
            id=f"runtime-timer-{handle_key}",
            type=leak_type,
            severity=Severity.HIGH,
            confidence=RUNTIME_TIMER_CONFIDENCE,
            file="runtime",
            line=0,
            column=0,
            description=f"Long-running {kind} detected ({round(age)}s)",
            suggested_fix=f"Clear the {kind} when no longer needed",
            code_snippet=f"{kind} handle: {timer.handle!r}",
            requires_manual_review=True,
            context=LeakContext(variable_name=f"timer_{handle_key}", function_name=str(owner)),
            metadata=ReportMetadata(
                detected_at=detected_at,
                detection_method="runtime",
                rule_id=RUNTIME_TIMER_RULE_ID,
                category=category,
            ),
        )

    def _runtime_recommendations(
        self,
        memory_usage: MemoryUsageSummary,
        active: ActiveResources,
        suspicious: list[LeakReport],
    ) -> list[str]:
        recommendations = []
        if memory_usage.current > self.config.monitoring.memory_threshold:
            recommendations.append(
                f"Memory usage is high ({memory_usage.current:.1f}MB). "
                "Consider investigating memory leaks."
            )
        if active.intervals > MAX_ACTIVE_INTERVALS:
            recommendations.append(
                f"High number of active intervals ({active.intervals}). "
                "Ensure they are properly cleaned up."
            )
        if active.timeouts > MAX_ACTIVE_TIMEOUTS:
            recommendations.append(
                f"High number of active timeouts ({active.timeouts}). "
                "Consider if all are necessary."
            )
        if suspicious:
            recommendations.append(
                f"Found {len(suspicious)} suspicious patterns that may indicate memory leaks."
            )
        if not recommendations:
            recommendations.append("No immediate memory leak concerns detected.")
        return recommendations

    # ------------------------------------------------------------------
    # Fixes
    # ------------------------------------------------------------------

    async def generate_fixes(self, reports: Iterable[LeakReport]) -> list[Fix]:
        """Generate fixes for up to ``fixes.max_batch_size`` static reports.

        Reports that cannot be fixed are logged and skipped.
        """
        candidates = [r for r in reports if r.metadata.detection_method == "static"]
        limit = self.config.fixes.max_batch_size
        if len(candidates) > limit:
            logger.info("Generating %d of %d fixes (max_batch_size)", limit, len(candidates))
            candidates = candidates[:limit]

        sources: dict[str, str] = {}
        fixes: list[Fix] = []
        for report in candidates:
            try:
                if report.file not in sources:
                    sources[report.file] = await asyncio.to_thread(
                        Path(report.file).read_text, encoding="utf-8"
                    )
                fixes.append(self.fix_generator.generate_fix(report, sources[report.file]))
            except (OSError, FixGenerationError, FixValidationError) as e:
                logger.warning("Could not generate fix for %s: %s", report.id, e)
        return fixes

    async def validate_fixes(self, fixes: Iterable[Fix]) -> ValidationResult:
        """Sort *fixes* into applied, failed and skipped buckets.

        The batch always completes; every failure is recorded as an issue.
        """
        fixes = list(fixes)
        applied: list[Fix] = []
        failed: list[Fix] = []
        skipped: list[Fix] = []
        errors: list[ValidationIssue] = []
        warnings: list[str] = []

        for fix in fixes:
            try:
                await self._validate_fix(fix)
            except FixValidationError as e:
                errors.append(
                    ValidationIssue(
                        fix_id=fix.id, error=str(e), code=e.code, suggestion=e.suggestion
                    )
                )
                failed.append(fix)
                event_logger.warning(
                    "Fix rejected",
                    extra={"event": "fix_rejected", "fix_id": fix.id, "code": e.code},
                )
                continue
            except Exception as e:
                errors.append(
                    ValidationIssue(
                        fix_id=fix.id, error=str(e), code=FixValidationError.VALIDATION_ERROR
                    )
                )
                failed.append(fix)
                continue

            if fix.requires_manual_review and not self.config.fixes.require_review_for_high_risk:
                warnings.append(
                    f"Fix {fix.id} requires manual review but auto-review is disabled"
                )
                skipped.append(fix)
                continue
            applied.append(fix)

        if applied and self.config.fixes.dry_run:
            warnings.append(f"Dry run: {len(applied)} validated fixes were not written to disk")

        return ValidationResult(
            valid=not errors,
            fixes=ValidationBuckets(applied=applied, failed=failed, skipped=skipped),
            errors=errors,
            warnings=warnings,
            summary=ValidationSummary(
                total_fixes=len(fixes),
                successful_fixes=len(applied),
                failed_fixes=len(failed),
                skipped_fixes=len(skipped),
            ),
        )

    async def _validate_fix(self, fix: Fix) -> None:
        """Raise ``FixValidationError`` when *fix* cannot be applied as is."""
        self.fix_generator.validate_fix(fix)

        path = Path(fix.file)
        if not await asyncio.to_thread(path.is_file):
            raise FixValidationError(
                f"File not found: {fix.file}",
                code=FixValidationError.FILE_NOT_FOUND,
                fix_id=fix.id,
            )
        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        if fix.original_code not in content:
            raise FixValidationError(
                f"Original code no longer present in {fix.file}",
                code=FixValidationError.VALIDATION_ERROR,
                fix_id=fix.id,
                suggestion="Re-scan the file and regenerate the fix",
            )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def create_snapshot(self, snapshot_id: str, description: str = "") -> MemorySnapshot:
        return await self.snapshot_engine.create_snapshot(snapshot_id, description)

    def compare_snapshots(self, before_id: str, after_id: str) -> ComparisonResult:
        return self.snapshot_engine.compare_snapshots(before_id, after_id)

    def detect_regression(
        self,
        baseline_id: str,
        current_id: str,
        thresholds: RegressionThresholds | None = None,
    ) -> RegressionResult:
        return self.snapshot_engine.detect_regression(baseline_id, current_id, thresholds)

    def set_baseline(self, snapshot_id: str, name: str) -> None:
        self.snapshot_engine.set_baseline(snapshot_id, name)

    async def measure_fix_effectiveness(
        self, fix: Fix, test_fn: TestFunction
    ) -> FixEffectivenessResult:
        return await self.snapshot_engine.measure_fix_effectiveness(fix, test_fn)

    def export_snapshots(self) -> str:
        return self.snapshot_engine.export_snapshots()

    def import_snapshots(self, data: str) -> None:
        self.snapshot_engine.import_snapshots(data)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def cleanup(self) -> None:
        """Clear cached scan results and cancel tracked runtime timers."""
        self.cache.clear()
        self.timer_detector.cancel_all()

    def close(self) -> None:
        self.cleanup()
        self.snapshot_engine.close()
