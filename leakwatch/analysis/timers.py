"""Interval and timeout leak detection.

``TimerLeakDetector`` is the timer-only specialization of ``LeakMatcher``
and also keeps a runtime registry of live timers. The registry is fed by
code embedding the detector in a running process; entries older than a
threshold are reported as long-running.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..constants import LONG_RUNNING_TIMER_MINUTES
from .ast_engine import ASTEngine
from .confidence import ConfidenceModel
from .matcher import LeakMatcher
from .patterns import LeakCategory, PatternCatalog
from .visitor import AcquisitionSite

logger = logging.getLogger(__name__)

TIMER_CATEGORIES = frozenset({LeakCategory.INTERVAL, LeakCategory.TIMEOUT})


class TimerKind(str, Enum):
    INTERVAL = "interval"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class TrackedTimer:
    """A live timer registered with the runtime registry.

    Attributes:
        handle: Caller-supplied handle identifying the timer.
        kind: Interval or timeout.
        created_at: Registry clock value at registration.
        context: Free-form description of where the timer was created.
    """

    handle: Hashable
    kind: TimerKind
    created_at: float
    context: dict[str, Any] = field(default_factory=dict)

    def age_seconds(self, now: float) -> float:
        return max(0.0, now - self.created_at)


class TimerLeakDetector(LeakMatcher):
    """Static timer matching plus a runtime registry of live timers.

    Timeouts are only considered inside an effect hook or a component;
    a one-shot timer in a plain function completes on its own.

    Example::

        detector = TimerLeakDetector()
        reports = detector.analyze_source(code, "Clock.tsx")

        detector.track_timer(handle, "interval", {"component": "Clock"})
        stale = detector.detect_long_running(threshold_minutes=5)
    """

    def __init__(
        self,
        catalog: PatternCatalog | None = None,
        confidence_model: ConfidenceModel | None = None,
        engine: ASTEngine | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(
            catalog=catalog,
            categories=TIMER_CATEGORIES,
            confidence_model=confidence_model,
            engine=engine,
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._timers: dict[Hashable, TrackedTimer] = {}

    def accepts(self, site: AcquisitionSite) -> bool:
        if site.category is LeakCategory.TIMEOUT:
            context = site.scope.context
            return context.is_in_effect_hook or context.is_in_component
        return True

    # ------------------------------------------------------------------
    # Runtime registry
    # ------------------------------------------------------------------

    def track_timer(
        self,
        handle: Hashable,
        kind: TimerKind | str,
        context: dict[str, Any] | None = None,
    ) -> TrackedTimer:
        """Register a live timer. Re-tracking a handle restarts its clock."""
        timer = TrackedTimer(
            handle=handle,
            kind=TimerKind(kind),
            created_at=self._clock(),
            context=dict(context or {}),
        )
        with self._lock:
            self._timers[handle] = timer
        logger.debug("Tracking %s timer %r", timer.kind.value, handle)
        return timer

    def now(self) -> float:
        """Current value of the registry clock."""
        return self._clock()

    def untrack_timer(self, handle: Hashable) -> bool:
        """Forget a timer. Returns ``False`` when it was not tracked."""
        with self._lock:
            return self._timers.pop(handle, None) is not None

    def get_active_timers(self) -> list[TrackedTimer]:
        """Tracked timers, after forgetting asyncio handles cancelled directly."""
        with self._lock:
            cancelled = [
                handle for handle in self._timers
                if isinstance(handle, asyncio.Handle) and handle.cancelled()
            ]
            for handle in cancelled:
                del self._timers[handle]
            active = list(self._timers.values())
        if cancelled:
            logger.debug("Dropped %d cancelled timer handles", len(cancelled))
        return active

    def counts(self) -> dict[str, int]:
        """Number of tracked timers per kind."""
        result = {kind.value: 0 for kind in TimerKind}
        for timer in self.get_active_timers():
            result[timer.kind.value] += 1
        return result

    def detect_long_running(
        self, threshold_minutes: float = LONG_RUNNING_TIMER_MINUTES
    ) -> list[TrackedTimer]:
        """Tracked timers older than *threshold_minutes*, oldest first."""
        now = self._clock()
        threshold = threshold_minutes * 60.0
        stale = [t for t in self.get_active_timers() if t.age_seconds(now) > threshold]
        return sorted(stale, key=lambda t: t.created_at)

    def track_call_later(
        self,
        loop: asyncio.AbstractEventLoop,
        delay: float,
        callback: Callable[..., Any],
        *args: Any,
    ) -> asyncio.TimerHandle:
        """Schedule *callback* on *loop* and track it until it runs or is cancelled."""
        handle: asyncio.TimerHandle
        # Held while the handle is scheduled and registered
        registered = threading.Lock()

        def _run() -> None:
            with registered:
                self.untrack_timer(handle)
            callback(*args)

        with registered:
            handle = loop.call_later(delay, _run)
            self.track_timer(
                handle,
                TimerKind.TIMEOUT,
                {"callback": getattr(callback, "__qualname__", repr(callback)), "delay": delay},
            )
        return handle

    def cancel_all(self) -> int:
        """Cancel tracked handles that support it and clear the registry."""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        cancelled = 0
        for timer in timers:
            cancel = getattr(timer.handle, "cancel", None)
            if callable(cancel):
                cancel()
                cancelled += 1
        if timers:
            logger.info("Cleared %d tracked timers (%d cancelled)", len(timers), cancelled)
        return cancelled
