"""
Leak patterns for scope-aware static analysis of JavaScript/TypeScript UI code.

This module is the single source of truth for what counts as a leak. Every
leak category is one ``LeakPattern`` row describing:

- How the resource is acquired (call, method call or constructor signature)
- How it is released and where the released identity is read from
  (an argument, the receiver, the callee itself, or merely the presence
  of a teardown callback)
- A default severity for runtime-only findings
- A fix template written with placeholder tokens
- Positive examples (code that SHOULD produce a candidate)
- Negative examples (code that should NOT)

Placeholder tokens understood by ``LeakPattern.render_release``:

- ``__ID__`` the bound identifier of the acquisition
- ``__TARGET__`` the object a listener was registered on
- ``__EVENT__`` the event argument of a listener registration
- ``__RELEASE__`` the release method paired with the acquisition method
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from .ast_engine import CallSite


class Severity(str, Enum):
    """Severity levels for leak reports, ordered low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER[self]


_SEVERITY_ORDER = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class LeakType(str, Enum):
    """Wire identifiers for leak report types."""

    MISSING_EFFECT_CLEANUP = "missing-useeffect-cleanup"
    UNCLEANED_EVENT_LISTENER = "uncleaned-event-listener"
    UNCLEANED_INTERVAL = "uncleaned-interval"
    UNCLEANED_TIMEOUT = "uncleaned-timeout"
    UNCLEANED_SUBSCRIPTION = "uncleaned-subscription"
    UNCLOSED_EVENTSOURCE = "unclosed-eventsource"
    UNCLOSED_WEBSOCKET = "unclosed-websocket"
    UNCLEANED_ABORT_CONTROLLER = "uncleaned-abort-controller"
    MEMORY_ACCUMULATION = "memory-accumulation"
    CIRCULAR_REFERENCE = "circular-reference"


class LeakCategory(str, Enum):
    """Closed set of leak categories known to the catalog."""

    EVENT_LISTENER = "event-listener"
    INTERVAL = "interval"
    TIMEOUT = "timeout"
    EVENTSOURCE = "eventsource"
    WEBSOCKET = "websocket"
    SUBSCRIPTION = "subscription"
    ABORT_CONTROLLER = "abort-controller"
    MISSING_TEARDOWN = "missing-teardown"
    MEMORY_ACCUMULATION = "memory-accumulation"
    CIRCULAR_REFERENCE = "circular-reference"


class ReleaseIdentity(str, Enum):
    """Where a release call carries the identity of what it releases."""

    ARGUMENT = "argument"    # clearInterval(id)
    RECEIVER = "receiver"    # socket.close()
    CALLEE = "callee"        # unsubscribe()
    SCOPE = "scope"          # any teardown callback counts


PLACEHOLDER_PATTERN = re.compile(r"__(?:ID|TARGET|EVENT|RELEASE)__")

# Receivers under which browser globals may be called
_GLOBAL_RECEIVERS = frozenset({"window", "globalThis", "self", "global"})


@dataclass(frozen=True)
class CodeExample:
    """A code example for pattern documentation."""

    code: str
    description: str
    should_match: bool


@dataclass(frozen=True)
class AcquisitionSignature:
    """Call shape that acquires a resource.

    Attributes:
        names: Function, method or constructor names.
        constructor: Match ``new Name(...)`` instead of calls.
        receiver_required: Only match method calls (``obj.name(...)``).
        global_receivers_only: Only accept a missing receiver or a global
            object such as ``window`` as receiver.
        min_arguments: Minimum number of arguments for a match.
    """

    names: frozenset[str]
    constructor: bool = False
    receiver_required: bool = False
    global_receivers_only: bool = False
    min_arguments: int = 0

    def matches(self, call: CallSite) -> bool:
        if call.is_constructor != self.constructor:
            return False
        if call.name not in self.names:
            return False
        if len(call.arguments) < self.min_arguments:
            return False
        if self.receiver_required and call.receiver is None:
            return False
        if self.global_receivers_only and call.receiver is not None:
            return call.receiver in _GLOBAL_RECEIVERS
        return True


@dataclass(frozen=True)
class ReleaseSignature:
    """Call shape that releases a resource.

    Attributes:
        names: Release function or method names.
        identities: Positions in the release call that may carry the
            acquisition's bound identifier.
        pairs: Acquisition name to release name, for categories whose
            release depends on how the resource was acquired.
    """

    names: frozenset[str]
    identities: tuple[ReleaseIdentity, ...]
    pairs: tuple[tuple[str, str], ...] = ()

    def release_for(self, acquisition_name: str) -> str | None:
        for acquired, released in self.pairs:
            if acquired == acquisition_name:
                return released
        return None


@dataclass(frozen=True)
class LeakPattern:
    """One row of the leak catalog.

    Attributes:
        rule_id: Unique identifier (e.g., "LEAK-002").
        category: The leak category this row defines.
        leak_type: Wire type used in reports.
        default_severity: Severity for findings not scored by the
            confidence model (runtime-only categories).
        name: Short human-readable name.
        description: What the pattern detects.
        acquisitions: Call shapes that acquire the resource. Empty for
            categories detected only at runtime.
        release: How the resource is released.
        fix_template: Release statement with placeholder tokens, or
            ``None`` when no mechanical release exists.
        binding_hint: Variable name used when a fix must capture an
            unbound acquisition.
        binds_handler: The identity of the acquisition is its handler
            argument rather than its return value.
        keyed_by_event: Releases must name the same event literal.
        effect_hook_only: Only acquisitions owned by an effect hook count.
        recommendation: Remediation advice.
    """

    rule_id: str
    category: LeakCategory
    leak_type: LeakType
    default_severity: Severity
    name: str
    description: str
    acquisitions: tuple[AcquisitionSignature, ...] = ()
    release: ReleaseSignature | None = None
    fix_template: str | None = None
    binding_hint: str = "resource"
    binds_handler: bool = False
    keyed_by_event: bool = False
    effect_hook_only: bool = False
    recommendation: str = ""
    positive_examples: list[CodeExample] = field(default_factory=list)
    negative_examples: list[CodeExample] = field(default_factory=list)

    @property
    def is_runtime_only(self) -> bool:
        return not self.acquisitions

    def matches_acquisition(self, call: CallSite) -> bool:
        return any(sig.matches(call) for sig in self.acquisitions)

    def tokens(self) -> set[str]:
        """Substrings that must occur in source text for this row to match."""
        found: set[str] = set()
        for sig in self.acquisitions:
            for name in sig.names:
                found.add(f".{name}(" if sig.receiver_required else name)
        return found

    def binding_name(self, event_literal: str | None = None) -> str:
        """Suggest a variable name for capturing an unbound acquisition."""
        if self.binds_handler and event_literal:
            words = re.findall(r"[A-Za-z0-9]+", event_literal)
            if words:
                return "handle" + "".join(w[:1].upper() + w[1:] for w in words)
        return self.binding_hint

    def render_release(
        self,
        identifier: str | None,
        target: str | None = None,
        event: str | None = None,
        release: str | None = None,
    ) -> str | None:
        """Fill the fix template. Unknown values leave their token in place."""
        if self.fix_template is None:
            return None
        values = {
            "__ID__": identifier,
            "__TARGET__": target,
            "__EVENT__": event,
            "__RELEASE__": release,
        }
        return PLACEHOLDER_PATTERN.sub(
            lambda m: values[m.group(0)] or m.group(0), self.fix_template
        )


# ---------------------------------------------------------------------------
# Resource acquisition patterns
# ---------------------------------------------------------------------------

STATIC_PATTERNS: list[LeakPattern] = [
    LeakPattern(
        rule_id="LEAK-001",
        category=LeakCategory.EVENT_LISTENER,
        leak_type=LeakType.UNCLEANED_EVENT_LISTENER,
        default_severity=Severity.HIGH,
        name="Event listener without removal",
        description=(
            "A listener registered with addEventListener/on/addListener is "
            "not removed in the teardown scope, so the handler and "
            "everything it closes over stay reachable after unmount."
        ),
        acquisitions=(
            AcquisitionSignature(
                names=frozenset({"addEventListener", "on", "addListener"}),
                receiver_required=True,
                min_arguments=2,
            ),
        ),
        release=ReleaseSignature(
            names=frozenset({"removeEventListener", "off", "removeListener"}),
            identities=(ReleaseIdentity.ARGUMENT,),
            pairs=(
                ("addEventListener", "removeEventListener"),
                ("on", "off"),
                ("addListener", "removeListener"),
            ),
        ),
        fix_template="__TARGET__.__RELEASE__(__EVENT__, __ID__);",
        binding_hint="handleEvent",
        binds_handler=True,
        keyed_by_event=True,
        recommendation=(
            "Keep a reference to the handler and remove it with the same "
            "target, event and handler in the teardown callback."
        ),
        positive_examples=[
            CodeExample(
                code=(
                    "useEffect(() => {\n"
                    "  const onResize = () => setWidth(window.innerWidth);\n"
                    "  window.addEventListener('resize', onResize);\n"
                    "}, []);"
                ),
                description="listener registered without teardown",
                should_match=True,
            ),
        ],
        negative_examples=[
            CodeExample(
                code=(
                    "useEffect(() => {\n"
                    "  const onResize = () => setWidth(window.innerWidth);\n"
                    "  window.addEventListener('resize', onResize);\n"
                    "  return () => window.removeEventListener('resize', onResize);\n"
                    "}, []);"
                ),
                description="listener removed in teardown",
                should_match=False,
            ),
        ],
    ),
    LeakPattern(
        rule_id="LEAK-002",
        category=LeakCategory.INTERVAL,
        leak_type=LeakType.UNCLEANED_INTERVAL,
        default_severity=Severity.HIGH,
        name="Interval without clearInterval",
        description=(
            "A recurring timer keeps firing after the owning scope is gone; "
            "each tick retains its callback and may update unmounted state."
        ),
        acquisitions=(
            AcquisitionSignature(
                names=frozenset({"setInterval"}),
                global_receivers_only=True,
                min_arguments=1,
            ),
        ),
        release=ReleaseSignature(
            names=frozenset({"clearInterval"}),
            identities=(ReleaseIdentity.ARGUMENT,),
        ),
        fix_template="clearInterval(__ID__);",
        binding_hint="intervalId",
        recommendation="Store the interval id and call clearInterval(id) in the teardown callback.",
        positive_examples=[
            CodeExample(
                code="useEffect(() => {\n  const id = setInterval(tick, 1000);\n}, []);",
                description="interval without teardown",
                should_match=True,
            ),
        ],
        negative_examples=[
            CodeExample(
                code=(
                    "useEffect(() => {\n"
                    "  const id = setInterval(tick, 1000);\n"
                    "  return () => clearInterval(id);\n"
                    "}, []);"
                ),
                description="interval cleared in teardown",
                should_match=False,
            ),
        ],
    ),
    LeakPattern(
        rule_id="LEAK-003",
        category=LeakCategory.TIMEOUT,
        leak_type=LeakType.UNCLEANED_TIMEOUT,
        default_severity=Severity.MEDIUM,
        name="Timeout without clearTimeout",
        description=(
            "A pending timeout created in a component or effect can fire "
            "after unmount and touch stale state."
        ),
        acquisitions=(
            AcquisitionSignature(
                names=frozenset({"setTimeout"}),
                global_receivers_only=True,
                min_arguments=1,
            ),
        ),
        release=ReleaseSignature(
            names=frozenset({"clearTimeout"}),
            identities=(ReleaseIdentity.ARGUMENT,),
        ),
        fix_template="clearTimeout(__ID__);",
        binding_hint="timeoutId",
        recommendation="Store the timeout id and call clearTimeout(id) in the teardown callback.",
        positive_examples=[
            CodeExample(
                code="useEffect(() => {\n  const t = setTimeout(save, 500);\n}, [value]);",
                description="timeout without teardown",
                should_match=True,
            ),
        ],
        negative_examples=[
            CodeExample(
                code=(
                    "useEffect(() => {\n"
                    "  const t = setTimeout(save, 500);\n"
                    "  return () => clearTimeout(t);\n"
                    "}, [value]);"
                ),
                description="timeout cleared in teardown",
                should_match=False,
            ),
        ],
    ),
    LeakPattern(
        rule_id="LEAK-004",
        category=LeakCategory.EVENTSOURCE,
        leak_type=LeakType.UNCLOSED_EVENTSOURCE,
        default_severity=Severity.HIGH,
        name="EventSource without close",
        description="A server-sent events stream stays open after the owning scope is gone.",
        acquisitions=(
            AcquisitionSignature(names=frozenset({"EventSource"}), constructor=True),
        ),
        release=ReleaseSignature(
            names=frozenset({"close"}),
            identities=(ReleaseIdentity.RECEIVER,),
        ),
        fix_template="__ID__.close();",
        binding_hint="eventSource",
        recommendation="Call source.close() in the teardown callback.",
        positive_examples=[
            CodeExample(
                code=(
                    "useEffect(() => {\n"
                    "  const source = new EventSource('/api/stream');\n"
                    "  source.onmessage = handleMessage;\n"
                    "}, []);"
                ),
                description="stream never closed",
                should_match=True,
            ),
        ],
        negative_examples=[
            CodeExample(
                code=(
                    "useEffect(() => {\n"
                    "  const source = new EventSource('/api/stream');\n"
                    "  source.onmessage = handleMessage;\n"
                    "  return () => source.close();\n"
                    "}, []);"
                ),
                description="stream closed in teardown",
                should_match=False,
            ),
        ],
    ),
    LeakPattern(
        rule_id="LEAK-005",
        category=LeakCategory.WEBSOCKET,
        leak_type=LeakType.UNCLOSED_WEBSOCKET,
        default_severity=Severity.HIGH,
        name="WebSocket without close",
        description="A WebSocket connection outlives the scope that opened it.",
        acquisitions=(
            AcquisitionSignature(names=frozenset({"WebSocket"}), constructor=True),
        ),
        release=ReleaseSignature(
            names=frozenset({"close"}),
            identities=(ReleaseIdentity.RECEIVER,),
        ),
        fix_template="__ID__.close();",
        binding_hint="socket",
        recommendation="Call socket.close() in the teardown callback.",
        positive_examples=[
            CodeExample(
                code=(
                    "useEffect(() => {\n"
                    "  const socket = new WebSocket(url);\n"
                    "  socket.onmessage = (event) => setMessages((m) => [...m, event.data]);\n"
                    "}, [url]);"
                ),
                description="socket never closed",
                should_match=True,
            ),
        ],
        negative_examples=[
            CodeExample(
                code=(
                    "useEffect(() => {\n"
                    "  const socket = new WebSocket(url);\n"
                    "  return () => {\n"
                    "    socket.close();\n"
                    "  };\n"
                    "}, [url]);"
                ),
                description="socket closed in teardown",
                should_match=False,
            ),
        ],
    ),
    LeakPattern(
        rule_id="LEAK-006",
        category=LeakCategory.SUBSCRIPTION,
        leak_type=LeakType.UNCLEANED_SUBSCRIPTION,
        default_severity=Severity.HIGH,
        name="Subscription without unsubscribe",
        description=(
            "An observable or store subscription keeps delivering values to "
            "a scope that no longer exists."
        ),
        acquisitions=(
            AcquisitionSignature(
                names=frozenset({"subscribe"}),
                receiver_required=True,
            ),
        ),
        release=ReleaseSignature(
            names=frozenset({"unsubscribe"}),
            identities=(ReleaseIdentity.RECEIVER, ReleaseIdentity.CALLEE),
        ),
        fix_template="__ID__.unsubscribe();",
        binding_hint="subscription",
        recommendation="Keep the subscription and unsubscribe in the teardown callback.",
        positive_examples=[
            CodeExample(
                code="useEffect(() => {\n  const sub = store$.subscribe(setState);\n}, []);",
                description="subscription never released",
                should_match=True,
            ),
        ],
        negative_examples=[
            CodeExample(
                code=(
                    "useEffect(() => {\n"
                    "  const sub = store$.subscribe(setState);\n"
                    "  return () => sub.unsubscribe();\n"
                    "}, []);"
                ),
                description="subscription released in teardown",
                should_match=False,
            ),
            CodeExample(
                code=(
                    "useEffect(() => {\n"
                    "  const unsubscribe = store.subscribe(render);\n"
                    "  return () => unsubscribe();\n"
                    "}, []);"
                ),
                description="unsubscribe function called in teardown",
                should_match=False,
            ),
        ],
    ),
    LeakPattern(
        rule_id="LEAK-007",
        category=LeakCategory.ABORT_CONTROLLER,
        leak_type=LeakType.UNCLEANED_ABORT_CONTROLLER,
        default_severity=Severity.MEDIUM,
        name="AbortController never aborted",
        description=(
            "An AbortController guards a request but is never aborted, so "
            "the request can resolve after unmount."
        ),
        acquisitions=(
            AcquisitionSignature(names=frozenset({"AbortController"}), constructor=True),
        ),
        release=ReleaseSignature(
            names=frozenset({"abort"}),
            identities=(ReleaseIdentity.RECEIVER,),
        ),
        fix_template="__ID__.abort();",
        binding_hint="controller",
        recommendation="Call controller.abort() in the teardown callback.",
        positive_examples=[
            CodeExample(
                code=(
                    "useEffect(() => {\n"
                    "  const controller = new AbortController();\n"
                    "  load(controller.signal);\n"
                    "}, []);"
                ),
                description="controller never aborted",
                should_match=True,
            ),
        ],
        negative_examples=[
            CodeExample(
                code=(
                    "useEffect(() => {\n"
                    "  const controller = new AbortController();\n"
                    "  load(controller.signal);\n"
                    "  return () => controller.abort();\n"
                    "}, []);"
                ),
                description="controller aborted in teardown",
                should_match=False,
            ),
        ],
    ),
    LeakPattern(
        rule_id="LEAK-008",
        category=LeakCategory.MISSING_TEARDOWN,
        leak_type=LeakType.MISSING_EFFECT_CLEANUP,
        default_severity=Severity.MEDIUM,
        name="Async effect without teardown",
        description=(
            "An effect starts a request but returns no teardown callback, so "
            "a late response can update an unmounted component."
        ),
        acquisitions=(
            AcquisitionSignature(
                names=frozenset({"fetch"}),
                global_receivers_only=True,
                min_arguments=1,
            ),
            AcquisitionSignature(names=frozenset({"XMLHttpRequest"}), constructor=True),
        ),
        release=ReleaseSignature(
            names=frozenset(),
            identities=(ReleaseIdentity.SCOPE,),
        ),
        effect_hook_only=True,
        recommendation=(
            "Return a teardown callback that aborts the request or ignores "
            "its result (for example with an AbortController)."
        ),
        positive_examples=[
            CodeExample(
                code=(
                    "useEffect(() => {\n"
                    "  fetch('/api/user').then((r) => r.json()).then(setUser);\n"
                    "}, []);"
                ),
                description="request without teardown",
                should_match=True,
            ),
        ],
        negative_examples=[
            CodeExample(
                code=(
                    "useEffect(() => {\n"
                    "  let active = true;\n"
                    "  fetch('/api/user').then((r) => r.json()).then((u) => active && setUser(u));\n"
                    "  return () => {\n"
                    "    active = false;\n"
                    "  };\n"
                    "}, []);"
                ),
                description="teardown ignores late responses",
                should_match=False,
            ),
        ],
    ),
]


# ---------------------------------------------------------------------------
# Runtime-only patterns
# ---------------------------------------------------------------------------

RUNTIME_PATTERNS: list[LeakPattern] = [
    LeakPattern(
        rule_id="LEAK-101",
        category=LeakCategory.MEMORY_ACCUMULATION,
        leak_type=LeakType.MEMORY_ACCUMULATION,
        default_severity=Severity.CRITICAL,
        name="Unbounded memory growth",
        description="Process memory grows between snapshots without being reclaimed.",
        recommendation="Compare snapshots around the suspect operation and bound the growing collection.",
    ),
    LeakPattern(
        rule_id="LEAK-102",
        category=LeakCategory.CIRCULAR_REFERENCE,
        leak_type=LeakType.CIRCULAR_REFERENCE,
        default_severity=Severity.HIGH,
        name="Circular reference",
        description="Objects reference each other and survive garbage collection.",
        recommendation="Break the cycle with a weak reference or explicit disposal.",
    ),
]


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

ALL_PATTERNS: list[LeakPattern] = STATIC_PATTERNS + RUNTIME_PATTERNS


class PatternCatalog:
    """Read-only lookup over a list of ``LeakPattern`` rows."""

    def __init__(self, patterns: Iterable[LeakPattern] = ALL_PATTERNS) -> None:
        self._patterns: tuple[LeakPattern, ...] = tuple(patterns)
        self._by_category = {p.category: p for p in self._patterns}
        self._by_type = {p.leak_type: p for p in self._patterns}
        self._by_rule = {p.rule_id: p for p in self._patterns}

    def __iter__(self):
        return iter(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)

    def get(self, category: LeakCategory) -> LeakPattern:
        return self._by_category[category]

    def for_type(self, leak_type: LeakType) -> LeakPattern:
        return self._by_type[leak_type]

    def for_rule(self, rule_id: str) -> LeakPattern | None:
        return self._by_rule.get(rule_id)

    def static_patterns(self) -> list[LeakPattern]:
        return [p for p in self._patterns if not p.is_runtime_only]

    def match_acquisition(
        self,
        call: CallSite,
        categories: frozenset[LeakCategory] | None = None,
    ) -> LeakPattern | None:
        """Return the first static row whose acquisition matches *call*."""
        for pattern in self._patterns:
            if categories is not None and pattern.category not in categories:
                continue
            if pattern.matches_acquisition(call):
                return pattern
        return None

    def acquisition_tokens(
        self, categories: frozenset[LeakCategory] | None = None
    ) -> frozenset[str]:
        tokens: set[str] = set()
        for pattern in self._patterns:
            if categories is None or pattern.category in categories:
                tokens |= pattern.tokens()
        return frozenset(tokens)


DEFAULT_CATALOG = PatternCatalog()


def get_pattern(category: LeakCategory) -> LeakPattern:
    """Look up the default catalog row for *category*."""
    return DEFAULT_CATALOG.get(category)


def severity_at_least(severity: Severity, threshold: Severity) -> bool:
    return severity.rank >= threshold.rank
