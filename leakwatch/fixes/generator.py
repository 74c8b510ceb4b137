"""Source patches for leak reports.

A fix rewrites only the owning scope of the leak (the span recorded in
``LeakContext.scope_start``/``scope_end``). Strategies, selected from the
report's scope context:

- append-to-teardown: the scope has a teardown callback; the release is
  appended as its last statement.
- synthesize-teardown: an effect hook without teardown; a
  ``return () => { ... };`` callback is added before the hook body closes.
- manual-annotation: no canonical teardown point (plain function, module
  scope, class without ``componentWillUnmount``) or no mechanical release;
  the release is suggested in a comment and the fix needs review.

Unbound acquisitions are first captured in a variable so the release can
name them, then the first two strategies apply unchanged.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from ..analysis.models import LeakContext, LeakReport
from ..analysis.patterns import (
    DEFAULT_CATALOG,
    PLACEHOLDER_PATTERN,
    LeakPattern,
    PatternCatalog,
    Severity,
)
from ..analysis.scope import ScopeExtractor
from ..core.exceptions import FixGenerationError, FixValidationError
from .models import Fix, FixMetadata

logger = logging.getLogger(__name__)

DEFAULT_INDENT = "  "

# Confidence ceilings per strategy and the factor applied when the fix
# also has to introduce a binding
APPEND_CONFIDENCE_CAP = 0.95
SYNTHESIZE_CONFIDENCE_CAP = 0.9
MANUAL_CONFIDENCE_FACTOR = 0.5
SYNTHESIZED_BINDING_FACTOR = 0.85

_IMPACT_BY_SEVERITY = {
    Severity.CRITICAL: "high",
    Severity.HIGH: "high",
    Severity.MEDIUM: "medium",
    Severity.LOW: "low",
}


class FixStrategy(str, Enum):
    APPEND_TO_TEARDOWN = "append-to-teardown"
    SYNTHESIZE_TEARDOWN = "synthesize-teardown"
    MANUAL_ANNOTATION = "manual-annotation"


@dataclass(frozen=True)
class Edit:
    """Replace ``source[start:end]`` with ``text`` (character offsets)."""

    start: int
    end: int
    text: str


@dataclass
class _Binding:
    identifier: str
    edits: list[Edit]
    declaration: str | None = None


def apply_edits(text: str, edits: list[Edit], base: int = 0) -> str:
    """Apply non-overlapping *edits* to *text*, which starts at offset *base*.

    Edits are applied from the end of the text backwards so earlier
    offsets stay valid.
    """
    result = text
    for edit in sorted(edits, key=lambda e: (e.start, e.end), reverse=True):
        start, end = edit.start - base, edit.end - base
        if start < 0 or end > len(text) or start > end:
            raise FixGenerationError(
                f"Edit [{edit.start}, {edit.end}) falls outside the rewritten scope"
            )
        result = result[:start] + edit.text + result[end:]
    return result


def line_indent(source: str, offset: int) -> str:
    """Leading whitespace of the line containing *offset*."""
    line_start = source.rfind("\n", 0, offset) + 1
    match = re.match(r"[ \t]*", source[line_start:])
    return match.group(0) if match else ""


def indent_unit(source: str, block_start: int, block_end: int) -> str:
    """Indentation step used inside the block ``[block_start, block_end)``."""
    outer = line_indent(source, block_start)
    for line in source[block_start:block_end].splitlines()[1:]:
        if line.strip():
            inner = line[: len(line) - len(line.lstrip())]
            if inner.startswith(outer) and len(inner) > len(outer):
                return inner[len(outer):]
            break
    return DEFAULT_INDENT


class FixGenerator:
    """Generates and validates fixes for static leak reports.

    Example::

        generator = FixGenerator()
        fix = generator.generate_fix(report, source=code)
        print(fix.fixed_code)
    """

    def __init__(self, catalog: PatternCatalog | None = None) -> None:
        self.catalog = catalog or DEFAULT_CATALOG

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_fix(self, report: LeakReport, source: str | None = None) -> Fix:
        """Produce a validated ``Fix`` for *report*.

        Args:
            report: A static leak report with a populated context.
            source: Current content of ``report.file``. Read from disk
                when omitted.

        Returns:
            A new ``Fix``.

        Raises:
            FixGenerationError: The report cannot be fixed from this source.
            FixValidationError: The generated code failed validation.
        """
        ctx = report.context
        if report.metadata.detection_method != "static" or ctx.scope_start is None:
            raise FixGenerationError(f"Report {report.id} has no source location to fix")
        if source is None:
            try:
                source = Path(report.file).read_text(encoding="utf-8")
            except OSError as e:
                raise FixGenerationError(f"Cannot read {report.file}: {e}") from e
        self._check_source(report, source)

        pattern = self.catalog.for_type(report.type)
        strategy = self.select_strategy(report, pattern, source)

        if strategy is FixStrategy.MANUAL_ANNOTATION:
            edits, description, synthesized = self._manual_edits(report, pattern, source)
        else:
            binding = self._binding(report, pattern, source)
            release = self._release_text(ctx, pattern, binding.identifier)
            if strategy is FixStrategy.APPEND_TO_TEARDOWN:
                edits = binding.edits + self._append_edits(ctx, source, release)
                description = f"Release with `{release}` in the existing teardown callback"
            else:
                edits = self._synthesize_edits(ctx, source, release, binding)
                description = f"Add a teardown callback to {ctx.hook_name} that calls `{release}`"
            synthesized = ctx.variable_name is None
            if synthesized:
                description += f" (captures the resource as `{binding.identifier}`)"

        start, end = ctx.scope_start, ctx.scope_end
        original = source[start:end]
        fixed = apply_edits(original, edits, base=start)

        fix = Fix(
            id=f"fix-{report.id}",
            leak_id=report.id,
            type=report.type,
            file=report.file,
            line=report.line,
            column=report.column,
            original_code=original,
            fixed_code=fixed,
            description=description,
            confidence=self._confidence(report, strategy, synthesized),
            requires_manual_review=(
                report.requires_manual_review or strategy is FixStrategy.MANUAL_ANNOTATION
            ),
            category=self._category(report, strategy, synthesized),
            start_offset=start,
            end_offset=end,
            metadata=FixMetadata(
                generated_at=datetime.now(timezone.utc),
                estimated_impact=_IMPACT_BY_SEVERITY[report.severity],
                risk_level=self._risk(strategy, synthesized),
                strategy=strategy.value,
            ),
        )
        self.validate_fix(fix)
        logger.debug("Generated %s fix %s", strategy.value, fix.id)
        return fix

    @staticmethod
    def validate_fix(fix: Fix) -> None:
        """Reject placeholder tokens and braces unbalanced by the edit.

        Raises:
            FixValidationError: With code ``INVALID_SYNTAX``.
        """
        token = PLACEHOLDER_PATTERN.search(fix.fixed_code)
        if token is not None:
            raise FixValidationError(
                f"Fixed code still contains placeholder {token.group(0)}",
                code=FixValidationError.INVALID_SYNTAX,
                fix_id=fix.id,
                suggestion="Bind the acquisition to a variable before releasing it",
            )
        if not ScopeExtractor.preserves_brace_balance(fix.original_code, fix.fixed_code):
            raise FixValidationError(
                "Fixed code has unbalanced braces",
                code=FixValidationError.INVALID_SYNTAX,
                fix_id=fix.id,
                suggestion="Review the generated code manually",
            )

    @staticmethod
    def select_strategy(report: LeakReport, pattern: LeakPattern, source: str) -> FixStrategy:
        ctx = report.context
        if pattern.fix_template is None:
            return FixStrategy.MANUAL_ANNOTATION
        needs_binding = ctx.variable_name is None
        if needs_binding and ctx.statement_start is None:
            # Acquired inside a nested concise arrow; there is no statement
            # to hoist a declaration in front of
            return FixStrategy.MANUAL_ANNOTATION
        if ctx.has_teardown_callback and ctx.teardown_start is not None:
            if needs_binding and not ctx.body_is_block:
                return FixStrategy.MANUAL_ANNOTATION
            return FixStrategy.APPEND_TO_TEARDOWN
        if ctx.is_in_effect_hook:
            head = source[ctx.scope_start:ctx.body_start]
            if head.lstrip().startswith("async"):
                return FixStrategy.MANUAL_ANNOTATION
            return FixStrategy.SYNTHESIZE_TEARDOWN
        return FixStrategy.MANUAL_ANNOTATION

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    @staticmethod
    def _append_edits(ctx: LeakContext, source: str, release: str) -> list[Edit]:
        start, end = ctx.teardown_start, ctx.teardown_end
        if start is None or end is None:
            raise FixGenerationError("Report context has no teardown offsets")
        outer = line_indent(source, start)
        unit = indent_unit(source, start, end)

        if not ctx.teardown_is_block:
            expression = source[start:end]
            text = (
                f"{{\n{outer}{unit}{expression};\n"
                f"{outer}{unit}{release}\n{outer}}}"
            )
            return [Edit(start, end, text)]

        closing = end - 1
        line_start = source.rfind("\n", start, closing) + 1
        if line_start > start and not source[line_start:closing].strip():
            closing_indent = source[line_start:closing]
            return [Edit(line_start, line_start, f"{closing_indent}{unit}{release}\n")]
        prefix = "" if source[closing - 1].isspace() else " "
        return [Edit(closing, closing, f"{prefix}{release} ")]

    @staticmethod
    def _synthesize_edits(
        ctx: LeakContext, source: str, release: str, binding: _Binding
    ) -> list[Edit]:
        start, end = ctx.body_start, ctx.body_end
        if start is None or end is None:
            raise FixGenerationError("Report context has no scope body offsets")
        outer = line_indent(source, start)
        unit = indent_unit(source, start, end)

        if not ctx.body_is_block:
            # Concise arrow body: rebuild it as a block
            inner = outer + unit
            expression = apply_edits(
                source[start:end],
                [e for e in binding.edits if start <= e.start and e.end <= end],
                base=start,
            )
            statements = []
            if binding.declaration is not None:
                statements.append(binding.declaration)
            if expression.strip():
                statements.append(f"{expression.strip()};")
            statements.append(f"return () => {{\n{inner}{unit}{release}\n{inner}}};")
            body = "".join(f"{inner}{s}\n" for s in statements)
            return [Edit(start, end, f"{{\n{body}{outer}}}")]

        closing = end - 1
        line_start = source.rfind("\n", start, closing) + 1
        if line_start > start and not source[line_start:closing].strip():
            closing_indent = source[line_start:closing]
            inner = closing_indent + unit
            teardown = (
                f"{inner}return () => {{\n{inner}{unit}{release}\n{inner}}};\n"
            )
            return binding.edits + [Edit(line_start, line_start, teardown)]
        prefix = "" if source[closing - 1].isspace() else " "
        return binding.edits + [
            Edit(closing, closing, f"{prefix}return () => {{ {release} }}; ")
        ]

    def _manual_edits(
        self, report: LeakReport, pattern: LeakPattern, source: str
    ) -> tuple[list[Edit], str, bool]:
        ctx = report.context
        identifier = ctx.variable_name
        synthesized = False
        if pattern.fix_template is None:
            note = pattern.recommendation
        else:
            if identifier is None:
                identifier = pattern.binding_name(ctx.event_name)
                synthesized = True
            release = self._release_text(ctx, pattern, identifier)
            if synthesized:
                note = f"capture this resource (e.g. as {identifier}) and release it with {release}"
            else:
                note = f"no teardown scope here; call {release} when this resource is no longer needed"
        note = note.replace("*/", "* /")

        if ctx.statement_start is not None and ctx.body_is_block:
            indent = line_indent(source, ctx.statement_start)
            edit = Edit(ctx.statement_start, ctx.statement_start, f"// leakwatch: {note}\n{indent}")
        elif ctx.acquisition_start is None:
            raise FixGenerationError("Report context has no acquisition offsets")
        else:
            edit = Edit(ctx.acquisition_start, ctx.acquisition_start, f"/* leakwatch: {note} */ ")
        return [edit], f"Manual review required: {note}", synthesized

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _binding(self, report: LeakReport, pattern: LeakPattern, source: str) -> _Binding:
        """Identifier naming the resource, plus the edits that introduce it.

        A call that forms a statement of the owning body is captured in
        place (``const intervalId = setInterval(...)``). Deeper calls keep
        their position and assign to a variable declared in front of the
        enclosing statement, so they still run when and as often as before.
        Class lifecycles store the resource on the instance instead.
        """
        ctx = report.context
        if ctx.variable_name is not None:
            return _Binding(identifier=ctx.variable_name, edits=[])

        if ctx.scope_start is None or ctx.scope_end is None or ctx.statement_start is None:
            raise FixGenerationError(
                f"Report {report.id} has no statement to capture the resource in"
            )
        region = source[ctx.scope_start:ctx.scope_end]
        on_instance = ctx.scope_kind == "lifecycle"
        name = self._fresh_name(pattern.binding_name(ctx.event_name), region, on_instance)
        identifier = f"this.{name}" if on_instance else name
        keyword = "" if on_instance else "const "

        if pattern.binds_handler:
            captured_start, captured_end = ctx.binding_start, ctx.binding_end
        else:
            captured_start, captured_end = ctx.acquisition_start, ctx.acquisition_end
        if captured_start is None or captured_end is None:
            raise FixGenerationError(f"Report {report.id} has no span for the acquired resource")
        captured = source[captured_start:captured_end]

        edits: list[Edit]
        declaration: str | None
        if ctx.statement_is_acquisition and pattern.binds_handler:
            declaration = f"{keyword}{identifier} = {captured};"
            edits = [Edit(captured_start, captured_end, identifier)]
        elif ctx.statement_is_acquisition:
            if ctx.body_is_block:
                prefix = Edit(captured_start, captured_start, f"{keyword}{identifier} = ")
                return _Binding(identifier=identifier, edits=[prefix])
            declaration = f"{keyword}{identifier} = {captured};"
            edits = [Edit(captured_start, captured_end, "")]
        else:
            if ctx.acquisition_is_statement and not pattern.binds_handler:
                edits = [Edit(captured_start, captured_start, f"{identifier} = ")]
            else:
                edits = [Edit(captured_start, captured_end, f"({identifier} = {captured})")]
            declaration = None if on_instance else f"let {identifier};"

        if declaration is None or not ctx.body_is_block:
            # A concise body gets its declaration from the block rebuild
            return _Binding(identifier=identifier, edits=edits, declaration=declaration)

        indent = line_indent(source, ctx.statement_start)
        edits.append(Edit(ctx.statement_start, ctx.statement_start, f"{declaration}\n{indent}"))
        return _Binding(identifier=identifier, edits=edits, declaration=declaration)

    @staticmethod
    def _fresh_name(base: str, region: str, on_instance: bool) -> str:
        taken = (
            (lambda n: re.search(rf"\bthis\.{re.escape(n)}\b", region) is not None)
            if on_instance
            else (lambda n: re.search(rf"(?<![\w$.]){re.escape(n)}(?![\w$])", region) is not None)
        )
        candidate, suffix = base, 2
        while taken(candidate):
            candidate = f"{base}{suffix}"
            suffix += 1
        return candidate

    @staticmethod
    def _release_text(ctx: LeakContext, pattern: LeakPattern, identifier: str) -> str:
        rendered = pattern.render_release(
            identifier,
            target=ctx.listener_target,
            event=ctx.event_argument,
            release=ctx.release_name,
        )
        if rendered is None:
            raise FixGenerationError(f"{pattern.rule_id} has no release template")
        return rendered

    @staticmethod
    def _check_source(report: LeakReport, source: str) -> None:
        ctx = report.context
        if ctx.scope_end is None or ctx.scope_end > len(source):
            raise FixGenerationError(f"{report.file} changed since report {report.id}")
        snippet = report.code_snippet.removesuffix("...").strip()
        if snippet and snippet[:40] not in source[ctx.scope_start:ctx.scope_end]:
            raise FixGenerationError(f"{report.file} changed since report {report.id}")

    @staticmethod
    def _confidence(report: LeakReport, strategy: FixStrategy, synthesized: bool) -> float:
        if strategy is FixStrategy.MANUAL_ANNOTATION:
            value = report.confidence * MANUAL_CONFIDENCE_FACTOR
        else:
            cap = (
                APPEND_CONFIDENCE_CAP
                if strategy is FixStrategy.APPEND_TO_TEARDOWN
                else SYNTHESIZE_CONFIDENCE_CAP
            )
            value = min(report.confidence, cap)
            if synthesized:
                value *= SYNTHESIZED_BINDING_FACTOR
        return round(value, 4)

    @staticmethod
    def _category(report: LeakReport, strategy: FixStrategy, synthesized: bool) -> str:
        if strategy is FixStrategy.MANUAL_ANNOTATION:
            return "manual"
        if synthesized or report.requires_manual_review:
            return "suggested"
        return "automatic"

    @staticmethod
    def _risk(strategy: FixStrategy, synthesized: bool) -> str:
        if strategy is FixStrategy.MANUAL_ANNOTATION:
            return "risky"
        return "moderate" if synthesized else "safe"
