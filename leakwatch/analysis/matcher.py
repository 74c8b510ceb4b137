"""Scope-aware pairing of resource acquisitions with their releases.

Only the teardown callback of the scope that owns an acquisition counts as
a valid place to release it. A release found anywhere else (a sibling
effect, a click handler, module level) does not run on unmount and is
ignored.

Pairing rules, per acquisition:

1. The owning scope has no teardown callback: unmatched.
2. The catalog row only requires a teardown to exist (scope identity):
   matched as soon as one does.
3. The acquisition is bound to an identifier: a release call in the
   teardown that carries the identifier (or one of its aliases) as an
   argument, as its receiver, or as the callee itself matches.
4. The acquisition is unbound: any release call of the row matches
   weakly. Weak matches are still reported with reduced confidence.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from ..constants import CODE_SNIPPET_MAX_LENGTH
from ..core.exceptions import AnalysisError
from .ast_engine import TRANSPARENT_NODE_TYPES, ASTEngine, CallSite, ParsedAST, node_key, unwrap
from .confidence import ConfidenceModel
from .models import LeakContext, LeakReport, ReportMetadata
from .patterns import (
    DEFAULT_CATALOG,
    PLACEHOLDER_PATTERN,
    LeakCategory,
    PatternCatalog,
    ReleaseIdentity,
)
from .scope import ScopeContext, ScopeExtractor, ScopeKind
from .visitor import AcquisitionSite, ScopeVisitor, normalize_reference, string_literal_value

logger = logging.getLogger(__name__)


class PairingOutcome(str, Enum):
    MATCHED = "matched"
    WEAK = "weak"
    UNMATCHED = "unmatched"


@dataclass(frozen=True)
class LeakCandidate:
    """An acquisition without a verified release in its teardown scope.

    Attributes:
        category: Leak category of the acquisition.
        source_offset: Character offset of the acquisition call.
        bound_identifier: Identifier the acquisition is bound to, if any.
        scope: Context of the owning scope, including the binding.
        weakly_matched: A release of the same kind exists but its
            identity could not be verified.
    """

    category: LeakCategory
    source_offset: int
    bound_identifier: str | None
    scope: ScopeContext
    weakly_matched: bool = False
    site: AcquisitionSite | None = field(default=None, repr=False, compare=False)


class LeakMatcher:
    """Finds leak candidates in a parsed file and turns them into reports.

    Args:
        catalog: Pattern catalog defining acquisitions and releases.
        categories: Restrict matching to these categories.
        confidence_model: Scoring used for every report.
        engine: Shared tree-sitter engine.
    """

    detection_method = "static"

    def __init__(
        self,
        catalog: PatternCatalog | None = None,
        categories: frozenset[LeakCategory] | None = None,
        confidence_model: ConfidenceModel | None = None,
        engine: ASTEngine | None = None,
    ) -> None:
        self.catalog = catalog or DEFAULT_CATALOG
        self.categories = categories
        self.confidence_model = confidence_model or ConfidenceModel()
        self.engine = engine or ASTEngine()

    # ------------------------------------------------------------------
    # Candidate discovery
    # ------------------------------------------------------------------

    def find_acquisitions(self, ast: ParsedAST) -> list[AcquisitionSite]:
        return ScopeVisitor(ast, self.catalog, self.engine, self.categories).visit()

    def accepts(self, site: AcquisitionSite) -> bool:
        """Hook for subclasses to drop acquisitions before pairing."""
        return True

    def match(self, ast: ParsedAST) -> list[LeakCandidate]:
        """Return the candidates of *ast* in source order."""
        candidates: list[LeakCandidate] = []
        for site in self.find_acquisitions(ast):
            if not self.accepts(site):
                continue
            outcome = self.pair(ast, site)
            if outcome is PairingOutcome.MATCHED:
                continue
            candidates.append(
                LeakCandidate(
                    category=site.category,
                    source_offset=ast.char_offset(site.node.start_byte),
                    bound_identifier=site.bound_identifier,
                    scope=site.scope.context.with_binding(site.bound_identifier),
                    weakly_matched=outcome is PairingOutcome.WEAK,
                    site=site,
                )
            )
        return candidates

    def pair(self, ast: ParsedAST, site: AcquisitionSite) -> PairingOutcome:
        """Look for the release of *site* in its teardown sub-scope."""
        scope = site.scope
        release = site.pattern.release

        if self._hands_back_teardown(site):
            return PairingOutcome.MATCHED
        if scope.teardown is None or release is None:
            return PairingOutcome.UNMATCHED
        if ReleaseIdentity.SCOPE in release.identities:
            return PairingOutcome.MATCHED

        teardown_calls = self.engine.find_calls(ast, root=scope.teardown)
        identities = site.identities
        if identities:
            for call in teardown_calls:
                if self._releases_identity(ast, site, call, identities):
                    return PairingOutcome.MATCHED
            return PairingOutcome.UNMATCHED

        for call in teardown_calls:
            if self._is_release_call(ast, site, call):
                return PairingOutcome.WEAK
        return PairingOutcome.UNMATCHED

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def analyze(self, ast: ParsedAST, file_path: str) -> list[LeakReport]:
        """Match *ast* and build one scored report per candidate."""
        detected_at = datetime.now(timezone.utc)
        return [
            self.build_report(ast, file_path, candidate, detected_at)
            for candidate in self.match(ast)
        ]

    def analyze_source(
        self,
        source: str,
        file_path: str,
        language: str | None = None,
    ) -> list[LeakReport]:
        """Parse *source* and analyze it.

        Files that contain none of the catalog's acquisition tokens are
        never parsed.

        Raises:
            ValueError: If the language cannot be determined or is
                unsupported.
        """
        tokens = self.catalog.acquisition_tokens(self.categories)
        if not ScopeExtractor.prefilter(source, tokens):
            return []
        if not ScopeExtractor.has_balanced_braces(source):
            logger.debug("Unbalanced braces in %s, relying on error-tolerant parse", file_path)
        language = language or self.engine.language_for_path(file_path)
        ast = self.engine.parse(source, language)
        return self.analyze(ast, file_path)

    def build_report(
        self,
        ast: ParsedAST,
        file_path: str,
        candidate: LeakCandidate,
        detected_at: datetime,
    ) -> LeakReport:
        site = candidate.site
        if site is None:
            raise AnalysisError("Leak candidate has no acquisition site", file_path)
        pattern = site.pattern
        call = site.call

        assessment = self.confidence_model.assess(
            candidate.category, candidate.scope, candidate.weakly_matched
        )
        line = call.line
        column = call.column + 1

        return LeakReport(
            id=report_id(pattern.leak_type.value, file_path, line, column),
            type=pattern.leak_type,
            severity=assessment.severity,
            confidence=assessment.confidence,
            file=file_path,
            line=line,
            column=column,
            description=self._describe(site, candidate),
            suggested_fix=self._suggest(site),
            code_snippet=self._snippet(ast, site),
            requires_manual_review=assessment.requires_manual_review,
            context=self._context(ast, site, candidate),
            metadata=ReportMetadata(
                detected_at=detected_at,
                detection_method=self.detection_method,
                rule_id=pattern.rule_id,
                category=pattern.category,
            ),
        )

    # ------------------------------------------------------------------
    # Pairing helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _hands_back_teardown(site: AcquisitionSite) -> bool:
        """``useEffect(() => store.subscribe(fn))`` returns its own teardown."""
        scope = site.scope
        if site.category is not LeakCategory.SUBSCRIPTION:
            return False
        if scope.kind is not ScopeKind.EFFECT or scope.body.type == "statement_block":
            return False
        return node_key(unwrap(scope.body)) == node_key(site.node)

    def _release_names(self, site: AcquisitionSite) -> frozenset[str]:
        release = site.pattern.release
        if release is None:
            return frozenset()
        paired = release.release_for(site.call.name)
        return frozenset({paired}) if paired else release.names

    def _is_release_call(self, ast: ParsedAST, site: AcquisitionSite, call: CallSite) -> bool:
        if call.is_constructor or call.name not in self._release_names(site):
            return False
        if site.pattern.keyed_by_event and site.event_name is not None:
            if not call.argument_nodes:
                return False
            released_event = string_literal_value(ast, call.argument_nodes[0])
            if released_event is not None and released_event != site.event_name:
                return False
        return True

    def _releases_identity(
        self,
        ast: ParsedAST,
        site: AcquisitionSite,
        call: CallSite,
        identities: frozenset[str],
    ) -> bool:
        release = site.pattern.release
        if release is None:
            return False

        if ReleaseIdentity.CALLEE in release.identities and not call.is_constructor:
            if normalize_reference(call.callee) in identities:
                return True
        if not self._is_release_call(ast, site, call):
            return False
        if ReleaseIdentity.RECEIVER in release.identities and call.receiver is not None:
            if normalize_reference(call.receiver) in identities:
                return True
        if ReleaseIdentity.ARGUMENT in release.identities:
            return any(normalize_reference(arg) in identities for arg in call.arguments)
        return False

    # ------------------------------------------------------------------
    # Report helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _describe(site: AcquisitionSite, candidate: LeakCandidate) -> str:
        scope = site.scope
        if scope.kind is ScopeKind.EFFECT:
            where = f"{scope.hook_name} callback"
            if scope.component_name:
                where += f" in {scope.component_name}"
        elif scope.kind is ScopeKind.LIFECYCLE:
            where = f"{scope.function_name} of {scope.component_name}"
        elif scope.kind is ScopeKind.FUNCTION:
            where = f"function {scope.function_name}" if scope.function_name else "anonymous function"
        else:
            where = "module scope"

        if candidate.weakly_matched:
            problem = "is released in the teardown, but the released instance cannot be verified"
        elif not scope.context.has_teardown_callback:
            problem = "has no teardown callback to release it"
        else:
            problem = "is not released in the teardown callback"
        return f"{site.pattern.name}: `{site.call.callee}` in {where} {problem}."

    @staticmethod
    def _suggest(site: AcquisitionSite) -> str:
        pattern = site.pattern
        call = site.call
        release = pattern.release
        rendered = pattern.render_release(
            site.bound_identifier,
            target=call.receiver,
            event=call.arguments[0] if call.arguments else None,
            release=release.release_for(call.name) if release else None,
        )
        if rendered and not PLACEHOLDER_PATTERN.search(rendered):
            return f"Add `{rendered}` to the teardown callback. {pattern.recommendation}"
        return pattern.recommendation

    @staticmethod
    def _snippet(ast: ParsedAST, site: AcquisitionSite) -> str:
        node = site.statement if site.statement is not None else site.node
        text = ast.get_text(node).strip()
        if len(text) > CODE_SNIPPET_MAX_LENGTH:
            text = text[:CODE_SNIPPET_MAX_LENGTH - 3] + "..."
        return text

    @staticmethod
    def _context(ast: ParsedAST, site: AcquisitionSite, candidate: LeakCandidate) -> LeakContext:
        scope = site.scope
        call = site.call
        release = site.pattern.release

        acquisition = ast.char_span(site.node)
        statement = ast.char_span(site.statement) if site.statement is not None else (None, None)
        statement_is_acquisition = False
        if site.statement is not None:
            expr = site.statement
            if expr.type == "expression_statement":
                expr = next((c for c in expr.named_children if c.type != "comment"), expr)
            statement_is_acquisition = node_key(unwrap(expr)) == node_key(site.node)
        holder = site.node.parent
        while holder is not None and holder.type in TRANSPARENT_NODE_TYPES:
            holder = holder.parent
        acquisition_is_statement = holder is not None and holder.type == "expression_statement"
        binding = ast.char_span(site.binding_node) if site.binding_node is not None else (None, None)

        teardown_body = scope.teardown_body
        teardown = ast.char_span(teardown_body) if teardown_body is not None else (None, None)

        release_name = None
        if release is not None:
            release_name = release.release_for(call.name) or min(release.names, default=None)

        return LeakContext(
            function_name=scope.function_name or scope.context.enclosing_name,
            component_name=scope.component_name,
            hook_name=scope.hook_name,
            variable_name=site.bound_identifier,
            scope_kind=scope.kind.value,
            is_in_effect_hook=candidate.scope.is_in_effect_hook,
            is_in_component=candidate.scope.is_in_component,
            has_teardown_callback=candidate.scope.has_teardown_callback,
            weakly_matched=candidate.weakly_matched,
            acquisition_start=acquisition[0],
            acquisition_end=acquisition[1],
            statement_start=statement[0],
            statement_end=statement[1],
            statement_is_acquisition=statement_is_acquisition,
            acquisition_is_statement=acquisition_is_statement,
            binding_start=binding[0],
            binding_end=binding[1],
            scope_start=ast.char_offset(scope.region[0]),
            scope_end=ast.char_offset(scope.region[1]),
            body_start=ast.char_offset(scope.body.start_byte),
            body_end=ast.char_offset(scope.body.end_byte),
            body_is_block=scope.body.type in ("statement_block", "program"),
            teardown_start=teardown[0],
            teardown_end=teardown[1],
            teardown_is_block=teardown_body is None or teardown_body.type == "statement_block",
            listener_target=call.receiver if site.pattern.binds_handler else None,
            event_argument=call.arguments[0] if site.pattern.keyed_by_event and call.arguments else None,
            event_name=site.event_name,
            release_name=release_name,
        )


def report_id(leak_type: str, file_path: str, line: int, column: int) -> str:
    """Stable report identifier derived from type, file and position."""
    digest = hashlib.sha1(file_path.encode("utf-8")).hexdigest()[:8]
    return f"{leak_type}-{digest}-{line}-{column}"
