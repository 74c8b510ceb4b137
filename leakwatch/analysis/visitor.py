"""AST visitor that collects resource acquisitions with their owning scope.

``ScopeVisitor`` walks the tree once, dispatching on node kind and keeping
an explicit stack of ``ScopeFrame`` objects. Every call or constructor that
matches a catalog row becomes an ``AcquisitionSite`` attached to the
``AnalysisScope`` that owns it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

import tree_sitter as ts

from ..core.exceptions import AnalysisError
from .ast_engine import (
    FUNCTION_NODE_TYPES,
    TRANSPARENT_NODE_TYPES,
    ASTEngine,
    CallSite,
    ParsedAST,
    node_key,
    unwrap,
)
from .patterns import LeakCategory, LeakPattern, PatternCatalog
from .scope import (
    AnalysisScope,
    ScopeFrame,
    ScopeKind,
    build_frame,
    owning_frame,
    scope_for_frame,
)

logger = logging.getLogger(__name__)

_BLOCK_BODY_TYPES = frozenset({"statement_block", "program", "class_body"})


def normalize_reference(text: str) -> str:
    """Canonical form of an identifier or member chain used for pairing."""
    compact = "".join(text.split()).replace("?.", ".")
    while compact.endswith("!"):
        compact = compact[:-1]
    while compact.startswith("(") and compact.endswith(")"):
        compact = compact[1:-1]
    return compact


def string_literal_value(ast: ParsedAST, node: ts.Node) -> str | None:
    if node.type != "string":
        return None
    text = ast.get_text(node)
    return text[1:-1] if len(text) >= 2 else None


@dataclass
class AcquisitionSite:
    """A matched acquisition and everything needed to pair it.

    Attributes:
        call: The acquisition call.
        pattern: Catalog row the call matched.
        scope: Scope that owns the acquisition.
        bound_identifier: Identity of the acquired resource, if bound.
        aliases: Other references the identity was copied to.
        statement: Statement of the owning body containing the call, or
            the concise arrow body itself.
        binding_node: Node a fix captures when the acquisition is unbound.
        event_name: Literal event name for listener registrations.
    """

    call: CallSite
    pattern: LeakPattern
    scope: AnalysisScope
    bound_identifier: str | None = None
    aliases: frozenset[str] = field(default_factory=frozenset)
    statement: ts.Node | None = None
    binding_node: ts.Node | None = None
    event_name: str | None = None

    @property
    def category(self) -> LeakCategory:
        return self.pattern.category

    @property
    def node(self) -> ts.Node:
        if self.call.node is None:
            raise AnalysisError(f"Acquisition {self.call.callee} has no syntax node")
        return self.call.node

    @property
    def identities(self) -> frozenset[str]:
        if self.bound_identifier is None:
            return frozenset()
        return self.aliases | {normalize_reference(self.bound_identifier)}


class ScopeVisitor:
    """Collects ``AcquisitionSite`` objects from one parsed file."""

    def __init__(
        self,
        ast: ParsedAST,
        catalog: PatternCatalog,
        engine: ASTEngine,
        categories: frozenset[LeakCategory] | None = None,
    ) -> None:
        self._ast = ast
        self._catalog = catalog
        self._engine = engine
        self._categories = categories
        self._stack: list[ScopeFrame] = []
        self._scopes: dict[tuple[int, int, str], AnalysisScope] = {}
        self._sites: list[AcquisitionSite] = []

        self._dispatch: dict[str, Callable[[ts.Node], None]] = {
            "program": self._visit_program,
            "call_expression": self._visit_call,
            "new_expression": self._visit_call,
        }
        for node_type in FUNCTION_NODE_TYPES:
            self._dispatch[node_type] = self._visit_function

    def visit(self) -> list[AcquisitionSite]:
        self._visit(self._ast.root_node)
        return self._sites

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _visit(self, node: ts.Node) -> None:
        handler = self._dispatch.get(node.type, self._visit_children)
        handler(node)

    def _visit_children(self, node: ts.Node) -> None:
        for child in node.children:
            self._visit(child)

    def _visit_program(self, node: ts.Node) -> None:
        self._stack.append(build_frame(self._ast, node, None))
        try:
            self._visit_children(node)
        finally:
            self._stack.pop()

    def _visit_function(self, node: ts.Node) -> None:
        parent = self._stack[-1] if self._stack else None
        self._stack.append(build_frame(self._ast, node, parent))
        try:
            self._visit_children(node)
        finally:
            self._stack.pop()

    def _visit_call(self, node: ts.Node) -> None:
        self._record(node)
        self._visit_children(node)

    # ------------------------------------------------------------------
    # Acquisitions
    # ------------------------------------------------------------------

    def _record(self, node: ts.Node) -> None:
        call = self._engine.call_site(self._ast, node)
        if call is None:
            return
        pattern = self._catalog.match_acquisition(call, self._categories)
        if pattern is None or not self._stack:
            return

        owner = owning_frame(self._stack[-1])
        if owner is None:
            # Acquisitions inside a teardown callback are not tracked
            return
        if pattern.effect_hook_only and owner.kind is not ScopeKind.EFFECT:
            return

        scope = self._scope_for(owner)
        binding_node, bound = self._binding(node, call, pattern)
        aliases = self._aliases(scope, bound) if bound else frozenset()

        event_name = None
        if pattern.keyed_by_event and call.argument_nodes:
            event_name = string_literal_value(self._ast, call.argument_nodes[0])

        self._sites.append(
            AcquisitionSite(
                call=call,
                pattern=pattern,
                scope=scope,
                bound_identifier=bound,
                aliases=aliases,
                statement=self._statement_of(node, scope),
                binding_node=binding_node,
                event_name=event_name,
            )
        )

    def _scope_for(self, frame: ScopeFrame) -> AnalysisScope:
        key = node_key(frame.node)
        scope = self._scopes.get(key)
        if scope is None:
            scope = scope_for_frame(frame)
            self._scopes[key] = scope
        return scope

    def _binding(
        self, node: ts.Node, call: CallSite, pattern: LeakPattern
    ) -> tuple[ts.Node, str | None]:
        """Return the node identifying the resource and its bound name."""
        if pattern.binds_handler:
            if len(call.argument_nodes) < 2:
                return node, None
            handler = call.argument_nodes[1]
            target = unwrap(handler)
            if target.type in ("identifier", "member_expression"):
                return handler, self._ast.get_text(target)
            return handler, None

        outer, parent = node, node.parent
        while parent is not None and parent.type in TRANSPARENT_NODE_TYPES:
            outer, parent = parent, parent.parent
        if parent is None:
            return node, None

        if parent.type == "variable_declarator":
            value = parent.child_by_field_name("value")
            name = parent.child_by_field_name("name")
            if (
                value is not None
                and node_key(value) == node_key(outer)
                and name is not None
                and name.type == "identifier"
            ):
                return node, self._ast.get_text(name)
        elif parent.type == "assignment_expression":
            right = parent.child_by_field_name("right")
            left = parent.child_by_field_name("left")
            if right is not None and left is not None and node_key(right) == node_key(outer):
                return node, self._ast.get_text(left)
        return node, None

    def _aliases(self, scope: AnalysisScope, bound: str) -> frozenset[str]:
        """References the bound identity is copied to within the scope."""
        identity = normalize_reference(bound)
        aliases: set[str] = set()

        def _visitor(node: ts.Node, _depth: int) -> None:
            if node.type == "assignment_expression":
                left = node.child_by_field_name("left")
                right = node.child_by_field_name("right")
            elif node.type == "variable_declarator":
                left = node.child_by_field_name("name")
                right = node.child_by_field_name("value")
            else:
                return
            if left is None or right is None:
                return
            if normalize_reference(self._ast.get_text(unwrap(right))) == identity:
                aliases.add(normalize_reference(self._ast.get_text(left)))

        self._ast.walk_from(scope.body, _visitor)
        aliases.discard(identity)
        return frozenset(aliases)

    @staticmethod
    def _statement_of(node: ts.Node, scope: AnalysisScope) -> ts.Node | None:
        """Statement of the owning body that contains *node*.

        A concise arrow body of the owning scope stands in for the
        statement.
        """
        body_key = node_key(scope.body)
        current: ts.Node | None = node
        while current is not None:
            if node_key(current) == body_key:
                return current if scope.body.type not in _BLOCK_BODY_TYPES else None
            parent = current.parent
            if parent is not None and node_key(parent) == body_key:
                return current
            current = parent
        return None
