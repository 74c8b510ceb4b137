"""Lexical scope discovery for leak matching.

Two layers live here:

- A brace/string scanner (``ScopeExtractor.extract_block`` and
  ``has_balanced_braces``). It never parses; it is used as a cheap
  prefilter before parsing and to validate generated fixes.
- AST scope frames. Every function-like node becomes a ``ScopeFrame``
  classified as a plain function, an effect-hook callback, the teardown
  callback returned from one, or a class-component lifecycle method.
  ``scope_for_frame`` turns the frame that owns an acquisition into an
  ``AnalysisScope`` carrying its immutable ``ScopeContext``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, replace
from enum import Enum

import tree_sitter as ts

from .ast_engine import (
    FUNCTION_NODE_TYPES,
    JSX_NODE_TYPES,
    TRANSPARENT_NODE_TYPES,
    ASTEngine,
    ParsedAST,
    node_key,
    unwrap,
)

# useEffect, useLayoutEffect, useInsertionEffect and custom use*Effect hooks
EFFECT_HOOK_PATTERN = re.compile(r"^use\w*Effect$")

COMPONENT_BASE_PATTERN = re.compile(r"\b(?:Pure)?Component\b")

# Wrapper calls whose callback is the component itself
COMPONENT_WRAPPERS = frozenset({"memo", "forwardRef", "observer"})

LIFECYCLE_MOUNT = "componentDidMount"
LIFECYCLE_UNMOUNT = "componentWillUnmount"

_QUOTES = frozenset("'\"`")


# ---------------------------------------------------------------------------
# Scope data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScopeContext:
    """Lexical facts about the scope that owns an acquisition.

    Attributes:
        is_in_effect_hook: The scope is an effect-hook callback.
        is_in_component: The scope is, or is nested in, a UI component.
        has_teardown_callback: The scope declares a teardown callback.
        bound_identifier: Identifier the acquisition is bound to, if any.
        enclosing_name: Nearest named enclosing function.
    """

    is_in_effect_hook: bool = False
    is_in_component: bool = False
    has_teardown_callback: bool = False
    bound_identifier: str | None = None
    enclosing_name: str | None = None

    def with_binding(self, identifier: str | None) -> ScopeContext:
        return replace(self, bound_identifier=identifier)


class ScopeKind(str, Enum):
    MODULE = "module"
    FUNCTION = "function"
    EFFECT = "effect"
    TEARDOWN = "teardown"
    LIFECYCLE = "lifecycle"


@dataclass
class ScopeFrame:
    """One entry of the visitor's scope stack."""

    node: ts.Node
    kind: ScopeKind
    name: str | None = None
    in_component: bool = False
    component_name: str | None = None
    hook_name: str | None = None
    teardown: ts.Node | None = None
    parent: ScopeFrame | None = None

    @property
    def enclosing_name(self) -> str | None:
        frame: ScopeFrame | None = self
        while frame is not None:
            if frame.name:
                return frame.name
            frame = frame.parent
        return None


@dataclass(frozen=True, eq=False)
class AnalysisScope:
    """The scope that owns acquisitions, with its teardown sub-scope.

    Attributes:
        kind: Frame kind of the owning scope.
        node: Function node (or the program node for module scope).
        body: Body node; a ``statement_block`` or a concise expression.
        teardown: Teardown function node, if any.
        context: Immutable scope facts shared by every acquisition.
        region: Byte span a fix may rewrite.
    """

    kind: ScopeKind
    node: ts.Node
    body: ts.Node
    teardown: ts.Node | None
    context: ScopeContext
    hook_name: str | None
    component_name: str | None
    function_name: str | None
    region: tuple[int, int]

    @property
    def teardown_body(self) -> ts.Node | None:
        if self.teardown is None:
            return None
        return self.teardown.child_by_field_name("body")


@dataclass(frozen=True)
class BlockExtraction:
    """A balanced ``{...}`` block found by the brace scanner.

    Attributes:
        content: Text between the opening and the matching closing brace.
        start: Offset of the opening brace.
        end_offset: Offset just past the closing brace.
    """

    content: str
    start: int
    end_offset: int


# ---------------------------------------------------------------------------
# Node helpers
# ---------------------------------------------------------------------------


def first_named_child(node: ts.Node) -> ts.Node | None:
    return next(
        (c for c in node.children if c.is_named and c.type != "comment"), None
    )


def callee_name(ast: ParsedAST, call: ts.Node) -> str:
    """Last segment of a call's callee (``useEffect`` for ``React.useEffect``)."""
    fn = call.child_by_field_name("function")
    if fn is None:
        return ""
    if fn.type == "member_expression":
        prop = fn.child_by_field_name("property")
        if prop is not None:
            return ast.get_text(prop)
    return ast.get_text(fn)


def function_name(ast: ParsedAST, node: ts.Node) -> str | None:
    """Resolve the name a function or class is known by.

    Uses the declared name when there is one, otherwise the variable,
    property or field it is assigned to, looking through component
    wrapper calls such as ``memo(...)``.
    """
    name_node = node.child_by_field_name("name")
    if name_node is not None:
        return ast.get_text(name_node)

    parent = node.parent
    while parent is not None:
        if parent.type in TRANSPARENT_NODE_TYPES:
            parent = parent.parent
            continue
        if parent.type == "variable_declarator":
            target = parent.child_by_field_name("name")
            if target is not None and target.type == "identifier":
                return ast.get_text(target)
            return None
        if parent.type == "assignment_expression":
            left = parent.child_by_field_name("left")
            return ast.get_text(left) if left is not None else None
        if parent.type == "pair":
            key = parent.child_by_field_name("key")
            return ast.get_text(key) if key is not None else None
        if parent.type in ("public_field_definition", "field_definition"):
            key = parent.child_by_field_name("name") or parent.child_by_field_name("property")
            return ast.get_text(key) if key is not None else None
        if parent.type == "arguments":
            call = parent.parent
            if (
                call is not None
                and call.type == "call_expression"
                and callee_name(ast, call) in COMPONENT_WRAPPERS
            ):
                parent = call.parent
                continue
        return None
    return None


def own_returns(ast: ParsedAST, body: ts.Node) -> list[ts.Node]:
    """Return statements of *body*, excluding those of nested functions."""
    found: list[ts.Node] = []
    root = node_key(body)

    def _visitor(node: ts.Node, _depth: int) -> bool | None:
        if node.type in FUNCTION_NODE_TYPES and node_key(node) != root:
            return False
        if node.type == "return_statement":
            found.append(node)
            return False
        return None

    ast.walk_from(body, _visitor)
    return found


def _local_functions(ast: ParsedAST, body: ts.Node) -> dict[str, ts.Node]:
    """Functions declared directly in *body*, by name."""
    local: dict[str, ts.Node] = {}
    for statement in body.named_children:
        if statement.type in ("function_declaration", "generator_function_declaration"):
            name = statement.child_by_field_name("name")
            if name is not None:
                local[ast.get_text(name)] = statement
        elif statement.type in ("lexical_declaration", "variable_declaration"):
            for declarator in statement.named_children:
                if declarator.type != "variable_declarator":
                    continue
                name = declarator.child_by_field_name("name")
                value = declarator.child_by_field_name("value")
                if name is None or value is None or name.type != "identifier":
                    continue
                value = unwrap(value)
                if value.type in FUNCTION_NODE_TYPES:
                    local[ast.get_text(name)] = value
    return local


def find_teardown(ast: ParsedAST, fn: ts.Node) -> ts.Node | None:
    """Return the function node *fn* hands back as its teardown callback."""
    body = fn.child_by_field_name("body")
    if body is None:
        return None
    if body.type != "statement_block":
        expr = unwrap(body)
        return expr if expr.type in FUNCTION_NODE_TYPES else None

    local = _local_functions(ast, body)
    for statement in own_returns(ast, body):
        arg = first_named_child(statement)
        if arg is None:
            continue
        arg = unwrap(arg)
        if arg.type in FUNCTION_NODE_TYPES:
            return arg
        if arg.type == "identifier" and ast.get_text(arg) in local:
            return local[ast.get_text(arg)]
    return None


def effect_hook_name(ast: ParsedAST, fn: ts.Node) -> str | None:
    """Name of the effect hook *fn* is passed to as its callback, if any."""
    if fn.type not in ("arrow_function", "function_expression", "function"):
        return None
    outer, parent = fn, fn.parent
    while parent is not None and parent.type in TRANSPARENT_NODE_TYPES:
        outer, parent = parent, parent.parent
    if parent is None or parent.type != "arguments":
        return None
    first = first_named_child(parent)
    if first is None or node_key(first) != node_key(outer):
        return None
    call = parent.parent
    if call is None or call.type != "call_expression":
        return None
    name = callee_name(ast, call)
    return name if EFFECT_HOOK_PATTERN.match(name) else None


def returns_markup(ast: ParsedAST, fn: ts.Node) -> bool:
    body = fn.child_by_field_name("body")
    if body is None:
        return False
    if body.type != "statement_block":
        return unwrap(body).type in JSX_NODE_TYPES
    for statement in own_returns(ast, body):
        arg = first_named_child(statement)
        if arg is not None and unwrap(arg).type in JSX_NODE_TYPES:
            return True
    return False


def class_component_name(ast: ParsedAST, fn: ts.Node) -> str | None:
    """Class name when *fn* is a method or field of a component class."""
    holder = fn
    if fn.type != "method_definition":
        parent = fn.parent
        if parent is None or parent.type not in ("public_field_definition", "field_definition"):
            return None
        holder = parent
    class_body = holder.parent
    if class_body is None or class_body.type != "class_body":
        return None
    cls = class_body.parent
    if cls is None:
        return None
    heritage = next((c for c in cls.children if c.type == "class_heritage"), None)
    if heritage is None or not COMPONENT_BASE_PATTERN.search(ast.get_text(heritage)):
        return None
    return function_name(ast, cls) or "Component"


def is_component_function(ast: ParsedAST, fn: ts.Node, name: str | None) -> bool:
    if name:
        last = name.rsplit(".", 1)[-1]
        if last[:1].isupper():
            return True
    return returns_markup(ast, fn)


def _lifecycle_teardown(ast: ParsedAST, fn: ts.Node) -> ts.Node | None:
    class_body = fn.parent
    if class_body is None:
        return None
    for member in class_body.named_children:
        if member.type != "method_definition":
            continue
        name = member.child_by_field_name("name")
        if name is not None and ast.get_text(name) == LIFECYCLE_UNMOUNT:
            return member
    return None


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


def build_frame(
    ast: ParsedAST, node: ts.Node, parent: ScopeFrame | None
) -> ScopeFrame:
    """Classify *node* and create its frame on top of *parent*."""
    if node.type == "program":
        return ScopeFrame(node=node, kind=ScopeKind.MODULE)

    inherited_component = parent.in_component if parent else False
    inherited_name = parent.component_name if parent else None
    name = function_name(ast, node)

    if (
        parent is not None
        and parent.teardown is not None
        and node_key(node) == node_key(parent.teardown)
    ):
        return ScopeFrame(
            node=node,
            kind=ScopeKind.TEARDOWN,
            name=name,
            in_component=inherited_component,
            component_name=inherited_name,
            parent=parent,
        )

    hook = effect_hook_name(ast, node)
    if hook is not None:
        return ScopeFrame(
            node=node,
            kind=ScopeKind.EFFECT,
            name=name,
            in_component=inherited_component,
            component_name=inherited_name,
            hook_name=hook,
            teardown=find_teardown(ast, node),
            parent=parent,
        )

    class_name = class_component_name(ast, node)
    own_component = class_name is not None or is_component_function(ast, node, name)
    if class_name is not None:
        component_name = class_name
    elif own_component:
        component_name = name
    else:
        component_name = inherited_name

    if node.type == "method_definition" and name == LIFECYCLE_MOUNT and class_name:
        return ScopeFrame(
            node=node,
            kind=ScopeKind.LIFECYCLE,
            name=name,
            in_component=True,
            component_name=component_name,
            teardown=_lifecycle_teardown(ast, node),
            parent=parent,
        )

    return ScopeFrame(
        node=node,
        kind=ScopeKind.FUNCTION,
        name=name,
        in_component=own_component or inherited_component,
        component_name=component_name,
        teardown=find_teardown(ast, node),
        parent=parent,
    )


def frame_for_node(ast: ParsedAST, node: ts.Node) -> ScopeFrame:
    """Build the frame of *node* together with all of its ancestor frames."""
    chain: list[ts.Node] = []
    current: ts.Node | None = node
    while current is not None:
        if current.type in FUNCTION_NODE_TYPES:
            chain.append(current)
        current = current.parent

    frame = build_frame(ast, ast.root_node, None)
    for fn in reversed(chain):
        frame = build_frame(ast, fn, frame)
    return frame


def owning_frame(frame: ScopeFrame) -> ScopeFrame | None:
    """Frame that owns acquisitions made while *frame* is on top of the stack.

    The nearest effect or lifecycle frame wins, then the nearest function,
    then the module. Returns ``None`` inside a teardown callback.
    """
    nearest_function: ScopeFrame | None = None
    current: ScopeFrame | None = frame
    while current is not None:
        if current.kind is ScopeKind.TEARDOWN:
            return None
        if current.kind in (ScopeKind.EFFECT, ScopeKind.LIFECYCLE):
            return current
        if current.kind is ScopeKind.FUNCTION and nearest_function is None:
            nearest_function = current
        if current.kind is ScopeKind.MODULE:
            return nearest_function or current
        current = current.parent
    return nearest_function


def scope_for_frame(frame: ScopeFrame) -> AnalysisScope:
    node = frame.node
    if frame.kind is ScopeKind.MODULE:
        body = node
    else:
        body = node.child_by_field_name("body") or node

    region = (node.start_byte, node.end_byte)
    if frame.kind is ScopeKind.LIFECYCLE and frame.teardown is not None:
        region = (
            min(node.start_byte, frame.teardown.start_byte),
            max(node.end_byte, frame.teardown.end_byte),
        )

    context = ScopeContext(
        is_in_effect_hook=frame.kind is ScopeKind.EFFECT,
        is_in_component=frame.in_component,
        has_teardown_callback=frame.teardown is not None,
        enclosing_name=frame.enclosing_name,
    )
    return AnalysisScope(
        kind=frame.kind,
        node=node,
        body=body,
        teardown=frame.teardown,
        context=context,
        hook_name=frame.hook_name,
        component_name=frame.component_name,
        function_name=frame.name,
        region=region,
    )


# ---------------------------------------------------------------------------
# Text scanner
# ---------------------------------------------------------------------------


def _structural_braces(text: str, start: int = 0) -> Iterator[tuple[int, str]]:
    """Yield ``(offset, brace)`` for braces outside strings and comments."""
    quote: str | None = None
    i = max(start, 0)
    n = len(text)
    while i < n:
        ch = text[i]
        if quote is not None:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue
        if ch in _QUOTES:
            quote = ch
        elif ch == "/" and text.startswith("//", i):
            newline = text.find("\n", i)
            i = n if newline == -1 else newline
            continue
        elif ch == "/" and text.startswith("/*", i):
            close = text.find("*/", i + 2)
            i = n if close == -1 else close + 2
            continue
        elif ch == "{" or ch == "}":
            yield i, ch
        i += 1


class ScopeExtractor:
    """Extracts callback blocks from source text and classifies their scope.

    Example::

        extractor = ScopeExtractor()
        block = extractor.extract_block(code, code.index("useEffect"))
        context = extractor.classify(code, block.start)
    """

    def __init__(self, engine: ASTEngine | None = None) -> None:
        self._engine = engine or ASTEngine()

    @staticmethod
    def extract_block(text: str, start_offset: int) -> BlockExtraction | None:
        """Return the first balanced block opening at or after *start_offset*.

        Returns ``None`` when no block opens or the text ends before the
        block closes.
        """
        depth = 0
        opened_at: int | None = None
        for offset, brace in _structural_braces(text, start_offset):
            if brace == "{":
                if opened_at is None:
                    opened_at = offset
                depth += 1
                continue
            if opened_at is None:
                continue
            depth -= 1
            if depth == 0:
                return BlockExtraction(
                    content=text[opened_at + 1:offset],
                    start=opened_at,
                    end_offset=offset + 1,
                )
        return None

    @staticmethod
    def has_balanced_braces(text: str) -> bool:
        depth = 0
        for _offset, brace in _structural_braces(text):
            depth += 1 if brace == "{" else -1
            if depth < 0:
                return False
        return depth == 0

    @staticmethod
    def brace_depth(text: str) -> int:
        """Net count of structural opening minus closing braces."""
        return sum(1 if brace == "{" else -1 for _offset, brace in _structural_braces(text))

    @staticmethod
    def preserves_brace_balance(original: str, edited: str) -> bool:
        """Whether an edit of *original* leaves its brace structure intact.

        Quotes the scanner cannot tell from string delimiters (apostrophes
        in JSX text, quotes inside regex literals) make it misread both
        texts alike, so only a change relative to *original* is an error.
        """
        if ScopeExtractor.has_balanced_braces(edited):
            return True
        if ScopeExtractor.has_balanced_braces(original):
            return False
        return ScopeExtractor.brace_depth(edited) == ScopeExtractor.brace_depth(original)

    @staticmethod
    def prefilter(text: str, tokens: Iterable[str]) -> bool:
        """Cheap check that *text* may contain an acquisition at all."""
        return any(token in text for token in tokens)

    def classify(self, text: str, block_start: int, language: str = "tsx") -> ScopeContext:
        """Classify the function whose body opens at or after *block_start*."""
        located = self._frame_at(text, block_start, language)
        if located is None:
            return ScopeContext()
        return scope_for_frame(located[1]).context

    def teardown_scope(
        self, text: str, block_start: int, language: str = "tsx"
    ) -> str | None:
        """Content of the teardown callback returned from the block at *block_start*."""
        located = self._frame_at(text, block_start, language)
        if located is None or located[1].teardown is None:
            return None
        ast, frame = located
        body = frame.teardown.child_by_field_name("body")
        if body is None:
            return None
        body_text = ast.get_text(body)
        if body.type == "statement_block":
            block = self.extract_block(body_text, 0)
            return block.content if block is not None else None
        return body_text

    def _frame_at(
        self, text: str, block_start: int, language: str
    ) -> tuple[ParsedAST, ScopeFrame] | None:
        block = self.extract_block(text, block_start)
        if block is None:
            return None
        ast = self._engine.parse(text, language)
        brace_byte = ast.byte_offset(block.start)
        found: list[ts.Node] = []

        def _visitor(node: ts.Node, _depth: int) -> bool | None:
            if found:
                return False
            if node.type in FUNCTION_NODE_TYPES:
                body = node.child_by_field_name("body")
                if body is not None and body.start_byte == brace_byte:
                    found.append(node)
                    return False
            return None

        ast.walk(_visitor)
        if not found:
            return None
        return ast, frame_for_node(ast, found[0])
