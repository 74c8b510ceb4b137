"""Core AST parsing engine for TypeScript and JavaScript analysis.

This module provides a high-level interface around tree-sitter for parsing
TS/JS source code into ASTs and collecting the call sites that the leak
matcher reasons about.

Usage::

    engine = ASTEngine()
    ast = engine.parse("const id = setInterval(tick, 1000);", language="typescript")
    calls = engine.find_calls(ast, function_name="setInterval")
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import PurePath

import tree_sitter as ts
import tree_sitter_javascript as ts_js
import tree_sitter_typescript as ts_ts

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Node type groups
# ---------------------------------------------------------------------------

FUNCTION_NODE_TYPES = frozenset({
    "function_declaration",
    "function_expression",
    "function",
    "arrow_function",
    "method_definition",
    "generator_function_declaration",
    "generator_function",
})

CALL_NODE_TYPES = frozenset({"call_expression", "new_expression"})

JSX_NODE_TYPES = frozenset({
    "jsx_element",
    "jsx_self_closing_element",
    "jsx_fragment",
})

# Expression wrappers that do not change which value flows through them
TRANSPARENT_NODE_TYPES = frozenset({
    "parenthesized_expression",
    "as_expression",
    "satisfies_expression",
    "non_null_expression",
    "await_expression",
    "type_assertion",
})


def node_key(node: ts.Node) -> tuple[int, int, str]:
    """Return a stable identity for *node* within a single tree."""
    return (node.start_byte, node.end_byte, node.type)


def unwrap(node: ts.Node) -> ts.Node:
    """Strip parentheses and type-level wrappers around an expression."""
    while node.type in TRANSPARENT_NODE_TYPES:
        inner = next((c for c in node.children if c.is_named), None)
        if inner is None:
            break
        node = inner
    return node


# ---------------------------------------------------------------------------
# Data classes for structured query results
# ---------------------------------------------------------------------------


@dataclass
class CallSite:
    """A function call, method call or constructor call found in the AST.

    Attributes:
        name: The function/method/constructor name (e.g., ``"setInterval"``).
        arguments: Text representation of each argument.
        line: 1-based line number.
        column: 0-based column offset.
        full_text: Complete source text of the call expression.
        receiver: Object the method is called on, if any.
            For ``window.addEventListener()`` the receiver is ``"window"``.
        callee: Full source text of the callee (``"window.addEventListener"``).
        is_constructor: ``True`` for ``new X(...)`` expressions.
    """

    name: str
    arguments: list[str] = field(default_factory=list)
    line: int = 0
    column: int = 0
    full_text: str = ""
    receiver: str | None = None
    callee: str = ""
    is_constructor: bool = False
    node: ts.Node | None = field(default=None, repr=False, compare=False)
    argument_nodes: list[ts.Node] = field(
        default_factory=list, repr=False, compare=False
    )


# ---------------------------------------------------------------------------
# ParsedAST wrapper
# ---------------------------------------------------------------------------


class ParsedAST:
    """Wrapper around a tree-sitter parse tree with convenience methods.

    tree-sitter reports byte offsets; reports and fixes work on character
    offsets into ``source_code``. ``char_offset``/``byte_offset`` convert
    between the two.

    Attributes:
        tree: The underlying ``tree_sitter.Tree``.
        source_code: Original source string that was parsed.
        language: Language identifier (``"javascript"``, ``"typescript"``,
            or ``"tsx"``).
    """

    __slots__ = ("tree", "source_code", "language", "_source_bytes", "_is_ascii")

    def __init__(
        self,
        tree: ts.Tree,
        source_code: str,
        language: str,
    ) -> None:
        self.tree = tree
        self.source_code = source_code
        self.language = language
        self._source_bytes: bytes = source_code.encode("utf-8")
        self._is_ascii = len(self._source_bytes) == len(source_code)

    @property
    def root_node(self) -> ts.Node:
        """Return the root node of the parse tree."""
        return self.tree.root_node

    @property
    def has_errors(self) -> bool:
        """Return ``True`` if the tree contains any parse errors."""
        return self.tree.root_node.has_error

    def get_text(self, node: ts.Node) -> str:
        """Extract the source text spanned by *node*."""
        return self._source_bytes[node.start_byte:node.end_byte].decode(
            "utf-8", errors="replace"
        )

    def char_offset(self, byte_offset: int) -> int:
        """Convert a tree-sitter byte offset to a ``source_code`` index."""
        if self._is_ascii:
            return byte_offset
        return len(
            self._source_bytes[:byte_offset].decode("utf-8", errors="replace")
        )

    def byte_offset(self, char_offset: int) -> int:
        """Convert a ``source_code`` index to a tree-sitter byte offset."""
        if self._is_ascii:
            return char_offset
        return len(self.source_code[:char_offset].encode("utf-8"))

    def char_span(self, node: ts.Node) -> tuple[int, int]:
        """Return the ``(start, end)`` character span of *node*."""
        return self.char_offset(node.start_byte), self.char_offset(node.end_byte)

    def char_column(self, node: ts.Node) -> int:
        """Return the 0-based character column where *node* starts."""
        if self._is_ascii:
            return node.start_point.column
        line_start = node.start_byte - node.start_point.column
        return self.char_offset(node.start_byte) - self.char_offset(line_start)

    def walk(self, visitor: Callable[[ts.Node, int], bool | None]) -> None:
        """Depth-first walk of the whole AST using a visitor callback.

        The *visitor* is called with ``(node, depth)`` for every node.
        If the visitor returns ``False`` explicitly, the subtree rooted
        at that node is skipped.
        """
        self._walk_recursive(self.tree.root_node, visitor, depth=0)

    def walk_from(
        self,
        node: ts.Node,
        visitor: Callable[[ts.Node, int], bool | None],
    ) -> None:
        """Depth-first walk of the subtree rooted at *node*."""
        self._walk_recursive(node, visitor, depth=0)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _walk_recursive(
        self,
        node: ts.Node,
        visitor: Callable[[ts.Node, int], bool | None],
        depth: int,
    ) -> None:
        result = visitor(node, depth)
        if result is False:
            return
        for child in node.children:
            self._walk_recursive(child, visitor, depth + 1)


# ---------------------------------------------------------------------------
# Supported languages
# ---------------------------------------------------------------------------

_SUPPORTED_LANGUAGES = frozenset({"javascript", "typescript", "tsx"})

_EXTENSION_LANGUAGES = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
}


# ---------------------------------------------------------------------------
# ASTEngine
# ---------------------------------------------------------------------------


class ASTEngine:
    """Core AST parsing engine for TypeScript and JavaScript.

    Initialises tree-sitter ``Language`` objects lazily on first use and
    caches them for the lifetime of the engine instance. Parsing is
    serialized so one engine can be shared by worker threads.

    Example::

        engine = ASTEngine()
        ast = engine.parse(source, language=engine.language_for_path("App.tsx"))
        for call in engine.find_calls(ast):
            print(call.callee, call.line)
    """

    def __init__(self) -> None:
        self._languages: dict[str, ts.Language] = {}
        self._parsers: dict[str, ts.Parser] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Language / parser initialisation
    # ------------------------------------------------------------------

    @staticmethod
    def language_for_path(path: str | PurePath) -> str:
        """Map a file name to the grammar used to parse it.

        Raises:
            ValueError: If the extension is not a JS/TS source extension.
        """
        suffix = PurePath(path).suffix.lower()
        try:
            return _EXTENSION_LANGUAGES[suffix]
        except KeyError:
            raise ValueError(f"Unsupported file extension: {suffix!r}") from None

    def _get_language(self, language: str) -> ts.Language:
        """Return (and cache) the tree-sitter ``Language`` for *language*.

        Raises:
            ValueError: If *language* is not supported.
        """
        if language not in _SUPPORTED_LANGUAGES:
            raise ValueError(
                f"Unsupported language: {language!r}. "
                f"Supported: {', '.join(sorted(_SUPPORTED_LANGUAGES))}"
            )

        if language not in self._languages:
            if language == "javascript":
                self._languages[language] = ts.Language(ts_js.language())
            elif language == "typescript":
                self._languages[language] = ts.Language(
                    ts_ts.language_typescript()
                )
            else:  # tsx
                self._languages[language] = ts.Language(
                    ts_ts.language_tsx()
                )

        return self._languages[language]

    def _get_parser(self, language: str) -> ts.Parser:
        """Return (and cache) a ``Parser`` configured for *language*."""
        if language not in self._parsers:
            lang = self._get_language(language)
            self._parsers[language] = ts.Parser(language=lang)
        return self._parsers[language]

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse(
        self, source_code: str, language: str = "tsx"
    ) -> ParsedAST:
        """Parse *source_code* into a ``ParsedAST``.

        Args:
            source_code: The full file contents to parse.
            language: One of ``"javascript"``, ``"typescript"``, or
                ``"tsx"``.

        Returns:
            A ``ParsedAST`` wrapping the parse tree.

        Raises:
            ValueError: If *language* is not supported.
        """
        with self._lock:
            parser = self._get_parser(language)
            tree = parser.parse(source_code.encode("utf-8"))
        ast = ParsedAST(tree=tree, source_code=source_code, language=language)
        if ast.has_errors:
            logger.debug("Parse tree for %s source contains errors", language)
        return ast

    # ------------------------------------------------------------------
    # Structured finders
    # ------------------------------------------------------------------

    def find_calls(
        self,
        ast: ParsedAST,
        root: ts.Node | None = None,
        function_name: str | None = None,
    ) -> list[CallSite]:
        """Find calls and constructor invocations in the AST.

        Args:
            ast: A previously parsed AST.
            root: Restrict the search to the subtree under this node.
            function_name: If given, only return calls whose name matches
                this value exactly.

        Returns:
            A list of ``CallSite`` objects in source order.
        """
        calls: list[CallSite] = []

        def _visitor(node: ts.Node, _depth: int) -> None:
            if node.type in CALL_NODE_TYPES:
                call = self.call_site(ast, node)
                if call is not None:
                    calls.append(call)

        ast.walk_from(root if root is not None else ast.root_node, _visitor)

        if function_name is not None:
            calls = [c for c in calls if c.name == function_name]

        return calls

    def call_site(self, ast: ParsedAST, node: ts.Node) -> CallSite | None:
        """Describe a ``call_expression`` or ``new_expression`` node.

        Returns ``None`` for other node types and for calls without a
        callee (which only occur in error-recovered trees).
        """
        if node.type == "call_expression":
            fn_node = node.child_by_field_name("function")
            is_constructor = False
        elif node.type == "new_expression":
            fn_node = node.child_by_field_name("constructor")
            is_constructor = True
        else:
            return None

        if fn_node is None:
            return None

        name: str
        receiver: str | None = None

        if fn_node.type == "member_expression":
            prop = fn_node.child_by_field_name("property")
            obj = fn_node.child_by_field_name("object")
            name = ast.get_text(prop) if prop else ast.get_text(fn_node)
            receiver = ast.get_text(obj) if obj else None
        else:
            # Identifiers, and e.g. immediately invoked function expressions
            name = ast.get_text(fn_node)

        argument_nodes: list[ts.Node] = []
        args_node = node.child_by_field_name("arguments")
        if args_node is not None:
            # Skip punctuation (parentheses, commas) and comments
            argument_nodes = [
                child for child in args_node.children
                if child.is_named and child.type != "comment"
            ]

        return CallSite(
            name=name,
            arguments=[ast.get_text(child) for child in argument_nodes],
            line=node.start_point.row + 1,
            column=ast.char_column(node),
            full_text=ast.get_text(node),
            receiver=receiver,
            callee=ast.get_text(fn_node),
            is_constructor=is_constructor,
            node=node,
            argument_nodes=argument_nodes,
        )
