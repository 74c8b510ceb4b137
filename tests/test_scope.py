"""Tests for the brace scanner and scope classification."""

import pytest

from leakwatch.analysis.scope import ScopeExtractor

CLOCK_COMPONENT = """\
function Clock() {
  useEffect(() => {
    const id = setInterval(tick, 1000);
    return () => clearInterval(id);
  }, []);
  return <div />;
}
"""


class TestExtractBlock:
    def test_returns_balanced_block(self):
        text = "useEffect(() => { if (a) { b(); } }, [])"
        block = ScopeExtractor.extract_block(text, 0)

        assert block is not None
        assert block.content == " if (a) { b(); } "
        assert text[block.start] == "{"
        assert text[block.end_offset - 1] == "}"
        assert block.end_offset == text.index(", [])")

    def test_starts_at_first_brace_after_offset(self):
        text = "a({ x: 1 }); b(() => { run(); });"
        block = ScopeExtractor.extract_block(text, text.index("b("))

        assert block is not None
        assert block.content == " run(); "

    def test_ignores_braces_in_strings(self):
        text = "f(() => { const s = '}'; const t = \"{\"; })"
        block = ScopeExtractor.extract_block(text, 0)

        assert block is not None
        assert block.content == " const s = '}'; const t = \"{\"; "

    def test_ignores_braces_in_template_literals(self):
        text = "f(() => { const s = `}`; })"
        block = ScopeExtractor.extract_block(text, 0)

        assert block is not None
        assert block.content == " const s = `}`; "

    def test_skips_escaped_quotes(self):
        text = "f(() => { const s = 'it\\'s }'; done(); })"
        block = ScopeExtractor.extract_block(text, 0)

        assert block is not None
        assert block.content.strip().endswith("done();")

    def test_unterminated_block_returns_none(self):
        assert ScopeExtractor.extract_block("f(() => { a(); ", 0) is None

    def test_no_block_returns_none(self):
        assert ScopeExtractor.extract_block("const a = 1;", 0) is None


class TestBalancedBraces:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("{ { } }", True),
            ("", True),
            ("{ '}' }", True),
            ("{ '}'", False),
            ("} {", False),
            ("{ {", False),
        ],
    )
    def test_balance(self, text, expected):
        assert ScopeExtractor.has_balanced_braces(text) is expected

    @pytest.mark.parametrize(
        "original,edited,expected",
        [
            ("{ a(); }", "{ a(); b(); }", True),
            ("{ a(); }", "{ a(); { b(); }", False),
            ("<p>Don't {x}</p>", "// note\n<p>Don't {x}</p>", True),
            ("{ const q = /'/g; }", "{ const q = /'/g; return () => {}; }", True),
            ("{ const q = /'/g; }", "{ { const q = /'/g; }", False),
        ],
    )
    def test_preserves_brace_balance(self, original, edited, expected):
        assert ScopeExtractor.preserves_brace_balance(original, edited) is expected


class TestPrefilter:
    def test_detects_token(self):
        assert ScopeExtractor.prefilter("setInterval(f, 10)", {"setInterval"})

    def test_rejects_source_without_tokens(self):
        assert not ScopeExtractor.prefilter("const a = 1;", {"setInterval", ".subscribe("})


class TestClassify:
    @pytest.fixture
    def extractor(self):
        return ScopeExtractor()

    def test_effect_inside_component(self, extractor):
        context = extractor.classify(CLOCK_COMPONENT, CLOCK_COMPONENT.index("useEffect"))

        assert context.is_in_effect_hook is True
        assert context.is_in_component is True
        assert context.has_teardown_callback is True

    def test_effect_without_teardown(self, extractor):
        code = "useEffect(() => {\n  const id = setInterval(tick, 1000);\n}, []);\n"
        context = extractor.classify(code, 0)

        assert context.is_in_effect_hook is True
        assert context.has_teardown_callback is False

    def test_plain_function(self, extractor):
        code = "function poll() {\n  setInterval(tick, 1000);\n}\n"
        context = extractor.classify(code, 0)

        assert context.is_in_effect_hook is False
        assert context.is_in_component is False
        assert context.has_teardown_callback is False

    def test_component_by_markup_return(self, extractor):
        code = "const panel = () => {\n  return <section />;\n};\n"
        context = extractor.classify(code, 0)

        assert context.is_in_component is True

    def test_no_function_at_offset(self, extractor):
        context = extractor.classify("const a = { b: 1 };", 0)

        assert context.is_in_effect_hook is False
        assert context.has_teardown_callback is False

    def test_classification_is_immutable(self, extractor):
        context = extractor.classify(CLOCK_COMPONENT, CLOCK_COMPONENT.index("useEffect"))
        with pytest.raises(AttributeError):
            context.is_in_component = False

    def test_teardown_scope_concise(self, extractor):
        teardown = extractor.teardown_scope(CLOCK_COMPONENT, CLOCK_COMPONENT.index("useEffect"))

        assert teardown == "clearInterval(id)"

    def test_teardown_scope_block(self, extractor):
        code = (
            "useEffect(() => {\n"
            "  const ws = new WebSocket(url);\n"
            "  return () => {\n"
            "    ws.close();\n"
            "  };\n"
            "}, []);\n"
        )
        teardown = extractor.teardown_scope(code, 0)

        assert teardown is not None
        assert teardown.strip() == "ws.close();"

    def test_teardown_scope_missing(self, extractor):
        code = "useEffect(() => {\n  start();\n}, []);\n"
        assert extractor.teardown_scope(code, 0) is None
