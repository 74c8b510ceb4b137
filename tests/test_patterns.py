"""Tests for the leak pattern catalog."""

import pytest

from leakwatch.analysis.matcher import LeakMatcher
from leakwatch.analysis.patterns import (
    DEFAULT_CATALOG,
    PLACEHOLDER_PATTERN,
    LeakCategory,
    LeakType,
    Severity,
    get_pattern,
    severity_at_least,
)

STATIC = DEFAULT_CATALOG.static_patterns()

POSITIVE = [
    pytest.param(pattern, example, id=f"{pattern.rule_id}-{i}")
    for pattern in STATIC
    for i, example in enumerate(pattern.positive_examples)
]
NEGATIVE = [
    pytest.param(pattern, example, id=f"{pattern.rule_id}-{i}")
    for pattern in STATIC
    for i, example in enumerate(pattern.negative_examples)
]


class TestCatalog:
    def test_rule_ids_are_unique(self):
        rule_ids = [p.rule_id for p in DEFAULT_CATALOG]
        assert len(rule_ids) == len(set(rule_ids))

    def test_every_category_has_one_row(self):
        categories = [p.category for p in DEFAULT_CATALOG]
        assert sorted(categories) == sorted(LeakCategory)

    def test_lookup_by_type_and_rule(self):
        pattern = DEFAULT_CATALOG.for_type(LeakType.UNCLEANED_INTERVAL)
        assert pattern.category is LeakCategory.INTERVAL
        assert DEFAULT_CATALOG.for_rule(pattern.rule_id) is pattern
        assert DEFAULT_CATALOG.for_rule("LEAK-999") is None
        assert get_pattern(LeakCategory.INTERVAL) is pattern

    def test_runtime_rows_have_no_acquisitions(self):
        runtime = [p for p in DEFAULT_CATALOG if p.is_runtime_only]
        assert {p.category for p in runtime} == {
            LeakCategory.MEMORY_ACCUMULATION,
            LeakCategory.CIRCULAR_REFERENCE,
        }
        assert get_pattern(LeakCategory.MEMORY_ACCUMULATION).default_severity is Severity.CRITICAL

    def test_static_rows_document_examples(self):
        for pattern in STATIC:
            assert pattern.positive_examples, pattern.rule_id
            assert pattern.negative_examples, pattern.rule_id

    def test_acquisition_tokens(self):
        tokens = DEFAULT_CATALOG.acquisition_tokens(frozenset({LeakCategory.SUBSCRIPTION}))
        assert tokens == frozenset({".subscribe("})

        all_tokens = DEFAULT_CATALOG.acquisition_tokens()
        assert "setInterval" in all_tokens
        assert "WebSocket" in all_tokens


class TestExamples:
    @pytest.mark.parametrize("pattern,example", POSITIVE)
    def test_positive_example_is_reported(self, pattern, example):
        matcher = LeakMatcher(categories=frozenset({pattern.category}))
        reports = matcher.analyze_source(example.code, "Example.tsx")

        assert any(r.type is pattern.leak_type for r in reports), example.description

    @pytest.mark.parametrize("pattern,example", NEGATIVE)
    def test_negative_example_is_clean(self, pattern, example):
        matcher = LeakMatcher(categories=frozenset({pattern.category}))
        reports = matcher.analyze_source(example.code, "Example.tsx")

        assert not [r for r in reports if r.type is pattern.leak_type], example.description


class TestTemplates:
    def test_render_release_fills_placeholders(self):
        pattern = get_pattern(LeakCategory.EVENT_LISTENER)
        rendered = pattern.render_release(
            "onResize", target="window", event="'resize'", release="removeEventListener"
        )
        assert rendered == "window.removeEventListener('resize', onResize);"

    def test_missing_value_keeps_placeholder(self):
        rendered = get_pattern(LeakCategory.INTERVAL).render_release(None)
        assert PLACEHOLDER_PATTERN.search(rendered)

    def test_no_template_renders_none(self):
        assert get_pattern(LeakCategory.MISSING_TEARDOWN).render_release("x") is None

    def test_binding_name_from_event(self):
        pattern = get_pattern(LeakCategory.EVENT_LISTENER)
        assert pattern.binding_name("visibility-change") == "handleVisibilityChange"
        assert pattern.binding_name(None) == "handleEvent"
        assert get_pattern(LeakCategory.INTERVAL).binding_name("tick") == "intervalId"


class TestSeverity:
    def test_ordering(self):
        ranks = [s.rank for s in (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == 4

    def test_severity_at_least(self):
        assert severity_at_least(Severity.HIGH, Severity.MEDIUM)
        assert severity_at_least(Severity.MEDIUM, Severity.MEDIUM)
        assert not severity_at_least(Severity.LOW, Severity.MEDIUM)

    def test_wire_values(self):
        assert {t.value for t in LeakType} >= {
            "missing-useeffect-cleanup",
            "uncleaned-event-listener",
            "uncleaned-interval",
            "uncleaned-timeout",
            "uncleaned-subscription",
            "unclosed-eventsource",
            "unclosed-websocket",
            "memory-accumulation",
            "circular-reference",
        }
