"""Tests for confidence and severity scoring."""

import pytest

from leakwatch.analysis.confidence import ConfidenceModel, ConfidenceWeights
from leakwatch.analysis.patterns import LeakCategory, Severity
from leakwatch.analysis.scope import ScopeContext

EFFECT_NO_TEARDOWN = ScopeContext(is_in_effect_hook=True, bound_identifier="id")
COMPONENT_EFFECT_NO_TEARDOWN = ScopeContext(
    is_in_effect_hook=True, is_in_component=True, bound_identifier="id"
)
PLAIN_UNBOUND = ScopeContext(enclosing_name="poll")


class TestConfidence:
    @pytest.fixture
    def model(self):
        return ConfidenceModel()

    def test_effect_without_teardown_is_high_confidence(self, model):
        confidence, review = model.confidence(LeakCategory.INTERVAL, EFFECT_NO_TEARDOWN)

        assert confidence == 1.0
        assert review is False

    def test_unbound_in_plain_function(self, model):
        confidence, review = model.confidence(LeakCategory.INTERVAL, PLAIN_UNBOUND)

        assert confidence == pytest.approx(0.4)
        assert review is True

    def test_weak_match_requires_review(self, model):
        context = ScopeContext(
            is_in_effect_hook=True, has_teardown_callback=True, bound_identifier="id"
        )
        confidence, review = model.confidence(LeakCategory.INTERVAL, context, weakly_matched=True)

        assert confidence == pytest.approx(0.6)
        assert review is True

    def test_teardown_bonus_only_applies_to_effects(self, model):
        plain, _ = model.confidence(LeakCategory.WEBSOCKET, ScopeContext(bound_identifier="ws"))
        assert plain == pytest.approx(0.5)

    def test_clamped_to_floor(self):
        model = ConfidenceModel(ConfidenceWeights(base=0.1, unverified_identity=-0.9))
        confidence, _ = model.confidence(LeakCategory.TIMEOUT, PLAIN_UNBOUND)

        assert confidence == 0.1

    def test_clamped_to_ceiling(self, model):
        confidence, _ = model.confidence(LeakCategory.INTERVAL, COMPONENT_EFFECT_NO_TEARDOWN)
        assert confidence == 1.0

    def test_rounded_to_four_decimals(self):
        model = ConfidenceModel(ConfidenceWeights(base=0.123456789))
        confidence, _ = model.confidence(LeakCategory.TIMEOUT, ScopeContext(bound_identifier="t"))

        assert confidence == 0.1235

    def test_pure(self, model):
        results = {model.confidence(LeakCategory.INTERVAL, PLAIN_UNBOUND) for _ in range(5)}
        assert len(results) == 1


class TestSeverity:
    @pytest.mark.parametrize(
        "category,context,weak,expected",
        [
            (LeakCategory.INTERVAL, COMPONENT_EFFECT_NO_TEARDOWN, False, Severity.CRITICAL),
            (LeakCategory.INTERVAL, EFFECT_NO_TEARDOWN, False, Severity.HIGH),
            (LeakCategory.EVENT_LISTENER, PLAIN_UNBOUND, False, Severity.HIGH),
            (LeakCategory.WEBSOCKET, EFFECT_NO_TEARDOWN, True, Severity.LOW),
            (LeakCategory.TIMEOUT, EFFECT_NO_TEARDOWN, False, Severity.MEDIUM),
            (LeakCategory.TIMEOUT, PLAIN_UNBOUND, False, Severity.LOW),
            (LeakCategory.ABORT_CONTROLLER, EFFECT_NO_TEARDOWN, False, Severity.LOW),
        ],
    )
    def test_rules(self, category, context, weak, expected):
        assert ConfidenceModel.severity(category, context, weak) is expected

    def test_assess_combines_both(self):
        assessment = ConfidenceModel().assess(LeakCategory.INTERVAL, PLAIN_UNBOUND)

        assert assessment.severity is Severity.HIGH
        assert assessment.confidence == pytest.approx(0.4)
        assert assessment.requires_manual_review is True
