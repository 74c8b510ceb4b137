"""Deterministic confidence and severity scoring for leak candidates.

Scoring is a fixed rule table over the candidate's category and its
``ScopeContext``; identical inputs always produce identical outputs. The
weights are configurable defaults carried by ``ConfidenceWeights``.
"""

from __future__ import annotations

from dataclasses import dataclass

from .patterns import LeakCategory, Severity
from .scope import ScopeContext

# Categories whose unmatched acquisitions are at least high severity
HIGH_RISK_CATEGORIES = frozenset({
    LeakCategory.INTERVAL,
    LeakCategory.EVENT_LISTENER,
    LeakCategory.EVENTSOURCE,
    LeakCategory.WEBSOCKET,
    LeakCategory.SUBSCRIPTION,
})

# Categories whose effects recur until released
RECURRING_CATEGORIES = frozenset({LeakCategory.INTERVAL})


@dataclass(frozen=True)
class ConfidenceWeights:
    """Additive adjustments applied to the base confidence, in order."""

    base: float = 0.5
    recurring: float = 0.2
    in_component: float = 0.2
    in_effect_hook: float = 0.2
    unverified_identity: float = -0.3
    missing_teardown: float = 0.2
    floor: float = 0.1
    ceiling: float = 1.0


@dataclass(frozen=True)
class Assessment:
    """Score assigned to one leak candidate."""

    confidence: float
    severity: Severity
    requires_manual_review: bool


class ConfidenceModel:
    """Maps ``(category, context, weakly_matched)`` to an ``Assessment``.

    Rules:

    - interval: +0.2
    - inside a component: +0.2
    - inside an effect hook: +0.2
    - weakly matched or no bound identifier: -0.3 and manual review
    - effect hook without a teardown callback: +0.2

    The sum is clamped to ``[floor, ceiling]`` and rounded to four
    decimals. The teardown adjustment only applies where a teardown slot
    exists; a plain function has no canonical place to release anything.
    """

    def __init__(self, weights: ConfidenceWeights | None = None) -> None:
        self.weights = weights or ConfidenceWeights()

    def confidence(
        self,
        category: LeakCategory,
        context: ScopeContext,
        weakly_matched: bool = False,
    ) -> tuple[float, bool]:
        """Return ``(confidence, requires_manual_review)``."""
        w = self.weights
        value = w.base
        requires_review = False

        if category in RECURRING_CATEGORIES:
            value += w.recurring
        if context.is_in_component:
            value += w.in_component
        if context.is_in_effect_hook:
            value += w.in_effect_hook
        if weakly_matched or context.bound_identifier is None:
            value += w.unverified_identity
            requires_review = True
        if context.is_in_effect_hook and not context.has_teardown_callback:
            value += w.missing_teardown

        value = min(w.ceiling, max(w.floor, value))
        return round(value, 4), requires_review

    @staticmethod
    def severity(
        category: LeakCategory,
        context: ScopeContext,
        weakly_matched: bool = False,
    ) -> Severity:
        unmatched = not weakly_matched

        if (
            category is LeakCategory.INTERVAL
            and context.is_in_component
            and not context.has_teardown_callback
        ):
            return Severity.CRITICAL
        if category in HIGH_RISK_CATEGORIES and unmatched:
            return Severity.HIGH
        if (
            category is LeakCategory.TIMEOUT
            and (context.is_in_effect_hook or context.is_in_component)
            and unmatched
        ):
            return Severity.MEDIUM
        return Severity.LOW

    def assess(
        self,
        category: LeakCategory,
        context: ScopeContext,
        weakly_matched: bool = False,
    ) -> Assessment:
        confidence, requires_review = self.confidence(category, context, weakly_matched)
        return Assessment(
            confidence=confidence,
            severity=self.severity(category, context, weakly_matched),
            requires_manual_review=requires_review,
        )
