"""Business-intent classification from normalized query text."""

import re
from typing import Any

from context_engine.intelligence.similarity import clamp
from context_engine.models.context import ExpertiseLevel
from context_engine.models.semantic import BusinessCategory, BusinessIntent, PrimaryIntent, Urgency

# First match wins, so order matters.
INTENT_CUES: tuple[tuple[PrimaryIntent, tuple[str, ...]], ...] = (
    (PrimaryIntent.ANALYSIS, ("analyze", "analyse", "analysis")),
    (PrimaryIntent.VISUALIZATION, ("show", "display", "chart", "graph", "visualize")),
    (PrimaryIntent.OPTIMIZATION, ("optimize", "optimise", "improve")),
    (PrimaryIntent.PREDICTION, ("predict", "forecast", "projection")),
)

CATEGORY_CUES: tuple[tuple[BusinessCategory, tuple[str, ...]], ...] = (
    (BusinessCategory.FINANCE, ("revenue", "profit", "margin", "cost", "budget", "omzet", "winst")),
    (BusinessCategory.CUSTOMER_SERVICE, ("customer", "churn", "support", "ticket", "klant")),
    (BusinessCategory.MARKETING, ("marketing", "campaign", "advertis", "campagne")),
    (BusinessCategory.OPERATIONS, ("operation", "process", "inventory", "fulfil", "logistic")),
    (BusinessCategory.STRATEGIC, ("strategy", "strategic", "competitor", "market share", "expansion")),
    (BusinessCategory.TECHNICAL, ("api", "integration", "database", "webhook", "sync")),
)

URGENCY_CUES: tuple[tuple[Urgency, tuple[str, ...]], ...] = (
    (Urgency.CRITICAL, ("urgent", "critical", "emergency")),
    (Urgency.HIGH, ("asap", "quickly", "immediately", "today")),
    (Urgency.LOW, ("when you can", "eventually", "no rush")),
)

TECHNICAL_TERMS = ("algorithm", "correlation", "regression", "optimization", "analytics")


def score_complexity(text: str) -> float:
    """Length component (saturating at 100 chars) plus 0.2 per technical term, capped at 1."""
    technical_count = sum(1 for term in TECHNICAL_TERMS if term in text)
    return clamp(min(len(text) / 100, 1.0) + technical_count * 0.2)


def required_expertise(complexity: float) -> ExpertiseLevel:
    """Monotonic mapping from complexity to the expertise needed."""
    if complexity > 0.8:
        return ExpertiseLevel.EXPERT
    if complexity > 0.6:
        return ExpertiseLevel.ADVANCED
    if complexity > 0.4:
        return ExpertiseLevel.INTERMEDIATE
    return ExpertiseLevel.BEGINNER


class BusinessIntentClassifier:
    """Keyword-rule classifier for primary intent, category and urgency."""

    def classify(self, text: str) -> BusinessIntent:
        complexity = score_complexity(text)
        return BusinessIntent(
            primary_intent=self._first_match(INTENT_CUES, text, PrimaryIntent.INFORMATION_REQUEST),
            business_category=self._first_match(CATEGORY_CUES, text, BusinessCategory.ANALYTICS),
            urgency=self._first_match(URGENCY_CUES, text, Urgency.MEDIUM),
            complexity=complexity,
            required_expertise=required_expertise(complexity),
        )

    @staticmethod
    def _first_match(rules: tuple[tuple[Any, tuple[str, ...]], ...], text: str, default: Any) -> Any:
        for label, cues in rules:
            if any(re.search(rf"\b{re.escape(cue)}", text) for cue in cues):
                return label
        return default
