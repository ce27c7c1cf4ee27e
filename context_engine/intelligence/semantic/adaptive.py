"""Response adaptation derived from a semantic analysis and the user profile."""

from context_engine.intelligence.similarity import clamp
from context_engine.models.assistant import AdaptiveResponse, ComplexityAssessment, ComplexityLevel
from context_engine.models.context import ExpertiseLevel, UserProfile
from context_engine.models.semantic import SemanticAnalysis, Urgency

MAX_HINTS = 3


def adapt_response(analysis: SemanticAnalysis, profile: UserProfile) -> AdaptiveResponse:
    """Pick tone, expertise adjustment and up to three contextual hints."""
    intent = analysis.business_intent

    tone = "professional"
    if intent.required_expertise == ExpertiseLevel.BEGINNER:
        tone = "explanatory"
    elif intent.required_expertise == ExpertiseLevel.EXPERT:
        tone = "technical"

    adjustment = "standard"
    if profile.expertise_level == ExpertiseLevel.BEGINNER and intent.complexity > 0.6:
        adjustment = "simplified"
    elif profile.expertise_level == ExpertiseLevel.EXPERT:
        adjustment = "detailed"

    hints: list[str] = []
    if intent.urgency in (Urgency.HIGH, Urgency.CRITICAL):
        hints.append("This appears to be a time-sensitive request")
    focus = next(
        (f for f in profile.business_focus if analysis.domain_relevance.get(f, 0.0) > 0.7), None
    )
    if focus:
        hints.append(f"This aligns with your {focus} focus area")
    if intent.complexity > 0.7:
        hints.append("This is a complex topic that may require multiple steps")

    return AdaptiveResponse(
        tone=tone, expertise_adjustment=adjustment, contextual_hints=hints[:MAX_HINTS]
    )


def enhanced_confidence(base: float, model_confidence: float) -> float:
    """Blend pipeline and model confidence, trusting the model more when it is sure."""
    if model_confidence > 0.8:
        return clamp(0.3 * base + 0.7 * model_confidence)
    return clamp(0.7 * base + 0.3 * model_confidence)


def assess_complexity(analysis: SemanticAnalysis) -> ComplexityAssessment:
    """Choose a processing tier and estimate its latency."""
    complexity = analysis.business_intent.complexity
    entity_count = len(analysis.entities)
    relevance_sum = sum(analysis.domain_relevance.values())

    if complexity > 0.8 or entity_count > 5:
        level = ComplexityLevel.EXPERT
        factors = ["High complexity detected", "Multiple business entities identified"]
        multiplier = 2.0
    elif complexity > 0.5 or relevance_sum > 2.0:
        level = ComplexityLevel.ENHANCED
        factors = ["Moderate complexity", "Domain-specific knowledge required"]
        multiplier = 1.5
    else:
        level = ComplexityLevel.SIMPLE
        factors = ["Low complexity", "Standard processing sufficient"]
        multiplier = 1.0

    estimated = (200 + complexity * 300 + entity_count * 50) * multiplier
    return ComplexityAssessment(
        level=level, score=complexity, estimated_time_ms=round(estimated), factors=factors
    )
