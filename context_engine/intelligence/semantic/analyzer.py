"""Semantic Context Analyzer.

Turns raw query text plus recent conversation history into a
``SemanticAnalysis``. Each stage is a separate collaborator injected at
construction; any stage failure degrades to a fixed low-confidence
analysis instead of raising.
"""

import logging
import time
from typing import Any

from context_engine.core.exceptions import AnalysisDegradedError
from context_engine.intelligence.semantic.attention import AttentionWeighter
from context_engine.intelligence.semantic.embedding import EmbeddingService
from context_engine.intelligence.semantic.entities import EntityExtractor, domain_relevance
from context_engine.intelligence.semantic.intent import BusinessIntentClassifier
from context_engine.intelligence.semantic.knowledge_graph import BusinessKnowledgeGraph
from context_engine.intelligence.semantic.language import detect_language, normalize
from context_engine.intelligence.similarity import clamp
from context_engine.models.context import ExpertiseLevel
from context_engine.models.semantic import (
    AnalysisContext,
    AttentionWeights,
    BusinessCategory,
    BusinessIntent,
    ContextPrediction,
    Embedding,
    PrimaryIntent,
    SemanticAnalysis,
    Urgency,
)

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_CONFIDENCE = 0.3
HISTORY_WINDOW = 5

CATEGORY_FOLLOW_UPS: dict[BusinessCategory, tuple[str, ...]] = {
    BusinessCategory.ANALYTICS: (
        "What time period should we analyze?",
        "Which segments should we compare?",
    ),
    BusinessCategory.FINANCE: (
        "What's the ROI impact?",
        "How does this affect our budget?",
    ),
    BusinessCategory.MARKETING: (
        "Which channels performed best?",
        "What's the conversion rate?",
    ),
}
DEFAULT_FOLLOW_UPS = ("Would you like more details?", "Should we look at related metrics?")


class SemanticContextAnalyzer:
    """Runs the analysis pipeline for one query.

    Args:
        embeddings: Cached embedding service.
        intent_classifier: Business-intent stage.
        entity_extractor: Entity, relationship and role stage.
        attention: Attention weighting stage.
        knowledge_graph: Role-aware relevance stage.
        fallback_confidence: Confidence of the degraded analysis.
    """

    def __init__(
        self,
        embeddings: EmbeddingService,
        intent_classifier: BusinessIntentClassifier | None = None,
        entity_extractor: EntityExtractor | None = None,
        attention: AttentionWeighter | None = None,
        knowledge_graph: BusinessKnowledgeGraph | None = None,
        fallback_confidence: float = DEFAULT_FALLBACK_CONFIDENCE,
    ) -> None:
        self._embeddings = embeddings
        self._intent = intent_classifier or BusinessIntentClassifier()
        self._entities = entity_extractor or EntityExtractor()
        self._attention = attention or AttentionWeighter()
        self._knowledge_graph = knowledge_graph or BusinessKnowledgeGraph()
        self._fallback_confidence = fallback_confidence

    async def analyze(self, query: str, context: AnalysisContext) -> SemanticAnalysis:
        """Analyze *query*; never raises.

        Returns:
            The full analysis, or the degraded fallback when a stage fails.
        """
        start = time.perf_counter()
        try:
            analysis = await self._run_pipeline(query, context)
        except AnalysisDegradedError as e:
            logger.warning(
                "Semantic analysis degraded: %s",
                e.__cause__ or e,
                extra={"user_id": context.user_id, "stage": e.stage},
            )
            return self.fallback(query, context.role, reason=e.stage)
        except Exception as e:
            logger.exception("Semantic analysis failed", extra={"user_id": context.user_id})
            return self.fallback(query, context.role, reason=type(e).__name__)

        logger.debug(
            "Semantic analysis complete",
            extra={
                "user_id": context.user_id,
                "category": analysis.business_intent.business_category.value,
                "confidence": analysis.confidence,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return analysis

    async def _run_pipeline(self, query: str, context: AnalysisContext) -> SemanticAnalysis:
        history = context.history[-HISTORY_WINDOW:]

        language, text = self._stage("language", lambda: (detect_language(query), normalize(query)))

        try:
            embedding: Embedding = await self._embeddings.embed(text, language, len(history))
        except Exception as e:
            raise AnalysisDegradedError("embedding") from e

        intent = self._stage("intent", lambda: self._intent.classify(text))
        entities = self._stage(
            "entities", lambda: self._entities.extract(text, intent.business_category)
        )
        attention = self._stage(
            "attention", lambda: self._attention.weigh(text, entities, history, context.role)
        )
        entities = self._stage(
            "knowledge_graph", lambda: self._knowledge_graph.enhance(entities, context.role)
        )
        relationships = self._entities.relationships(entities)
        roles = self._entities.semantic_roles(text, entities, intent.primary_intent)
        importance = 0.8 if history else 0.6

        analysis = SemanticAnalysis(
            query=query,
            normalized_query=text,
            language=language,
            semantic_roles=roles,
            entities=entities,
            relationships=relationships,
            business_intent=intent,
            contextual_importance=importance,
            domain_relevance=domain_relevance(text, context.business_focus),
            attention=attention,
            embedding_confidence=embedding.confidence,
            confidence=0.0,
        )
        analysis.context_prediction = self._predict_context(analysis, context.expertise_level)

        prediction_confidence = self.prediction_confidence(analysis)
        analysis.confidence = clamp(
            0.3 * embedding.confidence + 0.3 * importance + 0.4 * prediction_confidence
        )
        return analysis

    @staticmethod
    def _stage(name: str, fn: Any) -> Any:
        try:
            return fn()
        except Exception as e:
            raise AnalysisDegradedError(name) from e

    @staticmethod
    def prediction_confidence(analysis: SemanticAnalysis) -> float:
        """0.4 contextual importance + 0.3 peak query attention + 0.3 embedding confidence."""
        peak_attention = max(analysis.attention.query_attention, default=0.5)
        return clamp(
            0.4 * analysis.contextual_importance
            + 0.3 * peak_attention
            + 0.3 * analysis.embedding_confidence
        )

    def _predict_context(
        self, analysis: SemanticAnalysis, expertise: ExpertiseLevel
    ) -> ContextPrediction:
        intent = analysis.business_intent

        if intent.urgency in (Urgency.CRITICAL, Urgency.HIGH):
            timeframe = "immediate"
        elif intent.urgency == Urgency.MEDIUM:
            timeframe = "short_term"
        else:
            timeframe = "long_term"
        priority = Urgency.HIGH if intent.urgency == Urgency.CRITICAL else intent.urgency

        actions = [f"Explore {intent.primary_intent.value.replace('_', ' ')} in more detail"]
        actions.extend(
            f"Analyze {entity.text} performance trends"
            for entity in analysis.entities
            if entity.business_relevance > 0.7
        )
        if expertise == ExpertiseLevel.BEGINNER:
            actions.append("Would you like a basic explanation of this topic?")
        elif expertise == ExpertiseLevel.EXPERT:
            actions.append("Dive into advanced analytics for this area")

        topics = [entity.text for entity in analysis.entities]
        topics.extend(r.relation_type for r in analysis.relationships if r.strength > 0.8)

        category = intent.business_category.value.replace("_", " ")
        if intent.urgency == Urgency.CRITICAL:
            implication = f"Critical {category} issue requiring immediate attention"
        elif intent.urgency == Urgency.HIGH:
            implication = f"High-priority {category} matter with significant business impact"
        else:
            implication = f"Standard {category} inquiry for analysis and insights"

        return ContextPrediction(
            timeframe=timeframe,
            priority=priority,
            suggested_actions=actions[:5],
            follow_up_questions=list(
                CATEGORY_FOLLOW_UPS.get(intent.business_category, DEFAULT_FOLLOW_UPS)
            )[:3],
            related_topics=list(dict.fromkeys(topics))[:5],
            business_implication=implication,
        )

    def fallback(self, query: str, role: str = "user", reason: str | None = None) -> SemanticAnalysis:
        """Low-confidence neutral analysis used whenever the pipeline cannot finish."""
        return SemanticAnalysis(
            query=query,
            normalized_query=normalize(query) if isinstance(query, str) else "",
            business_intent=BusinessIntent(
                primary_intent=PrimaryIntent.GENERAL_INQUIRY,
                business_category=BusinessCategory.ANALYTICS,
                urgency=Urgency.MEDIUM,
                complexity=0.5,
                required_expertise=ExpertiseLevel.INTERMEDIATE,
            ),
            contextual_importance=self._fallback_confidence,
            attention=AttentionWeights(query_attention=[0.5], role_weights={role: 0.5}),
            embedding_confidence=self._fallback_confidence,
            context_prediction=ContextPrediction(
                timeframe="immediate",
                suggested_actions=["Please rephrase your question", "Try a more specific query"],
                business_implication="Standard inquiry requiring clarification",
            ),
            confidence=self._fallback_confidence,
            degraded=True,
            degraded_reason=reason,
        )
