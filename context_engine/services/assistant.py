"""Assistant Orchestrator.

One request/response cycle: session → semantic analysis → data
integration and behavior prediction (concurrently) → merged response.
The realized turn is then queued for best-effort persistence and fed
back into the behavior model.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from context_engine.core.exceptions import NotFoundError, PersistenceError, PipelineFailureError
from context_engine.integrations.access import PermissionOracle
from context_engine.intelligence.behavior.predictor import UserBehaviorPredictor
from context_engine.intelligence.semantic.adaptive import (
    adapt_response,
    assess_complexity,
    enhanced_confidence,
)
from context_engine.intelligence.semantic.analyzer import SemanticContextAnalyzer
from context_engine.memory.persistence import PersistenceQueue
from context_engine.memory.store import SessionProfileStore, generate_session_id
from context_engine.models.assistant import (
    AdaptiveResponse,
    AssistantResponse,
    ContextualInsights,
    DataSummary,
    FeedbackRequest,
)
from context_engine.models.behavior import (
    BehaviorPrediction,
    BehaviorPredictionContext,
    PredictionCategory,
    ResponseStyle,
)
from context_engine.models.context import (
    ConversationEntry,
    LearningInsight,
    QueryType,
    SessionMemory,
    SessionUpdate,
    UserProfile,
)
from context_engine.models.integration import AccessContext, IntegrationResult
from context_engine.models.semantic import AnalysisContext, HistoryTurn, SemanticAnalysis
from context_engine.services.data_integrator import ContextualDataIntegrator

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10
MAX_ACTIVE_TOPICS = 10
INSIGHT_CONFIDENCE_THRESHOLD = 0.7
DEFAULT_NEXT_STEPS = (
    "Ask about your key business metrics",
    "Compare performance across time periods",
    "Explore customer segments",
)
PREDICTION_CATEGORIES = [
    PredictionCategory.QUERY_TYPE,
    PredictionCategory.CONTENT_PREFERENCE,
    PredictionCategory.INTERACTION_PATTERN,
]


@dataclass
class Enhancement:
    """Behavior-derived additions to a base response."""

    predictions: list[BehaviorPrediction]
    follow_ups: list[str]
    style: ResponseStyle


def merge_follow_ups(existing: list[str], predicted: list[str], limit: int = 5) -> list[str]:
    """Existing suggestions first, then new predicted ones; deduplicated and capped."""
    seen: set[str] = set()
    merged: list[str] = []
    for suggestion in [*existing, *predicted]:
        key = suggestion.strip().lower()
        if key and key not in seen:
            seen.add(key)
            merged.append(suggestion)
    return merged[:limit]


class AssistantOrchestrator:
    """Composes the context engine into one request/response cycle.

    Args:
        store: Durable session and profile store.
        analyzer: Semantic context analyzer.
        predictor: Behavior model and predictor.
        integrator: Contextual data integrator.
        oracle: Permission oracle for the caller's role.
        persistence: Background queue for best-effort writes.
        max_follow_ups: Cap on follow-up suggestions.
    """

    def __init__(
        self,
        store: SessionProfileStore,
        analyzer: SemanticContextAnalyzer,
        predictor: UserBehaviorPredictor,
        integrator: ContextualDataIntegrator,
        oracle: PermissionOracle,
        persistence: PersistenceQueue,
        max_follow_ups: int = 5,
    ) -> None:
        self._store = store
        self._analyzer = analyzer
        self._predictor = predictor
        self._integrator = integrator
        self._oracle = oracle
        self._persistence = persistence
        self._max_follow_ups = max_follow_ups

    async def process_query(
        self,
        user_id: str,
        query: str,
        session_id: str | None = None,
        role: str | None = None,
    ) -> AssistantResponse:
        """Answer one query. Never raises; total failure yields the apology response."""
        start = time.perf_counter()
        try:
            return await self._process(user_id, query, session_id, role, start)
        except Exception as e:
            logger.exception(
                "Assistant pipeline failed", extra={"user_id": user_id, "session_id": session_id}
            )
            failure = PipelineFailureError(f"Request pipeline failed: {type(e).__name__}")
            return AssistantResponse.apology(session_id, failure)

    async def _process(
        self,
        user_id: str,
        query: str,
        session_id: str | None,
        role: str | None,
        start: float,
    ) -> AssistantResponse:
        profile = await self._load_profile(user_id)
        session, durable = await self._resolve_session(user_id, session_id)
        history = await self._load_history(user_id, session.session_id)
        access = await self._oracle.access_context(user_id, role)

        context = AnalysisContext(
            user_id=user_id,
            role=access.role,
            history=[
                HistoryTurn(
                    query=e.user_query,
                    response=e.assistant_response,
                    timestamp=e.timestamp,
                    confidence=e.confidence,
                )
                for e in history
            ],
            business_focus=profile.business_focus,
            expertise_level=profile.expertise_level,
        )
        analysis = await self._analyzer.analyze(query, context)

        recent_queries = [e.user_query for e in history] + [query]
        integration, enhancement = await asyncio.gather(
            self._integrator.integrate(query, context, access, analysis=analysis),
            self._enhance(user_id, query, session, recent_queries),
        )

        adaptive = adapt_response(analysis, profile)
        base_follow_ups = merge_follow_ups(
            analysis.context_prediction.follow_up_questions,
            integration.recommendations.suggested_queries,
            self._max_follow_ups,
        )
        response = AssistantResponse(
            success=True,
            answer=self._compose_answer(analysis, integration, adaptive),
            session_id=session.session_id,
            entry_id=str(uuid.uuid4()),
            confidence=analysis.confidence,
            semantic_analysis=analysis,
            data_summary=DataSummary(
                sources=list(integration.data),
                total_records=integration.metadata.total_records,
                cache_hits=integration.metadata.cache_hits,
                unified_summary=integration.unified_summary,
                suggested_queries=integration.recommendations.suggested_queries,
            ),
            insights=integration.insights,
            follow_ups=base_follow_ups,
            adaptive=adaptive,
            complexity=assess_complexity(analysis),
            errors=integration.metadata.errors,
        )

        if enhancement is not None:
            response = self._apply_enhancement(response, enhancement)

        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
        response.metadata = {
            "processing_time_ms": elapsed_ms,
            "role": access.role,
            "degraded": analysis.degraded,
            "integration_success": integration.success,
            "sources_queried": integration.metadata.sources_queried,
        }

        self._queue_persistence(user_id, query, response, session, durable, analysis, history, elapsed_ms)
        logger.info(
            "Query processed",
            extra={
                "user_id": user_id,
                "session_id": session.session_id,
                "confidence": response.confidence,
                "enhanced": response.enhanced,
                "duration_ms": elapsed_ms,
            },
        )
        return response

    # ------------------------------------------------------------------
    # Context loading (degrades instead of failing)
    # ------------------------------------------------------------------

    async def _load_profile(self, user_id: str) -> UserProfile:
        try:
            profile = await self._store.get_profile(user_id)
            return profile or await self._store.upsert_profile(user_id)
        except PersistenceError as e:
            logger.warning("Profile unavailable, using defaults: %s", e, extra={"user_id": user_id})
            return UserProfile(user_id=user_id)

    async def _resolve_session(
        self, user_id: str, session_id: str | None
    ) -> tuple[SessionMemory, bool]:
        """Return the session and whether it is stored durably."""
        try:
            if session_id:
                session = await self._store.get_session(session_id)
                if session is not None and session.user_id == user_id:
                    return session, True
                if session is not None:
                    # Never adopt another user's session id.
                    logger.warning(
                        "Session belongs to another user, starting a new one",
                        extra={"user_id": user_id, "session_id": session_id},
                    )
                    session_id = None
            return await self._store.create_session(user_id, session_id), True
        except PersistenceError as e:
            logger.warning("Session store unavailable: %s", e, extra={"user_id": user_id})
            now = datetime.now(UTC)
            return (
                SessionMemory(
                    session_id=session_id or generate_session_id(),
                    user_id=user_id,
                    start_time=now,
                    last_activity=now,
                ),
                False,
            )

    async def _load_history(self, user_id: str, session_id: str) -> list[ConversationEntry]:
        try:
            return await self._store.get_conversation_history(user_id, session_id, limit=HISTORY_LIMIT)
        except PersistenceError as e:
            logger.warning("History unavailable: %s", e, extra={"user_id": user_id})
            return []

    # ------------------------------------------------------------------
    # Behavior enhancement
    # ------------------------------------------------------------------

    async def _enhance(
        self, user_id: str, query: str, session: SessionMemory, recent_queries: list[str]
    ) -> Enhancement | None:
        """Predictions, follow-ups and style; None when the behavior stage fails."""
        try:
            context = BehaviorPredictionContext.now(
                session_id=session.session_id,
                recent_queries=recent_queries,
                session_start=session.start_time,
            )
            predictions, follow_ups, style = await asyncio.gather(
                self._predictor.predict_behavior(user_id, context, PREDICTION_CATEGORIES),
                self._predictor.predict_follow_ups(user_id, query, context),
                self._predictor.recommended_response_style(user_id),
            )
        except Exception:
            logger.warning(
                "Behavior enhancement failed, serving base response",
                exc_info=True,
                extra={"user_id": user_id},
            )
            return None
        return Enhancement(predictions, follow_ups, style)

    def _apply_enhancement(
        self, response: AssistantResponse, enhancement: Enhancement
    ) -> AssistantResponse:
        confidence = response.confidence
        if enhancement.predictions:
            confidence = enhanced_confidence(confidence, enhancement.predictions[0].confidence)
        return response.model_copy(
            update={
                "predictions": enhancement.predictions,
                "follow_ups": merge_follow_ups(
                    response.follow_ups, enhancement.follow_ups, self._max_follow_ups
                ),
                "response_style": enhancement.style,
                "confidence": confidence,
                "enhanced": True,
            }
        )

    # ------------------------------------------------------------------
    # Answer composition
    # ------------------------------------------------------------------

    @staticmethod
    def _compose_answer(
        analysis: SemanticAnalysis, integration: IntegrationResult, adaptive: AdaptiveResponse
    ) -> str:
        if analysis.degraded:
            return (
                "I'm not sure I understood your question. "
                "Could you rephrase it or be more specific?"
            )

        category = analysis.business_intent.business_category.value.replace("_", " ")
        lines = [f"Here is what I found for your {category} question."]
        if integration.insights:
            lines.extend(f"- {insight.insight}" for insight in integration.insights)
        else:
            lines.append("I couldn't find matching records in the connected data sources.")
        if integration.unified_summary:
            lines.append(integration.unified_summary)
        if integration.metadata.errors:
            lines.append("Some data sources were unavailable, so this answer may be incomplete.")
        lines.extend(adaptive.contextual_hints)
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Best-effort persistence
    # ------------------------------------------------------------------

    def _queue_persistence(
        self,
        user_id: str,
        query: str,
        response: AssistantResponse,
        session: SessionMemory,
        durable: bool,
        analysis: SemanticAnalysis,
        history: list[ConversationEntry],
        elapsed_ms: float,
    ) -> None:
        intent = analysis.business_intent
        if analysis.degraded:
            query_type = QueryType.CLARIFICATION
        elif intent.complexity > 0.6:
            query_type = QueryType.COMPLEX
        else:
            query_type = QueryType.SIMPLE

        entry = ConversationEntry(
            id=response.entry_id or str(uuid.uuid4()),
            session_id=session.session_id,
            user_id=user_id,
            timestamp=datetime.now(UTC),
            user_query=query,
            assistant_response=response.answer,
            context={
                "category": intent.business_category.value,
                "intent": intent.primary_intent.value,
                "sources": response.data_summary.sources,
            },
            follow_up=response.follow_ups,
            query_type=query_type,
            confidence=response.confidence,
            response_time=elapsed_ms,
        )
        session_queries = [e.user_query for e in history] + [query]
        log_context: dict[str, Any] = {"user_id": user_id, "session_id": session.session_id}

        if durable:
            self._persistence.enqueue(
                "append_conversation_entry",
                lambda: self._store.append_conversation_entry(entry),
                **log_context,
            )
            topics = list(
                dict.fromkeys([*session.active_topics, *analysis.context_prediction.related_topics])
            )[-MAX_ACTIVE_TOPICS:]
            self._persistence.enqueue(
                "update_session",
                lambda: self._store.update_session(
                    session.session_id,
                    SessionUpdate(
                        last_activity=entry.timestamp,
                        active_topics=topics,
                        user_intent=intent.primary_intent.value,
                    ),
                ),
                **log_context,
            )
            if not analysis.degraded and analysis.confidence >= INSIGHT_CONFIDENCE_THRESHOLD:
                insight = LearningInsight(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    insight_type="interest",
                    content=(
                        f"Interested in {intent.business_category.value} topics: "
                        + ", ".join(analysis.context_prediction.related_topics or [query])
                    ),
                    confidence=analysis.confidence,
                    created_at=entry.timestamp,
                )
                self._persistence.enqueue(
                    "add_insight", lambda: self._store.add_insight(insight), **log_context
                )

        self._persistence.enqueue(
            "update_behavior_model",
            lambda: self._predictor.update_model(user_id, entry, session, session_queries),
            **log_context,
        )

    # ------------------------------------------------------------------
    # Insights & feedback
    # ------------------------------------------------------------------

    async def get_contextual_insights(self, user_id: str) -> ContextualInsights:
        """Summarize the user's recent context and suggest where to go next."""
        try:
            history = await self._store.get_conversation_history(user_id, limit=HISTORY_LIMIT)
        except PersistenceError as e:
            logger.warning("History unavailable for insights: %s", e, extra={"user_id": user_id})
            history = []
        model = await self._predictor.get_model(user_id)

        patterns = sorted(model.query_patterns, key=lambda p: p.frequency, reverse=True)[:5]
        domains = sorted(
            (d for d in model.expertise.domains if d != "general"),
            key=lambda d: model.expertise.domains[d],
            reverse=True,
        )
        topics = list(dict.fromkeys([*model.business_focus, *domains]))[:5]

        if history:
            summary = f"{len(history)} recent interactions"
            if topics:
                summary += f", focused on {', '.join(topics[:3])}"
        else:
            summary = "No recent interactions"

        next_steps: list[str] = []
        if history:
            next_steps = await self._predictor.predict_follow_ups(user_id, history[-1].user_query)

        return ContextualInsights(
            session_summary=summary,
            recent_patterns=[f"{p.pattern} ({p.frequency}x)" for p in patterns],
            suggested_topics=topics,
            next_steps=next_steps or list(DEFAULT_NEXT_STEPS),
        )

    async def process_feedback(self, user_id: str, feedback: FeedbackRequest) -> SessionMemory:
        """Record feedback on a turn and the session's satisfaction score.

        Raises:
            NotFoundError: If the session or the entry does not belong to *user_id*.
            PersistenceError: If the store write fails.
        """
        session = await self._store.get_session(feedback.session_id)
        if session is None or session.user_id != user_id:
            raise NotFoundError("Session", feedback.session_id)

        note = f"{feedback.rating:g}/5"
        if feedback.comment:
            note += f": {feedback.comment}"
        await self._store.record_feedback(feedback.entry_id, user_id, feedback.session_id, note)
        updated = await self._store.update_session(
            feedback.session_id,
            SessionUpdate(satisfaction_score=min(max(feedback.rating, 0.0), 5.0)),
        )
        logger.info(
            "Feedback recorded",
            extra={"user_id": user_id, "session_id": feedback.session_id, "rating": feedback.rating},
        )
        return updated

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        """Integration analytics, source breakers and persistence queue stats."""
        return {
            "status": "operational",
            "integration": self._integrator.get_stats(),
            "store": self._store.get_stats(),
            "persistence": self._persistence.get_stats(),
        }

    def available_sources(self, access: AccessContext) -> list[dict[str, Any]]:
        accessible = set(self._integrator.accessible_sources(access))
        return [
            {"source": name, "accessible": name in accessible}
            for name in self._integrator.source_names
        ]

    async def response_style(self, user_id: str) -> ResponseStyle:
        return await self._predictor.recommended_response_style(user_id)
