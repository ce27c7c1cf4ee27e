"""User Behavior Model & Predictor.

Maintains one evolving ``UserBehaviorModel`` per user, updates it after
every conversation turn and turns it into predictions of what the user
is likely to want next. Models live in process memory; concurrent
updates for the same user are last-write-wins.
"""

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from context_engine.core.cache import CacheBackend, make_cache_key
from context_engine.core.exceptions import PersistenceError
from context_engine.intelligence.behavior.model import (
    InteractionPattern,
    QueryPattern,
    TemporalPattern,
    UserBehaviorModel,
)
from context_engine.intelligence.behavior.signals import (
    KeywordSignalExtractor,
    SignalExtractor,
    TurnSignals,
)
from context_engine.intelligence.similarity import clamp, sequence_similarity, string_similarity
from context_engine.models.behavior import (
    BehaviorPrediction,
    BehaviorPredictionContext,
    PersonalizedRecommendations,
    PredictionCategory,
    ResponseStyle,
    Timeframe,
)
from context_engine.models.context import ConversationEntry, SessionMemory, StoredBehaviorPattern

if TYPE_CHECKING:
    from context_engine.memory.store import SessionProfileStore

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (PredictionCategory.QUERY_TYPE, PredictionCategory.CONTENT_PREFERENCE)
MODEL_PATTERN_TYPE = "behavior_model"
PERSIST_EVERY = 10  # interactions between model snapshots
MAX_INTERACTION_PATTERNS = 50
MAX_FOLLOW_UPS_PER_PATTERN = 10


class UserBehaviorPredictor:
    """Per-user behavior modelling and prediction.

    Args:
        cache: Prediction cache (entries expire after its TTL).
        signal_extractor: Turns a query into preference/style signals.
        store: Optional store used to bootstrap and snapshot models.
        pattern_threshold: Similarity at which two queries share a pattern.
        interaction_threshold: Similarity at which two sessions share a pattern.
        follow_up_threshold: Similarity for a stored pattern to inform follow-ups.
        max_query_patterns: Cap on retained query patterns (most frequent kept).
        max_follow_ups: Cap on predicted follow-up suggestions.
    """

    def __init__(
        self,
        cache: CacheBackend,
        signal_extractor: SignalExtractor | None = None,
        store: "SessionProfileStore | None" = None,
        pattern_threshold: float = 0.8,
        interaction_threshold: float = 0.7,
        follow_up_threshold: float = 0.6,
        max_query_patterns: int = 100,
        max_follow_ups: int = 5,
    ) -> None:
        self._cache = cache
        self._signals = signal_extractor or KeywordSignalExtractor()
        self._store = store
        self._pattern_threshold = pattern_threshold
        self._interaction_threshold = interaction_threshold
        self._follow_up_threshold = follow_up_threshold
        self._max_query_patterns = max_query_patterns
        self._max_follow_ups = max_follow_ups
        self._models: dict[str, UserBehaviorModel] = {}

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------

    async def get_model(self, user_id: str) -> UserBehaviorModel:
        """Return the user's model, creating it lazily on first use."""
        model = self._models.get(user_id)
        if model is None:
            model = await self._create_model(user_id)
            self._models[user_id] = model
        return model

    async def _create_model(self, user_id: str) -> UserBehaviorModel:
        if self._store is None:
            return UserBehaviorModel(user_id=user_id)

        try:
            for pattern in await self._store.get_behavior_patterns(user_id):
                if pattern.pattern_type == MODEL_PATTERN_TYPE and pattern.pattern_data:
                    logger.info("Behavior model restored from snapshot", extra={"user_id": user_id})
                    return UserBehaviorModel.from_dict(pattern.pattern_data)
            profile = await self._store.get_profile(user_id)
        except PersistenceError as e:
            logger.warning("Could not bootstrap behavior model: %s", e, extra={"user_id": user_id})
            return UserBehaviorModel(user_id=user_id)

        return UserBehaviorModel(
            user_id=user_id, business_focus=list(profile.business_focus) if profile else []
        )

    def reset_model(self, user_id: str) -> None:
        self._models.pop(user_id, None)

    async def export_model(self, user_id: str) -> dict[str, Any]:
        return (await self.get_model(user_id)).to_dict()

    async def persist_model(self, user_id: str) -> None:
        """Snapshot the model to the store.

        Raises:
            PersistenceError: If the write fails.
        """
        if self._store is None:
            return
        model = await self.get_model(user_id)
        await self._store.add_behavior_pattern(
            StoredBehaviorPattern(
                id=f"{MODEL_PATTERN_TYPE}:{user_id}",
                user_id=user_id,
                pattern_type=MODEL_PATTERN_TYPE,
                pattern_data=model.to_dict(),
                frequency=model.total_interactions,
                predictive_power=clamp(
                    sum(p.success_rate for p in model.query_patterns) / len(model.query_patterns)
                    if model.query_patterns
                    else 0.5
                ),
                last_seen=model.last_updated,
            )
        )

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    async def predict_behavior(
        self,
        user_id: str,
        context: BehaviorPredictionContext,
        categories: list[PredictionCategory] | None = None,
    ) -> list[BehaviorPrediction]:
        """Predict likely next behaviors, highest confidence first.

        Results are cached per (user, categories, hour bucket, model revision).
        """
        wanted = list(dict.fromkeys(categories or DEFAULT_CATEGORIES))
        model = await self.get_model(user_id)

        key = make_cache_key(
            "predictions",
            user_id,
            sorted(c.value for c in wanted),
            f"{context.day_of_week}-{context.hour}",
            model.revision,
        )
        cached, found = self._cache.get(key)
        if found:
            return list(cached)

        branches = {
            PredictionCategory.QUERY_TYPE: self._predict_query_type,
            PredictionCategory.CONTENT_PREFERENCE: self._predict_content_preference,
            PredictionCategory.INTERACTION_PATTERN: self._predict_interaction_pattern,
            PredictionCategory.TIMING_PATTERN: self._predict_timing_pattern,
        }
        predictions: list[BehaviorPrediction] = []
        try:
            for category in wanted:
                predictions.extend(branches[category](model, context))
        except Exception:
            logger.exception("Behavior prediction failed", extra={"user_id": user_id})
            return []

        predictions.sort(key=lambda p: p.confidence, reverse=True)
        self._cache.set(key, predictions)
        return list(predictions)

    def _predict_query_type(
        self, model: UserBehaviorModel, context: BehaviorPredictionContext
    ) -> list[BehaviorPrediction]:
        relevant = [p for p in model.query_patterns if context.hour in p.hour_histogram]
        relevant.sort(key=lambda p: p.frequency, reverse=True)
        return [
            BehaviorPrediction(
                predicted_action=f"User likely to ask about: {pattern.pattern}",
                category=PredictionCategory.QUERY_TYPE,
                confidence=clamp(pattern.success_rate * 0.8),
                timeframe=Timeframe.IMMEDIATE,
                reasoning=[
                    "Pattern matches current time context",
                    f"Historical success rate: {pattern.success_rate * 100:.1f}%",
                    f"Frequency: {pattern.frequency} times",
                ],
                metadata={
                    "pattern": pattern.pattern,
                    "frequency": pattern.frequency,
                    "context_tags": pattern.context_tags,
                },
            )
            for pattern in relevant[:3]
        ]

    def _predict_content_preference(
        self, model: UserBehaviorModel, context: BehaviorPredictionContext
    ) -> list[BehaviorPrediction]:
        weights = model.preferences
        predictions: list[BehaviorPrediction] = []
        if weights.visual_preference > 0.5:
            predictions.append(
                BehaviorPrediction(
                    predicted_action="User prefers visual content (charts, graphs, dashboards)",
                    category=PredictionCategory.CONTENT_PREFERENCE,
                    confidence=clamp(weights.visual_preference),
                    reasoning=["High visual preference weight", "Historical preference for charts"],
                    metadata={"preferred_content_type": "visual"},
                )
            )
        if weights.technical_depth > 0.6:
            predictions.append(
                BehaviorPrediction(
                    predicted_action="User prefers detailed technical explanations",
                    category=PredictionCategory.CONTENT_PREFERENCE,
                    confidence=clamp(weights.technical_depth),
                    reasoning=["High technical depth preference", "Demonstrated technical expertise"],
                    metadata={"preferred_content_type": "technical"},
                )
            )
        return predictions

    def _predict_interaction_pattern(
        self, model: UserBehaviorModel, context: BehaviorPredictionContext
    ) -> list[BehaviorPrediction]:
        if not context.recent_queries:
            return []
        latest = context.recent_queries[-1].lower()
        predictions: list[BehaviorPrediction] = []
        for pattern in model.interaction_patterns:
            next_step = self._next_step(pattern, latest)
            if next_step is None:
                continue
            predictions.append(
                BehaviorPrediction(
                    predicted_action=f"User likely to continue with: {next_step}",
                    category=PredictionCategory.INTERACTION_PATTERN,
                    confidence=clamp(pattern.probability),
                    timeframe=Timeframe.IMMEDIATE,
                    reasoning=[
                        f"Current query matches a {pattern.kind} interaction pattern",
                        f"Pattern seen {pattern.occurrences} times",
                    ],
                    metadata={"kind": pattern.kind, "next_step": next_step},
                )
            )
        return predictions

    def _predict_timing_pattern(
        self, model: UserBehaviorModel, context: BehaviorPredictionContext
    ) -> list[BehaviorPrediction]:
        current = model.temporal_patterns.get(context.hour)
        if current is None or current.activity <= 0.3:
            return []
        types = ", ".join(current.query_types) or "general questions"
        return [
            BehaviorPrediction(
                predicted_action=f"User is typically active at {context.hour}:00 asking about {types}",
                category=PredictionCategory.TIMING_PATTERN,
                confidence=clamp(current.activity),
                timeframe=Timeframe.SHORT_TERM,
                reasoning=[f"Activity level {current.activity:.2f} at this hour"],
                metadata={"hour": context.hour, "query_types": current.query_types},
            )
        ]

    def _next_step(self, pattern: InteractionPattern, query: str) -> str | None:
        for index, step in enumerate(pattern.sequence[:-1]):
            if string_similarity(step, query) > self._interaction_threshold:
                return pattern.sequence[index + 1]
        return None

    async def predict_follow_ups(
        self, user_id: str, query: str, context: BehaviorPredictionContext | None = None
    ) -> list[str]:
        """Propose next questions from similar stored patterns, deduplicated and capped."""
        model = await self.get_model(user_id)
        text = query.lower().strip()
        follow_ups: list[str] = []

        for pattern in model.query_patterns:
            if string_similarity(pattern.pattern, text) > self._follow_up_threshold:
                follow_ups.extend(pattern.follow_up_queries)

        for interaction in model.interaction_patterns:
            next_step = self._next_step(interaction, text)
            if next_step is not None:
                follow_ups.append(next_step)

        unique = [f for f in dict.fromkeys(follow_ups) if f != text]
        return unique[: self._max_follow_ups]

    async def recommended_response_style(self, user_id: str) -> ResponseStyle:
        """Derive a style label such as ``concise-technical-visual`` from preference weights."""
        weights = (await self.get_model(user_id)).preferences
        style = "balanced"
        reasoning: list[str] = []
        confidence = 0.5

        if weights.conciseness > 0.3:
            style = "concise"
            reasoning.append("User prefers brief responses")
            confidence += 0.2
        elif weights.conciseness < -0.3:
            style = "detailed"
            reasoning.append("User prefers comprehensive explanations")
            confidence += 0.2

        if weights.technical_depth > 0.6:
            style += "-technical"
            reasoning.append("User demonstrates high technical expertise")
            confidence += 0.1

        if weights.visual_preference > 0.5:
            style += "-visual"
            reasoning.append("User prefers visual representations")
            confidence += 0.1

        return ResponseStyle(style=style, reasoning=reasoning, confidence=clamp(confidence))

    async def personalized_recommendations(self, user_id: str) -> PersonalizedRecommendations:
        """Dashboard widgets, chart types, filters and report templates for the user."""
        model = await self.get_model(user_id)
        focus = {f.lower() for f in model.business_focus}
        expertise = model.expertise.overall

        widgets: list[str] = []
        if focus & {"finance", "revenue"}:
            widgets += ["revenue-trends", "sales-pipeline"]
        if focus & {"customer", "customer_service"}:
            widgets += ["customer-segments", "churn-analysis"]
        if "marketing" in focus:
            widgets.append("campaign-performance")
        widgets += ["advanced-analytics", "custom-queries"] if expertise > 0.7 else [
            "summary-dashboard",
            "key-metrics",
        ]

        visual = model.preferences.visual_preference
        if visual > 0.7:
            charts = ["interactive-charts", "heatmaps", "treemaps", "sankey-diagrams"]
        elif visual > 0.4:
            charts = ["bar-charts", "line-charts", "pie-charts"]
        else:
            charts = ["tables", "summary-cards"]

        filters: dict[str, Any] = {}
        if model.temporal_patterns:
            filters["time_range"] = "last_24_hours"
        if model.business_focus:
            filters["business_area"] = model.business_focus[0]

        templates = [
            "executive-summary" if model.communication_style.directness > 0.7 else "detailed-analysis",
            "technical-report" if expertise > 0.6 else "business-overview",
        ]

        return PersonalizedRecommendations(
            dashboard_widgets=widgets,
            chart_types=charts,
            data_filters=filters,
            report_templates=templates,
        )

    # ------------------------------------------------------------------
    # Model updates
    # ------------------------------------------------------------------

    async def update_model(
        self,
        user_id: str,
        entry: ConversationEntry,
        session: SessionMemory | None = None,
        session_queries: list[str] | None = None,
    ) -> UserBehaviorModel:
        """Fold one realized turn into the user's model.

        Args:
            user_id: Owner of the model.
            entry: The persisted conversation turn.
            session: Session the turn belongs to.
            session_queries: Chronological queries of the session, the
                current one included as the last element.
        """
        model = await self.get_model(user_id)
        signals = self._signals.extract(entry.user_query)
        sequence = [q.lower().strip() for q in (session_queries or [entry.user_query])]

        pattern = self._update_query_patterns(model, entry, signals.context_tags)
        if len(sequence) >= 2:
            self._link_follow_up(model, sequence[-2], pattern.pattern)
            self._update_interaction_patterns(model, sequence)
        self._update_preferences(model, signals)
        self._update_temporal(model, entry.timestamp, signals.query_type)
        self._update_expertise(model, signals.domains, signals.complexity, entry.confidence)
        self._update_communication_style(model, signals)

        model.total_interactions += 1
        model.revision += 1
        model.last_updated = datetime.now(UTC)

        logger.debug(
            "Behavior model updated",
            extra={
                "user_id": user_id,
                "session_id": session.session_id if session else entry.session_id,
                "patterns": len(model.query_patterns),
                "revision": model.revision,
            },
        )

        if self._store is not None and model.total_interactions % PERSIST_EVERY == 0:
            try:
                await self.persist_model(user_id)
            except PersistenceError as e:
                # The turn is already applied; raising would let a retry apply it twice.
                logger.warning(
                    "Behavior model snapshot failed: %s",
                    e,
                    extra={"user_id": user_id, "revision": model.revision},
                )
        return model

    def _update_query_patterns(
        self, model: UserBehaviorModel, entry: ConversationEntry, tags: list[str]
    ) -> QueryPattern:
        query = entry.user_query.lower().strip()
        existing = max(
            (p for p in model.query_patterns if string_similarity(p.pattern, query) >= self._pattern_threshold),
            key=lambda p: string_similarity(p.pattern, query),
            default=None,
        )

        if existing is not None:
            existing.frequency += 1
            existing.average_confidence = clamp((existing.average_confidence + entry.confidence) / 2)
            existing.success_rate = clamp(
                existing.success_rate + (entry.confidence - existing.success_rate) / existing.frequency
            )
            existing.record_time(entry.timestamp)
            existing.context_tags = list(dict.fromkeys([*existing.context_tags, *tags]))
            existing.last_seen = entry.timestamp
            pattern = existing
        else:
            pattern = QueryPattern(
                pattern=query,
                success_rate=entry.confidence,
                average_confidence=entry.confidence,
                context_tags=tags,
                last_seen=entry.timestamp,
            )
            pattern.record_time(entry.timestamp)
            model.query_patterns.append(pattern)

        if len(model.query_patterns) > self._max_query_patterns:
            model.query_patterns.sort(key=lambda p: (p.frequency, p.last_seen), reverse=True)
            del model.query_patterns[self._max_query_patterns:]
        return pattern

    def _link_follow_up(self, model: UserBehaviorModel, previous: str, current: str) -> None:
        for pattern in model.query_patterns:
            if string_similarity(pattern.pattern, previous) >= self._pattern_threshold:
                if current not in pattern.follow_up_queries and current != pattern.pattern:
                    pattern.follow_up_queries.append(current)
                    del pattern.follow_up_queries[:-MAX_FOLLOW_UPS_PER_PATTERN]
                return

    def _update_interaction_patterns(self, model: UserBehaviorModel, sequence: list[str]) -> None:
        similar = next(
            (
                p
                for p in model.interaction_patterns
                if sequence_similarity(p.sequence, sequence, self._pattern_threshold)
                > self._interaction_threshold
            ),
            None,
        )
        if similar is not None:
            similar.probability = clamp(similar.probability + 0.1)
            similar.occurrences += 1
            if len(sequence) > len(similar.sequence):
                similar.sequence = list(sequence)
            return

        model.interaction_patterns.append(
            InteractionPattern(
                kind=self.classify_interaction(sequence),
                trigger=sequence[0],
                sequence=list(sequence),
            )
        )
        if len(model.interaction_patterns) > MAX_INTERACTION_PATTERNS:
            model.interaction_patterns.sort(key=lambda p: p.probability, reverse=True)
            del model.interaction_patterns[MAX_INTERACTION_PATTERNS:]

    def classify_interaction(self, sequence: list[str]) -> str:
        """Classify a session's turn sequence.

        cycle: many near-duplicate turns; branching: many distinct topics;
        exploratory: non-decreasing complexity; otherwise a plain sequence.
        """
        if len(sequence) <= 2:
            return "sequence"

        distinct: list[str] = []
        for query in sequence:
            if not any(string_similarity(query, seen) >= self._pattern_threshold for seen in distinct):
                distinct.append(query)
        if len(distinct) < len(sequence) * 0.7:
            return "cycle"

        topics = {topic for query in sequence for topic in self._signals.topics(query)}
        if len(topics) > len(sequence) * 0.8:
            return "branching"

        complexities = [self._signals.complexity(query) for query in sequence]
        if all(b >= a for a, b in zip(complexities, complexities[1:])):
            return "exploratory"
        return "sequence"

    @staticmethod
    def _update_preferences(model: UserBehaviorModel, signals: TurnSignals) -> None:
        weights = model.preferences
        if signals.conciseness > 0:
            weights.conciseness = clamp(weights.conciseness + 0.1, -1.0, 1.0)
        elif signals.conciseness < 0:
            weights.conciseness = clamp(weights.conciseness - 0.1, -1.0, 1.0)
        if signals.technical_terms:
            weights.technical_depth = clamp(weights.technical_depth + signals.technical_terms * 0.05)
        if signals.visual:
            weights.visual_preference = clamp(weights.visual_preference + 0.1)
        if signals.analysis_depth:
            weights.analysis_depth = clamp(weights.analysis_depth + 0.05)
        if signals.speed:
            weights.response_speed = clamp(weights.response_speed + 0.05)
        if signals.proactive:
            weights.proactivity = clamp(weights.proactivity + 0.05)

    @staticmethod
    def _update_temporal(model: UserBehaviorModel, when: datetime, query_type: str) -> None:
        pattern = model.temporal_patterns.get(when.hour)
        if pattern is None:
            model.temporal_patterns[when.hour] = TemporalPattern(
                hour=when.hour, activity=0.1, query_types=[query_type]
            )
            return
        pattern.activity = clamp(pattern.activity + 0.1)
        if query_type not in pattern.query_types:
            pattern.query_types.append(query_type)

    @staticmethod
    def _update_expertise(
        model: UserBehaviorModel, domains: list[str], complexity: float, confidence: float
    ) -> None:
        expertise = model.expertise
        for domain in domains:
            current = expertise.domains.get(domain, 0.1)
            expertise.domains[domain] = clamp(current + complexity * confidence * 0.05)
        if expertise.domains:
            expertise.overall = clamp(sum(expertise.domains.values()) / len(expertise.domains))

    @staticmethod
    def _update_communication_style(model: UserBehaviorModel, signals: TurnSignals) -> None:
        style = model.communication_style
        if signals.formality > 0:
            style.formality = clamp(style.formality + 0.05)
        elif signals.formality < 0:
            style.formality = clamp(style.formality - 0.05)
        if signals.direct:
            style.directness = clamp(style.directness + 0.05)
