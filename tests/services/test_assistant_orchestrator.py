"""Tests for AssistantOrchestrator.

These wire the real engines over an in-memory database and canned data
sources; failure cases patch single collaborators.
"""

from unittest.mock import AsyncMock, patch

import pytest

from context_engine.core.cache import TTLCacheBackend
from context_engine.core.exceptions import NotFoundError
from context_engine.integrations.access import RolePermissionOracle
from context_engine.intelligence.behavior import UserBehaviorPredictor
from context_engine.intelligence.semantic import SemanticContextAnalyzer
from context_engine.intelligence.semantic.embedding import EmbeddingService, HashingEmbeddingStrategy
from context_engine.memory.persistence import PersistenceQueue
from context_engine.memory.store import SessionProfileStore
from context_engine.models.assistant import APOLOGY_MESSAGE, FeedbackRequest
from context_engine.models.context import ConversationEntry, QueryType
from context_engine.services.assistant import (
    DEFAULT_NEXT_STEPS,
    AssistantOrchestrator,
    merge_follow_ups,
)
from context_engine.services.data_integrator import ContextualDataIntegrator

REVENUE_QUERY = "Show me revenue for last month"


@pytest.fixture
def engine(fake_db, make_source):
    """Fully wired orchestrator plus its collaborators."""
    store = SessionProfileStore(fake_db)
    analyzer = SemanticContextAnalyzer(
        EmbeddingService(HashingEmbeddingStrategy(32), TTLCacheBackend(name="embeddings"))
    )
    predictor = UserBehaviorPredictor(TTLCacheBackend(name="predictions"), store=store)
    integrator = ContextualDataIntegrator(
        analyzer,
        {
            "shopify": make_source("shopify", {"orders": [{"id": "o1"}, {"id": "o2"}]}),
            "supabase_customer": make_source(
                "supabase_customer", {"unified_customers": [{"id": "c1"}]}
            ),
        },
        TTLCacheBackend(name="sources"),
    )
    persistence = PersistenceQueue(max_attempts=2, backoff_seconds=0)
    orchestrator = AssistantOrchestrator(
        store, analyzer, predictor, integrator, RolePermissionOracle(), persistence
    )
    return {
        "orchestrator": orchestrator,
        "store": store,
        "analyzer": analyzer,
        "predictor": predictor,
        "persistence": persistence,
        "db": fake_db,
    }


class TestMergeFollowUps:
    def test_existing_first_deduplicated_and_capped(self) -> None:
        merged = merge_follow_ups(
            ["What's the ROI impact?", "How does this affect our budget?"],
            ["what's the roi impact?", "a", "b", "c", "d"],
        )
        assert merged == ["What's the ROI impact?", "How does this affect our budget?", "a", "b", "c"]

    def test_skips_blank(self) -> None:
        assert merge_follow_ups(["  "], ["next"]) == ["next"]


class TestProcessQuery:
    """Tests for the full request/response cycle."""

    @pytest.mark.asyncio
    async def test_answers_with_data_and_predictions(self, engine) -> None:
        response = await engine["orchestrator"].process_query(
            "user-1", REVENUE_QUERY, role="executive"
        )

        assert response.success is True
        assert response.session_id is not None
        assert response.entry_id is not None
        assert response.enhanced is True
        assert response.response_style is not None
        assert set(response.data_summary.sources) == {"shopify", "supabase_customer"}
        assert response.data_summary.total_records == 3
        assert {i.category for i in response.insights} == {"finance"}
        assert "What's the ROI impact?" in response.follow_ups
        assert len(response.follow_ups) <= 5
        assert response.metadata["role"] == "executive"
        assert response.metadata["degraded"] is False
        assert "finance question" in response.answer

    @pytest.mark.asyncio
    async def test_turn_is_persisted_in_background(self, engine) -> None:
        """The entry, session update, insight and model update land after the response."""
        persistence = engine["persistence"]
        await persistence.start()
        response = await engine["orchestrator"].process_query("user-1", REVENUE_QUERY, role="executive")
        await persistence.join()
        await persistence.stop()

        db = engine["db"]
        entries = db.tables["conversation_entries"]
        assert len(entries) == 1
        assert entries[0]["id"] == response.entry_id
        assert entries[0]["query_type"] == QueryType.SIMPLE.value

        session = await engine["store"].get_session(response.session_id)
        assert session is not None
        assert "revenue" in session.active_topics
        assert session.user_intent == "visualization"

        assert len(db.tables["learning_insights"]) == 1
        model = await engine["predictor"].get_model("user-1")
        assert model.total_interactions == 1
        assert persistence.get_stats()["failed"] == 0

    @pytest.mark.asyncio
    async def test_follow_up_turn_uses_history(self, engine) -> None:
        persistence = engine["persistence"]
        await persistence.start()
        first = await engine["orchestrator"].process_query("user-1", REVENUE_QUERY)
        await persistence.join()

        second = await engine["orchestrator"].process_query(
            "user-1", "revenue by product", session_id=first.session_id
        )
        await persistence.join()
        await persistence.stop()

        assert second.session_id == first.session_id
        assert second.semantic_analysis is not None
        assert second.semantic_analysis.contextual_importance == 0.8
        assert second.semantic_analysis.attention.history_attention != []

    @pytest.mark.asyncio
    async def test_foreign_session_is_not_reused(self, engine) -> None:
        other = await engine["store"].create_session("user-2")

        response = await engine["orchestrator"].process_query(
            "user-1", REVENUE_QUERY, session_id=other.session_id
        )

        assert response.success is True
        assert response.session_id != other.session_id
        stored = await engine["store"].get_session(other.session_id)
        assert stored is not None
        assert stored.user_id == "user-2"

    @pytest.mark.asyncio
    async def test_store_outage_degrades_to_ephemeral_session(self, engine) -> None:
        """With the database down the answer is still served; only the model update is queued."""
        engine["db"].failing_tables.update(
            {"user_profiles", "session_memories", "conversation_entries", "behavior_patterns"}
        )

        response = await engine["orchestrator"].process_query("user-1", REVENUE_QUERY)

        assert response.success is True
        assert response.session_id.startswith("session_")
        assert engine["persistence"].get_stats()["pending"] == 1

    @pytest.mark.asyncio
    async def test_enhancement_failure_serves_base_response(self, engine) -> None:
        with patch.object(
            engine["predictor"],
            "predict_behavior",
            AsyncMock(side_effect=RuntimeError("model corrupted")),
        ):
            response = await engine["orchestrator"].process_query("user-1", REVENUE_QUERY)

        assert response.success is True
        assert response.enhanced is False
        assert response.predictions == []
        assert response.response_style is None
        assert response.follow_ups

    @pytest.mark.asyncio
    async def test_pipeline_failure_returns_apology(self, engine) -> None:
        with patch.object(
            engine["analyzer"], "analyze", AsyncMock(side_effect=RuntimeError("unexpected"))
        ):
            response = await engine["orchestrator"].process_query(
                "user-1", REVENUE_QUERY, session_id="session_1"
            )

        assert response.success is False
        assert response.answer == APOLOGY_MESSAGE
        assert response.confidence == 0.1
        assert response.session_id == "session_1"
        assert response.metadata == {"error": "PIPELINE_FAILURE"}

    @pytest.mark.asyncio
    async def test_degraded_analysis_asks_for_clarification(self, engine) -> None:
        analyzer = engine["analyzer"]
        with patch.object(
            analyzer, "analyze", AsyncMock(return_value=analyzer.fallback(REVENUE_QUERY, reason="intent"))
        ):
            response = await engine["orchestrator"].process_query("user-1", REVENUE_QUERY)

        assert response.success is True
        assert response.metadata["degraded"] is True
        assert "rephrase" in response.answer


class TestInsightsAndFeedback:
    """Tests for contextual insights and feedback."""

    @pytest.mark.asyncio
    async def test_insights_for_new_user(self, engine) -> None:
        insights = await engine["orchestrator"].get_contextual_insights("user-1")

        assert insights.session_summary == "No recent interactions"
        assert insights.next_steps == list(DEFAULT_NEXT_STEPS)

    @pytest.mark.asyncio
    async def test_insights_after_activity(self, engine) -> None:
        persistence = engine["persistence"]
        await persistence.start()
        await engine["orchestrator"].process_query("user-1", REVENUE_QUERY)
        await persistence.join()
        await persistence.stop()

        insights = await engine["orchestrator"].get_contextual_insights("user-1")

        assert insights.session_summary.startswith("1 recent interactions")
        assert insights.recent_patterns == ["show me revenue for last month (1x)"]
        assert "finance" in insights.suggested_topics

    @pytest.mark.asyncio
    async def test_feedback_updates_session_and_entry(self, engine) -> None:
        store = engine["store"]
        session = await store.create_session("user-1")
        await store.append_conversation_entry(
            ConversationEntry(
                id="entry-1",
                session_id=session.session_id,
                user_id="user-1",
                timestamp=session.start_time,
                user_query="revenue",
                assistant_response="...",
                confidence=0.8,
            )
        )

        updated = await engine["orchestrator"].process_feedback(
            "user-1",
            FeedbackRequest(
                entry_id="entry-1", session_id=session.session_id, rating=4, comment="Helpful"
            ),
        )

        assert updated.satisfaction_score == 4.0
        assert engine["db"].tables["conversation_entries"][0]["feedback"] == "4/5: Helpful"

    @pytest.mark.asyncio
    async def test_feedback_on_foreign_session_raises(self, engine) -> None:
        session = await engine["store"].create_session("user-2")

        with pytest.raises(NotFoundError):
            await engine["orchestrator"].process_feedback(
                "user-1",
                FeedbackRequest(entry_id="entry-1", session_id=session.session_id, rating=5),
            )

    @pytest.mark.asyncio
    async def test_feedback_cannot_touch_another_users_entry(self, engine) -> None:
        """Owning a session does not grant write access to entries outside it."""
        store = engine["store"]
        own = await store.create_session("user-1")
        other = await store.create_session("user-2")
        await store.append_conversation_entry(
            ConversationEntry(
                id="entry-2",
                session_id=other.session_id,
                user_id="user-2",
                timestamp=other.start_time,
                user_query="revenue",
                assistant_response="...",
                confidence=0.8,
            )
        )

        with pytest.raises(NotFoundError):
            await engine["orchestrator"].process_feedback(
                "user-1",
                FeedbackRequest(entry_id="entry-2", session_id=own.session_id, rating=0, comment="bad"),
            )

        assert engine["db"].tables["conversation_entries"][0]["feedback"] is None
        assert (await store.get_session(own.session_id)).satisfaction_score is None


class TestIntrospection:
    def test_status_and_sources(self, engine) -> None:
        orchestrator = engine["orchestrator"]

        status = orchestrator.get_status()
        assert status["status"] == "operational"
        assert set(status["integration"]["sources"]) == {"shopify", "supabase_customer"}
        assert status["persistence"]["running"] is False
        assert status["store"]["circuit"]["state"] == "closed"

    @pytest.mark.asyncio
    async def test_available_sources_for_user(self, engine) -> None:
        access = await RolePermissionOracle().access_context("user-1")

        sources = engine["orchestrator"].available_sources(access)

        assert sources == [
            {"source": "shopify", "accessible": False},
            {"source": "supabase_customer", "accessible": True},
        ]
