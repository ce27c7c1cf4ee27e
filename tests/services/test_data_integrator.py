"""Tests for ContextualDataIntegrator.

This module tests:
- Source relevance scoring and query generation
- Parallel fetching through the result cache
- Partial failures, timeouts and open circuits
- Role filtering and the whole-pipeline fallback
"""

import asyncio
from datetime import UTC, datetime
from unittest.mock import patch

import pytest

from context_engine.core.cache import TTLCacheBackend
from context_engine.integrations.access import permissions_for_role
from context_engine.intelligence.semantic import SemanticContextAnalyzer
from context_engine.intelligence.semantic.embedding import EmbeddingService, HashingEmbeddingStrategy
from context_engine.models.integration import (
    AccessContext,
    ErrorSeverity,
    SourcePriority,
    SourceQuery,
    SourceRecords,
    TimeWindow,
)
from context_engine.models.semantic import AnalysisContext, BusinessEntity, EntityType
from context_engine.services.data_integrator import ContextualDataIntegrator

WINDOW = TimeWindow.last_days(30, now=datetime(2026, 3, 31, tzinfo=UTC))

ORDERS = [{"id": "o1", "total": 120.0}, {"id": "o2", "total": 80.0}]
CUSTOMERS = [{"id": "c1"}, {"id": "c2"}, {"id": "c3"}]
KPIS = [{"date": "2026-03-30", "revenue": 200.0}]


def _analyzer() -> SemanticContextAnalyzer:
    return SemanticContextAnalyzer(
        EmbeddingService(HashingEmbeddingStrategy(32), TTLCacheBackend(name="embeddings"))
    )


def _access(role: str) -> AccessContext:
    return AccessContext(user_id="user-1", role=role, permissions=permissions_for_role(role))


def _context(role: str = "executive") -> AnalysisContext:
    return AnalysisContext(user_id="user-1", role=role)


@pytest.fixture
def sources(make_source) -> dict:
    return {
        "shopify": make_source("shopify", {"orders": ORDERS, "products": [{"id": "p1"}]}),
        "supabase_customer": make_source(
            "supabase_customer", {"unified_customers": CUSTOMERS, "business_kpi_daily": KPIS}
        ),
    }


@pytest.fixture
def integrator(sources, cache) -> ContextualDataIntegrator:
    return ContextualDataIntegrator(_analyzer(), sources, cache)


class TestScoring:
    """Tests for source relevance scoring."""

    @pytest.mark.asyncio
    async def test_revenue_query_ranks_shopify_first(self, integrator) -> None:
        analysis = await _analyzer().analyze("Show me revenue for last month", _context())

        relevance = integrator.score_sources(analysis, _access("executive"))

        assert [r.source for r in relevance] == ["shopify", "supabase_customer"]
        assert relevance[0].relevance_score == 1.0
        assert relevance[1].priority == SourcePriority.HIGH
        scores = [r.relevance_score for r in relevance]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_manager_permissions_add_sources(self, integrator) -> None:
        analysis = await _analyzer().analyze("list customers", _context("manager"))

        relevance = integrator.score_sources(analysis, _access("manager"))

        assert {r.source for r in relevance} == {"shopify", "kajabi", "supabase_customer", "marketing"}

    @pytest.mark.asyncio
    async def test_critical_urgency_is_high_priority(self, integrator) -> None:
        analysis = await _analyzer().analyze("urgent revenue drop", _context())

        relevance = integrator.score_sources(analysis, _access("executive"))

        assert all(r.priority == SourcePriority.HIGH for r in relevance)

    @pytest.mark.asyncio
    async def test_query_shapes(self, integrator) -> None:
        analysis = await _analyzer().analyze("Show me revenue for last month", _context())

        shopify = integrator.build_queries("shopify", analysis, WINDOW)
        unified = integrator.build_queries("supabase_customer", analysis, WINDOW)

        assert [q.query_type for q in shopify] == ["orders"]
        assert [q.query_type for q in unified] == ["unified_customers", "business_kpi_daily"]
        assert unified[0].filters == {"customer_status": {"neq": "deleted"}}
        assert all(q.window == WINDOW for q in shopify + unified)

    def test_marketing_keywords_match_whole_words(self, integrator) -> None:
        """'ad' inside 'leads' or 'download' does not pull in marketing data."""
        base = _analyzer().fallback("lead generation", "user")

        def entity(text: str) -> BusinessEntity:
            return BusinessEntity(
                text=text, entity_type=EntityType.METRIC, confidence=0.8, business_relevance=0.5
            )

        leads = base.model_copy(update={"entities": [entity("leads"), entity("download")]})
        ads = base.model_copy(update={"entities": [entity("ad spend")]})

        assert "marketing" not in {r.source for r in integrator.score_sources(leads, _access("user"))}
        assert "marketing" in {r.source for r in integrator.score_sources(ads, _access("user"))}


class TestIntegrate:
    """Tests for the integrate entry point."""

    @pytest.mark.asyncio
    async def test_revenue_scenario(self, integrator) -> None:
        """A finance question pulls orders and unified KPIs with finance insights."""
        result = await integrator.integrate(
            "Show me revenue for last month", _context(), _access("executive"), window=WINDOW
        )

        assert result.success is True
        assert result.metadata.sources_queried == ["shopify", "supabase_customer"]
        assert result.metadata.total_records == len(ORDERS) + len(CUSTOMERS) + len(KPIS)
        assert result.metadata.errors == []
        assert [r.query_type for r in result.data["shopify"]] == ["orders"]
        assert {i.category for i in result.insights} == {"finance"}
        assert result.unified_summary is not None
        assert result.unified_summary.startswith("Integrated data from 2 sources for finance")
        assert "Show revenue trends by month" in result.recommendations.suggested_queries

    @pytest.mark.asyncio
    async def test_reuses_supplied_analysis(self, integrator) -> None:
        analysis = await _analyzer().analyze("Show me revenue", _context())

        with patch.object(integrator._analyzer, "analyze") as analyze:
            result = await integrator.integrate(
                "Show me revenue", _context(), _access("executive"), analysis=analysis, window=WINDOW
            )

        analyze.assert_not_called()
        assert result.semantic_analysis is analysis

    @pytest.mark.asyncio
    async def test_second_identical_query_hits_cache(self, integrator, sources) -> None:
        """Every source query is served from cache the second time."""
        first = await integrator.integrate(
            "Show me revenue for last month", _context(), _access("executive"), window=WINDOW
        )
        calls = {name: len(source.calls) for name, source in sources.items()}

        second = await integrator.integrate(
            "Show me revenue for last month", _context(), _access("executive"), window=WINDOW
        )

        assert first.metadata.cache_hits == 0
        assert second.metadata.cache_hits == 3
        assert second.metadata.sources_queried == first.metadata.sources_queried
        assert {name: len(source.calls) for name, source in sources.items()} == calls
        assert all(r.from_cache for records in second.data.values() for r in records)
        assert integrator.get_stats()["cache_hit_rate"] == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_other_sources(self, make_source, cache) -> None:
        sources = {
            "shopify": make_source("shopify", error=RuntimeError("shopify down")),
            "supabase_customer": make_source("supabase_customer", {"unified_customers": CUSTOMERS}),
        }
        integrator = ContextualDataIntegrator(_analyzer(), sources, cache)

        result = await integrator.integrate(
            "Show me revenue for last month", _context(), _access("executive"), window=WINDOW
        )

        assert result.success is True
        assert len(result.metadata.errors) == 1
        error = result.metadata.errors[0]
        assert error.source == "shopify"
        assert error.error == "shopify down"
        assert error.severity == ErrorSeverity.MEDIUM
        assert "shopify" not in result.data
        assert result.data["supabase_customer"][0].count == len(CUSTOMERS)
        assert "shopify" in result.recommendations.additional_sources

    @pytest.mark.asyncio
    async def test_one_error_per_source(self, make_source, cache) -> None:
        """Several failing queries for one source produce a single error."""
        sources = {
            "supabase_customer": make_source("supabase_customer", error=RuntimeError("db down")),
        }
        integrator = ContextualDataIntegrator(_analyzer(), sources, cache)

        result = await integrator.integrate(
            "Show me revenue for last month", _context(), _access("executive"), window=WINDOW
        )

        assert len(sources["supabase_customer"].calls) == 2
        assert [e.source for e in result.metadata.errors] == ["supabase_customer"]

    @pytest.mark.asyncio
    async def test_timeout_becomes_source_error(self, make_source, cache) -> None:
        class SlowSource:
            name = "shopify"

            async def fetch(self, query: SourceQuery) -> SourceRecords:
                await asyncio.sleep(1)
                return SourceRecords(source="shopify", query_type=query.query_type)

        sources = {
            "shopify": SlowSource(),
            "supabase_customer": make_source("supabase_customer", {"unified_customers": CUSTOMERS}),
        }
        integrator = ContextualDataIntegrator(_analyzer(), sources, cache, fetch_timeout=0.01)

        result = await integrator.integrate(
            "Show me revenue for last month", _context(), _access("executive"), window=WINDOW
        )

        assert result.success is True
        assert result.metadata.errors[0].error == "Source fetch timed out"
        assert integrator.get_stats()["sources"]["shopify"]["failures"] == 1

    @pytest.mark.asyncio
    async def test_open_circuit_skips_source(self, make_source) -> None:
        failing = make_source("shopify", error=RuntimeError("shopify down"))
        sources = {"shopify": failing}
        integrator = ContextualDataIntegrator(
            _analyzer(), sources, TTLCacheBackend(), failure_threshold=1
        )

        await integrator.integrate("revenue", _context(), _access("executive"), window=WINDOW)
        result = await integrator.integrate("revenue", _context(), _access("executive"), window=WINDOW)

        assert len(failing.calls) == 1
        assert "Circuit open" in result.metadata.errors[0].error
        assert integrator.get_stats()["sources"]["shopify"]["state"] == "open"

    @pytest.mark.asyncio
    async def test_visitor_sees_no_protected_data(self, integrator) -> None:
        """Records a role may not read are dropped without failing the request."""
        result = await integrator.integrate(
            "Show me revenue for last month", _context("visitor"), _access("visitor"), window=WINDOW
        )

        assert result.success is True
        assert result.data == {}
        assert result.insights == []
        assert result.unified_summary is None
        assert result.metadata.total_records == 0

    @pytest.mark.asyncio
    async def test_user_sees_only_basic_data(self, integrator) -> None:
        result = await integrator.integrate(
            "Show me revenue for last month", _context("user"), _access("user"), window=WINDOW
        )

        assert list(result.data) == ["supabase_customer"]
        assert result.unified_summary is None

    @pytest.mark.asyncio
    async def test_semantic_filter_hook(self, sources, cache) -> None:
        def drop_all(records: SourceRecords, analysis) -> SourceRecords:
            return records.model_copy(update={"records": []})

        integrator = ContextualDataIntegrator(_analyzer(), sources, cache, semantic_filter=drop_all)

        result = await integrator.integrate(
            "Show me revenue", _context(), _access("admin"), window=WINDOW
        )

        assert result.data == {}

    @pytest.mark.asyncio
    async def test_pipeline_failure_returns_fallback(self, integrator) -> None:
        """An unexpected failure yields a well-formed unsuccessful result."""
        with patch.object(integrator, "score_sources", side_effect=RuntimeError("boom")):
            result = await integrator.integrate("Show me revenue", _context(), _access("admin"))

        assert result.success is False
        assert result.data == {}
        assert len(result.metadata.errors) == 1
        assert result.metadata.errors[0].source == "general"
        assert result.metadata.errors[0].severity == ErrorSeverity.HIGH
        assert result.semantic_analysis.degraded is True
        assert integrator.get_stats()["success_rate"] == 0.0


class TestAccessibleSources:
    def test_by_role(self, make_source, cache) -> None:
        sources = {name: make_source(name) for name in ("shopify", "kajabi", "supabase_customer")}
        integrator = ContextualDataIntegrator(_analyzer(), sources, cache)

        assert integrator.accessible_sources(_access("manager")) == ["shopify", "kajabi"]
        assert integrator.accessible_sources(_access("user")) == ["supabase_customer"]
        assert integrator.accessible_sources(_access("executive")) == list(sources)
        assert integrator.accessible_sources(_access("visitor")) == []
