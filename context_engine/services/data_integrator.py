"""Contextual Data Integrator.

Scores each registered data source against a semantic analysis, fans
out source-specific queries in parallel (through a TTL cache and a
per-source circuit breaker), filters results by role and semantics and
synthesizes insights plus a cross-source summary.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from context_engine.core.cache import CacheBackend, make_cache_key
from context_engine.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpen
from context_engine.core.exceptions import SourceUnavailableError
from context_engine.integrations.sources import (
    KAJABI,
    MARKETING,
    SHOPIFY,
    SUPABASE_CUSTOMER,
    DataSource,
)
from context_engine.intelligence.semantic.analyzer import SemanticContextAnalyzer
from context_engine.intelligence.similarity import clamp, tokenize
from context_engine.models.integration import (
    AccessContext,
    ContextualInsight,
    DataSourceRelevance,
    ErrorSeverity,
    IntegrationMetadata,
    IntegrationRecommendations,
    IntegrationResult,
    SourceError,
    SourcePriority,
    SourceQuery,
    SourceRecords,
    TimeWindow,
)
from context_engine.models.semantic import (
    AnalysisContext,
    BusinessCategory,
    EntityType,
    SemanticAnalysis,
    Urgency,
)

logger = logging.getLogger(__name__)

SemanticFilter = Callable[[SourceRecords, SemanticAnalysis], SourceRecords]

SOURCE_PERMISSIONS: dict[str, str] = {
    SHOPIFY: "read:shopify_data",
    KAJABI: "read:kajabi_data",
    MARKETING: "read:marketing_data",
    SUPABASE_CUSTOMER: "read:basic_data",
}
FINANCIAL_QUERY_TYPES = frozenset({"orders", "purchases", "business_kpi_daily"})

ESTIMATED_RECORDS = {SHOPIFY: 100, KAJABI: 75, SUPABASE_CUSTOMER: 200, MARKETING: 50}
SOURCE_CONFIDENCE = {SHOPIFY: 0.85, KAJABI: 0.8, SUPABASE_CUSTOMER: 0.9, MARKETING: 0.75}

INSIGHT_CONFIDENCE = {SHOPIFY: 0.8, KAJABI: 0.75, SUPABASE_CUSTOMER: 0.9, MARKETING: 0.7}

SUGGESTED_QUERIES: dict[BusinessCategory, tuple[str, ...]] = {
    BusinessCategory.FINANCE: (
        "Show revenue trends by month",
        "Compare profit margins across products",
    ),
    BusinessCategory.MARKETING: (
        "Analyze campaign performance by channel",
        "Show customer acquisition costs",
    ),
    BusinessCategory.CUSTOMER_SERVICE: (
        "Which customer segments churn most?",
        "Show recent customer touchpoints",
    ),
}


def passthrough_filter(records: SourceRecords, analysis: SemanticAnalysis) -> SourceRecords:
    """Default semantic filter: keeps every record."""
    return records


def _mentions(analysis: SemanticAnalysis, *words: str) -> bool:
    """Whether any entity contains one of *words* as a whole token (plural allowed)."""
    wanted = set(words) | {f"{word}s" for word in words}
    return any(wanted.intersection(tokenize(entity.text)) for entity in analysis.entities)


@dataclass
class IntegrationAnalytics:
    """In-process counters reported by the status endpoint."""

    requests: int = 0
    successful: int = 0
    lookups: int = 0
    cache_hits: int = 0
    source_errors: int = 0
    total_processing_ms: float = 0.0

    def record(self, result: IntegrationResult, lookups: int) -> None:
        self.requests += 1
        self.successful += int(result.success)
        self.lookups += lookups
        self.cache_hits += result.metadata.cache_hits
        self.source_errors += len(result.metadata.errors)
        self.total_processing_ms += result.metadata.processing_time_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "requests": self.requests,
            "success_rate": self.successful / self.requests if self.requests else 0.0,
            "cache_hit_rate": self.cache_hits / self.lookups if self.lookups else 0.0,
            "average_processing_time_ms": (
                self.total_processing_ms / self.requests if self.requests else 0.0
            ),
            "errors": self.source_errors,
        }


class ContextualDataIntegrator:
    """Builds a unified, permission-filtered view across data sources.

    Args:
        analyzer: Used when no analysis is supplied, and for the fallback.
        sources: Registered sources by name.
        cache: Source result cache (5 minute TTL in production).
        semantic_filter: Post role-filter hook applied to every result set.
        window_days: Default query window.
        failure_threshold: Consecutive failures before a source's breaker opens.
        recovery_timeout: Seconds before an open source breaker half-opens.
        fetch_timeout: Upper bound on one live source call.
    """

    def __init__(
        self,
        analyzer: SemanticContextAnalyzer,
        sources: dict[str, DataSource],
        cache: CacheBackend,
        semantic_filter: SemanticFilter = passthrough_filter,
        window_days: int = 30,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        fetch_timeout: float = 10.0,
    ) -> None:
        self._analyzer = analyzer
        self._sources = sources
        self._cache = cache
        self._semantic_filter = semantic_filter
        self._window_days = window_days
        self._fetch_timeout = fetch_timeout
        self._breakers = {
            name: CircuitBreaker(
                f"source:{name}",
                failure_threshold=failure_threshold,
                recovery_timeout=recovery_timeout,
            )
            for name in sources
        }
        self.analytics = IntegrationAnalytics()

    @property
    def source_names(self) -> list[str]:
        return list(self._sources)

    def accessible_sources(self, access: AccessContext) -> list[str]:
        """Registered sources whose data the caller may see."""
        return [
            name
            for name in self._sources
            if access.can("read:all_data") or access.can(SOURCE_PERMISSIONS.get(name, ""))
        ]

    def get_stats(self) -> dict[str, Any]:
        return {
            **self.analytics.to_dict(),
            "sources": {
                name: breaker.get_stats() for name, breaker in self._breakers.items()
            },
            "cache": self._cache.get_stats(),
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def integrate(
        self,
        query: str,
        context: AnalysisContext,
        access: AccessContext,
        analysis: SemanticAnalysis | None = None,
        window: TimeWindow | None = None,
    ) -> IntegrationResult:
        """Integrate contextual data for one query; never raises.

        Args:
            query: Raw query text.
            context: Analysis context (used when *analysis* is not supplied).
            access: Caller's role and permissions.
            analysis: Pre-computed analysis to reuse.
            window: Time window; defaults to the last ``window_days`` days.

        Returns:
            The integration result, or a fallback with one high-severity
            error when the pipeline itself fails.
        """
        start = time.perf_counter()
        lookups = 0
        try:
            if analysis is None:
                analysis = await self._analyzer.analyze(query, context)
            relevance = self.score_sources(analysis, access)
            window = window or TimeWindow.last_days(self._window_days)

            plans = {
                r.source: self.build_queries(r.source, analysis, window)
                for r in relevance
                if r.source in self._sources
            }
            plans = {source: queries for source, queries in plans.items() if queries}
            lookups = sum(len(queries) for queries in plans.values())

            outcomes = await asyncio.gather(
                *(self._fetch_source(source, queries) for source, queries in plans.items())
            )

            data: dict[str, list[SourceRecords]] = {}
            errors: list[SourceError] = []
            cache_hits = 0
            for source, (results, hits, error) in zip(plans, outcomes):
                cache_hits += hits
                if error is not None:
                    errors.append(error)
                filtered = [
                    self._semantic_filter(self._filter_by_role(r, access), analysis)
                    for r in results
                ]
                filtered = [r for r in filtered if r.records]
                if filtered:
                    data[source] = filtered

            insights = self._insights(data, analysis)
            result = IntegrationResult(
                success=True,
                data=data,
                semantic_analysis=analysis,
                relevance=relevance,
                insights=insights,
                unified_summary=self._unified_summary(data, analysis),
                recommendations=self._recommendations(analysis, relevance, data),
                metadata=IntegrationMetadata(
                    total_records=sum(r.count for results in data.values() for r in results),
                    sources_queried=list(plans),
                    cache_hits=cache_hits,
                    processing_time_ms=round((time.perf_counter() - start) * 1000, 2),
                    errors=errors,
                ),
            )
        except Exception as e:
            logger.exception("Contextual data integration failed", extra={"user_id": access.user_id})
            result = self.fallback(query, access, reason=type(e).__name__)
            result.metadata.processing_time_ms = round((time.perf_counter() - start) * 1000, 2)

        self.analytics.record(result, lookups)
        logger.info(
            "Contextual data integrated",
            extra={
                "user_id": access.user_id,
                "sources": result.metadata.sources_queried,
                "records": result.metadata.total_records,
                "cache_hits": result.metadata.cache_hits,
                "errors": len(result.metadata.errors),
                "duration_ms": result.metadata.processing_time_ms,
            },
        )
        return result

    def fallback(self, query: str, access: AccessContext, reason: str | None = None) -> IntegrationResult:
        """Well-formed empty result carrying a single high-severity error."""
        return IntegrationResult(
            success=False,
            semantic_analysis=self._analyzer.fallback(query, access.role, reason=reason),
            recommendations=IntegrationRecommendations(
                suggested_queries=["Please try a more specific query"]
            ),
            metadata=IntegrationMetadata(
                errors=[
                    SourceError(
                        source="general",
                        error="Contextual data integration failed",
                        severity=ErrorSeverity.HIGH,
                    )
                ]
            ),
        )

    # ------------------------------------------------------------------
    # Relevance
    # ------------------------------------------------------------------

    def score_sources(
        self, analysis: SemanticAnalysis, access: AccessContext
    ) -> list[DataSourceRelevance]:
        """Score every candidate source, highest relevance first."""
        intent = analysis.business_intent
        category = intent.business_category
        scored: list[DataSourceRelevance] = []

        if access.can(SOURCE_PERMISSIONS[SHOPIFY]) or category == BusinessCategory.FINANCE or (
            analysis.entities_of_type(EntityType.PRODUCT) or _mentions(analysis, "revenue")
        ):
            score = 0.5
            reasons = ["E-commerce platform with sales and product data"]
            if category == BusinessCategory.FINANCE:
                score += 0.3
                reasons.append("Financial analysis requires sales data")
            if analysis.entities_of_type(EntityType.PRODUCT) or _mentions(analysis, "revenue"):
                score += 0.2
                reasons.append("Product or revenue entity detected")
            scored.append(self._relevance(SHOPIFY, score, reasons, intent.urgency))

        if access.can(SOURCE_PERMISSIONS[KAJABI]) or category == BusinessCategory.MARKETING or (
            _mentions(analysis, "course", "content")
        ):
            score = 0.4
            reasons = ["Online course platform with engagement data"]
            if category == BusinessCategory.MARKETING:
                score += 0.3
                reasons.append("Marketing analysis benefits from course engagement")
            if _mentions(analysis, "course"):
                score += 0.3
                reasons.append("Course-related query detected")
            scored.append(self._relevance(KAJABI, score, reasons, intent.urgency))

        scored.append(
            self._relevance(
                SUPABASE_CUSTOMER,
                0.9,
                [
                    "Unified customer database provides comprehensive context",
                    "Business KPIs and metrics available",
                ],
                intent.urgency,
            )
        )

        if access.can(SOURCE_PERMISSIONS[MARKETING]) or category == BusinessCategory.MARKETING or (
            _mentions(analysis, "campaign", "ad")
        ):
            score = 0.3
            reasons = ["Marketing platform data for campaign analysis"]
            if category == BusinessCategory.MARKETING:
                score += 0.4
                reasons.append("Marketing-focused query detected")
            if _mentions(analysis, "campaign"):
                score += 0.3
                reasons.append("Campaign entity detected")
            scored.append(self._relevance(MARKETING, score, reasons, intent.urgency))

        scored.sort(key=lambda r: r.relevance_score, reverse=True)
        return scored

    @staticmethod
    def _relevance(
        source: str, score: float, reasons: list[str], urgency: Urgency
    ) -> DataSourceRelevance:
        if source == SUPABASE_CUSTOMER or urgency == Urgency.CRITICAL:
            priority = SourcePriority.HIGH
        elif urgency == Urgency.HIGH:
            priority = SourcePriority.MEDIUM
        else:
            priority = SourcePriority.LOW
        return DataSourceRelevance(
            source=source,
            relevance_score=clamp(score),
            priority=priority,
            estimated_records=ESTIMATED_RECORDS[source],
            reasoning=reasons,
            confidence=SOURCE_CONFIDENCE[source],
        )

    # ------------------------------------------------------------------
    # Query generation
    # ------------------------------------------------------------------

    def build_queries(
        self, source: str, analysis: SemanticAnalysis, window: TimeWindow
    ) -> list[SourceQuery]:
        """Source-specific query shapes for the analysis."""
        category = analysis.business_intent.business_category
        shapes: list[tuple[str, int, dict[str, Any]]] = []

        if source == SHOPIFY:
            if category == BusinessCategory.ANALYTICS or analysis.entities_of_type(EntityType.PRODUCT):
                shapes.append(("products", 50, {"status": "active"}))
            if category == BusinessCategory.FINANCE or _mentions(analysis, "revenue"):
                shapes.append(("orders", 100, {"status": "any"}))
            if category == BusinessCategory.CUSTOMER_SERVICE or analysis.entities_of_type(
                EntityType.CUSTOMER_SEGMENT
            ):
                shapes.append(("customers", 100, {}))
        elif source == KAJABI:
            if category == BusinessCategory.ANALYTICS or _mentions(analysis, "course", "content"):
                shapes.append(("courses", 50, {"type": "course"}))
            if category == BusinessCategory.FINANCE or _mentions(analysis, "revenue"):
                shapes.append(("purchases", 100, {}))
            if category == BusinessCategory.MARKETING or _mentions(analysis, "engagement", "enrollment"):
                shapes.append(("engagement", 100, {}))
        elif source == SUPABASE_CUSTOMER:
            shapes.append(("unified_customers", 100, {"customer_status": {"neq": "deleted"}}))
            if category in (BusinessCategory.FINANCE, BusinessCategory.ANALYTICS):
                shapes.append(("business_kpi_daily", 30, {}))
            if category in (BusinessCategory.CUSTOMER_SERVICE, BusinessCategory.MARKETING):
                shapes.append(("customer_touchpoints", 200, {}))
        elif source == MARKETING:
            if category == BusinessCategory.MARKETING or _mentions(analysis, "campaign"):
                shapes.append(("campaign-performance", 50, {}))
            if category == BusinessCategory.MARKETING or _mentions(analysis, "ad", "conversion"):
                shapes.append(("ad-performance", 100, {}))

        return [
            SourceQuery(source=source, query_type=query_type, window=window, limit=limit, filters=filters)
            for query_type, limit, filters in shapes
        ]

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def _fetch_source(
        self, source: str, queries: list[SourceQuery]
    ) -> tuple[list[SourceRecords], int, SourceError | None]:
        """Run all of a source's queries; returns (results, cache hits, first error)."""
        outcomes = await asyncio.gather(
            *(self._fetch_query(source, q) for q in queries), return_exceptions=True
        )
        results: list[SourceRecords] = []
        hits = 0
        error: SourceError | None = None
        for outcome in outcomes:
            if isinstance(outcome, SourceUnavailableError):
                if error is None:
                    error = SourceError(
                        source=source, error=outcome.reason, severity=ErrorSeverity(outcome.severity)
                    )
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            records, from_cache = outcome
            hits += int(from_cache)
            results.append(records)
        return results, hits, error

    async def _fetch_query(self, source: str, query: SourceQuery) -> tuple[SourceRecords, bool]:
        key = make_cache_key("source", source, query.cache_payload())
        cached, found = self._cache.get(key)
        if found:
            return cached.model_copy(update={"from_cache": True}), True

        breaker = self._breakers[source]
        try:
            records = await asyncio.wait_for(
                breaker.call_async(self._sources[source].fetch, query), timeout=self._fetch_timeout
            )
        except CircuitBreakerOpen as e:
            raise SourceUnavailableError(source, "Circuit open, source temporarily disabled") from e
        except TimeoutError as e:
            breaker.record_failure()
            logger.warning("Source fetch timed out", extra={"source": source, "query_type": query.query_type})
            raise SourceUnavailableError(source, "Source fetch timed out") from e
        except Exception as e:
            logger.warning(
                "Source fetch failed: %s",
                e,
                extra={"source": source, "query_type": query.query_type},
            )
            raise SourceUnavailableError(source, str(e) or type(e).__name__) from e

        self._cache.set(key, records)
        return records, False

    # ------------------------------------------------------------------
    # Filtering & synthesis
    # ------------------------------------------------------------------

    @staticmethod
    def _filter_by_role(records: SourceRecords, access: AccessContext) -> SourceRecords:
        """Privileged roles see everything; others only data their permissions cover."""
        if access.is_privileged or access.can("read:all_data"):
            return records
        if access.can(SOURCE_PERMISSIONS.get(records.source, "")):
            return records
        if records.query_type in FINANCIAL_QUERY_TYPES and access.can("read:financial_data"):
            return records
        return records.model_copy(update={"records": []})

    @staticmethod
    def _insights(
        data: dict[str, list[SourceRecords]], analysis: SemanticAnalysis
    ) -> list[ContextualInsight]:
        category = analysis.business_intent.business_category.value
        insights: list[ContextualInsight] = []
        for source, results in data.items():
            for result in results:
                label = result.query_type.replace("_", " ").replace("-", " ")
                insights.append(
                    ContextualInsight(
                        source=source,
                        insight=f"Found {result.count} {label} records relevant to your query",
                        category=category,
                        confidence=INSIGHT_CONFIDENCE.get(source, 0.7),
                        impact="high" if source == SUPABASE_CUSTOMER else "medium",
                    )
                )
        return insights

    @staticmethod
    def _unified_summary(
        data: dict[str, list[SourceRecords]], analysis: SemanticAnalysis
    ) -> str | None:
        if len(data) < 2:
            return None
        intent = analysis.business_intent
        depth = "high" if intent.complexity > 0.7 else "moderate"
        return (
            f"Integrated data from {len(data)} sources for {intent.business_category.value} analysis. "
            f"Context analysis shows {depth} complexity query requiring comprehensive data context."
        )

    def _recommendations(
        self,
        analysis: SemanticAnalysis,
        relevance: list[DataSourceRelevance],
        data: dict[str, list[SourceRecords]],
    ) -> IntegrationRecommendations:
        category = analysis.business_intent.business_category
        additional = [
            r.source for r in relevance if r.source not in data and r.source in self._sources
        ]
        if MARKETING not in data and category == BusinessCategory.MARKETING:
            additional.append(MARKETING)
        if SHOPIFY not in data and analysis.entities_of_type(EntityType.PRODUCT):
            additional.append(SHOPIFY)

        related: list[str] = []
        if category == BusinessCategory.ANALYTICS:
            related = ["Consider analyzing seasonal trends", "Look into customer segmentation patterns"]

        return IntegrationRecommendations(
            additional_sources=list(dict.fromkeys(additional)),
            suggested_queries=list(SUGGESTED_QUERIES.get(category, ()))[:5],
            related_insights=related[:3],
        )

