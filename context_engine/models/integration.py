"""Contextual data integration models."""

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from context_engine.models.semantic import SemanticAnalysis


class SourcePriority(str, Enum):
    """Priority tier of a data source for one query."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ErrorSeverity(str, Enum):
    """Severity of a recorded integration error."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AccessContext(BaseModel):
    """Permission context of the caller."""

    user_id: str
    role: str = "visitor"
    permissions: list[str] = Field(default_factory=list)

    @property
    def is_privileged(self) -> bool:
        return self.role in ("admin", "system")

    def can(self, permission: str) -> bool:
        return self.is_privileged or permission in self.permissions


class TimeWindow(BaseModel):
    """Closed time range used by source queries."""

    start: datetime
    end: datetime

    @classmethod
    def last_days(cls, days: int, now: datetime | None = None) -> "TimeWindow":
        """Window covering the last *days* days up to *now*."""
        end = now or datetime.now(UTC)
        return cls(start=end - timedelta(days=days), end=end)


class SourceQuery(BaseModel):
    """One source-specific query."""

    source: str
    query_type: str
    window: TimeWindow
    limit: int = Field(100, ge=1, le=1000)
    filters: dict[str, Any] = Field(default_factory=dict)

    def cache_payload(self) -> dict[str, Any]:
        """Stable dict used to build the result cache key.

        The window is rounded to the day so queries built a few seconds
        apart share a cache entry.
        """
        return {
            "query_type": self.query_type,
            "start": self.window.start.date().isoformat(),
            "end": self.window.end.date().isoformat(),
            "limit": self.limit,
            "filters": self.filters,
        }


class SourceRecords(BaseModel):
    """Records returned by one source query."""

    source: str
    query_type: str
    records: list[dict[str, Any]] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    from_cache: bool = False

    @property
    def count(self) -> int:
        return len(self.records)


class DataSourceRelevance(BaseModel):
    """Relevance of a data source for the current query."""

    source: str
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    priority: SourcePriority = SourcePriority.LOW
    estimated_records: int = Field(0, ge=0)
    reasoning: list[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)


class SourceError(BaseModel):
    """Typed error entry for a failed source or stage."""

    source: str
    error: str
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    fallback_applied: bool = True


class ContextualInsight(BaseModel):
    """Short natural-language observation derived from source data."""

    source: str
    insight: str
    category: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    impact: str = "medium"


class IntegrationRecommendations(BaseModel):
    """Suggested next sources/queries."""

    additional_sources: list[str] = Field(default_factory=list)
    suggested_queries: list[str] = Field(default_factory=list)
    related_insights: list[str] = Field(default_factory=list)


class IntegrationMetadata(BaseModel):
    """Bookkeeping for one integration request."""

    total_records: int = 0
    sources_queried: list[str] = Field(default_factory=list)
    cache_hits: int = 0
    processing_time_ms: float = 0.0
    errors: list[SourceError] = Field(default_factory=list)


class IntegrationResult(BaseModel):
    """Unified, permission-filtered view across data sources."""

    success: bool
    data: dict[str, list[SourceRecords]] = Field(default_factory=dict)
    semantic_analysis: SemanticAnalysis
    relevance: list[DataSourceRelevance] = Field(default_factory=list)
    insights: list[ContextualInsight] = Field(default_factory=list)
    unified_summary: str | None = None
    recommendations: IntegrationRecommendations = Field(default_factory=IntegrationRecommendations)
    metadata: IntegrationMetadata = Field(default_factory=IntegrationMetadata)
