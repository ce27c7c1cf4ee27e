"""Assistant request/response models."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from context_engine.core.exceptions import ContextEngineError
from context_engine.models.behavior import BehaviorPrediction, ResponseStyle
from context_engine.models.integration import ContextualInsight, SourceError
from context_engine.models.semantic import SemanticAnalysis

APOLOGY_MESSAGE = (
    "I apologize, but I encountered an issue processing your request. Please try again."
)
APOLOGY_CONFIDENCE = 0.1


class ComplexityLevel(str, Enum):
    """Processing tier chosen for a query."""

    SIMPLE = "simple"
    ENHANCED = "enhanced"
    EXPERT = "expert"


class QueryRequest(BaseModel):
    """Request body for an assistant query."""

    query: str = Field(..., max_length=4000, description="Natural-language question")
    session_id: str | None = Field(None, description="Existing session to continue")


class FeedbackRequest(BaseModel):
    """Request body for feedback on an answered turn."""

    entry_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    rating: float = Field(..., ge=0.0, le=5.0, description="Satisfaction score (0-5)")
    comment: str | None = Field(None, max_length=2000)


class AdaptiveResponse(BaseModel):
    """How the answer should be adapted to the user."""

    tone: str = "professional"
    expertise_adjustment: str = "standard"
    contextual_hints: list[str] = Field(default_factory=list, max_length=3)


class ComplexityAssessment(BaseModel):
    """Result of query complexity assessment."""

    level: ComplexityLevel
    score: float = Field(..., ge=0.0, le=1.0)
    estimated_time_ms: int = Field(..., ge=0)
    factors: list[str] = Field(default_factory=list)


class DataSummary(BaseModel):
    """Condensed view of the integrated data for the response."""

    sources: list[str] = Field(default_factory=list)
    total_records: int = 0
    cache_hits: int = 0
    unified_summary: str | None = None
    suggested_queries: list[str] = Field(default_factory=list)


class AssistantResponse(BaseModel):
    """One complete assistant answer."""

    success: bool = True
    answer: str
    session_id: str | None = None
    entry_id: str | None = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    semantic_analysis: SemanticAnalysis | None = None
    data_summary: DataSummary = Field(default_factory=DataSummary)
    insights: list[ContextualInsight] = Field(default_factory=list)
    predictions: list[BehaviorPrediction] = Field(default_factory=list)
    follow_ups: list[str] = Field(default_factory=list, max_length=5)
    response_style: ResponseStyle | None = None
    adaptive: AdaptiveResponse = Field(default_factory=AdaptiveResponse)
    complexity: ComplexityAssessment | None = None
    enhanced: bool = False
    errors: list[SourceError] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def apology(
        cls, session_id: str | None = None, error: ContextEngineError | None = None
    ) -> "AssistantResponse":
        """Fixed low-confidence response used when the pipeline fails."""
        return cls(
            success=False,
            answer=APOLOGY_MESSAGE,
            session_id=session_id,
            confidence=APOLOGY_CONFIDENCE,
            metadata={"error": error.code} if error else {},
        )


class ContextualInsights(BaseModel):
    """Summary of what the assistant knows about the user's recent context."""

    session_summary: str = ""
    recent_patterns: list[str] = Field(default_factory=list)
    suggested_topics: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
