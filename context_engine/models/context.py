"""Durable context models: profiles, sessions, conversation entries.

These mirror the Supabase tables owned by the Session & Profile Store.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ExpertiseLevel(str, Enum):
    """Ordinal user expertise."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class CommunicationPreference(str, Enum):
    """How the user prefers answers to be phrased."""

    CONCISE = "concise"
    DETAILED = "detailed"
    TECHNICAL = "technical"
    CONVERSATIONAL = "conversational"


class AnalysisDepth(str, Enum):
    """Preferred depth of analytical answers."""

    BASIC = "basic"
    STANDARD = "standard"
    COMPREHENSIVE = "comprehensive"


class QueryType(str, Enum):
    """Classification of a conversation turn."""

    SIMPLE = "simple"
    COMPLEX = "complex"
    CLARIFICATION = "clarification"


class UserProfile(BaseModel):
    """Durable per-user profile."""

    user_id: str
    expertise_level: ExpertiseLevel = ExpertiseLevel.INTERMEDIATE
    communication_style: CommunicationPreference = CommunicationPreference.DETAILED
    business_focus: list[str] = Field(default_factory=list)
    preferred_analysis_depth: AnalysisDepth = AnalysisDepth.STANDARD
    timezone: str = "UTC"
    language: str = "en"
    last_active: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProfileUpdate(BaseModel):
    """Partial profile update; unset fields are left untouched."""

    expertise_level: ExpertiseLevel | None = None
    communication_style: CommunicationPreference | None = None
    business_focus: list[str] | None = Field(None, max_length=20)
    preferred_analysis_depth: AnalysisDepth | None = None
    timezone: str | None = Field(None, max_length=64)
    language: str | None = Field(None, min_length=2, max_length=8)


class SessionMemory(BaseModel):
    """One conversation window."""

    session_id: str
    user_id: str
    start_time: datetime
    last_activity: datetime
    context_summary: str = ""
    active_topics: list[str] = Field(default_factory=list)
    user_intent: str | None = None
    satisfaction_score: float | None = Field(None, ge=0.0, le=5.0)

    @model_validator(mode="after")
    def _check_activity_order(self) -> "SessionMemory":
        if self.last_activity < self.start_time:
            raise ValueError("last_activity must not precede start_time")
        return self


class SessionUpdate(BaseModel):
    """Mutable session fields."""

    last_activity: datetime | None = None
    context_summary: str | None = None
    active_topics: list[str] | None = None
    user_intent: str | None = None
    satisfaction_score: float | None = Field(None, ge=0.0, le=5.0)


class ConversationEntry(BaseModel):
    """Immutable record of one query/response turn."""

    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str
    user_id: str
    timestamp: datetime
    user_query: str
    assistant_response: str
    context: dict[str, Any] = Field(default_factory=dict)
    feedback: str | None = None
    follow_up: list[str] = Field(default_factory=list)
    query_type: QueryType = QueryType.SIMPLE
    confidence: float = Field(..., ge=0.0, le=1.0)
    response_time: float = Field(0.0, ge=0.0, description="Response latency in milliseconds")


class LearningInsight(BaseModel):
    """Something learned about the user from their interactions."""

    id: str
    user_id: str
    insight_type: str
    content: str
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    source: str = "interaction"
    created_at: datetime | None = None


class StoredBehaviorPattern(BaseModel):
    """Persisted behavior pattern row."""

    id: str
    user_id: str
    pattern_type: str
    pattern_data: dict[str, Any] = Field(default_factory=dict)
    frequency: int = Field(1, ge=0)
    predictive_power: float = Field(0.5, ge=0.0, le=1.0)
    last_seen: datetime | None = None


class MemoryKind(str, Enum):
    """Kinds of records returned by memory search."""

    CONVERSATION = "conversation"
    INSIGHT = "insight"
    PATTERN = "pattern"


class MemorySearchCriteria(BaseModel):
    """Parameters for searching a user's stored memory."""

    user_id: str
    query: str = ""
    kinds: list[MemoryKind] = Field(
        default_factory=lambda: [MemoryKind.CONVERSATION, MemoryKind.INSIGHT, MemoryKind.PATTERN]
    )
    session_id: str | None = None
    limit: int = Field(50, ge=1, le=200)


class MemorySearchResult(BaseModel):
    """One ranked memory search hit."""

    kind: MemoryKind
    id: str
    relevance: float = Field(..., ge=0.0, le=1.0)
    timestamp: datetime | None = None
    content: dict[str, Any] = Field(default_factory=dict)


class ContextStats(BaseModel):
    """Aggregate counts over a user's stored context."""

    user_id: str
    total_conversations: int = 0
    total_sessions: int = 0
    total_insights: int = 0
    total_patterns: int = 0
    average_confidence: float = Field(0.0, ge=0.0, le=1.0)
    top_topics: list[str] = Field(default_factory=list)
