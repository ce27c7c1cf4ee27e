"""Behavior prediction request/response models."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class PredictionCategory(str, Enum):
    """Branches of the behavior predictor."""

    QUERY_TYPE = "query_type"
    CONTENT_PREFERENCE = "content_preference"
    INTERACTION_PATTERN = "interaction_pattern"
    TIMING_PATTERN = "timing_pattern"


class Timeframe(str, Enum):
    """When a predicted behavior is expected."""

    IMMEDIATE = "immediate"
    SHORT_TERM = "short_term"
    LONG_TERM = "long_term"


class BehaviorPrediction(BaseModel):
    """A scored guess at what the user will want next."""

    predicted_action: str
    category: PredictionCategory
    confidence: float = Field(..., ge=0.0, le=1.0)
    timeframe: Timeframe = Timeframe.IMMEDIATE
    reasoning: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class BehaviorPredictionContext(BaseModel):
    """Context for a prediction request."""

    session_id: str | None = None
    recent_queries: list[str] = Field(default_factory=list)
    hour: int = Field(..., ge=0, le=23)
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Monday")
    time_in_session: float = Field(0.0, ge=0.0, description="Seconds since session start")
    environment: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def now(
        cls,
        session_id: str | None = None,
        recent_queries: list[str] | None = None,
        session_start: datetime | None = None,
    ) -> "BehaviorPredictionContext":
        """Build a context for the current wall-clock time."""
        current = datetime.now(UTC)
        elapsed = (current - session_start).total_seconds() if session_start else 0.0
        return cls(
            session_id=session_id,
            recent_queries=recent_queries or [],
            hour=current.hour,
            day_of_week=current.weekday(),
            time_in_session=max(elapsed, 0.0),
        )


class ResponseStyle(BaseModel):
    """Recommended answer style derived from preference weights."""

    style: str
    reasoning: list[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)


class PersonalizedRecommendations(BaseModel):
    """Dashboard personalization hints."""

    dashboard_widgets: list[str] = Field(default_factory=list)
    chart_types: list[str] = Field(default_factory=list)
    data_filters: dict[str, Any] = Field(default_factory=dict)
    report_templates: list[str] = Field(default_factory=list)
