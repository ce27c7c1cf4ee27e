"""In-process behavior model state.

One ``UserBehaviorModel`` per user. It is derived entirely from
conversation turns, so losing it only degrades prediction quality; it
can always be rebuilt from the durable store.
"""

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

MODEL_VERSION = "1.0.0"


@dataclass
class QueryPattern:
    """Aggregated statistics for a family of near-duplicate queries."""

    pattern: str
    frequency: int = 1
    success_rate: float = 0.5
    average_confidence: float = 0.5
    hour_histogram: dict[int, int] = field(default_factory=dict)  # hour -> count
    weekday_histogram: dict[int, int] = field(default_factory=dict)  # 0=Monday -> count
    context_tags: list[str] = field(default_factory=list)
    follow_up_queries: list[str] = field(default_factory=list)
    last_seen: datetime = field(default_factory=lambda: datetime.now(UTC))

    def record_time(self, when: datetime) -> None:
        self.hour_histogram[when.hour] = self.hour_histogram.get(when.hour, 0) + 1
        weekday = when.weekday()
        self.weekday_histogram[weekday] = self.weekday_histogram.get(weekday, 0) + 1


@dataclass
class InteractionPattern:
    """A recurring shape of turn sequences within a session."""

    kind: str  # "sequence" | "cycle" | "branching" | "exploratory"
    trigger: str
    sequence: list[str]
    probability: float = 0.3
    occurrences: int = 1


@dataclass
class PreferenceWeights:
    """Six preference sliders.

    conciseness is in [-1, 1] (detailed .. brief); the rest are in [0, 1].
    """

    conciseness: float = 0.0
    technical_depth: float = 0.0
    visual_preference: float = 0.0
    analysis_depth: float = 0.0
    response_speed: float = 0.0
    proactivity: float = 0.0


@dataclass
class TemporalPattern:
    """Activity level for one hour of the day."""

    hour: int
    activity: float = 0.1
    query_types: list[str] = field(default_factory=list)


@dataclass
class ExpertiseProfile:
    """Overall and per-domain expertise in [0, 1]."""

    overall: float = 0.3
    domains: dict[str, float] = field(default_factory=dict)
    learning_rate: float = 0.5
    adaptability: float = 0.5


@dataclass
class CommunicationStyle:
    """Communication style sliders in [0, 1]."""

    formality: float = 0.5
    directness: float = 0.5
    emotional_tone: float = 0.3
    questioning_style: float = 0.5


@dataclass
class UserBehaviorModel:
    """Everything the predictor knows about one user."""

    user_id: str
    query_patterns: list[QueryPattern] = field(default_factory=list)
    interaction_patterns: list[InteractionPattern] = field(default_factory=list)
    preferences: PreferenceWeights = field(default_factory=PreferenceWeights)
    temporal_patterns: dict[int, TemporalPattern] = field(default_factory=dict)
    expertise: ExpertiseProfile = field(default_factory=ExpertiseProfile)
    communication_style: CommunicationStyle = field(default_factory=CommunicationStyle)
    business_focus: list[str] = field(default_factory=list)
    total_interactions: int = 0
    revision: int = 0
    model_version: str = MODEL_VERSION
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe dict for persistence."""
        data = asdict(self)
        data["last_updated"] = self.last_updated.isoformat()
        for pattern in data["query_patterns"]:
            pattern["last_seen"] = pattern["last_seen"].isoformat()
            pattern["hour_histogram"] = {str(k): v for k, v in pattern["hour_histogram"].items()}
            pattern["weekday_histogram"] = {
                str(k): v for k, v in pattern["weekday_histogram"].items()
            }
        data["temporal_patterns"] = [asdict(p) for p in self.temporal_patterns.values()]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserBehaviorModel":
        """Rebuild a model from ``to_dict`` output."""
        query_patterns = [
            QueryPattern(
                **{
                    **p,
                    "hour_histogram": {int(k): v for k, v in p.get("hour_histogram", {}).items()},
                    "weekday_histogram": {
                        int(k): v for k, v in p.get("weekday_histogram", {}).items()
                    },
                    "last_seen": datetime.fromisoformat(p["last_seen"]),
                }
            )
            for p in data.get("query_patterns", [])
        ]
        temporal = {int(p["hour"]): TemporalPattern(**p) for p in data.get("temporal_patterns", [])}
        return cls(
            user_id=data["user_id"],
            query_patterns=query_patterns,
            interaction_patterns=[
                InteractionPattern(**p) for p in data.get("interaction_patterns", [])
            ],
            preferences=PreferenceWeights(**data.get("preferences", {})),
            temporal_patterns=temporal,
            expertise=ExpertiseProfile(**data.get("expertise", {})),
            communication_style=CommunicationStyle(**data.get("communication_style", {})),
            business_focus=list(data.get("business_focus", [])),
            total_interactions=int(data.get("total_interactions", 0)),
            revision=int(data.get("revision", 0)),
            model_version=data.get("model_version", MODEL_VERSION),
            last_updated=datetime.fromisoformat(data["last_updated"])
            if data.get("last_updated")
            else datetime.now(UTC),
        )
