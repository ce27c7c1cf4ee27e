"""Semantic analysis models produced by the analyzer pipeline."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from context_engine.models.context import ExpertiseLevel


class BusinessCategory(str, Enum):
    """Business area a query belongs to."""

    ANALYTICS = "analytics"
    FINANCE = "finance"
    MARKETING = "marketing"
    OPERATIONS = "operations"
    CUSTOMER_SERVICE = "customer_service"
    STRATEGIC = "strategic"
    TECHNICAL = "technical"


class Urgency(str, Enum):
    """How urgently the user needs an answer."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PrimaryIntent(str, Enum):
    """What the user is trying to do."""

    ANALYSIS = "analysis"
    VISUALIZATION = "visualization"
    OPTIMIZATION = "optimization"
    PREDICTION = "prediction"
    INFORMATION_REQUEST = "information_request"
    GENERAL_INQUIRY = "general_inquiry"


class EntityType(str, Enum):
    """Business vocabulary entity types."""

    METRIC = "metric"
    KPI = "kpi"
    PRODUCT = "product"
    CAMPAIGN = "campaign"
    CUSTOMER_SEGMENT = "customer_segment"
    COURSE = "course"
    CHANNEL = "channel"
    TIMEFRAME = "timeframe"


class HistoryTurn(BaseModel):
    """A prior conversation turn supplied as analysis context."""

    query: str
    response: str = ""
    timestamp: datetime | None = None
    confidence: float = Field(0.5, ge=0.0, le=1.0)


class AnalysisContext(BaseModel):
    """Caller context for one semantic analysis."""

    user_id: str
    role: str = "user"
    history: list[HistoryTurn] = Field(default_factory=list)
    business_focus: list[str] = Field(default_factory=list)
    expertise_level: ExpertiseLevel = ExpertiseLevel.INTERMEDIATE


class BusinessEntity(BaseModel):
    """A typed, confidence-scored mention of a business concept."""

    text: str
    entity_type: EntityType
    confidence: float = Field(..., ge=0.0, le=1.0)
    business_relevance: float = Field(..., ge=0.0, le=1.0)
    position: int = Field(0, ge=0)


class EntityRelationship(BaseModel):
    """Relationship between two entities found in the same query."""

    source: str
    target: str
    relation_type: str
    strength: float = Field(..., ge=0.0, le=1.0)


class SemanticRole(BaseModel):
    """Semantic role label (agent, action, object, temporal)."""

    role: str
    text: str


class BusinessIntent(BaseModel):
    """Classified business intent of a query."""

    primary_intent: PrimaryIntent = PrimaryIntent.GENERAL_INQUIRY
    business_category: BusinessCategory = BusinessCategory.ANALYTICS
    urgency: Urgency = Urgency.MEDIUM
    complexity: float = Field(0.0, ge=0.0, le=1.0)
    required_expertise: ExpertiseLevel = ExpertiseLevel.BEGINNER


class Embedding(BaseModel):
    """Fixed-dimension query embedding."""

    vector: list[float]
    confidence: float = Field(..., ge=0.0, le=1.0)
    language: str = "en"

    @property
    def dimensions(self) -> int:
        return len(self.vector)


class AttentionWeights(BaseModel):
    """Attention over query tokens, history turns and caller role."""

    query_attention: list[float] = Field(default_factory=list)
    history_attention: list[float] = Field(default_factory=list)
    role_weights: dict[str, float] = Field(default_factory=dict)


class ContextPrediction(BaseModel):
    """What the analyzer expects the user to need next."""

    timeframe: str = "current"
    priority: Urgency = Urgency.MEDIUM
    suggested_actions: list[str] = Field(default_factory=list)
    follow_up_questions: list[str] = Field(default_factory=list)
    related_topics: list[str] = Field(default_factory=list)
    business_implication: str = ""


class SemanticAnalysis(BaseModel):
    """Structured semantic/business representation of one query."""

    query: str
    normalized_query: str = ""
    language: str = "en"
    semantic_roles: list[SemanticRole] = Field(default_factory=list)
    entities: list[BusinessEntity] = Field(default_factory=list)
    relationships: list[EntityRelationship] = Field(default_factory=list)
    business_intent: BusinessIntent = Field(default_factory=BusinessIntent)
    contextual_importance: float = Field(0.5, ge=0.0, le=1.0)
    domain_relevance: dict[str, float] = Field(default_factory=dict)
    attention: AttentionWeights = Field(default_factory=AttentionWeights)
    embedding_confidence: float = Field(0.0, ge=0.0, le=1.0)
    context_prediction: ContextPrediction = Field(default_factory=ContextPrediction)
    confidence: float = Field(..., ge=0.0, le=1.0)
    degraded: bool = False
    degraded_reason: str | None = None

    def entities_of_type(self, entity_type: EntityType) -> list[BusinessEntity]:
        """Return entities of the given type."""
        return [e for e in self.entities if e.entity_type == entity_type]

    def has_entity(self, *texts: str) -> bool:
        """Whether any entity's text matches one of *texts*."""
        wanted = {t.lower() for t in texts}
        return any(e.text.lower() in wanted for e in self.entities)
