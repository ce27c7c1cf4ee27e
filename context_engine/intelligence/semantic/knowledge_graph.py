"""Role-aware rescaling of entity business relevance."""

from context_engine.intelligence.similarity import clamp
from context_engine.models.semantic import BusinessEntity

ROLE_RELEVANCE: dict[str, float] = {
    "admin": 0.9,
    "executive": 0.9,
    "manager": 0.8,
    "user": 0.7,
}
DEFAULT_ROLE_RELEVANCE = 0.5


class BusinessKnowledgeGraph:
    """Blends each entity's base relevance with the caller's role relevance.

    Elevated roles see the same entity as more business-relevant.
    """

    def role_relevance(self, role: str) -> float:
        return ROLE_RELEVANCE.get(role, DEFAULT_ROLE_RELEVANCE)

    def enhance(self, entities: list[BusinessEntity], role: str) -> list[BusinessEntity]:
        factor = self.role_relevance(role)
        return [
            entity.model_copy(
                update={"business_relevance": clamp(0.5 * entity.business_relevance + 0.5 * factor)}
            )
            for entity in entities
        ]
