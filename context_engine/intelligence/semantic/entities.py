"""Business entity, relationship and semantic-role extraction."""

import re
from dataclasses import dataclass

from context_engine.models.semantic import (
    BusinessCategory,
    BusinessEntity,
    EntityRelationship,
    EntityType,
    PrimaryIntent,
    SemanticRole,
)


@dataclass(frozen=True)
class VocabularyTerm:
    """One entry of the business vocabulary."""

    pattern: re.Pattern[str]
    canonical: str
    entity_type: EntityType
    confidence: float


def _term(words: str, canonical: str, entity_type: EntityType, confidence: float) -> VocabularyTerm:
    return VocabularyTerm(re.compile(rf"\b(?:{words})\b"), canonical, entity_type, confidence)


VOCABULARY: tuple[VocabularyTerm, ...] = (
    _term("revenue|revenues|omzet", "revenue", EntityType.METRIC, 0.9),
    _term("profit|profits|winst", "profit", EntityType.METRIC, 0.9),
    _term("sales", "sales", EntityType.METRIC, 0.85),
    _term("margin|margins", "margin", EntityType.METRIC, 0.85),
    _term("cost|costs", "cost", EntityType.METRIC, 0.8),
    _term("churn|churn rate", "churn", EntityType.METRIC, 0.85),
    _term("conversion rate|conversions?", "conversion", EntityType.METRIC, 0.85),
    _term("roi|return on investment", "roi", EntityType.KPI, 0.85),
    _term("kpis?", "kpi", EntityType.KPI, 0.85),
    _term("aov|ltv|cac|mrr|arr", "unit economics", EntityType.KPI, 0.8),
    _term("products?|items?|skus?", "product", EntityType.PRODUCT, 0.8),
    _term("inventory|stock", "inventory", EntityType.PRODUCT, 0.75),
    _term("orders?", "orders", EntityType.PRODUCT, 0.75),
    _term("campaigns?|campagnes?", "campaign", EntityType.CAMPAIGN, 0.8),
    _term("ads?|adverts?|promotions?", "ads", EntityType.CAMPAIGN, 0.75),
    _term("customers?|klanten?", "customer", EntityType.CUSTOMER_SEGMENT, 0.8),
    _term("segments?|cohorts?|subscribers?", "segment", EntityType.CUSTOMER_SEGMENT, 0.75),
    _term("courses?|cursus(?:sen)?|lessons?", "course", EntityType.COURSE, 0.8),
    _term("enrollments?|students?", "enrollment", EntityType.COURSE, 0.75),
    _term("email|newsletter", "email", EntityType.CHANNEL, 0.75),
    _term("social|instagram|facebook|linkedin|tiktok", "social", EntityType.CHANNEL, 0.75),
    _term(
        r"(?:last|this|next|previous) (?:week|month|quarter|year)|today|yesterday|ytd|q[1-4]",
        "timeframe",
        EntityType.TIMEFRAME,
        0.9,
    ),
)

# Entity types that matter most for each business category.
CATEGORY_ENTITY_AFFINITY: dict[BusinessCategory, frozenset[EntityType]] = {
    BusinessCategory.FINANCE: frozenset({EntityType.METRIC, EntityType.KPI, EntityType.PRODUCT}),
    BusinessCategory.MARKETING: frozenset({EntityType.CAMPAIGN, EntityType.CHANNEL, EntityType.CUSTOMER_SEGMENT}),
    BusinessCategory.CUSTOMER_SERVICE: frozenset({EntityType.CUSTOMER_SEGMENT, EntityType.METRIC}),
    BusinessCategory.OPERATIONS: frozenset({EntityType.PRODUCT, EntityType.KPI}),
    BusinessCategory.ANALYTICS: frozenset({EntityType.METRIC, EntityType.KPI}),
    BusinessCategory.STRATEGIC: frozenset({EntityType.METRIC, EntityType.CUSTOMER_SEGMENT}),
    BusinessCategory.TECHNICAL: frozenset(),
}

RELATION_TYPES: dict[tuple[EntityType, EntityType], str] = {
    (EntityType.METRIC, EntityType.TIMEFRAME): "measured_over",
    (EntityType.KPI, EntityType.TIMEFRAME): "measured_over",
    (EntityType.METRIC, EntityType.CUSTOMER_SEGMENT): "segmented_by",
    (EntityType.METRIC, EntityType.PRODUCT): "attributed_to",
    (EntityType.CAMPAIGN, EntityType.CHANNEL): "runs_on",
    (EntityType.COURSE, EntityType.CUSTOMER_SEGMENT): "consumed_by",
}

ACTION_VERBS = (
    "show", "display", "analyze", "analyse", "compare", "predict", "forecast",
    "optimize", "improve", "explain", "list", "find", "calculate",
)


class EntityExtractor:
    """Matches the query against the fixed business vocabulary."""

    def extract(self, text: str, category: BusinessCategory) -> list[BusinessEntity]:
        affinity = CATEGORY_ENTITY_AFFINITY.get(category, frozenset())
        entities: list[BusinessEntity] = []
        seen: set[str] = set()

        for term in VOCABULARY:
            match = term.pattern.search(text)
            if match is None:
                continue
            label = match.group(0) if term.entity_type == EntityType.TIMEFRAME else term.canonical
            if label in seen:
                continue
            seen.add(label)
            relevance = term.confidence if term.entity_type in affinity else term.confidence * 0.75
            entities.append(
                BusinessEntity(
                    text=label,
                    entity_type=term.entity_type,
                    confidence=term.confidence,
                    business_relevance=relevance,
                    position=match.start(),
                )
            )

        entities.sort(key=lambda e: e.position)
        return entities

    def relationships(self, entities: list[BusinessEntity]) -> list[EntityRelationship]:
        """Relate every pair of co-occurring entities with a known relation type."""
        found: list[EntityRelationship] = []
        for i, first in enumerate(entities):
            for second in entities[i + 1:]:
                relation = RELATION_TYPES.get((first.entity_type, second.entity_type)) or RELATION_TYPES.get(
                    (second.entity_type, first.entity_type)
                )
                if relation is None:
                    continue
                found.append(
                    EntityRelationship(
                        source=first.text,
                        target=second.text,
                        relation_type=relation,
                        strength=min(first.confidence, second.confidence),
                    )
                )
        return found

    def semantic_roles(
        self, text: str, entities: list[BusinessEntity], intent: PrimaryIntent
    ) -> list[SemanticRole]:
        """Shallow agent/action/object/temporal labelling."""
        roles = [SemanticRole(role="agent", text="user")]
        words = text.split()
        action = next((w for w in words if w in ACTION_VERBS), intent.value)
        roles.append(SemanticRole(role="action", text=action))

        obj = next((e for e in entities if e.entity_type != EntityType.TIMEFRAME), None)
        if obj is not None:
            roles.append(SemanticRole(role="object", text=obj.text))
        temporal = next((e for e in entities if e.entity_type == EntityType.TIMEFRAME), None)
        if temporal is not None:
            roles.append(SemanticRole(role="temporal", text=temporal.text))
        return roles


def domain_relevance(text: str, business_focus: list[str]) -> dict[str, float]:
    """0.8 for each focus domain mentioned in the query, 0.2 otherwise."""
    return {domain: 0.8 if domain.lower() in text else 0.2 for domain in business_focus}
