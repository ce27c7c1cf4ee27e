"""Attention weighting over query tokens, history turns and caller role."""

import math

from context_engine.intelligence.semantic.knowledge_graph import DEFAULT_ROLE_RELEVANCE, ROLE_RELEVANCE
from context_engine.models.semantic import AttentionWeights, BusinessEntity, HistoryTurn

DEFAULT_DECAY_LAMBDA = 0.1

_ENTITY_TOKEN_WEIGHT = 0.9
_CONTENT_TOKEN_WEIGHT = 0.6
_FUNCTION_TOKEN_WEIGHT = 0.3
_FUNCTION_WORDS = frozenset(
    {"a", "an", "the", "of", "in", "on", "for", "to", "me", "my", "and", "or", "is", "are", "by"}
)


def history_decay(turns_ago: int, decay_lambda: float = DEFAULT_DECAY_LAMBDA) -> float:
    """``exp(-i * lambda)``: strictly decreasing in *turns_ago* for lambda > 0."""
    return math.exp(-turns_ago * decay_lambda)


class AttentionWeighter:
    """Assigns attention weights for one query."""

    def __init__(self, decay_lambda: float = DEFAULT_DECAY_LAMBDA) -> None:
        if decay_lambda <= 0:
            raise ValueError("decay_lambda must be positive")
        self._decay_lambda = decay_lambda

    def weigh(
        self,
        text: str,
        entities: list[BusinessEntity],
        history: list[HistoryTurn],
        role: str,
    ) -> AttentionWeights:
        """Compute query, history and role attention.

        ``history`` is chronological; the returned history weights are
        ordered most recent first, the most recent turn being one turn ago.
        """
        entity_words = {word for entity in entities for word in entity.text.split()}
        query_attention: list[float] = []
        for token in text.split():
            if token in entity_words:
                query_attention.append(_ENTITY_TOKEN_WEIGHT)
            elif token in _FUNCTION_WORDS:
                query_attention.append(_FUNCTION_TOKEN_WEIGHT)
            else:
                query_attention.append(_CONTENT_TOKEN_WEIGHT)

        history_attention = [
            history_decay(turns_ago, self._decay_lambda) for turns_ago in range(1, len(history) + 1)
        ]

        return AttentionWeights(
            query_attention=query_attention or [0.5],
            history_attention=history_attention,
            role_weights={role: ROLE_RELEVANCE.get(role, DEFAULT_ROLE_RELEVANCE)},
        )
