"""Query embeddings behind a pluggable strategy.

``HashingEmbeddingStrategy`` is the built-in default: a deterministic
feature-hashing embedder, so the same text always yields the same
vector. A model-backed strategy can be dropped in without touching the
analyzer.
"""

import hashlib
import logging
import math
from typing import Protocol, runtime_checkable

from context_engine.core.cache import CacheBackend, make_cache_key
from context_engine.intelligence.similarity import tokenize
from context_engine.models.semantic import Embedding

logger = logging.getLogger(__name__)

DEFAULT_DIMENSIONS = 768
HASHING_CONFIDENCE = 0.85
EMPTY_TEXT_CONFIDENCE = 0.3


@runtime_checkable
class EmbeddingStrategy(Protocol):
    """Turns text into a fixed-dimension vector with a confidence."""

    async def embed(self, text: str, language: str) -> Embedding:
        """Embed *text* written in *language*."""
        ...


class HashingEmbeddingStrategy:
    """Signed feature hashing over unigrams and bigrams, L2-normalized."""

    def __init__(self, dimensions: int = DEFAULT_DIMENSIONS) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be positive")
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _bucket(self, feature: str) -> tuple[int, float]:
        digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
        value = int.from_bytes(digest, "big")
        sign = 1.0 if value & 1 else -1.0
        return (value >> 1) % self._dimensions, sign

    async def embed(self, text: str, language: str) -> Embedding:
        tokens = tokenize(text)
        features = tokens + [f"{a} {b}" for a, b in zip(tokens, tokens[1:])]

        vector = [0.0] * self._dimensions
        for feature in features:
            index, sign = self._bucket(f"{language}:{feature}")
            vector[index] += sign

        norm = math.sqrt(sum(v * v for v in vector))
        if norm > 0:
            vector = [v / norm for v in vector]

        return Embedding(
            vector=vector,
            confidence=HASHING_CONFIDENCE if features else EMPTY_TEXT_CONFIDENCE,
            language=language,
        )


class EmbeddingService:
    """Caches strategy output by (text, language, history length)."""

    def __init__(self, strategy: EmbeddingStrategy, cache: CacheBackend) -> None:
        self._strategy = strategy
        self._cache = cache

    async def embed(self, text: str, language: str, history_length: int = 0) -> Embedding:
        key = make_cache_key("embedding", text, language, history_length)
        cached, found = self._cache.get(key)
        if found:
            return cached

        embedding = await self._strategy.embed(text, language)
        self._cache.set(key, embedding)
        return embedding
