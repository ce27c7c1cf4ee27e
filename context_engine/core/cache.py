"""Cache abstraction for process-local derived state.

Call sites depend on the ``CacheBackend`` protocol only, so the default
cachetools-backed implementation can be replaced by a distributed cache
without touching the analyzer, predictor or integrator.
"""

import json
import logging
import re
from typing import Any, Protocol, runtime_checkable

from cachetools import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_MAXSIZE = 1000
DEFAULT_TTL = 300  # 5 minutes


@runtime_checkable
class CacheBackend(Protocol):
    """Key/value cache whose entries expire after a fixed TTL."""

    def get(self, key: str) -> tuple[Any, bool]:
        """Return ``(value, found)`` for *key*."""
        ...

    def set(self, key: str, value: Any) -> None:
        """Store *value* under *key* for the backend's TTL."""
        ...

    def delete(self, key: str) -> bool:
        """Remove *key*; return whether it existed."""
        ...

    def clear(self) -> None:
        """Drop every entry."""
        ...

    def get_stats(self) -> dict[str, Any]:
        """Return hit/miss statistics."""
        ...


class TTLCacheBackend:
    """In-memory ``CacheBackend`` built on ``cachetools.TTLCache``.

    Tracks hit/miss counts and supports glob-style invalidation.
    """

    def __init__(
        self,
        maxsize: int = DEFAULT_MAXSIZE,
        ttl: float = DEFAULT_TTL,
        name: str = "default",
        timer: Any = None,
    ) -> None:
        """Initialize cache with configuration.

        Args:
            maxsize: Maximum number of entries in the cache.
            ttl: Time-to-live in seconds for every entry.
            name: Region name used in logs and stats.
            timer: Optional clock callable (tests inject a fake clock).
        """
        self._maxsize = maxsize
        self._ttl = ttl
        self._name = name
        if timer is None:
            self._cache: TTLCache[str, Any] = TTLCache(maxsize=maxsize, ttl=ttl)
        else:
            self._cache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._hits = 0
        self._misses = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    @property
    def size(self) -> int:
        return len(self._cache)

    def get(self, key: str) -> tuple[Any, bool]:
        """Get a value from the cache.

        Args:
            key: The cache key.

        Returns:
            Tuple of (value, found) where found indicates if the key exists.
        """
        try:
            value = self._cache[key]
        except KeyError:
            self._misses += 1
            logger.debug("Cache miss", extra={"cache": self._name, "key": key})
            return None, False
        self._hits += 1
        logger.debug("Cache hit", extra={"cache": self._name, "key": key})
        return value, True

    def set(self, key: str, value: Any) -> None:
        self._cache[key] = value

    def delete(self, key: str) -> bool:
        try:
            del self._cache[key]
            return True
        except KeyError:
            return False

    def clear(self) -> None:
        self._cache.clear()

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dict with name, hits, misses, size, maxsize, ttl and hit_rate.
        """
        lookups = self._hits + self._misses
        return {
            "name": self._name,
            "hits": self._hits,
            "misses": self._misses,
            "size": len(self._cache),
            "maxsize": self._maxsize,
            "ttl": self._ttl,
            "hit_rate": self._hits / lookups if lookups > 0 else 0.0,
        }

    def invalidate_by_pattern(self, pattern: str) -> int:
        """Invalidate cache entries matching a glob-style pattern.

        Args:
            pattern: Pattern where ``*`` matches any run and ``?`` one character.

        Returns:
            Number of entries invalidated.
        """
        regex_pattern = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
        regex = re.compile(f"^{regex_pattern}$")

        keys_to_delete = [key for key in list(self._cache) if regex.match(key)]
        for key in keys_to_delete:
            self._cache.pop(key, None)

        if keys_to_delete:
            logger.debug(
                "Invalidated %d cache entries matching pattern: %s",
                len(keys_to_delete),
                pattern,
            )
        return len(keys_to_delete)


def make_cache_key(*parts: Any) -> str:
    """Build a stable cache key from heterogeneous parts.

    Dicts and lists are serialized as JSON with sorted keys so that two
    logically equal queries map to the same key.

    Example:
        make_cache_key("shopify", {"type": "orders", "limit": 100})
        # 'shopify:{"limit": 100, "type": "orders"}'
    """
    rendered: list[str] = []
    for part in parts:
        if isinstance(part, (dict, list, tuple)):
            rendered.append(json.dumps(part, sort_keys=True, default=str))
        else:
            rendered.append(str(part))
    return ":".join(rendered)
