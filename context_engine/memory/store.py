"""Session & Profile Store backed by Supabase.

Owns every durable entity: user profiles, session memories, conversation
entries, learning insights and behavior patterns. All writes are upserts
keyed by stable IDs so retries are idempotent. The supabase-py client is
synchronous, so each query runs in a worker thread.
"""

import asyncio
import logging
import secrets
import time
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, TypeVar, cast

from supabase import Client

from context_engine.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpen
from context_engine.core.exceptions import NotFoundError, PersistenceError
from context_engine.intelligence.similarity import clamp, word_overlap
from context_engine.models.context import (
    ContextStats,
    ConversationEntry,
    LearningInsight,
    MemoryKind,
    MemorySearchCriteria,
    MemorySearchResult,
    ProfileUpdate,
    SessionMemory,
    SessionUpdate,
    StoredBehaviorPattern,
    UserProfile,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

REDACTED = "[REDACTED]"

# Every table holding rows keyed by user_id, in cascade order (children first).
OWNED_TABLES: tuple[str, ...] = (
    "conversation_entries",
    "learning_insights",
    "behavior_patterns",
    "contextual_knowledge",
    "user_preferences",
    "relationship_maps",
    "session_memories",
    "user_profiles",
)


def generate_session_id() -> str:
    """Return a new ``session_<epoch_ms>_<random>`` identifier."""
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def generate_pseudonym() -> str:
    """Return a new anonymized user identifier."""
    return f"anon_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


def aggregate_counts(data: dict[str, Any]) -> dict[str, Any]:
    """Strip a pattern payload down to its numbers.

    Numeric fields are kept and collections become ``<key>_count``; text is dropped.
    """
    counts: dict[str, Any] = {"redacted": True}
    for key, value in data.items():
        if isinstance(value, bool):
            continue
        if isinstance(value, int | float):
            counts[key] = value
        elif isinstance(value, list | dict):
            counts[f"{key}_count"] = len(value)
    return counts


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return None


class SessionProfileStore:
    """Durable CRUD for user context.

    Args:
        client: Supabase client (or a compatible fake in tests).
        breaker: Optional circuit breaker guarding the database.
        search_limit: Default cap on memory search results.
    """

    def __init__(
        self,
        client: Client,
        breaker: CircuitBreaker | None = None,
        search_limit: int = 50,
    ) -> None:
        self._client = client
        self._breaker = breaker or CircuitBreaker("supabase")
        self._search_limit = search_limit

    async def _execute(self, operation: str, query: Callable[[], T], **log_extra: Any) -> T:
        """Run a blocking query off the event loop with breaker bookkeeping.

        Raises:
            PersistenceError: If the circuit is open or the query fails.
        """
        try:
            self._breaker.check()
            result = await asyncio.to_thread(query)
        except CircuitBreakerOpen as e:
            logger.warning("Store unavailable, circuit open", extra={"operation": operation})
            raise PersistenceError("Database temporarily unavailable", operation=operation) from e
        except Exception as e:
            self._breaker.record_failure()
            logger.exception(
                "Store operation failed", extra={"operation": operation, **log_extra}
            )
            raise PersistenceError(f"Failed to {operation}: {e}", operation=operation) from e
        self._breaker.record_success()
        return result

    def get_stats(self) -> dict[str, Any]:
        return {"circuit": self._breaker.get_stats()}

    def _rows(self, response: Any) -> list[dict[str, Any]]:
        return cast(list[dict[str, Any]], response.data or [])

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_profile(self, user_id: str) -> UserProfile | None:
        """Fetch a user's profile, or None when it does not exist yet."""
        response = await self._execute(
            "fetch profile",
            lambda: self._client.table("user_profiles")
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
            .execute(),
            user_id=user_id,
        )
        rows = self._rows(response)
        return UserProfile.model_validate(rows[0]) if rows else None

    async def upsert_profile(
        self, user_id: str, update: ProfileUpdate | None = None
    ) -> UserProfile:
        """Create the profile on first contact or apply a partial update.

        Args:
            user_id: Owner of the profile.
            update: Fields to change; unset fields keep their stored value.

        Returns:
            The stored profile.
        """
        existing = await self.get_profile(user_id)
        now = datetime.now(UTC)
        base = existing or UserProfile(user_id=user_id, created_at=now)
        changes = update.model_dump(exclude_none=True) if update else {}
        profile = base.model_copy(update={**changes, "last_active": now, "updated_at": now})

        await self._execute(
            "upsert profile",
            lambda: self._client.table("user_profiles")
            .upsert(profile.model_dump(mode="json"), on_conflict="user_id")
            .execute(),
            user_id=user_id,
        )
        logger.info(
            "Profile upserted",
            extra={"user_id": user_id, "created": existing is None, "fields": sorted(changes)},
        )
        return profile

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, user_id: str, session_id: str | None = None) -> SessionMemory:
        """Open a new session for *user_id*."""
        now = datetime.now(UTC)
        session = SessionMemory(
            session_id=session_id or generate_session_id(),
            user_id=user_id,
            start_time=now,
            last_activity=now,
        )
        await self._execute(
            "create session",
            lambda: self._client.table("session_memories")
            .upsert(session.model_dump(mode="json"), on_conflict="session_id")
            .execute(),
            user_id=user_id,
        )
        logger.info("Session created", extra={"user_id": user_id, "session_id": session.session_id})
        return session

    async def get_session(self, session_id: str) -> SessionMemory | None:
        response = await self._execute(
            "fetch session",
            lambda: self._client.table("session_memories")
            .select("*")
            .eq("session_id", session_id)
            .limit(1)
            .execute(),
            session_id=session_id,
        )
        rows = self._rows(response)
        return SessionMemory.model_validate(rows[0]) if rows else None

    async def update_session(self, session_id: str, update: SessionUpdate) -> SessionMemory:
        """Apply a partial update to a session.

        Raises:
            NotFoundError: If the session does not exist.
        """
        session = await self.get_session(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)

        changes = update.model_dump(exclude_none=True)
        if "last_activity" in changes:
            # Keep last_activity monotonic even when clocks disagree.
            changes["last_activity"] = max(changes["last_activity"], session.last_activity)
        updated = SessionMemory.model_validate({**session.model_dump(), **changes})

        payload = updated.model_dump(mode="json", include=set(changes))
        await self._execute(
            "update session",
            lambda: self._client.table("session_memories")
            .update(payload)
            .eq("session_id", session_id)
            .execute(),
            session_id=session_id,
        )
        return updated

    # ------------------------------------------------------------------
    # Conversation entries, insights, patterns
    # ------------------------------------------------------------------

    async def append_conversation_entry(self, entry: ConversationEntry) -> None:
        """Persist one turn. Re-appending the same entry id is a no-op upsert."""
        await self._execute(
            "append conversation entry",
            lambda: self._client.table("conversation_entries")
            .upsert(entry.model_dump(mode="json"), on_conflict="id")
            .execute(),
            user_id=entry.user_id,
            session_id=entry.session_id,
        )

    async def record_feedback(
        self, entry_id: str, user_id: str, session_id: str, feedback: str
    ) -> None:
        """Attach feedback to one of the user's own turns in *session_id*.

        Raises:
            NotFoundError: If no such entry belongs to the user and session.
        """
        response = await self._execute(
            "record feedback",
            lambda: self._client.table("conversation_entries")
            .update({"feedback": feedback})
            .eq("id", entry_id)
            .eq("user_id", user_id)
            .eq("session_id", session_id)
            .execute(),
            entry_id=entry_id,
        )
        if not self._rows(response):
            raise NotFoundError("Conversation entry", entry_id)

    async def get_conversation_history(
        self, user_id: str, session_id: str | None = None, limit: int = 20
    ) -> list[ConversationEntry]:
        """Most recent turns for a user (optionally one session), oldest first."""

        def query() -> Any:
            builder = self._client.table("conversation_entries").select("*").eq("user_id", user_id)
            if session_id:
                builder = builder.eq("session_id", session_id)
            return builder.order("timestamp", desc=True).limit(limit).execute()

        response = await self._execute("fetch conversation history", query, user_id=user_id)
        entries = [ConversationEntry.model_validate(row) for row in self._rows(response)]
        entries.sort(key=lambda e: e.timestamp)
        return entries

    async def add_insight(self, insight: LearningInsight) -> None:
        await self._execute(
            "add insight",
            lambda: self._client.table("learning_insights")
            .upsert(insight.model_dump(mode="json"), on_conflict="id")
            .execute(),
            user_id=insight.user_id,
        )

    async def add_behavior_pattern(self, pattern: StoredBehaviorPattern) -> None:
        await self._execute(
            "add behavior pattern",
            lambda: self._client.table("behavior_patterns")
            .upsert(pattern.model_dump(mode="json"), on_conflict="id")
            .execute(),
            user_id=pattern.user_id,
        )

    async def get_behavior_patterns(self, user_id: str) -> list[StoredBehaviorPattern]:
        response = await self._execute(
            "fetch behavior patterns",
            lambda: self._client.table("behavior_patterns")
            .select("*")
            .eq("user_id", user_id)
            .execute(),
            user_id=user_id,
        )
        return [StoredBehaviorPattern.model_validate(row) for row in self._rows(response)]

    # ------------------------------------------------------------------
    # Search & stats
    # ------------------------------------------------------------------

    async def _select_user_rows(self, table: str, user_id: str, session_id: str | None = None) -> list[dict[str, Any]]:
        def query() -> Any:
            builder = self._client.table(table).select("*").eq("user_id", user_id)
            if session_id:
                builder = builder.eq("session_id", session_id)
            return builder.execute()

        return self._rows(await self._execute(f"read {table}", query, user_id=user_id))

    async def search_memory(self, criteria: MemorySearchCriteria) -> list[MemorySearchResult]:
        """Rank stored conversations, insights and patterns against a query.

        Relevance is the share of query words found in the record's text.
        Patterns blend that with their predictive power. Ties go to the
        most recent record.
        """
        results: list[MemorySearchResult] = []

        if MemoryKind.CONVERSATION in criteria.kinds:
            for row in await self._select_user_rows(
                "conversation_entries", criteria.user_id, criteria.session_id
            ):
                text = f"{row.get('user_query', '')} {row.get('assistant_response', '')}"
                results.append(
                    MemorySearchResult(
                        kind=MemoryKind.CONVERSATION,
                        id=str(row["id"]),
                        relevance=word_overlap(text, criteria.query),
                        timestamp=_parse_timestamp(row.get("timestamp")),
                        content=row,
                    )
                )

        if MemoryKind.INSIGHT in criteria.kinds:
            for row in await self._select_user_rows("learning_insights", criteria.user_id):
                results.append(
                    MemorySearchResult(
                        kind=MemoryKind.INSIGHT,
                        id=str(row["id"]),
                        relevance=word_overlap(str(row.get("content", "")), criteria.query),
                        timestamp=_parse_timestamp(row.get("created_at")),
                        content=row,
                    )
                )

        if MemoryKind.PATTERN in criteria.kinds:
            for row in await self._select_user_rows("behavior_patterns", criteria.user_id):
                power = clamp(float(row.get("predictive_power") or 0.0))
                if criteria.query:
                    text = f"{row.get('pattern_type', '')} {row.get('pattern_data', '')}"
                    relevance = 0.5 * word_overlap(text, criteria.query) + 0.5 * power
                else:
                    relevance = power
                results.append(
                    MemorySearchResult(
                        kind=MemoryKind.PATTERN,
                        id=str(row["id"]),
                        relevance=clamp(relevance),
                        timestamp=_parse_timestamp(row.get("last_seen")),
                        content=row,
                    )
                )

        epoch = datetime.min.replace(tzinfo=UTC)
        results.sort(key=lambda r: (r.relevance, r.timestamp or epoch), reverse=True)
        return results[: min(criteria.limit, self._search_limit)]

    async def get_context_stats(self, user_id: str) -> ContextStats:
        """Counts and simple aggregates over a user's stored context."""
        conversations, sessions, insights, patterns = await asyncio.gather(
            self._select_user_rows("conversation_entries", user_id),
            self._select_user_rows("session_memories", user_id),
            self._select_user_rows("learning_insights", user_id),
            self._select_user_rows("behavior_patterns", user_id),
        )

        confidences = [float(row.get("confidence") or 0.0) for row in conversations]
        topics: Counter[str] = Counter()
        for session in sessions:
            topics.update(session.get("active_topics") or [])

        return ContextStats(
            user_id=user_id,
            total_conversations=len(conversations),
            total_sessions=len(sessions),
            total_insights=len(insights),
            total_patterns=len(patterns),
            average_confidence=clamp(sum(confidences) / len(confidences)) if confidences else 0.0,
            top_topics=[topic for topic, _ in topics.most_common(5)],
        )

    # ------------------------------------------------------------------
    # Privacy erasure
    # ------------------------------------------------------------------

    async def erase_user(self, user_id: str, hard: bool = False) -> dict[str, Any]:
        """Erase a user's data.

        Hard mode deletes every row the user owns across all owned tables.
        Soft mode keeps every row (so aggregate counts survive), redacts
        free text and re-keys the rows to a fresh pseudonym.

        Args:
            user_id: The user to erase.
            hard: Delete rows instead of anonymizing them.

        Returns:
            Dict with the mode, the pseudonym (soft mode) and per-table row counts.
        """
        affected: dict[str, int] = {}

        if hard:
            for table in OWNED_TABLES:
                response = await self._execute(
                    f"delete {table}",
                    lambda table=table: self._client.table(table)
                    .delete()
                    .eq("user_id", user_id)
                    .execute(),
                    user_id=user_id,
                )
                affected[table] = len(self._rows(response))
            logger.info("User data hard-deleted", extra={"user_id": user_id, "affected": affected})
            return {"mode": "hard", "pseudonym": None, "affected": affected}

        pseudonym = generate_pseudonym()
        await self._redact_patterns(user_id, pseudonym)
        redactions: dict[str, dict[str, Any]] = {
            "conversation_entries": {
                "user_query": REDACTED,
                "assistant_response": REDACTED,
                "feedback": REDACTED,
                "follow_up": [],
                "context": {},
            },
            "learning_insights": {"content": REDACTED},
            "session_memories": {"context_summary": REDACTED, "active_topics": [], "user_intent": None},
        }
        for table in OWNED_TABLES:
            payload = {**redactions.get(table, {}), "user_id": pseudonym}
            response = await self._execute(
                f"anonymize {table}",
                lambda table=table, payload=payload: self._client.table(table)
                .update(payload)
                .eq("user_id", user_id)
                .execute(),
                user_id=user_id,
            )
            affected[table] = len(self._rows(response))

        logger.info("User data anonymized", extra={"user_id": user_id, "affected": affected})
        return {"mode": "soft", "pseudonym": pseudonym, "affected": affected}

    async def _redact_patterns(self, user_id: str, pseudonym: str) -> None:
        """Reduce pattern payloads to counts and drop the user id from row ids.

        Model snapshots carry raw query text and are keyed by the user id.
        """
        for row in await self._select_user_rows("behavior_patterns", user_id):
            row_id = str(row.get("id", ""))
            update: dict[str, Any] = {"pattern_data": aggregate_counts(row.get("pattern_data") or {})}
            if user_id in row_id:
                update["id"] = row_id.replace(user_id, pseudonym)
            await self._execute(
                "redact behavior pattern",
                lambda row_id=row_id, update=update: self._client.table("behavior_patterns")
                .update(update)
                .eq("id", row_id)
                .execute(),
                user_id=user_id,
            )
