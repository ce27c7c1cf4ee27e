"""Shared fixtures: an in-memory Supabase stand-in and canned data sources."""

import copy
from types import SimpleNamespace
from typing import Any

import pytest

from context_engine.core.cache import TTLCacheBackend
from context_engine.models.integration import SourceQuery, SourceRecords


class FakeQuery:
    """Chainable query builder mimicking the supabase-py table API."""

    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self._db = db
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._on_conflict: str | None = None
        self._filters: list[tuple[str, str, Any]] = []
        self._order: tuple[str, bool] | None = None
        self._limit: int | None = None

    def select(self, *_columns: str) -> "FakeQuery":
        self._op = "select"
        return self

    def upsert(self, payload: Any, on_conflict: str = "id") -> "FakeQuery":
        self._op = "upsert"
        self._payload = payload
        self._on_conflict = on_conflict
        return self

    def insert(self, payload: Any) -> "FakeQuery":
        self._op = "insert"
        self._payload = payload
        return self

    def update(self, payload: dict[str, Any]) -> "FakeQuery":
        self._op = "update"
        self._payload = payload
        return self

    def delete(self) -> "FakeQuery":
        self._op = "delete"
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append((column, "eq", value))
        return self

    def neq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append((column, "neq", value))
        return self

    def gte(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append((column, "gte", value))
        return self

    def lte(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append((column, "lte", value))
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self._order = (column, desc)
        return self

    def limit(self, count: int) -> "FakeQuery":
        self._limit = count
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        for column, op, value in self._filters:
            current = row.get(column)
            if op == "eq" and current != value:
                return False
            if op == "neq" and current == value:
                return False
            if op == "gte" and (current is None or current < value):
                return False
            if op == "lte" and (current is None or current > value):
                return False
        return True

    def execute(self) -> SimpleNamespace:
        self._db.calls.append((self._table, self._op))
        if self._table in self._db.failing_tables:
            raise RuntimeError(f"table {self._table} unavailable")

        rows = self._db.tables.setdefault(self._table, [])

        if self._op in ("upsert", "insert"):
            payloads = self._payload if isinstance(self._payload, list) else [self._payload]
            for payload in payloads:
                key = self._on_conflict
                existing = next(
                    (row for row in rows if key and row.get(key) == payload.get(key)), None
                )
                if existing is not None and self._op == "upsert":
                    existing.update(copy.deepcopy(payload))
                else:
                    rows.append(copy.deepcopy(payload))
            return SimpleNamespace(data=copy.deepcopy(payloads))

        matched = [row for row in rows if self._matches(row)]

        if self._op == "update":
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return SimpleNamespace(data=copy.deepcopy(matched))

        if self._op == "delete":
            self._db.tables[self._table] = [row for row in rows if not self._matches(row)]
            return SimpleNamespace(data=copy.deepcopy(matched))

        if self._order is not None:
            column, desc = self._order
            matched = sorted(matched, key=lambda row: str(row.get(column, "")), reverse=desc)
        if self._limit is not None:
            matched = matched[: self._limit]
        return SimpleNamespace(data=copy.deepcopy(matched))


class FakeSupabase:
    """In-memory tables keyed by name."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.failing_tables: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


class FakeSource:
    """Data source returning canned records per query type."""

    def __init__(
        self,
        name: str,
        records: dict[str, list[dict[str, Any]]] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.name = name
        self.records = records or {}
        self.error = error
        self.calls: list[SourceQuery] = []

    async def fetch(self, query: SourceQuery) -> SourceRecords:
        self.calls.append(query)
        if self.error is not None:
            raise self.error
        return SourceRecords(
            source=self.name,
            query_type=query.query_type,
            records=[dict(row) for row in self.records.get(query.query_type, [])],
        )


class FakeClock:
    """Manually advanced clock for TTL caches."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_db() -> FakeSupabase:
    """Empty in-memory database."""
    return FakeSupabase()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache() -> TTLCacheBackend:
    """Cache with a generous TTL for tests."""
    return TTLCacheBackend(maxsize=100, ttl=300, name="test")


@pytest.fixture
def make_source() -> type[FakeSource]:
    """Factory for canned data sources."""
    return FakeSource
