"""Tests for data source connectors and the permission oracle."""

from datetime import UTC, datetime

import httpx
import pytest

from context_engine.core.config import Settings
from context_engine.integrations.access import (
    ANONYMOUS_USER,
    PermissionOracle,
    RolePermissionOracle,
    permissions_for_role,
)
from context_engine.integrations.sources import (
    DataSource,
    HttpDataSource,
    SupabaseTableSource,
    build_default_sources,
)
from context_engine.models.integration import SourceQuery, TimeWindow

WINDOW = TimeWindow(
    start=datetime(2026, 3, 1, tzinfo=UTC),
    end=datetime(2026, 3, 31, tzinfo=UTC),
)


def _query(query_type: str, filters: dict | None = None, limit: int = 100) -> SourceQuery:
    return SourceQuery(
        source="test", query_type=query_type, window=WINDOW, limit=limit, filters=filters or {}
    )


class TestHttpDataSource:
    """Tests for the JSON-over-HTTP connector."""

    @pytest.mark.asyncio
    async def test_fetch_sends_window_and_filters(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": [{"id": "o1"}, {"id": "o2"}]})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            source = HttpDataSource("shopify", "https://shop.example/api/", client)
            records = await source.fetch(_query("orders", {"status": "any"}, limit=50))

        assert records.source == "shopify"
        assert records.count == 2
        request = seen[0]
        assert request.url.path == "/api/orders"
        assert request.url.params["status"] == "any"
        assert request.url.params["limit"] == "50"
        assert request.url.params["start"] == WINDOW.start.isoformat()

    @pytest.mark.asyncio
    async def test_accepts_bare_list_and_keyed_body(self) -> None:
        bodies = iter([[{"id": "c1"}, "raw"], {"courses": [{"id": "k1"}]}])

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=next(bodies))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            source = HttpDataSource("kajabi", "https://kajabi.example", client)
            first = await source.fetch(_query("customers"))
            second = await source.fetch(_query("courses"))

        assert first.records == [{"id": "c1"}, {"value": "raw"}]
        assert second.records == [{"id": "k1"}]

    @pytest.mark.asyncio
    async def test_truncates_to_limit(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"id": i} for i in range(10)])

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            records = await HttpDataSource("marketing", "https://m.example", client).fetch(
                _query("ad-performance", limit=3)
            )

        assert records.count == 3

    @pytest.mark.asyncio
    async def test_error_status_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"error": "maintenance"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            source = HttpDataSource("shopify", "https://shop.example", client)
            with pytest.raises(httpx.HTTPStatusError):
                await source.fetch(_query("orders"))

    @pytest.mark.asyncio
    async def test_unexpected_shape_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"total": 3})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            source = HttpDataSource("shopify", "https://shop.example", client)
            with pytest.raises(ValueError, match="Unexpected response shape"):
                await source.fetch(_query("orders"))


class TestSupabaseTableSource:
    @pytest.mark.asyncio
    async def test_applies_window_and_neq_filter(self, fake_db) -> None:
        fake_db.tables["unified_customers"] = [
            {"id": "c1", "created_at": "2026-03-10T00:00:00+00:00", "customer_status": "active"},
            {"id": "c2", "created_at": "2026-03-12T00:00:00+00:00", "customer_status": "deleted"},
            {"id": "c3", "created_at": "2026-01-05T00:00:00+00:00", "customer_status": "active"},
        ]
        source = SupabaseTableSource(fake_db)

        records = await source.fetch(
            _query("unified_customers", {"customer_status": {"neq": "deleted"}})
        )

        assert [r["id"] for r in records.records] == ["c1"]
        assert records.source == "supabase_customer"

    @pytest.mark.asyncio
    async def test_uses_table_time_column(self, fake_db) -> None:
        fake_db.tables["business_kpi_daily"] = [
            {"date": "2026-03-15", "revenue": 100.0},
            {"date": "2026-02-01", "revenue": 50.0},
        ]

        records = await SupabaseTableSource(fake_db).fetch(_query("business_kpi_daily"))

        assert [r["revenue"] for r in records.records] == [100.0]


class TestBuildDefaultSources:
    @pytest.mark.asyncio
    async def test_registers_only_configured_platforms(self, fake_db) -> None:
        settings = Settings(_env_file=None, SHOPIFY_API_URL="https://shop.example")

        async with httpx.AsyncClient() as client:
            sources = build_default_sources(settings, fake_db, client)

        assert list(sources) == ["supabase_customer", "shopify"]
        assert all(isinstance(source, DataSource) for source in sources.values())


class TestRolePermissionOracle:
    """Tests for the static role oracle."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(RolePermissionOracle(), PermissionOracle)

    def test_unknown_role_gets_visitor_permissions(self) -> None:
        assert permissions_for_role("intern") == ["read:public_data"]

    @pytest.mark.asyncio
    async def test_anonymous_is_visitor(self) -> None:
        oracle = RolePermissionOracle()
        assert await oracle.get_user_role(ANONYMOUS_USER) == "visitor"
        assert await oracle.get_user_role("") == "visitor"
        assert await oracle.get_user_role("user-1") == "user"

    @pytest.mark.asyncio
    async def test_feature_access(self) -> None:
        oracle = RolePermissionOracle()
        oracle.assign_role("boss", "executive")
        oracle.assign_role("root", "admin")

        assert await oracle.has_feature_access("boss", "read:shopify_data") is True
        assert await oracle.has_feature_access("user-1", "read:shopify_data") is False
        assert await oracle.has_feature_access("root", "anything") is True

    @pytest.mark.asyncio
    async def test_access_context_explicit_role_wins(self) -> None:
        oracle = RolePermissionOracle()
        oracle.assign_role("user-1", "manager")

        explicit = await oracle.access_context("user-1", "executive")
        looked_up = await oracle.access_context("user-1")
        unknown = await oracle.access_context("user-1", "superuser")

        assert explicit.role == "executive"
        assert looked_up.permissions == permissions_for_role("manager")
        assert unknown.role == "visitor"
