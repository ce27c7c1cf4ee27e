"""External business data source connectors.

Every connector satisfies the ``DataSource`` protocol: it accepts a
``SourceQuery`` (always carrying a time window and a limit) and returns
``SourceRecords``. Connectors raise on failure; the integrator turns
failures into typed ``SourceError`` entries.
"""

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable

import httpx
from supabase import Client

from context_engine.core.config import Settings
from context_engine.models.integration import SourceQuery, SourceRecords

logger = logging.getLogger(__name__)

SHOPIFY = "shopify"
KAJABI = "kajabi"
SUPABASE_CUSTOMER = "supabase_customer"
MARKETING = "marketing"

# Column used for the time window per unified-store table.
TABLE_TIME_COLUMNS: dict[str, str] = {
    "unified_customers": "created_at",
    "business_kpi_daily": "date",
    "customer_touchpoints": "timestamp",
}


@runtime_checkable
class DataSource(Protocol):
    """A business data source."""

    name: str

    async def fetch(self, query: SourceQuery) -> SourceRecords:
        ...


class SupabaseTableSource:
    """Reads unified-store tables, one table per query type."""

    def __init__(self, client: Client, name: str = SUPABASE_CUSTOMER) -> None:
        self.name = name
        self._client = client

    async def fetch(self, query: SourceQuery) -> SourceRecords:
        table = query.query_type
        column = TABLE_TIME_COLUMNS.get(table, "created_at")

        def run() -> Any:
            builder = (
                self._client.table(table)
                .select("*")
                .gte(column, query.window.start.isoformat())
                .lte(column, query.window.end.isoformat())
            )
            for key, value in query.filters.items():
                if isinstance(value, dict) and "neq" in value:
                    builder = builder.neq(key, value["neq"])
                else:
                    builder = builder.eq(key, value)
            return builder.limit(query.limit).execute()

        response = await asyncio.to_thread(run)
        records = list(response.data or [])
        logger.debug(
            "Supabase source fetched",
            extra={"source": self.name, "table": table, "records": len(records)},
        )
        return SourceRecords(source=self.name, query_type=table, records=records)


class HttpDataSource:
    """JSON-over-HTTP connector for an external platform.

    Issues ``GET {base_url}/{query_type}`` with the window, limit and
    filters as query parameters. Accepts a bare list, ``{"data": [...]}``
    or ``{query_type: [...]}`` as the response body.
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        client: httpx.AsyncClient,
        timeout: float = 10.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.name = name
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._timeout = timeout
        self._headers = headers or {}

    async def fetch(self, query: SourceQuery) -> SourceRecords:
        """Fetch one query shape.

        Raises:
            httpx.HTTPStatusError: If the platform answers with an error status.
            httpx.RequestError: If the platform cannot be reached.
            ValueError: If the body does not contain a record list.
        """
        params: dict[str, Any] = {
            "start": query.window.start.isoformat(),
            "end": query.window.end.isoformat(),
            "limit": query.limit,
        }
        params.update({k: v for k, v in query.filters.items() if isinstance(v, (str, int, float))})

        response = await self._client.get(
            f"{self._base_url}/{query.query_type}",
            params=params,
            headers=self._headers,
            timeout=self._timeout,
        )
        response.raise_for_status()
        records = self._extract_records(response.json(), query.query_type)
        return SourceRecords(
            source=self.name, query_type=query.query_type, records=records[: query.limit]
        )

    @staticmethod
    def _extract_records(body: Any, query_type: str) -> list[dict[str, Any]]:
        if isinstance(body, list):
            return _as_records(body)
        if isinstance(body, dict):
            for key in ("data", query_type):
                if isinstance(body.get(key), list):
                    return _as_records(body[key])
        raise ValueError(f"Unexpected response shape for {query_type}")


def _as_records(items: list[Any]) -> list[dict[str, Any]]:
    return [item if isinstance(item, dict) else {"value": item} for item in items]


def build_default_sources(
    settings: Settings, client: Client, http_client: httpx.AsyncClient
) -> dict[str, DataSource]:
    """Register the unified store plus every HTTP platform with a configured URL."""
    sources: dict[str, DataSource] = {SUPABASE_CUSTOMER: SupabaseTableSource(client)}
    for name, url in (
        (SHOPIFY, settings.SHOPIFY_API_URL),
        (KAJABI, settings.KAJABI_API_URL),
        (MARKETING, settings.MARKETING_API_URL),
    ):
        if url:
            sources[name] = HttpDataSource(
                name, url, http_client, timeout=settings.SOURCE_FETCH_TIMEOUT_SECONDS
            )
        else:
            logger.info("Data source not configured, skipping", extra={"source": name})
    return sources
