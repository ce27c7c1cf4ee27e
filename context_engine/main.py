"""Context Engine API - Main FastAPI Application."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from supabase import Client

from context_engine import __version__
from context_engine.api.routes import assistant, memory
from context_engine.core.cache import TTLCacheBackend
from context_engine.core.config import Settings, get_settings
from context_engine.core.exceptions import ContextEngineError, sanitize_error
from context_engine.core.logging import configure_logging
from context_engine.db.supabase import create_supabase_client
from context_engine.integrations.access import RolePermissionOracle
from context_engine.integrations.sources import build_default_sources
from context_engine.intelligence.behavior import UserBehaviorPredictor
from context_engine.intelligence.semantic import SemanticContextAnalyzer
from context_engine.intelligence.semantic.attention import AttentionWeighter
from context_engine.intelligence.semantic.embedding import (
    EmbeddingService,
    HashingEmbeddingStrategy,
)
from context_engine.memory.persistence import PersistenceQueue
from context_engine.memory.store import SessionProfileStore
from context_engine.services.assistant import AssistantOrchestrator
from context_engine.services.data_integrator import ContextualDataIntegrator

settings = get_settings()
configure_logging(settings.LOG_FORMAT, settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Every engine, constructed once per process and wired explicitly."""

    store: SessionProfileStore
    analyzer: SemanticContextAnalyzer
    predictor: UserBehaviorPredictor
    integrator: ContextualDataIntegrator
    oracle: RolePermissionOracle
    persistence: PersistenceQueue
    orchestrator: AssistantOrchestrator


def build_services(
    settings: Settings, client: Client, http_client: httpx.AsyncClient
) -> Services:
    """Construct and wire the engine from settings."""
    store = SessionProfileStore(client, search_limit=settings.MEMORY_SEARCH_LIMIT)

    analyzer = SemanticContextAnalyzer(
        EmbeddingService(
            HashingEmbeddingStrategy(settings.EMBEDDING_DIMENSIONS),
            TTLCacheBackend(
                maxsize=settings.CACHE_MAXSIZE,
                ttl=settings.EMBEDDING_CACHE_TTL_SECONDS,
                name="embeddings",
            ),
        ),
        attention=AttentionWeighter(settings.ATTENTION_DECAY_LAMBDA),
        fallback_confidence=settings.FALLBACK_CONFIDENCE,
    )

    predictor = UserBehaviorPredictor(
        TTLCacheBackend(
            maxsize=settings.CACHE_MAXSIZE,
            ttl=settings.PREDICTION_CACHE_TTL_SECONDS,
            name="predictions",
        ),
        store=store,
        pattern_threshold=settings.PATTERN_SIMILARITY_THRESHOLD,
        interaction_threshold=settings.INTERACTION_SIMILARITY_THRESHOLD,
        follow_up_threshold=settings.FOLLOW_UP_SIMILARITY_THRESHOLD,
        max_query_patterns=settings.MAX_QUERY_PATTERNS,
        max_follow_ups=settings.MAX_FOLLOW_UPS,
    )

    integrator = ContextualDataIntegrator(
        analyzer,
        build_default_sources(settings, client, http_client),
        TTLCacheBackend(
            maxsize=settings.CACHE_MAXSIZE,
            ttl=settings.SOURCE_CACHE_TTL_SECONDS,
            name="sources",
        ),
        window_days=settings.DEFAULT_QUERY_WINDOW_DAYS,
        failure_threshold=settings.SOURCE_FAILURE_THRESHOLD,
        recovery_timeout=settings.SOURCE_RECOVERY_TIMEOUT_SECONDS,
        fetch_timeout=settings.SOURCE_FETCH_TIMEOUT_SECONDS,
    )

    oracle = RolePermissionOracle()
    persistence = PersistenceQueue(
        max_attempts=settings.PERSISTENCE_MAX_ATTEMPTS,
        backoff_seconds=settings.PERSISTENCE_BACKOFF_SECONDS,
    )
    orchestrator = AssistantOrchestrator(
        store,
        analyzer,
        predictor,
        integrator,
        oracle,
        persistence,
        max_follow_ups=settings.MAX_FOLLOW_UPS,
    )
    return Services(store, analyzer, predictor, integrator, oracle, persistence, orchestrator)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan handler for startup and shutdown events."""
    logger.info("Starting Context Engine API...")
    settings.validate_startup()

    client = create_supabase_client(settings)
    http_client = httpx.AsyncClient()
    services = build_services(settings, client, http_client)

    app.state.supabase = client
    app.state.store = services.store
    app.state.predictor = services.predictor
    app.state.oracle = services.oracle
    app.state.orchestrator = services.orchestrator
    await services.persistence.start()

    yield

    logger.info("Shutting down Context Engine API...")
    await services.persistence.stop()
    await http_client.aclose()


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    app = FastAPI(
        title="Context Engine API",
        description="Context-aware personalization and multi-source data retrieval",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(assistant.router, prefix="/api/v1")
    app.include_router(memory.router, prefix="/api/v1")

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Lightweight liveness check."""
        return {"status": "healthy"}

    @app.exception_handler(ContextEngineError)
    async def context_engine_exception_handler(
        request: Request, exc: ContextEngineError
    ) -> JSONResponse:
        """Convert domain exceptions into a consistent JSON error body."""
        detail = sanitize_error(exc) if exc.status_code >= 500 else exc.message
        logger.warning(
            "Context engine exception occurred",
            extra={
                "code": exc.code,
                "status_code": exc.status_code,
                "path": request.url.path,
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": detail, "code": exc.code},
        )

    return app


app = create_app()
