"""Memory API routes: profile, search, stats, behavior model and privacy erasure."""

import logging
from typing import Any

from fastapi import APIRouter, Query, Request

from context_engine.api.deps import CurrentUser
from context_engine.intelligence.behavior.predictor import UserBehaviorPredictor
from context_engine.memory.store import SessionProfileStore
from context_engine.models.behavior import PersonalizedRecommendations
from context_engine.models.context import (
    ContextStats,
    MemoryKind,
    MemorySearchCriteria,
    MemorySearchResult,
    ProfileUpdate,
    UserProfile,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/memory", tags=["memory"])


def _get_service(request: Request) -> SessionProfileStore:
    """Get the store built at startup."""
    return request.app.state.store


def _get_predictor(request: Request) -> UserBehaviorPredictor:
    return request.app.state.predictor


@router.get("/profile", response_model=UserProfile)
async def get_profile(request: Request, current_user: CurrentUser) -> UserProfile:
    """Get the caller's profile, creating it with defaults on first contact."""
    store = _get_service(request)
    profile = await store.get_profile(current_user.id)
    return profile or await store.upsert_profile(current_user.id)


@router.put("/profile", response_model=UserProfile)
async def update_profile(
    data: ProfileUpdate,
    request: Request,
    current_user: CurrentUser,
) -> UserProfile:
    """Apply a partial profile update."""
    profile = await _get_service(request).upsert_profile(current_user.id, data)
    logger.info(
        "Profile updated via API",
        extra={"user_id": current_user.id, "fields": sorted(data.model_dump(exclude_none=True))},
    )
    return profile


@router.get("/search", response_model=list[MemorySearchResult])
async def search_memory(
    request: Request,
    current_user: CurrentUser,
    q: str = Query("", max_length=500, description="Search text"),
    kinds: list[MemoryKind] | None = Query(None, description="Restrict to these record kinds"),
    session_id: str | None = Query(None, description="Restrict conversations to one session"),
    limit: int = Query(50, ge=1, le=200, description="Maximum results to return"),
) -> list[MemorySearchResult]:
    """Search stored conversations, insights and patterns by relevance."""
    criteria = MemorySearchCriteria(user_id=current_user.id, query=q, session_id=session_id, limit=limit)
    if kinds:
        criteria.kinds = kinds
    results = await _get_service(request).search_memory(criteria)

    logger.info(
        "Memory searched via API",
        extra={"user_id": current_user.id, "count": len(results)},
    )
    return results


@router.get("/stats", response_model=ContextStats)
async def get_stats(request: Request, current_user: CurrentUser) -> ContextStats:
    """Aggregate counts over the caller's stored context."""
    return await _get_service(request).get_context_stats(current_user.id)


@router.get("/behavior-model")
async def export_behavior_model(request: Request, current_user: CurrentUser) -> dict[str, Any]:
    """Export the caller's in-process behavior model."""
    return await _get_predictor(request).export_model(current_user.id)


@router.get("/recommendations", response_model=PersonalizedRecommendations)
async def get_recommendations(
    request: Request, current_user: CurrentUser
) -> PersonalizedRecommendations:
    """Dashboard widgets, charts, filters and templates suited to the caller."""
    return await _get_predictor(request).personalized_recommendations(current_user.id)


@router.delete("")
async def erase_memory(
    request: Request,
    current_user: CurrentUser,
    hard: bool = Query(False, description="Delete rows instead of anonymizing them"),
) -> dict[str, Any]:
    """Erase the caller's data.

    Soft erasure redacts free text and re-keys rows to a pseudonym;
    hard erasure deletes every owned row. The in-process behavior model
    is dropped either way.
    """
    result = await _get_service(request).erase_user(current_user.id, hard=hard)
    _get_predictor(request).reset_model(current_user.id)

    logger.info(
        "User data erased via API",
        extra={"user_id": current_user.id, "mode": result["mode"]},
    )
    return {"success": True, "mode": result["mode"], "affected": result["affected"]}
