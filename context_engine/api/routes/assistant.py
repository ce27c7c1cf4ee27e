"""Assistant API routes.

This module provides endpoints for:
- Answering queries with contextual data and behavior predictions
- Integration status and accessible data sources
- Recommended response style and contextual insights
- Feedback on answered turns
"""

import logging
from typing import Any

from fastapi import APIRouter, Request

from context_engine.api.deps import Access, CurrentUser
from context_engine.core.exceptions import ValidationError
from context_engine.models.assistant import (
    AssistantResponse,
    ContextualInsights,
    FeedbackRequest,
    QueryRequest,
)
from context_engine.models.behavior import ResponseStyle
from context_engine.services.assistant import AssistantOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assistant", tags=["assistant"])


def _get_service(request: Request) -> AssistantOrchestrator:
    """Get the orchestrator built at startup."""
    return request.app.state.orchestrator


@router.post("/query", response_model=AssistantResponse)
async def query_assistant(
    data: QueryRequest,
    request: Request,
    access: Access,
) -> AssistantResponse:
    """Answer a natural-language business question.

    Failures inside the pipeline produce a low-confidence apology
    response rather than an error status.
    """
    query = data.query.strip()
    if not query:
        raise ValidationError("Query is required", field="query")

    service = _get_service(request)
    response = await service.process_query(
        access.user_id, query, session_id=data.session_id, role=access.role
    )

    logger.info(
        "Query answered via API",
        extra={
            "user_id": access.user_id,
            "session_id": response.session_id,
            "success": response.success,
        },
    )
    return response


@router.get("/status")
async def get_status(request: Request) -> dict[str, Any]:
    """Integration analytics, data source health and queue stats."""
    return _get_service(request).get_status()


@router.get("/data-sources")
async def list_data_sources(request: Request, access: Access) -> dict[str, Any]:
    """List registered data sources and whether the caller can see them."""
    sources = _get_service(request).available_sources(access)
    return {"role": access.role, "sources": sources}


@router.get("/response-style", response_model=ResponseStyle)
async def get_response_style(request: Request, current_user: CurrentUser) -> ResponseStyle:
    """Get the response style recommended for the current user."""
    return await _get_service(request).response_style(current_user.id)


@router.get("/insights", response_model=ContextualInsights)
async def get_insights(request: Request, current_user: CurrentUser) -> ContextualInsights:
    """Summarize recent context, patterns and suggested next steps."""
    return await _get_service(request).get_contextual_insights(current_user.id)


@router.post("/feedback")
async def submit_feedback(
    data: FeedbackRequest,
    request: Request,
    current_user: CurrentUser,
) -> dict[str, Any]:
    """Record a rating for an answered turn."""
    session = await _get_service(request).process_feedback(current_user.id, data)

    logger.info(
        "Feedback submitted via API",
        extra={"user_id": current_user.id, "session_id": data.session_id},
    )
    return {
        "success": True,
        "session_id": session.session_id,
        "satisfaction_score": session.satisfaction_score,
    }
