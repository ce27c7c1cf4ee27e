"""Tests for assistant API routes."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from context_engine.api.deps import get_access_context, get_current_user
from context_engine.core.exceptions import NotFoundError
from context_engine.main import app
from context_engine.models.assistant import AssistantResponse, ContextualInsights
from context_engine.models.behavior import ResponseStyle
from context_engine.models.context import SessionMemory
from context_engine.models.integration import AccessContext


@pytest.fixture
def mock_current_user() -> MagicMock:
    """Create mock current user."""
    user = MagicMock()
    user.id = "test-user-123"
    return user


@pytest.fixture
def test_client(mock_current_user: MagicMock) -> TestClient:
    """Create test client with mocked authentication."""

    async def override_get_current_user() -> MagicMock:
        return mock_current_user

    async def override_get_access_context() -> AccessContext:
        return AccessContext(
            user_id=mock_current_user.id,
            role="executive",
            permissions=["read:all_data", "read:financial_data", "read:analytics"],
        )

    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_access_context] = override_get_access_context
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


def test_health_check() -> None:
    """Test GET /health reports healthy."""
    response = TestClient(app).get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_query_returns_assistant_response(test_client: TestClient) -> None:
    """Test POST /api/v1/assistant/query passes the caller's role to the orchestrator."""
    mock_service = MagicMock()
    mock_service.process_query = AsyncMock(
        return_value=AssistantResponse(
            answer="Here is what I found for your finance question.",
            session_id="session_1",
            entry_id="entry-1",
            confidence=0.74,
            follow_ups=["What's the ROI impact?"],
        )
    )

    with patch("context_engine.api.routes.assistant._get_service", return_value=mock_service):
        response = test_client.post(
            "/api/v1/assistant/query",
            json={"query": "  Show me revenue for last month ", "session_id": "session_1"},
        )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["session_id"] == "session_1"
    assert data["follow_ups"] == ["What's the ROI impact?"]
    mock_service.process_query.assert_awaited_once_with(
        "test-user-123", "Show me revenue for last month", session_id="session_1", role="executive"
    )


def test_query_rejects_blank_query(test_client: TestClient) -> None:
    """Test POST /api/v1/assistant/query with whitespace only returns 400."""
    mock_service = MagicMock()
    mock_service.process_query = AsyncMock()

    with patch("context_engine.api.routes.assistant._get_service", return_value=mock_service):
        response = test_client.post("/api/v1/assistant/query", json={"query": "   "})

    assert response.status_code == 400
    assert response.json() == {"detail": "Query is required", "code": "VALIDATION_ERROR"}
    mock_service.process_query.assert_not_called()


def test_query_requires_query_field(test_client: TestClient) -> None:
    response = test_client.post("/api/v1/assistant/query", json={})
    assert response.status_code == 422


def test_pipeline_failure_is_still_200(test_client: TestClient) -> None:
    """Test the apology response is served as a normal answer."""
    mock_service = MagicMock()
    mock_service.process_query = AsyncMock(return_value=AssistantResponse.apology("session_1"))

    with patch("context_engine.api.routes.assistant._get_service", return_value=mock_service):
        response = test_client.post("/api/v1/assistant/query", json={"query": "revenue"})

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["confidence"] == 0.1


def test_status(test_client: TestClient) -> None:
    mock_service = MagicMock()
    mock_service.get_status.return_value = {
        "status": "operational",
        "integration": {"requests": 3},
        "persistence": {"pending": 0},
    }

    with patch("context_engine.api.routes.assistant._get_service", return_value=mock_service):
        response = test_client.get("/api/v1/assistant/status")

    assert response.status_code == 200
    assert response.json()["status"] == "operational"


def test_data_sources_for_anonymous_visitor() -> None:
    """Test GET /api/v1/assistant/data-sources without a token resolves to the visitor role."""
    mock_service = MagicMock()
    mock_service.available_sources.return_value = [
        {"source": "supabase_customer", "accessible": False}
    ]

    with patch("context_engine.api.routes.assistant._get_service", return_value=mock_service):
        response = TestClient(app).get("/api/v1/assistant/data-sources")

    assert response.status_code == 200
    assert response.json()["role"] == "visitor"
    access = mock_service.available_sources.call_args.args[0]
    assert access.user_id == "anonymous"
    assert access.permissions == ["read:public_data"]


def test_insights_require_authentication() -> None:
    response = TestClient(app).get("/api/v1/assistant/insights")

    assert response.status_code == 401


def test_insights(test_client: TestClient) -> None:
    mock_service = MagicMock()
    mock_service.get_contextual_insights = AsyncMock(
        return_value=ContextualInsights(
            session_summary="2 recent interactions, focused on finance",
            suggested_topics=["finance"],
        )
    )

    with patch("context_engine.api.routes.assistant._get_service", return_value=mock_service):
        response = test_client.get("/api/v1/assistant/insights")

    assert response.status_code == 200
    assert response.json()["suggested_topics"] == ["finance"]
    mock_service.get_contextual_insights.assert_awaited_once_with("test-user-123")


def test_response_style(test_client: TestClient) -> None:
    mock_service = MagicMock()
    mock_service.response_style = AsyncMock(
        return_value=ResponseStyle(style="concise-visual", confidence=0.8)
    )

    with patch("context_engine.api.routes.assistant._get_service", return_value=mock_service):
        response = test_client.get("/api/v1/assistant/response-style")

    assert response.status_code == 200
    assert response.json()["style"] == "concise-visual"


def test_feedback_success(test_client: TestClient) -> None:
    """Test POST /api/v1/assistant/feedback returns the new satisfaction score."""
    now = datetime.now(UTC)
    mock_service = MagicMock()
    mock_service.process_feedback = AsyncMock(
        return_value=SessionMemory(
            session_id="session_1",
            user_id="test-user-123",
            start_time=now,
            last_activity=now,
            satisfaction_score=4.5,
        )
    )

    with patch("context_engine.api.routes.assistant._get_service", return_value=mock_service):
        response = test_client.post(
            "/api/v1/assistant/feedback",
            json={"entry_id": "entry-1", "session_id": "session_1", "rating": 4.5},
        )

    assert response.status_code == 200
    assert response.json() == {"success": True, "session_id": "session_1", "satisfaction_score": 4.5}


def test_feedback_unknown_session_returns_404(test_client: TestClient) -> None:
    mock_service = MagicMock()
    mock_service.process_feedback = AsyncMock(side_effect=NotFoundError("Session", "session_x"))

    with patch("context_engine.api.routes.assistant._get_service", return_value=mock_service):
        response = test_client.post(
            "/api/v1/assistant/feedback",
            json={"entry_id": "entry-1", "session_id": "session_x", "rating": 3},
        )

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_feedback_rating_out_of_range(test_client: TestClient) -> None:
    response = test_client.post(
        "/api/v1/assistant/feedback",
        json={"entry_id": "entry-1", "session_id": "session_1", "rating": 6},
    )

    assert response.status_code == 422
