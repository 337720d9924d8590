"""
Tests for the HTTP surface.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from codecrew.cache.lexical import ResponseCache
from codecrew.cache.multi_tier import MultiTierCache
from codecrew.gateway.router import RoutedGateway
from codecrew.main import app
from codecrew.workflows.pipeline import OrchestrationEngine, get_engine

from conftest import APP_TSX, FakeGateway, FakeSandbox, fenced


@pytest.fixture
def gateway():
    return FakeGateway([fenced("/App.tsx", APP_TSX)])


@pytest.fixture
def engine(gateway, tracker):
    engine = OrchestrationEngine(gateway, FakeSandbox(), cache=MultiTierCache(lexical=ResponseCache(), background=tracker))
    app.dependency_overrides[get_engine] = lambda: engine
    yield engine
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def api_client(engine):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


class TestHealth:
    """Test the health endpoint."""

    @pytest.mark.asyncio
    async def test_health(self, api_client):
        response = await api_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["cache"]["lexical"]["size"] == 0

    @pytest.mark.asyncio
    async def test_metrics(self, api_client):
        await api_client.get("/health")
        response = await api_client.get("/metrics")

        assert response.status_code == 200
        assert "codecrew_http_requests_total" in response.text


class TestOrchestrate:
    """Test the orchestration endpoint."""

    @pytest.mark.asyncio
    async def test_fast_request(self, api_client, gateway):
        response = await api_client.post("/orchestrate", json={"text": "build a todo list app", "mode": "fast"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["projectName"] == "build-a-todo"
        assert body["files"] == {"/App.tsx": APP_TSX}
        assert body["mode"] == "fast"
        assert body["agentResults"][0]["taskId"] == "fast"
        assert len(gateway.calls) == 1

    @pytest.mark.asyncio
    async def test_camel_case_request_fields(self, api_client, gateway):
        response = await api_client.post(
            "/orchestrate",
            json={"text": "build a todo list app", "mode": "fast", "userId": "user-1", "sessionId": "s1"},
        )

        assert response.status_code == 200
        _, options = gateway.calls[0]
        assert options.user_id == "user-1"

    @pytest.mark.asyncio
    async def test_failure_is_a_200_with_success_false(self, api_client):
        app.dependency_overrides[get_engine] = lambda: OrchestrationEngine(
            FakeGateway([RuntimeError("provider down")]), FakeSandbox()
        )
        response = await api_client.post("/orchestrate", json={"text": "build a todo list app"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["summary"] == "provider down"

    @pytest.mark.asyncio
    async def test_empty_text_is_rejected(self, api_client, gateway):
        response = await api_client.post("/orchestrate", json={"text": ""})

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "Validation Error"
        assert body["details"][0]["field"] == "text"
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_unknown_mode_is_rejected(self, api_client):
        response = await api_client.post("/orchestrate", json={"text": "x", "mode": "turbo"})

        assert response.status_code == 422
        assert response.json()["details"][0]["field"] == "mode"


class TestAdmin:
    """Test the admin endpoints."""

    @pytest.mark.asyncio
    async def test_jobs_are_listed(self, api_client):
        response = await api_client.get("/admin/jobs")

        assert response.status_code == 200
        assert [job["id"] for job in response.json()["jobs"]] == ["purge_expired_cache"]

    @pytest.mark.asyncio
    async def test_providers(self, api_client):
        response = await api_client.get("/admin/providers")

        assert response.status_code == 200
        assert set(response.json()["providers"]) == {"openrouter", "openai", "groq"}

    @pytest.mark.asyncio
    async def test_provider_health_from_routed_gateway(self, api_client):
        app.dependency_overrides[get_engine] = lambda: OrchestrationEngine(
            RoutedGateway({"openai": FakeGateway(["ok"])}), FakeSandbox()
        )
        response = await api_client.get("/admin/providers")

        assert response.json()["health"]["openai"]["available"] is True
