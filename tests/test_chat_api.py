"""End-to-end tests for the HTTP routes and the /chat WebSocket."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from chatgate.app import app
from chatgate.configs.config import AppConfig, get_app_config
from chatgate.core.llm import get_inference_backend


@pytest.fixture
def make_client():
    """Build a ``TestClient`` whose lifespan uses *backend* and *config*."""

    def _make(backend, **sections) -> TestClient:
        config = AppConfig(
            retry={"initial_backoff": 0.001, "attempt_timeout": 5}, **sections
        )
        app.dependency_overrides[get_app_config] = lambda: config
        app.dependency_overrides[get_inference_backend] = lambda: backend
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()


# =========================================================================
# HTTP routes
# =========================================================================


class TestHttpRoutes:
    def test_root(self, make_client, scripted):
        with make_client(scripted(["ok"])) as client:
            response = client.get("/")

        assert response.status_code == 200
        assert response.text == "Hello, World!"

    def test_health(self, make_client, scripted):
        with make_client(scripted(["ok"])) as client:
            response = client.get("/health")

        assert response.json() == {"status": "ok"}

    def test_metrics_exposed(self, make_client, scripted):
        with make_client(scripted(["ok"])) as client:
            response = client.get("/metrics")

        assert response.status_code == 200
        assert "chatgate_sessions_active" in response.text


# =========================================================================
# WebSocket /chat
# =========================================================================


class TestChatWebSocket:
    def test_streams_chunks_then_full_answer(self, make_client, scripted):
        backend = scripted(["He", "llo"])
        with make_client(backend) as client:
            with client.websocket_connect("/chat") as ws:
                ws.send_json({"query": "Hello"})
                received = [ws.receive_json() for _ in range(3)]

        assert received == [{"answer": "He"}, {"answer": "llo"}, {"answer": "Hello"}]
        assert backend.prompts == ["Human: Hello\nAssistant:"]

    def test_empty_query(self, make_client, scripted):
        backend = scripted(["ok"])
        with make_client(backend) as client:
            with client.websocket_connect("/chat") as ws:
                ws.send_json({"query": ""})
                assert ws.receive_json() == {"error": "Invalid query"}
            limiter = app.state.rate_limiter

        assert limiter.count == 0
        assert backend.calls == 0

    def test_invalid_format(self, make_client, scripted):
        with make_client(scripted(["ok"])) as client:
            with client.websocket_connect("/chat") as ws:
                ws.send_text("{not json")
                assert ws.receive_json() == {"error": "Invalid message format"}

    def test_third_query_in_window_rejected(self, make_client, scripted):
        backend = scripted(["ok"])
        with make_client(backend, concurrency={"max_requests": 2}) as client:
            with client.websocket_connect("/chat") as ws:
                for _ in range(2):
                    ws.send_json({"query": "Hello"})
                    assert ws.receive_json() == {"answer": "ok"}
                    assert ws.receive_json() == {"answer": "ok"}
                ws.send_json({"query": "Hello"})
                assert ws.receive_json() == {"error": "Too many requests"}

        assert backend.calls == 2

    def test_rate_limit_shared_across_connections(self, make_client, scripted):
        backend = scripted(["ok"])
        with make_client(backend, concurrency={"max_requests": 1}) as client:
            with client.websocket_connect("/chat") as first:
                first.send_json({"query": "Hello"})
                first.receive_json()
                first.receive_json()
            with client.websocket_connect("/chat") as second:
                second.send_json({"query": "Hello"})
                assert second.receive_json() == {"error": "Too many requests"}

    def test_retries_exhausted(self, make_client, scripted):
        backend = scripted(ConnectionError("connection refused"))
        with make_client(backend) as client:
            with client.websocket_connect("/chat") as ws:
                ws.send_json({"query": "Hello"})
                assert ws.receive_json() == {
                    "error": "LLM request failed after 3 retries"
                }

        assert backend.calls == 4
