"""Tests for the FastAPI endpoints."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from dental_agent.engine import ChatTurnResult, SessionStart
from dental_agent.server import app

BOOKING = {"success": True, "reference_code": "APT-7KQ2", "date": "2025-03-10", "time": "10:00"}


@pytest.fixture
def mock_engine():
    """Create a mock chat engine and attach it to app state (mirrors the lifespan)."""
    engine = MagicMock()
    engine.process_message.return_value = ChatTurnResult(
        text="Hello! How can I help you?",
        quick_replies=[{"label": "Book an appointment", "value": "I would like to book an appointment"}],
    )
    engine.start_session.return_value = SessionStart(
        session_id="abc123", text="Hi! Welcome to Smile Dental.", quick_replies=[],
    )
    app.state.engine = engine
    yield engine
    app.state.engine = None


@pytest.fixture
def client(mock_engine):
    """FastAPI test client with the mock engine wired up."""
    return TestClient(app)


def _events(body: str) -> list[str]:
    return [line[len("data: "):] for line in body.splitlines() if line.startswith("data: ")]


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "dental-agent"}

    def test_root(self, client):
        assert client.get("/").json()["health"] == "/api/health"


class TestSessionEndpoint:
    def test_start_session(self, client, mock_engine):
        response = client.post("/api/chat/session", json={"language": "nl"})
        assert response.status_code == 200
        assert response.json()["session_id"] == "abc123"
        mock_engine.start_session.assert_called_once_with("nl", "chat")


class TestChatEndpoint:
    def test_chat_returns_response(self, client, mock_engine):
        response = client.post("/api/chat", json={"message": "Hello!", "session_id": "test-session-1"})
        assert response.status_code == 200
        data = response.json()
        assert data["reply"] == "Hello! How can I help you?"
        assert data["session_id"] == "test-session-1"
        assert data["quick_replies"][0]["label"] == "Book an appointment"
        assert data["booking"] is None

    def test_chat_passes_session_language_and_source(self, client, mock_engine):
        client.post(
            "/api/chat",
            json={"message": "Hoi", "session_id": "my-session", "language": "nl", "source": "whatsapp"},
        )
        mock_engine.process_message.assert_called_once_with("my-session", "Hoi", "nl", "whatsapp")

    def test_chat_includes_booking(self, client, mock_engine):
        mock_engine.process_message.return_value = ChatTurnResult(text="Booked!", booking=BOOKING)
        data = client.post("/api/chat", json={"message": "Yes", "session_id": "s"}).json()
        assert data["booking"]["reference_code"] == "APT-7KQ2"

    def test_empty_message_rejected(self, client):
        response = client.post("/api/chat", json={"message": "", "session_id": "s"})
        assert response.status_code == 422

    def test_missing_session_id_rejected(self, client):
        response = client.post("/api/chat", json={"message": "Hi"})
        assert response.status_code == 422

    def test_message_too_long_rejected(self, client):
        response = client.post("/api/chat", json={"message": "x" * 2001, "session_id": "s"})
        assert response.status_code == 422

    def test_engine_error_returns_generic_500(self, client, mock_engine):
        mock_engine.process_message.side_effect = RuntimeError("database exploded")
        response = client.post("/api/chat", json={"message": "Hi", "session_id": "s"})
        assert response.status_code == 500
        assert "database exploded" not in response.text

    def test_request_id_is_echoed(self, client):
        response = client.post(
            "/api/chat", json={"message": "Hi", "session_id": "s"}, headers={"X-Request-ID": "req-42"},
        )
        assert response.headers["X-Request-ID"] == "req-42"


class TestStreamEndpoint:
    def test_stream_chunks_then_extras_then_done(self, client, mock_engine):
        mock_engine.process_message.return_value = ChatTurnResult(
            text="Booked!", booking=BOOKING, quick_replies=[{"label": "Other question", "value": "x"}],
        )
        response = client.post("/api/chat/stream", json={"message": "Yes", "session_id": "s"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")

        events = _events(response.text)
        assert events[-1] == "[DONE]"
        payloads = [json.loads(e) for e in events[:-1]]
        text = "".join(p["content"] for p in payloads if "content" in p)
        assert text == "Booked!"
        assert payloads[-2] == {"booking": BOOKING}
        assert payloads[-1] == {"quickReplies": [{"label": "Other question", "value": "x"}]}

    def test_stream_without_extras(self, client, mock_engine):
        mock_engine.process_message.return_value = ChatTurnResult(text="Hi")
        events = _events(client.post("/api/chat/stream", json={"message": "Hi", "session_id": "s"}).text)
        assert events == ['{"content": "Hi"}', "[DONE]"]


class TestEngineNotReady:
    def test_returns_503_without_engine(self):
        app.state.engine = None
        response = TestClient(app).post("/api/chat", json={"message": "Hi", "session_id": "s"})
        assert response.status_code == 503
