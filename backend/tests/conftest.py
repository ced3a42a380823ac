"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from app.config import AppConfig, StoreSettings
from app.main import create_app


@pytest.fixture
def app():
    """A fresh application backed by an in-memory message store."""
    return create_app(AppConfig(store=StoreSettings(db_path=":memory:")))


@pytest.fixture
def api_client(app):
    """Provide a TestClient with the application lifespan running."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def registry(app, api_client):
    return app.state.registry


@pytest.fixture
def store(app, api_client):
    return app.state.message_store


def as_user(user_id: str) -> dict:
    """Headers identifying the caller to the REST API."""
    return {"X-User-Id": user_id}


def receive_connected(ws) -> str:
    """Receive the server greeting and return the connection id."""
    connected = ws.receive_json()
    assert connected["type"] == "connected"
    return connected["connectionId"]


def flush(ws) -> None:
    """Round-trip barrier: frames sent before this one are fully handled.

    Each connection's frames are processed in order, so the error reply to
    an unknown event arrives only after everything queued before it.
    """
    ws.send_json({"type": "flush"})
    reply = ws.receive_json()
    assert reply["type"] == "error"
