"""Shared test fixtures and configuration for backend tests."""
import json
from base64 import b64encode

import pytest
from fastapi.testclient import TestClient
from itsdangerous import TimestampSigner

from taskportal.config import AppSettings, DatabaseSettings, set_config
from taskportal.main import app
from taskportal.messaging.ledger import MessageLedger
from taskportal.messaging.registry import registry
from taskportal.messaging.service import set_messaging_service


class FakeSocket:
    """Stands in for a WebSocket: records frames, or fails every send."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(data)

    def frames(self, event_type):
        return [f for f in self.sent if f.get("type") == event_type]


@pytest.fixture(autouse=True)
def reset_messaging_state():
    """Run every test against a fresh in-memory ledger and empty registry.

    Keeps tests away from the file-based messages.duckdb, which can be
    locked by a backend running concurrently.
    """
    set_config(AppSettings(database=DatabaseSettings(path=":memory:")))
    MessageLedger.reset_instance()
    set_messaging_service(None)
    registry.clear()
    yield
    registry.clear()
    set_messaging_service(None)
    MessageLedger.reset_instance()
    app.dependency_overrides.clear()
    set_config(None)


@pytest.fixture
def ledger():
    """A standalone in-memory ledger."""
    store = MessageLedger(db_path=":memory:")
    yield store
    store.close()


@pytest.fixture
def make_socket():
    """Factory for FakeSocket instances."""
    return FakeSocket


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app with lifespan running.

    Used as a context manager so every WebSocket opened in a test shares
    one event loop, which cross-connection pushes rely on.
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture
def session_cookie():
    """Build a ``Cookie`` header carrying a signed session user.

    Produces the same cookie the auth service writes after login.
    """
    secrets = AppSettings().secrets.session

    def _build(user: dict) -> dict:
        signer = TimestampSigner(str(secrets.secret_key))
        payload = b64encode(json.dumps({"user": user}).encode("utf-8"))
        value = signer.sign(payload).decode("utf-8")
        return {"cookie": f"{secrets.cookie_name}={value}"}

    return _build
