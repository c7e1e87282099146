from fastapi.testclient import TestClient

from cardrank.config import Settings
from cardrank.main import create_app


def test_health(session_factory):
    client = TestClient(create_app(Settings(), session_factory=session_factory))
    assert client.get("/v1/health").json() == {"status": "ok"}


def test_version(session_factory):
    client = TestClient(create_app(Settings(), session_factory=session_factory))
    assert client.get("/v1/version").json() == {"version": "1.0.0"}
