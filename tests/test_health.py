from fastapi.testclient import TestClient

from cardflow.main import create_app
from cardflow.storage import MemoryStorage


def test_health():
    client = TestClient(create_app(MemoryStorage()))
    assert client.get("/v1/health").json() == {"status": "ok"}


def test_version():
    client = TestClient(create_app(MemoryStorage()))
    assert client.get("/v1/version").json() == {"version": "1.0.0"}
