import os

import pytest
from fastapi.testclient import TestClient

from app.core import health as health_module
from app.main import app

client = TestClient(app)

_real_check_db = health_module._check_db


class _BrokenEngine:
    def connect(self):
        raise ConnectionRefusedError("database refused connection")


class _FakeRedis:
    def __init__(self, error: Exception | None = None):
        self.error = error

    async def ping(self):
        if self.error:
            raise self.error
        return True


@pytest.fixture
def healthy(monkeypatch, tmp_path):
    async def ok_db():
        return {"status": "ok"}

    monkeypatch.setattr(health_module.settings, "environment", "test")
    monkeypatch.setattr(health_module.settings, "local_upload_dir", str(tmp_path))
    monkeypatch.setattr(health_module, "_check_db", ok_db)
    monkeypatch.setattr(health_module, "get_redis_client", lambda: _FakeRedis())
    return tmp_path


def _ready_data() -> dict:
    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200
    return response.json()["data"]


def test_liveness_needs_no_dependencies():
    data = client.get("/api/v1/health/live").json()["data"]

    assert data["status"] == "ok"
    assert data["timestamp"]


def test_readiness_reports_every_check(healthy):
    data = _ready_data()

    assert data["ready"] is True
    assert data["status"] == "ok"
    assert data["environment"] == "test"
    assert set(data["checks"]) == {"api", "database", "redis", "uploads"}
    assert data["checks"]["api"]["version"] == health_module.APP_VERSION


def test_health_alias_matches_readiness(healthy):
    data = client.get("/api/v1/health").json()["data"]

    assert data["ready"] is True
    assert data["checks"]["uploads"] == {"status": "ok"}


def test_readiness_degrades_when_database_is_down(healthy, monkeypatch):
    monkeypatch.setattr(health_module, "_check_db", _real_check_db)
    monkeypatch.setattr(health_module, "engine", _BrokenEngine())

    data = _ready_data()

    assert data["ready"] is False
    assert data["status"] == "degraded"
    assert data["checks"]["database"] == {"status": "error", "error": "database refused connection"}


def test_readiness_degrades_when_redis_is_down(healthy, monkeypatch):
    monkeypatch.setattr(
        health_module, "get_redis_client", lambda: _FakeRedis(ConnectionError("redis timed out"))
    )

    data = _ready_data()

    assert data["ready"] is False
    assert data["checks"]["redis"] == {"status": "error", "error": "redis timed out"}
    assert data["checks"]["database"]["status"] == "ok"


def test_readiness_flags_unwritable_upload_dir(healthy, monkeypatch):
    real_access = os.access
    upload_dir = str(healthy)

    def _access(path, mode, *args, **kwargs):
        if str(path) == upload_dir and mode == os.W_OK:
            return False
        return real_access(path, mode, *args, **kwargs)

    monkeypatch.setattr(health_module.os, "access", _access)

    data = _ready_data()

    assert data["ready"] is False
    assert data["status"] == "degraded"
    assert data["checks"]["uploads"] == {"status": "error", "error": "upload directory is not writable"}


def test_missing_upload_dir_is_created_later(healthy, monkeypatch):
    monkeypatch.setattr(health_module.settings, "local_upload_dir", str(healthy / "not-yet"))

    assert health_module._check_uploads() == {"status": "ok"}


def test_status_summary_carries_version(healthy):
    response = client.get("/api/v1/status/summary")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["version"] == health_module.APP_VERSION
    assert data["ready"] is True
