import pytest
from fastapi.testclient import TestClient

from microlend import __version__
from microlend.core import health as health_module
from microlend.main import app

client = TestClient(app)


@pytest.fixture(autouse=True)
def _mock_env(monkeypatch):
    monkeypatch.setattr(health_module.settings, "environment", "test")
    yield


def _stub_checks(monkeypatch, db_status: str = "ok", redis_status: str = "ok") -> None:
    async def db_check():
        return {"status": db_status} if db_status == "ok" else {"status": db_status, "error": "unreachable"}

    async def redis_check():
        return {"status": redis_status}

    monkeypatch.setattr(health_module, "_check_db", db_check)
    monkeypatch.setattr(health_module, "_check_redis", redis_check)


def test_health_live_returns_ok() -> None:
    response = client.get("/api/v1/health/live")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "ok"
    assert "timestamp" in payload


def test_health_ready_ok(monkeypatch) -> None:
    _stub_checks(monkeypatch)

    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "ok"
    assert payload.get("ready") is True
    assert payload["environment"] == "test"
    assert payload["checks"]["api"]["version"] == __version__
    assert payload["checks"]["database"]["status"] == "ok"
    assert payload["checks"]["redis"]["status"] == "ok"


def test_health_ready_degraded(monkeypatch) -> None:
    _stub_checks(monkeypatch, db_status="error")

    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "degraded"
    assert payload.get("ready") is False
    assert payload["checks"]["database"]["error"] == "unreachable"


def test_health_alias_reports_redis_outage(monkeypatch) -> None:
    _stub_checks(monkeypatch, redis_status="error")

    response = client.get("/api/v1/health")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("ready") is False
    assert payload.get("version") == __version__
