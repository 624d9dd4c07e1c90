from uuid import uuid4

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from microlend.api import deps
from microlend.core.settings import settings
from microlend.core.tenant import is_valid_tenant_id, normalize_tenant_id, parse_branch_id


@pytest.fixture(autouse=True)
def _base_env(monkeypatch):
    monkeypatch.setattr(settings, "default_tenant_id", "default")
    monkeypatch.setattr(settings, "allowed_tenant_hosts", [])
    yield


def _build_app() -> FastAPI:
    app = FastAPI()

    @app.get("/ctx")
    async def ctx_route(ctx: deps.TenantContext = Depends(deps.get_tenant_context)):
        return {"tenant_id": ctx.tenant_id, "branch_id": str(ctx.branch_id) if ctx.branch_id else None}

    return app


def test_normalize_tenant_id() -> None:
    assert normalize_tenant_id("  Acme-Micro_1 ") == "acme-micro_1"


@pytest.mark.parametrize("value", ["a", "-acme", "acme corp", "acme!", "x" * 65])
def test_invalid_tenant_ids(value) -> None:
    with pytest.raises(ValueError):
        normalize_tenant_id(value)
    assert is_valid_tenant_id(value) is False


def test_parse_branch_id() -> None:
    branch = uuid4()
    assert parse_branch_id(f" {branch} ") == branch
    assert parse_branch_id("") is None
    assert parse_branch_id(None) is None
    with pytest.raises(ValueError):
        parse_branch_id("head-office")


def test_single_mode_uses_default_tenant(monkeypatch):
    monkeypatch.setattr(settings, "tenancy_mode", "single")
    monkeypatch.setattr(settings, "default_tenant_id", "single-tenant")
    client = TestClient(_build_app())
    resp = client.get("/ctx", headers={"X-Tenant-ID": "ignored"})
    assert resp.status_code == 200
    assert resp.json()["tenant_id"] == "single-tenant"


def test_multi_mode_requires_header_or_subdomain(monkeypatch):
    monkeypatch.setattr(settings, "tenancy_mode", "multi")
    client = TestClient(_build_app())
    resp = client.get("/ctx")
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "tenant_required"


def test_multi_mode_accepts_header_and_branch(monkeypatch):
    monkeypatch.setattr(settings, "tenancy_mode", "multi")
    branch = uuid4()
    client = TestClient(_build_app())
    resp = client.get("/ctx", headers={"X-Tenant-ID": "Acme", "X-Branch-ID": str(branch)})
    assert resp.status_code == 200
    assert resp.json() == {"tenant_id": "acme", "branch_id": str(branch)}


def test_multi_mode_rejects_bad_branch(monkeypatch):
    monkeypatch.setattr(settings, "tenancy_mode", "multi")
    client = TestClient(_build_app())
    resp = client.get("/ctx", headers={"X-Tenant-ID": "acme", "X-Branch-ID": "north"})
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "invalid_tenant_context"


def test_multi_mode_accepts_subdomain(monkeypatch):
    monkeypatch.setattr(settings, "tenancy_mode", "multi")
    client = TestClient(_build_app())
    resp = client.get("/ctx", headers={"host": "acme.example.com"})
    assert resp.status_code == 200
    assert resp.json()["tenant_id"] == "acme"


def test_subdomain_outside_allowed_hosts_is_ignored(monkeypatch):
    monkeypatch.setattr(settings, "tenancy_mode", "multi")
    monkeypatch.setattr(settings, "allowed_tenant_hosts", ["acme.example.com"])
    client = TestClient(_build_app())
    resp = client.get("/ctx", headers={"host": "evil.example.com"})
    assert resp.status_code == 400
