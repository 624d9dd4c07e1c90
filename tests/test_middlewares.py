import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from starlette.responses import JSONResponse

from microlend.core import context
from microlend.core.settings import settings
from microlend.middlewares.request_context import RequestContextMiddleware
from microlend.middlewares.security_headers import SecurityHeadersMiddleware, build_security_headers
from microlend.middlewares.trust_proxies import TrustedProxiesMiddleware, client_from_forwarded


@pytest.mark.parametrize(
    ("forwarded", "proxies", "expected"),
    [
        ("203.0.113.7, 10.0.0.1", 1, "203.0.113.7"),
        ("198.51.100.2, 203.0.113.7, 10.0.0.1", 1, "203.0.113.7"),
        ("198.51.100.2, 203.0.113.7, 10.0.0.1", 2, "198.51.100.2"),
        ("10.0.0.1", 1, None),
        ("203.0.113.7, 10.0.0.1", 0, None),
        (" , ", 1, None),
    ],
)
def test_client_from_forwarded(forwarded, proxies, expected) -> None:
    assert client_from_forwarded(forwarded, proxies) == expected


def test_security_headers_with_csp(monkeypatch) -> None:
    monkeypatch.setattr(settings, "content_security_policy", "default-src 'self'")
    monkeypatch.setattr(settings, "content_security_policy_report_only", True)

    headers = dict(build_security_headers(enable_hsts=False))

    assert headers[b"x-frame-options"] == b"DENY"
    assert b"strict-transport-security" not in headers
    assert headers[b"content-security-policy-report-only"] == b"default-src 'self'"


def _build_app() -> FastAPI:
    app = FastAPI()

    @app.get("/echo")
    async def echo(request: Request):
        return {
            "client": request.client.host if request.client else None,
            "tenant": context.get_tenant_id(),
            "request_id": context.get_request_id(),
        }

    @app.get("/framed")
    async def framed():
        return JSONResponse({"ok": True}, headers={"X-Frame-Options": "SAMEORIGIN"})

    app.add_middleware(TrustedProxiesMiddleware, proxies_count=1)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=True)
    return app


def test_stack_binds_context_and_headers(monkeypatch) -> None:
    monkeypatch.setattr(settings, "content_security_policy", None)
    client = TestClient(_build_app())

    resp = client.get(
        "/echo",
        headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Tenant-ID": "acme", "X-Request-ID": "req-1"},
    )

    assert resp.status_code == 200
    assert resp.json() == {"client": "203.0.113.7", "tenant": "acme", "request_id": "req-1"}
    assert resp.headers["x-request-id"] == "req-1"
    assert resp.headers["strict-transport-security"].startswith("max-age=")
    assert context.get_tenant_id() == "-"


def test_route_headers_are_not_overridden(monkeypatch) -> None:
    monkeypatch.setattr(settings, "content_security_policy", None)
    client = TestClient(_build_app())

    resp = client.get("/framed")

    assert resp.headers["x-frame-options"] == "SAMEORIGIN"
    assert resp.headers["x-content-type-options"] == "nosniff"
    assert resp.headers["x-request-id"]
