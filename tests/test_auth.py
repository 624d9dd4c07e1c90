from datetime import timedelta

import pytest

from conftest import FakeResult, make_user
from microlend.api.v1.routers import auth as auth_router
from microlend.core import security


@pytest.fixture
def no_login_limits(monkeypatch):
    attempts: list[tuple[str, str, bool]] = []

    async def noop_enforce(ip, tenant_id, email):
        return None

    async def capture_record(tenant_id, email, success):
        attempts.append((tenant_id, email, success))

    monkeypatch.setattr(auth_router, "enforce_login_limits", noop_enforce)
    monkeypatch.setattr(auth_router, "record_login_attempt", capture_record)
    return attempts


def test_password_hash_round_trip() -> None:
    hashed = security.get_password_hash("Password123!")
    assert hashed != "Password123!"
    assert security.verify_password("Password123!", hashed)
    assert not security.verify_password("wrong", hashed)


def test_tokens_carry_tenant_and_type(patch_jwt_keys) -> None:
    token = security.create_access_token("user-1", "acme", token_version=3)

    payload = security.decode_token(token, expected_type="access")

    assert payload["sub"] == "user-1"
    assert payload["tid"] == "acme"
    assert payload["tv"] == 3
    with pytest.raises(ValueError):
        security.decode_token(token, expected_type="refresh")


def test_expired_token_is_rejected(patch_jwt_keys) -> None:
    token = security.create_access_token("user-1", "acme", expires_delta=timedelta(seconds=-5))
    with pytest.raises(ValueError):
        security.decode_token(token)


def test_login_issues_token_pair(client, fake_db, patch_jwt_keys, no_login_limits) -> None:
    user = make_user(email="officer@example.com", password="Password123!")
    fake_db.on_execute_return(FakeResult(scalar=user))

    response = client.post("/api/v1/auth/login", json={"email": "officer@example.com", "password": "Password123!"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["token_type"] == "bearer"
    claims = security.decode_token(data["access_token"], expected_type="access")
    assert claims["sub"] == str(user.id)
    assert claims["tid"] == "default"
    assert user.last_active_at is not None
    assert no_login_limits == [("default", "officer@example.com", True)]


def test_login_with_wrong_password(client, fake_db, patch_jwt_keys, no_login_limits) -> None:
    fake_db.on_execute_return(FakeResult(scalar=make_user(password="Password123!")))

    response = client.post("/api/v1/auth/login", json={"email": "officer@example.com", "password": "nope"})

    assert response.status_code == 401
    assert response.json()["code"] == "invalid_credentials"
    assert no_login_limits == [("default", "officer@example.com", False)]


def test_login_for_inactive_user(client, fake_db, patch_jwt_keys, no_login_limits) -> None:
    fake_db.on_execute_return(FakeResult(scalar=make_user(is_active=False)))

    response = client.post("/api/v1/auth/login", json={"email": "officer@example.com", "password": "Password123!"})

    assert response.status_code == 401
    assert not fake_db.committed


def test_refresh_rotates_tokens(client, fake_db, patch_jwt_keys, monkeypatch) -> None:
    user = make_user(token_version=2)
    fake_db.on_execute_return(FakeResult(scalar=user))
    used: list[str] = []

    async def is_used(jti):
        return False

    async def mark_used(jti, expires_at):
        used.append(jti)

    monkeypatch.setattr(auth_router, "is_refresh_used", is_used)
    monkeypatch.setattr(auth_router, "mark_refresh_used", mark_used)
    refresh = security.create_refresh_token(str(user.id), "default", token_version=2)

    response = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh})

    assert response.status_code == 200
    assert used == [security.decode_token(refresh)["jti"]]
    assert response.json()["data"]["refresh_token"] != refresh


def test_refresh_reuse_revokes_sessions(client, fake_db, patch_jwt_keys, monkeypatch) -> None:
    user = make_user(token_version=2)
    fake_db.on_execute_return(FakeResult(scalar=user))

    async def is_used(jti):
        return True

    monkeypatch.setattr(auth_router, "is_refresh_used", is_used)
    refresh = security.create_refresh_token(str(user.id), "default", token_version=2)

    response = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh})

    assert response.status_code == 401
    assert user.token_version == 3


def test_refresh_rejects_access_token(client, patch_jwt_keys) -> None:
    access = security.create_access_token("someone", "default")

    response = client.post("/api/v1/auth/refresh", json={"refresh_token": access})

    assert response.status_code == 401


def test_me_lists_roles(client, fake_db, test_user) -> None:
    fake_db.on_execute_return(FakeResult(rows=[("LOAN_OFFICER",)]))

    response = client.get("/api/v1/auth/me")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["email"] == test_user.email
    assert data["roles"] == ["LOAN_OFFICER"]
    assert data["permissions"] == []


def test_logout_bumps_token_version(client, fake_db, test_user) -> None:
    response = client.post("/api/v1/auth/logout")

    assert response.status_code == 200
    assert response.json()["data"] is None
    assert test_user.token_version == 1
    assert fake_db.committed
