import logging
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.api import deps
from app.api.v1.routers import auth as auth_router
from app.core.security import (
    create_password_reset_token,
    create_refresh_token,
    decode_token,
    verify_password,
)
from app.core.settings import settings
from app.db.session import get_db
from app.main import app
from app.models.activity import Activity
from app.models.role import Role
from app.models.user import User
from app.models.user_session import UserSession
from conftest import FakeAsyncSession, FakeResult, entity_handler, get_data, make_role, make_user


@pytest.fixture(autouse=True)
def _no_login_limits(monkeypatch):
    attempts: list[tuple[str, bool]] = []

    async def _enforce(ip, email):
        return None

    async def _record(email, success):
        attempts.append((email, success))

    monkeypatch.setattr(auth_router, "enforce_login_limits", _enforce)
    monkeypatch.setattr(auth_router, "record_login_attempt", _record)
    yield attempts
    app.dependency_overrides.clear()


def _use_session(session: FakeAsyncSession) -> TestClient:
    async def _get_db():
        yield session

    app.dependency_overrides[get_db] = _get_db
    return TestClient(app)


def _make_session_row(user: User, **overrides) -> UserSession:
    defaults = dict(
        id=uuid4(),
        user_id=user.id,
        refresh_jti=uuid4().hex,
        expires_at=datetime.now(timezone.utc) + timedelta(days=1),
        revoked_at=None,
        created_at=datetime.now(timezone.utc),
    )
    defaults.update(overrides)
    return UserSession(**defaults)


def test_register_assigns_borrower_role_and_issues_tokens(patch_jwt_keys):
    session = FakeAsyncSession().on_execute(entity_handler(Role, FakeResult(scalar=make_role("BORROWER"))))
    client = _use_session(session)

    resp = client.post(
        "/api/v1/auth/register",
        json={
            "email": "New.User@Example.com",
            "username": "new_user",
            "password": "Str0ng!Pass",
            "first_name": "New",
        },
    )

    assert resp.status_code == 201
    body = get_data(resp)
    assert body["user"]["email"] == "new.user@example.com"
    assert body["user"]["role_name"] == "BORROWER"
    assert body["tokens"]["token_type"] == "bearer"
    assert body["tokens"]["expires_in"] == settings.access_token_expire_minutes * 60
    claims = decode_token(body["tokens"]["access_token"], expected_type="access")
    assert claims["role"] == "BORROWER"
    assert settings.refresh_cookie_name in resp.cookies
    assert session.committed is True
    assert len(session.added_of(UserSession)) == 1
    assert [a.action for a in session.added_of(Activity)] == ["user.registered"]


def test_register_rejects_weak_password(patch_jwt_keys):
    client = _use_session(FakeAsyncSession())

    resp = client.post(
        "/api/v1/auth/register",
        json={"email": "weak@example.com", "username": "weakling", "password": "password"},
    )

    assert resp.status_code == 400
    payload = resp.json()
    assert payload["code"] == "weak_password"
    assert payload["details"]["errors"]


def test_register_rejects_duplicate_email(patch_jwt_keys):
    existing = make_user(email="taken@example.com")
    session = FakeAsyncSession().on_execute(entity_handler(User, FakeResult(items=[existing])))
    client = _use_session(session)

    resp = client.post(
        "/api/v1/auth/register",
        json={"email": "taken@example.com", "username": "someone", "password": "Str0ng!Pass"},
    )

    assert resp.status_code == 409
    assert resp.json()["code"] == "email_taken"
    assert session.committed is False


def test_login_success_records_attempt_and_sets_cookie(patch_jwt_keys, _no_login_limits):
    user = make_user(email="login@example.com", password="Str0ng!Pass")
    session = FakeAsyncSession().on_execute(entity_handler(User, FakeResult(scalar=user)))
    client = _use_session(session)

    resp = client.post(
        "/api/v1/auth/login", json={"email": "login@example.com", "password": "Str0ng!Pass"}
    )

    assert resp.status_code == 200
    body = get_data(resp)
    assert body["user"]["id"] == str(user.id)
    assert body["tokens"]["access_token"]
    assert user.last_login_at is not None
    assert _no_login_limits == [("login@example.com", True)]
    assert settings.refresh_cookie_name in resp.cookies
    assert any(a.action == "user.login" for a in session.added_of(Activity))


def test_login_wrong_password_is_generic(patch_jwt_keys, _no_login_limits):
    user = make_user(email="login@example.com", password="Str0ng!Pass")
    session = FakeAsyncSession().on_execute(entity_handler(User, FakeResult(scalar=user)))
    client = _use_session(session)

    resp = client.post("/api/v1/auth/login", json={"email": "login@example.com", "password": "nope"})

    assert resp.status_code == 401
    assert resp.json()["code"] == "invalid_credentials"
    assert resp.json()["message"] == "Invalid email or password"
    assert _no_login_limits == [("login@example.com", False)]
    assert session.committed is False


def test_login_unknown_email_matches_wrong_password(patch_jwt_keys):
    client = _use_session(FakeAsyncSession())

    resp = client.post(
        "/api/v1/auth/login", json={"email": "ghost@example.com", "password": "Str0ng!Pass"}
    )

    assert resp.status_code == 401
    assert resp.json()["code"] == "invalid_credentials"


def test_login_inactive_user_rejected(patch_jwt_keys):
    user = make_user(email="inactive@example.com", password="Str0ng!Pass", is_active=False)
    session = FakeAsyncSession().on_execute(entity_handler(User, FakeResult(scalar=user)))
    client = _use_session(session)

    resp = client.post(
        "/api/v1/auth/login", json={"email": "inactive@example.com", "password": "Str0ng!Pass"}
    )

    assert resp.status_code == 401
    assert resp.json()["code"] == "inactive_user"


def test_refresh_rotates_session(patch_jwt_keys):
    user = make_user()
    current = _make_session_row(user)
    session = (
        FakeAsyncSession()
        .on_execute(entity_handler(UserSession, FakeResult(scalar=current)))
        .on_execute(entity_handler(User, FakeResult(scalar=user)))
    )
    client = _use_session(session)
    token = create_refresh_token(str(user.id), token_version=0, jti=current.refresh_jti)

    resp = client.post("/api/v1/auth/refresh", json={"refresh_token": token})

    assert resp.status_code == 200
    body = get_data(resp)
    new_claims = decode_token(body["refresh_token"], expected_type="refresh")
    assert new_claims["jti"] != current.refresh_jti
    assert current.revoked_at is not None
    replacement = session.added_of(UserSession)[0]
    assert current.replaced_by_id == replacement.id
    assert session.committed is True


def test_refresh_reads_cookie_when_body_missing(patch_jwt_keys):
    user = make_user()
    current = _make_session_row(user)
    session = (
        FakeAsyncSession()
        .on_execute(entity_handler(UserSession, FakeResult(scalar=current)))
        .on_execute(entity_handler(User, FakeResult(scalar=user)))
    )
    client = _use_session(session)
    token = create_refresh_token(str(user.id), token_version=0, jti=current.refresh_jti)
    resp = client.post(
        "/api/v1/auth/refresh",
        headers={"Cookie": f"{settings.refresh_cookie_name}={token}"},
    )

    assert resp.status_code == 200
    assert get_data(resp)["access_token"]


def test_refresh_reuse_revokes_everything(patch_jwt_keys):
    user = make_user(token_version=0)
    revoked = _make_session_row(user, revoked_at=datetime.now(timezone.utc))
    session = (
        FakeAsyncSession()
        .on_execute(entity_handler(UserSession, FakeResult(scalar=revoked)))
        .on_execute(entity_handler(User, FakeResult(scalar=user)))
    )
    client = _use_session(session)
    token = create_refresh_token(str(user.id), token_version=0, jti=revoked.refresh_jti)

    resp = client.post("/api/v1/auth/refresh", json={"refresh_token": token})

    assert resp.status_code == 401
    assert resp.json()["code"] == "refresh_token_reused"
    assert user.token_version == 1
    assert session.committed is True


def test_refresh_without_token_is_rejected(patch_jwt_keys):
    client = _use_session(FakeAsyncSession())

    resp = client.post("/api/v1/auth/refresh", json={})

    assert resp.status_code == 401
    assert resp.json()["code"] == "invalid_token"


def test_refresh_rejects_expired_session(patch_jwt_keys):
    user = make_user()
    stale = _make_session_row(user, expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    session = (
        FakeAsyncSession()
        .on_execute(entity_handler(UserSession, FakeResult(scalar=stale)))
        .on_execute(entity_handler(User, FakeResult(scalar=user)))
    )
    client = _use_session(session)
    token = create_refresh_token(str(user.id), token_version=0, jti=stale.refresh_jti)

    resp = client.post("/api/v1/auth/refresh", json={"refresh_token": token})

    assert resp.status_code == 401
    assert resp.json()["code"] == "invalid_token"


def test_logout_revokes_sessions_and_clears_cookie(client, fake_db, test_user):
    resp = client.post("/api/v1/auth/logout")

    assert resp.status_code == 200
    assert resp.json()["code"] == "ok"
    assert test_user.token_version == 1
    assert fake_db.committed is True
    assert 'refresh_token=""' in resp.headers.get("set-cookie", "")
    assert any(a.action == "user.logout" for a in fake_db.added_of(Activity))


def test_me_returns_current_user(client, test_user):
    resp = client.get("/api/v1/auth/me")

    assert resp.status_code == 200
    body = get_data(resp)
    assert body["email"] == test_user.email
    assert body["role_name"] == "BORROWER"


def test_change_password_success(client, fake_db, test_user, patch_jwt_keys):
    resp = client.post(
        "/api/v1/auth/password/change",
        json={"current_password": "Password123!", "new_password": "NewPassword123!"},
    )

    assert resp.status_code == 200
    data = get_data(resp)
    assert "access_token" in data and "refresh_token" in data
    assert test_user.token_version == 1
    assert verify_password("NewPassword123!", test_user.hashed_password)
    assert fake_db.committed is True


def test_change_password_rejects_wrong_current(client, fake_db, test_user, patch_jwt_keys):
    resp = client.post(
        "/api/v1/auth/password/change",
        json={"current_password": "WrongPassword1!", "new_password": "NewPassword123!"},
    )

    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_password"
    assert test_user.token_version == 0
    assert fake_db.committed is False


def test_change_password_rejects_reuse(client, patch_jwt_keys):
    resp = client.post(
        "/api/v1/auth/password/change",
        json={"current_password": "Password123!", "new_password": "Password123!"},
    )

    assert resp.status_code == 400
    assert resp.json()["code"] == "password_reused"


def test_password_reset_request_exposes_token_in_development(monkeypatch, patch_jwt_keys):
    monkeypatch.setattr(settings, "environment", "development")
    user = make_user(email="reset@example.com")
    session = FakeAsyncSession().on_execute(entity_handler(User, FakeResult(scalar=user)))
    client = _use_session(session)

    resp = client.post("/api/v1/auth/password-reset/request", json={"email": "reset@example.com"})

    assert resp.status_code == 200
    body = get_data(resp)
    assert body["reset_token"]
    assert decode_token(body["reset_token"], expected_type="password_reset")["sub"] == str(user.id)


def test_password_reset_request_is_uniform_outside_development(monkeypatch, patch_jwt_keys):
    monkeypatch.setattr(settings, "environment", "production")
    known = make_user(email="reset@example.com")
    session = FakeAsyncSession().on_execute(entity_handler(User, FakeResult(scalar=known)))
    client = _use_session(session)

    known_resp = client.post(
        "/api/v1/auth/password-reset/request", json={"email": "reset@example.com"}
    )
    app.dependency_overrides.clear()
    unknown_resp = _use_session(FakeAsyncSession()).post(
        "/api/v1/auth/password-reset/request", json={"email": "ghost@example.com"}
    )

    assert known_resp.status_code == unknown_resp.status_code == 200
    assert get_data(known_resp) == get_data(unknown_resp)
    assert get_data(known_resp)["reset_token"] is None


def test_password_reset_token_is_not_logged_outside_development(monkeypatch, caplog, patch_jwt_keys):
    monkeypatch.setattr(settings, "environment", "production")
    user = make_user(email="reset@example.com")
    session = FakeAsyncSession().on_execute(entity_handler(User, FakeResult(scalar=user)))
    client = _use_session(session)
    caplog.set_level(logging.INFO, logger="app.services.accounts")

    resp = client.post("/api/v1/auth/password-reset/request", json={"email": "reset@example.com"})

    assert resp.status_code == 200
    messages = [record.getMessage() for record in caplog.records if record.name == "app.services.accounts"]
    assert any(str(user.id) in message for message in messages)
    assert not any("token=" in message for message in messages)


def test_password_reset_confirm_sets_password_and_revokes(patch_jwt_keys):
    user = make_user(email="reset@example.com", token_version=3)
    session = FakeAsyncSession().on_execute(entity_handler(User, FakeResult(scalar=user)))
    client = _use_session(session)
    token = create_password_reset_token(str(user.id), token_version=3)

    resp = client.post(
        "/api/v1/auth/password-reset/confirm",
        json={"reset_token": token, "new_password": "Fresh!Pass99"},
    )

    assert resp.status_code == 200
    assert verify_password("Fresh!Pass99", user.hashed_password)
    assert user.token_version == 4
    assert session.committed is True


def test_password_reset_token_is_single_use(patch_jwt_keys):
    user = make_user(email="reset@example.com", token_version=4)
    session = FakeAsyncSession().on_execute(entity_handler(User, FakeResult(scalar=user)))
    client = _use_session(session)
    used_token = create_password_reset_token(str(user.id), token_version=3)

    resp = client.post(
        "/api/v1/auth/password-reset/confirm",
        json={"reset_token": used_token, "new_password": "Fresh!Pass99"},
    )

    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_reset_token"


def test_logout_requires_authentication():
    app.dependency_overrides.pop(deps.get_current_user_allow_password_change, None)
    resp = TestClient(app).post("/api/v1/auth/logout")
    assert resp.status_code == 401
