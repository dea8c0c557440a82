from __future__ import annotations

from http.cookies import SimpleCookie

import pytest

from safedocs.config import settings
from safedocs.db.session import SessionLocal
from safedocs.models import AuditLog, User, UserRole, UserSession
from safedocs.services.auth import AuthService


def _register(client, username="amani", email="amani@safedocs.rw", password="s3cure-passw0rd"):
    return client.post(
        "/auth/register",
        json={"username": username, "email": email, "password": password, "full_name": "Amani Uwase"},
    )


@pytest.mark.integration
def test_register_returns_session_and_sets_cookie(client):
    response = _register(client)
    assert response.status_code == 201
    payload = response.json()
    assert payload["user"]["username"] == "amani"
    assert payload["user"]["role"] == "user"
    assert payload["token"]
    assert settings.cookie_name in response.headers.get("set-cookie", "")

    profile = client.get("/auth/profile", headers={"Authorization": f"Bearer {payload['token']}"})
    assert profile.status_code == 200
    assert profile.json()["email"] == "amani@safedocs.rw"


@pytest.mark.integration
def test_register_rejects_duplicate_username(client):
    assert _register(client).status_code == 201
    client.cookies.clear()
    response = _register(client, email="other@safedocs.rw")
    assert response.status_code == 409
    assert response.json()["detail"] == "Username or email already exists"


@pytest.mark.integration
def test_login_with_wrong_password_is_rejected(client, make_user):
    account = make_user()
    response = client.post("/auth/login", json={"username": account.username, "password": "nope-nope"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"


@pytest.mark.integration
def test_login_records_audit_entry(client, make_user):
    account = make_user()
    response = client.post("/auth/login", json={"username": account.username, "password": account.password})
    assert response.status_code == 200
    assert response.json()["user"]["id"] == account.id

    with SessionLocal() as session:
        actions = [row.action for row in session.query(AuditLog).all()]
    assert "USER_LOGIN" in actions


@pytest.mark.integration
def test_disabled_account_cannot_login(client, make_user):
    account = make_user()
    with SessionLocal() as session:
        user = session.query(User).filter(User.username == account.username).one()
        user.is_active = False
        session.commit()

    response = client.post("/auth/login", json={"username": account.username, "password": account.password})
    assert response.status_code == 403
    assert response.json()["detail"] == "Account is disabled"

    # existing sessions stop working too
    assert client.get("/auth/profile", headers=account.headers).status_code == 401


@pytest.mark.integration
def test_logout_revokes_session(client, make_user):
    account = make_user()
    response = client.post("/auth/logout", cookies={settings.cookie_name: account.token})
    assert response.status_code == 200
    assert response.json() == {"status": "logged_out"}

    cookies = SimpleCookie()
    cookies.load(response.headers.get("set-cookie", ""))
    morsel = cookies.get(settings.cookie_name)
    assert morsel is not None
    assert morsel.value == ""

    with SessionLocal() as session:
        persisted = (
            session.query(UserSession)
            .filter(UserSession.session_token_hash == AuthService.hash_token(account.token))
            .one()
        )
        assert persisted.revoked_at is not None

    assert client.get("/auth/profile", headers=account.headers).status_code == 401


@pytest.mark.integration
def test_change_password_invalidates_old_sessions(client, make_user):
    account = make_user()
    response = client.post(
        "/auth/change-password",
        headers=account.headers,
        json={"current_password": account.password, "new_password": "brand-new-secret"},
    )
    assert response.status_code == 200
    new_token = response.json()["token"]

    assert client.get("/auth/profile", headers=account.headers).status_code == 401
    assert client.get("/auth/profile", headers={"Authorization": f"Bearer {new_token}"}).status_code == 200

    with SessionLocal() as session:
        user = session.query(User).filter(User.username == account.username).one()
        assert user.token_version == 1


@pytest.mark.integration
def test_change_password_requires_current_password(client, make_user):
    account = make_user()
    response = client.post(
        "/auth/change-password",
        headers=account.headers,
        json={"current_password": "wrong-password", "new_password": "brand-new-secret"},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Current password is incorrect"


@pytest.mark.integration
def test_profile_update_rejects_taken_email(client, make_user):
    first = make_user()
    second = make_user()
    response = client.patch("/auth/profile", headers=second.headers, json={"email": first.email})
    assert response.status_code == 409
    assert response.json()["detail"] == "Email already in use"

    response = client.patch("/auth/profile", headers=second.headers, json={"full_name": "Keza Mugisha"})
    assert response.status_code == 200
    assert response.json()["full_name"] == "Keza Mugisha"


@pytest.mark.integration
def test_users_admin_routes_require_admin(client, make_user):
    manager = make_user(UserRole.MANAGER)
    assert client.get("/users", headers=manager.headers).status_code == 403
    assert client.get("/users/search", params={"q": "a"}, headers=manager.headers).status_code == 200
