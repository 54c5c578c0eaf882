"""
Authentication, tokens and user administration.

Verifies:
- Registration always creates a client (with its Client row)
- Login by username or email; wrong password and inactive users are rejected
- Access/refresh token types are not interchangeable
- Logout revokes the presented token
- Role checks on user administration
"""

from datetime import timedelta

import pytest

from mimecanico.errors import AuthError, ConflictError, PasswordValidationError
from mimecanico.extensions import db
from mimecanico.models import Client, RevokedToken, User
from mimecanico.services import auth_service, token_service
from mimecanico.time_utils import utcnow

from conftest import PASSWORD, auth_headers, get_auth_token, token_for


def _register(client, **overrides):
    payload = {
        "username": "nuevo",
        "email": "nuevo@taller.test",
        "password": PASSWORD,
        "first_name": "Nuevo",
        "last_name": "Cliente",
        "phone": "555-0101",
    }
    payload.update(overrides)
    return client.post("/api/auth/register", json=payload)


# =============================================================================
# Services
# =============================================================================


@pytest.mark.parametrize("password", ["short1!", "alllowercase1!", "ALLUPPERCASE1!", "NoDigits!!", "NoSpecial123"])
def test_weak_passwords_rejected(db_session, password):
    with pytest.raises(PasswordValidationError):
        auth_service.create_user("weak", "weak@taller.test", password, "Weak", "User")
    assert User.query.count() == 0


def test_password_is_hashed(admin_user):
    assert admin_user.password_hash != PASSWORD
    assert auth_service.verify_password(PASSWORD, admin_user.password_hash)
    assert not auth_service.verify_password("Wrong123!", admin_user.password_hash)
    assert not auth_service.verify_password(PASSWORD, "not-a-hash")


def test_duplicate_username_or_email(admin_user):
    with pytest.raises(ConflictError):
        auth_service.create_user("admin", "other@taller.test", PASSWORD, "A", "B")
    with pytest.raises(ConflictError):
        auth_service.create_user("other", "ADMIN@taller.test", PASSWORD, "A", "B")


def test_authenticate_by_username_or_email(admin_user):
    assert auth_service.authenticate("admin", PASSWORD).id == admin_user.id
    assert auth_service.authenticate("Admin@Taller.test", PASSWORD).id == admin_user.id
    assert auth_service.authenticate("admin", "Wrong123!") is None
    assert auth_service.authenticate("nobody", PASSWORD) is None
    assert db.session.get(User, admin_user.id).last_login_at is not None


def test_inactive_user_cannot_authenticate(admin_user):
    admin_user.is_active = False
    db.session.commit()
    assert auth_service.authenticate("admin", PASSWORD) is None


def test_token_claims(admin_user):
    tokens = token_service.issue_tokens(admin_user)
    claims = token_service.decode_token(tokens["token"])
    assert claims["sub"] == str(admin_user.id)
    assert claims["role"] == "admin"
    assert claims["type"] == "access"
    assert tokens["token_type"] == "Bearer"
    assert tokens["expires_in"] > 0


def test_expired_token(app, admin_user):
    original = app.config["JWT_ACCESS_EXPIRES"]
    app.config["JWT_ACCESS_EXPIRES"] = timedelta(seconds=-10)
    try:
        token = token_service.issue_tokens(admin_user)["token"]
    finally:
        app.config["JWT_ACCESS_EXPIRES"] = original

    with pytest.raises(AuthError, match="expired"):
        token_service.validate_token(token)


def test_purge_expired_revocations(admin_user):
    claims = token_service.decode_token(token_for(admin_user))
    token_service.revoke(claims, user_id=admin_user.id)
    token_service.revoke(claims, user_id=admin_user.id)
    assert RevokedToken.query.count() == 1

    assert token_service.purge_expired_revocations(utcnow()) == 0
    assert token_service.purge_expired_revocations(utcnow() + timedelta(days=30)) == 1
    assert RevokedToken.query.count() == 0


# =============================================================================
# HTTP: auth
# =============================================================================


class TestAuthRoutes:
    def test_register_creates_client(self, client, db_session):
        resp = _register(client, role="admin")
        assert resp.status_code == 201, resp.json
        body = resp.json
        assert body["data"]["role"] == "client"
        assert body["data"]["client"]["user_id"] == body["data"]["id"]
        assert body["token"]
        assert body["refresh_token"]
        assert Client.query.filter_by(user_id=body["data"]["id"]).count() == 1

    def test_register_validation(self, client, db_session):
        assert _register(client, password="weak").status_code == 400
        assert _register(client, email="not-an-email").status_code == 400
        assert _register(client, first_name="").status_code == 400
        assert _register(client).status_code == 201
        assert _register(client).status_code == 409

    def test_login(self, client, admin_user):
        resp = client.post("/api/auth/login", json={"username": "admin", "password": PASSWORD})
        assert resp.status_code == 200
        assert resp.json["data"]["username"] == "admin"
        assert "password_hash" not in resp.json["data"]

        by_email = client.post("/api/auth/login", json={"email": "admin@taller.test", "password": PASSWORD})
        assert by_email.status_code == 200

    def test_login_failures(self, client, admin_user):
        resp = client.post("/api/auth/login", json={"username": "admin", "password": "Wrong123!"})
        assert resp.status_code == 401
        assert resp.json == {"success": False, "message": "Invalid credentials"}
        assert client.post("/api/auth/login", json={"username": "admin"}).status_code == 400

    def test_me_requires_token(self, client, db_session):
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401
        assert resp.json["success"] is False

        resp = client.get("/api/auth/me", headers=auth_headers("garbage"))
        assert resp.status_code == 401
        assert resp.json["message"] == "Invalid token"

    def test_me_for_client_includes_client_record(self, client, client_headers, workshop_client):
        resp = client.get("/api/auth/me", headers=client_headers)
        assert resp.status_code == 200
        assert resp.json["data"]["client"]["id"] == workshop_client.id

    def test_refresh(self, client, admin_user):
        tokens = token_service.issue_tokens(admin_user)

        resp = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 200
        new_access = resp.json["token"]
        assert client.get("/api/auth/me", headers=auth_headers(new_access)).status_code == 200

        # Token types are not interchangeable
        assert client.get("/api/auth/me", headers=auth_headers(tokens["refresh_token"])).status_code == 401
        assert client.post("/api/auth/refresh", json={"refresh_token": tokens["token"]}).status_code == 401

    def test_logout_revokes_tokens(self, client, admin_user):
        tokens = token_service.issue_tokens(admin_user)
        headers = auth_headers(tokens["token"])

        resp = client.post("/api/auth/logout", json={"refresh_token": tokens["refresh_token"]}, headers=headers)
        assert resp.status_code == 200

        resp = client.get("/api/auth/me", headers=headers)
        assert resp.status_code == 401
        assert resp.json["message"] == "Token has been revoked"
        assert client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]}).status_code == 401

    def test_deactivated_user_token_rejected(self, client, admin_user, mechanic_user):
        headers = auth_headers(token_for(mechanic_user))
        mechanic_user.is_active = False
        db.session.commit()
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_change_password(self, client, mechanic_user):
        headers = auth_headers(token_for(mechanic_user))
        resp = client.put(
            "/api/auth/password",
            json={"current_password": "Wrong123!", "new_password": "Newpass123!"},
            headers=headers,
        )
        assert resp.status_code == 401

        resp = client.put(
            "/api/auth/password",
            json={"current_password": PASSWORD, "new_password": "Newpass123!"},
            headers=headers,
        )
        assert resp.status_code == 200
        assert get_auth_token(client, "mecanico") is None
        assert get_auth_token(client, "mecanico", "Newpass123!") is not None


# =============================================================================
# HTTP: users
# =============================================================================


class TestUserRoutes:
    def test_admin_creates_staff(self, client, admin_headers):
        resp = client.post(
            "/api/users",
            json={
                "username": "taller2",
                "email": "taller2@taller.test",
                "password": PASSWORD,
                "first_name": "Ana",
                "last_name": "Perez",
                "role": "mechanic",
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201, resp.json
        assert resp.json["data"]["role"] == "mechanic"
        assert "client_id" not in resp.json["data"]

    def test_admin_creates_client_user(self, client, admin_headers):
        resp = client.post(
            "/api/users",
            json={
                "username": "cli2",
                "email": "cli2@taller.test",
                "password": PASSWORD,
                "first_name": "Luis",
                "last_name": "Gomez",
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.json["data"]["role"] == "client"
        assert resp.json["data"]["client_id"] is not None

    def test_only_admin_creates_users(self, client, receptionist_headers):
        resp = client.post("/api/users", json={"username": "x"}, headers=receptionist_headers)
        assert resp.status_code == 403

    def test_list_users(self, client, admin_headers, receptionist_headers, mechanic_headers, client_user):
        resp = client.get("/api/users?role=client", headers=receptionist_headers)
        assert resp.status_code == 200
        assert [u["username"] for u in resp.json["data"]] == ["cliente"]
        assert client.get("/api/users", headers=admin_headers).json["count"] == 4
        assert client.get("/api/users", headers=mechanic_headers).status_code == 403

    def test_get_user_self_or_staff(self, client, client_user, mechanic_user, client_headers, mechanic_headers):
        assert client.get(f"/api/users/{client_user.id}", headers=client_headers).status_code == 200
        assert client.get(f"/api/users/{mechanic_user.id}", headers=client_headers).status_code == 403
        assert client.get(f"/api/users/{client_user.id}", headers=mechanic_headers).status_code == 200
        assert client.get("/api/users/9999", headers=mechanic_headers).status_code == 404

    def test_self_update_cannot_change_role(self, client, client_user, client_headers):
        resp = client.put(f"/api/users/{client_user.id}", json={"phone": "555-0199"}, headers=client_headers)
        assert resp.status_code == 200
        assert resp.json["data"]["phone"] == "555-0199"

        resp = client.put(f"/api/users/{client_user.id}", json={"role": "admin"}, headers=client_headers)
        assert resp.status_code == 400
        assert db.session.get(User, client_user.id).role == "client"

    def test_admin_deactivates_user(self, client, admin_headers, mechanic_user):
        resp = client.put(f"/api/users/{mechanic_user.id}", json={"is_active": False}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["data"]["is_active"] is False

    def test_delete_rules(self, client, admin_user, admin_headers, mechanic_user, client_user):
        mechanic_id = mechanic_user.id
        assert client.delete(f"/api/users/{admin_user.id}", headers=admin_headers).status_code == 409
        assert client.delete(f"/api/users/{client_user.id}", headers=admin_headers).status_code == 409
        assert client.delete(f"/api/users/{mechanic_id}", headers=admin_headers).status_code == 200
        assert db.session.get(User, mechanic_id) is None


# =============================================================================
# HTTP: system
# =============================================================================


class TestSystemRoutes:
    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"
        assert resp.json["checks"]["database"]["status"] == "healthy"
        assert resp.json["checks"]["token_service"]["status"] == "healthy"

    def test_index(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json["endpoints"]["work_orders"] == "/api/work-orders"

    def test_unknown_route(self, client):
        resp = client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.json == {"success": False, "message": "Route not found"}

    def test_method_not_allowed(self, client):
        resp = client.delete("/api/health")
        assert resp.status_code == 405
        assert resp.json["success"] is False
