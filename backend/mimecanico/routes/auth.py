# Overview: Flask API routes for authentication; parses input and returns JSON responses.

"""
Authentication routes.

- POST /api/auth/register   public sign-up, always role "client"
- POST /api/auth/login      username or email + password -> token pair
- POST /api/auth/refresh    refresh token -> new access token
- POST /api/auth/logout     revoke the presented access token
- GET  /api/auth/me         current user (with client record for clients)
- PUT  /api/auth/password   change own password
"""

from flask import Blueprint, request, g, current_app

from ..decorators import require_auth
from ..errors import AuthError, ValidationError
from ..models.auth import ROLE_CLIENT
from ..responses import ok, fail
from ..services import auth_service, token_service

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _user_payload(user) -> dict:
    data = user.to_dict()
    if user.role == ROLE_CLIENT and user.client is not None:
        data["client"] = user.client.to_dict()
    return data


@auth_bp.post("/register")
def register_route():
    """
    Public registration.

    The role in the payload is ignored: self-registered accounts are clients.
    Staff accounts are created by an admin through /api/users.
    """
    payload = request.get_json(silent=True) or {}

    user = auth_service.create_user(
        payload.get("username"),
        payload.get("email"),
        payload.get("password"),
        payload.get("first_name"),
        payload.get("last_name"),
        phone=payload.get("phone"),
        role=ROLE_CLIENT,
    )
    tokens = token_service.issue_tokens(user)
    return ok(_user_payload(user), 201, **tokens)


@auth_bp.post("/login")
def login_route():
    payload = request.get_json(silent=True) or {}
    username = payload.get("username") or payload.get("email")
    password = payload.get("password")

    if not username or not password:
        raise ValidationError("Please provide username and password")

    try:
        user = auth_service.authenticate(username, password)
    except Exception:
        current_app.logger.exception("Failed to login user")
        return fail("Server error", 500)

    if user is None:
        current_app.logger.info("Failed login for %s", username)
        return fail("Invalid credentials", 401)

    tokens = token_service.issue_tokens(user)
    return ok(_user_payload(user), **tokens)


@auth_bp.post("/refresh")
def refresh_route():
    payload = request.get_json(silent=True) or {}
    refresh_token = payload.get("refresh_token")
    if not refresh_token:
        raise ValidationError("Please provide refresh_token")

    tokens = token_service.refresh(refresh_token)
    return ok(None, **tokens)


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the access token used for this request (and a refresh token, if sent)."""
    token_service.revoke(g.token_claims, user_id=g.current_user.id)

    payload = request.get_json(silent=True) or {}
    refresh_token = payload.get("refresh_token")
    if refresh_token:
        try:
            claims = token_service.decode_token(refresh_token)
        except AuthError:
            claims = None
        if claims and claims.get("sub") == str(g.current_user.id):
            token_service.revoke(claims, user_id=g.current_user.id)

    return ok(None, message="Logout successful")


@auth_bp.get("/me")
@require_auth
def me_route():
    return ok(_user_payload(g.current_user))


@auth_bp.put("/password")
@require_auth
def change_password_route():
    payload = request.get_json(silent=True) or {}
    current_password = payload.get("current_password")
    new_password = payload.get("new_password")
    if not current_password or not new_password:
        raise ValidationError("Please provide current_password and new_password")

    auth_service.change_password(g.current_user.id, current_password, new_password)
    return ok(None, message="Password updated")
