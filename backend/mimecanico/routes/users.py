# Overview: Flask API routes for user administration; parses input and returns JSON responses.

from flask import Blueprint, request, g

from ..decorators import require_auth, require_role
from ..errors import ForbiddenError
from ..models.auth import ROLE_ADMIN, ROLE_RECEPTIONIST, STAFF_ROLES
from ..responses import ok, ok_list
from ..services import auth_service, user_service
from ..services.customer_service import get_client_for_user

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _parse_bool(value):
    if value is None:
        return None
    return value.lower() in ("1", "true", "yes")


@users_bp.get("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def list_users_route():
    """
    Query params:
    - role: str (optional)
    - active: bool (optional)
    """
    users = user_service.list_users(
        role=request.args.get("role"),
        active=_parse_bool(request.args.get("active")),
    )
    return ok_list([u.to_dict() for u in users])


@users_bp.get("/<int:user_id>")
@require_auth
def get_user_route(user_id: int):
    if g.current_user.id != user_id and g.current_user.role not in STAFF_ROLES:
        raise ForbiddenError("Not authorized to access this resource")
    user = user_service.get_user(user_id)
    return ok(user.to_dict())


@users_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_user_route():
    payload = request.get_json(silent=True) or {}
    user = auth_service.create_user(
        payload.get("username"),
        payload.get("email"),
        payload.get("password"),
        payload.get("first_name"),
        payload.get("last_name"),
        phone=payload.get("phone"),
        role=payload.get("role") or "client",
    )
    data = user.to_dict()
    client = get_client_for_user(user.id)
    if client is not None:
        data["client_id"] = client.id
    return ok(data, 201)


@users_bp.put("/<int:user_id>")
@require_auth
def update_user_route(user_id: int):
    is_admin = g.current_user.role == ROLE_ADMIN
    if not is_admin and g.current_user.id != user_id:
        raise ForbiddenError("Not authorized to update this user")

    payload = request.get_json(silent=True) or {}
    user = user_service.update_user(user_id, payload, as_admin=is_admin)
    return ok(user.to_dict())


@users_bp.delete("/<int:user_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_user_route(user_id: int):
    user_service.delete_user(user_id, acting_user_id=g.current_user.id)
    return ok(None, message="User deleted successfully")
