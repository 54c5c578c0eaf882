# Overview: Flask API routes for workshop clients; parses input and returns JSON responses.

from flask import Blueprint, request

from ..decorators import require_auth, require_role, ensure_client_access
from ..models.auth import ROLE_ADMIN, ROLE_MECHANIC, ROLE_RECEPTIONIST
from ..responses import ok, ok_list
from ..services import customer_service

clients_bp = Blueprint("clients", __name__, url_prefix="/api/clients")


@clients_bp.get("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST, ROLE_MECHANIC)
def list_clients_route():
    clients = customer_service.list_clients(search=request.args.get("search"))
    return ok_list([c.to_dict() for c in clients])


@clients_bp.get("/<int:client_id>")
@require_auth
def get_client_route(client_id: int):
    """Staff see any client; a client user only sees itself. Includes vehicles."""
    ensure_client_access(client_id)
    client = customer_service.get_client(client_id)
    data = client.to_dict()
    data["vehicles"] = [v.to_dict() for v in client.vehicles]
    return ok(data)


@clients_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def create_client_route():
    payload = request.get_json(silent=True) or {}
    client = customer_service.create_client(payload)
    return ok(client.to_dict(), 201)


@clients_bp.put("/<int:client_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST, ROLE_MECHANIC)
def update_client_route(client_id: int):
    payload = request.get_json(silent=True) or {}
    client = customer_service.update_client(client_id, payload)
    return ok(client.to_dict())


@clients_bp.delete("/<int:client_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_client_route(client_id: int):
    customer_service.delete_client(client_id)
    return ok(None, message="Client deleted successfully")
