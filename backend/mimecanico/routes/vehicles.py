# Overview: Flask API routes for vehicles; parses input and returns JSON responses.

from flask import Blueprint, request

from ..decorators import require_auth, require_role, ensure_client_access, own_client_id, is_client_user
from ..errors import ValidationError
from ..models import Vehicle
from ..models.auth import ROLE_ADMIN, ROLE_RECEPTIONIST
from ..responses import ok, ok_list
from ..services import customer_service
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_vehicle, coerce_int

VEHICLE_POLICY = ModelValidationPolicy(
    writable_fields={"client_id", "plate_number", "brand", "model", "year", "vin", "color", "mileage", "notes"},
    required_on_create={"plate_number", "brand", "model", "year"},
)

vehicles_bp = Blueprint("vehicles", __name__, url_prefix="/api/vehicles")


@vehicles_bp.get("")
@require_auth
def list_vehicles_route():
    """
    Query params:
    - client_id: int (optional, ignored for client users who only see their own)
    - search: str (optional)
    """
    client_id = request.args.get("client_id", type=int)
    if is_client_user():
        client_id = own_client_id()
    vehicles = customer_service.list_vehicles(client_id=client_id, search=request.args.get("search"))
    return ok_list([v.to_dict() for v in vehicles])


@vehicles_bp.get("/<int:vehicle_id>")
@require_auth
def get_vehicle_route(vehicle_id: int):
    vehicle = customer_service.get_vehicle(vehicle_id)
    ensure_client_access(vehicle.client_id)
    return ok(vehicle.to_dict())


@vehicles_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def create_vehicle_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Vehicle, payload=payload, policy=VEHICLE_POLICY, partial=False)
    enforce_rules_vehicle(patch)
    vehicle = customer_service.create_vehicle(patch)
    return ok(vehicle.to_dict(), 201)


@vehicles_bp.put("/<int:vehicle_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def update_vehicle_route(vehicle_id: int):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Vehicle, payload=payload, policy=VEHICLE_POLICY, partial=True)
    enforce_rules_vehicle(patch)
    vehicle = customer_service.update_vehicle(vehicle_id, patch)
    return ok(vehicle.to_dict())


@vehicles_bp.put("/<int:vehicle_id>/associate")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def associate_vehicle_route(vehicle_id: int):
    payload = request.get_json(silent=True) or {}
    if payload.get("client_id") is None:
        raise ValidationError("Please provide client_id")
    client_id = coerce_int(payload["client_id"], "client_id")
    vehicle = customer_service.associate_vehicle(vehicle_id, client_id)
    return ok(vehicle.to_dict())


@vehicles_bp.delete("/<int:vehicle_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_vehicle_route(vehicle_id: int):
    customer_service.delete_vehicle(vehicle_id)
    return ok(None, message="Vehicle deleted successfully")
