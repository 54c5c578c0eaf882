# Overview: Flask API routes for typed system parameters; parses input and returns JSON responses.

from flask import Blueprint, request

from ..decorators import require_auth, require_role
from ..errors import ValidationError
from ..models.auth import ROLE_ADMIN
from ..responses import ok, ok_list
from ..services import parameter_service

parameters_bp = Blueprint("parameters", __name__, url_prefix="/api/parameters")


@parameters_bp.get("")
@require_auth
def list_parameters_route():
    """All parameters, plus a {key: decoded value} map under `parameters`."""
    params = parameter_service.list_parameters()
    return ok_list([p.to_dict() for p in params], parameters=parameter_service.as_map(params))


@parameters_bp.get("/category/<category>")
@require_auth
def list_parameters_by_category_route(category: str):
    params = parameter_service.list_parameters(category=category)
    return ok_list([p.to_dict() for p in params], parameters=parameter_service.as_map(params))


@parameters_bp.get("/<key>")
@require_auth
def get_parameter_route(key: str):
    return ok(parameter_service.get_parameter(key).to_dict())


@parameters_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_parameter_route():
    payload = request.get_json(silent=True) or {}
    param = parameter_service.create_parameter(
        payload.get("param_key"),
        payload.get("param_value"),
        param_type=payload.get("param_type") or "string",
        description=payload.get("description"),
        category=payload.get("category"),
        editable=bool(payload.get("editable", True)),
    )
    return ok(param.to_dict(), 201)


@parameters_bp.put("/<key>")
@require_auth
@require_role(ROLE_ADMIN)
def update_parameter_route(key: str):
    payload = request.get_json(silent=True) or {}
    if "param_value" not in payload:
        raise ValidationError("Please provide param_value")
    param = parameter_service.update_parameter(key, payload.get("param_value"), payload.get("description"))
    return ok(param.to_dict())


@parameters_bp.delete("/<key>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_parameter_route(key: str):
    parameter_service.delete_parameter(key)
    return ok(None, message="Parameter deleted successfully")
