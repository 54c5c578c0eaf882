# Overview: Flask API routes for budgets (quotes); parses input and returns JSON responses.

from flask import Blueprint, request, g

from ..decorators import require_auth, require_role, ensure_client_access, is_client_user, own_client_id
from ..models import Budget
from ..models.auth import ROLE_ADMIN, ROLE_RECEPTIONIST
from ..responses import ok, ok_list
from ..services import budget_service, document_service
from ..validation import ModelValidationPolicy, validate_payload

budgets_bp = Blueprint("budgets", __name__, url_prefix="/api/budgets")

BUDGET_UPDATE_POLICY = ModelValidationPolicy(writable_fields=set(budget_service.UPDATABLE_FIELDS))


@budgets_bp.get("")
@require_auth
def list_budgets_route():
    client_id = request.args.get("client_id", type=int)
    if is_client_user():
        client_id = own_client_id()
    budgets = budget_service.list_budgets(status=request.args.get("status"), client_id=client_id)
    return ok_list([b.to_dict() for b in budgets])


@budgets_bp.get("/<int:budget_id>")
@require_auth
def get_budget_route(budget_id: int):
    budget = budget_service.get_budget(budget_id)
    ensure_client_access(budget.client_id)
    return ok(budget.to_dict(include_lines=True))


@budgets_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def create_budget_route():
    payload = request.get_json(silent=True) or {}
    header = {k: v for k, v in payload.items() if k not in ("items", "services")}
    budget = document_service.create_document(
        document_service.KIND_BUDGET,
        header,
        items=payload.get("items"),
        services=payload.get("services"),
        actor_id=g.current_user.id,
    )
    return ok(budget.to_dict(include_lines=True), 201)


@budgets_bp.put("/<int:budget_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def update_budget_route(budget_id: int):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Budget, payload=payload, policy=BUDGET_UPDATE_POLICY, partial=True)
    budget = budget_service.update_budget(budget_id, patch)
    return ok(budget.to_dict(include_lines=True))


@budgets_bp.delete("/<int:budget_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_budget_route(budget_id: int):
    budget_service.delete_budget(budget_id)
    return ok(None, message="Budget deleted successfully")
