# Overview: Flask API routes for work orders; parses input and returns JSON responses.

"""
Work order routes.

Creation goes through the document writer: the order, its part and labor
lines, its number and the stock it consumes are committed together or not
at all.
"""
from flask import Blueprint, request, g, current_app

from ..decorators import require_auth, require_role, ensure_client_access, is_client_user, own_client_id
from ..errors import WorkshopError
from ..models import WorkOrder
from ..models.auth import ROLE_ADMIN, ROLE_MECHANIC, ROLE_RECEPTIONIST
from ..responses import ok, ok_list, fail
from ..services import document_service, work_order_service
from ..validation import ModelValidationPolicy, validate_payload

work_orders_bp = Blueprint("work_orders", __name__, url_prefix="/api/work-orders")

WORK_ORDER_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=set(work_order_service.UPDATABLE_FIELDS),
)


@work_orders_bp.get("")
@require_auth
def list_work_orders_route():
    """
    Query params:
    - status: str (optional)
    - client_id: int (optional)
    - mechanic_id: int (optional)

    Clients only see their own orders; mechanics only see orders assigned to them.
    """
    client_id = request.args.get("client_id", type=int)
    mechanic_id = request.args.get("mechanic_id", type=int)
    if is_client_user():
        client_id = own_client_id()
    if g.current_user.role == ROLE_MECHANIC:
        mechanic_id = g.current_user.id

    orders = work_order_service.list_work_orders(
        status=request.args.get("status"),
        client_id=client_id,
        mechanic_id=mechanic_id,
    )
    return ok_list([wo.to_dict() for wo in orders])


@work_orders_bp.get("/<int:work_order_id>")
@require_auth
def get_work_order_route(work_order_id: int):
    wo = work_order_service.get_work_order(work_order_id)
    ensure_client_access(wo.client_id)
    return ok(wo.to_dict(include_lines=True))


@work_orders_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def create_work_order_route():
    """
    Body: client_id, vehicle_id, problem_description, priority,
    assigned_mechanic_id, estimated_completion_date, mileage_in, notes,
    items: [{inventory_item_id?, description?, quantity, unit_price_cents?}],
    services: [{service_id?, description?, hours, rate_cents?}]
    """
    payload = request.get_json(silent=True) or {}
    header = {k: v for k, v in payload.items() if k not in ("items", "services")}

    try:
        wo = document_service.create_document(
            document_service.KIND_WORK_ORDER,
            header,
            items=payload.get("items"),
            services=payload.get("services"),
            actor_id=g.current_user.id,
        )
    except WorkshopError:
        raise
    except Exception:
        current_app.logger.exception("Failed to create work order")
        return fail("Server error", 500)

    return ok(wo.to_dict(include_lines=True), 201)


@work_orders_bp.put("/<int:work_order_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST, ROLE_MECHANIC)
def update_work_order_route(work_order_id: int):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=WorkOrder, payload=payload, policy=WORK_ORDER_UPDATE_POLICY, partial=True)
    wo = work_order_service.update_work_order(work_order_id, patch)
    return ok(wo.to_dict(include_lines=True))


@work_orders_bp.delete("/<int:work_order_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_work_order_route(work_order_id: int):
    work_order_service.delete_work_order(work_order_id, actor_id=g.current_user.id)
    return ok(None, message="Work order deleted successfully")
