# Overview: Flask API routes for inventory items, categories, labor services and the stock ledger.

"""
Inventory routes.

SECURITY: all routes require authentication.
- Reads are open to every staff role
- Item create/update and stock movements: admin, receptionist
- Deletes, categories and the labor catalog: admin

Stock never changes by direct write. Creating an item with stock, editing
stock_quantity and POST /<id>/stock all go through the ledger.
"""
from flask import Blueprint, request, g

from ..decorators import require_auth, require_role
from ..errors import ValidationError
from ..models import InventoryCategory, InventoryItem, LaborService
from ..models.auth import ROLE_ADMIN, ROLE_MECHANIC, ROLE_RECEPTIONIST
from ..responses import ok, ok_list
from ..services import inventory_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    coerce_int,
    enforce_rules_inventory_item,
    enforce_rules_labor_service,
)

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

STAFF = (ROLE_ADMIN, ROLE_RECEPTIONIST, ROLE_MECHANIC)

ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "category_id",
        "code",
        "name",
        "description",
        "unit_price_cents",
        "cost_price_cents",
        "stock_quantity",
        "min_stock_level",
        "unit",
        "is_active",
    },
    required_on_create={"code", "name", "unit_price_cents"},
)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description"},
    required_on_create={"name"},
)

SERVICE_POLICY = ModelValidationPolicy(
    writable_fields={"code", "name", "description", "default_price_cents", "estimated_hours", "is_active"},
    required_on_create={"code", "name", "default_price_cents"},
)


def _parse_bool(value):
    if value is None:
        return None
    return value.lower() in ("1", "true", "yes")


# =============================================================================
# Categories and labor catalog (registered before /<id> routes)
# =============================================================================

@inventory_bp.get("/categories")
@require_auth
@require_role(*STAFF)
def list_categories_route():
    return ok_list([c.to_dict() for c in inventory_service.list_categories()])


@inventory_bp.post("/categories")
@require_auth
@require_role(ROLE_ADMIN)
def create_category_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=InventoryCategory, payload=payload, policy=CATEGORY_POLICY, partial=False)
    category = inventory_service.create_category(patch)
    return ok(category.to_dict(), 201)


@inventory_bp.get("/services")
@require_auth
@require_role(*STAFF)
def list_services_route():
    services = inventory_service.list_services(active=_parse_bool(request.args.get("active")))
    return ok_list([s.to_dict() for s in services])


@inventory_bp.post("/services")
@require_auth
@require_role(ROLE_ADMIN)
def create_service_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=LaborService, payload=payload, policy=SERVICE_POLICY, partial=False)
    enforce_rules_labor_service(patch)
    service = inventory_service.create_service(patch)
    return ok(service.to_dict(), 201)


# =============================================================================
# Items
# =============================================================================

@inventory_bp.get("")
@require_auth
@require_role(*STAFF)
def list_items_route():
    """
    Query params:
    - category_id: int (optional)
    - active: bool (optional)
    - low_stock: bool (optional, stock at or below min_stock_level)
    - search: str (optional, matches code or name)
    """
    items = inventory_service.list_items(
        category_id=request.args.get("category_id", type=int),
        active=_parse_bool(request.args.get("active")),
        low_stock=bool(_parse_bool(request.args.get("low_stock"))),
        search=request.args.get("search"),
    )
    return ok_list([i.to_dict() for i in items])


@inventory_bp.get("/<int:item_id>")
@require_auth
@require_role(*STAFF)
def get_item_route(item_id: int):
    return ok(inventory_service.get_item(item_id).to_dict())


@inventory_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def create_item_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=InventoryItem, payload=payload, policy=ITEM_POLICY, partial=False)
    enforce_rules_inventory_item(patch)
    item = inventory_service.create_item(patch, actor_id=g.current_user.id)
    return ok(item.to_dict(), 201)


@inventory_bp.put("/<int:item_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def update_item_route(item_id: int):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=InventoryItem, payload=payload, policy=ITEM_POLICY, partial=True)
    enforce_rules_inventory_item(patch)
    item = inventory_service.update_item(item_id, patch, actor_id=g.current_user.id)
    return ok(item.to_dict())


@inventory_bp.delete("/<int:item_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_item_route(item_id: int):
    inventory_service.delete_item(item_id)
    return ok(None, message="Inventory item deleted successfully")


# =============================================================================
# Stock ledger
# =============================================================================

@inventory_bp.post("/<int:item_id>/stock")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def adjust_stock_route(item_id: int):
    """
    Record a stock movement.

    Body:
    - transaction_type: "purchase" (positive delta) or "adjustment"
    - quantity_delta: non-zero int
    - notes: str (optional)
    """
    payload = request.get_json(silent=True) or {}
    if payload.get("quantity_delta") is None:
        raise ValidationError("Please provide quantity_delta")

    tx = inventory_service.adjust_stock(
        item_id,
        transaction_type=payload.get("transaction_type") or "adjustment",
        quantity_delta=coerce_int(payload["quantity_delta"], "quantity_delta"),
        notes=payload.get("notes"),
        actor_id=g.current_user.id,
    )
    item = inventory_service.get_item(item_id)
    return ok({"transaction": tx.to_dict(), "item": item.to_dict()}, 201)


@inventory_bp.get("/<int:item_id>/transactions")
@require_auth
@require_role(*STAFF)
def list_transactions_route(item_id: int):
    limit = request.args.get("limit", default=200, type=int)
    if limit <= 0:
        raise ValidationError("limit must be positive")
    txs, summary = inventory_service.list_transactions(item_id, limit=min(limit, 1000))
    return ok_list([t.to_dict() for t in txs], summary=summary)
