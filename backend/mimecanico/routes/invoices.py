# Overview: Flask API routes for invoices and payments; parses input and returns JSON responses.

"""
Invoice routes.

- POST /api/invoices                            manual invoice (items required)
- POST /api/invoices/from-work-order/<id>       convert a work order
- POST /api/invoices/<id>/payments              record a payment

Money is always integer cents on the wire.
"""
from flask import Blueprint, request, g, current_app

from ..decorators import require_auth, require_role, ensure_client_access, is_client_user, own_client_id
from ..errors import ValidationError, WorkshopError
from ..models import Invoice
from ..models.auth import ROLE_ADMIN, ROLE_RECEPTIONIST
from ..responses import ok, ok_list, fail
from ..services import document_service, invoice_service
from ..time_utils import parse_iso_date
from ..validation import ModelValidationPolicy, validate_payload, coerce_int

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")

INVOICE_UPDATE_POLICY = ModelValidationPolicy(writable_fields=set(invoice_service.UPDATABLE_FIELDS))


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    client_id = request.args.get("client_id", type=int)
    if is_client_user():
        client_id = own_client_id()
    invoices = invoice_service.list_invoices(status=request.args.get("status"), client_id=client_id)
    return ok_list([i.to_dict() for i in invoices])


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    invoice = invoice_service.get_invoice(invoice_id)
    ensure_client_access(invoice.client_id)
    return ok(invoice.to_dict(include_lines=True))


@invoices_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def create_invoice_route():
    """
    Body: client_id, issue_date?, due_date?, discount_amount_cents?, notes?,
    items: [{description, quantity, unit_price_cents}] (at least one),
    services: [{description?, service_id?, hours, rate_cents?}] (optional)
    """
    payload = request.get_json(silent=True) or {}
    header = {k: v for k, v in payload.items() if k not in ("items", "services")}
    invoice = document_service.create_document(
        document_service.KIND_INVOICE,
        header,
        items=payload.get("items"),
        services=payload.get("services"),
        actor_id=g.current_user.id,
    )
    return ok(invoice.to_dict(include_lines=True), 201)


@invoices_bp.post("/from-work-order/<int:work_order_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def create_invoice_from_work_order_route(work_order_id: int):
    try:
        invoice = document_service.create_invoice_from_work_order(work_order_id, actor_id=g.current_user.id)
    except WorkshopError:
        raise
    except Exception:
        current_app.logger.exception("Failed to invoice work order %s", work_order_id)
        return fail("Server error", 500)

    return ok(invoice.to_dict(include_lines=True), 201)


@invoices_bp.put("/<int:invoice_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def update_invoice_route(invoice_id: int):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Invoice, payload=payload, policy=INVOICE_UPDATE_POLICY, partial=True)
    invoice = invoice_service.update_invoice(invoice_id, patch, actor_id=g.current_user.id)
    return ok(invoice.to_dict(include_lines=True))


@invoices_bp.post("/<int:invoice_id>/payments")
@require_auth
@require_role(ROLE_ADMIN, ROLE_RECEPTIONIST)
def add_payment_route(invoice_id: int):
    """
    Body:
    - amount_cents: positive int
    - payment_method: cash | card | transfer | check | other
    - payment_date: YYYY-MM-DD (optional, defaults to today)
    - reference_number, notes (optional)
    """
    payload = request.get_json(silent=True) or {}
    if payload.get("amount_cents") is None or not payload.get("payment_method"):
        raise ValidationError("Please provide amount_cents and payment_method")

    try:
        payment_date = parse_iso_date(payload.get("payment_date"))
    except ValueError:
        raise ValidationError("payment_date must be a YYYY-MM-DD date")

    invoice = invoice_service.add_payment(
        invoice_id,
        amount_cents=coerce_int(payload["amount_cents"], "amount_cents"),
        payment_method=payload["payment_method"],
        payment_date=payment_date,
        reference_number=payload.get("reference_number"),
        notes=payload.get("notes"),
        actor_id=g.current_user.id,
    )
    return ok(invoice.to_dict(include_lines=True), 201)


@invoices_bp.delete("/<int:invoice_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_invoice_route(invoice_id: int):
    invoice_service.delete_invoice(invoice_id)
    return ok(None, message="Invoice deleted successfully")
