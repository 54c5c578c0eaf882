# Overview: Document numbering and the transactional writer for work orders, budgets and invoices.

"""
Transactional document writer.

Every document (work order, budget, invoice) is created the same way, inside
ONE database transaction:

1. validate the header
2. compute totals (totals_service.compute)
3. mint a number (next_document_number)
4. insert the parent row
5. insert its line rows
6. work orders only: consume stock through the inventory ledger
7. (conversion only) copy a work order into an invoice and mark it invoiced
8. commit, then re-read the document with its lines

Any failure rolls the whole transaction back. A number collision on the
unique constraint is retried with a fresh number; when the retry budget is
spent it surfaces as ConflictError.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import (
    Budget,
    BudgetItem,
    Client,
    DocumentSequence,
    InventoryItem,
    Invoice,
    InvoiceItem,
    LaborService,
    User,
    Vehicle,
    WorkOrder,
    WorkOrderItem,
    WorkOrderService,
)
from ..models.auth import ROLE_MECHANIC, ROLE_ADMIN
from ..models.documents import (
    LINE_TYPE_PART,
    LINE_TYPE_SERVICE,
    WORK_ORDER_PRIORITIES,
    WO_STATUS_CANCELLED,
    WO_STATUS_INVOICED,
)
from ..models.inventory import TX_SALE
from ..money import decimal_str
from ..time_utils import utcnow, parse_iso_date, days_from
from ..validation import coerce_int
from . import totals_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .inventory_service import record_transaction

logger = logging.getLogger(__name__)

KIND_WORK_ORDER = "work_order"
KIND_BUDGET = "budget"
KIND_INVOICE = "invoice"

DOCUMENT_PREFIXES = {
    KIND_WORK_ORDER: "WO",
    KIND_BUDGET: "BUD",
    KIND_INVOICE: "INV",
}

_DOCUMENT_MODELS = {
    KIND_WORK_ORDER: WorkOrder,
    KIND_BUDGET: Budget,
    KIND_INVOICE: Invoice,
}


def format_document_number(kind: str, now: datetime, seq: int, pad: int = 4) -> str:
    return f"{DOCUMENT_PREFIXES[kind]}-{now.year:04d}{now.month:02d}-{seq:0{pad}d}"


def next_document_number(kind: str, now: datetime | None = None) -> str:
    """
    Allocate the next number for (kind, calendar year of now).

    Runs in the caller's transaction and does not commit. The counter row is
    bumped with a single UPDATE ... SET next_number = next_number + 1, which
    takes the row's write lock until the caller commits or rolls back.
    First use in a year inserts the row; two racing inserts collide on the
    (document_type, period_year) unique constraint and the loser's
    IntegrityError sends the caller around its retry loop.
    """
    if kind not in DOCUMENT_PREFIXES:
        raise ValidationError(f"Unknown document kind: {kind}")
    now = now or utcnow()
    year = now.year

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == kind,
            DocumentSequence.period_year == year,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=kind, period_year=year)
            .scalar()
        )
        seq = current - 1
    else:
        db.session.add(DocumentSequence(document_type=kind, period_year=year, next_number=2))
        db.session.flush()
        seq = 1

    return format_document_number(kind, now, seq)


# =============================================================================
# Input normalization (no writes)
# =============================================================================

def _optional_id(header: dict, key: str) -> int | None:
    value = header.get(key)
    if value is None or value == "":
        return None
    return coerce_int(value, key)


def _required_id(header: dict, key: str, label: str) -> int:
    value = _optional_id(header, key)
    if value is None:
        raise ValidationError(f"Please provide {label}", details={"field": key})
    return value


def _optional_date(header: dict, key: str):
    try:
        return parse_iso_date(header.get(key))
    except ValueError:
        raise ValidationError(f"{key} must be a YYYY-MM-DD date")


def _normalize_work_order_items(items) -> list[dict]:
    out = []
    for idx, raw in enumerate(items or []):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        quantity = coerce_int(raw.get("quantity"), f"items[{idx}].quantity")
        if quantity <= 0:
            raise ValidationError(f"items[{idx}].quantity must be positive")
        inventory_item_id = _optional_id(raw, "inventory_item_id")
        price = raw.get("unit_price_cents")
        if price is None and inventory_item_id is None:
            raise ValidationError(f"items[{idx}].unit_price_cents is required")
        if inventory_item_id is None and not raw.get("description"):
            raise ValidationError(f"items[{idx}].description is required")
        out.append({
            "inventory_item_id": inventory_item_id,
            "description": raw.get("description"),
            "quantity": quantity,
            "unit_price_cents": None if price is None else coerce_int(price, f"items[{idx}].unit_price_cents"),
        })
    return out


def _normalize_services(services) -> list[dict]:
    out = []
    for idx, raw in enumerate(services or []):
        if not isinstance(raw, dict):
            raise ValidationError(f"services[{idx}] must be an object")
        service_id = _optional_id(raw, "service_id")
        rate = raw.get("rate_cents")
        if rate is None and service_id is None:
            raise ValidationError(f"services[{idx}].rate_cents is required")
        if service_id is None and not raw.get("description"):
            raise ValidationError(f"services[{idx}].description is required")
        out.append({
            "service_id": service_id,
            "description": raw.get("description"),
            "hours": raw.get("hours"),
            "rate_cents": None if rate is None else coerce_int(rate, f"services[{idx}].rate_cents"),
        })
    return out


def _normalize_plain_items(items, *, required: bool) -> list[dict]:
    if required and not items:
        raise ValidationError("Please provide at least one item")
    out = []
    for idx, raw in enumerate(items or []):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        if not raw.get("description"):
            raise ValidationError(f"items[{idx}].description is required")
        out.append({
            "description": raw.get("description"),
            "quantity": raw.get("quantity"),
            "unit_price_cents": raw.get("unit_price_cents"),
        })
    return out


def _validate(kind: str, header: dict, items, services) -> dict:
    """Header and line checks that need no database. Returns normalized input."""
    if kind not in DOCUMENT_PREFIXES:
        raise ValidationError(f"Unknown document kind: {kind}")
    if header is None or not isinstance(header, dict):
        raise ValidationError("Invalid JSON payload")
    if items is not None and not isinstance(items, list):
        raise ValidationError("items must be a list")
    if services is not None and not isinstance(services, list):
        raise ValidationError("services must be a list")

    data = {"client_id": _required_id(header, "client_id", "client"), "notes": header.get("notes")}

    if kind == KIND_WORK_ORDER:
        data["vehicle_id"] = _required_id(header, "vehicle_id", "vehicle")
        data["assigned_mechanic_id"] = _optional_id(header, "assigned_mechanic_id")
        data["problem_description"] = header.get("problem_description")
        priority = header.get("priority") or "normal"
        if priority not in WORK_ORDER_PRIORITIES:
            raise ValidationError(f"priority must be one of: {', '.join(WORK_ORDER_PRIORITIES)}")
        data["priority"] = priority
        data["estimated_completion_date"] = _optional_date(header, "estimated_completion_date")
        mileage_in = _optional_id(header, "mileage_in")
        if mileage_in is not None and mileage_in < 0:
            raise ValidationError("mileage_in must be >= 0")
        data["mileage_in"] = mileage_in
        data["items"] = _normalize_work_order_items(items)
        data["services"] = _normalize_services(services)

    elif kind == KIND_BUDGET:
        data["vehicle_id"] = _optional_id(header, "vehicle_id")
        data["description"] = header.get("description")
        data["valid_until"] = _optional_date(header, "valid_until")
        data["items"] = _normalize_plain_items(items, required=False)
        data["services"] = _normalize_services(services)

    else:
        data["issue_date"] = _optional_date(header, "issue_date")
        data["due_date"] = _optional_date(header, "due_date")
        discount = header.get("discount_amount_cents") or 0
        data["discount_amount_cents"] = coerce_int(discount, "discount_amount_cents")
        data["items"] = _normalize_plain_items(items, required=True)
        data["services"] = _normalize_services(services)

    return data


# =============================================================================
# Reference resolution (reads inside the transaction, before any insert)
# =============================================================================

def _require(model, obj_id: int, label: str):
    obj = db.session.get(model, obj_id)
    if obj is None:
        raise NotFoundError(f"{label} not found", details={"id": obj_id})
    return obj


def _resolve_references(kind: str, data: dict) -> dict:
    _require(Client, data["client_id"], "Client")

    vehicle_id = data.get("vehicle_id")
    if vehicle_id is not None:
        vehicle = _require(Vehicle, vehicle_id, "Vehicle")
        if vehicle.client_id is not None and vehicle.client_id != data["client_id"]:
            raise ValidationError("Vehicle does not belong to client")

    mechanic_id = data.get("assigned_mechanic_id")
    if mechanic_id is not None:
        mechanic = _require(User, mechanic_id, "Mechanic")
        if mechanic.role not in (ROLE_MECHANIC, ROLE_ADMIN):
            raise ValidationError("assigned_mechanic_id must reference a mechanic")

    stock_items: dict[int, InventoryItem] = {}
    for line in data["items"]:
        item_id = line.get("inventory_item_id")
        if item_id is None:
            continue
        item = stock_items.get(item_id)
        if item is None:
            item = lock_for_update(db.session.query(InventoryItem).filter_by(id=item_id)).first()
            if item is None:
                raise NotFoundError("Inventory item not found", details={"id": item_id})
            if not item.is_active:
                raise ValidationError(f"Inventory item {item.code} is inactive")
            stock_items[item_id] = item
        if line["unit_price_cents"] is None:
            line["unit_price_cents"] = item.unit_price_cents
        if not line["description"]:
            line["description"] = item.name

    for line in data["services"]:
        service_id = line.get("service_id")
        if service_id is None:
            continue
        service = _require(LaborService, service_id, "Service")
        if line["rate_cents"] is None:
            line["rate_cents"] = service.default_price_cents
        if not line["description"]:
            line["description"] = service.name
        if line["hours"] is None and service.estimated_hours is not None:
            line["hours"] = service.estimated_hours

    return stock_items


# =============================================================================
# Parent and line inserts
# =============================================================================

def _insert_parent(kind: str, number: str, data: dict, totals, actor_id, now: datetime):
    common = dict(
        client_id=data["client_id"],
        notes=data.get("notes"),
        created_by_user_id=actor_id,
        subtotal_cents=totals.subtotal_cents,
        tax_amount_cents=totals.tax_amount_cents,
        discount_amount_cents=totals.discount_amount_cents,
        total_amount_cents=totals.total_amount_cents,
    )
    if kind == KIND_WORK_ORDER:
        doc = WorkOrder(
            order_number=number,
            vehicle_id=data["vehicle_id"],
            assigned_mechanic_id=data.get("assigned_mechanic_id"),
            problem_description=data.get("problem_description"),
            priority=data["priority"],
            estimated_completion_date=data.get("estimated_completion_date"),
            mileage_in=data.get("mileage_in"),
            **common,
        )
    elif kind == KIND_BUDGET:
        doc = Budget(
            budget_number=number,
            vehicle_id=data.get("vehicle_id"),
            description=data.get("description"),
            valid_until=data.get("valid_until"),
            **common,
        )
    else:
        issue_date = data.get("issue_date") or now.date()
        doc = Invoice(
            invoice_number=number,
            work_order_id=data.get("work_order_id"),
            issue_date=issue_date,
            due_date=data.get("due_date") or days_from(issue_date, current_app.config["INVOICE_DUE_DAYS"]),
            paid_amount_cents=0,
            **common,
        )
    db.session.add(doc)
    db.session.flush()
    return doc


def _service_line_description(description: str | None, hours) -> str:
    return f"{description or 'Labor'} ({decimal_str(hours)} hrs)"


def _insert_lines(kind: str, doc, data: dict, totals, stock_items: dict, actor_id) -> None:
    if kind == KIND_WORK_ORDER:
        for line, lt in zip(data["items"], totals.items):
            row = WorkOrderItem(
                work_order_id=doc.id,
                inventory_item_id=line["inventory_item_id"],
                description=line["description"],
                quantity=line["quantity"],
                unit_price_cents=lt.unit_price_cents,
                total_cents=lt.total_cents,
            )
            db.session.add(row)
            if line["inventory_item_id"] is not None:
                tx = record_transaction(
                    stock_items[line["inventory_item_id"]],
                    TX_SALE,
                    -line["quantity"],
                    reference_type=KIND_WORK_ORDER,
                    reference_id=doc.id,
                    notes=f"Consumed by {doc.order_number}",
                    actor_id=actor_id,
                )
                row.inventory_transaction_id = tx.id
        for line, lt in zip(data["services"], totals.services):
            db.session.add(WorkOrderService(
                work_order_id=doc.id,
                service_id=line["service_id"],
                description=line["description"],
                hours=lt.quantity,
                rate_cents=lt.unit_price_cents,
                total_cents=lt.total_cents,
            ))

    elif kind == KIND_BUDGET:
        for line, lt in zip(data["items"], totals.items):
            db.session.add(BudgetItem(
                budget_id=doc.id,
                item_type=LINE_TYPE_PART,
                description=line["description"],
                quantity=lt.quantity,
                unit_price_cents=lt.unit_price_cents,
                total_cents=lt.total_cents,
            ))
        for line, lt in zip(data["services"], totals.services):
            db.session.add(BudgetItem(
                budget_id=doc.id,
                item_type=LINE_TYPE_SERVICE,
                description=line["description"],
                quantity=lt.quantity,
                unit_price_cents=lt.unit_price_cents,
                total_cents=lt.total_cents,
            ))

    else:
        for line, lt in zip(data["items"], totals.items):
            db.session.add(InvoiceItem(
                invoice_id=doc.id,
                description=line["description"],
                quantity=lt.quantity,
                unit_price_cents=lt.unit_price_cents,
                total_cents=lt.total_cents,
            ))
        for line, lt in zip(data["services"], totals.services):
            db.session.add(InvoiceItem(
                invoice_id=doc.id,
                description=_service_line_description(line["description"], lt.quantity),
                quantity=1,
                unit_price_cents=lt.total_cents,
                total_cents=lt.total_cents,
            ))

    db.session.flush()


# Unique constraints a concurrent writer can trip while numbering a document
_NUMBER_CONSTRAINT_MARKERS = (
    "order_number",
    "budget_number",
    "invoice_number",
    "uq_doc_sequences_type_year",
    "document_sequences.",
    "uq_invoices_work_order",
    "invoices.work_order_id",
)


def is_number_collision(exc: IntegrityError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    if "unique" not in message and "duplicate" not in message:
        return False
    return any(marker in message for marker in _NUMBER_CONSTRAINT_MARKERS)


def _write_with_number_retry(kind: str, op):
    """
    Run op() as one unit of work, retrying on document-number collisions.

    op() must do all of its work (including commit) and be safe to re-run
    from scratch after a rollback. Any other integrity failure propagates
    as the StorageError raised by run_with_retry.
    """
    attempts = current_app.config.get("DOCUMENT_NUMBER_RETRIES", 3)
    for attempt in range(attempts):
        try:
            return run_with_retry(op)
        except ConflictError:
            raise
        except Exception as exc:
            cause = exc.__cause__ if exc.__cause__ is not None else exc
            if not isinstance(cause, IntegrityError) or not is_number_collision(cause):
                raise
            logger.warning(
                "Document number collision for %s (attempt %d/%d)", kind, attempt + 1, attempts
            )
    raise ConflictError(
        "Could not allocate a unique document number, please retry",
        details={"document_type": kind},
    )


def _reload(kind: str, doc_id: int):
    db.session.expire_all()
    return db.session.get(_DOCUMENT_MODELS[kind], doc_id)


# =============================================================================
# Public API
# =============================================================================

def create_document(
    kind: str,
    header: dict,
    items=None,
    services=None,
    actor_id: int | None = None,
    now: datetime | None = None,
):
    """
    Create a work order, budget or manual invoice atomically.

    header: kind-specific fields (client_id always required; vehicle_id
    required for work orders). items: parts ({quantity, unit_price_cents,
    description, inventory_item_id?}). services: labor ({hours, rate_cents,
    description, service_id?}).

    Returns the re-read document; its lines are available through .items
    (and .services for work orders).
    """
    data = _validate(kind, header, items, services)
    tax_rate_bps = current_app.config["TAX_RATE_BPS"]

    # Lines that carry every price up front are checked before the transaction opens
    if all(line.get("unit_price_cents") is not None for line in data["items"]) and all(
        s.get("rate_cents") is not None for s in data["services"]
    ):
        totals_service.compute(
            data["items"], data["services"],
            tax_rate_bps=tax_rate_bps,
            discount_cents=data.get("discount_amount_cents", 0),
        )

    def _op():
        begin_write()
        stamp = now or utcnow()
        # Work on copies so a retried attempt starts from the caller's input
        attempt = dict(
            data,
            items=[dict(line) for line in data["items"]],
            services=[dict(line) for line in data["services"]],
        )

        stock_items = _resolve_references(kind, attempt)
        totals = totals_service.compute(
            attempt["items"], attempt["services"],
            tax_rate_bps=tax_rate_bps,
            discount_cents=attempt.get("discount_amount_cents", 0),
        )
        number = next_document_number(kind, stamp)
        doc = _insert_parent(kind, number, attempt, totals, actor_id, stamp)
        _insert_lines(kind, doc, attempt, totals, stock_items, actor_id)

        db.session.commit()
        return doc.id, number

    doc_id, number = _write_with_number_retry(kind, _op)
    logger.info("Created %s %s", kind, number)
    return _reload(kind, doc_id)


def create_invoice_from_work_order(
    work_order_id: int,
    actor_id: int | None = None,
    now: datetime | None = None,
) -> Invoice:
    """
    Convert a work order into an invoice.

    Part lines are copied verbatim; each labor line becomes one invoice line
    "{description} ({hours} hrs)" priced at its total. Header totals are
    copied, not recomputed. The work order is marked invoiced in the same
    transaction. A second conversion raises ConflictError.
    """
    def _op():
        begin_write()
        stamp = now or utcnow()

        wo = lock_for_update(db.session.query(WorkOrder).filter_by(id=work_order_id)).first()
        if wo is None:
            raise NotFoundError("Work order not found")
        if wo.status == WO_STATUS_INVOICED:
            raise ConflictError("Work order already invoiced", details={"work_order_id": wo.id})
        if wo.status == WO_STATUS_CANCELLED:
            raise ConflictError("Cancelled work orders cannot be invoiced", details={"work_order_id": wo.id})

        number = next_document_number(KIND_INVOICE, stamp)
        issue_date = stamp.date()
        invoice = Invoice(
            invoice_number=number,
            work_order_id=wo.id,
            client_id=wo.client_id,
            issue_date=issue_date,
            due_date=days_from(issue_date, current_app.config["INVOICE_DUE_DAYS"]),
            subtotal_cents=wo.subtotal_cents,
            tax_amount_cents=wo.tax_amount_cents,
            discount_amount_cents=wo.discount_amount_cents,
            total_amount_cents=wo.total_amount_cents,
            paid_amount_cents=0,
            created_by_user_id=actor_id,
        )
        db.session.add(invoice)
        db.session.flush()

        for line in wo.items:
            db.session.add(InvoiceItem(
                invoice_id=invoice.id,
                description=line.description,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                total_cents=line.total_cents,
            ))
        for line in wo.services:
            db.session.add(InvoiceItem(
                invoice_id=invoice.id,
                description=_service_line_description(line.description, line.hours),
                quantity=1,
                unit_price_cents=line.total_cents,
                total_cents=line.total_cents,
            ))

        wo.status = WO_STATUS_INVOICED
        db.session.commit()
        return invoice.id, number, wo.order_number

    invoice_id, number, order_number = _write_with_number_retry(KIND_INVOICE, _op)
    logger.info("Work order %s invoiced as %s", order_number, number)
    return _reload(KIND_INVOICE, invoice_id)
