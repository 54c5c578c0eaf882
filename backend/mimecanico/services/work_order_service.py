# Overview: Service-layer operations for work orders after creation (queries, restricted updates, delete).

from __future__ import annotations

import logging

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import InventoryItem, User, WorkOrder
from ..models.auth import ROLE_ADMIN, ROLE_MECHANIC
from ..models.documents import (
    WORK_ORDER_STATUSES,
    WO_STATUS_COMPLETED,
    WO_STATUS_DELIVERED,
    WO_STATUS_INVOICED,
)
from ..models.inventory import TX_ADJUSTMENT
from ..time_utils import today
from ..validation import require_choice
from .concurrency import begin_write, lock_for_update, run_with_retry
from .inventory_service import record_transaction

logger = logging.getLogger(__name__)

# Fields that may change after creation. Money and lines never do.
UPDATABLE_FIELDS = {
    "status",
    "assigned_mechanic_id",
    "diagnosis",
    "work_performed",
    "actual_completion_date",
    "mileage_out",
    "notes",
}


def get_work_order(work_order_id: int) -> WorkOrder:
    wo = db.session.get(WorkOrder, work_order_id)
    if wo is None:
        raise NotFoundError("Work order not found")
    return wo


def list_work_orders(
    *,
    status: str | None = None,
    client_id: int | None = None,
    mechanic_id: int | None = None,
) -> list[WorkOrder]:
    q = WorkOrder.query
    if status:
        q = q.filter(WorkOrder.status == status)
    if client_id is not None:
        q = q.filter(WorkOrder.client_id == client_id)
    if mechanic_id is not None:
        q = q.filter(WorkOrder.assigned_mechanic_id == mechanic_id)
    return q.order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc()).all()


def update_work_order(work_order_id: int, patch: dict) -> WorkOrder:
    """
    Apply a restricted update. The "invoiced" status is reserved for invoice
    generation, and an invoiced order's status is frozen.
    """
    unknown = set(patch) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    status = patch.get("status")
    if status is not None:
        require_choice(status, WORK_ORDER_STATUSES, "status")
        if status == WO_STATUS_INVOICED:
            raise ValidationError("Status 'invoiced' is set by invoice generation only")

    if patch.get("mileage_out") is not None and patch["mileage_out"] < 0:
        raise ValidationError("mileage_out must be >= 0")

    def _op():
        wo = lock_for_update(db.session.query(WorkOrder).filter_by(id=work_order_id)).first()
        if wo is None:
            raise NotFoundError("Work order not found")

        if status is not None and status != wo.status and wo.status == WO_STATUS_INVOICED:
            raise ConflictError("Invoiced work orders cannot change status")

        mechanic_id = patch.get("assigned_mechanic_id")
        if mechanic_id is not None:
            mechanic = db.session.get(User, mechanic_id)
            if mechanic is None:
                raise NotFoundError("Mechanic not found")
            if mechanic.role not in (ROLE_MECHANIC, ROLE_ADMIN):
                raise ValidationError("assigned_mechanic_id must reference a mechanic")

        for k, v in patch.items():
            setattr(wo, k, v)

        if status in (WO_STATUS_COMPLETED, WO_STATUS_DELIVERED) and wo.actual_completion_date is None:
            wo.actual_completion_date = today()

        db.session.commit()
        return wo

    return run_with_retry(_op)


def delete_work_order(work_order_id: int, actor_id: int | None = None) -> None:
    """
    Delete a work order that was never invoiced.

    Stock it consumed is returned through offsetting adjustment entries;
    the original sale rows stay in the ledger.
    """
    def _op():
        begin_write()
        wo = lock_for_update(db.session.query(WorkOrder).filter_by(id=work_order_id)).first()
        if wo is None:
            raise NotFoundError("Work order not found")
        if wo.status == WO_STATUS_INVOICED or wo.invoice is not None:
            raise ConflictError("Invoiced work orders cannot be deleted")

        for line in wo.items:
            if line.inventory_transaction_id is None or line.inventory_item_id is None:
                continue
            item = lock_for_update(
                db.session.query(InventoryItem).filter_by(id=line.inventory_item_id)
            ).first()
            if item is None:
                continue
            record_transaction(
                item,
                TX_ADJUSTMENT,
                line.quantity,
                reference_type="work_order",
                reference_id=wo.id,
                notes=f"Returned from deleted {wo.order_number}",
                actor_id=actor_id,
            )

        order_number = wo.order_number
        for line in list(wo.items) + list(wo.services):
            db.session.delete(line)
        db.session.delete(wo)
        db.session.commit()
        return order_number

    order_number = run_with_retry(_op)
    logger.info("Work order %s deleted", order_number)
