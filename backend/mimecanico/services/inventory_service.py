# Overview: Service-layer operations for inventory; stock ledger, items, categories and labor catalog.

"""
Inventory Invariants (authoritative)

- InventoryItem.stock_quantity is a cached balance. It changes ONLY through
  record_transaction(), which writes the matching InventoryTransaction row
  in the same DB transaction.
- The ledger is append-only: corrections are new offsetting rows.
- SUM(quantity_delta) over an item's ledger equals its stock_quantity.
- On-hand stock may never go negative.
- record_transaction() never commits; the caller owns the unit of work.
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import (
    InventoryCategory,
    InventoryItem,
    InventoryTransaction,
    LaborService,
    WorkOrderItem,
)
from ..models.inventory import VALID_TRANSACTION_TYPES, TX_ADJUSTMENT, TX_PURCHASE, TX_SALE
from .concurrency import begin_write, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


def _get_item(item_id: int, *, lock: bool = False) -> InventoryItem:
    query = db.session.query(InventoryItem).filter_by(id=item_id)
    if lock:
        query = lock_for_update(query)
    item = query.first()
    if item is None:
        raise NotFoundError("Inventory item not found")
    return item


def get_item(item_id: int) -> InventoryItem:
    return _get_item(item_id)


def record_transaction(
    item: InventoryItem,
    transaction_type: str,
    quantity_delta: int,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> InventoryTransaction:
    """
    Append a ledger row and apply its delta to the item's stock.

    Sales must be negative, purchases positive, adjustments non-zero.
    The item should already be locked by the caller.
    """
    if transaction_type not in VALID_TRANSACTION_TYPES:
        raise ValidationError(f"transaction_type must be one of: {', '.join(VALID_TRANSACTION_TYPES)}")
    if isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int):
        raise ValidationError("quantity_delta must be an integer")
    if quantity_delta == 0:
        raise ValidationError("quantity_delta must be non-zero")
    if transaction_type == TX_SALE and quantity_delta > 0:
        raise ValidationError("sale transactions must have a negative quantity_delta")
    if transaction_type == TX_PURCHASE and quantity_delta < 0:
        raise ValidationError("purchase transactions must have a positive quantity_delta")

    new_stock = item.stock_quantity + quantity_delta
    if new_stock < 0:
        raise ConflictError(
            f"Insufficient stock for {item.code}",
            details={
                "inventory_item_id": item.id,
                "stock_quantity": item.stock_quantity,
                "requested": -quantity_delta,
            },
        )

    tx = InventoryTransaction(
        inventory_item_id=item.id,
        transaction_type=transaction_type,
        quantity_delta=quantity_delta,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        created_by_user_id=actor_id,
    )
    item.stock_quantity = new_stock
    db.session.add(tx)
    db.session.flush()
    return tx


def get_ledger_balance(item_id: int) -> int:
    """SUM(quantity_delta) over the item's ledger."""
    q = db.session.query(
        func.coalesce(func.sum(InventoryTransaction.quantity_delta), 0)
    ).filter(InventoryTransaction.inventory_item_id == item_id)
    return int(q.scalar() or 0)


def list_transactions(item_id: int, limit: int = 200) -> tuple[list[InventoryTransaction], dict]:
    item = _get_item(item_id)

    txs = (
        InventoryTransaction.query.filter_by(inventory_item_id=item_id)
        .order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
        .limit(limit)
        .all()
    )

    balance = get_ledger_balance(item_id)
    summary = {
        "inventory_item_id": item.id,
        "stock_quantity": item.stock_quantity,
        "ledger_balance": balance,
        "reconciled": balance == item.stock_quantity,
    }
    return txs, summary


def adjust_stock(
    item_id: int,
    *,
    transaction_type: str,
    quantity_delta: int,
    notes: str | None = None,
    actor_id: int | None = None,
) -> InventoryTransaction:
    """Manual stock movement (purchase receipt or adjustment)."""
    if transaction_type not in (TX_PURCHASE, TX_ADJUSTMENT):
        raise ValidationError("transaction_type must be purchase or adjustment")

    def _op():
        begin_write()
        item = _get_item(item_id, lock=True)
        tx = record_transaction(
            item,
            transaction_type,
            quantity_delta,
            reference_type="manual",
            notes=notes,
            actor_id=actor_id,
        )
        db.session.commit()
        return tx

    tx = run_with_retry(_op)
    logger.info("Stock %s of %+d recorded for inventory item %s", transaction_type, quantity_delta, item_id)
    return tx


def list_items(
    *,
    category_id: int | None = None,
    active: bool | None = None,
    low_stock: bool = False,
    search: str | None = None,
) -> list[InventoryItem]:
    q = InventoryItem.query
    if category_id is not None:
        q = q.filter(InventoryItem.category_id == category_id)
    if active is not None:
        q = q.filter(InventoryItem.is_active == active)
    if low_stock:
        q = q.filter(InventoryItem.stock_quantity <= InventoryItem.min_stock_level)
    if search:
        pattern = f"%{search}%"
        q = q.filter(db.or_(InventoryItem.code.ilike(pattern), InventoryItem.name.ilike(pattern)))
    return q.order_by(InventoryItem.name.asc(), InventoryItem.id.asc()).all()


def _ensure_category(category_id: int | None) -> None:
    if category_id is not None and db.session.get(InventoryCategory, category_id) is None:
        raise NotFoundError("Inventory category not found")


def create_item(patch: dict, actor_id: int | None = None) -> InventoryItem:
    """
    Create an inventory item. A non-zero initial stock is recorded as an
    adjustment so the ledger reconciles from the first row.
    """
    def _op():
        begin_write()
        if InventoryItem.query.filter_by(code=patch["code"]).first():
            raise ConflictError("Item code already exists")
        _ensure_category(patch.get("category_id"))

        fields = dict(patch)
        initial_stock = fields.pop("stock_quantity", 0) or 0
        item = InventoryItem(**fields, stock_quantity=0)
        db.session.add(item)
        db.session.flush()

        if initial_stock:
            record_transaction(
                item,
                TX_ADJUSTMENT,
                initial_stock,
                reference_type="inventory_item",
                reference_id=item.id,
                notes="Initial stock",
                actor_id=actor_id,
            )

        db.session.commit()
        return item

    item = run_with_retry(_op)
    logger.info("Inventory item %s created", item.code)
    return item


def update_item(item_id: int, patch: dict, actor_id: int | None = None) -> InventoryItem:
    """
    Update item fields. A stock_quantity in the patch is not written
    directly: the difference new - old is recorded as an adjustment.
    """
    def _op():
        begin_write()
        item = _get_item(item_id, lock=True)

        fields = dict(patch)
        if "code" in fields and fields["code"] != item.code:
            if InventoryItem.query.filter_by(code=fields["code"]).first():
                raise ConflictError("Item code already exists")
        if "category_id" in fields:
            _ensure_category(fields["category_id"])

        target_stock = fields.pop("stock_quantity", None)
        for k, v in fields.items():
            setattr(item, k, v)

        if target_stock is not None and target_stock != item.stock_quantity:
            record_transaction(
                item,
                TX_ADJUSTMENT,
                target_stock - item.stock_quantity,
                reference_type="inventory_item",
                reference_id=item.id,
                notes="Manual stock edit",
                actor_id=actor_id,
            )

        db.session.commit()
        return item

    return run_with_retry(_op)


def delete_item(item_id: int) -> None:
    """Delete an item that has never moved. Items with ledger history are kept."""
    def _op():
        item = _get_item(item_id, lock=True)
        has_ledger = db.session.query(InventoryTransaction.id).filter_by(inventory_item_id=item.id).first()
        if has_ledger:
            raise ConflictError("Item has stock movements; deactivate it instead")
        used = db.session.query(WorkOrderItem.id).filter_by(inventory_item_id=item.id).first()
        if used:
            raise ConflictError("Item is referenced by work orders; deactivate it instead")
        db.session.delete(item)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# Categories and labor catalog
# =============================================================================

def list_categories() -> list[InventoryCategory]:
    return InventoryCategory.query.order_by(InventoryCategory.name.asc()).all()


def create_category(patch: dict) -> InventoryCategory:
    def _op():
        if InventoryCategory.query.filter_by(name=patch["name"]).first():
            raise ConflictError("Category already exists")
        category = InventoryCategory(**patch)
        db.session.add(category)
        db.session.commit()
        return category

    return run_with_retry(_op)


def list_services(*, active: bool | None = None) -> list[LaborService]:
    q = LaborService.query
    if active is not None:
        q = q.filter(LaborService.is_active == active)
    return q.order_by(LaborService.name.asc()).all()


def create_service(patch: dict) -> LaborService:
    def _op():
        if LaborService.query.filter_by(code=patch["code"]).first():
            raise ConflictError("Service code already exists")
        service = LaborService(**patch)
        db.session.add(service)
        db.session.commit()
        return service

    return run_with_retry(_op)
