from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from mimecanico.money import decimal_str
from mimecanico.time_utils import to_utc_z

TX_SALE = "sale"
TX_ADJUSTMENT = "adjustment"
TX_PURCHASE = "purchase"

VALID_TRANSACTION_TYPES = (TX_SALE, TX_ADJUSTMENT, TX_PURCHASE)


class InventoryCategory(db.Model):
    __tablename__ = "inventory_categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description}


class InventoryItem(db.Model):
    """
    Stocked part or consumable.

    stock_quantity is a cached balance: every change to it is paired with an
    InventoryTransaction row written in the same DB transaction
    (see services/inventory_service.record_transaction).
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.Index("ix_inventory_items_stock_level", "stock_quantity", "min_stock_level"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("inventory_categories.id"), nullable=True, index=True)

    code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Sale price and purchase cost, in cents
    unit_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=0)
    unit = db.Column(db.String(16), nullable=False, default="unit")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    category = db.relationship("InventoryCategory", backref=db.backref("items", lazy=True))

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.min_stock_level

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "unit_price_cents": self.unit_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "stock_quantity": self.stock_quantity,
            "min_stock_level": self.min_stock_level,
            "unit": self.unit,
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }


class LaborService(db.Model):
    """Catalog of labor services offered (default price per hour, estimated hours)."""
    __tablename__ = "services"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    default_price_cents = db.Column(db.Integer, nullable=False)
    estimated_hours = db.Column(db.Numeric(8, 2), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "default_price_cents": self.default_price_cents,
            "estimated_hours": decimal_str(self.estimated_hours),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryTransaction(db.Model):
    """
    Append-only stock ledger.

    quantity_delta is signed: sales are negative, purchases positive,
    adjustments either. reference_type/reference_id name the document that
    caused the movement (e.g. "work_order", 12). Corrections are new
    offsetting rows, never edits.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_invtx_item_created", "inventory_item_id", "created_at"),
        db.Index("ix_invtx_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("InventoryItem", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_item_id": self.inventory_item_id,
            "transaction_type": self.transaction_type,
            "quantity_delta": self.quantity_delta,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(InventoryTransaction, "before_update")
def _ledger_rows_are_immutable(mapper, connection, target):
    raise ValueError("inventory transactions are append-only")


@event.listens_for(InventoryTransaction, "before_delete")
def _ledger_rows_are_undeletable(mapper, connection, target):
    raise ValueError("inventory transactions are append-only")
