from __future__ import annotations

from ..extensions import db
from mimecanico.money import decimal_str
from mimecanico.time_utils import to_utc_z, to_iso_date

# Work order lifecycle. "invoiced" is only reachable through invoice generation.
WO_STATUS_PENDING = "pending"
WO_STATUS_IN_PROGRESS = "in_progress"
WO_STATUS_WAITING_PARTS = "waiting_parts"
WO_STATUS_COMPLETED = "completed"
WO_STATUS_DELIVERED = "delivered"
WO_STATUS_CANCELLED = "cancelled"
WO_STATUS_INVOICED = "invoiced"

WORK_ORDER_STATUSES = (
    WO_STATUS_PENDING,
    WO_STATUS_IN_PROGRESS,
    WO_STATUS_WAITING_PARTS,
    WO_STATUS_COMPLETED,
    WO_STATUS_DELIVERED,
    WO_STATUS_CANCELLED,
    WO_STATUS_INVOICED,
)

WORK_ORDER_PRIORITIES = ("low", "normal", "high", "urgent")

BUDGET_STATUSES = ("draft", "sent", "approved", "rejected", "expired")

LINE_TYPE_PART = "part"
LINE_TYPE_SERVICE = "service"


class _DocumentTotalsMixin:
    """Monetary header fields shared by work orders, budgets and invoices (cents)."""
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    def _totals_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "total_amount_cents": self.total_amount_cents,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-kind, per-year document counters.

    next_number is incremented with a single UPDATE while the row is locked,
    so two concurrent creations never read the same value.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "period_year", name="uq_doc_sequences_type_year"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    period_year = db.Column(db.Integer, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "period_year": self.period_year,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class WorkOrder(_DocumentTotalsMixin, db.Model):
    __tablename__ = "work_orders"
    __table_args__ = (
        db.Index("ix_work_orders_client_status", "client_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "WO-202501-0007")
    order_number = db.Column(db.String(32), nullable=False, unique=True)

    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    assigned_mechanic_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    problem_description = db.Column(db.Text, nullable=True)
    diagnosis = db.Column(db.Text, nullable=True)
    work_performed = db.Column(db.Text, nullable=True)

    priority = db.Column(db.String(16), nullable=False, default="normal")
    status = db.Column(db.String(16), nullable=False, default=WO_STATUS_PENDING, index=True)

    estimated_completion_date = db.Column(db.Date, nullable=True)
    actual_completion_date = db.Column(db.Date, nullable=True)
    mileage_in = db.Column(db.Integer, nullable=True)
    mileage_out = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    vehicle = db.relationship("Vehicle")
    client = db.relationship("Client")
    mechanic = db.relationship("User", foreign_keys=[assigned_mechanic_id])

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "vehicle_id": self.vehicle_id,
            "client_id": self.client_id,
            "assigned_mechanic_id": self.assigned_mechanic_id,
            "problem_description": self.problem_description,
            "diagnosis": self.diagnosis,
            "work_performed": self.work_performed,
            "priority": self.priority,
            "status": self.status,
            "estimated_completion_date": to_iso_date(self.estimated_completion_date),
            "actual_completion_date": to_iso_date(self.actual_completion_date),
            "mileage_in": self.mileage_in,
            "mileage_out": self.mileage_out,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            **self._totals_dict(),
        }
        if self.vehicle is not None:
            data["plate_number"] = self.vehicle.plate_number
            data["brand"] = self.vehicle.brand
            data["model"] = self.vehicle.model
        if self.mechanic is not None:
            data["mechanic_name"] = self.mechanic.full_name
        if include_lines:
            data["items"] = [line.to_dict() for line in self.items]
            data["services"] = [line.to_dict() for line in self.services]
        return data


class WorkOrderItem(db.Model):
    """Part consumed by a work order (quantity x unit price)."""
    __tablename__ = "work_order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    work_order_id = db.Column(db.Integer, db.ForeignKey("work_orders.id"), nullable=False, index=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=True)

    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    # Links to the ledger row that consumed stock, if any
    inventory_transaction_id = db.Column(db.Integer, db.ForeignKey("inventory_transactions.id"), nullable=True)

    work_order = db.relationship(
        "WorkOrder",
        backref=db.backref("items", lazy=True, order_by="WorkOrderItem.id"),
    )
    inventory_item = db.relationship("InventoryItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "work_order_id": self.work_order_id,
            "inventory_item_id": self.inventory_item_id,
            "item_name": self.inventory_item.name if self.inventory_item else None,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
            "inventory_transaction_id": self.inventory_transaction_id,
        }


class WorkOrderService(db.Model):
    """Labor on a work order (hours x rate)."""
    __tablename__ = "work_order_services"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    work_order_id = db.Column(db.Integer, db.ForeignKey("work_orders.id"), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=True)

    description = db.Column(db.String(255), nullable=True)
    hours = db.Column(db.Numeric(8, 2), nullable=False)
    rate_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    work_order = db.relationship(
        "WorkOrder",
        backref=db.backref("services", lazy=True, order_by="WorkOrderService.id"),
    )
    service = db.relationship("LaborService")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "work_order_id": self.work_order_id,
            "service_id": self.service_id,
            "service_name": self.service.name if self.service else None,
            "description": self.description,
            "hours": decimal_str(self.hours),
            "rate_cents": self.rate_cents,
            "total_cents": self.total_cents,
        }


class Budget(_DocumentTotalsMixin, db.Model):
    """Quote for prospective work. Never touches inventory."""
    __tablename__ = "budgets"
    __table_args__ = (
        db.Index("ix_budgets_client_status", "client_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "BUD-202501-0003")
    budget_number = db.Column(db.String(32), nullable=False, unique=True)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=True, index=True)

    description = db.Column(db.Text, nullable=True)
    valid_until = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    client = db.relationship("Client")
    vehicle = db.relationship("Vehicle")

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "budget_number": self.budget_number,
            "client_id": self.client_id,
            "vehicle_id": self.vehicle_id,
            "description": self.description,
            "valid_until": to_iso_date(self.valid_until),
            "status": self.status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            **self._totals_dict(),
        }
        if self.vehicle is not None:
            data["plate_number"] = self.vehicle.plate_number
        if include_lines:
            data["items"] = [line.to_dict() for line in self.items]
        return data


class BudgetItem(db.Model):
    """
    Budget line. item_type "part" stores quantity x unit price,
    "service" stores hours in quantity and the hourly rate in unit_price_cents.
    """
    __tablename__ = "budget_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    budget_id = db.Column(db.Integer, db.ForeignKey("budgets.id"), nullable=False, index=True)

    item_type = db.Column(db.String(16), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Numeric(10, 2), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    budget = db.relationship(
        "Budget",
        backref=db.backref("items", lazy=True, order_by="BudgetItem.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "budget_id": self.budget_id,
            "item_type": self.item_type,
            "description": self.description,
            "quantity": decimal_str(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
        }
