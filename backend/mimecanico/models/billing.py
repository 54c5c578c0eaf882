from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from mimecanico.money import decimal_str
from mimecanico.time_utils import to_utc_z, to_iso_date
from .documents import _DocumentTotalsMixin

INVOICE_STATUS_PENDING = "pending"
INVOICE_STATUS_PARTIAL = "partial"
INVOICE_STATUS_PAID = "paid"
INVOICE_STATUS_OVERDUE = "overdue"
INVOICE_STATUS_CANCELLED = "cancelled"

INVOICE_STATUSES = (
    INVOICE_STATUS_PENDING,
    INVOICE_STATUS_PARTIAL,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_CANCELLED,
)

PAYMENT_METHODS = ("cash", "card", "transfer", "check", "other")


class Invoice(_DocumentTotalsMixin, db.Model):
    """
    Invoice, either manual or generated from a work order.

    paid_amount_cents is the running sum of Payment rows.
    work_order_id is unique: a work order yields at most one invoice.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("work_order_id", name="uq_invoices_work_order"),
        db.Index("ix_invoices_client_status", "client_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "INV-202501-0042")
    invoice_number = db.Column(db.String(32), nullable=False, unique=True)

    work_order_id = db.Column(db.Integer, db.ForeignKey("work_orders.id"), nullable=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)

    issue_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_PENDING, index=True)

    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_date = db.Column(db.Date, nullable=True)
    payment_method = db.Column(db.String(16), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    client = db.relationship("Client")
    work_order = db.relationship("WorkOrder", backref=db.backref("invoice", uselist=False, lazy=True))

    @property
    def balance_due_cents(self) -> int:
        return max(self.total_amount_cents - self.paid_amount_cents, 0)

    @property
    def overpaid_cents(self) -> int:
        return max(self.paid_amount_cents - self.total_amount_cents, 0)

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "work_order_id": self.work_order_id,
            "work_order_number": self.work_order.order_number if self.work_order else None,
            "client_id": self.client_id,
            "issue_date": to_iso_date(self.issue_date),
            "due_date": to_iso_date(self.due_date),
            "status": self.status,
            "paid_amount_cents": self.paid_amount_cents,
            "balance_due_cents": self.balance_due_cents,
            "overpaid_cents": self.overpaid_cents,
            "payment_date": to_iso_date(self.payment_date),
            "payment_method": self.payment_method,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            **self._totals_dict(),
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.items]
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Numeric(10, 2), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    invoice = db.relationship(
        "Invoice",
        backref=db.backref("items", lazy=True, order_by="InvoiceItem.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "description": self.description,
            "quantity": decimal_str(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
        }


class Payment(db.Model):
    """Payment received against an invoice. Append-only."""
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    reference_number = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship(
        "Invoice",
        backref=db.backref("payments", lazy=True, order_by="Payment.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "payment_date": to_iso_date(self.payment_date),
            "reference_number": self.reference_number,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(Payment, "before_update")
def _payments_are_immutable(mapper, connection, target):
    raise ValueError("payments are append-only")
