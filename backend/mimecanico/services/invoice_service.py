# Overview: Service-layer operations for invoices after creation: payments, status updates, delete.

"""
Invoice Payment Service

DESIGN PRINCIPLES:
- Payments are append-only child rows of an invoice
- invoice.paid_amount_cents is the running sum of its payments
- status is derived on every payment: "paid" once paid >= total,
  "partial" while something but not everything is paid
- Over-payment is accepted (the excess is reported as overpaid_cents)
  and logged as a warning
"""

from __future__ import annotations

import logging
from datetime import date

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Invoice, Payment, WorkOrder
from ..models.billing import (
    INVOICE_STATUSES,
    INVOICE_STATUS_CANCELLED,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_PARTIAL,
    INVOICE_STATUS_PENDING,
    PAYMENT_METHODS,
)
from ..models.documents import WO_STATUS_COMPLETED
from ..time_utils import today
from ..validation import require_choice
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {"status", "payment_method", "payment_date", "notes"}


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def list_invoices(*, status: str | None = None, client_id: int | None = None) -> list[Invoice]:
    q = Invoice.query
    if status:
        q = q.filter(Invoice.status == status)
    if client_id is not None:
        q = q.filter(Invoice.client_id == client_id)
    return q.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()


def _lock_invoice(invoice_id: int) -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def _derive_status(invoice: Invoice) -> str:
    if invoice.paid_amount_cents >= invoice.total_amount_cents:
        return INVOICE_STATUS_PAID
    if invoice.paid_amount_cents > 0:
        return INVOICE_STATUS_PARTIAL
    return invoice.status


def _append_payment(
    invoice: Invoice,
    *,
    amount_cents: int,
    payment_method: str,
    payment_date: date,
    reference_number: str | None,
    notes: str | None,
    actor_id: int | None,
) -> Payment:
    payment = Payment(
        invoice_id=invoice.id,
        amount_cents=amount_cents,
        payment_method=payment_method,
        payment_date=payment_date,
        reference_number=reference_number,
        notes=notes,
        created_by_user_id=actor_id,
    )
    db.session.add(payment)

    invoice.paid_amount_cents = invoice.paid_amount_cents + amount_cents
    invoice.status = _derive_status(invoice)
    invoice.payment_method = payment_method
    invoice.payment_date = payment_date
    db.session.flush()
    return payment


def add_payment(
    invoice_id: int,
    *,
    amount_cents: int,
    payment_method: str,
    payment_date: date | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> Invoice:
    """
    Record a payment against an invoice.

    Raises:
        ValidationError: amount not positive, unknown payment method
        NotFoundError: invoice missing
        ConflictError: invoice cancelled
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError("amount_cents must be an integer number of cents")
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be positive")
    require_choice(payment_method, PAYMENT_METHODS, "payment_method")

    def _op():
        invoice = _lock_invoice(invoice_id)
        if invoice.status == INVOICE_STATUS_CANCELLED:
            raise ConflictError("Cannot add payment to a cancelled invoice")

        _append_payment(
            invoice,
            amount_cents=amount_cents,
            payment_method=payment_method,
            payment_date=payment_date or today(),
            reference_number=reference_number,
            notes=notes,
            actor_id=actor_id,
        )
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    if invoice.overpaid_cents:
        logger.warning(
            "Invoice %s over-paid by %d cents (paid %d of %d)",
            invoice.invoice_number,
            invoice.overpaid_cents,
            invoice.paid_amount_cents,
            invoice.total_amount_cents,
        )
    return invoice


def update_invoice(invoice_id: int, patch: dict, actor_id: int | None = None) -> Invoice:
    """
    Restricted update. Setting status "paid" on an invoice with a balance
    records a balancing payment, so paid_amount stays the sum of payments.
    """
    unknown = set(patch) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
    status = patch.get("status")
    if status is not None:
        require_choice(status, INVOICE_STATUSES, "status")
    if patch.get("payment_method") is not None:
        require_choice(patch["payment_method"], PAYMENT_METHODS, "payment_method")

    def _op():
        invoice = _lock_invoice(invoice_id)

        if "notes" in patch:
            invoice.notes = patch["notes"]
        if patch.get("payment_method") is not None:
            invoice.payment_method = patch["payment_method"]

        if status is not None and status != invoice.status:
            if status == INVOICE_STATUS_PAID:
                balance = invoice.balance_due_cents
                if balance > 0:
                    _append_payment(
                        invoice,
                        amount_cents=balance,
                        payment_method=patch.get("payment_method") or invoice.payment_method or "other",
                        payment_date=patch.get("payment_date") or today(),
                        reference_number=None,
                        notes="Balance settled on status change",
                        actor_id=actor_id,
                    )
                invoice.status = INVOICE_STATUS_PAID
            elif status == INVOICE_STATUS_CANCELLED:
                if invoice.payments:
                    raise ConflictError("Invoices with payments cannot be cancelled")
                invoice.status = INVOICE_STATUS_CANCELLED
            else:
                if invoice.paid_amount_cents >= invoice.total_amount_cents and invoice.total_amount_cents > 0:
                    raise ConflictError("Fully paid invoices cannot be reopened")
                invoice.status = status

        if patch.get("payment_date") is not None and invoice.paid_amount_cents > 0:
            invoice.payment_date = patch["payment_date"]

        db.session.commit()
        return invoice

    return run_with_retry(_op)


def delete_invoice(invoice_id: int) -> None:
    """
    Delete an invoice without payments. Its source work order goes back to
    "completed" so it can be invoiced again.
    """
    def _op():
        invoice = _lock_invoice(invoice_id)
        if invoice.payments:
            raise ConflictError("Invoices with payments cannot be deleted")

        if invoice.work_order_id is not None:
            wo = lock_for_update(db.session.query(WorkOrder).filter_by(id=invoice.work_order_id)).first()
            if wo is not None:
                wo.status = WO_STATUS_COMPLETED

        for line in list(invoice.items):
            db.session.delete(line)
        db.session.delete(invoice)
        db.session.commit()

    run_with_retry(_op)


def mark_overdue(as_of: date | None = None) -> int:
    """Flag pending/partial invoices whose due date has passed. Returns the count."""
    as_of = as_of or today()

    def _op():
        rows = (
            db.session.query(Invoice)
            .filter(
                Invoice.status.in_([INVOICE_STATUS_PENDING, INVOICE_STATUS_PARTIAL]),
                Invoice.due_date.isnot(None),
                Invoice.due_date < as_of,
            )
            .all()
        )
        for invoice in rows:
            invoice.status = INVOICE_STATUS_OVERDUE
        db.session.commit()
        return len(rows)

    count = run_with_retry(_op)
    if count:
        logger.info("Marked %d invoice(s) overdue as of %s", count, as_of.isoformat())
    return count
