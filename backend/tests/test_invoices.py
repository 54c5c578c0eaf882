"""
Invoices and payments.

Verifies:
- Work order conversion copies lines and totals and marks the order invoiced
- A work order can be invoiced once (second attempt is a conflict)
- Manual invoices with services and discount
- Payments accumulate into paid_amount and drive the status
- Cancellation, deletion and overdue marking rules
"""

from datetime import date, datetime

import pytest

from mimecanico.errors import ConflictError, NotFoundError, ValidationError
from mimecanico.extensions import db
from mimecanico.models import Invoice, InvoiceItem, Payment, WorkOrder
from mimecanico.services import document_service, invoice_service
from mimecanico.services.document_service import KIND_INVOICE, KIND_WORK_ORDER

JAN_2025 = datetime(2025, 1, 15, 9, 30)


@pytest.fixture
def work_order(db_session, workshop_client, vehicle, brake_pads):
    """2 x 1500 parts + 1.5 h x 2000 labor = 6000 + 720 tax = 6720."""
    return document_service.create_document(
        KIND_WORK_ORDER,
        {"client_id": workshop_client.id, "vehicle_id": vehicle.id},
        items=[{"inventory_item_id": brake_pads.id, "quantity": 2}],
        services=[{"description": "Brake service", "hours": "1.5", "rate_cents": 2000}],
        now=JAN_2025,
    )


@pytest.fixture
def invoice(work_order):
    return document_service.create_invoice_from_work_order(work_order.id, now=JAN_2025)


def test_conversion_copies_lines_and_totals(invoice, work_order):
    assert invoice.invoice_number == "INV-202501-0001"
    assert invoice.work_order_id == work_order.id
    assert invoice.client_id == work_order.client_id
    assert invoice.issue_date == date(2025, 1, 15)
    assert invoice.due_date == date(2025, 2, 14)
    assert invoice.status == "pending"
    assert invoice.paid_amount_cents == 0
    assert (invoice.subtotal_cents, invoice.tax_amount_cents, invoice.total_amount_cents) == (6000, 720, 6720)

    lines = [(l.description, l.quantity, l.unit_price_cents, l.total_cents) for l in invoice.items]
    assert lines[0][1:] == (2, 1500, 3000)
    assert lines[0][0] == "Brake pads"
    assert lines[1] == ("Brake service (1.50 hrs)", 1, 3000, 3000)

    wo = db.session.get(WorkOrder, work_order.id)
    assert wo.status == "invoiced"


def test_second_conversion_conflicts(invoice, work_order):
    with pytest.raises(ConflictError):
        document_service.create_invoice_from_work_order(work_order.id, now=JAN_2025)
    assert Invoice.query.count() == 1


def test_convert_missing_or_cancelled_work_order(db_session, workshop_client, vehicle):
    with pytest.raises(NotFoundError):
        document_service.create_invoice_from_work_order(424242)

    wo = document_service.create_document(
        KIND_WORK_ORDER, {"client_id": workshop_client.id, "vehicle_id": vehicle.id}, now=JAN_2025
    )
    from mimecanico.services import work_order_service
    work_order_service.update_work_order(wo.id, {"status": "cancelled"})
    with pytest.raises(ConflictError):
        document_service.create_invoice_from_work_order(wo.id)
    assert Invoice.query.count() == 0


def test_payments_accumulate(invoice):
    after_first = invoice_service.add_payment(invoice.id, amount_cents=4000, payment_method="cash")
    assert after_first.paid_amount_cents == 4000
    assert after_first.status == "partial"
    assert after_first.balance_due_cents == 2720

    after_second = invoice_service.add_payment(invoice.id, amount_cents=6720, payment_method="card")
    assert after_second.paid_amount_cents == 10720
    assert after_second.status == "paid"
    assert after_second.balance_due_cents == 0
    assert after_second.overpaid_cents == 4000
    assert after_second.payment_method == "card"
    assert Payment.query.filter_by(invoice_id=invoice.id).count() == 2


def test_exact_payment_marks_paid(invoice):
    paid = invoice_service.add_payment(
        invoice.id, amount_cents=6720, payment_method="transfer", payment_date=date(2025, 1, 20)
    )
    assert paid.status == "paid"
    assert paid.payment_date == date(2025, 1, 20)


@pytest.mark.parametrize(
    "amount,method",
    [(0, "cash"), (-100, "cash"), (10.5, "cash"), (True, "cash"), (100, "bitcoin")],
)
def test_invalid_payments(invoice, amount, method):
    with pytest.raises(ValidationError):
        invoice_service.add_payment(invoice.id, amount_cents=amount, payment_method=method)
    assert Payment.query.count() == 0


def test_payment_on_cancelled_invoice(invoice):
    invoice_service.update_invoice(invoice.id, {"status": "cancelled"})
    with pytest.raises(ConflictError):
        invoice_service.add_payment(invoice.id, amount_cents=100, payment_method="cash")


def test_setting_paid_records_balancing_payment(invoice):
    invoice_service.add_payment(invoice.id, amount_cents=1000, payment_method="cash")
    updated = invoice_service.update_invoice(invoice.id, {"status": "paid", "payment_method": "card"})

    assert updated.status == "paid"
    assert updated.paid_amount_cents == 6720
    amounts = [p.amount_cents for p in Payment.query.filter_by(invoice_id=invoice.id).order_by(Payment.id)]
    assert amounts == [1000, 5720]


def test_cannot_cancel_or_delete_with_payments(invoice):
    invoice_service.add_payment(invoice.id, amount_cents=100, payment_method="cash")
    with pytest.raises(ConflictError):
        invoice_service.update_invoice(invoice.id, {"status": "cancelled"})
    with pytest.raises(ConflictError):
        invoice_service.delete_invoice(invoice.id)


def test_delete_reopens_work_order(invoice, work_order):
    invoice_service.delete_invoice(invoice.id)
    assert Invoice.query.count() == 0
    assert InvoiceItem.query.count() == 0
    assert db.session.get(WorkOrder, work_order.id).status == "completed"

    again = document_service.create_invoice_from_work_order(work_order.id, now=JAN_2025)
    assert again.invoice_number == "INV-202501-0002"


def test_mark_overdue(invoice):
    assert invoice_service.mark_overdue(date(2025, 2, 14)) == 0
    assert invoice_service.mark_overdue(date(2025, 2, 15)) == 1
    assert db.session.get(Invoice, invoice.id).status == "overdue"

    # A partial payment on an overdue invoice moves it to partial
    assert invoice_service.add_payment(invoice.id, amount_cents=100, payment_method="cash").status == "partial"


def test_manual_invoice_with_services_and_discount(db_session, workshop_client):
    inv = document_service.create_document(
        KIND_INVOICE,
        {"client_id": workshop_client.id, "discount_amount_cents": 500, "issue_date": "2025-03-01"},
        items=[{"description": "Wiper blades", "quantity": 2, "unit_price_cents": 2500}],
        services=[{"description": "Fitting", "hours": "0.5", "rate_cents": 2000}],
        now=JAN_2025,
    )
    assert inv.invoice_number == "INV-202501-0001"
    assert inv.work_order_id is None
    assert inv.issue_date == date(2025, 3, 1)
    assert inv.due_date == date(2025, 3, 31)
    assert inv.subtotal_cents == 6000
    assert inv.tax_amount_cents == 720
    assert inv.discount_amount_cents == 500
    assert inv.total_amount_cents == 6220
    assert [l.description for l in inv.items] == ["Wiper blades", "Fitting (0.50 hrs)"]


def test_manual_invoice_requires_items(db_session, workshop_client):
    with pytest.raises(ValidationError):
        document_service.create_document(KIND_INVOICE, {"client_id": workshop_client.id}, items=[])
    with pytest.raises(ValidationError):
        document_service.create_document(
            KIND_INVOICE,
            {"client_id": workshop_client.id, "discount_amount_cents": 999999},
            items=[{"description": "Bulb", "quantity": 1, "unit_price_cents": 300}],
        )
    assert Invoice.query.count() == 0


# =============================================================================
# HTTP
# =============================================================================


class TestInvoiceRoutes:
    def test_convert_then_pay(self, client, receptionist_headers, work_order):
        resp = client.post(f"/api/invoices/from-work-order/{work_order.id}", headers=receptionist_headers)
        assert resp.status_code == 201, resp.json
        data = resp.json["data"]
        assert data["total_amount_cents"] == 6720
        assert data["work_order_number"] == work_order.order_number
        assert len(data["items"]) == 2

        again = client.post(f"/api/invoices/from-work-order/{work_order.id}", headers=receptionist_headers)
        assert again.status_code == 409

        pay = client.post(
            f"/api/invoices/{data['id']}/payments",
            json={"amount_cents": 6720, "payment_method": "cash", "payment_date": "2025-01-20"},
            headers=receptionist_headers,
        )
        assert pay.status_code == 201, pay.json
        assert pay.json["data"]["status"] == "paid"
        assert pay.json["data"]["payments"][0]["amount_cents"] == 6720

    def test_mechanic_cannot_invoice(self, client, mechanic_headers, work_order):
        resp = client.post(f"/api/invoices/from-work-order/{work_order.id}", headers=mechanic_headers)
        assert resp.status_code == 403

    def test_payment_requires_amount(self, client, admin_headers, invoice):
        resp = client.post(f"/api/invoices/{invoice.id}/payments", json={"payment_method": "cash"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["success"] is False

    def test_client_sees_only_own_invoices(self, client, client_headers, other_client, invoice):
        from conftest import auth_headers, token_for

        resp = client.get("/api/invoices", headers=client_headers)
        assert resp.json["count"] == 1

        other_headers = auth_headers(token_for(other_client.user))
        assert client.get("/api/invoices", headers=other_headers).json["count"] == 0
        assert client.get(f"/api/invoices/{invoice.id}", headers=other_headers).status_code == 403

    def test_manual_create(self, client, admin_headers, workshop_client):
        resp = client.post(
            "/api/invoices",
            json={
                "client_id": workshop_client.id,
                "items": [{"description": "Battery", "quantity": 1, "unit_price_cents": 10000}],
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201, resp.json
        assert resp.json["data"]["total_amount_cents"] == 11200
