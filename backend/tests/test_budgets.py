"""
Budgets (quotes).

Verifies:
- Budgets get BUD numbers and totals, and never touch inventory
- Part and service lines are stored with their type
- Restricted updates and status choices
"""

from datetime import date, datetime

import pytest

from mimecanico.errors import NotFoundError, ValidationError
from mimecanico.models import Budget, BudgetItem, InventoryTransaction
from mimecanico.services import budget_service, document_service
from mimecanico.services.document_service import KIND_BUDGET

JAN_2025 = datetime(2025, 1, 15, 9, 30)


def _create_budget(workshop_client, **header):
    return document_service.create_document(
        KIND_BUDGET,
        {"client_id": workshop_client.id, **header},
        items=[{"description": "Timing belt", "quantity": 1, "unit_price_cents": 12000}],
        services=[{"description": "Belt replacement", "hours": "2.5", "rate_cents": 2000}],
        now=JAN_2025,
    )


def test_create_budget(db_session, workshop_client, vehicle, brake_pads):
    before = InventoryTransaction.query.count()

    budget = _create_budget(
        workshop_client, vehicle_id=vehicle.id, description="Timing belt kit", valid_until="2025-02-15"
    )

    assert budget.budget_number == "BUD-202501-0001"
    assert budget.status == "draft"
    assert budget.valid_until == date(2025, 2, 15)
    assert budget.subtotal_cents == 17000
    assert budget.tax_amount_cents == 2040
    assert budget.total_amount_cents == 19040

    types = [(line.item_type, line.total_cents) for line in budget.items]
    assert types == [("part", 12000), ("service", 5000)]
    assert budget.items[1].to_dict()["quantity"] == "2.50"

    assert InventoryTransaction.query.count() == before


def test_vehicle_is_optional(db_session, workshop_client):
    budget = _create_budget(workshop_client)
    assert budget.vehicle_id is None


def test_missing_client(db_session):
    with pytest.raises(NotFoundError):
        document_service.create_document(
            KIND_BUDGET,
            {"client_id": 999},
            items=[{"description": "Tyre", "quantity": 1, "unit_price_cents": 100}],
        )
    assert Budget.query.count() == 0


def test_update_and_delete(db_session, workshop_client):
    budget = _create_budget(workshop_client)

    updated = budget_service.update_budget(budget.id, {"status": "approved", "notes": "Approved by phone"})
    assert updated.status == "approved"
    assert updated.notes == "Approved by phone"

    with pytest.raises(ValidationError):
        budget_service.update_budget(budget.id, {"status": "maybe"})
    with pytest.raises(ValidationError):
        budget_service.update_budget(budget.id, {"total_amount_cents": 0})

    budget_service.delete_budget(budget.id)
    assert Budget.query.count() == 0
    assert BudgetItem.query.count() == 0
    with pytest.raises(NotFoundError):
        budget_service.get_budget(budget.id)


class TestBudgetRoutes:
    def test_create_via_api(self, client, receptionist_headers, workshop_client):
        resp = client.post(
            "/api/budgets",
            json={
                "client_id": workshop_client.id,
                "items": [{"description": "Spark plugs", "quantity": 4, "unit_price_cents": 800}],
            },
            headers=receptionist_headers,
        )
        assert resp.status_code == 201, resp.json
        assert resp.json["data"]["total_amount_cents"] == 3584
        assert len(resp.json["data"]["items"]) == 1

    def test_client_sees_own_budgets(self, client, client_headers, workshop_client, other_client):
        _create_budget(workshop_client)
        _create_budget(other_client)
        resp = client.get("/api/budgets", headers=client_headers)
        assert resp.status_code == 200
        assert resp.json["count"] == 1
        assert resp.json["data"][0]["client_id"] == workshop_client.id

    def test_update_status_via_api(self, client, admin_headers, workshop_client):
        budget = _create_budget(workshop_client)
        resp = client.put(
            f"/api/budgets/{budget.id}",
            json={"status": "sent", "valid_until": "2025-03-01"},
            headers=admin_headers,
        )
        assert resp.status_code == 200, resp.json
        assert resp.json["data"]["status"] == "sent"
        assert resp.json["data"]["valid_until"] == "2025-03-01"

    def test_only_admin_deletes(self, client, receptionist_headers, admin_headers, workshop_client):
        budget = _create_budget(workshop_client)
        assert client.delete(f"/api/budgets/{budget.id}", headers=receptionist_headers).status_code == 403
        assert client.delete(f"/api/budgets/{budget.id}", headers=admin_headers).status_code == 200
