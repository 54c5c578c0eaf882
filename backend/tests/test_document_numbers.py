"""
Document numbering.

Verifies:
- PREFIX-YYYYMM-NNNN format per document kind
- Numbers increase monotonically and reset per calendar year
- Kinds have independent counters
- Concurrent allocations and full document writes on a shared database never collide
- Only document-number collisions are retried; other integrity errors surface as StorageError
- A persistent number collision surfaces as ConflictError
"""

import threading
from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from mimecanico import create_app
from mimecanico.errors import ConflictError, StorageError
from mimecanico.extensions import db
from mimecanico.models import (
    Client,
    DocumentSequence,
    InventoryItem,
    Vehicle,
    WorkOrder,
    WorkOrderItem,
    WorkOrderService,
)
from mimecanico.models.auth import ROLE_CLIENT
from mimecanico.services import document_service, inventory_service
from mimecanico.services.concurrency import begin_write, run_with_retry
from mimecanico.services.document_service import (
    KIND_BUDGET,
    KIND_INVOICE,
    KIND_WORK_ORDER,
    format_document_number,
    is_number_collision,
    next_document_number,
)

from conftest import make_user

JAN_2025 = datetime(2025, 1, 15, 10, 0)


def _allocate(kind, now):
    def _op():
        begin_write()
        number = next_document_number(kind, now)
        db.session.commit()
        return number
    return run_with_retry(_op)


def test_format():
    assert format_document_number(KIND_WORK_ORDER, JAN_2025, 7) == "WO-202501-0007"
    assert format_document_number(KIND_BUDGET, datetime(2025, 11, 1), 12) == "BUD-202511-0012"
    assert format_document_number(KIND_INVOICE, JAN_2025, 12345) == "INV-202501-12345"


def test_numbers_are_monotonic(db_session):
    numbers = [_allocate(KIND_WORK_ORDER, JAN_2025) for _ in range(3)]
    assert numbers == ["WO-202501-0001", "WO-202501-0002", "WO-202501-0003"]


def test_month_in_number_follows_date_but_counter_is_yearly(db_session):
    assert _allocate(KIND_INVOICE, datetime(2025, 1, 31)) == "INV-202501-0001"
    assert _allocate(KIND_INVOICE, datetime(2025, 2, 1)) == "INV-202502-0002"


def test_counter_resets_each_year(db_session):
    assert _allocate(KIND_BUDGET, datetime(2024, 12, 31)) == "BUD-202412-0001"
    assert _allocate(KIND_BUDGET, datetime(2024, 12, 31)) == "BUD-202412-0002"
    assert _allocate(KIND_BUDGET, datetime(2025, 1, 1)) == "BUD-202501-0001"

    rows = DocumentSequence.query.filter_by(document_type=KIND_BUDGET).order_by(DocumentSequence.period_year).all()
    assert [(r.period_year, r.next_number) for r in rows] == [(2024, 3), (2025, 2)]


def test_kinds_have_independent_counters(db_session):
    assert _allocate(KIND_WORK_ORDER, JAN_2025) == "WO-202501-0001"
    assert _allocate(KIND_BUDGET, JAN_2025) == "BUD-202501-0001"
    assert _allocate(KIND_WORK_ORDER, JAN_2025) == "WO-202501-0002"


def test_rolled_back_allocation_is_not_consumed(db_session):
    db.session.rollback()
    next_document_number(KIND_WORK_ORDER, JAN_2025)
    db.session.rollback()
    assert _allocate(KIND_WORK_ORDER, JAN_2025) == "WO-202501-0001"


def test_persistent_collision_raises_conflict(db_session, monkeypatch, vehicle, workshop_client):
    header = {"client_id": workshop_client.id, "vehicle_id": vehicle.id}
    first = document_service.create_document(KIND_WORK_ORDER, header, now=JAN_2025)
    assert first.order_number == "WO-202501-0001"

    monkeypatch.setattr(document_service, "next_document_number", lambda kind, now=None: "WO-202501-0001")

    with pytest.raises(ConflictError):
        document_service.create_document(KIND_WORK_ORDER, header, now=JAN_2025)

    assert WorkOrder.query.count() == 1


def test_number_collision_detection():
    def _integrity(message):
        return IntegrityError("INSERT", {}, Exception(message))

    assert is_number_collision(_integrity("UNIQUE constraint failed: work_orders.order_number"))
    assert is_number_collision(_integrity(
        "UNIQUE constraint failed: document_sequences.document_type, document_sequences.period_year"
    ))
    assert is_number_collision(_integrity('duplicate key value violates unique constraint "uq_invoices_work_order"'))
    assert not is_number_collision(_integrity("NOT NULL constraint failed: work_orders.order_number"))
    assert not is_number_collision(_integrity("FOREIGN KEY constraint failed"))
    assert not is_number_collision(_integrity("UNIQUE constraint failed: vehicles.plate_number"))


def test_other_integrity_errors_are_not_retried(db_session, monkeypatch, vehicle, workshop_client):
    calls = []

    def _not_null(*args, **kwargs):
        calls.append(1)
        raise IntegrityError("INSERT INTO work_orders", {}, Exception("NOT NULL constraint failed: work_orders.client_id"))

    monkeypatch.setattr(document_service, "_insert_parent", _not_null)

    with pytest.raises(StorageError):
        document_service.create_document(
            KIND_WORK_ORDER, {"client_id": workshop_client.id, "vehicle_id": vehicle.id}, now=JAN_2025
        )

    assert len(calls) == 1
    assert WorkOrder.query.count() == 0
    assert DocumentSequence.query.count() == 0


def _file_app(tmp_path):
    db_path = tmp_path / "numbers.sqlite3"
    return create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30, "check_same_thread": False}},
    })


def test_concurrent_document_creation(tmp_path):
    """Full work order writes race on one file database: numbers, lines and stock stay consistent."""
    app = _file_app(tmp_path)
    with app.app_context():
        db.create_all()
        client_user = make_user("cliente", ROLE_CLIENT)
        client_id = Client.query.filter_by(user_id=client_user.id).one().id
        vehicle = Vehicle(client_id=client_id, plate_number="RACE-1", brand="Mazda", model="3", year=2020)
        db.session.add(vehicle)
        db.session.commit()
        vehicle_id = vehicle.id
        item_id = inventory_service.create_item({
            "code": "FLT-001",
            "name": "Oil filter",
            "unit_price_cents": 800,
            "stock_quantity": 100,
        }).id
        db.session.remove()

    threads_count = 4
    per_thread = 3
    results = []
    errors = []
    lock = threading.Lock()

    def worker():
        try:
            with app.app_context():
                for _ in range(per_thread):
                    wo = document_service.create_document(
                        KIND_WORK_ORDER,
                        {"client_id": client_id, "vehicle_id": vehicle_id},
                        items=[{"inventory_item_id": item_id, "quantity": 2}],
                        services=[{"description": "Oil change", "hours": "0.5", "rate_cents": 2000}],
                        now=JAN_2025,
                    )
                    with lock:
                        results.append(wo.order_number)
                db.session.remove()
        except Exception as exc:
            with lock:
                errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(threads_count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    total = threads_count * per_thread
    assert errors == []
    assert len(set(results)) == total

    with app.app_context():
        assert WorkOrder.query.count() == total
        assert WorkOrderItem.query.count() == total
        assert WorkOrderService.query.count() == total
        assert sorted(wo.order_number for wo in WorkOrder.query.all()) == sorted(results)
        assert all(wo.total_amount_cents == 2912 for wo in WorkOrder.query.all())
        assert db.session.get(InventoryItem, item_id).stock_quantity == 100 - 2 * total
        assert inventory_service.get_ledger_balance(item_id) == 100 - 2 * total
        db.session.remove()
        db.engine.dispose()


def test_concurrent_allocation_is_unique(tmp_path):
    """Threads share one file database; every number is handed out exactly once."""
    app = _file_app(tmp_path)
    with app.app_context():
        db.create_all()

    threads_count = 8
    per_thread = 5
    results = []
    errors = []
    lock = threading.Lock()

    def worker():
        try:
            with app.app_context():
                for _ in range(per_thread):
                    number = _allocate(KIND_INVOICE, JAN_2025)
                    with lock:
                        results.append(number)
                db.session.remove()
        except Exception as exc:
            with lock:
                errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(threads_count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    with app.app_context():
        db.session.remove()
        db.engine.dispose()

    assert errors == []
    total = threads_count * per_thread
    assert len(results) == total
    assert len(set(results)) == total
    assert sorted(int(n.rsplit("-", 1)[1]) for n in results) == list(range(1, total + 1))
