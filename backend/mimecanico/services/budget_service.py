# Overview: Service-layer operations for budgets after creation.

from __future__ import annotations

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Budget
from ..models.documents import BUDGET_STATUSES
from ..validation import require_choice
from .concurrency import lock_for_update, run_with_retry

UPDATABLE_FIELDS = {"status", "description", "valid_until", "notes"}


def get_budget(budget_id: int) -> Budget:
    budget = db.session.get(Budget, budget_id)
    if budget is None:
        raise NotFoundError("Budget not found")
    return budget


def list_budgets(*, status: str | None = None, client_id: int | None = None) -> list[Budget]:
    q = Budget.query
    if status:
        q = q.filter(Budget.status == status)
    if client_id is not None:
        q = q.filter(Budget.client_id == client_id)
    return q.order_by(Budget.created_at.desc(), Budget.id.desc()).all()


def update_budget(budget_id: int, patch: dict) -> Budget:
    unknown = set(patch) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
    if patch.get("status") is not None:
        require_choice(patch["status"], BUDGET_STATUSES, "status")

    def _op():
        budget = lock_for_update(db.session.query(Budget).filter_by(id=budget_id)).first()
        if budget is None:
            raise NotFoundError("Budget not found")
        for k, v in patch.items():
            setattr(budget, k, v)
        db.session.commit()
        return budget

    return run_with_retry(_op)


def delete_budget(budget_id: int) -> None:
    def _op():
        budget = lock_for_update(db.session.query(Budget).filter_by(id=budget_id)).first()
        if budget is None:
            raise NotFoundError("Budget not found")
        for line in list(budget.items):
            db.session.delete(line)
        db.session.delete(budget)
        db.session.commit()

    run_with_retry(_op)
