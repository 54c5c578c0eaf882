# Overview: Service-layer operations for typed system parameters.

"""
System parameters are stored as text and decoded by param_type:

- string: as stored
- number: int when integral, float otherwise
- boolean: "true"/"1" -> True, anything else False
- json: json.loads, falling back to the raw text when it does not parse
"""

from __future__ import annotations

import json

from ..extensions import db
from ..errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..models import SystemParameter
from ..models.settings import PARAM_TYPES
from ..validation import require_choice
from .concurrency import run_with_retry

# Seeded by `flask system init`
DEFAULT_PARAMETERS = [
    ("company_name", "MiMecanico", "string", "Workshop name printed on documents", "company", True),
    ("company_tax_id", "", "string", "Workshop tax id", "company", True),
    ("tax_rate", "0.12", "number", "IVA rate applied at document creation", "billing", False),
    ("currency", "USD", "string", "Currency code", "billing", True),
    ("invoice_due_days", "30", "number", "Days until an invoice falls due", "billing", True),
    ("low_stock_alerts", "true", "boolean", "Flag items at or below minimum stock", "inventory", True),
]


def decode_value(param: SystemParameter):
    value = param.param_value
    if param.param_type == "number":
        try:
            number = float(value)
        except (TypeError, ValueError):
            return value
        return int(number) if number.is_integer() else number
    if param.param_type == "boolean":
        return value in ("true", "1")
    if param.param_type == "json":
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            return value
    return value


def encode_value(param_type: str, value) -> str:
    """Validate and serialize a value for storage. Raises ValidationError."""
    if param_type == "number":
        if isinstance(value, bool):
            raise ValidationError("Value must be a number")
        try:
            float(value)
        except (TypeError, ValueError):
            raise ValidationError("Value must be a number")
        return str(value)
    if param_type == "boolean":
        if isinstance(value, str):
            return "true" if value.strip().lower() in ("true", "1") else "false"
        return "true" if value else "false"
    if param_type == "json":
        if isinstance(value, str):
            try:
                json.loads(value)
            except ValueError:
                raise ValidationError("Invalid JSON value")
            return value
        return json.dumps(value)
    return "" if value is None else str(value)


def as_map(params: list[SystemParameter]) -> dict:
    return {p.param_key: decode_value(p) for p in params}


def list_parameters(*, category: str | None = None) -> list[SystemParameter]:
    q = SystemParameter.query
    if category:
        q = q.filter(SystemParameter.category == category)
    return q.order_by(SystemParameter.category.asc(), SystemParameter.param_key.asc()).all()


def get_parameter(key: str) -> SystemParameter:
    param = SystemParameter.query.filter_by(param_key=key).first()
    if param is None:
        raise NotFoundError("Parameter not found")
    return param


def create_parameter(
    param_key: str,
    param_value,
    *,
    param_type: str = "string",
    description: str | None = None,
    category: str | None = None,
    editable: bool = True,
) -> SystemParameter:
    if not param_key or param_value is None:
        raise ValidationError("Please provide param_key and param_value")
    require_choice(param_type, PARAM_TYPES, "param_type")
    stored = encode_value(param_type, param_value)

    def _op():
        if SystemParameter.query.filter_by(param_key=param_key).first():
            raise ConflictError("Parameter key already exists")
        param = SystemParameter(
            param_key=param_key,
            param_value=stored,
            param_type=param_type,
            description=description,
            category=category,
            editable=editable,
        )
        db.session.add(param)
        db.session.commit()
        return param

    return run_with_retry(_op)


def update_parameter(key: str, param_value, description: str | None = None) -> SystemParameter:
    def _op():
        param = get_parameter(key)
        if not param.editable:
            raise ForbiddenError("This parameter is not editable")
        param.param_value = encode_value(param.param_type, param_value)
        if description is not None:
            param.description = description
        db.session.commit()
        return param

    return run_with_retry(_op)


def delete_parameter(key: str) -> None:
    def _op():
        param = get_parameter(key)
        if not param.editable:
            raise ForbiddenError("This parameter cannot be deleted")
        db.session.delete(param)
        db.session.commit()

    run_with_retry(_op)


def seed_defaults() -> int:
    """Insert missing default parameters. Returns how many were added."""
    def _op():
        added = 0
        for key, value, ptype, desc, category, editable in DEFAULT_PARAMETERS:
            if SystemParameter.query.filter_by(param_key=key).first():
                continue
            db.session.add(SystemParameter(
                param_key=key,
                param_value=value,
                param_type=ptype,
                description=desc,
                category=category,
                editable=editable,
            ))
            added += 1
        db.session.commit()
        return added

    return run_with_retry(_op)
