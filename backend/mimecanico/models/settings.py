from __future__ import annotations

from ..extensions import db
from mimecanico.time_utils import to_utc_z

PARAM_TYPES = ("string", "number", "boolean", "json")


class SystemParameter(db.Model):
    """
    Typed key/value workshop settings (company name, tax label, ...).

    param_value is always stored as text; param_type says how to decode it.
    Parameters with editable=False can be neither changed nor deleted.
    """
    __tablename__ = "system_parameters"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    param_key = db.Column(db.String(100), nullable=False, unique=True, index=True)
    param_value = db.Column(db.Text, nullable=False)
    param_type = db.Column(db.String(16), nullable=False, default="string")
    description = db.Column(db.String(255), nullable=True)
    category = db.Column(db.String(64), nullable=True, index=True)
    editable = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "param_key": self.param_key,
            "param_value": self.param_value,
            "param_type": self.param_type,
            "description": self.description,
            "category": self.category,
            "editable": self.editable,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }
