from __future__ import annotations

from ..extensions import db
from mimecanico.time_utils import to_utc_z


class Client(db.Model):
    """Workshop customer. Identity and contact details live on the linked User."""
    __tablename__ = "clients"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    company_name = db.Column(db.String(200), nullable=True)
    tax_id = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(100), nullable=True)
    zip_code = db.Column(db.String(20), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("client", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        user = self.user
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": user.username if user else None,
            "email": user.email if user else None,
            "first_name": user.first_name if user else None,
            "last_name": user.last_name if user else None,
            "phone": user.phone if user else None,
            "is_active": user.is_active if user else None,
            "company_name": self.company_name,
            "tax_id": self.tax_id,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class Vehicle(db.Model):
    __tablename__ = "vehicles"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    # Vehicles may be registered before an owner is known
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True, index=True)

    plate_number = db.Column(db.String(20), nullable=False, unique=True, index=True)
    brand = db.Column(db.String(64), nullable=False)
    model = db.Column(db.String(64), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    vin = db.Column(db.String(32), nullable=True)
    color = db.Column(db.String(32), nullable=True)
    mileage = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    client = db.relationship("Client", backref=db.backref("vehicles", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "plate_number": self.plate_number,
            "brand": self.brand,
            "model": self.model,
            "year": self.year,
            "vin": self.vin,
            "color": self.color,
            "mileage": self.mileage,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
