from __future__ import annotations

from ..extensions import db
from mimecanico.time_utils import to_utc_z

ROLE_ADMIN = "admin"
ROLE_RECEPTIONIST = "receptionist"
ROLE_MECHANIC = "mechanic"
ROLE_CLIENT = "client"

VALID_ROLES = (ROLE_ADMIN, ROLE_RECEPTIONIST, ROLE_MECHANIC, ROLE_CLIENT)
STAFF_ROLES = (ROLE_ADMIN, ROLE_RECEPTIONIST, ROLE_MECHANIC)


class User(db.Model):
    """
    User accounts for authentication and attribution.

    Staff (admin, receptionist, mechanic) and workshop clients share this
    table; a client user additionally owns one ``Client`` row.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(64), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=False, unique=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(32), nullable=True)

    role = db.Column(db.String(16), nullable=False, default=ROLE_CLIENT, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class RevokedToken(db.Model):
    """
    JWT ids revoked by logout.

    Tokens are stateless; this is the only server-side record of them.
    """
    __tablename__ = "revoked_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    jti = db.Column(db.String(64), nullable=False, unique=True, index=True)
    token_type = db.Column(db.String(16), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
