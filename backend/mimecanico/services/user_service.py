# Overview: Service-layer operations for user administration.

from __future__ import annotations

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Client, User
from ..models.auth import ROLE_CLIENT, VALID_ROLES
from ..validation import require_choice
from .concurrency import run_with_retry

SELF_EDITABLE_FIELDS = {"email", "first_name", "last_name", "phone"}
ADMIN_EDITABLE_FIELDS = SELF_EDITABLE_FIELDS | {"role", "is_active"}


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def list_users(*, role: str | None = None, active: bool | None = None) -> list[User]:
    q = User.query
    if role:
        q = q.filter(User.role == role)
    if active is not None:
        q = q.filter(User.is_active == active)
    return q.order_by(User.created_at.desc(), User.id.desc()).all()


def update_user(user_id: int, patch: dict, *, as_admin: bool) -> User:
    allowed = ADMIN_EDITABLE_FIELDS if as_admin else SELF_EDITABLE_FIELDS
    unknown = set(patch) - allowed
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
    if not patch:
        raise ValidationError("No fields to update")
    if patch.get("role") is not None:
        require_choice(patch["role"], VALID_ROLES, "role")

    def _op():
        user = get_user(user_id)

        email = patch.get("email")
        if email is not None:
            email = email.strip().lower()
            taken = User.query.filter(User.email == email, User.id != user.id).first()
            if taken:
                raise ConflictError("Email already in use")
            user.email = email

        for k in ("first_name", "last_name", "phone", "role", "is_active"):
            if k in patch:
                setattr(user, k, patch[k])

        # A user switched to the client role needs its Client row
        if user.role == ROLE_CLIENT and Client.query.filter_by(user_id=user.id).first() is None:
            db.session.add(Client(user_id=user.id))

        db.session.commit()
        return user

    return run_with_retry(_op)


def delete_user(user_id: int, *, acting_user_id: int) -> None:
    if user_id == acting_user_id:
        raise ConflictError("You cannot delete your own account")

    def _op():
        user = get_user(user_id)
        client = Client.query.filter_by(user_id=user.id).first()
        if client is not None:
            raise ConflictError("User owns a client record; delete the client instead")
        db.session.delete(user)
        db.session.commit()

    run_with_retry(_op)
