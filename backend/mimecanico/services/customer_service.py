# Overview: Service-layer operations for clients and vehicles.

from __future__ import annotations

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Budget, Client, Invoice, User, Vehicle, WorkOrder
from .auth_service import create_user
from .concurrency import lock_for_update, run_with_retry

CLIENT_FIELDS = {"company_name", "tax_id", "address", "city", "state", "zip_code", "notes"}
CLIENT_USER_FIELDS = {"first_name", "last_name", "phone", "email"}


# =============================================================================
# Clients
# =============================================================================

def get_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client not found")
    return client


def get_client_for_user(user_id: int) -> Client | None:
    return Client.query.filter_by(user_id=user_id).first()


def list_clients(*, search: str | None = None) -> list[Client]:
    q = Client.query.join(User, User.id == Client.user_id)
    if search:
        pattern = f"%{search}%"
        q = q.filter(db.or_(
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
            User.email.ilike(pattern),
            Client.company_name.ilike(pattern),
            Client.tax_id.ilike(pattern),
        ))
    return q.order_by(User.last_name.asc(), User.first_name.asc(), Client.id.asc()).all()


def create_client(payload: dict) -> Client:
    """
    Create a client together with its login user (role "client").

    payload carries the user fields (username, email, password, first_name,
    last_name, phone) plus any of CLIENT_FIELDS.
    """
    client_fields = {k: payload[k] for k in CLIENT_FIELDS if payload.get(k) is not None}
    user = create_user(
        payload.get("username"),
        payload.get("email"),
        payload.get("password"),
        payload.get("first_name"),
        payload.get("last_name"),
        phone=payload.get("phone"),
        client_fields=client_fields,
    )
    return get_client_for_user(user.id)


def update_client(client_id: int, patch: dict) -> Client:
    unknown = set(patch) - CLIENT_FIELDS - CLIENT_USER_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    def _op():
        client = lock_for_update(db.session.query(Client).filter_by(id=client_id)).first()
        if client is None:
            raise NotFoundError("Client not found")

        email = patch.get("email")
        if email is not None:
            email = email.strip().lower()
            taken = User.query.filter(User.email == email, User.id != client.user_id).first()
            if taken:
                raise ConflictError("Email already in use")
            client.user.email = email

        for k in CLIENT_USER_FIELDS - {"email"}:
            if k in patch:
                setattr(client.user, k, patch[k])
        for k in CLIENT_FIELDS:
            if k in patch:
                setattr(client, k, patch[k])

        db.session.commit()
        return client

    return run_with_retry(_op)


def delete_client(client_id: int) -> None:
    """Delete a client and its user. Refused while documents reference it."""
    def _op():
        client = lock_for_update(db.session.query(Client).filter_by(id=client_id)).first()
        if client is None:
            raise NotFoundError("Client not found")

        for model in (WorkOrder, Budget, Invoice):
            if db.session.query(model.id).filter_by(client_id=client.id).first():
                raise ConflictError("Client has documents and cannot be deleted")

        for vehicle in list(client.vehicles):
            vehicle.client_id = None

        user = client.user
        db.session.delete(client)
        db.session.flush()
        if user is not None:
            db.session.delete(user)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# Vehicles
# =============================================================================

def get_vehicle(vehicle_id: int) -> Vehicle:
    vehicle = db.session.get(Vehicle, vehicle_id)
    if vehicle is None:
        raise NotFoundError("Vehicle not found")
    return vehicle


def list_vehicles(*, client_id: int | None = None, search: str | None = None) -> list[Vehicle]:
    q = Vehicle.query
    if client_id is not None:
        q = q.filter(Vehicle.client_id == client_id)
    if search:
        pattern = f"%{search}%"
        q = q.filter(db.or_(
            Vehicle.plate_number.ilike(pattern),
            Vehicle.brand.ilike(pattern),
            Vehicle.model.ilike(pattern),
        ))
    return q.order_by(Vehicle.plate_number.asc()).all()


def _ensure_plate_free(plate_number: str, exclude_id: int | None = None) -> None:
    q = Vehicle.query.filter(Vehicle.plate_number == plate_number)
    if exclude_id is not None:
        q = q.filter(Vehicle.id != exclude_id)
    if q.first():
        raise ConflictError("Plate number already exists")


def create_vehicle(patch: dict) -> Vehicle:
    def _op():
        _ensure_plate_free(patch["plate_number"])
        if patch.get("client_id") is not None:
            get_client(patch["client_id"])
        vehicle = Vehicle(**patch)
        db.session.add(vehicle)
        db.session.commit()
        return vehicle

    return run_with_retry(_op)


def update_vehicle(vehicle_id: int, patch: dict) -> Vehicle:
    if not patch:
        raise ValidationError("No fields to update")

    def _op():
        vehicle = lock_for_update(db.session.query(Vehicle).filter_by(id=vehicle_id)).first()
        if vehicle is None:
            raise NotFoundError("Vehicle not found")
        if "plate_number" in patch:
            _ensure_plate_free(patch["plate_number"], exclude_id=vehicle.id)
        if patch.get("client_id") is not None:
            get_client(patch["client_id"])
        for k, v in patch.items():
            setattr(vehicle, k, v)
        db.session.commit()
        return vehicle

    return run_with_retry(_op)


def associate_vehicle(vehicle_id: int, client_id: int) -> Vehicle:
    """Link a vehicle to its owner."""
    return update_vehicle(vehicle_id, {"client_id": client_id})


def delete_vehicle(vehicle_id: int) -> None:
    def _op():
        vehicle = lock_for_update(db.session.query(Vehicle).filter_by(id=vehicle_id)).first()
        if vehicle is None:
            raise NotFoundError("Vehicle not found")
        for model in (WorkOrder, Budget):
            if db.session.query(model.id).filter_by(vehicle_id=vehicle.id).first():
                raise ConflictError("Vehicle has documents and cannot be deleted")
        db.session.delete(vehicle)
        db.session.commit()

    run_with_retry(_op)
