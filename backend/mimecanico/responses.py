# Overview: JSON response envelope helpers shared by all blueprints.

from flask import jsonify

from .errors import WorkshopError


def ok(data=None, status: int = 200, **extra):
    body = {"success": True}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return jsonify(body), status


def ok_list(rows: list, **extra):
    return ok(rows, count=len(rows), **extra)


def fail(message: str, status: int, details: dict | None = None):
    body = {"success": False, "message": message}
    if details:
        body["details"] = details
    return jsonify(body), status


def from_error(exc: WorkshopError):
    return jsonify(exc.to_dict()), exc.status_code
