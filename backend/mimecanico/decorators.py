# Overview: Request decorators for API routes: bearer-token authentication and role checks.

from functools import wraps
from flask import request, jsonify, g

from .errors import AuthError, ForbiddenError
from .services import token_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid access token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.token_claims: The decoded JWT claims

    Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - Refresh token used as access token
    - User account missing or deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({
                "success": False,
                "message": "Authentication required. Please log in.",
            }), 401

        try:
            context = token_service.validate_token(token)
        except AuthError as e:
            return jsonify(e.to_dict()), 401

        g.current_user = context.user
        g.token_claims = context.claims

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require the authenticated user's role to be one of roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"success": False, "message": "Authentication required"}), 401

            if g.current_user.role not in roles:
                return jsonify({
                    "success": False,
                    "message": f"User role '{g.current_user.role}' is not authorized to access this route",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def is_client_user() -> bool:
    return _is_authenticated() and g.current_user.role == "client"


def own_client_id() -> int | None:
    """Client id owned by the current client-role user, else None."""
    if not is_client_user():
        return None
    client = g.current_user.client
    return client.id if client is not None else -1


def ensure_client_access(client_id: int | None) -> None:
    """Client-role users may only touch records of their own client."""
    if is_client_user() and client_id != own_client_id():
        raise ForbiddenError("Not authorized to access this resource")
