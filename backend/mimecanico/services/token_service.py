# Overview: Service-layer operations for JWT access/refresh tokens and revocation.

"""
Token Management Service

Access and refresh tokens are signed JWTs (python-jose). Claims:
- sub: user id (string)
- role: user's role at issue time
- type: "access" or "refresh"
- jti: random id, the handle for revocation
- iat / exp

Tokens are stateless except for revocation: logout stores the jti in
revoked_tokens, and validation rejects any listed jti.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app
from jose import ExpiredSignatureError, JWTError, jwt

from ..extensions import db
from ..errors import AuthError
from ..models import RevokedToken, User
from mimecanico.time_utils import utcnow
from .concurrency import run_with_retry

TOKEN_ACCESS = "access"
TOKEN_REFRESH = "refresh"


@dataclass
class TokenContext:
    """Result of a successful token validation."""
    user: User
    claims: dict

    @property
    def jti(self) -> str:
        return self.claims["jti"]


def _encode(user: User, token_type: str) -> str:
    config = current_app.config
    lifetime = config["JWT_ACCESS_EXPIRES"] if token_type == TOKEN_ACCESS else config["JWT_REFRESH_EXPIRES"]
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user.id),
        "role": user.role,
        "type": token_type,
        "jti": uuid.uuid4().hex,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(claims, config["JWT_SECRET"], algorithm=config["JWT_ALGORITHM"])


def issue_tokens(user: User) -> dict:
    """Return a fresh access/refresh pair for the user."""
    return {
        "token": _encode(user, TOKEN_ACCESS),
        "refresh_token": _encode(user, TOKEN_REFRESH),
        "token_type": "Bearer",
        "expires_in": int(current_app.config["JWT_ACCESS_EXPIRES"].total_seconds()),
    }


def decode_token(token: str) -> dict:
    """Verify signature and expiry. Raises AuthError."""
    config = current_app.config
    try:
        return jwt.decode(token, config["JWT_SECRET"], algorithms=[config["JWT_ALGORITHM"]])
    except ExpiredSignatureError:
        raise AuthError("Token expired, please log in again")
    except JWTError:
        raise AuthError("Invalid token")


def is_revoked(jti: str) -> bool:
    return db.session.query(RevokedToken.id).filter_by(jti=jti).first() is not None


def validate_token(token: str, expected_type: str = TOKEN_ACCESS) -> TokenContext:
    """
    Validate a bearer token and load its user.

    Raises AuthError if the token is malformed, expired, of the wrong type,
    revoked, or if its user is missing or deactivated.
    """
    claims = decode_token(token)

    if claims.get("type") != expected_type:
        raise AuthError("Invalid token type")
    jti = claims.get("jti")
    if not jti or is_revoked(jti):
        raise AuthError("Token has been revoked")

    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError):
        raise AuthError("Invalid token")

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise AuthError("User not found or inactive")

    return TokenContext(user=user, claims=claims)


def revoke(claims: dict, user_id: int | None = None) -> None:
    """Record a token's jti as revoked. Revoking twice is a no-op."""
    jti = claims.get("jti")
    if not jti:
        return
    exp = claims.get("exp")
    expires_at = datetime.fromtimestamp(exp, tz=timezone.utc).replace(tzinfo=None) if exp else None

    def _op():
        if is_revoked(jti):
            return
        db.session.add(RevokedToken(
            jti=jti,
            token_type=claims.get("type") or TOKEN_ACCESS,
            user_id=user_id,
            expires_at=expires_at,
        ))
        db.session.commit()

    run_with_retry(_op)


def refresh(refresh_token: str) -> dict:
    """Exchange a refresh token for a new access token. The refresh token stays valid."""
    ctx = validate_token(refresh_token, expected_type=TOKEN_REFRESH)
    return {
        "token": _encode(ctx.user, TOKEN_ACCESS),
        "token_type": "Bearer",
        "expires_in": int(current_app.config["JWT_ACCESS_EXPIRES"].total_seconds()),
    }


def purge_expired_revocations(now: datetime | None = None) -> int:
    """Drop revocation rows whose token has expired anyway."""
    now = now or utcnow()

    def _op():
        count = (
            db.session.query(RevokedToken)
            .filter(RevokedToken.expires_at.isnot(None), RevokedToken.expires_at < now)
            .delete(synchronize_session=False)
        )
        db.session.commit()
        return count

    return run_with_retry(_op)
