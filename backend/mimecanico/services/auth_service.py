# Overview: Service-layer operations for auth; password hashing, user accounts, credential checks.

"""
Authentication Service

Every write is attributed to a user, so every caller needs an account.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Tokens are issued separately (see token_service.py)
- A client user always owns exactly one Client row
"""

import bcrypt
import logging
import re

from ..extensions import db
from ..errors import AuthError, ConflictError, NotFoundError, PasswordValidationError, ValidationError
from ..models import Client, User
from ..models.auth import ROLE_CLIENT, VALID_ROLES
from mimecanico.time_utils import utcnow
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() compares in constant time. A malformed stored hash
    counts as a mismatch.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def _validate_identity(username: str, email: str, first_name: str, last_name: str) -> None:
    missing = [
        name for name, value in (
            ("username", username),
            ("email", email),
            ("first_name", first_name),
            ("last_name", last_name),
        )
        if not value or not str(value).strip()
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if not _EMAIL_RE.match(email):
        raise ValidationError("email is not a valid address")


def create_user(
    username: str,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    *,
    phone: str | None = None,
    role: str = ROLE_CLIENT,
    client_fields: dict | None = None,
) -> User:
    """
    Create a user with a bcrypt password hash.

    A client-role user gets its Client row in the same transaction.

    Raises:
        ValidationError: missing fields, bad email, unknown role
        PasswordValidationError: weak password
        ConflictError: username or email already taken
    """
    _validate_identity(username, email, first_name, last_name)
    if role not in VALID_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(VALID_ROLES)}")

    # Hash password with bcrypt (validates strength automatically)
    password_hash = hash_password(password)
    username = username.strip()
    email = email.strip().lower()

    def _op():
        existing = db.session.query(User).filter(
            db.or_(User.username == username, User.email == email)
        ).first()
        if existing:
            raise ConflictError("Username or email already exists")

        user = User(
            username=username,
            email=email,
            password_hash=password_hash,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            phone=phone,
            role=role,
            is_active=True,
        )
        db.session.add(user)
        db.session.flush()

        if role == ROLE_CLIENT:
            db.session.add(Client(user_id=user.id, **(client_fields or {})))

        db.session.commit()
        return user

    user = run_with_retry(_op)
    logger.info("User %s created with role %s", user.username, user.role)
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate user with username (or email) and password.

    Returns User if credentials valid and the account is active, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    if not username or not password:
        return None

    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username.lower()),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def change_password(user_id: int, current_password: str, new_password: str) -> None:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if not verify_password(current_password, user.password_hash):
        raise AuthError("Current password is incorrect")
    set_password(user_id, new_password)


def set_password(user_id: int, new_password: str) -> User:
    """Replace a user's password (admin reset or after verifying the old one)."""
    password_hash = hash_password(new_password)

    def _op():
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        user.password_hash = password_hash
        db.session.commit()
        return user

    return run_with_retry(_op)
