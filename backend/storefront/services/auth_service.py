# Overview: Service-layer operations for auth; password hashing, user creation, credential checks.

"""
Authentication Service

WHY: Every transition is attributed to an actor in the audit log, so every
request must resolve to a known user (or to the cron trigger).

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Session tokens managed separately (see session_service.py)
"""

import bcrypt

from ..errors import ValidationError
from ..extensions import db
from ..models import User


ROLE_CUSTOMER = "CUSTOMER"
ROLE_STAFF = "STAFF"
ROLE_ADMIN = "ADMIN"
ROLES = (ROLE_CUSTOMER, ROLE_STAFF, ROLE_ADMIN)

MIN_PASSWORD_LENGTH = 8


def validate_password_strength(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    name: str,
    email: str,
    password: str,
    role: str = ROLE_CUSTOMER,
    phone: str | None = None,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises:
        ValidationError: unknown role, duplicate email, weak password
    """
    email = (email or "").strip().lower()
    name = (name or "").strip()
    if not email or not name:
        raise ValidationError("name and email are required")
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role}")

    if db.session.query(User).filter_by(email=email).first():
        raise ValidationError("Email already registered")

    user = User(
        name=name,
        email=email,
        phone=phone,
        password_hash=hash_password(password),
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Return the active user matching the credentials, else None.

    WHY: Central authentication function; all login flows go through here.
    """
    email = (email or "").strip().lower()
    user = db.session.query(User).filter(User.email == email, User.is_active.is_(True)).first()
    if user is None:
        return None
    if not verify_password(password or "", user.password_hash):
        return None
    return user
