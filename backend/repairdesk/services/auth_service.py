# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every action must be attributable. Staff and clients both log in with
bcrypt-hashed passwords; what they receive afterwards differs (a signed
token for staff, a server-side session for clients).

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Staff tokens are issued by token_service, client sessions by session_service
"""

import logging
import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User, Role, UserRole, Client
from ..permissions import ROLE_DESCRIPTIONS, validate_staff_role
from ..validation import ValidationError, ConflictError
from ..errors import NotFoundError
from repairdesk.time_utils import utcnow


logger = logging.getLogger(__name__)


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    code = "WEAK_PASSWORD"


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
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
    """Hash password using bcrypt (BCRYPT_ROUNDS, default 12) after a strength check."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str | None) -> bool:
    """Timing-safe bcrypt check. A missing or malformed hash never matches."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


# -- Staff --

def create_default_roles() -> list[Role]:
    """Ensure a Role row exists for every staff role (idempotent)."""
    roles = []
    for name, description in ROLE_DESCRIPTIONS.items():
        role = db.session.query(Role).filter_by(name=name).first()
        if role is None:
            role = Role(name=name, description=description)
            db.session.add(role)
        roles.append(role)
    db.session.commit()
    return roles


def create_user(username: str, email: str, password: str, roles=()) -> User:
    """
    Create a staff user with bcrypt password hashing and the given roles.

    Raises:
        ConflictError: username or email already taken
        PasswordValidationError: password too weak
        ValidationError: no role given, or an unknown role name
    """
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username or not email:
        raise ValidationError("username and email are required")

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ConflictError("Username or email already exists")

    roles = list(roles or ())
    if not roles:
        raise ValidationError("A staff user needs at least one role")
    for role_name in roles:
        if not validate_staff_role(role_name):
            raise ValidationError(f"Unknown role: {role_name}")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        is_active=True,
    )
    db.session.add(user)
    db.session.flush()

    for role_name in roles:
        _attach_role(user, role_name)

    db.session.commit()
    logger.info("Created staff user %s (id=%s) roles=%s", username, user.id, list(roles))
    return user


def _attach_role(user: User, role_name: str) -> None:
    role = db.session.query(Role).filter_by(name=role_name).first()
    if role is None:
        role = Role(name=role_name, description=ROLE_DESCRIPTIONS.get(role_name))
        db.session.add(role)
        db.session.flush()
    exists = db.session.query(UserRole).filter_by(user_id=user.id, role_id=role.id).first()
    if not exists:
        db.session.add(UserRole(user_id=user.id, role_id=role.id))


def assign_role(user_id: int, role_name: str) -> None:
    """
    Assign a role to a user.

    Takes effect at the user's next login: issued tokens keep their role
    snapshot until they expire.
    """
    if not validate_staff_role(role_name):
        raise ValidationError(f"Unknown role: {role_name}")
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    _attach_role(user, role_name)
    db.session.commit()


def deactivate_user(user_id: int) -> User:
    """Deactivate a staff user. Outstanding tokens are rejected on next use."""
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    user.is_active = False
    db.session.commit()
    logger.info("Deactivated staff user %s (id=%s)", user.username, user.id)
    return user


def authenticate_staff(identifier: str, password: str) -> User | None:
    """
    Authenticate a staff user by username or email.

    Returns the User if credentials are valid and the account is active,
    None otherwise. Updates last_login_at on success.
    """
    identifier = (identifier or "").strip()
    user = db.session.query(User).filter(
        db.or_(User.username == identifier, User.email == identifier.lower())
    ).first()

    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


# -- Clients --

def create_client(
    display_name: str,
    *,
    email: str | None = None,
    password: str | None = None,
    id_number: str | None = None,
    phone: str | None = None,
    address: str | None = None,
) -> Client:
    """
    Register a client. A password is optional: clients registered at the
    counter can receive portal access later.
    """
    display_name = (display_name or "").strip()
    if not display_name:
        raise ValidationError("display_name is required")
    email = email.strip().lower() if email else None

    if email and db.session.query(Client).filter_by(email=email).first():
        raise ConflictError("A client with this email already exists")
    if id_number and db.session.query(Client).filter_by(id_number=id_number).first():
        raise ConflictError("A client with this id number already exists")

    client = Client(
        display_name=display_name,
        email=email,
        id_number=id_number,
        phone=phone,
        address=address,
        password_hash=hash_password(password) if password else None,
        is_active=True,
    )
    db.session.add(client)
    db.session.commit()
    logger.info("Registered client %s (id=%s)", display_name, client.id)
    return client


def authenticate_client(email: str, password: str) -> Client | None:
    """Authenticate a client for the web portal. Returns None on any failure."""
    email = (email or "").strip().lower()
    client = db.session.query(Client).filter_by(email=email).first()

    if not client or not client.is_active:
        return None
    if not verify_password(password, client.password_hash):
        return None

    client.last_login_at = utcnow()
    db.session.commit()
    return client
