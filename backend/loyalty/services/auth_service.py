# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every scan, completion and admin change must be attributable to a
named account.

- bcrypt hashes, cost 12; plaintext passwords never leave this module
- Login accepts the username or the email address
- Bearer tokens live in session_service.py
"""

import re

import bcrypt

from ..extensions import db
from ..models import Member, User
from ..models.auth import ROLE_MEMBER, ROLE_STAFF, ROLES
from ..validation import ConflictError, NotFoundError, ValidationError
from loyalty.time_utils import utcnow


MIN_PASSWORD_LENGTH = 8

# (pattern, what is missing) checked in order; the first miss is reported
PASSWORD_CLASSES = (
    (re.compile(r"[A-Z]"), "an uppercase letter"),
    (re.compile(r"[a-z]"), "a lowercase letter"),
    (re.compile(r"\d"), "a digit"),
    (re.compile(r"[!@#$%^&*(),.'\":{}|<>]"), "a special character"),
)


class PasswordValidationError(ValidationError):
    """Password rejected by the strength rules."""
    default_code = "WEAK_PASSWORD"


def validate_password_strength(password: str) -> None:
    """
    Staff and member passwords: at least MIN_PASSWORD_LENGTH characters and
    one character from every class in PASSWORD_CLASSES.
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    for pattern, label in PASSWORD_CLASSES:
        if not pattern.search(password):
            raise PasswordValidationError(f"Password must contain {label}")


def hash_password(password: str) -> str:
    """Hash password using bcrypt with cost factor 12 (strength-checked first)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed stored hash verifies as
    False rather than raising.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    role: str = ROLE_STAFF,
    member_id: int | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Member users must be linked to an existing Member profile; staff and
    admins must not be.

    Raises:
        ValidationError: unknown role, missing/extra member link, weak password
        NotFoundError: linked member does not exist
        ConflictError: username or email already taken
    """
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")
    if role == ROLE_MEMBER and member_id is None:
        raise ValidationError("Member users require member_id")
    if role != ROLE_MEMBER and member_id is not None:
        raise ValidationError("Only member users can be linked to a member")

    if member_id is not None and not db.session.query(Member.id).filter_by(id=member_id).first():
        raise NotFoundError(f"Member {member_id} not found", code="MEMBER_NOT_FOUND")

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ConflictError("Username or email already exists", code="DUPLICATE_USER")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        member_id=member_id,
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate user with username (or email) and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
