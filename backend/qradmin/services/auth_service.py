# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication and User Directory Service

WHY: Every workflow action must be attributable. Uses bcrypt for password
hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt

from ..extensions import db
from ..models import Branch, User
from ..permissions import BRANCH_SCOPED_ROLES, ROLES
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_user,
    validate_payload,
)
from .audit_log_service import append_audit_log


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


USER_POLICY = ModelValidationPolicy(
    writable_fields={"username", "email", "name", "phone", "role", "branch_id", "is_active"},
    required_on_create={"username", "email", "name", "role"},
)


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)
    """
    if not password or len(password) < 8:
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
    """Validate strength, then bcrypt with cost factor 12."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """bcrypt.checkpw is timing-safe. A malformed stored hash never matches."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def authenticate(identifier: str, password: str) -> User | None:
    """
    Look a user up by username or email and check the password.

    Returns None for unknown users, wrong passwords and inactive accounts.
    """
    user = db.session.query(User).filter(
        (User.username == identifier) | (User.email == identifier)
    ).first()

    if not user or not user.is_active:
        return None

    if not verify_password(password, user.password_hash):
        return None

    return user


def record_login(user: User) -> None:
    user.last_login_at = utcnow()
    append_audit_log(
        actor_user_id=user.id,
        action_type="USER_LOGIN",
        target_entity="user",
        target_id=user.id,
        branch_id=user.branch_id,
        payload={"username": user.username},
    )


def _check_branch_assignment(role: str, branch_id: int | None) -> None:
    if branch_id is not None and not db.session.get(Branch, branch_id):
        raise NotFoundError("Branch not found")
    if role in BRANCH_SCOPED_ROLES and branch_id is None:
        raise ValidationError(f"branch_id is required for role {role}")


def _check_unique(username: str | None, email: str | None, exclude_id: int | None = None) -> None:
    if username:
        q = db.session.query(User).filter(User.username == username)
        if exclude_id is not None:
            q = q.filter(User.id != exclude_id)
        if q.first():
            raise ConflictError(f"Username '{username}' already exists")
    if email:
        q = db.session.query(User).filter(User.email == email)
        if exclude_id is not None:
            q = q.filter(User.id != exclude_id)
        if q.first():
            raise ConflictError(f"Email '{email}' already exists")


def create_user(payload: dict, password: str, *, actor_user_id: int | None = None) -> User:
    """
    Create a user. Password must meet strength requirements; branch-scoped
    roles must name a branch. Logs USER_CREATED.
    """
    patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=False)
    enforce_rules_user(patch, set(ROLES))
    _check_branch_assignment(patch["role"], patch.get("branch_id"))
    _check_unique(patch["username"], patch["email"])

    user = User(**patch)
    user.password_hash = hash_password(password)
    db.session.add(user)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="USER_CREATED",
        target_entity="user",
        target_id=user.id,
        branch_id=user.branch_id,
        payload={"username": user.username, "role": user.role},
    )
    return user


def update_user(
    user_id: int,
    payload: dict,
    *,
    password: str | None = None,
    actor_user_id: int | None = None,
) -> User:
    """
    Partial update. Deactivating a user revokes their sessions; the QR sync
    routine later returns their issued QRs to the branch. Logs USER_UPDATED.
    """
    from . import session_service

    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")

    patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=True)
    enforce_rules_user(patch, set(ROLES))
    _check_unique(patch.get("username"), patch.get("email"), exclude_id=user.id)
    _check_branch_assignment(patch.get("role", user.role), patch.get("branch_id", user.branch_id))

    for key, value in patch.items():
        setattr(user, key, value)
    if password:
        user.password_hash = hash_password(password)

    if patch.get("is_active") is False:
        session_service.revoke_all_user_sessions(user.id)

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="USER_UPDATED",
        target_entity="user",
        target_id=user.id,
        branch_id=user.branch_id,
        payload={"updates": sorted(patch.keys()) + (["password"] if password else [])},
    )
    return user


def list_users(*, branch_id: int | None = None, role: str | None = None) -> list[User]:
    query = db.session.query(User)
    if branch_id is not None:
        query = query.filter(User.branch_id == branch_id)
    if role:
        query = query.filter(User.role == role)
    return query.order_by(User.id.asc()).all()
