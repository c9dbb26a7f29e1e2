# Overview: Service-layer operations for permission; encapsulates business logic and database work.

"""
Permission Checking and Security Event Logging

WHY: Every backend operation consults the same policy. Roles map to a static
set of permission codes; branch-scoped roles additionally only see and touch
their own branch.

DESIGN PRINCIPLES:
- Fail closed: Deny by default, require explicit permission grant
- Log denials only: Permission grants are not logged
- Branch scope is checked on the server, not trusted from the client
"""

from ..extensions import db
from ..models import User, SecurityEvent
from ..permissions import BRANCH_SCOPED_ROLES, get_role_permissions
from ..time_utils import utcnow


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission or branch access."""
    pass


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    branch_id: int | None = None,
) -> SecurityEvent:
    """
    Log security event to the append-only trail.

    event_type examples:
    - PERMISSION_DENIED
    - BRANCH_SCOPE_DENIED
    - LOGIN_FAILED
    - LOGOUT
    """
    event = SecurityEvent(
        user_id=user_id,
        branch_id=branch_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event


def get_user_permissions(user: User) -> set[str]:
    """
    Permission codes for a user, resolved from the static role policy.
    Inactive users have none.
    """
    if user is None or not user.is_active:
        return set()
    return get_role_permissions(user.role)


def user_has_permission(user: User, permission_code: str) -> bool:
    return permission_code in get_user_permissions(user)


def require_permission(
    user: User,
    permission_code: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Require user to have permission, raise PermissionDeniedError if not.
    Denials are written to security_events.
    """
    if not user_has_permission(user, permission_code):
        log_security_event(
            user_id=user.id if user else None,
            event_type="PERMISSION_DENIED",
            success=False,
            resource=resource,
            action=permission_code,
            reason=f"Missing permission: {permission_code}",
            ip_address=ip_address,
            user_agent=user_agent,
            branch_id=user.branch_id if user else None,
        )
        raise PermissionDeniedError(f"Permission denied: {permission_code}")


def is_branch_scoped(user: User) -> bool:
    return user.role in BRANCH_SCOPED_ROLES


def effective_branch_id(user: User, requested_branch_id: int | None = None) -> int | None:
    """
    Branch filter to apply for a read.

    Global roles get whatever they asked for (None = everything). Branch-scoped
    roles always get their own branch; asking for another one is a denial.
    """
    if not is_branch_scoped(user):
        return requested_branch_id
    if user.branch_id is None:
        raise PermissionDeniedError("User is not assigned to a branch")
    if requested_branch_id is not None and requested_branch_id != user.branch_id:
        ensure_branch_access(user, requested_branch_id)
    return user.branch_id


def ensure_branch_access(
    user: User,
    branch_id: int | None,
    *,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """Raise PermissionDeniedError if a branch-scoped user reaches outside their branch."""
    if not is_branch_scoped(user):
        return
    if user.branch_id is not None and branch_id == user.branch_id:
        return

    log_security_event(
        user_id=user.id,
        event_type="BRANCH_SCOPE_DENIED",
        success=False,
        resource=resource,
        action="BRANCH_ACCESS",
        reason=f"Branch {branch_id} is outside the user's branch {user.branch_id}",
        ip_address=ip_address,
        user_agent=user_agent,
        branch_id=user.branch_id,
    )
    raise PermissionDeniedError("Access to this branch is not allowed")
