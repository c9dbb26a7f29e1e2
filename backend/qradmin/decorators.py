# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .permissions import validate_permission_code
from .services import permission_service, session_service
from .services.permission_service import PermissionDeniedError


def _is_authenticated() -> bool:
    return hasattr(g, "current_user")


def _check_codes(*codes: str) -> None:
    # Raised while the route modules are imported
    for code in codes:
        if not validate_permission_code(code):
            raise ValueError(f"Unknown permission code: {code}")


def _client() -> dict:
    return {
        "resource": request.path,
        "ip_address": request.remote_addr,
        "user_agent": request.headers.get("User-Agent"),
    }


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer session and set g.current_user.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired, idle or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission. Denials are logged as security events."""
    _check_codes(permission_code)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_permission(
                    g.current_user,
                    permission_code,
                    **_client(),
                )
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_any_permission(*permission_codes):
    """Require any of the specified permissions."""
    _check_codes(*permission_codes)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            user_permissions = permission_service.get_user_permissions(user)
            if not any(code in user_permissions for code in permission_codes):
                permission_service.log_security_event(
                    user_id=user.id,
                    event_type="PERMISSION_DENIED",
                    success=False,
                    action=f"ANY_OF:{','.join(permission_codes)}",
                    reason=f"Missing any of: {', '.join(permission_codes)}",
                    branch_id=user.branch_id,
                    **_client(),
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permissions": list(permission_codes),
                    "message": f"Requires any of: {', '.join(permission_codes)}",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def check_branch_access(branch_id: int | None) -> None:
    """Raise PermissionDeniedError if the current user may not touch branch_id."""
    permission_service.ensure_branch_access(
        g.current_user,
        branch_id,
        **_client(),
    )


def scoped_branch_id(requested: int | None = None) -> int | None:
    """Branch filter for reads: own branch for branch-scoped roles, else the request's."""
    return permission_service.effective_branch_id(g.current_user, requested)
