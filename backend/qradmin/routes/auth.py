# Overview: Flask API routes for login, logout and the current user.

"""
Authentication API routes

- POST /api/auth/login   -> bearer token (plaintext returned once)
- POST /api/auth/logout  -> revokes the presented token
- GET  /api/auth/me      -> current user and effective permissions
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import bearer_token, require_auth
from ..services import auth_service, permission_service, session_service
from ..services.concurrency import run_in_transaction
from .errors import DOMAIN_ERRORS, error_response, json_body, unexpected_error


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate by username or email and create a session token.

    Failed attempts are recorded as LOGIN_FAILED security events.
    """
    try:
        data = json_body()
        identifier = data.get("username") or data.get("email") or data.get("identifier")
        password = data.get("password")

        if not identifier or not password:
            return jsonify({"error": "username/email and password required"}), 400

        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        user = auth_service.authenticate(identifier, password)
        if not user:
            permission_service.log_security_event(
                user_id=None,
                event_type="LOGIN_FAILED",
                success=False,
                resource=request.path,
                action="LOGIN",
                reason=f"Invalid credentials for '{identifier}'",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return jsonify({"error": "Invalid credentials"}), 401

        auth_service.record_login(user)
        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=user_agent,
            ip_address=ip_address,
        )

        return jsonify({
            "user": user.to_dict(),
            "permissions": sorted(permission_service.get_user_permissions(user)),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful",
        }), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to login user")


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        run_in_transaction(lambda: session_service.revoke_session(bearer_token(), reason="User logout"))
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        return unexpected_error("Failed to logout user")


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "permissions": sorted(permission_service.get_user_permissions(user)),
    }), 200
