# Overview: Flask API routes for the user directory.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission, scoped_branch_id
from ..services import auth_service
from ..services.concurrency import run_in_transaction
from .errors import DOMAIN_ERRORS, error_response, json_body, unexpected_error


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_permission("VIEW_USERS")
def list_users_route():
    """Branch-scoped viewers only see their own branch's users."""
    try:
        branch_id = scoped_branch_id(request.args.get("branch_id", type=int))
        users = auth_service.list_users(branch_id=branch_id, role=request.args.get("role"))
        return jsonify({"users": [u.to_dict() for u in users]}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list users")


@users_bp.post("")
@require_auth
@require_permission("MANAGE_USERS")
def create_user_route():
    """
    Create a user.

    Request body:
    {
        "username": str, "email": str, "name": str, "role": str,
        "password": str, "branch_id": int (branch roles), "phone": str (optional)
    }
    """
    try:
        data = json_body()
        password = data.pop("password", None)
        if not password:
            return jsonify({"error": "password is required"}), 400

        user = run_in_transaction(
            lambda: auth_service.create_user(data, password, actor_user_id=g.current_user.id)
        )
        return jsonify({"user": user.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create user")


@users_bp.patch("/<int:user_id>")
@require_auth
@require_permission("MANAGE_USERS")
def update_user_route(user_id: int):
    try:
        data = json_body()
        password = data.pop("password", None)
        if "status" in data:
            data["is_active"] = data.pop("status") == "active"

        user = run_in_transaction(lambda: auth_service.update_user(
            user_id, data, password=password, actor_user_id=g.current_user.id
        ))
        return jsonify({"user": user.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update user")
