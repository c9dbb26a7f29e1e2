# Overview: Flask API routes for branches, regions and branch inventory.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission, scoped_branch_id
from ..services import branch_service, dashboard_service
from ..services.concurrency import run_in_transaction
from .errors import DOMAIN_ERRORS, error_response, json_body, unexpected_error


branches_bp = Blueprint("branches", __name__, url_prefix="/api/branches")


@branches_bp.get("")
@require_auth
@require_permission("VIEW_BRANCHES")
def list_branches_route():
    """
    Query params:
        region: exact region filter
        q: search term over name, code and region
        active_only: "true" to hide deactivated branches
    """
    try:
        own_branch = scoped_branch_id()
        term = (request.args.get("q") or "").strip()
        if term:
            branches = branch_service.search_branches(term)
        else:
            branches = branch_service.list_branches(
                region=request.args.get("region") or None,
                active_only=request.args.get("active_only", "").lower() == "true",
            )
        if own_branch is not None:
            branches = [b for b in branches if b.id == own_branch]
        return jsonify({"branches": [b.to_dict() for b in branches]}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list branches")


@branches_bp.get("/regions")
@require_auth
@require_permission("VIEW_BRANCHES")
def list_regions_route():
    return jsonify({"regions": branch_service.get_distinct_regions()}), 200


@branches_bp.get("/inventory")
@require_auth
@require_permission("VIEW_QR_CODES")
def branch_inventory_route():
    """Per-branch QR inventory. Sales users only count QRs assigned to them."""
    try:
        user = g.current_user
        branch_id = scoped_branch_id(request.args.get("branch_id", type=int))
        seller_id = user.id if user.role == "SALES_USER" else None
        rows = dashboard_service.get_branch_inventory(branch_id=branch_id, seller_user_id=seller_id)
        return jsonify({"inventory": rows}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to load branch inventory")


@branches_bp.post("")
@require_auth
@require_permission("MANAGE_BRANCHES")
def create_branch_route():
    """
    Request body:
    {
        "branch_code": str, "name": str, "region": str,
        "type": "domestic" | "international", "state": str, "country": str
    }
    """
    try:
        branch = run_in_transaction(
            lambda: branch_service.create_branch(json_body(), actor_user_id=g.current_user.id)
        )
        return jsonify({"branch": branch.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create branch")


@branches_bp.patch("/<int:branch_id>")
@require_auth
@require_permission("MANAGE_BRANCHES")
def update_branch_route(branch_id: int):
    try:
        branch = run_in_transaction(
            lambda: branch_service.update_branch(branch_id, json_body(), actor_user_id=g.current_user.id)
        )
        return jsonify({"branch": branch.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update branch")


@branches_bp.delete("/<int:branch_id>")
@require_auth
@require_permission("MANAGE_BRANCHES")
def delete_branch_route(branch_id: int):
    try:
        run_in_transaction(lambda: branch_service.delete_branch(branch_id, actor_user_id=g.current_user.id))
        return jsonify({"message": "Branch deleted"}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to delete branch")
