# Overview: Flask API routes for dashboard statistics and performance rankings.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission, scoped_branch_id
from ..services import dashboard_service
from ..services.permission_service import is_branch_scoped
from .errors import DOMAIN_ERRORS, error_response, unexpected_error


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/stats")
@require_auth
@require_permission("VIEW_DASHBOARD")
def stats_route():
    """
    Query params: branch_id (global roles only).

    Branch-scoped users always get their own branch; sales users only
    their own QR codes.
    """
    try:
        user = g.current_user
        branch_id = scoped_branch_id(request.args.get("branch_id", type=int))
        seller_id = user.id if user.role == "SALES_USER" else None
        stats = dashboard_service.get_dashboard_stats(branch_id=branch_id, seller_user_id=seller_id)
        return jsonify(stats), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to load dashboard stats")


@dashboard_bp.get("/regions")
@require_auth
@require_permission("VIEW_PERFORMANCE")
def regions_route():
    try:
        if is_branch_scoped(g.current_user):
            return jsonify({"regions": []}), 200
        return jsonify({"regions": dashboard_service.get_region_performance()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to load region performance")


@dashboard_bp.get("/sellers")
@require_auth
@require_permission("VIEW_PERFORMANCE")
def sellers_route():
    """Query params: branch_id (global roles only)."""
    try:
        branch_id = scoped_branch_id(request.args.get("branch_id", type=int))
        return jsonify({"sellers": dashboard_service.get_seller_performance(branch_id=branch_id)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to load seller performance")
