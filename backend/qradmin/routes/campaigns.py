# Overview: Flask API routes for sector campaigns and their QR codes.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission, scoped_branch_id
from ..services import campaign_service
from ..services.concurrency import run_in_transaction
from .errors import DOMAIN_ERRORS, error_response, json_body, unexpected_error


campaigns_bp = Blueprint("campaigns", __name__, url_prefix="/api/campaigns")


@campaigns_bp.get("")
@require_auth
@require_permission("VIEW_CAMPAIGNS")
def list_campaigns_route():
    """Query params: q, sector, status"""
    try:
        campaigns = campaign_service.list_campaigns(
            q=request.args.get("q") or None,
            sector=request.args.get("sector") or None,
            status=request.args.get("status") or None,
        )
        return jsonify({"campaigns": [c.to_dict() for c in campaigns]}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list campaigns")


@campaigns_bp.post("")
@require_auth
@require_permission("MANAGE_CAMPAIGNS")
def create_campaign_route():
    """
    Request body:
    {
        "name": str, "description": str, "sector": str,
        "start_date": "YYYY-MM-DD", "end_date": "YYYY-MM-DD",
        "target_qr_count": int, "target_branch_ids": [int], "notes": str
    }
    """
    try:
        campaign = run_in_transaction(
            lambda: campaign_service.create_campaign(json_body(), actor_user_id=g.current_user.id)
        )
        return jsonify({"campaign": campaign.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create campaign")


@campaigns_bp.get("/statistics")
@require_auth
@require_permission("VIEW_CAMPAIGNS")
def campaign_statistics_route():
    try:
        return jsonify({"statistics": campaign_service.get_campaign_statistics()}), 200
    except Exception:
        return unexpected_error("Failed to load campaign statistics")


@campaigns_bp.get("/performance")
@require_auth
@require_permission("VIEW_CAMPAIGNS")
def campaign_performance_route():
    """Query params: sector"""
    try:
        rows = campaign_service.get_campaign_performance(sector=request.args.get("sector") or None)
        return jsonify({"performance": rows}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to load campaign performance")


@campaigns_bp.get("/<int:campaign_id>")
@require_auth
@require_permission("VIEW_CAMPAIGNS")
def get_campaign_route(campaign_id: int):
    try:
        return jsonify({"campaign": campaign_service.get_campaign(campaign_id).to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to load campaign")


@campaigns_bp.patch("/<int:campaign_id>")
@require_auth
@require_permission("MANAGE_CAMPAIGNS")
def update_campaign_route(campaign_id: int):
    try:
        data = json_body()
        campaign = run_in_transaction(
            lambda: campaign_service.update_campaign(campaign_id, data, actor_user_id=g.current_user.id)
        )
        return jsonify({"campaign": campaign.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update campaign")


@campaigns_bp.delete("/<int:campaign_id>")
@require_auth
@require_permission("MANAGE_CAMPAIGNS")
def delete_campaign_route(campaign_id: int):
    try:
        run_in_transaction(lambda: campaign_service.delete_campaign(campaign_id, actor_user_id=g.current_user.id))
        return jsonify({"message": "Campaign deleted"}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to delete campaign")


_TRANSITIONS = {
    "activate": campaign_service.activate_campaign,
    "deactivate": campaign_service.deactivate_campaign,
    "complete": campaign_service.complete_campaign,
}


@campaigns_bp.post("/<int:campaign_id>/<any(activate, deactivate, complete):action>")
@require_auth
@require_permission("MANAGE_CAMPAIGNS")
def transition_campaign_route(campaign_id: int, action: str):
    try:
        campaign = run_in_transaction(
            lambda: _TRANSITIONS[action](campaign_id, actor_user_id=g.current_user.id)
        )
        return jsonify({"campaign": campaign.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error(f"Failed to {action} campaign")


# =============================================================================
# CAMPAIGN QR CODES
# =============================================================================

@campaigns_bp.get("/<int:campaign_id>/qr-codes")
@require_auth
@require_permission("VIEW_CAMPAIGNS")
def list_campaign_qrs_route(campaign_id: int):
    """Branch-scoped users only see their own branch's QR codes."""
    try:
        qrs = campaign_service.list_campaign_qrs(campaign_id, branch_id=scoped_branch_id())
        return jsonify({"qr_codes": [qr.to_dict() for qr in qrs]}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list campaign QR codes")


@campaigns_bp.post("/<int:campaign_id>/qr-codes")
@require_auth
@require_permission("ASSIGN_CAMPAIGN_QRS")
def assign_campaign_qrs_route(campaign_id: int):
    """
    Request body: {"qr_ids": [int]}

    Branch-scoped users may only earmark QR codes allocated to their branch.
    """
    try:
        qr_ids = json_body().get("qr_ids")
        qrs = run_in_transaction(lambda: campaign_service.assign_qrs_to_campaign(
            campaign_id=campaign_id,
            qr_ids=qr_ids,
            branch_id=scoped_branch_id(),
            actor_user_id=g.current_user.id,
        ))
        campaign = campaign_service.get_campaign(campaign_id)
        return jsonify({
            "campaign": campaign.to_dict(),
            "assigned_qr_ids": [qr.id for qr in qrs],
        }), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to assign QR codes to campaign")


@campaigns_bp.delete("/<int:campaign_id>/qr-codes")
@require_auth
@require_permission("ASSIGN_CAMPAIGN_QRS")
def remove_campaign_qrs_route(campaign_id: int):
    """Request body: {"qr_ids": [int]}"""
    try:
        qr_ids = json_body().get("qr_ids")
        qrs = run_in_transaction(lambda: campaign_service.remove_qrs_from_campaign(
            campaign_id=campaign_id,
            qr_ids=qr_ids,
            branch_id=scoped_branch_id(),
            actor_user_id=g.current_user.id,
        ))
        campaign = campaign_service.get_campaign(campaign_id)
        return jsonify({
            "campaign": campaign.to_dict(),
            "removed_qr_ids": [qr.id for qr in qrs],
        }), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to remove QR codes from campaign")
