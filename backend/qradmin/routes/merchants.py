# Overview: Flask API routes for merchants and KYC requests.

from flask import Blueprint, g, jsonify, request

from ..decorators import (
    check_branch_access,
    require_any_permission,
    require_auth,
    require_permission,
    scoped_branch_id,
)
from ..services import kyc_service
from ..services.concurrency import run_in_transaction
from ..services.permission_service import is_branch_scoped
from .errors import DOMAIN_ERRORS, error_response, json_body, unexpected_error


merchants_bp = Blueprint("merchants", __name__, url_prefix="/api")


def _load_scoped_merchant(merchant_id: int):
    merchant = kyc_service.get_merchant(merchant_id)
    if is_branch_scoped(g.current_user):
        check_branch_access(merchant.branch_id)
    return merchant


# =============================================================================
# MERCHANTS
# =============================================================================

@merchants_bp.get("/merchants")
@require_auth
@require_permission("VIEW_MERCHANTS")
def list_merchants_route():
    """Query params: branch_id, kyc_status"""
    try:
        merchants = kyc_service.list_merchants(
            branch_id=scoped_branch_id(request.args.get("branch_id", type=int)),
            kyc_status=request.args.get("kyc_status") or None,
        )
        return jsonify({"merchants": [m.to_dict() for m in merchants]}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list merchants")


@merchants_bp.post("/merchants")
@require_auth
@require_permission("MANAGE_MERCHANTS")
def create_merchant_route():
    """
    Request body:
    {
        "legal_name": str, "shop_name": str, "merchant_id_in_core": str,
        "address": str, "phone": str, "email": str, "branch_id": int
    }

    kyc_status always starts as pending.
    """
    try:
        data = json_body()
        data.pop("kyc_status", None)
        if data.get("branch_id") is not None:
            check_branch_access(data["branch_id"])

        merchant = run_in_transaction(lambda: kyc_service.create_merchant(
            data,
            default_branch_id=g.current_user.branch_id,
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"merchant": merchant.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create merchant")


@merchants_bp.get("/merchants/<int:merchant_id>")
@require_auth
@require_permission("VIEW_MERCHANTS")
def get_merchant_route(merchant_id: int):
    """Merchant with its KYC request history, newest first."""
    try:
        merchant = _load_scoped_merchant(merchant_id)
        kyc_requests = kyc_service.list_kyc_requests(merchant_id=merchant.id)
        return jsonify({
            "merchant": merchant.to_dict(),
            "kyc_requests": [r.to_dict() for r in kyc_requests],
        }), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to load merchant")


@merchants_bp.delete("/merchants/<int:merchant_id>")
@require_auth
@require_permission("MANAGE_MERCHANTS")
def delete_merchant_route(merchant_id: int):
    try:
        _load_scoped_merchant(merchant_id)
        run_in_transaction(lambda: kyc_service.delete_merchant(merchant_id, actor_user_id=g.current_user.id))
        return jsonify({"message": "Merchant deleted"}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to delete merchant")


# =============================================================================
# KYC REQUESTS
# =============================================================================

@merchants_bp.get("/kyc-requests")
@require_auth
@require_any_permission("VIEW_MERCHANTS", "REVIEW_KYC")
def list_kyc_requests_route():
    """Query params: status, merchant_id, branch_id"""
    try:
        reqs = kyc_service.list_kyc_requests(
            branch_id=scoped_branch_id(request.args.get("branch_id", type=int)),
            status=request.args.get("status") or None,
            merchant_id=request.args.get("merchant_id", type=int),
        )
        return jsonify({"requests": [r.to_dict() for r in reqs]}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list KYC requests")


@merchants_bp.post("/kyc-requests")
@require_auth
@require_permission("SUBMIT_KYC")
def create_kyc_request_route():
    """
    Request body:
    {
        "merchant_id": int,
        "documents": {
            "business_license": str, "tax_certificate": str, "bank_statement": str,
            "ownership_proof": str, "additional_docs": [str]
        }
    }
    """
    try:
        data = json_body()
        merchant = _load_scoped_merchant(data.get("merchant_id"))
        req = run_in_transaction(lambda: kyc_service.create_kyc_request(
            merchant_id=merchant.id,
            documents=data.get("documents"),
            branch_id=merchant.branch_id,
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"request": req.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create KYC request")


@merchants_bp.post("/kyc-requests/<int:request_id>/approve")
@require_auth
@require_permission("REVIEW_KYC")
def approve_kyc_request_route(request_id: int):
    """Request body: {"notes": str (optional)}"""
    try:
        req = kyc_service.get_kyc_request(request_id)
        check_branch_access(req.branch_id)
        req = run_in_transaction(lambda: kyc_service.approve_kyc_request(
            request_id=request_id,
            notes=json_body().get("notes"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"request": req.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to approve KYC request")


@merchants_bp.post("/kyc-requests/<int:request_id>/reject")
@require_auth
@require_permission("REVIEW_KYC")
def reject_kyc_request_route(request_id: int):
    """Request body: {"reason": str}"""
    try:
        req = kyc_service.get_kyc_request(request_id)
        check_branch_access(req.branch_id)
        req = run_in_transaction(lambda: kyc_service.reject_kyc_request(
            request_id=request_id,
            reason=json_body().get("reason"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"request": req.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to reject KYC request")
