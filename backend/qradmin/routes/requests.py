# Overview: Flask API routes for allocation, merchant and threshold requests.

"""
Request workflow API routes.

Allocation requests:   create, edit, approve, reject, return for correction, cancel
Merchant QR requests:  create, approve, reject
Threshold requests:    create, approve, reject

Branch-scoped users create and review requests for their own branch only.
Approval allocates QR codes from the pool in the same transaction.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import check_branch_access, require_auth, require_permission, scoped_branch_id
from ..services import kyc_service, request_service
from ..services.concurrency import run_in_transaction
from .errors import DOMAIN_ERRORS, error_response, json_body, unexpected_error


requests_bp = Blueprint("requests", __name__, url_prefix="/api")


def _branch_for_create(data: dict):
    """Default to the caller's branch; refuse any other branch for branch-scoped users."""
    branch_id = data.get("branch_id")
    if branch_id is None:
        branch_id = g.current_user.branch_id
    check_branch_access(branch_id)
    return branch_id


def _is_super_admin() -> bool:
    return g.current_user.role == "SUPER_ADMIN"


# =============================================================================
# ALLOCATION REQUESTS
# =============================================================================

@requests_bp.get("/allocation-requests")
@require_auth
@require_permission("VIEW_REQUESTS")
def list_allocation_requests_route():
    """Query params: status, branch_id, initiator_user_id"""
    try:
        reqs = request_service.list_allocation_requests(
            branch_id=scoped_branch_id(request.args.get("branch_id", type=int)),
            initiator_user_id=request.args.get("initiator_user_id", type=int),
            status=request.args.get("status") or None,
        )
        return jsonify({"requests": [r.to_dict() for r in reqs]}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list allocation requests")


@requests_bp.post("/allocation-requests")
@require_auth
@require_permission("CREATE_REQUESTS")
def create_allocation_request_route():
    """
    Request body:
    {
        "branch_id": int (defaults to the caller's branch),
        "requested_qr_count": int,
        "requested_for": str,
        "notes": str (optional)
    }
    """
    try:
        data = json_body()
        req = run_in_transaction(lambda: request_service.create_allocation_request(
            branch_id=_branch_for_create(data),
            requested_qr_count=data.get("requested_qr_count"),
            requested_for=data.get("requested_for"),
            notes=data.get("notes"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"request": req.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create allocation request")


@requests_bp.patch("/allocation-requests/<int:request_id>")
@require_auth
@require_permission("CREATE_REQUESTS")
def update_allocation_request_route(request_id: int):
    """Initiator edits a pending or rejected request; it goes back to pending."""
    try:
        req = request_service.get_allocation_request(request_id)
        check_branch_access(req.branch_id)
        req = run_in_transaction(lambda: request_service.update_allocation_request(
            request_id=request_id,
            payload=json_body(),
            actor_user_id=g.current_user.id,
            override=_is_super_admin(),
        ))
        return jsonify({"request": req.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update allocation request")


@requests_bp.post("/allocation-requests/<int:request_id>/approve")
@require_auth
@require_permission("APPROVE_REQUESTS")
def approve_allocation_request_route(request_id: int):
    """Request body: {"notes": str (optional)}"""
    try:
        req = request_service.get_allocation_request(request_id)
        check_branch_access(req.branch_id)
        req = run_in_transaction(lambda: request_service.approve_allocation_request(
            request_id=request_id,
            notes=json_body().get("notes"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"request": req.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to approve allocation request")


@requests_bp.post("/allocation-requests/<int:request_id>/reject")
@require_auth
@require_permission("APPROVE_REQUESTS")
def reject_allocation_request_route(request_id: int):
    """Request body: {"reason": str}"""
    try:
        req = request_service.get_allocation_request(request_id)
        check_branch_access(req.branch_id)
        req = run_in_transaction(lambda: request_service.reject_allocation_request(
            request_id=request_id,
            reason=json_body().get("reason"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"request": req.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to reject allocation request")


@requests_bp.post("/allocation-requests/<int:request_id>/return")
@require_auth
@require_permission("APPROVE_REQUESTS")
def return_allocation_request_route(request_id: int):
    """Send back to the initiator for correction. Request body: {"reason": str}"""
    try:
        req = request_service.get_allocation_request(request_id)
        check_branch_access(req.branch_id)
        req = run_in_transaction(lambda: request_service.return_allocation_request_for_correction(
            request_id=request_id,
            reason=json_body().get("reason"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"request": req.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to return allocation request")


@requests_bp.post("/allocation-requests/<int:request_id>/cancel")
@require_auth
@require_permission("CREATE_REQUESTS")
def cancel_allocation_request_route(request_id: int):
    try:
        req = request_service.get_allocation_request(request_id)
        check_branch_access(req.branch_id)
        req = run_in_transaction(lambda: request_service.cancel_allocation_request(
            request_id=request_id,
            actor_user_id=g.current_user.id,
            override=_is_super_admin(),
        ))
        return jsonify({"request": req.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to cancel allocation request")


# =============================================================================
# MERCHANT QR REQUESTS
# =============================================================================

@requests_bp.get("/merchant-requests")
@require_auth
@require_permission("VIEW_REQUESTS")
def list_merchant_requests_route():
    try:
        reqs = request_service.list_merchant_requests(
            branch_id=scoped_branch_id(request.args.get("branch_id", type=int)),
        )
        return jsonify({"requests": [r.to_dict() for r in reqs]}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list merchant requests")


@requests_bp.post("/merchant-requests")
@require_auth
@require_permission("CREATE_REQUESTS")
def create_merchant_request_route():
    """
    Request body:
    {
        "merchant_id": int, "requested_qr_count": int,
        "business_justification": str, "branch_id": int (optional)
    }
    """
    try:
        data = json_body()
        merchant = kyc_service.get_merchant(data.get("merchant_id"))
        branch_id = data.get("branch_id")
        if branch_id is None:
            branch_id = merchant.branch_id
        check_branch_access(branch_id)

        req = run_in_transaction(lambda: request_service.create_merchant_request(
            merchant_id=merchant.id,
            requested_qr_count=data.get("requested_qr_count"),
            business_justification=data.get("business_justification"),
            branch_id=branch_id,
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"request": req.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create merchant request")


@requests_bp.post("/merchant-requests/<int:request_id>/approve")
@require_auth
@require_permission("APPROVE_REQUESTS")
def approve_merchant_request_route(request_id: int):
    try:
        req = request_service.get_merchant_request(request_id)
        check_branch_access(req.branch_id)
        req = run_in_transaction(lambda: request_service.approve_merchant_request(
            request_id=request_id,
            notes=json_body().get("notes"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"request": req.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to approve merchant request")


@requests_bp.post("/merchant-requests/<int:request_id>/reject")
@require_auth
@require_permission("APPROVE_REQUESTS")
def reject_merchant_request_route(request_id: int):
    try:
        req = request_service.get_merchant_request(request_id)
        check_branch_access(req.branch_id)
        req = run_in_transaction(lambda: request_service.reject_merchant_request(
            request_id=request_id,
            reason=json_body().get("reason"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"request": req.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to reject merchant request")


# =============================================================================
# THRESHOLD REQUESTS
# =============================================================================

@requests_bp.get("/threshold-requests")
@require_auth
@require_permission("VIEW_REQUESTS")
def list_threshold_requests_route():
    try:
        reqs = request_service.list_threshold_requests(
            branch_id=scoped_branch_id(request.args.get("branch_id", type=int)),
        )
        return jsonify({"requests": [r.to_dict() for r in reqs]}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list threshold requests")


@requests_bp.post("/threshold-requests")
@require_auth
@require_permission("CREATE_REQUESTS")
def create_threshold_request_route():
    """
    Request body:
    {
        "branch_id": int (defaults to the caller's branch), "threshold": int,
        "requested_amount": int, "reason": str, "current_inventory": int (optional)
    }
    """
    try:
        data = json_body()
        req = run_in_transaction(lambda: request_service.create_threshold_request(
            branch_id=_branch_for_create(data),
            threshold=data.get("threshold"),
            requested_amount=data.get("requested_amount"),
            reason=data.get("reason"),
            current_inventory=data.get("current_inventory"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"request": req.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create threshold request")


@requests_bp.post("/threshold-requests/<int:request_id>/approve")
@require_auth
@require_permission("APPROVE_REQUESTS")
def approve_threshold_request_route(request_id: int):
    try:
        req = request_service.get_threshold_request(request_id)
        check_branch_access(req.branch_id)
        req = run_in_transaction(lambda: request_service.approve_threshold_request(
            request_id=request_id,
            notes=json_body().get("notes"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"request": req.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to approve threshold request")


@requests_bp.post("/threshold-requests/<int:request_id>/reject")
@require_auth
@require_permission("APPROVE_REQUESTS")
def reject_threshold_request_route(request_id: int):
    try:
        req = request_service.get_threshold_request(request_id)
        check_branch_access(req.branch_id)
        req = run_in_transaction(lambda: request_service.reject_threshold_request(
            request_id=request_id,
            reason=json_body().get("reason"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"request": req.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to reject threshold request")
