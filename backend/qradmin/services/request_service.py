# Overview: Service-layer operations for allocation, merchant and threshold requests.

"""
Request Workflow Service

STATE MACHINES:
    AllocationRequest: pending -> approved | rejected | cancelled
                       rejected -> pending (initiator edits and resubmits)
    MerchantRequest:   pending -> approved | rejected
    ThresholdRequest:  pending -> approved | rejected

Returning an allocation request for correction keeps it pending and sets
returned_for_correction; the initiator's next edit clears the flag.

Approval allocates QR codes from the unallocated pool in the same
transaction. If the pool is short the whole approval fails and the request
stays pending.
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import AllocationRequest, Branch, Merchant, MerchantRequest, QRCode, ThresholdRequest
from ..time_utils import utcnow
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    require_positive_int,
    require_text,
    validate_payload,
)
from . import qr_service
from .audit_log_service import append_audit_log


logger = logging.getLogger(__name__)


REQUEST_STATUSES = ("pending", "approved", "rejected", "cancelled")

ALLOCATION_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"requested_qr_count", "requested_for"},
)


class RequestWorkflowError(ValueError):
    """Raised when a request action is not allowed in the request's current state."""
    pass


def _append_note(existing: str | None, line: str) -> str:
    return f"{existing}\n{line}" if existing else line


def _require_pending(status: str, label: str, action: str) -> None:
    if status != "pending":
        raise RequestWorkflowError(f"{label} is {status}; only pending requests can be {action}")


def _get_active_branch(branch_id: int) -> Branch:
    branch_id = require_positive_int(branch_id, "branch_id")
    branch = db.session.get(Branch, branch_id)
    if not branch:
        raise NotFoundError("Branch not found")
    if not branch.is_active:
        raise RequestWorkflowError(f"Branch {branch.branch_code} is inactive")
    return branch


# -- Allocation requests --

def next_request_number() -> str:
    """REQ001, REQ002, ... skipping any number already taken."""
    n = db.session.query(func.count(AllocationRequest.id)).scalar() + 1
    while True:
        candidate = f"REQ{n:03d}"
        exists = db.session.query(AllocationRequest.id).filter_by(request_number=candidate).first()
        if not exists:
            return candidate
        n += 1


def get_allocation_request(request_id: int) -> AllocationRequest:
    req = db.session.get(AllocationRequest, request_id)
    if not req:
        raise NotFoundError("Allocation request not found")
    return req


def create_allocation_request(
    *,
    branch_id: int,
    requested_qr_count,
    requested_for: str,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> AllocationRequest:
    """New pending request. Logs REQUEST_CREATED."""
    branch_id = _get_active_branch(branch_id).id
    count = require_positive_int(requested_qr_count, "requested_qr_count")
    requested_for = require_text(requested_for, "requested_for")

    req = AllocationRequest(
        request_number=next_request_number(),
        branch_id=branch_id,
        initiator_user_id=actor_user_id,
        requested_qr_count=count,
        requested_for=requested_for,
        status="pending",
        returned_for_correction=False,
        notes=(notes or "").strip(),
    )
    db.session.add(req)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="REQUEST_CREATED",
        target_entity="allocation_request",
        target_id=req.id,
        branch_id=branch_id,
        payload={
            "request_id": req.id,
            "request_number": req.request_number,
            "requested_qr_count": count,
            "requested_for": requested_for,
        },
    )
    return req


def approve_allocation_request(
    *,
    request_id: int,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> AllocationRequest:
    """
    pending -> approved, allocating requested_qr_count QRs to the branch.
    Logs REQUEST_APPROVED (and BULK_QR_ALLOCATED via the allocation).
    """
    req = get_allocation_request(request_id)
    _require_pending(req.status, f"Request {req.request_number}", "approved")

    allocated = qr_service.bulk_allocate_qrs(
        branch_id=req.branch_id,
        count=req.requested_qr_count,
        actor_user_id=actor_user_id,
    )

    req.status = "approved"
    req.approver_user_id = actor_user_id
    req.approved_at = utcnow()
    req.returned_for_correction = False
    if notes and notes.strip():
        req.notes = _append_note(req.notes, f"Approval notes: {notes.strip()}")
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="REQUEST_APPROVED",
        target_entity="allocation_request",
        target_id=req.id,
        branch_id=req.branch_id,
        payload={
            "request_id": req.id,
            "request_number": req.request_number,
            "notes": notes,
            "allocated_count": len(allocated),
        },
    )
    logger.info("Approved %s: %d QR codes to branch %s", req.request_number, len(allocated), req.branch_id)
    return req


def reject_allocation_request(
    *,
    request_id: int,
    reason: str,
    actor_user_id: int | None = None,
) -> AllocationRequest:
    """pending -> rejected. Logs REQUEST_REJECTED."""
    reason = require_text(reason, "reason")
    req = get_allocation_request(request_id)
    _require_pending(req.status, f"Request {req.request_number}", "rejected")

    req.status = "rejected"
    req.approver_user_id = actor_user_id
    req.returned_for_correction = False
    req.notes = _append_note(req.notes, f"Rejection reason: {reason}")
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="REQUEST_REJECTED",
        target_entity="allocation_request",
        target_id=req.id,
        branch_id=req.branch_id,
        payload={"request_id": req.id, "request_number": req.request_number, "reason": reason},
    )
    return req


def return_allocation_request_for_correction(
    *,
    request_id: int,
    reason: str,
    actor_user_id: int | None = None,
) -> AllocationRequest:
    """Stays pending with returned_for_correction set. Logs REQUEST_RETURNED_FOR_CORRECTION."""
    reason = require_text(reason, "reason")
    req = get_allocation_request(request_id)
    _require_pending(req.status, f"Request {req.request_number}", "returned for correction")

    req.returned_for_correction = True
    req.approver_user_id = actor_user_id
    req.notes = _append_note(req.notes, f"Returned for correction: {reason}")
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="REQUEST_RETURNED_FOR_CORRECTION",
        target_entity="allocation_request",
        target_id=req.id,
        branch_id=req.branch_id,
        payload={"request_id": req.id, "request_number": req.request_number, "reason": reason},
    )
    return req


def _require_initiator(req: AllocationRequest, actor_user_id: int | None, override: bool) -> None:
    if not override and req.initiator_user_id != actor_user_id:
        raise RequestWorkflowError(f"Only the initiator can change request {req.request_number}")


def update_allocation_request(
    *,
    request_id: int,
    payload: dict,
    actor_user_id: int | None = None,
    override: bool = False,
) -> AllocationRequest:
    """
    Initiator edit. Allowed on pending and rejected requests; resets the
    request to pending and clears returned_for_correction. Logs REQUEST_UPDATED.
    """
    req = get_allocation_request(request_id)
    _require_initiator(req, actor_user_id, override)
    if req.status not in ("pending", "rejected"):
        raise RequestWorkflowError(
            f"Request {req.request_number} is {req.status}; only pending or rejected requests can be edited"
        )

    patch = validate_payload(model=AllocationRequest, payload=payload, policy=ALLOCATION_UPDATE_POLICY, partial=True)
    if "requested_qr_count" in patch:
        patch["requested_qr_count"] = require_positive_int(patch["requested_qr_count"], "requested_qr_count")

    previous_status = req.status
    for key, value in patch.items():
        setattr(req, key, value)
    req.status = "pending"
    req.returned_for_correction = False
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="REQUEST_UPDATED",
        target_entity="allocation_request",
        target_id=req.id,
        branch_id=req.branch_id,
        payload={
            "request_id": req.id,
            "request_number": req.request_number,
            "updates": patch,
            "previous_status": previous_status,
        },
    )
    return req


def cancel_allocation_request(
    *,
    request_id: int,
    actor_user_id: int | None = None,
    override: bool = False,
) -> AllocationRequest:
    """pending -> cancelled by the initiator. Logs REQUEST_CANCELLED."""
    req = get_allocation_request(request_id)
    _require_initiator(req, actor_user_id, override)
    _require_pending(req.status, f"Request {req.request_number}", "cancelled")

    req.status = "cancelled"
    req.returned_for_correction = False
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="REQUEST_CANCELLED",
        target_entity="allocation_request",
        target_id=req.id,
        branch_id=req.branch_id,
        payload={"request_id": req.id, "request_number": req.request_number},
    )
    return req


def list_allocation_requests(
    *,
    branch_id: int | None = None,
    initiator_user_id: int | None = None,
    status: str | None = None,
) -> list[AllocationRequest]:
    if status is not None and status not in REQUEST_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(REQUEST_STATUSES)}")

    query = db.session.query(AllocationRequest)
    if branch_id is not None:
        query = query.filter(AllocationRequest.branch_id == branch_id)
    if initiator_user_id is not None:
        query = query.filter(AllocationRequest.initiator_user_id == initiator_user_id)
    if status:
        query = query.filter(AllocationRequest.status == status)
    return query.order_by(AllocationRequest.created_at.desc(), AllocationRequest.id.desc()).all()


# -- Merchant QR requests --

def get_merchant_request(request_id: int) -> MerchantRequest:
    req = db.session.get(MerchantRequest, request_id)
    if not req:
        raise NotFoundError("Merchant request not found")
    return req


def create_merchant_request(
    *,
    merchant_id: int,
    requested_qr_count,
    business_justification: str,
    branch_id: int | None = None,
    actor_user_id: int | None = None,
) -> MerchantRequest:
    """Routed to the merchant's branch unless one is given. Logs MERCHANT_QR_REQUEST_CREATED."""
    merchant = db.session.get(Merchant, require_positive_int(merchant_id, "merchant_id"))
    if not merchant:
        raise NotFoundError("Merchant not found")
    count = require_positive_int(requested_qr_count, "requested_qr_count")
    justification = require_text(business_justification, "business_justification")

    branch_id = branch_id if branch_id is not None else merchant.branch_id
    if branch_id is None:
        raise ValidationError("branch_id is required for merchants without a branch")
    branch_id = _get_active_branch(branch_id).id

    req = MerchantRequest(
        merchant_id=merchant.id,
        requested_by_user_id=actor_user_id,
        branch_id=branch_id,
        requested_qr_count=count,
        business_justification=justification,
        status="pending",
    )
    db.session.add(req)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="MERCHANT_QR_REQUEST_CREATED",
        target_entity="merchant_request",
        target_id=req.id,
        branch_id=branch_id,
        payload={"request_id": req.id, "merchant_id": merchant.id, "requested_qr_count": count},
    )
    return req


def approve_merchant_request(
    *,
    request_id: int,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> MerchantRequest:
    """Allocates requested_qr_count QRs to the request's branch. Logs MERCHANT_QR_REQUEST_APPROVED."""
    req = get_merchant_request(request_id)
    _require_pending(req.status, f"Merchant request {req.id}", "approved")

    allocated = qr_service.bulk_allocate_qrs(
        branch_id=req.branch_id,
        count=req.requested_qr_count,
        actor_user_id=actor_user_id,
    )

    req.status = "approved"
    req.approved_by_user_id = actor_user_id
    req.approved_at = utcnow()
    req.review_notes = (notes or "").strip() or None
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="MERCHANT_QR_REQUEST_APPROVED",
        target_entity="merchant_request",
        target_id=req.id,
        branch_id=req.branch_id,
        payload={"request_id": req.id, "notes": notes, "allocated_count": len(allocated)},
    )
    return req


def reject_merchant_request(
    *,
    request_id: int,
    reason: str,
    actor_user_id: int | None = None,
) -> MerchantRequest:
    reason = require_text(reason, "reason")
    req = get_merchant_request(request_id)
    _require_pending(req.status, f"Merchant request {req.id}", "rejected")

    req.status = "rejected"
    req.approved_by_user_id = actor_user_id
    req.rejection_reason = reason
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="MERCHANT_QR_REQUEST_REJECTED",
        target_entity="merchant_request",
        target_id=req.id,
        branch_id=req.branch_id,
        payload={"request_id": req.id, "reason": reason},
    )
    return req


def list_merchant_requests(*, branch_id: int | None = None) -> list[MerchantRequest]:
    query = db.session.query(MerchantRequest)
    if branch_id is not None:
        query = query.filter(MerchantRequest.branch_id == branch_id)
    return query.order_by(MerchantRequest.created_at.desc(), MerchantRequest.id.desc()).all()


# -- Threshold requests --

def get_threshold_request(request_id: int) -> ThresholdRequest:
    req = db.session.get(ThresholdRequest, request_id)
    if not req:
        raise NotFoundError("Threshold request not found")
    return req


def branch_available_inventory(branch_id: int) -> int:
    """Allocated QR codes sitting in the branch, not yet issued."""
    return db.session.query(func.count(QRCode.id)).filter(
        QRCode.allocated_branch_id == branch_id,
        QRCode.status == "allocated",
    ).scalar()


def create_threshold_request(
    *,
    branch_id: int,
    threshold,
    requested_amount,
    reason: str,
    current_inventory=None,
    actor_user_id: int | None = None,
) -> ThresholdRequest:
    """
    Low-inventory replenishment request. current_inventory defaults to the
    branch's live available count. Logs THRESHOLD_REQUEST_CREATED.
    """
    branch_id = _get_active_branch(branch_id).id
    amount = require_positive_int(requested_amount, "requested_amount")
    reason = require_text(reason, "reason")

    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0:
        raise ValidationError("threshold must be a non-negative integer")
    if current_inventory is None:
        current_inventory = branch_available_inventory(branch_id)
    elif isinstance(current_inventory, bool) or not isinstance(current_inventory, int) or current_inventory < 0:
        raise ValidationError("current_inventory must be a non-negative integer")

    req = ThresholdRequest(
        branch_id=branch_id,
        current_inventory=current_inventory,
        threshold=threshold,
        requested_amount=amount,
        reason=reason,
        status="pending",
        created_by_user_id=actor_user_id,
    )
    db.session.add(req)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="THRESHOLD_REQUEST_CREATED",
        target_entity="threshold_request",
        target_id=req.id,
        branch_id=branch_id,
        payload={
            "request_id": req.id,
            "current_inventory": current_inventory,
            "threshold": threshold,
            "requested_amount": amount,
        },
    )
    return req


def approve_threshold_request(
    *,
    request_id: int,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> ThresholdRequest:
    """Allocates requested_amount QRs to the branch. Logs THRESHOLD_REQUEST_APPROVED."""
    req = get_threshold_request(request_id)
    _require_pending(req.status, f"Threshold request {req.id}", "approved")

    allocated = qr_service.bulk_allocate_qrs(
        branch_id=req.branch_id,
        count=req.requested_amount,
        actor_user_id=actor_user_id,
    )

    req.status = "approved"
    req.reviewed_by_user_id = actor_user_id
    req.reviewed_at = utcnow()
    req.review_notes = (notes or "").strip() or None
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="THRESHOLD_REQUEST_APPROVED",
        target_entity="threshold_request",
        target_id=req.id,
        branch_id=req.branch_id,
        payload={"request_id": req.id, "notes": notes, "allocated_count": len(allocated)},
    )
    return req


def reject_threshold_request(
    *,
    request_id: int,
    reason: str,
    actor_user_id: int | None = None,
) -> ThresholdRequest:
    reason = require_text(reason, "reason")
    req = get_threshold_request(request_id)
    _require_pending(req.status, f"Threshold request {req.id}", "rejected")

    req.status = "rejected"
    req.reviewed_by_user_id = actor_user_id
    req.reviewed_at = utcnow()
    req.review_notes = reason
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="THRESHOLD_REQUEST_REJECTED",
        target_entity="threshold_request",
        target_id=req.id,
        branch_id=req.branch_id,
        payload={"request_id": req.id, "reason": reason},
    )
    return req


def list_threshold_requests(*, branch_id: int | None = None) -> list[ThresholdRequest]:
    query = db.session.query(ThresholdRequest)
    if branch_id is not None:
        query = query.filter(ThresholdRequest.branch_id == branch_id)
    return query.order_by(ThresholdRequest.created_at.desc(), ThresholdRequest.id.desc()).all()
