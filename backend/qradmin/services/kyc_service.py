# Overview: Service-layer operations for merchants and KYC; encapsulates business logic and database work.

"""
Merchant onboarding and KYC verification.

KYC request lifecycle: pending -> approved | rejected. At most one pending
request per merchant. Reviewing a request is the only thing that writes a
merchant's kyc_status:

    approved -> merchant.kyc_status = "verified"
    rejected -> merchant.kyc_status = "rejected"

KYC review never touches QR rows; issuance checks kyc_status itself.
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import KYCRequest, Merchant, MerchantRequest, QRCode
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_merchant,
    require_positive_int,
    require_text,
    validate_payload,
)
from .audit_log_service import append_audit_log


logger = logging.getLogger(__name__)


KYC_STATUSES = ("pending", "verified", "rejected")
KYC_REQUEST_STATUSES = ("pending", "approved", "rejected")

DOCUMENT_KEYS = (
    "business_license",
    "tax_certificate",
    "bank_statement",
    "ownership_proof",
    "additional_docs",
)

MERCHANT_POLICY = ModelValidationPolicy(
    writable_fields={"legal_name", "shop_name", "merchant_id_in_core", "address", "phone", "email", "branch_id"},
    required_on_create={"legal_name", "shop_name"},
)


class KYCError(ValueError):
    """Raised when a KYC action is not allowed in the request's current state."""
    pass


# -- Merchants --

def get_merchant(merchant_id: int) -> Merchant:
    merchant = db.session.get(Merchant, require_positive_int(merchant_id, "merchant_id"))
    if not merchant:
        raise NotFoundError("Merchant not found")
    return merchant


def create_merchant(
    payload: dict,
    *,
    default_branch_id: int | None = None,
    actor_user_id: int | None = None,
) -> Merchant:
    """
    Onboard a merchant. kyc_status always starts as pending, whatever the
    client sends. Logs MERCHANT_CREATED.
    """
    patch = validate_payload(model=Merchant, payload=payload, policy=MERCHANT_POLICY, partial=False)
    enforce_rules_merchant(patch)

    core_id = patch.get("merchant_id_in_core")
    if core_id:
        exists = db.session.query(Merchant.id).filter_by(merchant_id_in_core=core_id).first()
        if exists:
            raise ConflictError(f"Merchant with core id '{core_id}' already exists")

    if patch.get("branch_id") is None:
        patch["branch_id"] = default_branch_id

    merchant = Merchant(**patch)
    merchant.kyc_status = "pending"
    db.session.add(merchant)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="MERCHANT_CREATED",
        target_entity="merchant",
        target_id=merchant.id,
        branch_id=merchant.branch_id,
        payload={"merchant_id": merchant.id, "shop_name": merchant.shop_name, "legal_name": merchant.legal_name},
    )
    return merchant


def list_merchants(*, branch_id: int | None = None, kyc_status: str | None = None) -> list[Merchant]:
    if kyc_status is not None and kyc_status not in KYC_STATUSES:
        raise ValidationError(f"kyc_status must be one of: {', '.join(KYC_STATUSES)}")

    query = db.session.query(Merchant)
    if branch_id is not None:
        query = query.filter(Merchant.branch_id == branch_id)
    if kyc_status:
        query = query.filter(Merchant.kyc_status == kyc_status)
    return query.order_by(Merchant.created_at.desc(), Merchant.id.desc()).all()


def delete_merchant(merchant_id: int, *, actor_user_id: int | None = None) -> None:
    """
    Refused while QR codes are issued to the merchant or a merchant QR request
    is still pending. KYC requests go with the merchant. Logs MERCHANT_DELETED.
    """
    merchant = get_merchant(merchant_id)

    issued = db.session.query(func.count(QRCode.id)).filter(
        QRCode.issued_to_merchant_id == merchant.id,
        QRCode.status == "issued",
    ).scalar()
    if issued:
        raise ConflictError(f"Cannot delete merchant with {issued} issued QR codes. Return them first.")

    pending = db.session.query(func.count(MerchantRequest.id)).filter(
        MerchantRequest.merchant_id == merchant.id,
        MerchantRequest.status == "pending",
    ).scalar()
    if pending:
        raise ConflictError("Cannot delete merchant with pending QR requests")

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="MERCHANT_DELETED",
        target_entity="merchant",
        target_id=merchant.id,
        branch_id=merchant.branch_id,
        payload={"merchant_id": merchant.id, "shop_name": merchant.shop_name},
    )
    db.session.delete(merchant)


# -- KYC requests --

def _validate_documents(documents) -> dict:
    if documents is None:
        raise ValidationError("documents is required")
    if not isinstance(documents, dict):
        raise ValidationError("documents must be an object")

    unknown = sorted(set(documents) - set(DOCUMENT_KEYS))
    if unknown:
        raise ValidationError(f"Unknown document types: {', '.join(unknown)}")

    cleaned: dict = {}
    for key, value in documents.items():
        if key == "additional_docs":
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ValidationError("additional_docs must be a list of strings")
            cleaned[key] = [v.strip() for v in value if v.strip()]
        elif value is not None:
            if not isinstance(value, str):
                raise ValidationError(f"{key} must be a string")
            if value.strip():
                cleaned[key] = value.strip()

    if not any(cleaned.get(k) for k in DOCUMENT_KEYS):
        raise ValidationError("At least one document is required")
    return cleaned


def get_kyc_request(request_id: int) -> KYCRequest:
    req = db.session.get(KYCRequest, request_id)
    if not req:
        raise NotFoundError("KYC request not found")
    return req


def create_kyc_request(
    *,
    merchant_id: int,
    documents,
    branch_id: int | None = None,
    actor_user_id: int | None = None,
) -> KYCRequest:
    """Submit documents for review. Logs KYC_REQUEST_CREATED."""
    merchant = get_merchant(merchant_id)
    docs = _validate_documents(documents)

    pending = db.session.query(KYCRequest.id).filter_by(merchant_id=merchant.id, status="pending").first()
    if pending:
        raise ConflictError("A KYC request is already pending for this merchant")

    req = KYCRequest(
        merchant_id=merchant.id,
        requested_by_user_id=actor_user_id,
        branch_id=branch_id if branch_id is not None else merchant.branch_id,
        status="pending",
        documents=docs,
    )
    db.session.add(req)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="KYC_REQUEST_CREATED",
        target_entity="kyc_request",
        target_id=req.id,
        branch_id=req.branch_id,
        payload={"request_id": req.id, "merchant_id": merchant.id, "documents": sorted(docs.keys())},
    )
    return req


def _review(req: KYCRequest, *, status: str, notes: str | None, actor_user_id: int | None) -> None:
    if req.status != "pending":
        raise KYCError(f"KYC request {req.id} is {req.status}; only pending requests can be reviewed")
    req.status = status
    req.reviewed_by_user_id = actor_user_id
    req.reviewed_at = utcnow()
    req.review_notes = notes


def approve_kyc_request(
    *,
    request_id: int,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> KYCRequest:
    """pending -> approved; merchant becomes verified. Logs KYC_REQUEST_APPROVED."""
    req = get_kyc_request(request_id)
    notes = (notes or "").strip() or None
    _review(req, status="approved", notes=notes, actor_user_id=actor_user_id)

    merchant = get_merchant(req.merchant_id)
    merchant.kyc_status = "verified"
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="KYC_REQUEST_APPROVED",
        target_entity="kyc_request",
        target_id=req.id,
        branch_id=req.branch_id,
        payload={"request_id": req.id, "merchant_id": merchant.id, "notes": notes},
    )
    logger.info("KYC request %s approved; merchant %s verified", req.id, merchant.id)
    return req


def reject_kyc_request(
    *,
    request_id: int,
    reason: str,
    actor_user_id: int | None = None,
) -> KYCRequest:
    """pending -> rejected; merchant becomes rejected. Logs KYC_REQUEST_REJECTED."""
    reason = require_text(reason, "reason")
    req = get_kyc_request(request_id)
    _review(req, status="rejected", notes=reason, actor_user_id=actor_user_id)

    merchant = get_merchant(req.merchant_id)
    merchant.kyc_status = "rejected"
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="KYC_REQUEST_REJECTED",
        target_entity="kyc_request",
        target_id=req.id,
        branch_id=req.branch_id,
        payload={"request_id": req.id, "merchant_id": merchant.id, "reason": reason},
    )
    logger.info("KYC request %s rejected; merchant %s rejected", req.id, merchant.id)
    return req


def list_kyc_requests(
    *,
    branch_id: int | None = None,
    status: str | None = None,
    merchant_id: int | None = None,
) -> list[KYCRequest]:
    if status is not None and status not in KYC_REQUEST_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(KYC_REQUEST_STATUSES)}")

    query = db.session.query(KYCRequest)
    if branch_id is not None:
        query = query.filter(KYCRequest.branch_id == branch_id)
    if status:
        query = query.filter(KYCRequest.status == status)
    if merchant_id is not None:
        query = query.filter(KYCRequest.merchant_id == merchant_id)
    return query.order_by(KYCRequest.created_at.desc(), KYCRequest.id.desc()).all()
