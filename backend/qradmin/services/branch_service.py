# Overview: Service-layer operations for branches; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import func, or_

from ..extensions import db
from ..models import AllocationRequest, Branch, MerchantRequest, QRCode, ThresholdRequest, User
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    enforce_rules_branch,
    validate_payload,
)
from .audit_log_service import append_audit_log


BRANCH_POLICY = ModelValidationPolicy(
    writable_fields={"branch_code", "name", "region", "branch_type", "state", "country", "is_active", "manager_id"},
    required_on_create={"branch_code", "name", "region", "branch_type"},
)


def normalize_branch_payload(payload: dict | None) -> dict:
    """JSON uses "type"; the column is branch_type."""
    data = dict(payload or {})
    if "type" in data:
        data["branch_type"] = data.pop("type")
    return data


def get_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if not branch:
        raise NotFoundError("Branch not found")
    return branch


def _check_code_unique(code: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Branch).filter(Branch.branch_code == code)
    if exclude_id is not None:
        q = q.filter(Branch.id != exclude_id)
    if q.first():
        raise ConflictError(f"Branch code '{code}' already exists")


def create_branch(payload: dict, *, actor_user_id: int | None = None) -> Branch:
    patch = validate_payload(
        model=Branch, payload=normalize_branch_payload(payload), policy=BRANCH_POLICY, partial=False
    )
    enforce_rules_branch(patch)
    _check_code_unique(patch["branch_code"])

    branch = Branch(**patch)
    db.session.add(branch)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="BRANCH_CREATED",
        target_entity="branch",
        target_id=branch.id,
        branch_id=branch.id,
        payload={"branch_code": branch.branch_code, "name": branch.name, "region": branch.region},
    )
    return branch


def update_branch(branch_id: int, payload: dict, *, actor_user_id: int | None = None) -> Branch:
    branch = get_branch(branch_id)
    patch = validate_payload(
        model=Branch, payload=normalize_branch_payload(payload), policy=BRANCH_POLICY, partial=True
    )
    enforce_rules_branch(patch)
    if "branch_code" in patch:
        _check_code_unique(patch["branch_code"], exclude_id=branch.id)

    for key, value in patch.items():
        setattr(branch, key, value)

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="BRANCH_UPDATED",
        target_entity="branch",
        target_id=branch.id,
        branch_id=branch.id,
        payload={"updates": sorted(patch.keys())},
    )
    return branch


# QR codes in these states stay tied to the branch that issued them.
BRANCH_BOUND_QR_STATUSES = ("issued", "returned", "blocked")


def delete_branch(branch_id: int, *, actor_user_id: int | None = None) -> None:
    """
    Refused while users belong to the branch, while it has issued, returned
    or blocked QR codes, and while any allocation, merchant or threshold
    request names it. QR codes merely allocated to a deleted branch are
    returned to the pool by the sync routine.
    """
    branch = get_branch(branch_id)

    user_count = db.session.query(func.count(User.id)).filter(User.branch_id == branch.id).scalar()
    if user_count:
        raise ConflictError("Cannot delete branch with existing users. Please reassign users first.")

    bound_qrs = db.session.query(func.count(QRCode.id)).filter(
        QRCode.allocated_branch_id == branch.id,
        QRCode.status.in_(BRANCH_BOUND_QR_STATUSES),
    ).scalar()
    if bound_qrs:
        raise ConflictError(
            f"Cannot delete branch with {bound_qrs} issued, returned or blocked QR codes. Deactivate it instead."
        )

    for model in (AllocationRequest, MerchantRequest, ThresholdRequest):
        if db.session.query(model.id).filter(model.branch_id == branch.id).first():
            raise ConflictError("Cannot delete branch with request history. Deactivate it instead.")

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="BRANCH_DELETED",
        target_entity="branch",
        target_id=branch.id,
        payload={"branch_code": branch.branch_code},
    )
    db.session.delete(branch)


def list_branches(*, region: str | None = None, active_only: bool = False) -> list[Branch]:
    query = db.session.query(Branch)
    if region:
        query = query.filter(Branch.region == region)
    if active_only:
        query = query.filter(Branch.is_active.is_(True))
    return query.order_by(Branch.name.asc()).all()


def get_distinct_regions() -> list[str]:
    rows = db.session.query(Branch.region).distinct().order_by(Branch.region.asc()).all()
    return [r[0] for r in rows]


def search_branches(term: str) -> list[Branch]:
    """Case-insensitive substring match on name, code or region."""
    pattern = f"%{term.strip().lower()}%"
    return (
        db.session.query(Branch)
        .filter(or_(
            func.lower(Branch.name).like(pattern),
            func.lower(Branch.branch_code).like(pattern),
            func.lower(Branch.region).like(pattern),
        ))
        .order_by(Branch.name.asc())
        .all()
    )
