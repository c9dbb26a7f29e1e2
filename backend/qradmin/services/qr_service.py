# Overview: Service-layer operations for the QR code lifecycle; encapsulates business logic and database work.

"""
QR Code Lifecycle Service

================================================================================
PURPOSE: Every QR status change goes through this module.
================================================================================

STATE MACHINE:
    unallocated -> allocated | blocked | retired
    allocated   -> issued | blocked | retired
    issued      -> returned | blocked
    returned    -> allocated | blocked | retired
    blocked     -> retired
    retired     (terminal)

RULES:
1. A QR can only be issued if it is allocated to a branch and the merchant's
   kyc_status is "verified".
2. Invalid transitions raise QRLifecycleError and nothing is written.
3. Every operation appends one AuditLog entry in the same transaction.
4. QR rows are never deleted.

The sync routine (sync_qr_assignments) is the one repair path that moves QRs
outside the table: allocated QRs whose branch is gone go back to the pool,
issued QRs whose seller is gone go back to the branch.
================================================================================
"""

from __future__ import annotations

import csv
import io
import logging
import secrets

import qrcode
from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import (
    AllocationRecord,
    AllocationRequest,
    Branch,
    IssuanceRecord,
    Merchant,
    QRCode,
    ReturnRecord,
    User,
)
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    require_positive_int,
    require_text,
    validate_payload,
)
from .audit_log_service import append_audit_log
from .concurrency import lock_for_update


logger = logging.getLogger(__name__)


QR_STATUSES = ("unallocated", "allocated", "issued", "returned", "retired", "blocked")
QR_TYPES = ("static", "dynamic")

ALLOWED_TRANSITIONS = {
    "unallocated": {"allocated", "blocked", "retired"},
    "allocated": {"issued", "blocked", "retired"},
    "issued": {"returned", "blocked"},
    "returned": {"allocated", "blocked", "retired"},
    "blocked": {"retired"},
    "retired": set(),
}

# Statuses a QR may be allocated to a branch from
ALLOCATABLE_STATUSES = ("unallocated", "returned")

EXPORT_KINDS = ("qr_codes", "allocations", "issuances")

QR_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"merchant_code", "terminal_id", "notes"},
)


class QRLifecycleError(ValueError):
    """
    Raised when an operation would break the QR lifecycle rules.

    This is a domain error; the message names the current status.
    """
    pass


class InsufficientInventoryError(QRLifecycleError):
    """Not enough QR codes in the pool (or source branch) to satisfy a bulk move."""
    pass


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def _assert_transition(qr: QRCode, to_status: str) -> None:
    if not can_transition(qr.status, to_status):
        raise QRLifecycleError(
            f"Cannot change QR code {qr.id} from {qr.status} to {to_status}"
        )


def get_qr(qr_id: int) -> QRCode:
    qr = db.session.get(QRCode, qr_id)
    if not qr:
        raise NotFoundError("QR code not found")
    return qr


def _get_active_branch(branch_id: int) -> Branch:
    branch_id = require_positive_int(branch_id, "branch_id")
    branch = db.session.get(Branch, branch_id)
    if not branch:
        raise NotFoundError("Branch not found")
    if not branch.is_active:
        raise QRLifecycleError(f"Branch {branch.branch_code} is inactive")
    return branch


def _max_batch_size() -> int:
    return current_app.config.get("QR_MAX_BATCH_SIZE", 10_000)


def _check_batch_size(count: int) -> None:
    limit = _max_batch_size()
    if count > limit:
        raise ValidationError(f"At most {limit} QR codes can be processed in one batch")


def build_qr_value(
    bank_name: str,
    merchant_name: str | None = None,
    merchant_code: str | None = None,
    terminal_id: str | None = None,
) -> str:
    """Payload encoded in the QR: bank, merchant name, merchant code[, terminal], one per line."""
    parts = [bank_name, merchant_name or "", merchant_code or ""]
    if terminal_id:
        parts.append(terminal_id)
    return "\n".join(parts)


def generate_qr_codes(
    *,
    count,
    qr_type: str,
    bank_name: str | None,
    merchant_name: str | None = None,
    merchant_code: str | None = None,
    terminal_id: str | None = None,
    actor_user_id: int | None = None,
) -> list[QRCode]:
    """Create `count` unallocated QR codes. Logs QR_GENERATED."""
    if not bank_name or not str(bank_name).strip():
        raise ValidationError("Bank Name is required")
    count = require_positive_int(count, "count")
    _check_batch_size(count)
    if qr_type not in QR_TYPES:
        raise ValidationError(f"qr_type must be one of: {', '.join(QR_TYPES)}")

    bank_name = bank_name.strip()
    value = build_qr_value(bank_name, merchant_name, merchant_code, terminal_id)

    qrs = [
        QRCode(
            qr_value=value,
            qr_type=qr_type,
            generation_source="system",
            status="unallocated",
            bank_name=bank_name,
            merchant_name=merchant_name or None,
            merchant_code=merchant_code or None,
            terminal_id=terminal_id or None,
            created_by_user_id=actor_user_id,
        )
        for _ in range(count)
    ]
    db.session.add_all(qrs)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="QR_GENERATED",
        target_entity="qr_code",
        payload={
            "count": count,
            "qr_type": qr_type,
            "bank_name": bank_name,
            "first_qr_id": qrs[0].id,
            "last_qr_id": qrs[-1].id,
        },
    )
    logger.info("Generated %d %s QR codes", count, qr_type)
    return qrs


def upload_qr_codes(
    *,
    content: str,
    filename: str | None = None,
    actor_user_id: int | None = None,
) -> list[QRCode]:
    """
    Import a CSV batch into the unallocated pool.

    The file needs a qr_value column; qr_type is optional (default static).
    All rows share one upload_file_id. Any bad row rejects the whole file.
    Logs QR_UPLOADED.
    """
    reader = csv.DictReader(io.StringIO(content))
    fields = [f.strip() for f in (reader.fieldnames or [])]
    if "qr_value" not in fields:
        raise ValidationError("CSV must have a qr_value column")
    reader.fieldnames = fields

    upload_file_id = f"upload_{secrets.token_hex(8)}"
    qrs: list[QRCode] = []

    # Row 1 is the header
    for row_number, row in enumerate(reader, start=2):
        value = (row.get("qr_value") or "").strip()
        if not value:
            raise ValidationError(f"Row {row_number}: qr_value is required")
        qr_type = (row.get("qr_type") or "static").strip().lower()
        if qr_type not in QR_TYPES:
            raise ValidationError(f"Row {row_number}: qr_type must be one of: {', '.join(QR_TYPES)}")
        qrs.append(QRCode(
            qr_value=value,
            qr_type=qr_type,
            generation_source="upload",
            upload_file_id=upload_file_id,
            status="unallocated",
            created_by_user_id=actor_user_id,
        ))

    if not qrs:
        raise ValidationError("No QR codes found in upload")
    _check_batch_size(len(qrs))

    db.session.add_all(qrs)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="QR_UPLOADED",
        target_entity="qr_code",
        payload={"filename": filename, "count": len(qrs), "upload_file_id": upload_file_id},
    )
    logger.info("Uploaded %d QR codes from %s", len(qrs), filename or "<stream>")
    return qrs


def list_qr_codes(
    *,
    status: str | None = None,
    branch_id: int | None = None,
    assigned_user_id: int | None = None,
) -> list[QRCode]:
    if status is not None and status not in QR_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(QR_STATUSES)}")

    query = db.session.query(QRCode)
    if status:
        query = query.filter(QRCode.status == status)
    if branch_id is not None:
        query = query.filter(QRCode.allocated_branch_id == branch_id)
    if assigned_user_id is not None:
        query = query.filter(QRCode.allocated_to_user_id == assigned_user_id)
    return query.order_by(QRCode.id.asc()).all()


def _mark_allocated(qr: QRCode, branch_id: int, actor_user_id: int | None) -> None:
    qr.status = "allocated"
    qr.allocated_branch_id = branch_id
    qr.allocated_to_user_id = None
    qr.issued_to_merchant_id = None
    db.session.add(AllocationRecord(
        qr_id=qr.id,
        branch_id=branch_id,
        allocated_by_user_id=actor_user_id,
        allocated_at=utcnow(),
    ))


def allocate_qrs_to_branch(
    *,
    qr_ids: list[int],
    branch_id: int,
    actor_user_id: int | None = None,
) -> list[QRCode]:
    """
    Allocate specific QR codes to a branch. Each must be unallocated or
    returned; one bad id rejects the whole batch. Logs QR_ALLOCATED.
    """
    if not isinstance(qr_ids, list) or not qr_ids:
        raise ValidationError("qr_ids must be a non-empty list")
    ids = [require_positive_int(i, "qr_ids") for i in qr_ids]
    if len(set(ids)) != len(ids):
        raise ValidationError("qr_ids must not contain duplicates")
    _check_batch_size(len(ids))
    branch_id = _get_active_branch(branch_id).id

    rows = lock_for_update(db.session.query(QRCode).filter(QRCode.id.in_(ids))).all()
    by_id = {qr.id: qr for qr in rows}

    missing = [i for i in ids if i not in by_id]
    if missing:
        raise NotFoundError(f"QR codes not found: {', '.join(str(i) for i in missing)}")

    for qr_id in ids:
        qr = by_id[qr_id]
        if qr.status not in ALLOCATABLE_STATUSES:
            raise QRLifecycleError(
                f"QR code {qr.id} is {qr.status}; only unallocated or returned QR codes can be allocated"
            )

    qrs = [by_id[i] for i in ids]
    for qr in qrs:
        _mark_allocated(qr, branch_id, actor_user_id)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="QR_ALLOCATED",
        target_entity="qr_code",
        branch_id=branch_id,
        payload={"qr_ids": ids, "branch_id": branch_id},
    )
    logger.info("Allocated %d QR codes to branch %s", len(qrs), branch_id)
    return qrs


def bulk_allocate_qrs(
    *,
    branch_id: int,
    count,
    actor_user_id: int | None = None,
) -> list[QRCode]:
    """
    Allocate the oldest `count` unallocated QR codes to a branch.

    All-or-nothing: if the pool is short, InsufficientInventoryError is
    raised and nothing moves. Logs BULK_QR_ALLOCATED.
    """
    count = require_positive_int(count, "count")
    _check_batch_size(count)
    branch_id = _get_active_branch(branch_id).id

    candidates = lock_for_update(
        db.session.query(QRCode)
        .filter(QRCode.status == "unallocated")
        .order_by(QRCode.created_at.asc(), QRCode.id.asc())
        .limit(count)
    ).all()

    if len(candidates) < count:
        raise InsufficientInventoryError(f"Only {len(candidates)} unallocated QR codes available")

    for qr in candidates:
        _mark_allocated(qr, branch_id, actor_user_id)
    db.session.flush()

    qr_ids = [qr.id for qr in candidates]
    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="BULK_QR_ALLOCATED",
        target_entity="qr_code",
        branch_id=branch_id,
        payload={"branch_id": branch_id, "count": count, "qr_ids": qr_ids},
    )
    logger.info("Bulk allocated %d QR codes to branch %s", count, branch_id)
    return candidates


def bulk_assign_qrs(
    *,
    source_branch_id: int,
    target_branch_id: int,
    count,
    actor_user_id: int | None = None,
) -> list[QRCode]:
    """
    Move `count` allocated QR codes from one branch to another.
    All-or-nothing. Logs BULK_QR_ASSIGNED.
    """
    count = require_positive_int(count, "count")
    source_branch_id = require_positive_int(source_branch_id, "source_branch_id")
    if source_branch_id == target_branch_id:
        raise ValidationError("Source and target branch must differ")
    if not db.session.get(Branch, source_branch_id):
        raise NotFoundError("Source branch not found")
    target_branch_id = _get_active_branch(target_branch_id).id

    candidates = lock_for_update(
        db.session.query(QRCode)
        .filter(QRCode.status == "allocated", QRCode.allocated_branch_id == source_branch_id)
        .order_by(QRCode.created_at.asc(), QRCode.id.asc())
        .limit(count)
    ).all()

    if len(candidates) < count:
        raise InsufficientInventoryError(f"Only {len(candidates)} available QR codes in source branch")

    for qr in candidates:
        _mark_allocated(qr, target_branch_id, actor_user_id)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="BULK_QR_ASSIGNED",
        target_entity="qr_code",
        branch_id=target_branch_id,
        payload={
            "source_branch_id": source_branch_id,
            "target_branch_id": target_branch_id,
            "count": count,
            "qr_ids": [qr.id for qr in candidates],
        },
    )
    logger.info("Moved %d QR codes from branch %s to branch %s", count, source_branch_id, target_branch_id)
    return candidates


def assign_qr_to_user(*, qr_id: int, user_id: int, actor_user_id: int | None = None) -> QRCode:
    """Hand an allocated QR to an active sales user of the same branch. Logs QR_ASSIGNED_TO_USER."""
    qr = get_qr(qr_id)
    if qr.status != "allocated":
        raise QRLifecycleError(f"QR code {qr.id} is {qr.status}; only allocated QR codes can be assigned")

    user = db.session.get(User, require_positive_int(user_id, "user_id"))
    if not user:
        raise NotFoundError("User not found")
    if not user.is_active:
        raise QRLifecycleError("Cannot assign a QR code to an inactive user")
    if user.role != "SALES_USER":
        raise QRLifecycleError("QR codes can only be assigned to sales users")
    if user.branch_id != qr.allocated_branch_id:
        raise QRLifecycleError("User does not belong to the QR code's branch")

    previous = qr.allocated_to_user_id
    qr.allocated_to_user_id = user.id
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="QR_ASSIGNED_TO_USER",
        target_entity="qr_code",
        target_id=qr.id,
        branch_id=qr.allocated_branch_id,
        payload={"qr_id": qr.id, "user_id": user.id, "previous_user_id": previous},
    )
    return qr


def issue_qr_to_merchant(
    *,
    qr_id: int,
    merchant_id: int,
    actor_user_id: int | None = None,
    issuance_document: str | None = None,
) -> QRCode:
    """
    allocated -> issued.

    Requires the QR to sit in a branch and the merchant to be KYC-verified.
    The issuing user becomes the QR's seller unless one was assigned already.
    Writes an IssuanceRecord. Logs QR_ISSUED.
    """
    qr = get_qr(qr_id)
    _assert_transition(qr, "issued")
    if qr.allocated_branch_id is None:
        raise QRLifecycleError(f"QR code {qr.id} must be allocated to a branch before issuance")

    merchant = db.session.get(Merchant, require_positive_int(merchant_id, "merchant_id"))
    if not merchant:
        raise NotFoundError("Merchant not found")
    if merchant.kyc_status != "verified":
        raise QRLifecycleError(
            f"Merchant {merchant.shop_name} has KYC status '{merchant.kyc_status}'; "
            f"QR codes can only be issued to KYC-verified merchants"
        )

    now = utcnow()
    qr.status = "issued"
    qr.issued_to_merchant_id = merchant.id
    if qr.allocated_to_user_id is None:
        qr.allocated_to_user_id = actor_user_id

    record = IssuanceRecord(
        qr_id=qr.id,
        merchant_id=merchant.id,
        issued_by_user_id=actor_user_id,
        issued_at=now,
        issuance_document=issuance_document,
    )
    db.session.add(record)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="QR_ISSUED",
        target_entity="qr_code",
        target_id=qr.id,
        branch_id=qr.allocated_branch_id,
        payload={"qr_id": qr.id, "merchant_id": merchant.id, "merchant_name": merchant.shop_name},
    )
    logger.info("Issued QR %s to merchant %s", qr.id, merchant.id)
    return qr


def return_qr(
    *,
    qr_id: int,
    reason: str,
    condition: str,
    actor_user_id: int | None = None,
) -> ReturnRecord:
    """issued -> returned. Writes a pending ReturnRecord. Logs QR_RETURNED."""
    reason = require_text(reason, "reason")
    condition = require_text(condition, "condition")

    qr = get_qr(qr_id)
    _assert_transition(qr, "returned")

    qr.status = "returned"
    record = ReturnRecord(
        qr_id=qr.id,
        returned_by_user_id=actor_user_id,
        returned_at=utcnow(),
        reason=reason,
        condition=condition,
        status="pending",
    )
    db.session.add(record)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="QR_RETURNED",
        target_entity="qr_code",
        target_id=qr.id,
        branch_id=qr.allocated_branch_id,
        payload={"qr_id": qr.id, "reason": reason, "condition": condition},
    )
    return record


def _mark_blocked(qr: QRCode, reason: str, actor_user_id: int | None) -> None:
    qr.status = "blocked"
    qr.blocked_reason = reason
    qr.blocked_at = utcnow()
    qr.blocked_by_user_id = actor_user_id


def block_qr_code(*, qr_id: int, reason: str, actor_user_id: int | None = None) -> QRCode:
    """Any non-terminal, non-blocked status -> blocked. Logs QR_BLOCKED."""
    reason = require_text(reason, "reason")
    qr = get_qr(qr_id)
    _assert_transition(qr, "blocked")

    _mark_blocked(qr, reason, actor_user_id)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="QR_BLOCKED",
        target_entity="qr_code",
        target_id=qr.id,
        branch_id=qr.allocated_branch_id,
        payload={"qr_id": qr.id, "reason": reason},
    )
    logger.info("Blocked QR %s", qr.id)
    return qr


def update_qr_status(
    *,
    qr_id: int,
    status: str,
    reason: str,
    actor_user_id: int | None = None,
) -> QRCode:
    """
    Generic transition along the table, with a status-change note appended.

    Issuance has its own gates and is not reachable from here. Logs
    QR_STATUS_UPDATED.
    """
    if status not in QR_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(QR_STATUSES)}")
    reason = require_text(reason, "reason")

    qr = get_qr(qr_id)
    if status == "issued":
        raise QRLifecycleError("Use the issue operation to issue a QR code to a merchant")
    _assert_transition(qr, status)
    if status == "allocated" and qr.allocated_branch_id is None:
        raise QRLifecycleError(f"QR code {qr.id} has no branch to be allocated to")

    old_status = qr.status
    if status == "blocked":
        _mark_blocked(qr, reason, actor_user_id)
    elif status == "allocated":
        _mark_allocated(qr, qr.allocated_branch_id, actor_user_id)
    else:
        qr.status = status

    note = f"Status changed from {old_status} to {status}. Reason: {reason}"
    qr.notes = f"{qr.notes}\n{note}" if qr.notes else note
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="QR_STATUS_UPDATED",
        target_entity="qr_code",
        target_id=qr.id,
        branch_id=qr.allocated_branch_id,
        payload={"qr_id": qr.id, "old_status": old_status, "new_status": status, "reason": reason},
    )
    return qr


def update_qr_code(*, qr_id: int, payload: dict, actor_user_id: int | None = None) -> QRCode:
    """Edit merchant_code, terminal_id or notes. Retired QR codes are frozen. Logs QR_UPDATED."""
    qr = get_qr(qr_id)
    if qr.status == "retired":
        raise QRLifecycleError(f"QR code {qr.id} is retired and cannot be edited")

    patch = validate_payload(model=QRCode, payload=payload, policy=QR_UPDATE_POLICY, partial=True)
    if not patch:
        raise ValidationError("Nothing to update")

    for key, value in patch.items():
        setattr(qr, key, value)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="QR_UPDATED",
        target_entity="qr_code",
        target_id=qr.id,
        branch_id=qr.allocated_branch_id,
        payload={"qr_id": qr.id, "updates": patch},
    )
    return qr


def sync_qr_assignments(*, actor_user_id: int | None = None) -> dict:
    """
    Repair QR assignments against the current branches and users.

    - allocated QRs whose branch is missing or inactive -> unallocated
    - issued QRs whose seller is missing or inactive -> allocated

    Logs DATA_SYNC with the counts.
    """
    active_branch_ids = {
        b.id for b in db.session.query(Branch).filter(Branch.is_active.is_(True)).all()
    }
    active_user_ids = {
        u.id for u in db.session.query(User).filter(User.is_active.is_(True)).all()
    }

    released = 0
    allocated = lock_for_update(db.session.query(QRCode).filter(QRCode.status == "allocated")).all()
    for qr in allocated:
        if qr.allocated_branch_id not in active_branch_ids:
            qr.status = "unallocated"
            qr.allocated_branch_id = None
            qr.allocated_to_user_id = None
            released += 1

    reverted = 0
    issued = lock_for_update(db.session.query(QRCode).filter(QRCode.status == "issued")).all()
    for qr in issued:
        if qr.allocated_to_user_id is not None and qr.allocated_to_user_id not in active_user_ids:
            qr.status = "allocated"
            qr.allocated_to_user_id = None
            qr.issued_to_merchant_id = None
            reverted += 1

    db.session.flush()

    summary = {
        "released_to_pool": released,
        "returned_to_branch": reverted,
        "qr_count": db.session.query(func.count(QRCode.id)).scalar(),
        "user_count": db.session.query(func.count(User.id)).scalar(),
        "branch_count": db.session.query(func.count(Branch.id)).scalar(),
    }
    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="DATA_SYNC",
        target_entity="system",
        payload=dict(summary, timestamp=to_utc_z(utcnow())),
    )
    logger.info("QR sync released %d to pool, returned %d to branches", released, reverted)
    return summary


def export_csv(kind: str, *, branch_id: int | None = None) -> str:
    """CSV text for qr_codes, allocations (requests) or issuances, optionally for one branch."""
    if kind not in EXPORT_KINDS:
        raise ValidationError(f"Export type must be one of: {', '.join(EXPORT_KINDS)}")

    buffer = io.StringIO()
    writer = csv.writer(buffer)

    if kind == "qr_codes":
        writer.writerow(["ID", "QR Value", "Type", "Status", "Branch", "Created At"])
        query = db.session.query(QRCode)
        if branch_id is not None:
            query = query.filter(QRCode.allocated_branch_id == branch_id)
        for qr in query.order_by(QRCode.id.asc()).all():
            writer.writerow([
                qr.id,
                qr.qr_value,
                qr.qr_type,
                qr.status,
                qr.allocated_branch_id if qr.allocated_branch_id is not None else "N/A",
                to_utc_z(qr.created_at),
            ])
    elif kind == "allocations":
        writer.writerow(["Request ID", "Branch", "Count", "Status", "Created At"])
        query = db.session.query(AllocationRequest)
        if branch_id is not None:
            query = query.filter(AllocationRequest.branch_id == branch_id)
        requests = query.order_by(AllocationRequest.id.asc()).all()
        for req in requests:
            writer.writerow([
                req.request_number,
                req.branch_id,
                req.requested_qr_count,
                req.status,
                to_utc_z(req.created_at),
            ])
    else:
        writer.writerow(["Issuance ID", "QR ID", "Merchant", "Issued By", "Issued At"])
        query = db.session.query(IssuanceRecord)
        if branch_id is not None:
            query = query.join(QRCode, QRCode.id == IssuanceRecord.qr_id).filter(
                QRCode.allocated_branch_id == branch_id
            )
        records = query.order_by(IssuanceRecord.id.asc()).all()
        for rec in records:
            writer.writerow([
                rec.id,
                rec.qr_id,
                rec.merchant_id,
                rec.issued_by_user_id if rec.issued_by_user_id is not None else "",
                to_utc_z(rec.issued_at),
            ])

    return buffer.getvalue()


def render_qr_png(qr_id: int) -> bytes:
    """PNG image of the QR's value."""
    qr_row = get_qr(qr_id)

    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(qr_row.qr_value)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()
