from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class AllocationRequest(db.Model):
    """
    A branch's request for N QR codes from the unallocated pool.

    LIFECYCLE:
        pending -> approved | rejected | cancelled
        rejected -> pending (initiator edits and resubmits)

    returned_for_correction marks a pending request an approver sent back to
    the initiator; editing the request clears it.

    notes is append-only review history (approval notes, rejection reasons,
    correction reasons), one line per review action.
    """
    __tablename__ = "allocation_requests"
    __table_args__ = (
        db.Index("ix_allocation_requests_branch_status", "branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    initiator_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    requested_qr_count = db.Column(db.Integer, nullable=False)
    requested_for = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    returned_for_correction = db.Column(db.Boolean, nullable=False, default=False)

    approver_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.Text, nullable=False, default="")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch", backref=db.backref("allocation_requests", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_number": self.request_number,
            "branch_id": self.branch_id,
            "initiator_user_id": self.initiator_user_id,
            "requested_qr_count": self.requested_qr_count,
            "requested_for": self.requested_for,
            "status": self.status,
            "returned_for_correction": self.returned_for_correction,
            "approver_user_id": self.approver_user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class MerchantRequest(db.Model):
    """A merchant's request for additional QR codes, routed through its branch."""
    __tablename__ = "merchant_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, nullable=False, index=True)
    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    requested_qr_count = db.Column(db.Integer, nullable=False)
    business_justification = db.Column(db.Text, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    review_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "merchant_id": self.merchant_id,
            "requested_by_user_id": self.requested_by_user_id,
            "branch_id": self.branch_id,
            "requested_qr_count": self.requested_qr_count,
            "business_justification": self.business_justification,
            "status": self.status,
            "approved_by_user_id": self.approved_by_user_id,
            "rejection_reason": self.rejection_reason,
            "review_notes": self.review_notes,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
        }


class ThresholdRequest(db.Model):
    """Low-inventory replenishment request raised by a branch."""
    __tablename__ = "threshold_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    current_inventory = db.Column(db.Integer, nullable=False)
    threshold = db.Column(db.Integer, nullable=False)
    requested_amount = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.Text, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    review_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "current_inventory": self.current_inventory,
            "threshold": self.threshold,
            "requested_amount": self.requested_amount,
            "reason": self.reason,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "reviewed_by_user_id": self.reviewed_by_user_id,
            "review_notes": self.review_notes,
            "created_at": to_utc_z(self.created_at),
            "reviewed_at": to_utc_z(self.reviewed_at),
        }
