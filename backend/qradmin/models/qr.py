from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class QRCode(db.Model):
    """
    A payment QR code and its position in the lifecycle.

    STATUS: unallocated -> allocated -> issued -> returned, plus blocked and
    retired. Transitions are validated in services/qr_service.py; rows are
    never deleted.

    version_id guards against two approvers allocating the same row at once.
    """
    __tablename__ = "qr_codes"
    __table_args__ = (
        db.Index("ix_qr_codes_status_branch", "status", "allocated_branch_id"),
        db.Index("ix_qr_codes_user_status", "allocated_to_user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    qr_value = db.Column(db.Text, nullable=False)
    qr_type = db.Column(db.String(16), nullable=False, default="static")  # static, dynamic
    generation_source = db.Column(db.String(16), nullable=False, default="system")  # system, upload
    upload_file_id = db.Column(db.String(64), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="unallocated", index=True)

    allocated_branch_id = db.Column(
        db.Integer, db.ForeignKey("branches.id", ondelete="SET NULL"), nullable=True, index=True
    )
    allocated_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    issued_to_merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=True, index=True)
    campaign_id = db.Column(
        db.Integer, db.ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Payload metadata encoded into qr_value
    bank_name = db.Column(db.String(120), nullable=True)
    merchant_name = db.Column(db.String(120), nullable=True)
    merchant_code = db.Column(db.String(64), nullable=True)
    terminal_id = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    blocked_reason = db.Column(db.Text, nullable=True)
    blocked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    blocked_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    allocated_branch = db.relationship("Branch", backref=db.backref("qr_codes", lazy=True))
    allocated_to_user = db.relationship("User", foreign_keys=[allocated_to_user_id])
    issued_to_merchant = db.relationship("Merchant", backref=db.backref("qr_codes", lazy=True))
    campaign = db.relationship("Campaign", backref=db.backref("qr_codes", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<QRCode id={self.id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "qr_value": self.qr_value,
            "qr_type": self.qr_type,
            "generation_source": self.generation_source,
            "upload_file_id": self.upload_file_id,
            "status": self.status,
            "allocated_branch_id": self.allocated_branch_id,
            "allocated_to_user_id": self.allocated_to_user_id,
            "issued_to_merchant_id": self.issued_to_merchant_id,
            "campaign_id": self.campaign_id,
            "bank_name": self.bank_name,
            "merchant_name": self.merchant_name,
            "merchant_code": self.merchant_code,
            "terminal_id": self.terminal_id,
            "notes": self.notes,
            "blocked_reason": self.blocked_reason,
            "blocked_at": to_utc_z(self.blocked_at),
            "blocked_by_user_id": self.blocked_by_user_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class AllocationRecord(db.Model):
    """History row: a QR code entered a branch's inventory."""
    __tablename__ = "allocation_records"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    qr_id = db.Column(db.Integer, db.ForeignKey("qr_codes.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, nullable=False, index=True)
    allocated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    allocated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "qr_id": self.qr_id,
            "branch_id": self.branch_id,
            "allocated_by_user_id": self.allocated_by_user_id,
            "allocated_at": to_utc_z(self.allocated_at),
        }


class IssuanceRecord(db.Model):
    """History row: a QR code was handed to a merchant."""
    __tablename__ = "issuance_records"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    qr_id = db.Column(db.Integer, db.ForeignKey("qr_codes.id"), nullable=False, index=True)
    merchant_id = db.Column(db.Integer, nullable=False, index=True)
    issued_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    issuance_document = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "qr_id": self.qr_id,
            "merchant_id": self.merchant_id,
            "issued_by_user_id": self.issued_by_user_id,
            "issued_at": to_utc_z(self.issued_at),
            "issuance_document": self.issuance_document,
        }


class ReturnRecord(db.Model):
    """History row: a merchant handed a QR code back."""
    __tablename__ = "return_records"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    qr_id = db.Column(db.Integer, db.ForeignKey("qr_codes.id"), nullable=False, index=True)
    returned_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    reason = db.Column(db.Text, nullable=False)
    condition = db.Column(db.String(64), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="pending")  # pending, approved, rejected

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "qr_id": self.qr_id,
            "returned_by_user_id": self.returned_by_user_id,
            "returned_at": to_utc_z(self.returned_at),
            "reason": self.reason,
            "condition": self.condition,
            "approved_by_user_id": self.approved_by_user_id,
            "status": self.status,
        }
