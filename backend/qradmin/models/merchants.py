from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Merchant(db.Model):
    """
    Merchant onboarded by a branch.

    kyc_status is the issuance gate: only "verified" merchants receive QR
    codes. It is written only by the KYC review operations.
    """
    __tablename__ = "merchants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    legal_name = db.Column(db.String(200), nullable=False)
    shop_name = db.Column(db.String(200), nullable=False)
    merchant_id_in_core = db.Column(db.String(64), nullable=True, unique=True)
    address = db.Column(db.Text, nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    kyc_status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending, verified, rejected

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    branch = db.relationship("Branch", backref=db.backref("merchants", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "legal_name": self.legal_name,
            "shop_name": self.shop_name,
            "merchant_id_in_core": self.merchant_id_in_core,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "kyc_status": self.kyc_status,
            "branch_id": self.branch_id,
            "created_at": to_utc_z(self.created_at),
        }


class KYCRequest(db.Model):
    """
    Submitted KYC document set for a merchant.

    LIFECYCLE: pending -> approved | rejected. At most one pending request per
    merchant (enforced in kyc_service).
    """
    __tablename__ = "kyc_requests"
    __table_args__ = (
        db.Index("ix_kyc_requests_merchant_status", "merchant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    branch_id = db.Column(db.Integer, nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # business_license, tax_certificate, bank_statement, ownership_proof, additional_docs
    documents = db.Column(db.JSON, nullable=False, default=dict)

    review_notes = db.Column(db.Text, nullable=True)
    reviewed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    merchant = db.relationship("Merchant", backref=db.backref("kyc_requests", lazy=True, cascade="all, delete-orphan"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "merchant_id": self.merchant_id,
            "requested_by_user_id": self.requested_by_user_id,
            "branch_id": self.branch_id,
            "status": self.status,
            "documents": self.documents or {},
            "review_notes": self.review_notes,
            "reviewed_by_user_id": self.reviewed_by_user_id,
            "reviewed_at": to_utc_z(self.reviewed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
