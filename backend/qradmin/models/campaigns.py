from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Campaign(db.Model):
    """
    A sector campaign that QR codes are earmarked for.

    LIFECYCLE: draft -> active <-> inactive -> completed. Completed campaigns
    are frozen. Transitions and QR assignment live in
    services/campaign_service.py.
    """
    __tablename__ = "campaigns"
    __table_args__ = (
        db.Index("ix_campaigns_sector_status", "sector", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    sector = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)

    target_qr_count = db.Column(db.Integer, nullable=False)
    # Branch ids; empty means every branch
    target_branch_ids = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Campaign id={self.id} status={self.status}>"

    @property
    def allocated_qr_count(self) -> int:
        return len(self.qr_codes)

    @property
    def issued_qr_count(self) -> int:
        return sum(1 for qr in self.qr_codes if qr.status == "issued")

    def to_dict(self) -> dict:
        allocated = self.allocated_qr_count
        issued = self.issued_qr_count
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "sector": self.sector,
            "status": self.status,
            "is_active": self.status == "active",
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "target_qr_count": self.target_qr_count,
            "target_branch_ids": list(self.target_branch_ids or []),
            "notes": self.notes,
            "allocated_qr_count": allocated,
            "issued_qr_count": issued,
            "utilization_rate": round(issued / allocated * 100, 2) if allocated else 0.0,
            "completion_rate": round(issued / self.target_qr_count * 100, 2) if self.target_qr_count else 0.0,
            "created_by_user_id": self.created_by_user_id,
            "updated_by_user_id": self.updated_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
