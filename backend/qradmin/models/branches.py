from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Branch(db.Model):
    """
    A bank branch that holds QR inventory and employs users.

    QR codes reference a branch through allocated_branch_id; users through
    branch_id. Branches are deactivated rather than deleted while they still
    own anything.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.Index("ix_branches_region", "region"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    region = db.Column(db.String(64), nullable=False)
    branch_type = db.Column(db.String(16), nullable=False, default="domestic")  # domestic, international
    state = db.Column(db.String(64), nullable=True)
    country = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Not a FK: users reference branches, and the manager is one of those users
    manager_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Branch id={self.id} code={self.branch_code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_code": self.branch_code,
            "name": self.name,
            "region": self.region,
            "type": self.branch_type,
            "state": self.state,
            "country": self.country,
            "is_active": self.is_active,
            "manager_id": self.manager_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
