from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class AuditLog(db.Model):
    """
    Append-only action record written by every mutating operation.

    INVARIANTS:
    - Written in the same DB transaction as the change it records.
    - Never updated or deleted.
    - branch_id is the branch the action concerns (if any) so branch-scoped
      dashboards can filter recent activity without parsing payloads.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_action_ts", "action_type", "timestamp"),
        db.Index("ix_audit_logs_branch_ts", "branch_id", "timestamp"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)  # None = system
    action_type = db.Column(db.String(64), nullable=False)
    target_entity = db.Column(db.String(64), nullable=False)
    target_id = db.Column(db.Integer, nullable=True)
    branch_id = db.Column(db.Integer, nullable=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "action_type": self.action_type,
            "target_entity": self.target_entity,
            "target_id": self.target_id,
            "branch_id": self.branch_id,
            "payload": self.payload or {},
            "timestamp": to_utc_z(self.timestamp),
        }


audit_checklist_items = db.Table(
    "audit_checklist_items",
    db.Column("checklist_id", db.Integer, db.ForeignKey("audit_checklists.id"), primary_key=True),
    db.Column("item_id", db.Integer, db.ForeignKey("audit_items.id"), primary_key=True),
)


class AuditItem(db.Model):
    """Compliance checklist entry reviewed by an auditor."""
    __tablename__ = "audit_items"
    __table_args__ = (
        db.Index("ix_audit_items_category_status", "category", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category = db.Column(db.String(32), nullable=False)
    subcategory = db.Column(db.String(64), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    risk_level = db.Column(db.String(16), nullable=False)  # low, medium, high, critical
    status = db.Column(db.String(16), nullable=False, default="pending")

    audited_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    audited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    findings = db.Column(db.Text, nullable=True)
    recommendations = db.Column(db.Text, nullable=True)
    due_date = db.Column(db.Date, nullable=False)
    last_review_date = db.Column(db.DateTime(timezone=True), nullable=True)
    evidence = db.Column(db.JSON, nullable=False, default=list)
    score = db.Column(db.Integer, nullable=True)  # 0-100

    target_entity = db.Column(db.String(64), nullable=False)
    target_entity_id = db.Column(db.String(64), nullable=False)
    branch_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category,
            "subcategory": self.subcategory,
            "title": self.title,
            "description": self.description,
            "risk_level": self.risk_level,
            "status": self.status,
            "audited_by_user_id": self.audited_by_user_id,
            "audited_at": to_utc_z(self.audited_at),
            "findings": self.findings,
            "recommendations": self.recommendations,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "last_review_date": to_utc_z(self.last_review_date),
            "evidence": self.evidence or [],
            "score": self.score,
            "target_entity": self.target_entity,
            "target_entity_id": self.target_entity_id,
            "branch_id": self.branch_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class AuditChecklist(db.Model):
    """Named group of audit items; scores are computed on read."""
    __tablename__ = "audit_checklists"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(32), nullable=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    items = db.relationship("AuditItem", secondary=audit_checklist_items, lazy="selectin")


class AuditScorecardSnapshot(db.Model):
    """Overall score of each generated scorecard; the previous one drives the trend."""
    __tablename__ = "audit_scorecard_snapshots"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    period = db.Column(db.String(32), nullable=False)
    overall_score = db.Column(db.Integer, nullable=False)
    risk_level = db.Column(db.String(16), nullable=False)
    generated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    generated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
