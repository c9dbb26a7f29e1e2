# Overview: Append-only audit log writes and the audit log query.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import AuditLog
from ..time_utils import utcnow

"""
Audit log invariants

- Append-only. No updates, no deletes.
- Entries are written inside the same DB transaction as the mutation they
  record (flush here, the route commits).
- actor_user_id None means the system (CLI, sync routine).
"""


def append_audit_log(
    *,
    action_type: str,
    target_entity: str,
    actor_user_id: int | None = None,
    target_id: int | None = None,
    branch_id: int | None = None,
    payload: dict | None = None,
) -> AuditLog:
    entry = AuditLog(
        actor_user_id=actor_user_id,
        action_type=action_type,
        target_entity=target_entity,
        target_id=target_id,
        branch_id=branch_id,
        payload=payload or {},
        timestamp=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_audit_logs(
    *,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    action_type: str | None = None,
    actor_user_id: int | None = None,
    branch_id: int | None = None,
    limit: int | None = None,
) -> list[AuditLog]:
    """Audit log entries newest first. Date bounds are inclusive."""
    query = db.session.query(AuditLog)

    if date_from is not None:
        query = query.filter(AuditLog.timestamp >= date_from)
    if date_to is not None:
        query = query.filter(AuditLog.timestamp <= date_to)
    if action_type:
        query = query.filter(AuditLog.action_type == action_type)
    if actor_user_id is not None:
        query = query.filter(AuditLog.actor_user_id == actor_user_id)
    if branch_id is not None:
        query = query.filter(AuditLog.branch_id == branch_id)

    query = query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()
