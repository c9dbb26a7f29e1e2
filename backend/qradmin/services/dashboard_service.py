# Overview: Read-only dashboard aggregations over QR inventory, requests and sellers.

"""
Dashboard aggregation.

Scope is decided by the caller:
- branch_id None -> global view
- branch_id set  -> only that branch's QRs; unallocated is always 0
- seller_user_id set -> only QRs assigned to that sales user
"""

from __future__ import annotations

from collections import defaultdict

from sqlalchemy import func

from ..extensions import db
from ..models import AllocationRequest, Branch, KYCRequest, QRCode, User
from ..time_utils import to_utc_z
from .audit_log_service import list_audit_logs


RECENT_ACTIVITY_LIMIT = 10
TOP_LIMIT = 5


def _qr_counts(*, branch_id: int | None, seller_user_id: int | None) -> dict[str, int]:
    query = db.session.query(QRCode.status, func.count(QRCode.id)).group_by(QRCode.status)
    if branch_id is not None:
        query = query.filter(QRCode.allocated_branch_id == branch_id)
    if seller_user_id is not None:
        query = query.filter(QRCode.allocated_to_user_id == seller_user_id)
    return {status: int(count) for status, count in query.all()}


def _issued_by_seller(branch_id: int | None = None) -> dict[int, int]:
    query = db.session.query(QRCode.allocated_to_user_id, func.count(QRCode.id)).filter(
        QRCode.status == "issued",
        QRCode.allocated_to_user_id.isnot(None),
    )
    if branch_id is not None:
        query = query.filter(QRCode.allocated_branch_id == branch_id)
    return {user_id: int(count) for user_id, count in query.group_by(QRCode.allocated_to_user_id).all()}


def _issued_by_branch() -> dict[int, int]:
    rows = db.session.query(QRCode.allocated_branch_id, func.count(QRCode.id)).filter(
        QRCode.status == "issued",
        QRCode.allocated_branch_id.isnot(None),
    ).group_by(QRCode.allocated_branch_id).all()
    return {branch_id: int(count) for branch_id, count in rows}


def _top_sellers(*, branch_id: int | None, seller_user_id: int | None) -> list[dict]:
    query = db.session.query(User).filter(User.role == "SALES_USER")
    if seller_user_id is not None:
        query = query.filter(User.id == seller_user_id)
    elif branch_id is not None:
        query = query.filter(User.branch_id == branch_id)
    sellers = query.all()

    issued = _issued_by_seller(branch_id)
    branch_names = {b.id: b.name for b in db.session.query(Branch).all()}

    rows = [
        {
            "user_id": s.id,
            "name": s.name,
            "count": issued.get(s.id, 0),
            "branch": branch_names.get(s.branch_id, "Unknown"),
        }
        for s in sellers
    ]
    rows.sort(key=lambda r: (-r["count"], r["name"]))
    return rows[:TOP_LIMIT]


def get_dashboard_stats(*, branch_id: int | None = None, seller_user_id: int | None = None) -> dict:
    """Headline numbers for the dashboard in the given scope."""
    counts = _qr_counts(branch_id=branch_id, seller_user_id=seller_user_id)
    scoped = branch_id is not None or seller_user_id is not None

    qr_stats = {
        "total": sum(counts.values()),
        "unallocated": 0 if scoped else counts.get("unallocated", 0),
        "allocated": counts.get("allocated", 0),
        "issued": counts.get("issued", 0),
        "returned": counts.get("returned", 0),
        "blocked": counts.get("blocked", 0),
        "retired": counts.get("retired", 0),
    }

    req_query = db.session.query(AllocationRequest)
    kyc_query = db.session.query(func.count(KYCRequest.id)).filter(KYCRequest.status == "pending")
    if branch_id is not None:
        req_query = req_query.filter(AllocationRequest.branch_id == branch_id)
        kyc_query = kyc_query.filter(KYCRequest.branch_id == branch_id)
    requests = req_query.all()

    request_stats = {
        "pending": sum(1 for r in requests if r.status == "pending"),
        "approved": sum(1 for r in requests if r.status == "approved"),
        "rejected": sum(1 for r in requests if r.status == "rejected"),
        "returned_for_correction": sum(1 for r in requests if r.returned_for_correction),
    }

    branch_issued = _issued_by_branch()
    if branch_id is None:
        branches = db.session.query(Branch).all()
        top_branches = sorted(
            ({"branch_id": b.id, "name": b.name, "count": branch_issued.get(b.id, 0)} for b in branches),
            key=lambda r: (-r["count"], r["name"]),
        )[:TOP_LIMIT]
        top_regions = get_region_performance()[:TOP_LIMIT]
    else:
        branch = db.session.get(Branch, branch_id)
        top_branches = [{
            "branch_id": branch_id,
            "name": branch.name if branch else "Unknown",
            "count": qr_stats["issued"],
        }]
        top_regions = []

    recent = list_audit_logs(branch_id=branch_id, limit=RECENT_ACTIVITY_LIMIT)

    return {
        "qr_codes": qr_stats,
        "requests": request_stats,
        "pending_kyc": int(kyc_query.scalar() or 0),
        "top_sellers": _top_sellers(branch_id=branch_id, seller_user_id=seller_user_id),
        "top_branches": top_branches,
        "top_regions": top_regions,
        "recent_activity": [log.to_dict() for log in recent],
    }


def get_branch_inventory(*, branch_id: int | None = None, seller_user_id: int | None = None) -> list[dict]:
    """Per-branch QR inventory with utilization (issued / total, percent)."""
    branch_query = db.session.query(Branch).order_by(Branch.name.asc())
    if branch_id is not None:
        branch_query = branch_query.filter(Branch.id == branch_id)
    branches = branch_query.all()

    query = db.session.query(
        QRCode.allocated_branch_id,
        QRCode.status,
        func.count(QRCode.id),
        func.max(QRCode.updated_at),
    ).filter(QRCode.allocated_branch_id.isnot(None))
    if seller_user_id is not None:
        query = query.filter(QRCode.allocated_to_user_id == seller_user_id)
    rows = query.group_by(QRCode.allocated_branch_id, QRCode.status).all()

    per_branch: dict = defaultdict(dict)
    last_activity: dict = {}
    for bid, status, count, last in rows:
        per_branch[bid][status] = int(count)
        if last is not None and (bid not in last_activity or last > last_activity[bid]):
            last_activity[bid] = last

    result = []
    for branch in branches:
        counts = per_branch.get(branch.id, {})
        total = sum(counts.values())
        issued = counts.get("issued", 0)
        result.append({
            "branch_id": branch.id,
            "branch_code": branch.branch_code,
            "branch_name": branch.name,
            "region": branch.region,
            "total_allocated": total,
            "issued": issued,
            "available": counts.get("allocated", 0),
            "returned": counts.get("returned", 0),
            "blocked": counts.get("blocked", 0),
            "utilization_rate": round(issued * 100 / total) if total else 0,
            "last_activity": to_utc_z(last_activity.get(branch.id)),
        })
    return result


def get_region_performance() -> list[dict]:
    """Issued QR count per region, best first."""
    branch_issued = _issued_by_branch()
    regions: dict = defaultdict(lambda: {"count": 0, "branch_count": 0})
    for branch in db.session.query(Branch).all():
        entry = regions[branch.region]
        entry["count"] += branch_issued.get(branch.id, 0)
        entry["branch_count"] += 1

    rows = [{"name": name, **data} for name, data in regions.items()]
    rows.sort(key=lambda r: (-r["count"], r["name"]))
    return rows


def get_seller_performance(*, branch_id: int | None = None) -> list[dict]:
    """Every sales user with assigned and issued counts, best first."""
    query = db.session.query(User).filter(User.role == "SALES_USER")
    if branch_id is not None:
        query = query.filter(User.branch_id == branch_id)
    sellers = query.all()

    assigned_rows = db.session.query(QRCode.allocated_to_user_id, func.count(QRCode.id)).filter(
        QRCode.allocated_to_user_id.isnot(None),
    ).group_by(QRCode.allocated_to_user_id).all()
    assigned = {uid: int(count) for uid, count in assigned_rows}
    issued = _issued_by_seller()
    branch_names = {b.id: b.name for b in db.session.query(Branch).all()}

    rows = []
    for seller in sellers:
        total = assigned.get(seller.id, 0)
        count = issued.get(seller.id, 0)
        rows.append({
            "user_id": seller.id,
            "name": seller.name,
            "branch_id": seller.branch_id,
            "branch": branch_names.get(seller.branch_id, "Unknown"),
            "assigned": total,
            "issued": count,
            "conversion_rate": round(count * 100 / total) if total else 0,
            "is_active": seller.is_active,
        })
    rows.sort(key=lambda r: (-r["issued"], r["name"]))
    return rows
