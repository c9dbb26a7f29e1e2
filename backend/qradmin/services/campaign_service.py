# Overview: Sector campaigns: lifecycle, QR earmarking and campaign performance.

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import Branch, Campaign, QRCode
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    require_positive_int,
    validate_payload,
)
from .audit_log_service import append_audit_log
from .concurrency import lock_for_update


logger = logging.getLogger(__name__)


CAMPAIGN_SECTORS = (
    "retail",
    "hotel",
    "educational",
    "clothing",
    "food_beverage",
    "healthcare",
    "automotive",
    "services",
    "other",
)
CAMPAIGN_STATUSES = ("draft", "active", "inactive", "completed")

ALLOWED_TRANSITIONS = {
    "draft": {"active"},
    "active": {"inactive", "completed"},
    "inactive": {"active", "completed"},
    "completed": set(),
}

# QR codes in these states cannot be earmarked
UNASSIGNABLE_QR_STATUSES = ("blocked", "retired")

CAMPAIGN_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "sector", "start_date", "end_date",
        "target_qr_count", "target_branch_ids", "notes",
    },
    required_on_create={"name", "sector", "start_date", "target_qr_count"},
)


class CampaignError(ValueError):
    """A lifecycle or assignment rule was broken; the message names the campaign status."""
    pass


def get_campaign(campaign_id: int) -> Campaign:
    campaign = db.session.get(Campaign, campaign_id)
    if not campaign:
        raise NotFoundError("Campaign not found")
    return campaign


def _assert_editable(campaign: Campaign) -> None:
    if campaign.status == "completed":
        raise CampaignError(f"Campaign {campaign.id} is completed and cannot be changed")


def _check_fields(patch: dict, campaign: Campaign | None = None) -> None:
    if "sector" in patch and patch["sector"] not in CAMPAIGN_SECTORS:
        raise ValidationError(f"sector must be one of: {', '.join(CAMPAIGN_SECTORS)}")

    if "target_qr_count" in patch:
        patch["target_qr_count"] = require_positive_int(patch["target_qr_count"], "target_qr_count")
        if campaign is not None and patch["target_qr_count"] < campaign.allocated_qr_count:
            raise ValidationError(
                f"target_qr_count cannot be below the {campaign.allocated_qr_count} QR codes already assigned"
            )

    start = patch.get("start_date", campaign.start_date if campaign else None)
    end = patch.get("end_date", campaign.end_date if campaign else None)
    if start and end and end < start:
        raise ValidationError("end_date cannot be before start_date")

    if "target_branch_ids" in patch:
        ids = patch["target_branch_ids"]
        if not isinstance(ids, list):
            raise ValidationError("target_branch_ids must be a list of branch ids")
        ids = sorted({require_positive_int(i, "target_branch_ids") for i in ids})
        found = {b_id for (b_id,) in db.session.query(Branch.id).filter(Branch.id.in_(ids)).all()}
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFoundError(f"Branches not found: {', '.join(str(i) for i in missing)}")
        patch["target_branch_ids"] = ids


def create_campaign(payload: dict, *, actor_user_id: int | None = None) -> Campaign:
    """New campaigns start as drafts. Logs CAMPAIGN_CREATED."""
    patch = validate_payload(model=Campaign, payload=payload, policy=CAMPAIGN_POLICY, partial=False)
    _check_fields(patch)

    campaign = Campaign(
        status="draft",
        created_by_user_id=actor_user_id,
        updated_by_user_id=actor_user_id,
        **patch,
    )
    if campaign.target_branch_ids is None:
        campaign.target_branch_ids = []
    db.session.add(campaign)
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="CAMPAIGN_CREATED",
        target_entity="campaign",
        target_id=campaign.id,
        payload={"name": campaign.name, "sector": campaign.sector, "target_qr_count": campaign.target_qr_count},
    )
    return campaign


def update_campaign(campaign_id: int, payload: dict, *, actor_user_id: int | None = None) -> Campaign:
    campaign = get_campaign(campaign_id)
    _assert_editable(campaign)
    patch = validate_payload(model=Campaign, payload=payload, policy=CAMPAIGN_POLICY, partial=True)
    _check_fields(patch, campaign)

    for key, value in patch.items():
        setattr(campaign, key, value)
    campaign.updated_by_user_id = actor_user_id

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="CAMPAIGN_UPDATED",
        target_entity="campaign",
        target_id=campaign.id,
        payload={"updates": sorted(patch.keys())},
    )
    return campaign


def _transition(campaign_id: int, to_status: str, action_type: str, actor_user_id: int | None) -> Campaign:
    campaign = get_campaign(campaign_id)
    if to_status not in ALLOWED_TRANSITIONS[campaign.status]:
        raise CampaignError(f"Cannot change campaign {campaign.id} from {campaign.status} to {to_status}")

    old_status = campaign.status
    campaign.status = to_status
    campaign.updated_by_user_id = actor_user_id

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type=action_type,
        target_entity="campaign",
        target_id=campaign.id,
        payload={"old_status": old_status, "new_status": to_status},
    )
    logger.info("Campaign %s: %s -> %s", campaign.id, old_status, to_status)
    return campaign


def activate_campaign(campaign_id: int, *, actor_user_id: int | None = None) -> Campaign:
    return _transition(campaign_id, "active", "CAMPAIGN_ACTIVATED", actor_user_id)


def deactivate_campaign(campaign_id: int, *, actor_user_id: int | None = None) -> Campaign:
    return _transition(campaign_id, "inactive", "CAMPAIGN_DEACTIVATED", actor_user_id)


def complete_campaign(campaign_id: int, *, actor_user_id: int | None = None) -> Campaign:
    """Completion is final: the campaign and its QR list are frozen afterwards."""
    return _transition(campaign_id, "completed", "CAMPAIGN_COMPLETED", actor_user_id)


def delete_campaign(campaign_id: int, *, actor_user_id: int | None = None) -> None:
    """
    Only draft and inactive campaigns can be deleted. Their QR codes are
    released, not touched otherwise. Logs CAMPAIGN_DELETED.
    """
    campaign = get_campaign(campaign_id)
    if campaign.status in ("active", "completed"):
        raise CampaignError(f"Cannot delete a {campaign.status} campaign")

    released = [qr.id for qr in campaign.qr_codes]
    for qr in list(campaign.qr_codes):
        qr.campaign = None

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="CAMPAIGN_DELETED",
        target_entity="campaign",
        target_id=campaign.id,
        payload={"name": campaign.name, "released_qr_ids": released},
    )
    db.session.delete(campaign)


def _qr_ids(qr_ids) -> list[int]:
    if not isinstance(qr_ids, list) or not qr_ids:
        raise ValidationError("qr_ids must be a non-empty list")
    return sorted({require_positive_int(i, "qr_ids") for i in qr_ids})


def _load_qrs(ids: list[int]) -> list[QRCode]:
    qrs = lock_for_update(db.session.query(QRCode).filter(QRCode.id.in_(ids))).order_by(QRCode.id.asc()).all()
    found = {qr.id for qr in qrs}
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFoundError(f"QR codes not found: {', '.join(str(i) for i in missing)}")
    return qrs


def assign_qrs_to_campaign(
    *,
    campaign_id: int,
    qr_ids: list[int],
    branch_id: int | None = None,
    actor_user_id: int | None = None,
) -> list[QRCode]:
    """
    Earmark QR codes for a campaign. All-or-nothing.

    branch_id, when given, restricts the batch to QR codes allocated to that
    branch. QR codes already in this campaign are skipped. Logs
    CAMPAIGN_QR_ASSIGNED.
    """
    campaign = get_campaign(campaign_id)
    _assert_editable(campaign)
    qrs = _load_qrs(_qr_ids(qr_ids))
    targets = set(campaign.target_branch_ids or [])

    new = []
    for qr in qrs:
        if qr.campaign_id == campaign.id:
            continue
        if qr.campaign_id is not None:
            raise ConflictError(f"QR code {qr.id} already belongs to campaign {qr.campaign_id}")
        if qr.status in UNASSIGNABLE_QR_STATUSES:
            raise CampaignError(f"QR code {qr.id} is {qr.status} and cannot join a campaign")
        if branch_id is not None and qr.allocated_branch_id != branch_id:
            raise ValidationError(f"QR code {qr.id} is not allocated to branch {branch_id}")
        if targets and qr.allocated_branch_id is not None and qr.allocated_branch_id not in targets:
            raise ValidationError(f"QR code {qr.id} is allocated outside the campaign's target branches")
        new.append(qr)

    room = campaign.target_qr_count - campaign.allocated_qr_count
    if len(new) > room:
        raise ValidationError(
            f"Campaign {campaign.id} has room for {room} more QR codes, {len(new)} requested"
        )

    for qr in new:
        qr.campaign = campaign
    db.session.flush()

    if new:
        append_audit_log(
            actor_user_id=actor_user_id,
            action_type="CAMPAIGN_QR_ASSIGNED",
            target_entity="campaign",
            target_id=campaign.id,
            branch_id=branch_id,
            payload={"qr_ids": [qr.id for qr in new], "count": len(new)},
        )
    return new


def remove_qrs_from_campaign(
    *,
    campaign_id: int,
    qr_ids: list[int],
    branch_id: int | None = None,
    actor_user_id: int | None = None,
) -> list[QRCode]:
    """Release QR codes from a campaign. Logs CAMPAIGN_QR_REMOVED."""
    campaign = get_campaign(campaign_id)
    _assert_editable(campaign)
    qrs = _load_qrs(_qr_ids(qr_ids))

    for qr in qrs:
        if qr.campaign_id != campaign.id:
            raise ValidationError(f"QR code {qr.id} is not part of campaign {campaign.id}")
        if branch_id is not None and qr.allocated_branch_id != branch_id:
            raise ValidationError(f"QR code {qr.id} is not allocated to branch {branch_id}")

    for qr in qrs:
        qr.campaign = None
    db.session.flush()

    append_audit_log(
        actor_user_id=actor_user_id,
        action_type="CAMPAIGN_QR_REMOVED",
        target_entity="campaign",
        target_id=campaign.id,
        branch_id=branch_id,
        payload={"qr_ids": [qr.id for qr in qrs], "count": len(qrs)},
    )
    return qrs


def list_campaign_qrs(campaign_id: int, *, branch_id: int | None = None) -> list[QRCode]:
    campaign = get_campaign(campaign_id)
    query = db.session.query(QRCode).filter(QRCode.campaign_id == campaign.id)
    if branch_id is not None:
        query = query.filter(QRCode.allocated_branch_id == branch_id)
    return query.order_by(QRCode.id.asc()).all()


def list_campaigns(
    *,
    q: str | None = None,
    sector: str | None = None,
    status: str | None = None,
) -> list[Campaign]:
    """Newest first. q matches the name or description, case-insensitively."""
    if sector is not None and sector not in CAMPAIGN_SECTORS:
        raise ValidationError(f"sector must be one of: {', '.join(CAMPAIGN_SECTORS)}")
    if status is not None and status not in CAMPAIGN_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(CAMPAIGN_STATUSES)}")

    query = db.session.query(Campaign)
    if q:
        pattern = f"%{q.strip().lower()}%"
        query = query.filter(
            func.lower(Campaign.name).like(pattern) | func.lower(func.coalesce(Campaign.description, "")).like(pattern)
        )
    if sector:
        query = query.filter(Campaign.sector == sector)
    if status:
        query = query.filter(Campaign.status == status)
    return query.order_by(Campaign.created_at.desc(), Campaign.id.desc()).all()


def get_campaign_statistics() -> dict:
    campaigns = db.session.query(Campaign).all()

    by_status = {s: 0 for s in CAMPAIGN_STATUSES}
    by_sector: dict[str, int] = {}
    for c in campaigns:
        by_status[c.status] = by_status.get(c.status, 0) + 1
        by_sector[c.sector] = by_sector.get(c.sector, 0) + 1

    return {
        "total_campaigns": len(campaigns),
        "active_campaigns": by_status["active"],
        "completed_campaigns": by_status["completed"],
        "by_status": by_status,
        "by_sector": by_sector,
        "total_target_qrs": sum(c.target_qr_count for c in campaigns),
        "total_allocated_qrs": sum(c.allocated_qr_count for c in campaigns),
        "total_issued_qrs": sum(c.issued_qr_count for c in campaigns),
    }


def get_campaign_performance(*, sector: str | None = None) -> list[dict]:
    """One row per campaign, best completion first."""
    rows = []
    for c in list_campaigns(sector=sector):
        data = c.to_dict()
        rows.append({
            "campaign_id": c.id,
            "name": c.name,
            "sector": c.sector,
            "status": c.status,
            "target_qr_count": c.target_qr_count,
            "allocated_qr_count": data["allocated_qr_count"],
            "issued_qr_count": data["issued_qr_count"],
            "utilization_rate": data["utilization_rate"],
            "completion_rate": data["completion_rate"],
        })
    rows.sort(key=lambda r: (-r["completion_rate"], r["campaign_id"]))
    return rows
