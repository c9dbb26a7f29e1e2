# Overview: Demo dataset for local development, built through the regular services.

from __future__ import annotations

import logging
from datetime import timedelta

from ..extensions import db
from ..models import Branch, User
from ..time_utils import utcnow
from . import audit_service, auth_service, branch_service, kyc_service, qr_service, request_service


logger = logging.getLogger(__name__)

# Meets the password strength rules. Change it outside local development.
DEMO_PASSWORD = "Password123!"

DEMO_BRANCHES = [
    {"branch_code": "DHK001", "name": "Dhaka Main", "region": "Dhaka", "type": "domestic", "country": "Bangladesh"},
    {"branch_code": "DHK002", "name": "Gulshan", "region": "Dhaka", "type": "domestic", "country": "Bangladesh"},
    {"branch_code": "CTG001", "name": "Chittagong Port", "region": "Chittagong", "type": "domestic", "country": "Bangladesh"},
    {"branch_code": "SGP001", "name": "Singapore Rep Office", "region": "Overseas", "type": "international", "country": "Singapore"},
]

# (username, name, role, index into DEMO_BRANCHES or None)
DEMO_USERS = [
    ("admin", "System Administrator", "SUPER_ADMIN", None),
    ("auditor", "Internal Auditor", "AUDITOR", None),
    ("manager.dhk", "Dhaka Branch Manager", "BRANCH_MANAGER", 0),
    ("approver.dhk", "Dhaka Approver", "BRANCH_APPROVER", 0),
    ("initiator.dhk", "Dhaka Request Initiator", "REQUEST_INITIATOR", 0),
    ("sales.dhk", "Dhaka Sales Officer", "SALES_USER", 0),
    ("sales.gul", "Gulshan Sales Officer", "SALES_USER", 1),
    ("manager.ctg", "Chittagong Branch Manager", "BRANCH_MANAGER", 2),
]

DEMO_MERCHANTS = [
    {"legal_name": "Rahman Traders Ltd", "shop_name": "Rahman Grocery", "merchant_id_in_core": "M-10001",
     "phone": "+8801700000001", "email": "rahman@example.com"},
    {"legal_name": "Karim Pharmacy", "shop_name": "Karim Medicals", "merchant_id_in_core": "M-10002",
     "phone": "+8801700000002", "email": "karim@example.com"},
    {"legal_name": "Port City Electronics", "shop_name": "PCE Store", "merchant_id_in_core": "M-10003",
     "email": "pce@example.com"},
]

DEMO_AUDIT_ITEMS = [
    ("qr_management", "inventory", "QR inventory reconciliation", "high", "compliant", 95),
    ("qr_management", "issuance", "Issuance documents on file", "medium", "requires_action", 70),
    ("user_access", "roles", "Quarterly role review", "high", "compliant", 90),
    ("data_protection", "retention", "Audit log retention", "medium", "in_review", None),
    ("process_compliance", "approvals", "Four-eyes approval on allocations", "critical", "compliant", 100),
    ("security_controls", "authentication", "Password policy enforcement", "high", "non_compliant", 60),
    ("kyc_verification", "documents", "KYC document completeness", "high", "pending", None),
]


def seed_demo_data(*, qr_count: int = 200) -> dict:
    """
    Build a small connected dataset. Does nothing if branches already exist.
    Caller commits.
    """
    if db.session.query(Branch.id).first():
        logger.info("Demo data skipped: branches already exist")
        return {"seeded": False}

    branches = [branch_service.create_branch(payload) for payload in DEMO_BRANCHES]

    users: dict[str, User] = {}
    for username, name, role, branch_index in DEMO_USERS:
        existing = db.session.query(User).filter_by(username=username).first()
        if existing:
            users[username] = existing
            continue
        users[username] = auth_service.create_user(
            {
                "username": username,
                "email": f"{username}@qradmin.local",
                "name": name,
                "role": role,
                "branch_id": branches[branch_index].id if branch_index is not None else None,
            },
            DEMO_PASSWORD,
        )

    admin_id = users["admin"].id
    for branch, username in ((branches[0], "manager.dhk"), (branches[2], "manager.ctg")):
        branch.manager_id = users[username].id

    merchants = [
        kyc_service.create_merchant(payload, default_branch_id=branches[0].id, actor_user_id=admin_id)
        for payload in DEMO_MERCHANTS
    ]

    # First two merchants get verified; the third stays pending review.
    for merchant in merchants:
        kyc = kyc_service.create_kyc_request(
            merchant_id=merchant.id,
            documents={"business_license": f"license-{merchant.merchant_id_in_core}.pdf",
                       "tax_certificate": f"tin-{merchant.merchant_id_in_core}.pdf"},
            actor_user_id=users["initiator.dhk"].id,
        )
        if merchant is not merchants[-1]:
            kyc_service.approve_kyc_request(request_id=kyc.id, notes="Documents verified",
                                            actor_user_id=users["approver.dhk"].id)

    qr_service.generate_qr_codes(
        count=qr_count,
        qr_type="static",
        bank_name="Demo Bank",
        actor_user_id=admin_id,
    )

    req = request_service.create_allocation_request(
        branch_id=branches[0].id,
        requested_qr_count=20,
        requested_for="Merchant onboarding drive",
        actor_user_id=users["initiator.dhk"].id,
    )
    request_service.approve_allocation_request(
        request_id=req.id, notes="Approved for Q4 drive", actor_user_id=users["approver.dhk"].id
    )
    qr_service.bulk_allocate_qrs(branch_id=branches[1].id, count=10, actor_user_id=admin_id)
    request_service.create_allocation_request(
        branch_id=branches[2].id,
        requested_qr_count=15,
        requested_for="Port area merchants",
        actor_user_id=users["manager.ctg"].id,
    )

    dhaka_qrs = qr_service.list_qr_codes(status="allocated", branch_id=branches[0].id)
    seller = users["sales.dhk"]
    for qr, merchant in zip(dhaka_qrs[:4], [merchants[0], merchants[0], merchants[1], merchants[1]]):
        qr_service.assign_qr_to_user(qr_id=qr.id, user_id=seller.id, actor_user_id=users["manager.dhk"].id)
        qr_service.issue_qr_to_merchant(qr_id=qr.id, merchant_id=merchant.id, actor_user_id=seller.id)

    request_service.create_threshold_request(
        branch_id=branches[1].id,
        threshold=15,
        requested_amount=25,
        reason="Inventory below threshold",
        actor_user_id=admin_id,
    )

    due = (utcnow() + timedelta(days=30)).date()
    items = []
    for category, subcategory, title, risk, status, score in DEMO_AUDIT_ITEMS:
        item = audit_service.create_audit_item(
            {
                "category": category,
                "subcategory": subcategory,
                "title": title,
                "description": f"{title} for all branches",
                "risk_level": risk,
                "due_date": due.isoformat(),
                "target_entity": "system",
                "target_entity_id": "all",
            },
            actor_user_id=users["auditor"].id,
        )
        if status != "pending":
            update = {"status": status}
            if score is not None:
                update["score"] = score
            audit_service.update_audit_item(item.id, update, actor_user_id=users["auditor"].id)
        items.append(item)

    audit_service.create_checklist(
        name="Quarterly QR Controls",
        description="QR inventory and issuance controls",
        category="qr_management",
        item_ids=[i.id for i in items if i.category == "qr_management"],
        actor_user_id=users["auditor"].id,
    )
    audit_service.create_checklist(
        name="Access and Security Review",
        category="security_controls",
        item_ids=[i.id for i in items if i.category in ("user_access", "security_controls")],
        actor_user_id=users["auditor"].id,
    )

    db.session.flush()
    summary = {
        "seeded": True,
        "branches": len(branches),
        "users": len(users),
        "merchants": len(merchants),
        "qr_codes": qr_count,
        "audit_items": len(items),
    }
    logger.info("Demo data seeded: %s", summary)
    return summary
