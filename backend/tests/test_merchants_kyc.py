"""
Merchant onboarding and KYC review.

kyc_status is the issuance gate, so the tests focus on who can move it and
when: only KYC review changes it, one pending request per merchant, and a
rejected merchant can resubmit.
"""

import pytest

from qradmin.extensions import db
from qradmin.models import AuditLog, KYCRequest, Merchant
from qradmin.services import kyc_service, qr_service
from qradmin.validation import ConflictError, ValidationError


DOCUMENTS = {"business_license": "license.pdf", "tax_certificate": "tin.pdf"}


@pytest.fixture
def merchant(client, headers_for, sales_a):
    resp = client.post(
        "/api/merchants",
        json={"legal_name": "Rahman Traders Ltd", "shop_name": "Rahman Grocery", "kyc_status": "verified"},
        headers=headers_for(sales_a),
    )
    assert resp.status_code == 201
    return resp.json["merchant"]


def _submit(client, headers, merchant_id, documents=DOCUMENTS):
    return client.post(
        "/api/kyc-requests",
        json={"merchant_id": merchant_id, "documents": documents},
        headers=headers,
    )


class TestMerchants:

    def test_new_merchant_starts_pending_in_own_branch(self, merchant, branch_a):
        assert merchant["kyc_status"] == "pending"
        assert merchant["branch_id"] == branch_a.id

    def test_create_requires_names(self, client, headers_for, sales_a):
        resp = client.post("/api/merchants", json={"legal_name": "No Shop"}, headers=headers_for(sales_a))
        assert resp.status_code == 400
        assert "shop_name" in resp.json["error"]

    def test_create_rejects_bad_email(self, client, headers_for, sales_a):
        resp = client.post(
            "/api/merchants",
            json={"legal_name": "A", "shop_name": "B", "email": "not-an-email"},
            headers=headers_for(sales_a),
        )
        assert resp.status_code == 400

    def test_duplicate_core_id(self, client, headers_for, sales_a):
        payload = {"legal_name": "A", "shop_name": "B", "merchant_id_in_core": "M-1"}
        assert client.post("/api/merchants", json=payload, headers=headers_for(sales_a)).status_code == 201
        resp = client.post("/api/merchants", json=payload, headers=headers_for(sales_a))
        assert resp.status_code == 409

    def test_list_is_branch_scoped(self, client, headers_for, admin, sales_b, merchant, branch_b, make_merchant):
        make_merchant(branch_b)

        own = client.get("/api/merchants", headers=headers_for(sales_b)).json["merchants"]
        assert all(m["branch_id"] == branch_b.id for m in own)
        assert len(own) == 1

        everything = client.get("/api/merchants", headers=headers_for(admin)).json["merchants"]
        assert len(everything) == 2

    def test_get_other_branch_merchant_denied(self, client, headers_for, sales_b, merchant):
        resp = client.get(f"/api/merchants/{merchant['id']}", headers=headers_for(sales_b))
        assert resp.status_code == 403

    def test_get_includes_kyc_history(self, client, headers_for, sales_a, merchant):
        _submit(client, headers_for(sales_a), merchant["id"])

        resp = client.get(f"/api/merchants/{merchant['id']}", headers=headers_for(sales_a))
        assert resp.status_code == 200
        assert len(resp.json["kyc_requests"]) == 1

    def test_delete_refused_while_qr_issued(self, db_session, branch_a, make_merchant, qr_pool):
        target = make_merchant(branch_a)
        qr = qr_pool(1)[0]
        qr_service.allocate_qrs_to_branch(qr_ids=[qr.id], branch_id=branch_a.id)
        qr_service.issue_qr_to_merchant(qr_id=qr.id, merchant_id=target.id)
        db_session.commit()

        with pytest.raises(ConflictError, match="issued QR codes"):
            kyc_service.delete_merchant(target.id)

    def test_delete_removes_kyc_requests(self, client, headers_for, sales_a, merchant):
        _submit(client, headers_for(sales_a), merchant["id"])

        resp = client.delete(f"/api/merchants/{merchant['id']}", headers=headers_for(sales_a))
        assert resp.status_code == 200
        assert db.session.get(Merchant, merchant["id"]) is None
        assert db.session.query(KYCRequest).count() == 0
        assert db.session.query(AuditLog).filter_by(action_type="MERCHANT_DELETED").count() == 1


class TestKYCRequests:

    def test_submit_leaves_merchant_pending(self, client, headers_for, sales_a, merchant):
        resp = _submit(client, headers_for(sales_a), merchant["id"])

        assert resp.status_code == 201
        assert resp.json["request"]["status"] == "pending"
        assert resp.json["request"]["documents"] == DOCUMENTS
        assert db.session.get(Merchant, merchant["id"]).kyc_status == "pending"

    def test_second_pending_request_conflicts(self, client, headers_for, sales_a, merchant):
        assert _submit(client, headers_for(sales_a), merchant["id"]).status_code == 201

        resp = _submit(client, headers_for(sales_a), merchant["id"])
        assert resp.status_code == 409
        assert db.session.query(KYCRequest).count() == 1

    @pytest.mark.parametrize(
        "documents",
        [
            None,
            {},
            {"passport": "p.pdf"},
            {"business_license": "   "},
            {"additional_docs": "one.pdf"},
        ],
    )
    def test_invalid_documents(self, client, headers_for, sales_a, merchant, documents):
        resp = _submit(client, headers_for(sales_a), merchant["id"], documents)
        assert resp.status_code == 400

    def test_approve_verifies_merchant(self, client, headers_for, sales_a, approver_a, merchant):
        req = _submit(client, headers_for(sales_a), merchant["id"]).json["request"]

        resp = client.post(
            f"/api/kyc-requests/{req['id']}/approve",
            json={"notes": "All documents present"},
            headers=headers_for(approver_a),
        )

        assert resp.status_code == 200
        assert resp.json["request"]["status"] == "approved"
        assert resp.json["request"]["reviewed_by_user_id"] == approver_a.id
        assert resp.json["request"]["review_notes"] == "All documents present"
        assert db.session.get(Merchant, merchant["id"]).kyc_status == "verified"

    def test_reject_then_resubmit(self, client, headers_for, sales_a, approver_a, merchant):
        req = _submit(client, headers_for(sales_a), merchant["id"]).json["request"]

        resp = client.post(
            f"/api/kyc-requests/{req['id']}/reject",
            json={"reason": "Tax certificate expired"},
            headers=headers_for(approver_a),
        )
        assert resp.json["request"]["status"] == "rejected"
        assert db.session.get(Merchant, merchant["id"]).kyc_status == "rejected"

        resp = _submit(client, headers_for(sales_a), merchant["id"], {"tax_certificate": "tin-2025.pdf"})
        assert resp.status_code == 201
        assert db.session.get(Merchant, merchant["id"]).kyc_status == "rejected"

    def test_reject_requires_reason(self, client, headers_for, sales_a, approver_a, merchant):
        req = _submit(client, headers_for(sales_a), merchant["id"]).json["request"]
        resp = client.post(f"/api/kyc-requests/{req['id']}/reject", json={}, headers=headers_for(approver_a))
        assert resp.status_code == 400

    def test_reviewed_request_is_final(self, client, headers_for, sales_a, approver_a, merchant):
        req = _submit(client, headers_for(sales_a), merchant["id"]).json["request"]
        client.post(f"/api/kyc-requests/{req['id']}/approve", headers=headers_for(approver_a))

        resp = client.post(
            f"/api/kyc-requests/{req['id']}/reject",
            json={"reason": "Changed my mind"},
            headers=headers_for(approver_a),
        )
        assert resp.status_code == 400
        assert db.session.get(Merchant, merchant["id"]).kyc_status == "verified"

    def test_sales_user_cannot_review(self, client, headers_for, sales_a, merchant):
        req = _submit(client, headers_for(sales_a), merchant["id"]).json["request"]
        resp = client.post(f"/api/kyc-requests/{req['id']}/approve", headers=headers_for(sales_a))
        assert resp.status_code == 403

    def test_reviewer_of_other_branch_denied(self, client, headers_for, sales_a, make_user, branch_b, merchant):
        req = _submit(client, headers_for(sales_a), merchant["id"]).json["request"]
        approver_b = make_user("BRANCH_APPROVER", branch_b)

        resp = client.post(f"/api/kyc-requests/{req['id']}/approve", headers=headers_for(approver_b))
        assert resp.status_code == 403
        assert db.session.get(Merchant, merchant["id"]).kyc_status == "pending"

    def test_list_filters_by_status(self, client, headers_for, sales_a, approver_a, merchant):
        _submit(client, headers_for(sales_a), merchant["id"])

        pending = client.get("/api/kyc-requests?status=pending", headers=headers_for(approver_a)).json["requests"]
        assert len(pending) == 1

        resp = client.get("/api/kyc-requests?status=unknown", headers=headers_for(approver_a))
        assert resp.status_code == 400

    def test_issuance_follows_kyc_approval(self, client, headers_for, sales_a, approver_a, branch_a, merchant, qr_pool, db_session):
        qr = qr_pool(1)[0]
        qr_service.allocate_qrs_to_branch(qr_ids=[qr.id], branch_id=branch_a.id)
        db_session.commit()

        url = f"/api/qr-codes/{qr.id}/issue"
        resp = client.post(url, json={"merchant_id": merchant["id"]}, headers=headers_for(sales_a))
        assert resp.status_code == 400
        assert "KYC" in resp.json["error"]

        req = _submit(client, headers_for(sales_a), merchant["id"]).json["request"]
        client.post(f"/api/kyc-requests/{req['id']}/approve", headers=headers_for(approver_a))

        resp = client.post(url, json={"merchant_id": merchant["id"]}, headers=headers_for(sales_a))
        assert resp.status_code == 200
        assert resp.json["qr_code"]["status"] == "issued"


class TestKYCService:

    def test_documents_are_trimmed(self, db_session, branch_a, make_merchant):
        target = make_merchant(branch_a, kyc_status="pending")
        req = kyc_service.create_kyc_request(
            merchant_id=target.id,
            documents={"business_license": " lic.pdf ", "additional_docs": ["a.pdf", "  "]},
        )
        assert req.documents == {"business_license": "lic.pdf", "additional_docs": ["a.pdf"]}
        assert req.branch_id == branch_a.id

    def test_at_least_one_document(self, db_session, branch_a, make_merchant):
        target = make_merchant(branch_a, kyc_status="pending")
        with pytest.raises(ValidationError, match="At least one document"):
            kyc_service.create_kyc_request(merchant_id=target.id, documents={"additional_docs": []})
