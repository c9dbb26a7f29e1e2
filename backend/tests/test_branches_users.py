"""
Branch directory and user administration.
"""

import pytest

from qradmin.extensions import db
from qradmin.models import AuditLog, Branch, SessionToken, User
from qradmin.services import auth_service, branch_service, qr_service, request_service
from qradmin.services.auth_service import PasswordValidationError
from qradmin.services.qr_service import QRLifecycleError
from qradmin.validation import ConflictError, ValidationError


class TestBranches:

    def test_create_branch(self, client, headers_for, admin):
        resp = client.post(
            "/api/branches",
            json={"branch_code": "ctg002", "name": "Agrabad", "region": "Chittagong", "type": "domestic"},
            headers=headers_for(admin),
        )

        assert resp.status_code == 201
        branch = resp.json["branch"]
        assert branch["branch_code"] == "CTG002"
        assert branch["type"] == "domestic"
        assert branch["is_active"] is True
        assert db.session.query(AuditLog).filter_by(action_type="BRANCH_CREATED").count() == 1

    def test_duplicate_code(self, client, headers_for, admin, branch_a):
        resp = client.post(
            "/api/branches",
            json={"branch_code": "nrt001", "name": "Copy", "region": "North", "type": "domestic"},
            headers=headers_for(admin),
        )
        assert resp.status_code == 409

    @pytest.mark.parametrize(
        "payload",
        [
            {"branch_code": "X1", "name": "X", "region": "X", "type": "offshore"},
            {"branch_code": "X1", "name": "X", "type": "domestic"},
            {"branch_code": "X1", "name": "X", "region": "X", "type": "domestic", "manager": 1},
        ],
    )
    def test_create_rejects_bad_payload(self, client, headers_for, admin, payload):
        resp = client.post("/api/branches", json=payload, headers=headers_for(admin))
        assert resp.status_code == 400

    def test_update_branch(self, client, headers_for, admin, branch_a):
        resp = client.patch(
            f"/api/branches/{branch_a.id}",
            json={"name": "North Flagship", "type": "international"},
            headers=headers_for(admin),
        )
        assert resp.status_code == 200
        assert resp.json["branch"]["name"] == "North Flagship"
        assert resp.json["branch"]["type"] == "international"

    def test_update_to_taken_code(self, db_session, branch_a, branch_b):
        with pytest.raises(ConflictError):
            branch_service.update_branch(branch_b.id, {"branch_code": "NRT001"})

    def test_delete_refused_with_users(self, client, headers_for, admin, branch_a, sales_a):
        resp = client.delete(f"/api/branches/{branch_a.id}", headers=headers_for(admin))
        assert resp.status_code == 409
        assert db.session.get(Branch, branch_a.id) is not None

    def test_delete_refused_with_request_history(self, db_session, branch_a, admin):
        request_service.create_allocation_request(
            branch_id=branch_a.id, requested_qr_count=5, requested_for="Launch", actor_user_id=admin.id
        )
        db_session.commit()
        with pytest.raises(ConflictError, match="request history"):
            branch_service.delete_branch(branch_a.id)

    @pytest.mark.parametrize("kind", ["merchant", "threshold"])
    def test_delete_refused_with_other_request_history(self, db_session, branch_b, make_merchant, kind):
        if kind == "merchant":
            request_service.create_merchant_request(
                merchant_id=make_merchant(branch_b).id, requested_qr_count=2, business_justification="Second till"
            )
        else:
            request_service.create_threshold_request(
                branch_id=branch_b.id, threshold=5, requested_amount=20, reason="Low stock"
            )
        db_session.commit()

        with pytest.raises(ConflictError, match="request history"):
            branch_service.delete_branch(branch_b.id)

    def test_delete_refused_with_issued_qrs(self, db_session, branch_b, qr_pool, make_merchant):
        qr = qr_pool(1)[0]
        qr_service.allocate_qrs_to_branch(qr_ids=[qr.id], branch_id=branch_b.id)
        qr_service.issue_qr_to_merchant(qr_id=qr.id, merchant_id=make_merchant(branch_b).id)
        db_session.commit()

        with pytest.raises(ConflictError, match="1 issued, returned or blocked"):
            branch_service.delete_branch(branch_b.id)
        db_session.rollback()

        issued = qr_service.get_qr(qr.id)
        assert issued.status == "issued"
        assert issued.allocated_branch_id == branch_b.id

    def test_delete_refused_with_blocked_qrs(self, client, headers_for, admin, branch_b, qr_pool, db_session):
        qr = qr_pool(1)[0]
        qr_service.allocate_qrs_to_branch(qr_ids=[qr.id], branch_id=branch_b.id)
        qr_service.block_qr_code(qr_id=qr.id, reason="Tampered sticker")
        db_session.commit()

        resp = client.delete(f"/api/branches/{branch_b.id}", headers=headers_for(admin))

        assert resp.status_code == 409
        assert db.session.get(Branch, branch_b.id) is not None
        assert qr_service.get_qr(qr.id).allocated_branch_id == branch_b.id

    def test_delete_empty_branch(self, client, headers_for, admin, branch_b):
        resp = client.delete(f"/api/branches/{branch_b.id}", headers=headers_for(admin))
        assert resp.status_code == 200
        assert db.session.get(Branch, branch_b.id) is None

    def test_deleted_branch_stock_returns_to_pool(self, db_session, branch_b, qr_pool):
        qr = qr_pool(1)[0]
        qr_service.allocate_qrs_to_branch(qr_ids=[qr.id], branch_id=branch_b.id)
        branch_service.delete_branch(branch_b.id)
        db_session.commit()

        summary = qr_service.sync_qr_assignments()
        assert summary["released_to_pool"] == 1
        assert qr_service.get_qr(qr.id).status == "unallocated"

    def test_search_and_filters(self, client, headers_for, admin, branch_a, branch_b):
        headers = headers_for(admin)

        found = client.get("/api/branches?q=sth", headers=headers).json["branches"]
        assert [b["branch_code"] for b in found] == ["STH001"]

        by_region = client.get("/api/branches?region=North", headers=headers).json["branches"]
        assert [b["id"] for b in by_region] == [branch_a.id]

        branch_b.is_active = False
        db.session.commit()
        active = client.get("/api/branches?active_only=true", headers=headers).json["branches"]
        assert [b["id"] for b in active] == [branch_a.id]

    def test_regions(self, client, headers_for, admin, branch_a, branch_b):
        resp = client.get("/api/branches/regions", headers=headers_for(admin))
        assert resp.json["regions"] == ["North", "South"]

    def test_inactive_branch_cannot_receive_stock(self, db_session, branch_a, qr_pool):
        qr = qr_pool(1)[0]
        branch_a.is_active = False
        db_session.commit()

        with pytest.raises(QRLifecycleError, match="inactive"):
            qr_service.allocate_qrs_to_branch(qr_ids=[qr.id], branch_id=branch_a.id)


class TestUsers:

    def _payload(self, **overrides):
        payload = {
            "username": "new_seller",
            "email": "new_seller@bank.test",
            "name": "New Seller",
            "role": "SALES_USER",
            "password": "Password123!",
        }
        payload.update(overrides)
        return payload

    def test_create_user(self, client, headers_for, admin, branch_a):
        resp = client.post("/api/users", json=self._payload(branch_id=branch_a.id), headers=headers_for(admin))

        assert resp.status_code == 201
        user = resp.json["user"]
        assert user["role"] == "SALES_USER"
        assert user["branch_id"] == branch_a.id
        assert user["status"] == "active"
        assert "password_hash" not in user

        stored = db.session.get(User, user["id"])
        assert stored.password_hash != "Password123!"
        assert auth_service.verify_password("Password123!", stored.password_hash)

    def test_branch_role_requires_branch(self, client, headers_for, admin):
        resp = client.post("/api/users", json=self._payload(), headers=headers_for(admin))
        assert resp.status_code == 400
        assert "branch_id is required" in resp.json["error"]

    def test_global_role_without_branch(self, client, headers_for, admin):
        resp = client.post(
            "/api/users",
            json=self._payload(username="aud2", email="aud2@bank.test", role="AUDITOR"),
            headers=headers_for(admin),
        )
        assert resp.status_code == 201

    def test_unknown_role(self, client, headers_for, admin, branch_a):
        resp = client.post(
            "/api/users", json=self._payload(role="CASHIER", branch_id=branch_a.id), headers=headers_for(admin)
        )
        assert resp.status_code == 400

    def test_unknown_branch(self, client, headers_for, admin):
        resp = client.post("/api/users", json=self._payload(branch_id=999), headers=headers_for(admin))
        assert resp.status_code == 404

    def test_duplicate_username(self, client, headers_for, admin, branch_a, sales_a):
        resp = client.post(
            "/api/users",
            json=self._payload(username="sales_a", branch_id=branch_a.id),
            headers=headers_for(admin),
        )
        assert resp.status_code == 409

    def test_password_required(self, client, headers_for, admin, branch_a):
        payload = self._payload(branch_id=branch_a.id)
        del payload["password"]
        resp = client.post("/api/users", json=payload, headers=headers_for(admin))
        assert resp.status_code == 400

    @pytest.mark.parametrize(
        "password",
        ["Short1!", "password123!", "PASSWORD123!", "Password!!!", "Password123"],
    )
    def test_weak_passwords(self, password):
        with pytest.raises(PasswordValidationError):
            auth_service.validate_password_strength(password)

    def test_list_is_branch_scoped(self, client, headers_for, admin, manager_a, sales_a, sales_b):
        mine = client.get("/api/users", headers=headers_for(manager_a)).json["users"]
        assert {u["username"] for u in mine} == {"manager_a", "sales_a"}

        everyone = client.get("/api/users", headers=headers_for(admin)).json["users"]
        assert len(everyone) == 4

    def test_list_by_role(self, client, headers_for, admin, sales_a, sales_b, manager_a):
        users = client.get("/api/users?role=SALES_USER", headers=headers_for(admin)).json["users"]
        assert {u["username"] for u in users} == {"sales_a", "sales_b"}

    def test_password_change(self, client, headers_for, admin, sales_a):
        resp = client.patch(
            f"/api/users/{sales_a.id}", json={"password": "NewPassword456!"}, headers=headers_for(admin)
        )
        assert resp.status_code == 200
        assert auth_service.authenticate("sales_a", "NewPassword456!") is not None
        assert auth_service.authenticate("sales_a", "Password123!") is None

    def test_deactivate_revokes_sessions(self, db_session, headers_for, sales_a):
        headers_for(sales_a)
        auth_service.update_user(sales_a.id, {"is_active": False})
        db_session.commit()

        sessions = db.session.query(SessionToken).filter_by(user_id=sales_a.id).all()
        assert sessions and all(s.is_revoked for s in sessions)

    def test_cannot_move_branch_role_out_of_branches(self, db_session, sales_a):
        with pytest.raises(ValidationError, match="branch_id is required"):
            auth_service.update_user(sales_a.id, {"branch_id": None})

    def test_approver_cannot_list_users(self, client, headers_for, approver_a):
        resp = client.get("/api/users", headers=headers_for(approver_a))
        assert resp.status_code == 403
