"""
Dashboard statistics, branch inventory and performance rankings.

The `floor` fixture builds a small two-branch network:

    North (branch_a): 4 QRs, 2 assigned to sales_a, 1 of those issued
    South (branch_b): 3 QRs, 1 issued by sales_b
    Pool:             3 unallocated QRs
"""

import pytest

from qradmin.services import dashboard_service, kyc_service, qr_service, request_service


@pytest.fixture
def floor(db_session, branch_a, branch_b, sales_a, sales_b, make_merchant, qr_pool):
    pool = qr_pool(10)
    north, south = pool[:4], pool[4:7]
    qr_service.allocate_qrs_to_branch(qr_ids=[q.id for q in north], branch_id=branch_a.id)
    qr_service.allocate_qrs_to_branch(qr_ids=[q.id for q in south], branch_id=branch_b.id)

    for qr in north[:2]:
        qr_service.assign_qr_to_user(qr_id=qr.id, user_id=sales_a.id)
    qr_service.issue_qr_to_merchant(qr_id=north[0].id, merchant_id=make_merchant(branch_a).id, actor_user_id=sales_a.id)
    qr_service.issue_qr_to_merchant(qr_id=south[0].id, merchant_id=make_merchant(branch_b).id, actor_user_id=sales_b.id)

    pending = make_merchant(branch_b, kyc_status="pending")
    kyc_service.create_kyc_request(merchant_id=pending.id, documents={"business_license": "lic.pdf"})
    db_session.commit()
    return pool


class TestDashboardStats:

    def test_global_view(self, client, headers_for, admin, floor):
        resp = client.get("/api/dashboard/stats", headers=headers_for(admin))

        assert resp.status_code == 200
        stats = resp.json
        assert stats["qr_codes"] == {
            "total": 10,
            "unallocated": 3,
            "allocated": 5,
            "issued": 2,
            "returned": 0,
            "blocked": 0,
            "retired": 0,
        }
        assert stats["pending_kyc"] == 1
        assert [b["name"] for b in stats["top_branches"]] == ["North Main", "South Main"]
        assert [r["name"] for r in stats["top_regions"]] == ["North", "South"]
        assert [(s["name"], s["count"]) for s in stats["top_sellers"]] == [("Sales A", 1), ("Sales B", 1)]
        assert stats["recent_activity"]

    def test_branch_view_hides_pool(self, client, headers_for, manager_a, branch_a, floor):
        stats = client.get("/api/dashboard/stats", headers=headers_for(manager_a)).json

        assert stats["qr_codes"]["total"] == 4
        assert stats["qr_codes"]["unallocated"] == 0
        assert stats["qr_codes"]["allocated"] == 3
        assert stats["qr_codes"]["issued"] == 1
        assert stats["pending_kyc"] == 0
        assert stats["top_branches"] == [{"branch_id": branch_a.id, "name": "North Main", "count": 1}]
        assert stats["top_regions"] == []
        assert {log["branch_id"] for log in stats["recent_activity"]} == {branch_a.id}

    def test_branch_view_matches_qr_list(self, client, headers_for, manager_a, floor):
        headers = headers_for(manager_a)
        stats = client.get("/api/dashboard/stats", headers=headers).json
        listed = client.get("/api/qr-codes", headers=headers).json

        assert stats["qr_codes"]["total"] == listed["total"]

    def test_admin_can_pick_branch(self, client, headers_for, admin, branch_b, floor):
        stats = client.get(f"/api/dashboard/stats?branch_id={branch_b.id}", headers=headers_for(admin)).json
        assert stats["qr_codes"]["total"] == 3
        assert stats["qr_codes"]["unallocated"] == 0
        assert stats["pending_kyc"] == 1

    def test_manager_cannot_pick_other_branch(self, client, headers_for, manager_a, branch_b, floor):
        resp = client.get(f"/api/dashboard/stats?branch_id={branch_b.id}", headers=headers_for(manager_a))
        assert resp.status_code == 403

    def test_sales_user_sees_own_qrs(self, client, headers_for, sales_a, floor):
        stats = client.get("/api/dashboard/stats", headers=headers_for(sales_a)).json

        assert stats["qr_codes"]["total"] == 2
        assert stats["qr_codes"]["allocated"] == 1
        assert stats["qr_codes"]["issued"] == 1
        assert [s["name"] for s in stats["top_sellers"]] == ["Sales A"]

    def test_request_counts(self, db_session, branch_a, initiator_a, floor):
        first = request_service.create_allocation_request(
            branch_id=branch_a.id, requested_qr_count=5, requested_for="Eid campaign", actor_user_id=initiator_a.id
        )
        request_service.create_allocation_request(
            branch_id=branch_a.id, requested_qr_count=3, requested_for="Walk-in demand", actor_user_id=initiator_a.id
        )
        request_service.reject_allocation_request(request_id=first.id, reason="Too early")
        db_session.commit()

        stats = dashboard_service.get_dashboard_stats(branch_id=branch_a.id)
        assert stats["requests"] == {"pending": 1, "approved": 0, "rejected": 1, "returned_for_correction": 0}

    def test_empty_database(self, db_session):
        stats = dashboard_service.get_dashboard_stats()
        assert stats["qr_codes"]["total"] == 0
        assert stats["top_branches"] == []
        assert stats["recent_activity"] == []


class TestBranchInventory:

    def test_utilization_per_branch(self, client, headers_for, admin, floor):
        rows = client.get("/api/branches/inventory", headers=headers_for(admin)).json["inventory"]

        north, south = rows
        assert (north["branch_code"], north["total_allocated"], north["issued"], north["available"]) == ("NRT001", 4, 1, 3)
        assert north["utilization_rate"] == 25
        assert (south["branch_code"], south["total_allocated"], south["issued"]) == ("STH001", 3, 1)
        assert south["utilization_rate"] == 33
        assert north["last_activity"] is not None

    def test_branch_without_qrs(self, db_session, branch_a):
        row = dashboard_service.get_branch_inventory()[0]
        assert row["total_allocated"] == 0
        assert row["utilization_rate"] == 0
        assert row["last_activity"] is None

    def test_sales_user_counts_own_qrs(self, client, headers_for, sales_a, branch_a, floor):
        rows = client.get("/api/branches/inventory", headers=headers_for(sales_a)).json["inventory"]

        assert [r["branch_id"] for r in rows] == [branch_a.id]
        assert rows[0]["total_allocated"] == 2
        assert rows[0]["utilization_rate"] == 50


class TestPerformance:

    def test_regions(self, client, headers_for, auditor, floor):
        regions = client.get("/api/dashboard/regions", headers=headers_for(auditor)).json["regions"]
        assert regions == [
            {"name": "North", "count": 1, "branch_count": 1},
            {"name": "South", "count": 1, "branch_count": 1},
        ]

    def test_regions_empty_for_branch_roles(self, client, headers_for, manager_a, floor):
        resp = client.get("/api/dashboard/regions", headers=headers_for(manager_a))
        assert resp.status_code == 200
        assert resp.json["regions"] == []

    def test_sellers(self, client, headers_for, admin, sales_a, sales_b, floor):
        sellers = client.get("/api/dashboard/sellers", headers=headers_for(admin)).json["sellers"]

        by_id = {s["user_id"]: s for s in sellers}
        assert (by_id[sales_a.id]["assigned"], by_id[sales_a.id]["issued"], by_id[sales_a.id]["conversion_rate"]) == (2, 1, 50)
        assert (by_id[sales_b.id]["assigned"], by_id[sales_b.id]["issued"], by_id[sales_b.id]["conversion_rate"]) == (1, 1, 100)
        assert by_id[sales_a.id]["branch"] == "North Main"

    def test_sellers_scoped_to_branch(self, client, headers_for, manager_a, sales_a, floor):
        sellers = client.get("/api/dashboard/sellers", headers=headers_for(manager_a)).json["sellers"]
        assert [s["user_id"] for s in sellers] == [sales_a.id]

    def test_sales_user_cannot_rank_sellers(self, client, headers_for, sales_a):
        resp = client.get("/api/dashboard/sellers", headers=headers_for(sales_a))
        assert resp.status_code == 403
