"""
QR lifecycle tests.

Covers the status transition table, the issuance gates (branch + KYC),
all-or-nothing bulk moves, CSV import/export, the assignment sync and
PNG rendering. Service-level; the routes are exercised in the workflow
and authorization tests.
"""

import csv
import io

import pytest

from qradmin.models import AllocationRecord, AuditLog, IssuanceRecord, QRCode, ReturnRecord
from qradmin.services import qr_service
from qradmin.services.qr_service import InsufficientInventoryError, QRLifecycleError
from qradmin.validation import NotFoundError, ValidationError


def _actions(db_session, action_type):
    return db_session.query(AuditLog).filter_by(action_type=action_type).count()


class TestTransitionTable:

    @pytest.mark.parametrize(
        "from_status,to_status,allowed",
        [
            ("unallocated", "allocated", True),
            ("unallocated", "issued", False),
            ("allocated", "issued", True),
            ("allocated", "returned", False),
            ("issued", "returned", True),
            ("issued", "allocated", False),
            ("returned", "allocated", True),
            ("blocked", "retired", True),
            ("blocked", "allocated", False),
            ("retired", "allocated", False),
            ("retired", "blocked", False),
        ],
    )
    def test_can_transition(self, from_status, to_status, allowed):
        assert qr_service.can_transition(from_status, to_status) is allowed

    def test_retired_is_terminal(self):
        assert qr_service.ALLOWED_TRANSITIONS["retired"] == set()


class TestGeneration:

    def test_generate_creates_unallocated_pool(self, db_session):
        qrs = qr_service.generate_qr_codes(
            count=3, qr_type="dynamic", bank_name="  Test Bank ",
            merchant_name="Shop", merchant_code="MC1", terminal_id="T9",
        )
        db_session.commit()

        assert len(qrs) == 3
        assert all(qr.status == "unallocated" for qr in qrs)
        assert all(qr.generation_source == "system" for qr in qrs)
        assert qrs[0].qr_value == "Test Bank\nShop\nMC1\nT9"
        assert _actions(db_session, "QR_GENERATED") == 1

    def test_generate_requires_bank_name(self, db_session):
        with pytest.raises(ValidationError):
            qr_service.generate_qr_codes(count=1, qr_type="static", bank_name=" ")

    @pytest.mark.parametrize("count", [0, -2, "abc", True, None])
    def test_generate_rejects_bad_count(self, db_session, count):
        with pytest.raises(ValidationError):
            qr_service.generate_qr_codes(count=count, qr_type="static", bank_name="Test Bank")

    def test_generate_rejects_batches_over_limit(self, app, db_session):
        app.config["QR_MAX_BATCH_SIZE"] = 5
        try:
            with pytest.raises(ValidationError):
                qr_service.generate_qr_codes(count=6, qr_type="static", bank_name="Test Bank")
        finally:
            app.config["QR_MAX_BATCH_SIZE"] = 10_000

    def test_upload_csv_shares_one_upload_id(self, db_session):
        content = "qr_value,qr_type\nPAY-001,static\nPAY-002,dynamic\n"
        qrs = qr_service.upload_qr_codes(content=content, filename="batch.csv")
        db_session.commit()

        assert [qr.qr_value for qr in qrs] == ["PAY-001", "PAY-002"]
        assert {qr.upload_file_id for qr in qrs} == {qrs[0].upload_file_id}
        assert qrs[1].qr_type == "dynamic"
        assert all(qr.generation_source == "upload" for qr in qrs)

    def test_upload_without_qr_value_column_fails(self, db_session):
        with pytest.raises(ValidationError, match="qr_value column"):
            qr_service.upload_qr_codes(content="value\nPAY-001\n")

    def test_upload_bad_row_rejects_whole_file(self, db_session):
        content = "qr_value,qr_type\nPAY-001,static\nPAY-002,sticker\n"
        with pytest.raises(ValidationError, match="Row 3"):
            qr_service.upload_qr_codes(content=content)
        db_session.rollback()
        assert db_session.query(QRCode).count() == 0


class TestAllocation:

    def test_allocate_specific_qrs(self, db_session, branch_a, qr_pool):
        qrs = qr_pool(3)
        ids = [qr.id for qr in qrs[:2]]

        qr_service.allocate_qrs_to_branch(qr_ids=ids, branch_id=branch_a.id)
        db_session.commit()

        allocated = qr_service.list_qr_codes(status="allocated", branch_id=branch_a.id)
        assert [qr.id for qr in allocated] == ids
        assert db_session.query(AllocationRecord).count() == 2
        assert _actions(db_session, "QR_ALLOCATED") == 1

    def test_allocate_rejects_whole_batch_on_one_bad_qr(self, db_session, branch_a, qr_pool):
        qrs = qr_pool(2)
        qr_service.block_qr_code(qr_id=qrs[1].id, reason="Damaged")
        db_session.commit()

        with pytest.raises(QRLifecycleError):
            qr_service.allocate_qrs_to_branch(qr_ids=[qrs[0].id, qrs[1].id], branch_id=branch_a.id)
        db_session.rollback()

        assert qr_service.get_qr(qrs[0].id).status == "unallocated"

    def test_allocate_unknown_qr(self, db_session, branch_a):
        with pytest.raises(NotFoundError):
            qr_service.allocate_qrs_to_branch(qr_ids=[987654], branch_id=branch_a.id)

    def test_allocate_to_inactive_branch(self, db_session, branch_a, qr_pool):
        qrs = qr_pool(1)
        branch_a.is_active = False
        db_session.commit()

        with pytest.raises(QRLifecycleError, match="inactive"):
            qr_service.allocate_qrs_to_branch(qr_ids=[qrs[0].id], branch_id=branch_a.id)

    def test_bulk_allocate_takes_oldest_first(self, db_session, branch_a, qr_pool):
        qrs = qr_pool(5)
        moved = qr_service.bulk_allocate_qrs(branch_id=branch_a.id, count=3)
        db_session.commit()

        assert [qr.id for qr in moved] == [qr.id for qr in qrs[:3]]
        assert len(qr_service.list_qr_codes(status="unallocated")) == 2

    def test_bulk_allocate_is_all_or_nothing(self, db_session, branch_a, qr_pool):
        qr_pool(5)

        with pytest.raises(InsufficientInventoryError):
            qr_service.bulk_allocate_qrs(branch_id=branch_a.id, count=6)
        db_session.rollback()

        assert len(qr_service.list_qr_codes(status="unallocated")) == 5
        assert db_session.query(AllocationRecord).count() == 0

    def test_bulk_assign_moves_between_branches(self, db_session, branch_a, branch_b, qr_pool):
        qr_pool(4)
        qr_service.bulk_allocate_qrs(branch_id=branch_a.id, count=4)
        db_session.commit()

        qr_service.bulk_assign_qrs(source_branch_id=branch_a.id, target_branch_id=branch_b.id, count=3)
        db_session.commit()

        assert len(qr_service.list_qr_codes(branch_id=branch_a.id)) == 1
        assert len(qr_service.list_qr_codes(branch_id=branch_b.id)) == 3

    def test_bulk_assign_short_source(self, db_session, branch_a, branch_b, qr_pool):
        qr_pool(2)
        qr_service.bulk_allocate_qrs(branch_id=branch_a.id, count=2)
        db_session.commit()

        with pytest.raises(InsufficientInventoryError):
            qr_service.bulk_assign_qrs(source_branch_id=branch_a.id, target_branch_id=branch_b.id, count=3)

    def test_bulk_assign_same_branch(self, db_session, branch_a):
        with pytest.raises(ValidationError):
            qr_service.bulk_assign_qrs(source_branch_id=branch_a.id, target_branch_id=branch_a.id, count=1)


class TestIssuance:

    @pytest.fixture
    def allocated_qr(self, db_session, branch_a, qr_pool):
        qr = qr_pool(1)[0]
        qr_service.allocate_qrs_to_branch(qr_ids=[qr.id], branch_id=branch_a.id)
        db_session.commit()
        return qr

    def test_issue_to_verified_merchant(self, db_session, branch_a, sales_a, make_merchant, allocated_qr):
        merchant = make_merchant(branch_a)

        qr = qr_service.issue_qr_to_merchant(
            qr_id=allocated_qr.id, merchant_id=merchant.id, actor_user_id=sales_a.id,
        )
        db_session.commit()

        assert qr.status == "issued"
        assert qr.issued_to_merchant_id == merchant.id
        assert qr.allocated_to_user_id == sales_a.id
        assert db_session.query(IssuanceRecord).filter_by(qr_id=qr.id).count() == 1
        assert _actions(db_session, "QR_ISSUED") == 1

    @pytest.mark.parametrize("kyc_status", ["pending", "rejected"])
    def test_issue_requires_verified_kyc(self, db_session, branch_a, make_merchant, allocated_qr, kyc_status):
        merchant = make_merchant(branch_a, kyc_status=kyc_status)

        with pytest.raises(QRLifecycleError, match="KYC"):
            qr_service.issue_qr_to_merchant(qr_id=allocated_qr.id, merchant_id=merchant.id)
        db_session.rollback()

        assert qr_service.get_qr(allocated_qr.id).status == "allocated"
        assert db_session.query(IssuanceRecord).count() == 0

    def test_issue_requires_allocation(self, db_session, branch_a, make_merchant, qr_pool):
        qr = qr_pool(1)[0]
        merchant = make_merchant(branch_a)

        with pytest.raises(QRLifecycleError):
            qr_service.issue_qr_to_merchant(qr_id=qr.id, merchant_id=merchant.id)

    def test_issue_keeps_assigned_seller(self, db_session, branch_a, sales_a, manager_a, make_merchant, allocated_qr):
        qr_service.assign_qr_to_user(qr_id=allocated_qr.id, user_id=sales_a.id, actor_user_id=manager_a.id)
        qr = qr_service.issue_qr_to_merchant(
            qr_id=allocated_qr.id, merchant_id=make_merchant(branch_a).id, actor_user_id=manager_a.id,
        )
        assert qr.allocated_to_user_id == sales_a.id

    def test_assign_rejects_seller_from_other_branch(self, db_session, sales_b, allocated_qr):
        with pytest.raises(QRLifecycleError, match="branch"):
            qr_service.assign_qr_to_user(qr_id=allocated_qr.id, user_id=sales_b.id)

    def test_assign_rejects_non_sales_user(self, db_session, manager_a, allocated_qr):
        with pytest.raises(QRLifecycleError, match="sales users"):
            qr_service.assign_qr_to_user(qr_id=allocated_qr.id, user_id=manager_a.id)

    def test_return_then_reallocate(self, db_session, branch_a, branch_b, make_merchant, allocated_qr):
        merchant = make_merchant(branch_a)
        qr_service.issue_qr_to_merchant(qr_id=allocated_qr.id, merchant_id=merchant.id)

        record = qr_service.return_qr(qr_id=allocated_qr.id, reason="Shop closed", condition="good")
        db_session.commit()

        qr = qr_service.get_qr(allocated_qr.id)
        assert qr.status == "returned"
        assert qr.issued_to_merchant_id == merchant.id
        assert record.status == "pending"
        assert db_session.query(ReturnRecord).count() == 1

        qr_service.allocate_qrs_to_branch(qr_ids=[qr.id], branch_id=branch_b.id)
        db_session.commit()

        assert qr.status == "allocated"
        assert qr.allocated_branch_id == branch_b.id
        assert qr.issued_to_merchant_id is None

    def test_return_requires_reason_and_condition(self, db_session, allocated_qr):
        with pytest.raises(ValidationError):
            qr_service.return_qr(qr_id=allocated_qr.id, reason="", condition="good")

    def test_return_only_from_issued(self, db_session, allocated_qr):
        with pytest.raises(QRLifecycleError):
            qr_service.return_qr(qr_id=allocated_qr.id, reason="Unused", condition="good")


class TestBlockAndStatus:

    def test_block_records_reason(self, db_session, admin, qr_pool):
        qr = qr_pool(1)[0]
        qr_service.block_qr_code(qr_id=qr.id, reason="Reported lost", actor_user_id=admin.id)
        db_session.commit()

        assert qr.status == "blocked"
        assert qr.blocked_reason == "Reported lost"
        assert qr.blocked_by_user_id == admin.id
        assert qr.blocked_at is not None

    def test_block_twice_fails(self, db_session, qr_pool):
        qr = qr_pool(1)[0]
        qr_service.block_qr_code(qr_id=qr.id, reason="Lost")
        with pytest.raises(QRLifecycleError):
            qr_service.block_qr_code(qr_id=qr.id, reason="Lost again")

    def test_status_update_appends_note(self, db_session, qr_pool):
        qr = qr_pool(1)[0]
        qr_service.update_qr_status(qr_id=qr.id, status="blocked", reason="Fraud check")
        qr_service.update_qr_status(qr_id=qr.id, status="retired", reason="Written off")
        db_session.commit()

        assert qr.status == "retired"
        assert qr.notes.splitlines() == [
            "Status changed from unallocated to blocked. Reason: Fraud check",
            "Status changed from blocked to retired. Reason: Written off",
        ]
        assert _actions(db_session, "QR_STATUS_UPDATED") == 2

    def test_status_update_reallocates_returned_qr(self, db_session, branch_a, sales_a, make_merchant, qr_pool):
        qr = qr_pool(1)[0]
        qr_service.allocate_qrs_to_branch(qr_ids=[qr.id], branch_id=branch_a.id)
        qr_service.issue_qr_to_merchant(
            qr_id=qr.id, merchant_id=make_merchant(branch_a).id, actor_user_id=sales_a.id
        )
        qr_service.return_qr(qr_id=qr.id, reason="Shop closed", condition="good")
        db_session.commit()

        qr_service.update_qr_status(
            qr_id=qr.id, status="allocated", reason="Back on the shelf", actor_user_id=sales_a.id
        )
        db_session.commit()

        assert qr.status == "allocated"
        assert qr.allocated_branch_id == branch_a.id
        assert qr.issued_to_merchant_id is None
        assert qr.allocated_to_user_id is None
        assert db_session.query(AllocationRecord).filter_by(qr_id=qr.id).count() == 2
        assert qr.notes.splitlines()[-1] == "Status changed from returned to allocated. Reason: Back on the shelf"

    def test_status_update_cannot_issue(self, db_session, branch_a, qr_pool):
        qr = qr_pool(1)[0]
        qr_service.allocate_qrs_to_branch(qr_ids=[qr.id], branch_id=branch_a.id)
        with pytest.raises(QRLifecycleError, match="issue operation"):
            qr_service.update_qr_status(qr_id=qr.id, status="issued", reason="Skip KYC")

    def test_status_update_rejects_unknown_status(self, db_session, qr_pool):
        qr = qr_pool(1)[0]
        with pytest.raises(ValidationError):
            qr_service.update_qr_status(qr_id=qr.id, status="lost", reason="x")

    def test_retired_qr_cannot_change(self, db_session, qr_pool):
        qr = qr_pool(1)[0]
        qr_service.update_qr_status(qr_id=qr.id, status="retired", reason="Misprint")

        with pytest.raises(QRLifecycleError):
            qr_service.update_qr_status(qr_id=qr.id, status="blocked", reason="x")
        with pytest.raises(QRLifecycleError, match="retired"):
            qr_service.update_qr_code(qr_id=qr.id, payload={"notes": "edit"})

    def test_update_metadata_allowlist(self, db_session, qr_pool):
        qr = qr_pool(1)[0]
        qr_service.update_qr_code(qr_id=qr.id, payload={"terminal_id": "T-77"})
        assert qr.terminal_id == "T-77"

        with pytest.raises(ValidationError, match="Field not allowed"):
            qr_service.update_qr_code(qr_id=qr.id, payload={"status": "issued"})


class TestSyncAndExport:

    def test_sync_releases_qrs_of_inactive_branch(self, db_session, branch_a, qr_pool):
        qr_pool(3)
        qr_service.bulk_allocate_qrs(branch_id=branch_a.id, count=3)
        branch_a.is_active = False
        db_session.commit()

        summary = qr_service.sync_qr_assignments()
        db_session.commit()

        assert summary["released_to_pool"] == 3
        assert summary["returned_to_branch"] == 0
        assert len(qr_service.list_qr_codes(status="unallocated")) == 3
        assert _actions(db_session, "DATA_SYNC") == 1

    def test_sync_returns_issued_qrs_of_inactive_seller(self, db_session, branch_a, sales_a, make_merchant, qr_pool):
        qr = qr_pool(1)[0]
        qr_service.allocate_qrs_to_branch(qr_ids=[qr.id], branch_id=branch_a.id)
        qr_service.issue_qr_to_merchant(qr_id=qr.id, merchant_id=make_merchant(branch_a).id, actor_user_id=sales_a.id)
        sales_a.is_active = False
        db_session.commit()

        summary = qr_service.sync_qr_assignments()
        db_session.commit()

        assert summary["returned_to_branch"] == 1
        assert qr.status == "allocated"
        assert qr.allocated_to_user_id is None
        assert qr.issued_to_merchant_id is None

    def test_export_qr_codes_csv(self, db_session, branch_a, qr_pool):
        qr_pool(3)
        qr_service.bulk_allocate_qrs(branch_id=branch_a.id, count=1)
        db_session.commit()

        rows = list(csv.reader(io.StringIO(qr_service.export_csv("qr_codes"))))
        assert rows[0] == ["ID", "QR Value", "Type", "Status", "Branch", "Created At"]
        assert len(rows) == 4
        assert rows[1][1] == "Test Bank\n\n"

        branch_rows = list(csv.reader(io.StringIO(qr_service.export_csv("qr_codes", branch_id=branch_a.id))))
        assert len(branch_rows) == 2
        assert branch_rows[1][3] == "allocated"

    def test_export_unknown_kind(self, db_session):
        with pytest.raises(ValidationError):
            qr_service.export_csv("merchants")

    def test_render_png(self, db_session, qr_pool):
        qr = qr_pool(1)[0]
        png = qr_service.render_qr_png(qr.id)
        assert png.startswith(b"\x89PNG")
