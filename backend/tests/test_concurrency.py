"""
Commit retry on lock timeouts.

A retried unit of work must redo the mutation, not just the commit: after
the rollback the session is empty, so committing again would report success
for nothing.
"""

import pytest
from sqlalchemy.exc import OperationalError

from qradmin.extensions import db
from qradmin.models import AllocationRequest, AuditLog, Branch, QRCode
from qradmin.services import concurrency, request_service
from qradmin.services.concurrency import run_in_transaction
from qradmin.validation import ValidationError


def _lock_timeout():
    return OperationalError("COMMIT", {}, Exception("database is locked"))


@pytest.fixture
def no_backoff(monkeypatch):
    monkeypatch.setattr(concurrency.time, "sleep", lambda seconds: None)


@pytest.fixture
def flaky_commit(monkeypatch, db_session):
    """
    flaky_commit(failures, after=(module, name)) makes the next `failures`
    commits raise a lock timeout. With `after`, a commit only fails once
    that function has run since the previous failure, so session bookkeeping
    commits (token validation, security events) pass through.
    """
    session = db.session()
    real_commit = session.commit

    def _install(failures, after=None):
        state = {"left": failures, "armed": after is None, "runs": 0}

        if after is not None:
            module, name = after
            original = getattr(module, name)

            def tracked(*args, **kwargs):
                state["runs"] += 1
                state["armed"] = True
                return original(*args, **kwargs)

            monkeypatch.setattr(module, name, tracked)

        def commit():
            if state["armed"] and state["left"] > 0:
                state["left"] -= 1
                if after is not None:
                    state["armed"] = False
                raise _lock_timeout()
            real_commit()

        monkeypatch.setattr(session, "commit", commit)
        return state

    return _install


class TestRunInTransaction:

    def test_reruns_work_after_lock_timeout(self, db_session, flaky_commit, no_backoff):
        flaky_commit(1)
        runs = []

        def op():
            runs.append(1)
            branch = Branch(branch_code="RTY001", name="Retry", region="East", branch_type="domestic")
            db.session.add(branch)
            return branch

        branch = run_in_transaction(op)

        assert len(runs) == 2
        assert branch.id is not None
        assert db.session.query(Branch).filter_by(branch_code="RTY001").count() == 1

    def test_gives_up_after_last_attempt(self, db_session, flaky_commit, no_backoff):
        flaky_commit(5)

        def op():
            db.session.add(Branch(branch_code="RTY002", name="Retry", region="East", branch_type="domestic"))

        with pytest.raises(OperationalError):
            run_in_transaction(op, attempts=3)

        assert db.session.query(Branch).count() == 0

    def test_domain_errors_are_not_retried(self, db_session, no_backoff):
        runs = []

        def op():
            runs.append(1)
            raise ValidationError("bad input")

        with pytest.raises(ValidationError):
            run_in_transaction(op)
        assert len(runs) == 1


class TestRouteRetry:

    @pytest.fixture
    def pending(self, db_session, branch_a, initiator_a, qr_pool):
        qr_pool(20)
        req = request_service.create_allocation_request(
            branch_id=branch_a.id, requested_qr_count=10, requested_for="Fair", actor_user_id=initiator_a.id
        )
        db_session.commit()
        return req.id

    def test_approval_survives_one_lock_timeout(self, client, headers_for, approver_a, branch_a, pending,
                                                flaky_commit, no_backoff):
        headers = headers_for(approver_a)
        state = flaky_commit(1, after=(request_service, "approve_allocation_request"))

        resp = client.post(f"/api/allocation-requests/{pending}/approve", headers=headers)

        assert resp.status_code == 200
        assert resp.json["request"]["status"] == "approved"
        assert state["runs"] == 2
        assert db.session.get(AllocationRequest, pending).status == "approved"
        assert db.session.query(QRCode).filter_by(status="allocated", allocated_branch_id=branch_a.id).count() == 10
        assert db.session.query(AuditLog).filter_by(action_type="REQUEST_APPROVED").count() == 1

    def test_persistent_lock_timeout_is_a_server_error(self, client, headers_for, approver_a, pending,
                                                       flaky_commit, no_backoff):
        headers = headers_for(approver_a)
        state = flaky_commit(10, after=(request_service, "approve_allocation_request"))

        resp = client.post(f"/api/allocation-requests/{pending}/approve", headers=headers)

        assert resp.status_code == 500
        assert state["runs"] == 3
        assert db.session.get(AllocationRequest, pending).status == "pending"
        assert db.session.query(QRCode).filter_by(status="allocated").count() == 0
