"""
Pytest fixtures for the QR admin backend tests.

Provides an in-memory database, branches, one user per role, bearer headers
and small factories for QR codes and merchants.
"""

import pytest

from qradmin import create_app
from qradmin.extensions import db
from qradmin.models import Branch, Merchant, User
from qradmin.services import qr_service, session_service
from qradmin.services.auth_service import hash_password


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='session')
def password_hash(app):
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(PASSWORD)


@pytest.fixture(scope='function')
def db_session(app):
    """Empty every table before each test."""
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
    db.session.remove()


@pytest.fixture(scope='function')
def client(app, db_session):
    return app.test_client()


@pytest.fixture(scope='function')
def branch_a(db_session):
    branch = Branch(branch_code="NRT001", name="North Main", region="North", branch_type="domestic")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_b(db_session):
    branch = Branch(branch_code="STH001", name="South Main", region="South", branch_type="domestic")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def make_user(db_session, password_hash):
    """Factory: make_user("SALES_USER", branch) -> committed active User."""
    counter = {"n": 0}

    def _make(role, branch=None, username=None, is_active=True):
        counter["n"] += 1
        username = username or f"{role.lower()}_{counter['n']}"
        user = User(
            username=username,
            email=f"{username}@bank.test",
            name=username.replace("_", " ").title(),
            role=role,
            branch_id=branch.id if branch is not None else None,
            password_hash=password_hash,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user("SUPER_ADMIN", username="admin")


@pytest.fixture(scope='function')
def auditor(make_user):
    return make_user("AUDITOR", username="auditor")


@pytest.fixture(scope='function')
def manager_a(make_user, branch_a):
    return make_user("BRANCH_MANAGER", branch_a, username="manager_a")


@pytest.fixture(scope='function')
def approver_a(make_user, branch_a):
    return make_user("BRANCH_APPROVER", branch_a, username="approver_a")


@pytest.fixture(scope='function')
def initiator_a(make_user, branch_a):
    return make_user("REQUEST_INITIATOR", branch_a, username="initiator_a")


@pytest.fixture(scope='function')
def sales_a(make_user, branch_a):
    return make_user("SALES_USER", branch_a, username="sales_a")


@pytest.fixture(scope='function')
def sales_b(make_user, branch_b):
    return make_user("SALES_USER", branch_b, username="sales_b")


@pytest.fixture(scope='function')
def headers_for(db_session):
    """Factory: headers_for(user) -> Authorization header for a fresh session."""
    def _headers(user):
        _, token = session_service.create_session(user.id)
        return auth_headers(token)

    return _headers


@pytest.fixture(scope='function')
def qr_pool(db_session):
    """Factory: qr_pool(n) -> n committed unallocated QR codes."""
    def _pool(count):
        qrs = qr_service.generate_qr_codes(count=count, qr_type="static", bank_name="Test Bank")
        db_session.commit()
        return qrs

    return _pool


@pytest.fixture(scope='function')
def make_merchant(db_session):
    """Factory: make_merchant(branch, kyc_status="verified") -> committed Merchant."""
    counter = {"n": 0}

    def _make(branch, kyc_status="verified"):
        counter["n"] += 1
        merchant = Merchant(
            legal_name=f"Merchant {counter['n']} Ltd",
            shop_name=f"Shop {counter['n']}",
            kyc_status=kyc_status,
            branch_id=branch.id,
        )
        db_session.add(merchant)
        db_session.commit()
        return merchant

    return _make


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user through the login route."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
