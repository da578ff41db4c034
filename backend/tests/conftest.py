"""
Pytest fixtures for loyalty backend tests.

Provides test database setup, a frozen clock, request context, object
factories and an authenticated test client.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from loyalty import create_app
from loyalty.context import RequestContext
from loyalty.extensions import db
from loyalty.models import Category, LoyaltyBalance, PointRule, Reward, Transaction
from loyalty.services import member_service
from loyalty.services.auth_service import create_user
from loyalty.time_utils import FrozenClock


TEST_QR_SECRET = "test-qr-secret"
DEFAULT_PASSWORD = "Password123!"

# Midday UTC: no late-night signal unless a test moves the clock
NOON = datetime(2026, 1, 15, 12, 0, 0)

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'LOYALTY_ENV': 'testing',
    'QR_SECRET': TEST_QR_SECRET,
    'FRAUD_TIMEZONE': 'UTC',
    # Single in-memory connection, single thread: nothing to serialize
    'SQLITE_IMMEDIATE_TRANSACTIONS': False,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Clean database for each test."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
    db.session.remove()


@pytest.fixture
def clock():
    return FrozenClock(NOON)


@pytest.fixture
def ctx():
    return RequestContext(actor_id=None, ip_address="127.0.0.1", user_agent="pytest")


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_member(db_session, ctx):
    counter = {"n": 0}

    def _make(name="Juan Dela Cruz", member_code=None, **extra):
        counter["n"] += 1
        data = {"name": name, "member_code": member_code or f"BMPC-{counter['n']:06d}", **extra}
        return member_service.create_member(data, ctx)

    return _make


@pytest.fixture
def member(make_member):
    return make_member(member_code="BMPC-000123")


@pytest.fixture
def category(db_session):
    category = Category(name="Purchase", slug="purchase")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture
def make_rule(db_session, category):
    def _make(rule_type="multiplier", value="10", action="PURCHASE", category_id=None, **extra):
        rule = PointRule(
            category_id=category_id or category.id,
            action=action,
            rule_type=rule_type,
            value=Decimal(value),
            **extra,
        )
        db_session.add(rule)
        db_session.commit()
        return rule

    return _make


@pytest.fixture
def multiplier_rule(make_rule):
    """1 point per 10 currency units."""
    return make_rule(rule_type="multiplier", value="10")


@pytest.fixture
def make_reward(db_session):
    def _make(name="Tumbler", points_required="50", stock=100, is_active=True, description=None):
        reward = Reward(
            name=name,
            description=description,
            points_required=Decimal(points_required),
            stock=stock,
            is_active=is_active,
        )
        db_session.add(reward)
        db_session.commit()
        return reward

    return _make


@pytest.fixture
def reward(make_reward):
    return make_reward()


@pytest.fixture
def make_transaction(db_session, category):
    """Insert a historical transaction row directly (bypasses the pipeline)."""
    counter = {"n": 0}

    def _make(member, created_at, amount="100", created_by=None, points="10"):
        counter["n"] += 1
        tx = Transaction(
            member_id=member.id,
            category_id=category.id,
            action="PURCHASE",
            amount=Decimal(amount),
            points_earned=Decimal(points),
            reference_no=f"TRX-HIST{counter['n']:06d}",
            created_by=created_by,
            created_at=created_at,
        )
        db_session.add(tx)
        db_session.commit()
        return tx

    return _make


@pytest.fixture
def set_balance(db_session):
    def _set(member_id: int, amount) -> None:
        balance = db_session.query(LoyaltyBalance).filter_by(member_id=member_id).one()
        balance.balance = Decimal(str(amount))
        db_session.commit()

    return _set


@pytest.fixture
def balance_of(db_session):
    """Committed balance for a member, read fresh from the database."""
    def _get(member_id: int) -> Decimal:
        db_session.expire_all()
        return Decimal(db_session.query(LoyaltyBalance).filter_by(member_id=member_id).one().balance)

    return _get


# =============================================================================
# USERS & AUTH
# =============================================================================

@pytest.fixture
def staff_user(db_session):
    return create_user("staff", "staff@test.local", DEFAULT_PASSWORD, role="staff")


@pytest.fixture
def admin_user(db_session):
    return create_user("admin", "admin@test.local", DEFAULT_PASSWORD, role="admin")


@pytest.fixture
def member_user(db_session, member):
    return create_user("juan", "juan@test.local", DEFAULT_PASSWORD, role="member", member_id=member.id)


def get_auth_token(client, username: str, password: str = DEFAULT_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/v1/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def staff_headers(client, staff_user):
    return auth_headers(get_auth_token(client, "staff"))


@pytest.fixture
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, "admin"))


@pytest.fixture
def member_headers(client, member_user):
    return auth_headers(get_auth_token(client, "juan"))


# =============================================================================
# FILE-BACKED APP FOR MULTI-THREADED TESTS
# =============================================================================

@pytest.fixture
def concurrent_app(tmp_path):
    """
    App on a file-backed SQLite database with BEGIN IMMEDIATE enabled.

    Each worker thread pushes its own app context and so gets its own
    session and connection.
    """
    db_path = tmp_path / "concurrency.sqlite3"
    app = create_app({
        **TEST_CONFIG,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'SQLALCHEMY_ENGINE_OPTIONS': {"connect_args": {"timeout": 30}},
        'SQLITE_IMMEDIATE_TRANSACTIONS': True,
    })

    with app.app_context():
        db.create_all()
        db.session.remove()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
