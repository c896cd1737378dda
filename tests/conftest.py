"""
Shared pytest fixtures for BloomFund tests.

Each test gets its own SQLite file so separate sessions behave like separate
server instances hitting one database.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ["STRIPE_SECRET_KEY"] = "sk_test_mock_key"

import pytest
from datetime import datetime, timedelta, timezone
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from bloomfund.errors import TransferSubmissionFailed
from bloomfund.routers.deps import get_clock
from database.db import create_tables, get_db
from database.models import AccountStatus, Campaign, User
from database.store import CampaignStore, to_db_time
from services.auth_service import create_access_token
from services.eligibility_service import PayoutPolicy
from services.stripe_service import StripeService

NOW = datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


class FakeTransfers:
    """Stands in for StripeService.create_transfer."""

    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.calls = []
        self.before_submit = None

    def create_transfer(self, amount, currency, destination, metadata=None, idempotency_key=None):
        self.calls.append({
            "amount": amount,
            "currency": currency,
            "destination": destination,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        })
        if self.before_submit:
            self.before_submit()
        if self.fail_with:
            raise self.fail_with
        return f"tr_test_{len(self.calls)}"


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'bloomfund.db'}")
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return CampaignStore(db)


@pytest.fixture
def transfers():
    return FakeTransfers()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(stripe_account_id="acct_creator", status=AccountStatus.ACTIVE.value, **fields):
        counter["n"] += 1
        user = User(
            email=fields.pop("email", f"creator{counter['n']}@example.com"),
            full_name=fields.pop("full_name", "Sarah Johnson"),
            stripe_account_id=stripe_account_id,
            stripe_account_status=status,
            **fields
        )
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def make_campaign(db):
    def _make_campaign(owner, ended_days_ago=8, current_funding=200000, funding_goal=200000, **fields):
        campaign = Campaign(
            owner_id=owner.id,
            title=fields.pop("title", "Cozy Corner Coffee House"),
            funding_goal=funding_goal,
            current_funding=current_funding,
            status=fields.pop("status", "active"),
            end_date=to_db_time(NOW - timedelta(days=ended_days_ago)),
            **fields
        )
        db.add(campaign)
        db.commit()
        return campaign

    return _make_campaign


@pytest.fixture
def stripe_service():
    return StripeService(api_key="sk_test_mock_key")


@pytest.fixture
def app(session_factory, stripe_service):
    from main import create_app

    app = create_app(stripe_service=stripe_service, payout_policy=PayoutPolicy())

    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: (lambda: NOW)
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_header():
    def _auth_header(user):
        token = create_access_token({"user_id": user.id, "email": user.email})
        return {"Authorization": f"Bearer {token}"}

    return _auth_header


@pytest.fixture
def failing_transfers():
    return FakeTransfers(fail_with=TransferSubmissionFailed("Stripe is down"))
