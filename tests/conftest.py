import os

# Must be set before app modules build the engine and settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("RESEND_API_KEY", "")

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.session import get_db
from app.dependencies.auth import get_current_user
from app.main import app
from app.models import AccountStatus, Subscription, User
from app.utils.timestamps import utcnow

NOW = datetime(2026, 6, 1, 12, 0, 0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_account(db):
    """Create an account whose trial ended `trial_ended_days_ago` days before NOW."""
    counter = {"n": 0}

    def _make(
        trial_ended_days_ago=None,
        trial_ends_at="unset",
        status=AccountStatus.TRIAL,
        subscription_status=None,
        email=None,
        first_name="Sam",
        trial_started_at=None,
    ):
        counter["n"] += 1
        if trial_ends_at == "unset":
            days = 0 if trial_ended_days_ago is None else trial_ended_days_ago
            trial_ends_at = NOW - timedelta(days=days)
        if trial_started_at is None:
            trial_started_at = (trial_ends_at or NOW) - timedelta(days=3)
        user = User(
            email=email or f"user{counter['n']}@example.com",
            supabase_id=f"sb-{counter['n']}",
            first_name=first_name,
            trial_started_at=trial_started_at,
            trial_ends_at=trial_ends_at,
            subscription_status=status,
            created_at=trial_started_at,
        )
        db.add(user)
        db.commit()
        if subscription_status is not None:
            db.add(Subscription(
                user_id=user.id,
                stripe_customer_id=f"cus_{user.id}",
                stripe_subscription_id=f"sub_{user.id}",
                status=subscription_status,
            ))
            db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def current_user(make_account):
    """Signed-in account still inside its trial."""
    return make_account(trial_ends_at=utcnow() + timedelta(days=2))


@pytest.fixture
def signed_in(current_user):
    """Mutable holder for the account the overridden auth dependency returns."""
    return {"user": current_user}


@pytest.fixture
def client(db, signed_in):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_current_user] = lambda: signed_in["user"]
    yield TestClient(app)
    app.dependency_overrides.clear()

