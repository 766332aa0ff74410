"""
Pytest configuration for subscription sync tests.
Points the store at a temp SQLite database and loads the error registry.
"""

import os
import tempfile

# Must be set before any app imports
_test_data_dir = tempfile.mkdtemp(prefix="subsync_test_")
os.environ.setdefault("SUBSYNC_DATA_DIRECTORY", _test_data_dir)
os.environ.setdefault("SUBSYNC_LOG_DIR", os.path.join(_test_data_dir, "logs"))
os.environ.setdefault("SUBSYNC_STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("SUBSYNC_IDENTITY_URL", "https://identity.test")
os.environ.setdefault("SUBSYNC_IDENTITY_SERVICE_KEY", "service_role_test")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_test_data_dir}/test.db")

import pytest
from sqlmodel import SQLModel, select

from app.core.database import get_engine, get_session_context
from app.models.billing import Profile, SubscriptionRecord

SQLModel.metadata.create_all(get_engine())

from app.core.errors.registry import error_registry
error_registry.load()


USER_ID = "3f1c2a9e-8b7d-4c6e-9f00-1a2b3c4d5e6f"


@pytest.fixture(autouse=True)
def clean_tables():
    """Each test starts with empty subscriptions/profiles tables."""
    yield
    with get_engine().begin() as conn:
        conn.execute(SubscriptionRecord.__table__.delete())
        conn.execute(Profile.__table__.delete())


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def other_user_id():
    return "9a8b7c6d-5e4f-4a3b-8c2d-1e0f9a8b7c6d"


@pytest.fixture
def make_subscription():
    """Factory for raw Stripe-shaped subscription dicts."""
    def _make(status="active", sub_id="sub_123", customer="cus_123", trial_end=None,
              current_period_end=1702592000, cancel_at_period_end=False):
        return {
            "id": sub_id,
            "object": "subscription",
            "customer": customer,
            "status": status,
            "trial_end": trial_end,
            "current_period_end": current_period_end,
            "cancel_at_period_end": cancel_at_period_end,
        }
    return _make


@pytest.fixture
def seed_subscription():
    """Insert a SubscriptionRecord row directly."""
    def _seed(user_id=USER_ID, **fields):
        with get_session_context() as session:
            session.add(SubscriptionRecord(user_id=user_id, **fields))
            session.commit()
    return _seed


@pytest.fixture
def seed_profile():
    def _seed(user_id=USER_ID, email="skipper@example.com"):
        with get_session_context() as session:
            session.add(Profile(user_id=user_id, email=email))
            session.commit()
    return _seed


@pytest.fixture
def stored():
    """Load the persisted SubscriptionRecord for a user (None if absent)."""
    def _load(user_id=USER_ID):
        with get_session_context() as session:
            return session.exec(
                select(SubscriptionRecord).where(SubscriptionRecord.user_id == user_id)
            ).first()
    return _load


@pytest.fixture
def subscription_count():
    def _count() -> int:
        with get_session_context() as session:
            return len(session.exec(select(SubscriptionRecord)).all())
    return _count
