"""
Tests for SqlSubscriptionStore: reads, keyed upsert, failure mapping.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core.errors import SubSyncError
from app.services.subscription_store import SqlSubscriptionStore


@pytest.fixture
def store():
    return SqlSubscriptionStore()


class TestReads:
    def test_missing_subscription_is_none(self, store, user_id):
        assert store.get_subscription(user_id) is None

    def test_existing_subscription(self, store, seed_subscription, user_id):
        seed_subscription(stripe_customer_id="cus_123", status="active", tier="paid")

        record = store.get_subscription(user_id)

        assert record.user_id == user_id
        assert record.stripe_customer_id == "cus_123"
        assert record.stripe_subscription_id is None
        assert record.tier == "paid"

    def test_profile_email(self, store, seed_profile, user_id):
        seed_profile(email="skipper@example.com")
        assert store.get_profile_email(user_id) == "skipper@example.com"

    def test_profile_missing(self, store, user_id):
        assert store.get_profile_email(user_id) is None

    def test_profile_blank_email_is_none(self, store, seed_profile, user_id):
        seed_profile(email="")
        assert store.get_profile_email(user_id) is None

    def test_read_failure_is_store_error(self, store, user_id):
        with patch(
            "app.services.subscription_store._get_db_session",
            side_effect=OperationalError("SELECT", {}, Exception("database is locked")),
        ):
            with pytest.raises(SubSyncError) as exc_info:
                store.get_subscription(user_id)

        assert exc_info.value.code == "SUB-DB-001"
        assert exc_info.value.context["operation"] == "get_subscription"

    def test_profile_read_failure_is_store_error(self, store, user_id):
        with patch(
            "app.services.subscription_store._get_db_session",
            side_effect=OperationalError("SELECT", {}, Exception("no such table")),
        ):
            with pytest.raises(SubSyncError) as exc_info:
                store.get_profile_email(user_id)

        assert exc_info.value.code == "SUB-DB-001"


class TestUpsert:
    def test_insert_then_update(self, store, user_id, stored, subscription_count):
        store.upsert_subscription(user_id, {"stripe_customer_id": "cus_1", "status": "free", "tier": "free"})
        first = stored(user_id)
        assert first.stripe_customer_id == "cus_1"
        assert first.created_at is not None

        store.upsert_subscription(user_id, {"status": "active", "tier": "paid"})
        second = stored(user_id)

        assert subscription_count() == 1
        assert second.status == "active"
        assert second.tier == "paid"
        # Columns not named in the update are left alone
        assert second.stripe_customer_id == "cus_1"
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at

    def test_datetime_columns(self, store, user_id, stored):
        period_end = datetime(2023, 12, 14, 22, 13, 20, tzinfo=timezone.utc)
        store.upsert_subscription(user_id, {"current_period_end": period_end, "cancel_at_period_end": True})

        row = stored(user_id)
        assert row.current_period_end.replace(tzinfo=timezone.utc) == period_end
        assert row.cancel_at_period_end is True

    def test_users_are_isolated(self, store, user_id, other_user_id, stored, subscription_count):
        store.upsert_subscription(user_id, {"status": "active", "tier": "paid"})
        store.upsert_subscription(other_user_id, {"status": "canceled", "tier": "free"})

        assert subscription_count() == 2
        assert stored(user_id).tier == "paid"
        assert stored(other_user_id).status == "canceled"

    def test_unknown_field_rejected(self, store, user_id, subscription_count):
        with pytest.raises(ValueError, match="user_id"):
            store.upsert_subscription(user_id, {"user_id": "someone-else", "status": "active"})
        assert subscription_count() == 0

    def test_write_failure_is_store_error(self, store, user_id):
        with patch.object(
            SqlSubscriptionStore, "_write",
            side_effect=OperationalError("UPDATE", {}, Exception("disk I/O error")),
        ):
            with pytest.raises(SubSyncError) as exc_info:
                store.upsert_subscription(user_id, {"status": "active"})

        assert exc_info.value.code == "SUB-DB-002"
        assert exc_info.value.context["user_id"] == user_id

    def test_concurrent_insert_retried_as_update(self, store, user_id):
        conflict = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        with patch.object(SqlSubscriptionStore, "_write", side_effect=[conflict, None]) as write:
            store.upsert_subscription(user_id, {"status": "active"})

        assert write.call_count == 2

    def test_second_conflict_is_store_error(self, store, user_id):
        conflict = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        with patch.object(SqlSubscriptionStore, "_write", side_effect=[conflict, conflict]):
            with pytest.raises(SubSyncError) as exc_info:
                store.upsert_subscription(user_id, {"status": "active"})

        assert exc_info.value.code == "SUB-DB-002"
