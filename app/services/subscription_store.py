"""
Subscription Store
==================

Narrow persistence contract used by the reconciliation core:

    get_subscription(user_id)        -> SubscriptionRecord | None
    get_profile_email(user_id)       -> str | None
    upsert_subscription(user_id, values)

Absence is returned as ``None``; any failure of the underlying database is
raised as a SubSyncError (SUB-DB-001 for reads, SUB-DB-002 for writes) so
callers never confuse "store down" with "no row".

The upsert is keyed on ``user_id``: every column named in ``values`` is
overwritten, ``updated_at`` is always refreshed. Concurrent writers for the
same user resolve as last-write-wins.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import select

from app.core.errors import SubSyncError
from app.models.billing import Profile, SubscriptionRecord

logger = logging.getLogger(__name__)

__all__ = [
    "SubscriptionStore",
    "SqlSubscriptionStore",
    "UPSERT_FIELDS",
]

UPSERT_FIELDS = frozenset({
    "stripe_customer_id",
    "stripe_subscription_id",
    "status",
    "tier",
    "trial_ends_at",
    "current_period_end",
    "cancel_at_period_end",
})


class SubscriptionStore(ABC):
    """Persistence capabilities the reconciliation core depends on."""

    @abstractmethod
    def get_subscription(self, user_id: str) -> Optional[SubscriptionRecord]:
        ...

    @abstractmethod
    def get_profile_email(self, user_id: str) -> Optional[str]:
        ...

    @abstractmethod
    def upsert_subscription(self, user_id: str, values: Dict[str, Any]) -> None:
        ...


def _get_db_session():
    from app.core.database import get_session_context
    return get_session_context()


class SqlSubscriptionStore(SubscriptionStore):
    """SubscriptionStore backed by the SQLModel tables."""

    def get_subscription(self, user_id: str) -> Optional[SubscriptionRecord]:
        try:
            with _get_db_session() as session:
                stmt = select(SubscriptionRecord).where(SubscriptionRecord.user_id == user_id)
                return session.exec(stmt).first()
        except SQLAlchemyError as exc:
            raise SubSyncError(
                "SUB-DB-001",
                detail=f"read subscription failed: {exc}",
                context={"user_id": user_id, "operation": "get_subscription"},
            ) from exc

    def get_profile_email(self, user_id: str) -> Optional[str]:
        try:
            with _get_db_session() as session:
                stmt = select(Profile.email).where(Profile.user_id == user_id)
                email = session.exec(stmt).first()
        except SQLAlchemyError as exc:
            raise SubSyncError(
                "SUB-DB-001",
                detail=f"read profile failed: {exc}",
                context={"user_id": user_id, "operation": "get_profile_email"},
            ) from exc
        return email or None

    def upsert_subscription(self, user_id: str, values: Dict[str, Any]) -> None:
        unknown = set(values) - UPSERT_FIELDS
        if unknown:
            raise ValueError(f"Unknown subscription fields: {sorted(unknown)}")

        try:
            self._write(user_id, values)
        except IntegrityError:
            # Another writer inserted the row first; overwrite it
            logger.info("Concurrent insert for user %s, retrying as update", user_id)
            try:
                self._write(user_id, values)
            except SQLAlchemyError as exc:
                raise self._write_error(user_id, exc) from exc
        except SQLAlchemyError as exc:
            raise self._write_error(user_id, exc) from exc

    def _write(self, user_id: str, values: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc)
        with _get_db_session() as session:
            stmt = select(SubscriptionRecord).where(SubscriptionRecord.user_id == user_id)
            existing = session.exec(stmt).first()
            if existing:
                for key, value in values.items():
                    setattr(existing, key, value)
                existing.updated_at = now
                session.add(existing)
            else:
                session.add(SubscriptionRecord(
                    user_id=user_id,
                    created_at=now,
                    updated_at=now,
                    **values,
                ))
            try:
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                raise

    @staticmethod
    def _write_error(user_id: str, exc: Exception) -> SubSyncError:
        return SubSyncError(
            "SUB-DB-002",
            detail=f"upsert subscription failed: {exc}",
            context={"user_id": user_id, "operation": "upsert_subscription"},
        )
