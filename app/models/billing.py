"""
Billing Models
==============

SQLModel tables for persistent billing state:
- SubscriptionRecord: one row per user, mirrors the Stripe subscription.
- Profile: one row per user, read here only for the account email.

`tier` is always derived from `status` by the normalizer; nothing else
writes it. Rows are never deleted — cancellation is a status change.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionRecord(SQLModel, table=True):
    """Local subscription state for a user, keyed on user_id."""

    __tablename__ = "subscriptions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(unique=True, index=True, max_length=36)
    stripe_customer_id: Optional[str] = Field(default=None, nullable=True, max_length=255)
    stripe_subscription_id: Optional[str] = Field(default=None, nullable=True, max_length=255)
    # free | trial | active | past_due | canceled | incomplete | ... (provider passthrough)
    status: str = Field(default="free", max_length=32)
    tier: str = Field(default="free", max_length=16)
    trial_ends_at: Optional[datetime] = Field(default=None, nullable=True)
    current_period_end: Optional[datetime] = Field(default=None, nullable=True)
    cancel_at_period_end: bool = Field(default=False)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Profile(SQLModel, table=True):
    """Account profile. Owned by the auth/account layer."""

    __tablename__ = "profiles"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(unique=True, index=True, max_length=36)
    email: Optional[str] = Field(default=None, nullable=True, max_length=320)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
