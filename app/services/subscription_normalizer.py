"""
Subscription Normalizer
=======================

Maps a raw Stripe subscription to the internal ``{status, tier,
trial_ends_at}`` triple and persists the full record for the user.

STATUS MAPPING:
    trialing  -> status=trial     tier=trial  trial_ends_at=trial_end (if set)
    active    -> status=active    tier=paid
    past_due  -> status=past_due  tier=paid   (grace period)
    other     -> status=<verbatim> tier=free

PERSISTENCE:
    One upsert keyed on user_id that writes every business column, so a
    repeated call with the same subscription leaves the same row behind
    (only updated_at moves). A failed write is logged and the computed
    result is still returned, unless SUBSYNC_STRICT_WRITES is enabled.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.config import settings
from app.core.errors import SubSyncError
from app.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

__all__ = [
    "NormalizedResult",
    "RawBillingSubscription",
    "SubscriptionNormalizer",
    "FREE_RESULT",
    "epoch_to_datetime",
    "format_timestamp",
    "normalize_status",
]


def epoch_to_datetime(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """UTC ISO-8601 with milliseconds and a Z suffix, e.g. 2023-11-14T22:13:20.000Z."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _read(obj: Any, key: str) -> Any:
    """Field access that works for Stripe objects, dicts and plain objects."""
    try:
        return obj[key]
    except KeyError:
        return None
    except TypeError:
        return getattr(obj, key, None)


@dataclass(frozen=True)
class NormalizedResult:
    status: str
    tier: str
    trial_ends_at: Optional[str] = None

    def as_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)


FREE_RESULT = NormalizedResult(status="free", tier="free", trial_ends_at=None)


@dataclass(frozen=True)
class RawBillingSubscription:
    """Read-only view of the Stripe subscription fields we depend on."""
    id: str
    customer: Optional[str]
    status: str
    trial_end: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False

    @classmethod
    def from_provider(cls, obj: Any) -> "RawBillingSubscription":
        customer = _read(obj, "customer")
        if customer is not None and not isinstance(customer, str):
            # Expanded customer object
            customer = _read(customer, "id")

        period_end = _read(obj, "current_period_end")
        if period_end is None:
            # Newer API versions report the period on subscription items
            items = _read(obj, "items")
            data = _read(items, "data") if items is not None else None
            if data:
                period_end = _read(data[0], "current_period_end")

        return cls(
            id=_read(obj, "id"),
            customer=customer,
            status=_read(obj, "status"),
            trial_end=_read(obj, "trial_end"),
            current_period_end=period_end,
            cancel_at_period_end=bool(_read(obj, "cancel_at_period_end")),
        )


def normalize_status(status: str, trial_end: Optional[int] = None) -> NormalizedResult:
    """Pure status -> (status, tier, trial_ends_at) mapping."""
    if status == "trialing":
        return NormalizedResult(
            status="trial",
            tier="trial",
            trial_ends_at=format_timestamp(epoch_to_datetime(trial_end)) if trial_end else None,
        )
    if status == "active":
        return NormalizedResult(status="active", tier="paid")
    if status == "past_due":
        return NormalizedResult(status="past_due", tier="paid")
    return NormalizedResult(status=status, tier="free")


class SubscriptionNormalizer:
    """Normalizes a Stripe subscription and writes it to the store."""

    def __init__(self, store: SubscriptionStore, strict_writes: Optional[bool] = None):
        self.store = store
        self.strict_writes = settings.strict_writes if strict_writes is None else strict_writes

    def normalize(self, user_id: str, subscription: Any) -> NormalizedResult:
        raw = subscription if isinstance(subscription, RawBillingSubscription) else RawBillingSubscription.from_provider(subscription)
        result = normalize_status(raw.status, raw.trial_end)

        values = {
            "stripe_customer_id": raw.customer,
            "stripe_subscription_id": raw.id,
            "status": result.status,
            "tier": result.tier,
            "trial_ends_at": epoch_to_datetime(raw.trial_end) if result.trial_ends_at else None,
            "current_period_end": epoch_to_datetime(raw.current_period_end),
            "cancel_at_period_end": raw.cancel_at_period_end,
        }

        try:
            self.store.upsert_subscription(user_id, values)
        except SubSyncError as exc:
            if self.strict_writes:
                raise
            logger.error(
                "Error updating subscription during sync for user %s: %s",
                user_id,
                exc.detail,
                extra={"user_id": user_id, "subscription_id": raw.id, "error.code": exc.code},
            )
        else:
            logger.info(
                "Subscription synced for user %s: status=%s tier=%s",
                user_id,
                result.status,
                result.tier,
            )

        return result
