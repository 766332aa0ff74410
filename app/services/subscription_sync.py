"""
Subscription Sync — reconcile local subscription state with Stripe
==================================================================

PURPOSE:
    Determines the authoritative subscription state of a user by looking up
    their live Stripe subscription and handing it to the normalizer.

STRATEGIES (ordered, first hit wins):
    1. subscription_id — the local row links a Stripe subscription:
       retrieve it directly.
    2. customer_id     — no subscription linked but a customer is: take the
       customer's most recent subscription (any status).
    3. email           — nothing linked: search Stripe customers by the
       profile email (at most ``email_lookup_limit``, capped at 5), take the first
       customer with a subscription, backfill its customer ID onto the
       local row, then normalize.
    No hit: ``{status: free, tier: free}`` with no write.

FAILURES:
    Store reads and Stripe lookups raise SubSyncError and abort the whole
    call. A Stripe error is never downgraded to "try the next strategy".
    Nothing is retried here; callers re-invoke ``reconcile``.

All I/O is sequential; calls for the same user are not serialized.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from app.config import settings
from app.core.async_utils import run_sync
from app.core.errors import SubSyncError
from app.models.billing import SubscriptionRecord
from app.services.billing_provider import BillingProvider
from app.services.subscription_normalizer import (
    FREE_RESULT,
    NormalizedResult,
    SubscriptionNormalizer,
)
from app.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

__all__ = [
    "SubscriptionReconciler",
    "is_valid_uuid",
]

UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
    re.IGNORECASE,
)

# Upper bound on Stripe customers tried per email lookup
MAX_EMAIL_CANDIDATES = 5

Strategy = Callable[[str, Optional[SubscriptionRecord]], Awaitable[Optional[NormalizedResult]]]


def is_valid_uuid(value: Any) -> bool:
    return isinstance(value, str) and UUID_PATTERN.fullmatch(value) is not None


class SubscriptionReconciler:
    """Runs the lookup strategies for one user and returns the normalized state."""

    def __init__(
        self,
        store: SubscriptionStore,
        provider: BillingProvider,
        normalizer: Optional[SubscriptionNormalizer] = None,
        email_lookup_limit: Optional[int] = None,
    ):
        self.store = store
        self.provider = provider
        self.normalizer = normalizer or SubscriptionNormalizer(store)
        if email_lookup_limit is None:
            email_lookup_limit = settings.email_lookup_limit
        if email_lookup_limit < 1:
            raise ValueError(f"email_lookup_limit must be at least 1, got {email_lookup_limit}")
        self.email_lookup_limit = min(email_lookup_limit, MAX_EMAIL_CANDIDATES)

    @property
    def strategies(self) -> List[Tuple[str, Strategy]]:
        return [
            ("subscription_id", self._by_subscription_id),
            ("customer_id", self._by_customer_id),
            ("email", self._by_email),
        ]

    async def reconcile(self, user_id: str) -> NormalizedResult:
        if not is_valid_uuid(user_id):
            raise SubSyncError(
                "SUB-API-001",
                detail="userId is missing or not a UUID",
                context={"user_id": repr(user_id)[:64]},
            )

        record = await run_sync(self.store.get_subscription, user_id)

        for name, strategy in self.strategies:
            try:
                result = await strategy(user_id, record)
            except SubSyncError as exc:
                exc.context.setdefault("user_id", user_id)
                exc.context.setdefault("strategy", name)
                raise
            if result is not None:
                logger.info(
                    "Subscription reconciled for user %s via %s: status=%s tier=%s",
                    user_id, name, result.status, result.tier,
                )
                return result

        logger.info("No Stripe subscription found for user %s", user_id)
        return FREE_RESULT

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _by_subscription_id(
        self, user_id: str, record: Optional[SubscriptionRecord]
    ) -> Optional[NormalizedResult]:
        if record is None or not record.stripe_subscription_id:
            return None
        logger.debug("Strategy subscription_id for user %s", user_id)
        subscription = await run_sync(self.provider.get_subscription, record.stripe_subscription_id)
        return await run_sync(self.normalizer.normalize, user_id, subscription)

    async def _by_customer_id(
        self, user_id: str, record: Optional[SubscriptionRecord]
    ) -> Optional[NormalizedResult]:
        if record is None or record.stripe_subscription_id or not record.stripe_customer_id:
            return None
        logger.debug("Strategy customer_id for user %s", user_id)
        subscription = await run_sync(
            self.provider.latest_subscription_for_customer, record.stripe_customer_id
        )
        if subscription is None:
            return None
        return await run_sync(self.normalizer.normalize, user_id, subscription)

    async def _by_email(
        self, user_id: str, record: Optional[SubscriptionRecord]
    ) -> Optional[NormalizedResult]:
        if record is not None and (record.stripe_subscription_id or record.stripe_customer_id):
            return None

        email = await run_sync(self.store.get_profile_email, user_id)
        if not email:
            logger.debug("No profile email for user %s, skipping email lookup", user_id)
            return None

        logger.debug("Strategy email for user %s", user_id)
        customers = await run_sync(
            self.provider.find_customers_by_email, email, self.email_lookup_limit
        )
        for customer in customers[: self.email_lookup_limit]:
            customer_id = customer["id"]
            subscription = await run_sync(self.provider.latest_subscription_for_customer, customer_id)
            if subscription is None:
                continue

            await run_sync(self._backfill_customer_id, user_id, customer_id)
            return await run_sync(self.normalizer.normalize, user_id, subscription)

        return None

    def _backfill_customer_id(self, user_id: str, customer_id: str) -> None:
        """Link the discovered customer so the next sync takes the customer_id path."""
        try:
            self.store.upsert_subscription(
                user_id,
                {"stripe_customer_id": customer_id, "status": "free", "tier": "free"},
            )
        except SubSyncError as exc:
            if self.normalizer.strict_writes:
                raise
            logger.error(
                "Failed to backfill Stripe customer for user %s: %s",
                user_id,
                exc.detail,
                extra={"user_id": user_id, "customer_id": customer_id, "error.code": exc.code},
            )
            return
        logger.info("Backfilled Stripe customer %s for user %s", customer_id, user_id)
