"""
Billing Provider — read-only Stripe lookups
===========================================

PURPOSE:
    The three Stripe reads the reconciliation core needs:
    1. **get_subscription()** — retrieve a subscription by ID.
    2. **latest_subscription_for_customer()** — most recent subscription of
       a customer, any status.
    3. **find_customers_by_email()** — customers registered under an email,
       bounded by ``limit``.

    Nothing here creates or mutates Stripe objects.

ERRORS:
    Every Stripe failure (network, auth, rate limit, invalid request) is
    raised as SubSyncError("SUB-BIL-001"). A missing subscription is NOT
    mapped to "not found": the caller linked that ID, so a provider refusal
    is an infrastructure failure like any other.

CONFIGURATION (env vars with SUBSYNC_ prefix):
    SUBSYNC_STRIPE_SECRET_KEY   — Stripe secret API key
    SUBSYNC_STRIPE_API_VERSION  — pinned API version (default 2023-10-16)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import stripe

from app.config import settings
from app.core.errors import SubSyncError

logger = logging.getLogger(__name__)

__all__ = [
    "BillingProvider",
    "StripeBillingProvider",
]


class BillingProvider(ABC):
    """Read-only billing ledger lookups."""

    @abstractmethod
    def get_subscription(self, subscription_id: str) -> Any:
        ...

    @abstractmethod
    def latest_subscription_for_customer(self, customer_id: str) -> Optional[Any]:
        ...

    @abstractmethod
    def find_customers_by_email(self, email: str, limit: int = 5) -> List[Any]:
        ...


class StripeBillingProvider(BillingProvider):
    """BillingProvider backed by the Stripe API."""

    def __init__(self, api_key: Optional[str] = None, api_version: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.api_version = api_version or settings.stripe_api_version

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _request_options(self) -> dict:
        if not self.configured:
            raise SubSyncError(
                "SUB-CFG-001",
                detail="Stripe is not configured. Set SUBSYNC_STRIPE_SECRET_KEY.",
            )
        return {"api_key": self.api_key, "stripe_version": self.api_version}

    def get_subscription(self, subscription_id: str) -> Any:
        options = self._request_options()
        try:
            return stripe.Subscription.retrieve(subscription_id, **options)
        except stripe.StripeError as exc:
            raise self._provider_error("get_subscription", exc, subscription_id=subscription_id) from exc

    def latest_subscription_for_customer(self, customer_id: str) -> Optional[Any]:
        options = self._request_options()
        try:
            result = stripe.Subscription.list(
                customer=customer_id,
                limit=1,
                status="all",
                **options,
            )
        except stripe.StripeError as exc:
            raise self._provider_error("list_subscriptions", exc, customer_id=customer_id) from exc
        return result.data[0] if result.data else None

    def find_customers_by_email(self, email: str, limit: int = 5) -> List[Any]:
        options = self._request_options()
        try:
            result = stripe.Customer.list(email=email, limit=limit, **options)
        except stripe.StripeError as exc:
            raise self._provider_error("list_customers", exc) from exc
        return list(result.data)[:limit]

    @staticmethod
    def _provider_error(operation: str, exc: Exception, **context: str) -> SubSyncError:
        logger.error(
            "Stripe %s failed: %s", operation, exc,
            extra={"stripe.request_id": getattr(exc, "request_id", None)},
        )
        return SubSyncError(
            "SUB-BIL-001",
            detail=f"{operation}: {type(exc).__name__}: {exc}",
            context={"operation": operation, **context},
        )
