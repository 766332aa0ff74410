"""
Subscription Sync Router
========================

POST /api/sync-subscription
    Body: {"userId": "<uuid>"}
    Auth: Authorization: Bearer <token>; userId must be the caller's own ID.
    Returns: {"status": ..., "tier": ..., "trial_ends_at": ... | null}

Called by the frontend after checkout and on periodic polling; each call
re-reads Stripe, so retries are simply repeated calls.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from app.auth.token_auth import AuthenticatedUser, get_current_user
from app.config import settings
from app.core.errors import SubSyncError
from app.services.billing_provider import StripeBillingProvider
from app.services.rate_limiter import RateLimiter, get_rate_limiter
from app.services.subscription_store import SqlSubscriptionStore
from app.services.subscription_sync import SubscriptionReconciler, is_valid_uuid

logger = logging.getLogger(__name__)


class SyncSubscriptionRequest(BaseModel):
    user_id: Optional[str] = Field(default=None, alias="userId")

    model_config = {"populate_by_name": True}


class SyncSubscriptionResponse(BaseModel):
    status: str
    tier: str
    trial_ends_at: Optional[str] = None


router = APIRouter()


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_reconciler() -> SubscriptionReconciler:
    """FastAPI dependency; override in tests."""
    return SubscriptionReconciler(SqlSubscriptionStore(), StripeBillingProvider())


async def enforce_sync_rate_limit(
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> None:
    client_ip = get_client_ip(request)
    if not limiter.allow(
        f"sync:{client_ip}",
        settings.sync_rate_limit_max,
        settings.sync_rate_limit_window_s,
    ):
        raise SubSyncError("SUB-API-003", context={"client_ip": client_ip})


@router.post(
    "/sync-subscription",
    response_model=SyncSubscriptionResponse,
    summary="Reconcile the caller's subscription with Stripe",
    description="Looks up the caller's live Stripe subscription, stores the normalized state and returns it.",
)
async def sync_subscription(
    body: SyncSubscriptionRequest,
    _rate_limit: None = Depends(enforce_sync_rate_limit),
    user: AuthenticatedUser = Depends(get_current_user),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    """Sync the authenticated user's subscription state."""
    if is_valid_uuid(body.user_id) and body.user_id != user.user_id:
        raise SubSyncError(
            "SUB-API-002",
            context={"user_id": user.user_id, "requested_user_id": body.user_id},
        )

    result = await reconciler.reconcile(body.user_id)
    return SyncSubscriptionResponse(**result.as_dict())
