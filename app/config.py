"""
Subscription Sync Configuration
===============================

PURPOSE:
    Pydantic-Settings based configuration for the subscription sync service.
    All settings can be overridden via environment variables (SUBSYNC_ prefix).

    Billing provider (Stripe) and identity provider credentials are optional
    at import time so tests and local tooling can load the module; the code
    paths that need them fail with a configuration error instead.
"""

import logging
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    app_name: str = "subscription-sync"
    debug: bool = False

    # Local SQL store (DATABASE_URL overrides the SQLite default)
    data_directory: str = "/data"

    # Stripe billing provider
    stripe_secret_key: Optional[str] = None
    stripe_api_version: str = "2023-10-16"

    # Identity provider (bearer token verification)
    identity_url: Optional[str] = None
    identity_service_key: Optional[str] = None
    auth_cache_ttl: int = 300  # seconds

    # Reconciliation
    email_lookup_limit: int = Field(default=5, ge=1, le=5)
    # Propagate store write failures instead of returning the in-memory result
    strict_writes: bool = False

    # Rate limiting for the sync endpoint (per client IP)
    sync_rate_limit_max: int = 10
    sync_rate_limit_window_s: float = 60.0

    # Logging
    log_dir: str = "logs"

    # CORS
    cors_origins: List[str] = [
        "https://mymarineforecast.com",
        "https://www.mymarineforecast.com",
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    class Config:
        env_file = ".env"
        env_prefix = "SUBSYNC_"


settings = Settings()

if not settings.stripe_secret_key:
    logger.warning("SUBSYNC_STRIPE_SECRET_KEY not set — subscription sync will fail until configured")
