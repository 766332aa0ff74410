"""
Bearer Token Authentication
===========================

Verifies the ``Authorization: Bearer <jwt>`` header against the identity
provider's user endpoint (``GET {identity_url}/auth/v1/user``) and returns
the authenticated user ID. Verified tokens are cached for
``SUBSYNC_AUTH_CACHE_TTL`` seconds, keyed by a SHA-256 digest so raw tokens
are never held in memory longer than the request.
"""

import hashlib
import logging
from typing import Optional

import httpx
from cachetools import TTLCache
from fastapi import Request
from pydantic import BaseModel

from app.config import settings
from app.core.errors import SubSyncError

logger = logging.getLogger(__name__)


class AuthenticatedUser(BaseModel):
    user_id: str
    email: Optional[str] = None


token_cache: TTLCache = TTLCache(maxsize=1000, ttl=settings.auth_cache_ttl)

_http_client: Optional[httpx.AsyncClient] = None


def _get_http_client() -> httpx.AsyncClient:
    """Return shared httpx.AsyncClient, creating on first use."""
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, connect=5.0),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


def _token_digest(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


async def verify_token(token: str) -> Optional[AuthenticatedUser]:
    """Ask the identity provider who owns *token*. Returns None if it is rejected."""
    if not settings.identity_url or not settings.identity_service_key:
        logger.error("Missing identity provider settings for auth verification")
        raise SubSyncError("SUB-SEC-002", detail="SUBSYNC_IDENTITY_URL / SUBSYNC_IDENTITY_SERVICE_KEY not set")

    url = f"{settings.identity_url.rstrip('/')}/auth/v1/user"
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": settings.identity_service_key,
    }

    try:
        response = await _get_http_client().get(url, headers=headers)
    except httpx.RequestError as exc:
        raise SubSyncError("SUB-SEC-002", detail=f"identity provider request failed: {exc}") from exc

    if response.status_code == 200:
        data = response.json()
        if not data.get("id"):
            return None
        return AuthenticatedUser(user_id=data["id"], email=data.get("email"))
    if response.status_code in (401, 403):
        return None

    raise SubSyncError(
        "SUB-SEC-002",
        detail=f"identity provider returned status {response.status_code}",
    )


async def get_current_user(request: Request) -> AuthenticatedUser:
    """FastAPI dependency: authenticate the bearer token on the request."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise SubSyncError("SUB-SEC-001", detail="Missing or invalid Authorization header")

    token = auth_header[len("Bearer "):].strip()
    if not token:
        raise SubSyncError("SUB-SEC-001", detail="Empty bearer token")

    digest = _token_digest(token)
    cached = token_cache.get(digest)
    if cached:
        request.state.user = cached
        return cached

    user = await verify_token(token)
    if user is None:
        raise SubSyncError("SUB-SEC-001", detail="Invalid or expired token")

    token_cache[digest] = user
    request.state.user = user
    return user
