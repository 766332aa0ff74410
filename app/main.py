import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.auth.token_auth import close_http_client
from app.config import settings
from app.core.database import close_db, init_db
from app.core.errors import SubSyncError
from app.core.errors.middleware import subsync_error_handler
from app.core.errors.registry import error_registry
from app.core.log_middleware import CorrelationMiddleware
from app.core.structured_logging import APP_VERSION, setup_logging
from app.routers import health, subscriptions

# Initialize structured logging before any logger calls
setup_logging(log_dir=settings.log_dir, log_level=logging.DEBUG if settings.debug else logging.INFO)

logger = logging.getLogger(__name__)

API_TITLE = "Subscription Sync API"

API_DESCRIPTION = """
## Subscription Sync

Reconciles a user's local subscription row with their live Stripe
subscription and returns the normalized `status` / `tier` used for
feature gating.

### Authentication

Send the signed-in user's access token: `Authorization: Bearer <token>`.
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("Starting %s v%s...", API_TITLE, APP_VERSION)

    error_registry.load()

    # Thread pool for run_sync() / asyncio.to_thread()
    executor = ThreadPoolExecutor(max_workers=16)
    asyncio.get_running_loop().set_default_executor(executor)

    init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down %s...", API_TITLE)
    await close_http_client()
    close_db()
    executor.shutdown(wait=False)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=APP_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=86400,
    )

    # request_id + correlation_id in every log
    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(SubSyncError, subsync_error_handler)

    # Catch-all so unhandled exceptions return JSON without internals
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": {"code": "SUB-SYS-001", "message": "An internal error occurred."}},
        )

    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(subscriptions.router, prefix="/api", tags=["subscriptions"])

    return app


app = create_app()
