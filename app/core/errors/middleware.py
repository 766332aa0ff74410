"""
FastAPI exception handler for SubSyncError.

The response carries only registry fields (code, title, safe message,
retry hints). ``detail`` and ``context`` are written to the log and never
returned to the client.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.errors import SubSyncError
from app.core.errors.registry import ErrorEntry, error_registry

logger = logging.getLogger(__name__)

# Served when a raised code is missing from registry.yaml
_UNREGISTERED = ErrorEntry(
    code="SUB-SYS-001",
    title="Internal error",
    severity="ERROR",
    retryable=False,
    user_action_required=False,
    http_status=500,
    safe_message="An internal error occurred.",
)


async def subsync_error_handler(request: Request, exc: SubSyncError) -> JSONResponse:
    """Convert SubSyncError into a structured JSON response."""
    entry = error_registry.get(exc.code)
    if entry is None:
        logger.error("Unregistered error code %s raised: %s", exc.code, exc.detail)
        entry = _UNREGISTERED

    logger.log(
        entry.log_level,
        entry.title,
        extra={
            "error.code": exc.code,
            "error.message": exc.detail,
            "error.retryable": entry.retryable,
            "http.path": request.url.path,
            **{f"error.ctx.{k}": v for k, v in exc.context.items()},
        },
    )

    return JSONResponse(
        status_code=entry.http_status,
        content={
            "error": {
                "code": entry.code,
                "title": entry.title,
                "message": entry.safe_message,
                "retryable": entry.retryable,
                "user_action_required": entry.user_action_required,
                "remediation": entry.remediation,
            }
        },
    )
