"""
Async utilities for wrapping synchronous service calls.

Provides run_sync() to offload blocking I/O (SQL store, Stripe SDK) to
threads, preventing event loop starvation under concurrent load.
"""

import asyncio
import logging
import time
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_sync(func: Callable[..., T], *args: Any) -> T:
    """
    Run a synchronous function in a thread without blocking the event loop.

    No deadline is applied here; the HTTP boundary owns the request timeout.
    Exceptions raised by func propagate unchanged.
    """
    name = getattr(func, "__qualname__", None) or getattr(func, "__name__", repr(func))
    start = time.perf_counter()
    result = await asyncio.to_thread(func, *args)
    logger.debug("run_sync %s completed in %.2fms", name, (time.perf_counter() - start) * 1000)
    return result
