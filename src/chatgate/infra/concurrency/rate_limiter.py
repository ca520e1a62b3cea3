"""RateLimiter: fixed-window admission counter shared by all sessions."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncGenerator, Callable
from datetime import timedelta
from typing import Annotated

from fastapi import Depends, FastAPI
from fastapi.requests import HTTPConnection

from chatgate.configs.config import AppConfig, get_app_config
from chatgate.core.service.metrics import RATE_LIMIT_REJECTIONS_TOTAL
from chatgate.infra.lifespan import get_app

from .base import RateLimited

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window counter.

    On every call the window restarts once more than ``period`` has
    elapsed since it opened; within a window at most ``max_requests``
    calls are admitted.  There is no smoothing, so a burst straddling a
    window boundary can admit up to ``2 * max_requests`` in quick
    succession.  Rejected calls leave the counter untouched.

    Usage::

        limiter = RateLimiter(max_requests=10, period=timedelta(minutes=1))

        if not await limiter.allow():
            ...  # reject
        await limiter.enforce()  # or: raise RateLimited
    """

    def __init__(
        self,
        max_requests: int,
        period: timedelta,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._period = period.total_seconds()
        self._clock = clock
        self._window_start = clock()
        self._count = 0
        self._lock = asyncio.Lock()

    @property
    def count(self) -> int:
        """Queries admitted in the current window."""
        return self._count

    @property
    def max_requests(self) -> int:
        return self._max_requests

    async def allow(self) -> bool:
        async with self._lock:
            now = self._clock()
            if now - self._window_start > self._period:
                self._count = 0
                self._window_start = now
            if self._count < self._max_requests:
                self._count += 1
                return True
            return False

    async def enforce(self) -> None:
        """Admit or raise ``RateLimited``."""
        if await self.allow():
            return
        RATE_LIMIT_REJECTIONS_TOTAL.inc()
        logger.info(
            "Rate limit reached (%d per %.0fs), rejecting query",
            self._max_requests,
            self._period,
        )
        raise RateLimited("Too many requests")


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_rate_limiter(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[None, None]:
    """Create the process-wide ``RateLimiter`` and attach it to ``app.state``."""
    cc = config.concurrency
    app.state.rate_limiter = RateLimiter(
        max_requests=cc.max_requests, period=cc.rate_limit_period
    )
    logger.info(
        "RateLimiter: %d queries per %s", cc.max_requests, cc.rate_limit_period
    )
    yield


# ---------------------------------------------------------------------------
# Per-connection dependency: reads from app.state
# ---------------------------------------------------------------------------


def get_rate_limiter(connection: HTTPConnection) -> RateLimiter:
    """Return the ``RateLimiter`` stored on ``app.state`` by the lifespan."""
    return connection.app.state.rate_limiter
