"""ConcurrencyGate: ceiling on simultaneous inference executions."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI
from fastapi.requests import HTTPConnection

from chatgate.configs.config import AppConfig, get_app_config
from chatgate.core.service.metrics import (
    GATE_ACQUIRES_TOTAL,
    GATE_SLOTS_IN_USE,
    GATE_WAIT_SECONDS,
)
from chatgate.infra.lifespan import get_app
from chatgate.infra.telemetry import ATTR_GATE_CAPACITY, SPAN_GATE_SLOT, tracer

from .base import RequestCancelled
from .cancellation import CancelToken

logger = logging.getLogger(__name__)


class ConcurrencyGate:
    """Counting semaphore sized to ``capacity``.

    ``acquire`` has no timeout: under sustained overload callers wait here
    rather than receive an error.  The only way out of a wait is the
    caller's ``CancelToken`` firing (client gone).

    Usage::

        async with gate.slot(cancel_token):
            await client.execute(...)
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._in_use = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        """Permits currently held."""
        return self._in_use

    async def acquire(self, cancel_token: CancelToken | None = None) -> None:
        """Block until a permit is free, then claim it.

        Raises:
            RequestCancelled: if *cancel_token* fires while waiting; no
                permit is held in that case.
        """
        start = time.monotonic()
        try:
            if cancel_token is None:
                await self._semaphore.acquire()
            else:
                cancel_token.raise_if_cancelled()
                await cancel_token.run(self._semaphore.acquire())
        except RequestCancelled:
            GATE_ACQUIRES_TOTAL.labels(result="cancelled").inc()
            raise
        elapsed = time.monotonic() - start
        self._in_use += 1
        GATE_WAIT_SECONDS.observe(elapsed)
        GATE_ACQUIRES_TOTAL.labels(result="ok").inc()
        GATE_SLOTS_IN_USE.inc()
        logger.debug(
            "Gate slot acquired in %.3fs (%d/%d in use)",
            elapsed,
            self._in_use,
            self._capacity,
        )

    def release(self) -> None:
        """Return a permit to the pool."""
        self._in_use -= 1
        GATE_SLOTS_IN_USE.dec()
        self._semaphore.release()

    @asynccontextmanager
    async def slot(
        self, cancel_token: CancelToken | None = None
    ) -> AsyncGenerator[None, None]:
        """Acquire a permit, yield, and release it on every exit path."""
        with tracer.start_as_current_span(SPAN_GATE_SLOT) as span:
            span.set_attribute(ATTR_GATE_CAPACITY, self._capacity)
            await self.acquire(cancel_token)
            try:
                yield
            finally:
                self.release()


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_concurrency_gate(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[None, None]:
    """Create the process-wide ``ConcurrencyGate`` on ``app.state``."""
    capacity = config.concurrency.max_concurrency
    app.state.concurrency_gate = ConcurrencyGate(capacity)
    logger.info("ConcurrencyGate: max_concurrency=%d", capacity)
    yield
    gate: ConcurrencyGate = app.state.concurrency_gate
    if gate.in_use:
        logger.warning("Shutting down with %d gate slot(s) still held", gate.in_use)


# ---------------------------------------------------------------------------
# Per-connection dependency: reads from app.state
# ---------------------------------------------------------------------------


def get_concurrency_gate(connection: HTTPConnection) -> ConcurrencyGate:
    """Return the ``ConcurrencyGate`` stored on ``app.state``."""
    return connection.app.state.concurrency_gate
