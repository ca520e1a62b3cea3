"""CancelToken: cooperative cancellation shared by one connection.

A single token is created per WebSocket session and threaded through
every suspension point of query processing (slot acquire, inference
stream, backoff sleep).  Once fired it stays fired: the connection is
gone, so nothing else on it should run.

Usage::

    token = CancelToken()

    result = await token.run(backend.execute(...))   # aborts on cancel
    await token.sleep(2.0)                           # wakes early on cancel
    token.raise_if_cancelled()                       # chunk-boundary check
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from .base import RequestCancelled

T = TypeVar("T")


class CancelToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Fire the token.  Only the first reason is kept."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled(self.reason)

    async def run(self, aw: Awaitable[T]) -> T:
        """Await *aw*, abandoning it as soon as the token fires.

        The wrapped awaitable runs as its own task; when the token wins
        the race that task is cancelled and awaited before
        ``RequestCancelled`` is raised, so nothing keeps running in the
        background.
        """
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.wait({task})

        if task.cancelled():
            raise RequestCancelled(self.reason)
        return task.result()

    async def sleep(self, delay: float) -> None:
        """Sleep for *delay* seconds unless the token fires first."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except TimeoutError:
            return
        raise RequestCancelled(self.reason)
