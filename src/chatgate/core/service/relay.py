"""StreamRelay: forwards one query's chunks to its connection.

The relay is the ``ChunkSink`` handed to ``RetryingInferenceClient``.
Every chunk is written to the client as a partial answer the moment it
arrives; once the query ends the relay writes exactly one terminal
message, either the aggregated answer or an error.
"""

from __future__ import annotations

import logging
from typing import Protocol

from chatgate.infra.concurrency.base import ClientDisconnected

from .metrics import STREAM_CHUNKS_TOTAL
from .models import RequestContext

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Stream Cancelled"


class MessageWriter(Protocol):
    """Outbound side of a client connection.

    Implementations raise ``ClientDisconnected`` when the write fails.
    """

    async def send_answer(self, text: str) -> None: ...

    async def send_error(self, message: str) -> None: ...


class StreamRelay:
    """Chunk sink for a single query."""

    def __init__(self, writer: MessageWriter, ctx: RequestContext) -> None:
        self._writer = writer
        self._ctx = ctx
        self._parts: list[str] = []
        self._terminated = False
        self._closed = False

    @property
    def transcript(self) -> str:
        """Every chunk forwarded so far, across attempts."""
        return "".join(self._parts)

    @property
    def chunks_sent(self) -> int:
        return len(self._parts)

    @property
    def terminated(self) -> bool:
        return self._terminated

    async def on_chunk(self, chunk: str) -> None:
        self._ctx.cancel_token.raise_if_cancelled()
        logger.debug("RequestID: %s - Chunk: %r", self._ctx.request_id, chunk)
        self._parts.append(chunk)
        await self._write(self._writer.send_answer, chunk)
        STREAM_CHUNKS_TOTAL.inc()

    def on_cancel_signal(self, reason: str = "client disconnected") -> None:
        """Abort the in-flight inference call for this query."""
        if not self._ctx.cancel_token.cancelled:
            logger.info(
                "RequestID: %s - Cancelling stream: %s", self._ctx.request_id, reason
            )
        self._ctx.cancel_token.cancel(reason)

    async def complete(self, answer: str) -> None:
        """Send the aggregated answer as the terminal message."""
        await self._terminate(self._writer.send_answer, answer)

    async def fail(self, message: str) -> None:
        """Send *message* as the terminal error."""
        await self._terminate(self._writer.send_error, message)

    async def _terminate(self, send, payload: str) -> None:
        if self._terminated:
            raise RuntimeError(
                f"terminal message already sent for {self._ctx.request_id}"
            )
        self._terminated = True
        if self._closed:
            logger.debug(
                "RequestID: %s - Connection closed, dropping terminal message",
                self._ctx.request_id,
            )
            return
        await self._write(send, payload)

    async def _write(self, send, payload: str) -> None:
        try:
            await send(payload)
        except ClientDisconnected:
            self._closed = True
            self.on_cancel_signal("write to client failed")
            raise
