"""ConnectionSession: one WebSocket connection, one query at a time.

A reader task drains the socket into a bounded queue while the session loop
processes queries strictly in order.  Reading concurrently with
processing is what lets a disconnect be noticed mid-stream: the reader
fires the connection's ``CancelToken`` through the active relay and the
in-flight inference call is abandoned instead of running to completion.

Per query::

    AWAITING_QUERY ─► ADMITTED ─► IN_FLIGHT ─► DELIVERED ─► AWAITING_QUERY
          │  invalid / rate limited: error sent, stays AWAITING_QUERY
          └─► CLOSED on disconnect or transport failure
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from contextlib import suppress

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from chatgate.core.service.metrics import (
    QUERY_DURATION_SECONDS,
    QUERY_OUTCOMES_TOTAL,
    SESSIONS_ACTIVE,
)
from chatgate.core.service.models import (
    InvalidQuery,
    RequestContext,
    RetriesExhausted,
    validate_query,
)
from chatgate.core.service.relay import CANCELLED_MESSAGE, StreamRelay
from chatgate.core.service.retry import RetryingInferenceClient
from chatgate.infra.concurrency import (
    CancelToken,
    ClientDisconnected,
    ConcurrencyGate,
    RateLimited,
    RateLimiter,
    RequestCancelled,
)
from chatgate.infra.id_utils import CONNECTION_ID_PREFIX, generate_id
from chatgate.infra.telemetry import (
    ATTR_CONNECTION_ID,
    ATTR_OUTCOME,
    ATTR_REQUEST_ID,
    SPAN_CHAT_QUERY,
    tracer,
)

from .models import INVALID_FORMAT_MESSAGE, ChatRequest, ChatResponse

logger = logging.getLogger(__name__)

_SEND_ERRORS = (WebSocketDisconnect, RuntimeError, OSError)

DEFAULT_INBOX_SIZE = 16


class SessionState(enum.Enum):
    AWAITING_QUERY = "awaiting_query"
    ADMITTED = "admitted"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    CLOSED = "closed"


class ConnectionSession:
    """Drives queries from one accepted WebSocket through the pipeline."""

    def __init__(
        self,
        websocket: WebSocket,
        *,
        rate_limiter: RateLimiter,
        gate: ConcurrencyGate,
        client: RetryingInferenceClient,
        connection_id: str | None = None,
        inbox_size: int = DEFAULT_INBOX_SIZE,
    ) -> None:
        self._ws = websocket
        self._rate_limiter = rate_limiter
        self._gate = gate
        self._client = client
        self.connection_id = connection_id or generate_id(CONNECTION_ID_PREFIX)
        self.state = SessionState.AWAITING_QUERY
        self._cancel_token = CancelToken()
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue(maxsize=inbox_size)
        self._relay: StreamRelay | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Messages read from the socket but not yet handled."""
        return self._inbox.qsize()

    # ------------------------------------------------------------------
    # Session loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Process queries until the peer goes away."""
        SESSIONS_ACTIVE.inc()
        reader = asyncio.create_task(self._read_messages())
        try:
            while True:
                raw = await self._inbox.get()
                if raw is None or self._closed:
                    break
                try:
                    await self.handle_message(raw)
                except ClientDisconnected:
                    logger.info(
                        "ConnID: %s - Client gone while writing, ending session",
                        self.connection_id,
                    )
                    break
        finally:
            self._mark_closed("session ended")
            reader.cancel()
            with suppress(asyncio.CancelledError):
                await reader
            self.state = SessionState.CLOSED
            SESSIONS_ACTIVE.dec()

    async def _read_messages(self) -> None:
        # A full inbox stops the reader, which leaves further frames in the
        # transport and pushes back on the client.
        try:
            while True:
                await self._inbox.put(await self._ws.receive_text())
        except WebSocketDisconnect as exc:
            logger.info(
                "ConnID: %s - WebSocket closed by client (code=%s)",
                self.connection_id,
                exc.code,
            )
        except (RuntimeError, KeyError, OSError) as exc:
            logger.warning(
                "ConnID: %s - Error reading message: %r", self.connection_id, exc
            )
        finally:
            self._mark_closed("client disconnected")
            with suppress(asyncio.QueueFull):
                self._inbox.put_nowait(None)

    def _mark_closed(self, reason: str) -> None:
        self._closed = True
        if self._relay is not None:
            self._relay.on_cancel_signal(reason)
        else:
            self._cancel_token.cancel(reason)

    # ------------------------------------------------------------------
    # Per-message handling
    # ------------------------------------------------------------------

    async def handle_message(self, raw: str) -> None:
        """Validate, admit and answer one inbound message."""
        try:
            request = ChatRequest.model_validate_json(raw)
        except ValidationError:
            logger.info(
                "ConnID: %s - Error unmarshalling message", self.connection_id
            )
            QUERY_OUTCOMES_TOTAL.labels(code="invalid_format").inc()
            await self.send_error(INVALID_FORMAT_MESSAGE)
            return

        try:
            query = validate_query(request.query)
        except InvalidQuery as exc:
            logger.info("ConnID: %s - Received empty query", self.connection_id)
            QUERY_OUTCOMES_TOTAL.labels(code="invalid_query").inc()
            await self.send_error(str(exc))
            return

        try:
            await self._rate_limiter.enforce()
        except RateLimited as exc:
            QUERY_OUTCOMES_TOTAL.labels(code="rate_limited").inc()
            await self.send_error(str(exc))
            return

        await self._process_query(query)

    async def _process_query(self, query: str) -> None:
        ctx = RequestContext(
            connection_id=self.connection_id, cancel_token=self._cancel_token
        )
        relay = StreamRelay(self, ctx)
        self._relay = relay
        self.state = SessionState.ADMITTED
        logger.info(
            "RequestID: %s, ConnID: %s - Query: %s",
            ctx.request_id,
            self.connection_id,
            query,
        )
        start = time.monotonic()
        code = "ok"
        with tracer.start_as_current_span(SPAN_CHAT_QUERY) as span:
            span.set_attribute(ATTR_REQUEST_ID, ctx.request_id)
            span.set_attribute(ATTR_CONNECTION_ID, self.connection_id)
            try:
                async with self._gate.slot(ctx.cancel_token):
                    self.state = SessionState.IN_FLIGHT
                    answer = await self._client.execute(query, relay, ctx)
                self.state = SessionState.DELIVERED
                await relay.complete(answer)
            except ClientDisconnected:
                code = "cancelled"
                raise
            except RequestCancelled as exc:
                code = "cancelled"
                if not self._closed:
                    logger.info(
                        "RequestID: %s - Stream cancelled: %s", ctx.request_id, exc
                    )
                    self.state = SessionState.DELIVERED
                    await relay.fail(CANCELLED_MESSAGE)
            except RetriesExhausted as exc:
                code = "exhausted"
                self.state = SessionState.DELIVERED
                await relay.fail(str(exc))
            finally:
                self._relay = None
                span.set_attribute(ATTR_OUTCOME, code)
                QUERY_OUTCOMES_TOTAL.labels(code=code).inc()
                QUERY_DURATION_SECONDS.observe(time.monotonic() - start)
                if not self._closed:
                    self.state = SessionState.AWAITING_QUERY

    # ------------------------------------------------------------------
    # MessageWriter
    # ------------------------------------------------------------------

    async def send_answer(self, text: str) -> None:
        await self._send(ChatResponse(answer=text))

    async def send_error(self, message: str) -> None:
        await self._send(ChatResponse(error=message))

    async def _send(self, message: ChatResponse) -> None:
        if self._closed:
            raise ClientDisconnected("connection already closed")
        try:
            await self._ws.send_json(message.to_wire())
        except _SEND_ERRORS as exc:
            logger.info(
                "ConnID: %s - Error sending over websocket: %r",
                self.connection_id,
                exc,
            )
            self._mark_closed("write to client failed")
            raise ClientDisconnected(str(exc)) from exc
