"""RetryingInferenceClient: deadline, backoff and bounded retries.

Wraps one backend inference call per attempt:

* each attempt gets its own deadline (``attempt_timeout``);
* chunks are forwarded to the caller's sink as they arrive and also
  collected into a per-attempt buffer, which becomes the answer when the
  attempt succeeds;
* a deadline hit or a fired ``CancelToken`` ends the query at once and is
  never retried;
* any other failure is logged and retried after a backoff that starts at
  ``initial_backoff`` and doubles each time, up to ``max_retries`` retries.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from datetime import timedelta
from typing import Annotated

from fastapi import Depends, FastAPI
from fastapi.requests import HTTPConnection

from chatgate.configs.config import AppConfig, get_app_config
from chatgate.configs.system import RetryConfig
from chatgate.core.llm import (
    DEFAULT_SAMPLING_PARAMS,
    ChunkSink,
    InferenceBackend,
    SamplingParams,
    build_prompt,
    get_inference_backend,
)
from chatgate.infra.concurrency.base import DeadlineExceeded, RequestCancelled
from chatgate.infra.lifespan import get_app
from chatgate.infra.telemetry import ATTR_ATTEMPT, SPAN_INFERENCE_ATTEMPT, tracer

from .metrics import INFERENCE_ATTEMPTS_TOTAL, INFERENCE_CALLS_IN_FLIGHT
from .models import RequestContext, RetriesExhausted

logger = logging.getLogger(__name__)


def backoff_delays(max_retries: int, initial_backoff: timedelta) -> list[float]:
    """Sleep before each retry, in seconds: ``b, 2b, 4b, ...``."""
    base = initial_backoff.total_seconds()
    return [base * 2**i for i in range(max_retries)]


class _AttemptBuffer:
    """Sink adapter collecting one attempt's chunks before forwarding."""

    def __init__(self, sink: ChunkSink) -> None:
        self._sink = sink
        self.parts: list[str] = []

    async def on_chunk(self, chunk: str) -> None:
        self.parts.append(chunk)
        await self._sink.on_chunk(chunk)

    @property
    def text(self) -> str:
        return "".join(self.parts)


class RetryingInferenceClient:
    """Runs one query against the backend with retries.

    Usage::

        client = RetryingInferenceClient(backend, RetryConfig())
        answer = await client.execute(query, relay, ctx)
    """

    def __init__(
        self,
        backend: InferenceBackend,
        config: RetryConfig,
        params: SamplingParams = DEFAULT_SAMPLING_PARAMS,
    ) -> None:
        self._backend = backend
        self._max_retries = config.max_retries
        self._delays = backoff_delays(config.max_retries, config.initial_backoff)
        self._attempt_timeout = config.attempt_timeout.total_seconds()
        self._params = params

    @property
    def max_retries(self) -> int:
        return self._max_retries

    async def execute(self, query: str, sink: ChunkSink, ctx: RequestContext) -> str:
        """Return the full answer of the first successful attempt.

        Raises:
            RequestCancelled: the client went away or an attempt hit its
                deadline (``DeadlineExceeded``).  Not retried.
            RetriesExhausted: all ``max_retries + 1`` attempts failed.
        """
        prompt = build_prompt(query)
        total = self._max_retries + 1
        last_error: Exception | None = None
        logger.info("RequestID: %s - Starting LLM request", ctx.request_id)

        for attempt in range(total):
            buffer = _AttemptBuffer(sink)
            try:
                await self._attempt(prompt, buffer, ctx, attempt)
            except RequestCancelled as exc:
                result = "deadline" if isinstance(exc, DeadlineExceeded) else "cancelled"
                INFERENCE_ATTEMPTS_TOTAL.labels(result=result).inc()
                logger.info(
                    "RequestID: %s - LLM request %s (attempt %d/%d): %s",
                    ctx.request_id,
                    result,
                    attempt + 1,
                    total,
                    exc,
                )
                raise
            except Exception as exc:
                last_error = exc
                INFERENCE_ATTEMPTS_TOTAL.labels(result="error").inc()
                logger.warning(
                    "RequestID: %s - LLM request failed (attempt %d/%d): %s",
                    ctx.request_id,
                    attempt + 1,
                    total,
                    exc,
                )
                if attempt < self._max_retries:
                    await ctx.cancel_token.sleep(self._delays[attempt])
                continue

            INFERENCE_ATTEMPTS_TOTAL.labels(result="ok").inc()
            logger.info("RequestID: %s - LLM request successful", ctx.request_id)
            return buffer.text

        logger.error(
            "RequestID: %s - LLM request failed after %d retries",
            ctx.request_id,
            self._max_retries,
        )
        raise RetriesExhausted(self._max_retries, last_error)

    async def _attempt(
        self,
        prompt: str,
        buffer: _AttemptBuffer,
        ctx: RequestContext,
        attempt: int,
    ) -> None:
        loop = asyncio.get_running_loop()
        ctx.deadline = loop.time() + self._attempt_timeout
        deadline = asyncio.timeout_at(ctx.deadline)
        with tracer.start_as_current_span(SPAN_INFERENCE_ATTEMPT) as span:
            span.set_attribute(ATTR_ATTEMPT, attempt + 1)
            INFERENCE_CALLS_IN_FLIGHT.inc()
            try:
                async with deadline:
                    await ctx.cancel_token.run(
                        self._backend.execute(prompt, self._params, buffer)
                    )
            except TimeoutError:
                if deadline.expired():
                    raise DeadlineExceeded(
                        f"attempt exceeded {self._attempt_timeout:g}s deadline"
                    ) from None
                raise
            finally:
                INFERENCE_CALLS_IN_FLIGHT.dec()


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_inference_client(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
    backend: Annotated[InferenceBackend, Depends(get_inference_backend)],
) -> AsyncGenerator[None, None]:
    """Create the shared ``RetryingInferenceClient`` on ``app.state``."""
    app.state.inference_client = RetryingInferenceClient(backend, config.retry)
    logger.info(
        "RetryingInferenceClient: model=%s endpoint=%s max_retries=%d",
        config.llm.model_name,
        config.llm.endpoint,
        config.retry.max_retries,
    )
    yield


# ---------------------------------------------------------------------------
# Per-connection dependency: reads from app.state
# ---------------------------------------------------------------------------


def get_inference_client(connection: HTTPConnection) -> RetryingInferenceClient:
    """Return the ``RetryingInferenceClient`` stored on ``app.state``."""
    return connection.app.state.inference_client
