"""Tests for RetryingInferenceClient: retries, backoff, deadline, cancel."""

from __future__ import annotations

import asyncio
import time
from datetime import timedelta

import pytest

from chatgate.configs.system import RetryConfig
from chatgate.core.llm import DEFAULT_SAMPLING_PARAMS
from chatgate.core.service.models import RequestContext, RetriesExhausted
from chatgate.core.service.retry import RetryingInferenceClient, backoff_delays
from chatgate.infra.concurrency import DeadlineExceeded, RequestCancelled


def _ctx() -> RequestContext:
    return RequestContext(connection_id="conn_test")


# =========================================================================
# Backoff schedule
# =========================================================================


class TestBackoffDelays:
    def test_doubles_from_initial(self):
        assert backoff_delays(3, timedelta(seconds=2)) == [2.0, 4.0, 8.0]

    def test_no_retries_no_delays(self):
        assert backoff_delays(0, timedelta(seconds=2)) == []


# =========================================================================
# Success and retry paths
# =========================================================================


class TestRetryingInferenceClient:
    @pytest.mark.asyncio
    async def test_first_attempt_success(self, scripted, recording_sink, fast_retry):
        backend = scripted(["He", "llo"])
        client = RetryingInferenceClient(backend, fast_retry)

        answer = await client.execute("Hello", recording_sink, _ctx())

        assert answer == "Hello"
        assert recording_sink.chunks == ["He", "llo"]
        assert backend.calls == 1

    @pytest.mark.asyncio
    async def test_prompt_and_sampling_params(
        self, scripted, recording_sink, fast_retry
    ):
        backend = scripted(["ok"])
        client = RetryingInferenceClient(backend, fast_retry)

        await client.execute("What is 2+2?", recording_sink, _ctx())

        assert backend.prompts == ["Human: What is 2+2?\nAssistant:"]
        params = backend.params[0]
        assert params == DEFAULT_SAMPLING_PARAMS
        assert params.temperature == 0.8
        assert params.max_tokens == 100
        assert params.top_p == 0.9

    @pytest.mark.asyncio
    async def test_two_failures_then_success(self, scripted, recording_sink):
        backend = scripted(
            ConnectionError("refused"), ConnectionError("refused"), ["Hi"]
        )
        config = RetryConfig(
            max_retries=3,
            initial_backoff=timedelta(milliseconds=20),
            attempt_timeout=timedelta(seconds=5),
        )
        client = RetryingInferenceClient(backend, config)

        start = time.monotonic()
        answer = await client.execute("Hello", recording_sink, _ctx())
        elapsed = time.monotonic() - start

        assert answer == "Hi"
        assert backend.calls == 3
        # 20ms then 40ms of backoff
        assert elapsed >= 0.055

    @pytest.mark.asyncio
    async def test_answer_comes_from_successful_attempt_only(
        self, recording_sink, fast_retry
    ):
        class _MidStreamFailure:
            def __init__(self) -> None:
                self.calls = 0

            async def execute(self, prompt, params, sink):
                self.calls += 1
                await sink.on_chunk("partial")
                if self.calls == 1:
                    raise ConnectionError("stream reset")

        backend = _MidStreamFailure()
        client = RetryingInferenceClient(backend, fast_retry)

        answer = await client.execute("Hello", recording_sink, _ctx())

        assert answer == "partial"
        assert recording_sink.chunks == ["partial", "partial"]

    @pytest.mark.asyncio
    async def test_exhausts_after_max_retries(
        self, scripted, recording_sink, fast_retry
    ):
        failure = ConnectionError("refused")
        backend = scripted(failure)
        client = RetryingInferenceClient(backend, fast_retry)

        with pytest.raises(RetriesExhausted) as excinfo:
            await client.execute("Hello", recording_sink, _ctx())

        assert backend.calls == 4
        assert str(excinfo.value) == "LLM request failed after 3 retries"
        assert excinfo.value.last_error is failure

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(
        self, scripted, recording_sink
    ):
        backend = scripted(ConnectionError("refused"))
        client = RetryingInferenceClient(backend, RetryConfig(max_retries=0))

        with pytest.raises(RetriesExhausted, match="after 0 retries"):
            await client.execute("Hello", recording_sink, _ctx())
        assert backend.calls == 1


# =========================================================================
# Deadline and cancellation are never retried
# =========================================================================


class TestRetryingInferenceClientAbort:
    @pytest.mark.asyncio
    async def test_deadline_is_not_retried(self, scripted, recording_sink):
        backend = scripted(["slow", scripted.HANG])
        config = RetryConfig(
            max_retries=3,
            initial_backoff=timedelta(milliseconds=1),
            attempt_timeout=timedelta(milliseconds=50),
        )
        client = RetryingInferenceClient(backend, config)

        with pytest.raises(DeadlineExceeded):
            await asyncio.wait_for(
                client.execute("Hello", recording_sink, _ctx()), 2.0
            )

        assert backend.calls == 1
        assert backend.active == 0
        assert recording_sink.chunks == ["slow"]

    @pytest.mark.asyncio
    async def test_cancel_mid_stream_aborts_backend(
        self, scripted, recording_sink, fast_retry
    ):
        backend = scripted(["a", scripted.HANG])
        client = RetryingInferenceClient(backend, fast_retry)
        ctx = _ctx()

        task = asyncio.create_task(client.execute("Hello", recording_sink, ctx))
        await asyncio.wait_for(recording_sink.first_chunk.wait(), 1.0)
        ctx.cancel_token.cancel("client disconnected")

        with pytest.raises(RequestCancelled):
            await asyncio.wait_for(task, 1.0)
        assert backend.calls == 1
        assert backend.active == 0

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self, scripted, recording_sink):
        backend = scripted(ConnectionError("refused"))
        config = RetryConfig(max_retries=3, initial_backoff=timedelta(seconds=30))
        client = RetryingInferenceClient(backend, config)
        ctx = _ctx()

        task = asyncio.create_task(client.execute("Hello", recording_sink, ctx))
        await asyncio.sleep(0.02)
        ctx.cancel_token.cancel("client disconnected")

        with pytest.raises(RequestCancelled):
            await asyncio.wait_for(task, 1.0)
        assert backend.calls == 1
