"""Shared fakes for gateway tests."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from fastapi import WebSocketDisconnect

from chatgate.configs.system import RetryConfig
from chatgate.core.llm import ChunkSink, InferenceBackend, SamplingParams


class ScriptedBackend(InferenceBackend):
    """Plays back one script per attempt.

    A script is either a list of chunks or an exception raised before
    anything is streamed.  ``HANG`` inside a chunk list blocks forever at
    that point.  The last script repeats once the list runs out.
    """

    HANG = object()

    def __init__(self, *scripts) -> None:
        self._scripts = list(scripts)
        self.calls = 0
        self.prompts: list[str] = []
        self.params: list[SamplingParams] = []
        self.active = 0
        self.peak = 0

    async def execute(
        self, prompt: str, params: SamplingParams, sink: ChunkSink
    ) -> None:
        script = self._scripts[min(self.calls, len(self._scripts) - 1)]
        self.calls += 1
        self.prompts.append(prompt)
        self.params.append(params)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if isinstance(script, BaseException):
                raise script
            for chunk in script:
                if chunk is self.HANG:
                    await asyncio.Event().wait()
                    continue
                await sink.on_chunk(chunk)
        finally:
            self.active -= 1


class RecordingSink:
    """ChunkSink that keeps every chunk and flags the first one."""

    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.first_chunk = asyncio.Event()

    async def on_chunk(self, chunk: str) -> None:
        self.chunks.append(chunk)
        self.first_chunk.set()


class FakeWebSocket:
    """In-memory stand-in for ``fastapi.WebSocket``.

    Push inbound text with ``feed``; ``disconnect`` makes the next read
    raise ``WebSocketDisconnect``.  Everything sent is kept in ``sent``.
    """

    def __init__(self, *, fail_sends: bool = False) -> None:
        self.client = None
        self.sent: list[dict] = []
        self.fail_sends = fail_sends
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()

    def feed(self, text: str) -> None:
        self._incoming.put_nowait(text)

    def disconnect(self) -> None:
        self._incoming.put_nowait(None)

    @property
    def unread(self) -> int:
        return self._incoming.qsize()

    async def receive_text(self) -> str:
        item = await self._incoming.get()
        if item is None:
            raise WebSocketDisconnect(code=1000)
        return item

    async def send_json(self, data: dict) -> None:
        if self.fail_sends:
            raise RuntimeError("Cannot call 'send' once a close message has been sent.")
        self.sent.append(data)

    async def wait_for_sent(self, count: int, timeout: float = 2.0) -> None:
        async def _poll() -> None:
            while len(self.sent) < count:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def scripted():
    return ScriptedBackend


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def fake_ws():
    return FakeWebSocket


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Three retries with millisecond backoff."""
    return RetryConfig(
        max_retries=3,
        initial_backoff=timedelta(milliseconds=5),
        attempt_timeout=timedelta(seconds=5),
    )
