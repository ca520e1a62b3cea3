"""Inference backend contract and its chat-model implementation.

The gateway only needs one thing from a text-generation engine: given a
prompt and sampling parameters, push generated text into a sink as it
is produced, then return (or raise).  Deadlines and cancellation are
enforced by the caller around ``execute``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol

from langchain_core.language_models import BaseChatModel
from pydantic import BaseModel, ConfigDict, Field

PROMPT_TEMPLATE = "Human: {query}\nAssistant:"


def build_prompt(query: str) -> str:
    """Wrap a user query in the single-turn prompt sent to the model."""
    return PROMPT_TEMPLATE.format(query=query)


class SamplingParams(BaseModel):
    """Fixed sampling parameters for every inference call."""

    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=0.8)
    max_tokens: int = Field(default=100)
    top_p: float = Field(default=0.9)
    frequency_penalty: float = Field(default=0.0)
    presence_penalty: float = Field(default=0.0)


DEFAULT_SAMPLING_PARAMS = SamplingParams()


class ChunkSink(Protocol):
    """Receives generated text, one fragment at a time, in order."""

    async def on_chunk(self, chunk: str) -> None: ...


class InferenceBackend(ABC):
    """Interface for text-generation backends."""

    @abstractmethod
    async def execute(
        self, prompt: str, params: SamplingParams, sink: ChunkSink
    ) -> None:
        """Generate a completion for *prompt*, streaming it into *sink*.

        ``sink.on_chunk`` is awaited zero or more times before this
        returns.  Any exception raised by the sink must propagate.
        """


class ChatModelBackend(InferenceBackend):
    """Streams completions from a langchain chat model.

    The sampling parameters are passed as call-time kwargs so the same
    model instance serves every request.
    """

    def __init__(self, llm: BaseChatModel) -> None:
        self._llm = llm

    async def execute(
        self, prompt: str, params: SamplingParams, sink: ChunkSink
    ) -> None:
        async for chunk in self._llm.astream(prompt, **params.model_dump()):
            content = chunk.content
            if isinstance(content, str) and content:
                await sink.on_chunk(content)
