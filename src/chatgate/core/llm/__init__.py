"""Inference backend contract and langchain-based implementation."""

from .backend import (  # noqa: F401
    DEFAULT_SAMPLING_PARAMS,
    ChatModelBackend,
    ChunkSink,
    InferenceBackend,
    SamplingParams,
    build_prompt,
)
from .deps import get_inference_backend, get_llm  # noqa: F401
