"""LLM client factories."""

from typing import Annotated

from fastapi import Depends
from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI

from chatgate.configs.config import AppConfig, get_app_config

from .backend import ChatModelBackend, InferenceBackend


def get_llm(
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> ChatOpenAI:
    """Create a streaming ``ChatOpenAI`` client for the Ollama endpoint.

    Retries are disabled here; ``RetryingInferenceClient`` owns the retry
    policy, and the per-attempt deadline is enforced around the stream.
    """
    return ChatOpenAI(
        base_url=config.llm.endpoint,
        api_key=config.llm.api_key,
        model=config.llm.model_name,
        timeout=config.retry.attempt_timeout.total_seconds(),
        max_retries=0,
        streaming=True,
    )


def get_inference_backend(
    llm: Annotated[BaseChatModel, Depends(get_llm)],
) -> InferenceBackend:
    """Wrap the chat model in the backend contract."""
    return ChatModelBackend(llm)
