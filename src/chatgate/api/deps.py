"""Centralized FastAPI dependency type aliases.

Each ``*Dep`` alias maps to a single ``get_*`` factory and can be
overridden in tests via ``app.dependency_overrides[get_xxx] = ...``.
"""

from typing import Annotated

from fastapi import Depends

from chatgate.core.service.retry import RetryingInferenceClient, get_inference_client
from chatgate.infra.concurrency import (
    ConcurrencyGate,
    RateLimiter,
    get_concurrency_gate,
    get_rate_limiter,
)

RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]
ConcurrencyGateDep = Annotated[ConcurrencyGate, Depends(get_concurrency_gate)]
InferenceClientDep = Annotated[
    RetryingInferenceClient, Depends(get_inference_client)
]
