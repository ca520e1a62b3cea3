"""Admission and concurrency control for inference calls.

Two independent, process-wide layers:

1. **RateLimiter** (``max_requests`` per ``rate_limit_period``): fixed
   window admission.  Over the limit, a query is rejected immediately
   (``RateLimited``) and never touches the gate.

2. **ConcurrencyGate** (``max_concurrency`` slots): counting semaphore
   around each inference execution.  Admitted queries wait for a slot
   with no timeout; only a fired ``CancelToken`` ends the wait.

Both live on ``app.state`` (built in the lifespan) and are shared by
every WebSocket session.
"""

from .base import (
    ClientDisconnected,
    DeadlineExceeded,
    RateLimited,
    RequestCancelled,
)
from .cancellation import CancelToken
from .gate import ConcurrencyGate, build_concurrency_gate, get_concurrency_gate
from .rate_limiter import RateLimiter, build_rate_limiter, get_rate_limiter

__all__ = [
    "CancelToken",
    "ClientDisconnected",
    "ConcurrencyGate",
    "DeadlineExceeded",
    "RateLimited",
    "RateLimiter",
    "RequestCancelled",
    "build_concurrency_gate",
    "build_rate_limiter",
    "get_concurrency_gate",
    "get_rate_limiter",
]
