"""Prometheus metrics for the gateway.

Business metrics that complement the auto-instrumented HTTP metrics
provided by ``prometheus-fastapi-instrumentator``.

All metrics use the ``chatgate_`` prefix.
"""

import logging

from fastapi import FastAPI
from prometheus_client import Counter, Gauge, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

from chatgate.configs.config import AppConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Session metrics
# ---------------------------------------------------------------------------

SESSIONS_ACTIVE = Gauge(
    "chatgate_sessions_active",
    "Number of WebSocket sessions currently open",
)

QUERY_OUTCOMES_TOTAL = Counter(
    "chatgate_query_outcomes_total",
    "Terminal outcome of every query received",
    ["code"],  # ok | invalid_format | invalid_query | rate_limited | cancelled | exhausted
)

QUERY_DURATION_SECONDS = Histogram(
    "chatgate_query_duration_seconds",
    "Time from admission to terminal message for one query",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)

STREAM_CHUNKS_TOTAL = Counter(
    "chatgate_stream_chunks_total",
    "Partial-answer chunks relayed to clients",
)

# ---------------------------------------------------------------------------
# Admission metrics
# ---------------------------------------------------------------------------

RATE_LIMIT_REJECTIONS_TOTAL = Counter(
    "chatgate_rate_limit_rejections_total",
    "Queries rejected by the fixed-window rate limiter",
)

GATE_ACQUIRES_TOTAL = Counter(
    "chatgate_gate_acquires_total",
    "Concurrency gate acquire attempts",
    ["result"],  # ok | cancelled
)

GATE_WAIT_SECONDS = Histogram(
    "chatgate_gate_wait_seconds",
    "Time spent waiting for a concurrency slot",
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30, 60),
)

GATE_SLOTS_IN_USE = Gauge(
    "chatgate_gate_slots_in_use",
    "Concurrency slots currently held",
)

# ---------------------------------------------------------------------------
# Inference metrics
# ---------------------------------------------------------------------------

INFERENCE_CALLS_IN_FLIGHT = Gauge(
    "chatgate_inference_calls_in_flight",
    "Backend inference calls currently streaming",
)

INFERENCE_ATTEMPTS_TOTAL = Counter(
    "chatgate_inference_attempts_total",
    "Backend inference attempts by result",
    ["result"],  # ok | error | cancelled | deadline
)


def instrument_app(app: FastAPI, config: AppConfig) -> None:
    """Attach HTTP instrumentation and the ``/metrics`` endpoint to *app*.

    Must run before the application starts serving; Starlette refuses new
    middleware once the stack is built.
    """
    if not config.api.metrics_enabled:
        logger.info("Prometheus metrics disabled")
        return

    Instrumentator(
        should_instrument_requests_inprogress=True,
        excluded_handlers=config.tracing.excluded_urls,
    ).instrument(app).expose(app, endpoint="/metrics")
    logger.info("Prometheus metrics initialised")
