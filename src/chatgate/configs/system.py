import re
from datetime import timedelta
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def _parse_duration(value: Any) -> Any:
    """Read ``"30"``, ``"60s"``, ``"1.5m"`` or ``"500ms"`` as a timedelta.

    Bare numbers are seconds.  Anything else is left to pydantic's own
    timedelta parsing (numbers, ISO 8601).
    """
    if isinstance(value, str):
        match = _DURATION_RE.match(value)
        if match:
            amount, unit = match.groups()
            return timedelta(seconds=float(amount) * _UNIT_SECONDS[unit])
    return value


Duration = Annotated[timedelta, BeforeValidator(_parse_duration)]


class LLMConfig(BaseModel):
    """Backend text-generation service settings."""

    endpoint: str = Field(
        default="http://ollama:11434/v1",
        description="OpenAI-compatible endpoint of the Ollama server",
    )
    api_key: str = Field(
        default="ollama",
        description="API key sent to the endpoint (Ollama ignores it)",
    )
    model_name: str = Field(default="llama3", description="Model to query")


class APIConfig(BaseModel):
    """API configuration settings."""

    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=8080, description="API server port")
    cors_allowed_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Origins allowed by the CORS middleware",
    )
    metrics_enabled: bool = Field(
        default=True, description="Expose Prometheus metrics on /metrics"
    )


class ConcurrencyConfig(BaseModel):
    """Admission control and concurrency ceiling for inference calls."""

    max_requests: int = Field(
        default=10, ge=0, description="Queries admitted per rate-limit window"
    )
    rate_limit_period: Duration = Field(
        default=timedelta(seconds=60), description="Length of the rate-limit window"
    )
    max_concurrency: int = Field(
        default=100,
        ge=1,
        description="Maximum simultaneous inference executions",
    )


class RetryConfig(BaseModel):
    """Retry policy around a single inference call."""

    max_retries: int = Field(
        default=3, ge=0, description="Retries after the first failed attempt"
    )
    initial_backoff: Duration = Field(
        default=timedelta(seconds=2),
        description="Delay before the first retry; doubles on every retry",
    )
    attempt_timeout: Duration = Field(
        default=timedelta(seconds=90),
        description="Deadline of each individual attempt",
    )


class LoggingConfig(BaseModel):
    """Root logger settings."""

    level: str = Field(default="INFO", description="Root log level")
    json_output: bool = Field(
        default=False, description="Emit JSON lines instead of coloured text"
    )


class TracingConfig(BaseModel):
    """OpenTelemetry OTLP export settings."""

    enabled: bool = Field(default=False, description="Enable OTLP span export")
    endpoint: str = Field(default="", description="OTLP HTTP traces endpoint")
    username: str = Field(default="", description="Basic-auth user")
    password: str = Field(default="", description="Basic-auth password")
    service_name: str = Field(default="chatgate", description="service.name")
    sample_rate: float = Field(
        default=1.0, ge=0.0, le=1.0, description="Root span sampling ratio"
    )
    excluded_urls: list[str] = Field(
        default_factory=lambda: ["/health", "/metrics"],
        description="Paths excluded from HTTP instrumentation",
    )
