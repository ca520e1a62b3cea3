"""Per-query domain objects and service-level exceptions."""

from dataclasses import dataclass, field

from chatgate.infra.concurrency.cancellation import CancelToken
from chatgate.infra.id_utils import REQUEST_ID_PREFIX, generate_id

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class InvalidQuery(ValueError):
    """Query is empty or whitespace-only; rejected before admission."""


class RetriesExhausted(Exception):
    """Every inference attempt failed with a retryable error."""

    def __init__(self, retries: int, last_error: BaseException | None) -> None:
        super().__init__(f"LLM request failed after {retries} retries")
        self.retries = retries
        self.last_error = last_error


def validate_query(query: str) -> str:
    """Return *query* unchanged if it has visible content, else raise."""
    if not query.strip():
        raise InvalidQuery("Invalid query")
    return query


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------


@dataclass
class RequestContext:
    """Per-query context threaded through admission and inference.

    ``cancel_token`` belongs to the connection, so every query on it
    observes a disconnect.  ``deadline`` is the event-loop time at which
    the current inference attempt is abandoned; it is set afresh for
    each attempt.
    """

    connection_id: str
    cancel_token: CancelToken = field(default_factory=CancelToken)
    request_id: str = field(default_factory=lambda: generate_id(REQUEST_ID_PREFIX))
    deadline: float | None = None
