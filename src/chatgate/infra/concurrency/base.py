"""Concurrency primitives: shared exceptions."""

from __future__ import annotations


class RateLimited(Exception):
    """Raised when the fixed-window rate limiter rejects a query."""


class RequestCancelled(Exception):
    """Raised when an in-flight query is aborted.

    Cancellation is never retried: the query ends at once with either a
    cancellation message (peer still connected) or nothing at all.
    """


class ClientDisconnected(RequestCancelled):
    """Raised when the client connection closed or a write to it failed."""


class DeadlineExceeded(RequestCancelled):
    """Raised when a single inference attempt outlives its deadline."""
