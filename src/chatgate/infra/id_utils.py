"""Prefixed ID generation.

IDs use a ``{prefix}_{random}`` format so log lines can be correlated at
a glance:

- ``conn_a8Kx3nQ9mP2r``: one WebSocket connection
- ``req_L7wBd4Fj9Ks2``: one query processed on that connection
"""

import secrets
import string

_ALPHABET = string.ascii_letters + string.digits
_DEFAULT_LENGTH = 12

CONNECTION_ID_PREFIX = "conn"
REQUEST_ID_PREFIX = "req"


def generate_id(prefix: str, length: int = _DEFAULT_LENGTH) -> str:
    """Return ``"{prefix}_{random}"`` with *length* alphanumeric characters."""
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(length))
    return f"{prefix}_{suffix}"
