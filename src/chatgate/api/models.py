"""Pydantic models for the WebSocket chat protocol.

Inbound::

    {"query": "Hello"}

Outbound, zero or more partial chunks followed by one terminal message::

    {"answer": "He"}
    {"answer": "llo"}
    {"answer": "Hello"}        # or {"error": "..."}
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

INVALID_FORMAT_MESSAGE = "Invalid message format"


class ChatRequest(BaseModel):
    """Inbound query message."""

    query: str = Field(default="", description="User query to process")

    @field_validator("query", mode="before")
    @classmethod
    def null_query_is_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class ChatResponse(BaseModel):
    """Outbound message: a partial or full answer, or an error."""

    answer: str | None = Field(default=None, description="Answer text or chunk")
    error: str | None = Field(default=None, description="Error message")

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict without the absent field."""
        return self.model_dump(exclude_none=True)
