"""Chat endpoints: the streaming WebSocket plus liveness routes."""

import logging

from fastapi import APIRouter, WebSocket
from fastapi.responses import PlainTextResponse

from .deps import ConcurrencyGateDep, InferenceClientDep, RateLimiterDep
from .session import ConnectionSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


@router.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "Hello, World!"


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.websocket("/chat")
async def chat(
    websocket: WebSocket,
    rate_limiter: RateLimiterDep,
    gate: ConcurrencyGateDep,
    client: InferenceClientDep,
) -> None:
    """Stream answers to queries sent over one WebSocket connection.

    Each inbound ``{"query": ...}`` produces zero or more
    ``{"answer": chunk}`` messages followed by exactly one terminal
    ``{"answer": full_text}`` or ``{"error": message}``.  Queries on the
    same connection are answered one at a time, in order.
    """
    await websocket.accept()
    session = ConnectionSession(
        websocket, rate_limiter=rate_limiter, gate=gate, client=client
    )
    client_addr = websocket.client.host if websocket.client else "unknown"
    logger.info("ConnID: %s - Connection from %s", session.connection_id, client_addr)
    await session.run()
