"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

import uvicorn
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatgate.api.chat import router as chat_router
from chatgate.configs.config import get_app_config
from chatgate.core.service.metrics import instrument_app
from chatgate.core.service.retry import build_inference_client
from chatgate.infra.concurrency import build_concurrency_gate, build_rate_limiter
from chatgate.infra.lifespan import inject
from chatgate.infra.logging import setup_logging
from chatgate.infra.telemetry import init_telemetry

logger = logging.getLogger(__name__)


@inject
async def lifespan(
    app: FastAPI,
    _rate_limiter: Annotated[None, Depends(build_rate_limiter)],
    _gate: Annotated[None, Depends(build_concurrency_gate)],
    _client: Annotated[None, Depends(build_inference_client)],
) -> AsyncGenerator[None, None]:
    """Build the process-wide pipeline components; tear down on shutdown."""
    logger.info("Starting chatgate...")
    yield
    logger.info("Shutting down chatgate...")


def get_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    config = get_app_config()

    app = FastAPI(
        title="chatgate",
        description="Rate-limited streaming gateway to a text-generation backend",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    app.include_router(chat_router)

    instrument_app(app, config)
    init_telemetry(app, config.tracing)

    return app


app = get_app()


def main() -> None:
    """Console entry point: configure logging and serve with uvicorn.

    uvicorn owns SIGINT/SIGTERM handling and drains connections on
    shutdown.
    """
    config = get_app_config()
    setup_logging(config.logging)
    logger.info("Server running on port %d", config.api.port)
    uvicorn.run(app, host=config.api.host, port=config.api.port, log_config=None)


if __name__ == "__main__":
    main()
