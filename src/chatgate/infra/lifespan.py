"""Dependency-injected lifespan.

The application lifespan declares the process-wide pipeline components
(rate limiter, concurrency gate, inference client) as ``Depends()``
parameters.  ``inject`` resolves them once at startup with FastAPI's own
resolver: ``app.dependency_overrides`` applies, and the teardown half of
every ``build_*`` generator runs on shutdown in reverse order.
"""

from contextlib import AsyncExitStack, asynccontextmanager
from functools import partial
from typing import Any, Callable

from fastapi import FastAPI, Request
from fastapi.dependencies.utils import get_dependant, solve_dependencies
from fastapi.requests import HTTPConnection


def get_app(connection: HTTPConnection) -> FastAPI:
    """The application serving *connection*, or being started."""
    return connection.app


def _startup_scope(app: FastAPI, stack: AsyncExitStack) -> dict[str, Any]:
    """ASGI scope the startup dependencies are resolved against.

    The ``build_*`` dependencies only read ``app`` from it.  FastAPI
    registers generator teardowns on the ``fastapi_*astack`` entries, so
    all of them point at the lifespan's own exit stack.
    """
    return {
        "type": "http",
        "method": "GET",
        "path": "/",
        "query_string": b"",
        "headers": [],
        "app": app,
        "fastapi_astack": stack,
        "fastapi_inner_astack": stack,
        "fastapi_function_astack": stack,
    }


def inject(lifespan: Callable[..., Any]) -> Callable[[FastAPI], Any]:
    """Turn a dependency-declaring async generator into a lifespan.

    Usage::

        @inject
        async def lifespan(
            app: FastAPI,
            _gate: Annotated[None, Depends(build_concurrency_gate)],
        ):
            yield
    """

    @asynccontextmanager
    async def wrapper(app: FastAPI):  # type: ignore[misc]
        dependant = get_dependant(path="/", call=partial(lifespan, app))
        async with AsyncExitStack() as stack:
            solved = await solve_dependencies(
                request=Request(_startup_scope(app, stack)),
                dependant=dependant,
                async_exit_stack=stack,
                embed_body_fields=False,
                dependency_overrides_provider=app,
            )
            if solved.errors:
                raise RuntimeError(
                    f"Could not resolve lifespan dependencies: {solved.errors}"
                )
            async with asynccontextmanager(lifespan)(app, **solved.values):
                yield

    return wrapper
