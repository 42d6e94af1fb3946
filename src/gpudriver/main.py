"""The main application factory for the GPU driver controller service."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from importlib.metadata import metadata, version

from fastapi import FastAPI
from safir.fastapi import ClientRequestError, client_request_error_handler
from safir.kubernetes import initialize_kubernetes
from safir.logging import configure_logging, configure_uvicorn_logging

from .dependencies.config import config_dependency
from .dependencies.context import context_dependency
from .handlers import drivers, index

__all__ = ["create_app"]


def create_app() -> FastAPI:
    """Create the FastAPI application.

    This is in a function rather than using a global variable (as is more
    typical for FastAPI) because we want to defer configuration loading until
    after the test suite has a chance to override the path to the
    configuration file.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await initialize_kubernetes()
        config = config_dependency.config
        await context_dependency.initialize(config)

        yield

        await context_dependency.aclose()

    # Configure logging. A missing operator namespace fails here, before
    # the application starts.
    config = config_dependency.config
    configure_logging(
        name="gpudriver",
        profile=config.profile,
        log_level=config.log_level,
    )
    configure_uvicorn_logging(config.log_level)

    # Create the application object.
    app = FastAPI(
        title=config.name,
        description=metadata("gpu-driver-controller")["Summary"],
        version=version("gpu-driver-controller"),
        openapi_url=f"{config.path_prefix}/openapi.json",
        docs_url=f"{config.path_prefix}/docs",
        redoc_url=f"{config.path_prefix}/redoc",
        lifespan=lifespan,
    )

    # Attach the routers.
    app.include_router(index.internal_router)
    app.include_router(index.external_router, prefix=config.path_prefix)
    app.include_router(drivers.router, prefix=config.path_prefix)

    # Configure exception handlers.
    app.exception_handler(ClientRequestError)(client_request_error_handler)

    return app
