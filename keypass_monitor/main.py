from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import health, monitoring
from .config import MonitorSettings, get_settings
from .core.monitoring.engine import MonitoringEngine
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware
from .providers.evm import EvmRpcClient
from .providers.substrate import SubstrateRpcClient


def create_app(
    engine: Optional[MonitoringEngine] = None,
    settings: Optional[MonitorSettings] = None,
) -> FastAPI:
    """
    Build the API around an engine.

    When no engine is given one is created for the configured KILT and
    Moonbeam endpoints; it is initialized on startup and closed on shutdown.
    A caller-supplied engine is used as is and left to its owner.
    """
    owns_engine = engine is None
    if engine is None:
        settings = settings or get_settings()
        engine = MonitoringEngine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_engine:
            await engine.initialize(
                SubstrateRpcClient(settings=engine.settings),
                EvmRpcClient(settings=engine.settings),
            )
        try:
            yield
        finally:
            if owns_engine:
                await engine.close()

    app = FastAPI(
        title="KeyPass Monitor API",
        description="Connection and transaction monitoring for KILT and Moonbeam",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(monitoring.router)

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "KeyPass Monitor API",
            "version": __version__,
            "networks": engine.networks,
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    setup_logging(settings)
    uvicorn.run(
        create_app(settings=settings),
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level,
        log_config=None,
    )
