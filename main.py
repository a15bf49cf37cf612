"""
Streaming library service — application entry point.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import timedelta

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import get_services
from api.middleware import register_middleware
from config.settings import config
from connectors.encryption import is_encryption_enabled
from connectors.registry import ConnectorRegistry
from connectors.routes import router as services_router
from database.session import init_db
from library.routes import router as library_router

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "sqlalchemy.engine", "aiosqlite", "asyncio"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Streaming Library Service",
        version="1.0.0",
        description="Linked streaming accounts, token lifecycle and normalized library sync.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    # Routes
    app.include_router(services_router, prefix="/api/v1/services")
    app.include_router(library_router, prefix="/api/v1/library")

    @app.on_event("startup")
    async def on_startup():
        logger.info("Discovering provider connectors…")
        registry = ConnectorRegistry()
        registry.discover()
        if not registry.list_configured():
            logger.warning("No streaming provider is configured; connect flows will fail.")

        is_encryption_enabled()
        await init_db()

        loaded = await get_services().sync_engine.warm()

        if config.library_refresh_interval_seconds > 0:
            app.state.refresh_task = asyncio.ensure_future(
                get_services().sync_engine.run_periodic_refresh(
                    timedelta(seconds=config.library_refresh_interval_seconds),
                    timedelta(seconds=config.library_freshness_seconds),
                )
            )
        logger.info("Application ready (%d cached libraries).", loaded)

    @app.on_event("shutdown")
    async def on_shutdown():
        task = getattr(app.state, "refresh_task", None)
        if task is not None:
            task.cancel()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
