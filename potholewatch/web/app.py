"""FastAPI application factory."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from potholewatch.pipeline import PotholeService
from potholewatch.web.proxy import create_proxy_router
from potholewatch.web.routes import create_router
from potholewatch.web.websocket import create_ws_router

logger = logging.getLogger(__name__)


def create_app(service: PotholeService) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Store callbacks from worker threads are bridged onto this loop
        service.set_event_loop(asyncio.get_running_loop())
        if service.config.live.enabled:
            service.start_live()
        yield
        if service.live.streaming:
            await service.stop_live()
        logger.info("Application shutdown")

    app = FastAPI(title="Pothole Watch", version="0.1.0", lifespan=lifespan)
    app.state.service = service

    # Routes
    app.include_router(create_proxy_router(service.config.backends))
    app.include_router(create_router(service))
    app.include_router(create_ws_router(service))

    return app
