from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import router
from app.core.config import Settings, get_settings
from app.core.engine import RequestDispatcher
from app.core.environments import EnvironmentStore
from app.core.recorder import BackendRecorder, WorkspaceRecorder
from app.core.storage import JsonFileStore

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings):
    level = getattr(logging, (settings.log_level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """
    transport replaces the network layer of the shared httpx client
    (proxy and backend calls); tests pass an httpx.MockTransport.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http_client = httpx.AsyncClient(timeout=settings.request_timeout_s, transport=transport)
        kv = JsonFileStore(settings.workspace)
        if settings.backend_url:
            recorder = BackendRecorder(http_client, settings.backend_url)
        else:
            recorder = WorkspaceRecorder(kv)
        app.state.settings = settings
        app.state.env_store = EnvironmentStore(kv)
        app.state.recorder = recorder
        app.state.dispatcher = RequestDispatcher(http_client, settings.proxy_url, recorder=recorder)
        logger.info("Courier core ready, proxy=%s workspace=%s", settings.proxy_url, settings.workspace)
        try:
            yield
        finally:
            await app.state.dispatcher.drain()
            await http_client.aclose()

    app = FastAPI(title="Courier Core", lifespan=lifespan)

    # Enable CORS for local development (Frontend on different port)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    @app.get("/")
    def health_check():
        return {"status": "Courier Engine Running"}

    return app


settings = get_settings()
configure_logging(settings)
app = create_app(settings)
