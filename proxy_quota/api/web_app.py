# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# api/web_app.py
"""
FastAPI app exposing quota analytics
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv, find_dotenv
from fastapi import FastAPI

load_dotenv(find_dotenv())

import proxy_quota.logging_config as logging_config
logging_config.configure_logging()

from proxy_quota.api.analytics import router as analytics_router
from proxy_quota.config import Settings, get_settings
from proxy_quota.infra.store.base import KVStore
from proxy_quota.infra.store.client import close_async_redis_clients
from proxy_quota.infra.store.factory import create_store

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, store: Optional[KVStore] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        app.state.settings = settings
        owns_store = store is None
        app.state.quota_store = store if store is not None else create_store(settings)
        logger.info(f"Quota analytics starting on port {settings.PORT} profile={settings.PROFILE!r}")

        yield

        # Shutdown
        if owns_store:
            await app.state.quota_store.close()
            await close_async_redis_clients()
        logger.info("Quota analytics stopped")

    app = FastAPI(
        title="Proxy Quota Analytics",
        description="Usage, remaining quota and session history of the proxy deployment",
        lifespan=lifespan,
    )
    app.include_router(analytics_router)
    return app


def main():
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.PORT, log_config=None)


if __name__ == "__main__":
    main()
