#!/usr/bin/env python3
"""
Zone Sync - FastAPI Backend
Publishes dashboard DNS records to a BIND9 server as zone files
"""

import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from zonesync.api.routes import api_router
from zonesync.core.config import get_settings
from zonesync.core.database import Database
from zonesync.core.error_handlers import setup_error_handlers
from zonesync.core.logging_config import setup_logging
from zonesync.services.record_store import SQLRecordStore
from zonesync.services.remote_executor import SSHExecutor
from zonesync.services.soa_probe import SOAProbe
from zonesync.services.sync_orchestrator import SyncOrchestrator
from zonesync.services.sync_state import SyncStateRepository
from zonesync.services.zone_publisher import ZonePublisher

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[FastAPI], Awaitable[SyncOrchestrator]]


async def build_orchestrator(app: FastAPI) -> SyncOrchestrator:
    """Wire the production services from settings"""
    settings = get_settings()
    record_db = Database(settings.DATABASE_URL)
    state_db = Database(settings.SYNC_STATE_DATABASE_URL)
    app.state.databases = [record_db, state_db]

    executor = SSHExecutor.from_settings(settings)
    probe = SOAProbe.from_settings(settings) if settings.DNS_VERIFY_ENABLED else None
    publisher = ZonePublisher(executor, probe, settings)
    return SyncOrchestrator(
        store=SQLRecordStore(record_db),
        publisher=publisher,
        state=SyncStateRepository(state_db),
        settings=settings,
    )


def create_app(orchestrator_factory: Optional[OrchestratorFactory] = None) -> FastAPI:
    settings = get_settings()
    factory = orchestrator_factory or build_orchestrator

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        logger.info(f"Starting {settings.APP_NAME} {settings.APP_VERSION}...")
        app.state.databases = []
        orchestrator = await factory(app)
        await orchestrator.start()
        app.state.orchestrator = orchestrator
        logger.info(
            f"Publishing zones to {settings.DNS_SERVER_USER}@{settings.DNS_SERVER_HOST}:"
            f"{settings.BIND_ZONES_DIR}"
        )

        yield

        logger.info("Shutting down API server...")
        await orchestrator.shutdown()
        for database in app.state.databases:
            await database.close()
        logger.info("API server stopped")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Publishes DNS records from the dashboard to BIND9 zone files",
        version=settings.APP_VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan
    )

    setup_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials="*" not in settings.ALLOWED_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().DEBUG,
        log_level="info"
    )
