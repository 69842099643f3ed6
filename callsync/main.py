"""Callsync FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from callsync.api.health import router as health_router
from callsync.api.tenants import router as tenants_router
from callsync.config import settings
from callsync.database import async_session_maker
from callsync.engine.orchestrator import SyncOrchestrator
from callsync.engine.paginator import BatchPaginator
from callsync.engine.webhooks import WebhookDispatcher
from callsync.provider.client import ProviderClient
from callsync.storage.repositories import SqlTenantStateStore
from callsync.tasks.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the sync engine and run the periodic sweep for the app's lifetime."""
    provider = ProviderClient()
    dispatcher = WebhookDispatcher()
    app.state.orchestrator = SyncOrchestrator(
        store=SqlTenantStateStore(async_session_maker),
        paginator=BatchPaginator(provider),
        dispatcher=dispatcher,
    )
    app.state.scheduler = start_scheduler(app.state.orchestrator, settings.sync_interval_seconds)
    try:
        yield
    finally:
        await stop_scheduler(app.state.scheduler)
        await provider.aclose()
        await dispatcher.aclose()


app = FastAPI(
    title="Callsync - Call Usage Sync Service",
    description="Syncs provider call history per tenant, reconciles billing-cycle usage and pushes usage webhooks",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, tags=["Health"])
app.include_router(tenants_router, prefix="/v1", tags=["Sync"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"service": "Callsync", "version": "0.1.0", "docs": "/docs"}
