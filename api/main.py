"""
FastAPI application initialization
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from api.routes import health, sync
from core.config import settings
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware
from catalog_sync.runtime import SyncRuntime

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the runtime on startup, close it on shutdown"""
    logger.info("Starting Catalog Sync API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    # The API only enqueues; provider clients live in the worker
    runtime = SyncRuntime(settings, providers=[])
    await runtime.start()
    app.state.runtime = runtime
    try:
        yield
    finally:
        logger.info("Shutting down Catalog Sync API")
        await runtime.close()


# Create FastAPI app
app = FastAPI(
    title="Catalog Sync API",
    description="Trigger and monitor eSIM catalog syncs",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(sync.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Catalog Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "sync": "/sync",
        }
    }
