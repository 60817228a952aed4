"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, sync
from core.config import settings
from core.database import init_models
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Stock Reconciliation API",
    description="Keeps the stock dataset consistent with the item catalog",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(sync.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    setup_logging()
    logger.info("Starting Stock Reconciliation API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if settings.AUTO_CREATE_TABLES:
        await init_models()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Stock Reconciliation API")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Stock Reconciliation API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "trigger": "/sync/trigger",
            "status": "/sync/status",
            "last": "/sync/last",
            "runs": "/sync/runs",
            "statistics": "/sync/statistics",
            "validate": "/sync/validate",
            "refresh_view": "/sync/refresh-view"
        }
    }
