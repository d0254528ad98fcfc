"""
Main FastAPI application.

Serves the expansion scoring and pattern analysis endpoints.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from sqlalchemy import text

from site_engine import __version__
from site_engine.core.config import get_settings
from site_engine.core.database import create_tables, get_engine
from site_engine.api.v1 import expansion

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Runs on startup and shutdown.
    """
    settings = get_settings()
    logger.info("Starting Site Engine")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Model version: {settings.model_version}")

    try:
        create_tables()
        logger.info("Database tables ready")
    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        raise

    yield

    logger.info("Shutting down")


app = FastAPI(
    title="Site Engine",
    description="Site-selection scoring and spatial pattern analysis",
    version=__version__,
    lifespan=lifespan
)

app.include_router(expansion.router, prefix="/api/v1")


@app.get("/")
def root():
    """Root endpoint with service info."""
    return {
        "service": "site-engine",
        "version": __version__,
        "docs": "/docs",
    }


@app.get("/health")
def health_check():
    """
    Health check endpoint.

    Returns status of the service and database connectivity.
    """
    health_status = {
        "status": "healthy",
        "service": "running",
        "database": "unknown",
    }

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["status"] = "degraded"
        health_status["database"] = f"error: {str(e)}"
        logger.warning(f"Database health check failed: {e}")

    return health_status
