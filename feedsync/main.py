"""
feedsync - Main Application
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .dependencies import close_dependencies, init_dependencies
from .routes import sync_router, webhooks_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting feedsync...")
    await init_dependencies()
    logger.info("Application ready")
    yield
    logger.info("Shutting down...")
    await close_dependencies()


# Create app
app = FastAPI(
    title="feedsync",
    description="Keeps WooCommerce prices, stock and tracked SKUs in step with the KicksDB market feed",
    version="1.0.0",
    lifespan=lifespan
)

# Include routers
app.include_router(webhooks_router)
app.include_router(sync_router)


@app.get("/health")
async def health():
    """Health check endpoint (no auth required)."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "feedsync.main:app",
        host=settings.host,
        port=settings.port,
    )
