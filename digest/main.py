"""
FastAPI application entry point for the daily digest.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from digest.config import get_settings
from digest.api.routes import router as api_router
from digest.pipeline.orchestrator import get_routine

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    settings = get_settings()
    logger.info("Starting daily digest")
    logger.info(f"Data directory: {settings.data_dir}")
    logger.info(f"Notebook: {settings.notebook_url} (headless={settings.notebook_headless})")

    yield

    # Shutdown
    await get_routine().close_open_client()
    logger.info("Shutting down daily digest")


# Create FastAPI app
app = FastAPI(
    title="Daily Digest",
    description="Collects new videos and feed posts and syncs them into a daily notebook",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount API routes
app.include_router(api_router, prefix="/api")


def main():
    """Run the application with uvicorn."""
    import uvicorn
    settings = get_settings()

    uvicorn.run(
        "digest.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
