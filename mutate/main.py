"""Mutate transformation service — FastAPI application entry point.

Initializes the Redis connection on startup and registers API routers.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from mutate.core import redis_client
from mutate.api import configurations, health, transforms

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize service connections on startup, close on shutdown."""
    logger.info("Starting Mutate backend...")

    try:
        redis_client.init_redis_client()
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")

    logger.info("Mutate backend ready")
    yield

    logger.info("Shutting down Mutate backend...")
    redis_client.close_redis_client()
    logger.info("Mutate backend stopped")


app = FastAPI(
    title="Mutate Transformation Service",
    version="0.1.0",
    description="Declarative spreadsheet-to-CSV transformation pipelines "
                "with synchronous and queued execution.",
    lifespan=lifespan,
)

app.include_router(health.router, prefix="/api", tags=["health"])
app.include_router(configurations.router, prefix="/api", tags=["configurations"])
app.include_router(transforms.router, prefix="/api", tags=["transforms"])


if __name__ == "__main__":
    import uvicorn

    from mutate.core.config import settings

    uvicorn.run("mutate.main:app", host=settings.backend_host, port=settings.backend_port)
