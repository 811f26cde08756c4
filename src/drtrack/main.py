"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from drtrack.config import get_settings
from drtrack.database import close_db, init_db
from drtrack.dependencies import reset_singletons
from drtrack.domains.router import router as domains_router
from drtrack.health.router import router as health_router
from drtrack.middleware import setup_middleware
from drtrack.notifications.router import router as notifications_router
from drtrack.redis_client import close_redis, init_redis


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings)
    await init_redis(settings)

    yield

    reset_singletons()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="DR Tracker API",
        description="Domain Rating tracking: refreshes, quotas and notification preferences",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(domains_router)
    app.include_router(notifications_router)

    return app


app = create_app()
