"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from missionhub.completions.router import router as completions_router
from missionhub.config import get_settings
from missionhub.database import close_db, get_engine, init_db
from missionhub.health.router import router as health_router
from missionhub.middleware import setup_middleware
from missionhub.notifications.sender import get_notification_sender

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.debug,
    )
    logger.info(
        "startup",
        dialect=get_engine().dialect.name,
        progression_enabled=settings.progression_enabled,
        notifications="telegram" if settings.bot_url else "disabled",
    )

    yield

    # Let in-flight notifications finish before the loop goes away
    await get_notification_sender().drain()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="MissionHub API",
        description="Campaigns, missions and the progression engine behind the MissionHub bot",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(completions_router)

    return app


app = create_app()
