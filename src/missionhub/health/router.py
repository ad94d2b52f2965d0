"""Liveness, readiness and version probes."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from missionhub.config import get_settings
from missionhub.database import get_session

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Process is up; touches nothing else."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Database reachability plus the switches that change engine behavior."""
    settings = get_settings()
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as exc:
        database = f"error: {exc}"

    return {
        "status": "ready" if database == "ok" else "degraded",
        "checks": {"database": database},
        "progression_enabled": settings.progression_enabled,
        "notifications": "telegram" if settings.bot_url else "disabled",
    }


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {"version": settings.app_version, "environment": settings.environment}
