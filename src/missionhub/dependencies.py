"""Shared FastAPI dependencies."""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from missionhub.config import get_settings
from missionhub.notifications.sender import NotificationSender, get_notification_sender
from missionhub.progression.orchestrator import ProgressionOrchestrator, get_progression_orchestrator

_api_key_header = APIKeyHeader(name="x-api-key", auto_error=False)


async def require_api_key(api_key: str | None = Security(_api_key_header)) -> None:
    """Service-to-service auth: the bot and admin panel share MH_API_KEY."""
    expected = get_settings().api_key
    if not expected:
        raise HTTPException(status_code=503, detail="API key authentication is not configured")
    if not api_key or not hmac.compare_digest(api_key, expected):
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_orchestrator() -> ProgressionOrchestrator:
    return get_progression_orchestrator()


def get_notifier() -> NotificationSender:
    return get_notification_sender()
