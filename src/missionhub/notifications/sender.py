"""
Outbound user notifications with provider abstraction.

Delivery goes through the Telegram bot's HTTP API by default. Every send is
best-effort: failures are logged and never raised to the caller.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from functools import lru_cache

import httpx
import structlog

from missionhub.config import get_settings

logger = structlog.get_logger()


class NotificationSender(ABC):
    """Abstract base class for notification delivery providers."""

    def __init__(self) -> None:
        self._pending: set[asyncio.Task[bool]] = set()

    @abstractmethod
    async def send(self, chat_id: int | str, text: str) -> bool:
        """Deliver a message. Returns True on success, never raises."""
        ...

    def dispatch(self, chat_id: int | str | None, text: str) -> None:
        """Schedule ``send`` without awaiting it (fire-and-forget)."""
        if chat_id is None:
            return
        try:
            task = asyncio.get_running_loop().create_task(self.send(chat_id, text))
        except RuntimeError:
            logger.warning("notification_dispatch_without_loop", chat_id=chat_id)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight sends (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


class TelegramBotSender(NotificationSender):
    """Send messages through the bot service's ``/send-message`` endpoint."""

    def __init__(self, bot_url: str, api_key: str, timeout: float = 10.0) -> None:
        super().__init__()
        self.bot_url = bot_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    async def send(self, chat_id: int | str, text: str) -> bool:
        """POST the message to the bot service."""
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.bot_url}/send-message",
                    headers={
                        "Content-Type": "application/json",
                        "x-api-key": self.api_key,
                    },
                    json={"chat_id": chat_id, "message": text},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                logger.info("telegram_message_sent", chat_id=chat_id)
                return True
        except Exception:
            logger.exception("telegram_message_failed", chat_id=chat_id)
            return False


class NullSender(NotificationSender):
    """Used when the bot is not configured; logs and drops messages."""

    async def send(self, chat_id: int | str, text: str) -> bool:
        logger.error("telegram_not_configured", chat_id=chat_id)
        return False


@lru_cache
def get_notification_sender() -> NotificationSender:
    """Get the configured notification sender (cached)."""
    settings = get_settings()
    if not settings.bot_url or not settings.bot_api_key:
        return NullSender()
    return TelegramBotSender(
        bot_url=settings.bot_url,
        api_key=settings.bot_api_key,
        timeout=settings.notification_timeout_seconds,
    )
