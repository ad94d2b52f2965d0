"""Shared test fixtures.

Tests run against an in-memory SQLite database (aiosqlite) created fresh for
every test. pysqlite's own transaction handling is switched off so SAVEPOINTs
behave the way they do on PostgreSQL.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from missionhub.config import get_settings
from missionhub.database import get_session
from missionhub.db.base import Base
from missionhub.db.models import (
    Achievement,
    Artifact,
    Campaign,
    CampaignStatus,
    Competency,
    CompletionStatus,
    Mission,
    MissionCompletion,
    MissionQuizDetails,
    MissionType,
    Rank,
    User,
    UserAchievement,
    UserCampaign,
)
from missionhub.notifications.sender import NotificationSender
from missionhub.progression.orchestrator import ProgressionOrchestrator

TEST_API_KEY = "test-api-key"


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)

    @event.listens_for(eng.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for setup and assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier() -> MagicMock:
    """Notification sender that records dispatches instead of calling the bot."""
    return MagicMock(spec=NotificationSender)


@pytest.fixture
def orchestrator(notifier: MagicMock) -> ProgressionOrchestrator:
    return ProgressionOrchestrator(notifier=notifier)


class Seeder:
    """Inserts fixture rows through the ORM. Each helper flushes; callers commit."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._tg_id = 1000

    async def _add(self, obj: Any) -> Any:
        self.db.add(obj)
        await self.db.flush()
        return obj

    async def rank(self, title: str, priority: int, unlock_conditions: dict | None = None) -> Rank:
        return await self._add(Rank(title=title, priority=priority, unlock_conditions=unlock_conditions))

    async def user(self, rank: Rank | None = None, tg_id: int | None = None) -> User:
        if tg_id is None:
            self._tg_id += 1
            tg_id = self._tg_id
        return await self._add(User(tg_id=tg_id, username=f"user{tg_id}", rank_id=rank.id if rank else None))

    async def campaign(self, code: str = "123456", **kwargs: Any) -> Campaign:
        kwargs.setdefault("status", CampaignStatus.ACTIVE)
        kwargs.setdefault("title", f"Campaign {code}")
        return await self._add(Campaign(activation_code=code, **kwargs))

    async def join(self, user: User, campaign: Campaign) -> None:
        await self._add(UserCampaign(user_id=user.id, campaign_id=campaign.id))

    async def mission(
        self,
        campaign: Campaign,
        type: str = MissionType.MANUAL_URL,  # noqa: A002
        **kwargs: Any,
    ) -> Mission:
        kwargs.setdefault("title", "Mission")
        return await self._add(Mission(campaign_id=campaign.id, type=type, **kwargs))

    async def quiz(self, mission: Mission, questions: list[dict], pass_threshold: float = 1.0) -> MissionQuizDetails:
        return await self._add(
            MissionQuizDetails(mission_id=mission.id, questions=questions, pass_threshold=pass_threshold)
        )

    async def achievement(
        self,
        campaign: Campaign,
        required: list[Mission] | list[str] | None,
        name: str = "Achievement",
        **kwargs: Any,
    ) -> Achievement:
        conditions = None
        if required is not None:
            ids = [str(m.id) if isinstance(m, Mission) else m for m in required]
            conditions = {"required_missions": ids}
        return await self._add(
            Achievement(campaign_id=campaign.id, name=name, unlock_conditions=conditions, **kwargs)
        )

    async def earn(self, user: User, achievement: Achievement) -> None:
        await self._add(UserAchievement(user_id=user.id, achievement_id=achievement.id))

    async def artifact(self, name: str = "Artifact", deleted: bool = False) -> Artifact:
        deleted_at = datetime.now(timezone.utc) if deleted else None
        return await self._add(Artifact(name=name, deleted_at=deleted_at))

    async def competency(self, name: str = "Teamwork") -> Competency:
        return await self._add(Competency(name=name))

    async def approve(self, user: User, mission: Mission) -> MissionCompletion:
        return await self._add(
            MissionCompletion(user_id=user.id, mission_id=mission.id, status=CompletionStatus.APPROVED)
        )

    async def pending(self, user: User, mission: Mission, url: str = "https://example.com/proof") -> MissionCompletion:
        return await self._add(
            MissionCompletion(
                user_id=user.id,
                mission_id=mission.id,
                status=CompletionStatus.PENDING_REVIEW,
                result_data={"url": url},
            )
        )


@pytest.fixture
def seed(db_session: AsyncSession) -> Seeder:
    return Seeder(db_session)


def rank_conditions(
    campaigns: list[Any] | None = None,
    achievements: list[Any] | None = None,
    operator: str = "OR",
) -> dict[str, Any]:
    """Build a ranks.unlock_conditions document from model instances or raw ids."""

    def _ids(items: list[Any]) -> list[str]:
        return [str(getattr(item, "id", item)) for item in items]

    conditions: dict[str, Any] = {}
    if campaigns is not None:
        conditions["required_campaigns"] = {"ids": _ids(campaigns), "operator": operator}
    if achievements is not None:
        conditions["required_achievements"] = {"ids": _ids(achievements), "operator": operator}
    return conditions


@pytest_asyncio.fixture
async def client(
    monkeypatch: pytest.MonkeyPatch,
    session_factory: async_sessionmaker[AsyncSession],
    orchestrator: ProgressionOrchestrator,
    notifier: MagicMock,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, wired to the test database and notifier."""
    from missionhub.dependencies import get_notifier, get_orchestrator
    from missionhub.main import create_app

    monkeypatch.setenv("MH_API_KEY", TEST_API_KEY)
    monkeypatch.setenv("MH_LOG_FORMAT", "console")
    get_settings.cache_clear()

    app = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"x-api-key": TEST_API_KEY},
    ) as ac:
        yield ac

    get_settings.cache_clear()
