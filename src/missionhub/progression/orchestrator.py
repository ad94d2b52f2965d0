"""Progression orchestrator — runs the rule engine after an approved completion.

Every entry point runs on the caller's session inside a SAVEPOINT and never
raises: a failure rolls back only the progression effects and is logged, so the
completion that triggered it still commits. Committing is always the caller's job.
"""

from __future__ import annotations

import logging
import uuid
from functools import lru_cache

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from missionhub.config import get_settings
from missionhub.db.models import Achievement, CompetencyAward, Mission, User, UserAchievement
from missionhub.db.upsert import insert_if_absent
from missionhub.notifications import messages
from missionhub.notifications.sender import NotificationSender, get_notification_sender
from missionhub.progression.achievement_evaluator import AchievementEvaluator
from missionhub.progression.competency_ledger import CompetencyLedger
from missionhub.progression.rank_evaluator import RankEvaluator
from missionhub.progression.rewards import credit_points, grant_artifact

logger = logging.getLogger(__name__)

Notice = tuple[int, str]


class ProgressionOrchestrator:
    """Sequences achievement evaluation, reward application, rank and competency updates."""

    def __init__(
        self,
        notifier: NotificationSender,
        achievements: AchievementEvaluator | None = None,
        ranks: RankEvaluator | None = None,
        competencies: CompetencyLedger | None = None,
        enabled: bool = True,
    ) -> None:
        self.notifier = notifier
        self.achievements = achievements or AchievementEvaluator()
        self.ranks = ranks or RankEvaluator()
        self.competencies = competencies or CompetencyLedger()
        self.enabled = enabled

    async def on_mission_completed(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        mission_id: uuid.UUID,
        notices: list[Notice] | None = None,
    ) -> list[Achievement]:
        """Award every achievement the approved completion unlocks.

        Returns the achievements actually awarded by this call (empty on failure).
        When ``notices`` is given the achievement messages are appended to it for
        the caller to send after its commit; otherwise they are dispatched here.
        """
        if not self.enabled:
            return []

        pending: list[Notice] = []
        try:
            async with db.begin_nested():
                awarded = await self._award_achievements(db, user_id, mission_id, pending)
        except Exception:
            logger.exception(
                "Error while checking/awarding achievements for user %s and mission %s",
                user_id,
                mission_id,
            )
            return []

        if notices is not None:
            notices.extend(pending)
        else:
            for chat_id, text in pending:
                self.notifier.dispatch(chat_id, text)
        return awarded

    async def award_competency_points(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        mission_id: uuid.UUID,
    ) -> int:
        """Apply the mission's competency rewards once per (user, mission).

        Returns the number of items applied; 0 when they were already applied.
        """
        if not self.enabled:
            return 0

        try:
            async with db.begin_nested():
                result = await db.execute(select(Mission.competency_rewards).where(Mission.id == mission_id))
                row = result.first()
                if row is None:
                    logger.warning("Mission %s not found, cannot award competency points", mission_id)
                    return 0
                if not row[0]:
                    return 0

                claimed = await insert_if_absent(
                    db,
                    CompetencyAward,
                    {"user_id": user_id, "mission_id": mission_id},
                    conflict_columns=["user_id", "mission_id"],
                )
                if not claimed:
                    logger.info("Competency points for mission %s already awarded to user %s", mission_id, user_id)
                    return 0
                return await self.competencies.apply_rewards(db, user_id, row[0])
        except Exception:
            logger.exception(
                "Error while awarding competency points for user %s and mission %s",
                user_id,
                mission_id,
            )
            return 0

    async def refresh_rank(self, db: AsyncSession, user_id: uuid.UUID) -> None:
        """Re-evaluate the rank after a membership change (e.g. joining a campaign)."""
        if not self.enabled:
            return

        try:
            async with db.begin_nested():
                await self.ranks.update_rank(db, user_id)
        except Exception:
            logger.exception("Error updating rank for user %s", user_id)

    async def _award_achievements(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        mission_id: uuid.UUID,
        notices: list[Notice],
    ) -> list[Achievement]:
        result = await db.execute(select(Mission.campaign_id).where(Mission.id == mission_id))
        campaign_id = result.scalar_one_or_none()
        if campaign_id is None:
            logger.warning("Mission %s not found, cannot check achievements", mission_id)
            return []

        unlocked = await self.achievements.find_newly_unlocked(db, user_id, mission_id, campaign_id=campaign_id)

        awarded: list[Achievement] = []
        for achievement in unlocked:
            created = await insert_if_absent(
                db,
                UserAchievement,
                {"user_id": user_id, "achievement_id": achievement.id},
                conflict_columns=["user_id", "achievement_id"],
            )
            if not created:
                continue

            logger.info("Awarding achievement %r (%s) to user %s", achievement.name, achievement.id, user_id)
            awarded.append(achievement)
            await credit_points(db, user_id, achievement.experience_reward, achievement.mana_reward)
            if achievement.awarded_artifact_id:
                await grant_artifact(db, user_id, achievement.awarded_artifact_id)

            notice = await self._achievement_notice(db, user_id, achievement)
            if notice is not None:
                notices.append(notice)

        if awarded:
            await self.ranks.update_rank(db, user_id)

        return awarded

    async def _achievement_notice(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        achievement: Achievement,
    ) -> Notice | None:
        result = await db.execute(select(User.tg_id).where(User.id == user_id))
        tg_id = result.scalar_one_or_none()
        if tg_id is None:
            return None
        return tg_id, messages.achievement_earned(achievement.name, achievement.mana_reward)


@lru_cache
def get_progression_orchestrator() -> ProgressionOrchestrator:
    """Get the process-wide orchestrator wired to the configured notifier."""
    settings = get_settings()
    return ProgressionOrchestrator(
        notifier=get_notification_sender(),
        enabled=settings.progression_enabled,
    )
