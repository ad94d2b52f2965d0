"""Achievement evaluator — decides which achievements a completion unlocks."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from missionhub.db.models import (
    Achievement,
    CompletionStatus,
    Mission,
    MissionCompletion,
    UserAchievement,
)
from missionhub.progression.conditions import is_achievement_satisfied, required_missions, requires_mission

logger = logging.getLogger(__name__)


class AchievementEvaluator:
    """Read-only evaluation of achievement unlock conditions.

    Awarding is the orchestrator's job; nothing here writes.
    """

    async def find_newly_unlocked(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        completed_mission_id: uuid.UUID,
        campaign_id: uuid.UUID | None = None,
    ) -> list[Achievement]:
        """Return achievements fully satisfied now that the mission is approved.

        Only achievements in the mission's campaign that list the mission and
        are not yet earned by the user are considered. Pass ``campaign_id`` when
        the caller already resolved the mission.
        """
        if campaign_id is None:
            campaign_id = await self._mission_campaign(db, completed_mission_id)
        if campaign_id is None:
            logger.warning("Mission %s not found, cannot check achievements", completed_mission_id)
            return []

        candidates = await self._load_candidates(db, user_id, campaign_id, completed_mission_id)
        if not candidates:
            return []

        approved = await self._approved_mission_ids(db, user_id)

        unlocked: list[Achievement] = []
        for achievement in candidates:
            required = required_missions(achievement.unlock_conditions)
            if required is None:
                logger.warning(
                    "Achievement %s has malformed required_missions, skipping",
                    achievement.id,
                )
                continue
            if is_achievement_satisfied(required, approved):
                unlocked.append(achievement)

        return unlocked

    async def _mission_campaign(self, db: AsyncSession, mission_id: uuid.UUID) -> uuid.UUID | None:
        result = await db.execute(select(Mission.campaign_id).where(Mission.id == mission_id))
        return result.scalar_one_or_none()

    async def _load_candidates(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        campaign_id: uuid.UUID,
        mission_id: uuid.UUID,
    ) -> list[Achievement]:
        """Unearned achievements in the campaign whose required missions include this one."""
        result = await db.execute(
            select(Achievement)
            .outerjoin(
                UserAchievement,
                (UserAchievement.achievement_id == Achievement.id) & (UserAchievement.user_id == user_id),
            )
            .where(
                Achievement.campaign_id == campaign_id,
                UserAchievement.user_id.is_(None),
            )
            .order_by(Achievement.id)
        )
        return [a for a in result.scalars() if requires_mission(a.unlock_conditions, mission_id)]

    async def _approved_mission_ids(self, db: AsyncSession, user_id: uuid.UUID) -> set[uuid.UUID]:
        result = await db.execute(
            select(MissionCompletion.mission_id)
            .where(
                MissionCompletion.user_id == user_id,
                MissionCompletion.status == CompletionStatus.APPROVED,
            )
            .distinct()
        )
        return set(result.scalars())
