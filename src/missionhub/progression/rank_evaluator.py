"""Rank evaluator — recomputes a user's rank from campaign and achievement membership."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from missionhub.db.models import Rank, User, UserAchievement, UserCampaign
from missionhub.progression.conditions import select_rank

logger = logging.getLogger(__name__)


class RankEvaluator:
    """Selects the highest-priority rank a user qualifies for.

    The result depends only on the user's current joined campaigns and earned
    achievements, never on the order in which they were obtained.
    """

    async def load_ranks(self, db: AsyncSession) -> list[Rank]:
        """Active ranks ordered by priority ascending (ties broken by id)."""
        result = await db.execute(
            select(Rank).where(Rank.deleted_at.is_(None)).order_by(Rank.priority.asc(), Rank.id.asc())
        )
        return list(result.scalars())

    async def default_rank(self, db: AsyncSession) -> Rank | None:
        """The lowest-priority rank, assigned to users before anything is earned."""
        ranks = await self.load_ranks(db)
        return ranks[0] if ranks else None

    async def update_rank(self, db: AsyncSession, user_id: uuid.UUID) -> Rank | None:
        """Recompute the user's rank and persist it if it changed.

        Returns the selected rank, or None when no ranks exist or the user is missing.
        """
        ranks = await self.load_ranks(db)
        if not ranks:
            logger.warning("No ranks configured, skipping rank update for user %s", user_id)
            return None

        current = await db.execute(select(User.rank_id).where(User.id == user_id))
        row = current.first()
        if row is None:
            logger.warning("User %s not found, skipping rank update", user_id)
            return None
        current_rank_id = row[0]

        campaign_ids = await self._joined_campaign_ids(db, user_id)
        achievement_ids = await self._earned_achievement_ids(db, user_id)

        selected = select_rank(ranks, campaign_ids, achievement_ids)
        if selected is None:
            return None

        if current_rank_id != selected.id:
            logger.info("Updating rank for user %s to %r (%s)", user_id, selected.title, selected.id)
            await db.execute(
                update(User)
                .where(User.id == user_id)
                .values(rank_id=selected.id, updated_at=func.now())
                .execution_options(synchronize_session="fetch")
            )

        return selected

    async def _joined_campaign_ids(self, db: AsyncSession, user_id: uuid.UUID) -> set[uuid.UUID]:
        result = await db.execute(select(UserCampaign.campaign_id).where(UserCampaign.user_id == user_id))
        return set(result.scalars())

    async def _earned_achievement_ids(self, db: AsyncSession, user_id: uuid.UUID) -> set[uuid.UUID]:
        result = await db.execute(
            select(UserAchievement.achievement_id).where(UserAchievement.user_id == user_id)
        )
        return set(result.scalars())
