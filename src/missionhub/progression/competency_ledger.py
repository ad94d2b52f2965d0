"""Competency ledger — cumulative per-competency progress points."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from missionhub.db.models import Competency, UserCompetency
from missionhub.db.upsert import increment_or_create
from missionhub.progression.conditions import parse_uuid

logger = logging.getLogger(__name__)


def _parse_reward(item: Any) -> tuple[uuid.UUID, int] | None:
    """Return (competency_id, points) for a well-formed reward item."""
    if not isinstance(item, dict):
        return None
    competency_id = parse_uuid(item.get("competency_id"))
    points = item.get("points")
    if competency_id is None or isinstance(points, bool) or not isinstance(points, (int, float)):
        return None
    if points <= 0 or points != int(points):
        return None
    return competency_id, int(points)


class CompetencyLedger:
    """Applies competency point rewards. Points only ever grow; levels are not computed here."""

    async def apply_rewards(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        competency_rewards: Any,
    ) -> int:
        """Upsert each valid reward into user_competencies. Returns the number applied.

        Items naming a competency that does not exist are skipped with a warning.
        """
        if not isinstance(competency_rewards, list):
            if competency_rewards:
                logger.warning("competency_rewards is not a list, ignoring: %r", competency_rewards)
            return 0

        rewards: list[tuple[uuid.UUID, int]] = []
        for item in competency_rewards:
            reward = _parse_reward(item)
            if reward is None:
                logger.warning("Skipping invalid competency reward item for user %s: %r", user_id, item)
                continue
            rewards.append(reward)
        if not rewards:
            return 0

        known = await self._existing_competencies(db, {competency_id for competency_id, _ in rewards})

        applied = 0
        for competency_id, points in rewards:
            if competency_id not in known:
                logger.warning("Skipping reward for unknown competency %s (user %s)", competency_id, user_id)
                continue
            await increment_or_create(
                db,
                UserCompetency,
                {"user_id": user_id, "competency_id": competency_id, "progress_points": points},
                conflict_columns=["user_id", "competency_id"],
                counter="progress_points",
            )
            logger.info("Awarded %d points for competency %s to user %s", points, competency_id, user_id)
            applied += 1

        return applied

    async def _existing_competencies(self, db: AsyncSession, ids: set[uuid.UUID]) -> set[uuid.UUID]:
        result = await db.execute(select(Competency.id).where(Competency.id.in_(ids)))
        return set(result.scalars())
