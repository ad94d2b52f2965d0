"""Point and artifact crediting shared by missions and achievements."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from missionhub.db.models import Artifact, User, UserArtifact
from missionhub.db.upsert import insert_if_absent

logger = logging.getLogger(__name__)


async def credit_points(db: AsyncSession, user_id: uuid.UUID, experience: int, mana: int) -> None:
    """Add experience and mana to the user's running totals in one UPDATE."""
    if experience <= 0 and mana <= 0:
        return
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            experience_points=User.experience_points + max(experience, 0),
            mana_points=User.mana_points + max(mana, 0),
            updated_at=func.now(),
        )
        .execution_options(synchronize_session="fetch")
    )


async def grant_artifact(db: AsyncSession, user_id: uuid.UUID, artifact_id: uuid.UUID) -> bool:
    """Give the user an artifact once. Returns True if newly granted.

    Missing or soft-deleted artifacts are skipped.
    """
    result = await db.execute(select(Artifact.deleted_at).where(Artifact.id == artifact_id))
    row = result.first()
    if row is None:
        logger.warning("Artifact %s not found, not granting to user %s", artifact_id, user_id)
        return False
    if row[0] is not None:
        logger.warning("Artifact %s is deleted, not granting to user %s", artifact_id, user_id)
        return False

    return await insert_if_absent(
        db,
        UserArtifact,
        {"user_id": user_id, "artifact_id": artifact_id},
        conflict_columns=["user_id", "artifact_id"],
    )
