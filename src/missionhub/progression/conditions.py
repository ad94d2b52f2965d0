"""Unlock-condition rules for achievements and ranks.

Everything here is pure: conditions are evaluated against id sets loaded once
per evaluation, so the rules can be exercised without a database.

Condition shapes (stored as JSON):

    achievements.unlock_conditions = {"required_missions": [mission_id, ...]}
    ranks.unlock_conditions = {
        "required_campaigns": {"ids": [...], "operator": "AND" | "OR"},
        "required_achievements": {"ids": [...], "operator": "AND" | "OR"},
    }

Any operator other than "AND" is treated as "OR".
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from missionhub.db.models import Rank

logger = logging.getLogger(__name__)

OPERATOR_AND = "AND"


def parse_uuid(value: Any) -> uuid.UUID | None:
    """Coerce a JSON id (string or UUID) to a UUID, or None if it is not one."""
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, str):
        try:
            return uuid.UUID(value)
        except ValueError:
            return None
    return None


def required_missions(unlock_conditions: Any) -> list[uuid.UUID] | None:
    """Return the required mission ids, or None when missing or malformed.

    An empty list is malformed too: such an achievement is never auto-awarded.
    """
    if not isinstance(unlock_conditions, dict):
        return None
    raw = unlock_conditions.get("required_missions")
    if not isinstance(raw, list) or not raw:
        return None
    mission_ids = [parse_uuid(value) for value in raw]
    if any(mission_id is None for mission_id in mission_ids):
        return None
    return mission_ids  # type: ignore[return-value]


def requires_mission(unlock_conditions: Any, mission_id: uuid.UUID) -> bool:
    """Containment check used to narrow achievement candidates."""
    if not isinstance(unlock_conditions, dict):
        return False
    raw = unlock_conditions.get("required_missions")
    if not isinstance(raw, list):
        return False
    return any(parse_uuid(value) == mission_id for value in raw)


def is_achievement_satisfied(required: Sequence[uuid.UUID], approved_mission_ids: set[uuid.UUID]) -> bool:
    """True iff every required mission has an approved completion.

    Counts distinct approved missions against the list length, so a list with
    duplicate ids can never be satisfied.
    """
    if not required:
        return False
    completed = {mission_id for mission_id in required if mission_id in approved_mission_ids}
    return len(completed) == len(required)


def evaluate_group(group: Any, owned_ids: set[uuid.UUID]) -> bool:
    """Evaluate one ``{"ids": [...], "operator": ...}`` group against owned ids."""
    if not isinstance(group, dict):
        return False
    ids = group.get("ids")
    if not isinstance(ids, list) or not ids:
        return False
    hits = [parse_uuid(value) in owned_ids for value in ids]
    if group.get("operator") == OPERATOR_AND:
        return all(hits)
    return any(hits)


def is_rank_eligible(
    unlock_conditions: Any,
    campaign_ids: set[uuid.UUID],
    achievement_ids: set[uuid.UUID],
) -> bool:
    """Campaign OR achievement condition; empty conditions are never satisfied."""
    if not isinstance(unlock_conditions, dict) or not unlock_conditions:
        return False

    eligible = False
    if unlock_conditions.get("required_campaigns"):
        eligible = evaluate_group(unlock_conditions["required_campaigns"], campaign_ids)

    if not eligible and unlock_conditions.get("required_achievements"):
        eligible = evaluate_group(unlock_conditions["required_achievements"], achievement_ids)

    # required_competencies is stored by the admin panel but has no agreed
    # semantics yet, so it never makes a rank eligible.
    if "required_competencies" in unlock_conditions:
        logger.debug("required_competencies condition is not evaluated")

    return eligible


def select_rank(
    ranks: Sequence[Rank],
    campaign_ids: Iterable[uuid.UUID],
    achievement_ids: Iterable[uuid.UUID],
) -> Rank | None:
    """Pick the highest-priority eligible rank, falling back to the lowest one.

    ``ranks`` must be ordered by priority ascending. Returns None if empty.
    """
    if not ranks:
        return None

    campaigns = set(campaign_ids)
    achievements = set(achievement_ids)

    for rank in reversed(ranks):
        if is_rank_eligible(rank.unlock_conditions, campaigns, achievements):
            return rank

    return ranks[0]
