"""Mission completion write paths.

Rules:
- At most one APPROVED completion per (user, mission)
- Quiz and URL missions require campaign membership and, if set, the mission's
  required achievement
- Approval credits the mission's experience/mana, then runs the progression engine
  (achievements, rank, competency points) on the same transaction
- An approved completion cannot be rejected afterwards

Nothing here commits; the router commits and then sends the notifications.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from missionhub.completions.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationFailed
from missionhub.db.models import (
    Achievement,
    Campaign,
    CampaignStatus,
    CompletionStatus,
    Mission,
    MissionCompletion,
    MissionQuizDetails,
    MissionType,
    User,
    UserAchievement,
    UserCampaign,
)
from missionhub.db.upsert import insert_if_absent
from missionhub.notifications import messages
from missionhub.progression.orchestrator import ProgressionOrchestrator
from missionhub.progression.rewards import credit_points

logger = structlog.get_logger()

REVIEW_STATUSES = (CompletionStatus.APPROVED, CompletionStatus.REJECTED)


@dataclass
class CompletionResult:
    """Outcome of a write path plus the notifications to send after commit."""

    completion: MissionCompletion | None = None
    achievements: list[Achievement] = field(default_factory=list)
    notify_chat_id: int | None = None
    notify_text: str | None = None
    achievement_notices: list[tuple[int, str]] = field(default_factory=list)
    changed: bool = True


@dataclass
class QuizResult(CompletionResult):
    passed: bool = False
    score: float = 0.0
    total_questions: int = 0
    correct_answers: int = 0
    required_score: float = 1.0
    experience_reward: int = 0
    mana_reward: int = 0


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# ── Lookups ──


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("USER_NOT_FOUND", "User not found.")
    return user


async def get_active_mission(db: AsyncSession, mission_id: uuid.UUID) -> Mission:
    result = await db.execute(
        select(Mission).where(Mission.id == mission_id, Mission.deleted_at.is_(None))
    )
    mission = result.scalar_one_or_none()
    if mission is None:
        raise NotFoundError("MISSION_NOT_FOUND", "Mission not found.")
    return mission


async def has_approved_completion(db: AsyncSession, user_id: uuid.UUID, mission_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(MissionCompletion.id).where(
            MissionCompletion.user_id == user_id,
            MissionCompletion.mission_id == mission_id,
            MissionCompletion.status == CompletionStatus.APPROVED,
        )
    )
    return result.first() is not None


async def ensure_can_attempt(db: AsyncSession, user_id: uuid.UUID, mission: Mission) -> None:
    """Campaign membership and required-achievement gate."""
    joined = await db.execute(
        select(UserCampaign.user_id).where(
            UserCampaign.user_id == user_id,
            UserCampaign.campaign_id == mission.campaign_id,
        )
    )
    if joined.first() is None:
        raise ForbiddenError(
            "CAMPAIGN_NOT_JOINED",
            "You are not a participant in the campaign for this mission.",
        )

    if mission.required_achievement_id is not None:
        earned = await db.execute(
            select(UserAchievement.user_id).where(
                UserAchievement.user_id == user_id,
                UserAchievement.achievement_id == mission.required_achievement_id,
            )
        )
        if earned.first() is None:
            raise ForbiddenError(
                "ACHIEVEMENT_REQUIRED",
                "This mission requires an achievement you have not earned yet.",
            )


async def _record_approval(
    db: AsyncSession,
    orchestrator: ProgressionOrchestrator,
    user_id: uuid.UUID,
    mission: Mission,
    notices: list[tuple[int, str]],
) -> list[Achievement]:
    """Credit the mission's own rewards and run the progression engine.

    Achievement messages are collected into ``notices`` for sending after commit.
    """
    await credit_points(db, user_id, mission.experience_reward, mission.mana_reward)
    achievements = await orchestrator.on_mission_completed(db, user_id, mission.id, notices=notices)
    await orchestrator.award_competency_points(db, user_id, mission.id)
    return achievements


# ── Campaigns ──


async def join_campaign(
    db: AsyncSession,
    orchestrator: ProgressionOrchestrator,
    user_id: uuid.UUID,
    activation_code: str,
) -> Campaign:
    """Join a campaign by activation code and re-evaluate the user's rank."""
    await get_user(db, user_id)

    result = await db.execute(
        select(Campaign)
        .where(Campaign.activation_code == activation_code.strip(), Campaign.deleted_at.is_(None))
        .with_for_update()
    )
    campaign = result.scalar_one_or_none()
    if campaign is None:
        raise NotFoundError("CAMPAIGN_NOT_FOUND", "Campaign not found or activation code is invalid.")

    if campaign.status != CampaignStatus.ACTIVE:
        raise ValidationFailed("CAMPAIGN_NOT_ACTIVE", "This campaign is not currently active.")

    now = datetime.now(timezone.utc)
    if campaign.start_date and _as_utc(campaign.start_date) > now:
        raise ValidationFailed("CAMPAIGN_NOT_STARTED", "This campaign has not started yet.")
    if campaign.end_date and _as_utc(campaign.end_date) < now:
        raise ValidationFailed("CAMPAIGN_ENDED", "This campaign has already ended.")

    existing = await db.execute(
        select(UserCampaign.user_id).where(
            UserCampaign.user_id == user_id,
            UserCampaign.campaign_id == campaign.id,
        )
    )
    if existing.first() is not None:
        raise ConflictError("ALREADY_JOINED", "You have already joined this campaign.")

    if campaign.max_participants is not None:
        count = await db.execute(
            select(func.count()).select_from(UserCampaign).where(UserCampaign.campaign_id == campaign.id)
        )
        if count.scalar_one() >= campaign.max_participants:
            raise ValidationFailed(
                "CAMPAIGN_FULL",
                "This campaign has reached its maximum number of participants.",
            )

    created = await insert_if_absent(
        db,
        UserCampaign,
        {"user_id": user_id, "campaign_id": campaign.id},
        conflict_columns=["user_id", "campaign_id"],
    )
    if not created:
        raise ConflictError("ALREADY_JOINED", "You have already joined this campaign.")

    logger.info("campaign_joined", user_id=str(user_id), campaign_id=str(campaign.id))
    await orchestrator.refresh_rank(db, user_id)
    return campaign


# ── QR missions ──


async def get_or_create_tg_user(
    db: AsyncSession,
    orchestrator: ProgressionOrchestrator,
    tg_user: dict[str, Any],
) -> User:
    """Find a user by Telegram id, creating them with the default rank if new."""
    result = await db.execute(select(User).where(User.tg_id == tg_user["id"]))
    user = result.scalar_one_or_none()
    if user is not None:
        return user

    default_rank = await orchestrator.ranks.default_rank(db)
    if default_rank is None:
        logger.warning("default_rank_missing", tg_id=tg_user["id"])

    user = User(
        tg_id=tg_user["id"],
        username=tg_user.get("username"),
        first_name=tg_user.get("first_name"),
        last_name=tg_user.get("last_name"),
        rank_id=default_rank.id if default_rank else None,
    )
    db.add(user)
    await db.flush()
    logger.info("user_created", user_id=str(user.id), tg_id=user.tg_id)
    return user


async def complete_qr_mission(
    db: AsyncSession,
    orchestrator: ProgressionOrchestrator,
    tg_user: dict[str, Any],
    completion_code: str,
) -> CompletionResult:
    """Complete a QR_CODE mission by its printed code. Approved immediately."""
    user = await get_or_create_tg_user(db, orchestrator, tg_user)

    code = completion_code.strip().upper()
    result = await db.execute(
        select(Mission).where(
            Mission.completion_code == code,
            Mission.type == MissionType.QR_CODE,
            Mission.deleted_at.is_(None),
        )
    )
    mission = result.scalar_one_or_none()
    if mission is None:
        raise NotFoundError("INVALID_CODE", "Invalid or expired completion code.")

    existing = await db.execute(
        select(MissionCompletion.id).where(
            MissionCompletion.user_id == user.id,
            MissionCompletion.mission_id == mission.id,
        )
    )
    if existing.first() is not None:
        raise ConflictError("ALREADY_COMPLETED", "You have already completed this mission.")

    completion = MissionCompletion(
        user_id=user.id,
        mission_id=mission.id,
        status=CompletionStatus.APPROVED,
        result_data={"completion_code": code},
        reviewed_at=datetime.now(timezone.utc),
    )
    db.add(completion)
    await db.flush()

    notices: list[tuple[int, str]] = []
    achievements = await _record_approval(db, orchestrator, user.id, mission, notices)
    logger.info("qr_mission_completed", user_id=str(user.id), mission_id=str(mission.id))

    return CompletionResult(
        completion=completion,
        achievements=achievements,
        achievement_notices=notices,
        notify_chat_id=user.tg_id,
        notify_text=messages.mission_completed(mission.title),
    )


# ── Quiz missions ──


def score_quiz(questions: list[dict[str, Any]], answers: list[dict[str, int]]) -> int:
    """Count questions answered correctly. Each question counts at most once."""
    correct: set[int] = set()
    for answer in answers:
        q_index = answer["question_index"]
        a_index = answer["answer_index"]
        if not 0 <= q_index < len(questions):
            continue
        options = questions[q_index].get("answers") or []
        if 0 <= a_index < len(options) and options[a_index].get("is_correct"):
            correct.add(q_index)
    return len(correct)


async def submit_quiz(
    db: AsyncSession,
    orchestrator: ProgressionOrchestrator,
    user_id: uuid.UUID,
    mission_id: uuid.UUID,
    answers: list[dict[str, int]],
) -> QuizResult:
    """Grade a quiz attempt. A pass is approved immediately; a fail persists nothing."""
    user = await get_user(db, user_id)
    mission = await get_active_mission(db, mission_id)
    if mission.type != MissionType.QUIZ:
        raise ValidationFailed("INVALID_MISSION_TYPE", "This mission is not a quiz.")

    await ensure_can_attempt(db, user_id, mission)

    if await has_approved_completion(db, user_id, mission_id):
        raise ConflictError("SUBMISSION_EXISTS", "You have already successfully completed this mission.")

    details = await db.get(MissionQuizDetails, mission_id)
    if details is None or not details.questions:
        raise NotFoundError("QUIZ_NOT_CONFIGURED", "This quiz has no questions.")

    questions = details.questions
    if len(answers) != len(questions):
        raise ValidationFailed(
            "VALIDATION_ERROR",
            f"Submission must contain answers for all {len(questions)} questions.",
        )

    correct = score_quiz(questions, answers)
    score = correct / len(questions)
    passed = score >= details.pass_threshold

    outcome = QuizResult(
        passed=passed,
        score=score,
        total_questions=len(questions),
        correct_answers=correct,
        required_score=details.pass_threshold,
        changed=passed,
    )
    if not passed:
        logger.info("quiz_failed", user_id=str(user_id), mission_id=str(mission_id), score=score)
        return outcome

    completion = MissionCompletion(
        user_id=user_id,
        mission_id=mission_id,
        status=CompletionStatus.APPROVED,
        result_data={"score": score, "answers": answers},
        reviewed_at=datetime.now(timezone.utc),
    )
    db.add(completion)
    await db.flush()

    outcome.completion = completion
    outcome.achievements = await _record_approval(db, orchestrator, user_id, mission, outcome.achievement_notices)
    outcome.experience_reward = mission.experience_reward
    outcome.mana_reward = mission.mana_reward
    outcome.notify_chat_id = user.tg_id
    outcome.notify_text = messages.quiz_passed(mission.title)
    logger.info("quiz_passed", user_id=str(user_id), mission_id=str(mission_id), score=score)
    return outcome


# ── Manual URL missions ──


async def submit_url(
    db: AsyncSession,
    user_id: uuid.UUID,
    mission_id: uuid.UUID,
    submission_url: str,
) -> CompletionResult:
    """Queue a URL submission for moderator review."""
    await get_user(db, user_id)
    mission = await get_active_mission(db, mission_id)
    if mission.type != MissionType.MANUAL_URL:
        raise ValidationFailed("INVALID_MISSION_TYPE", "This mission does not accept URL submissions.")

    await ensure_can_attempt(db, user_id, mission)

    latest = await db.execute(
        select(MissionCompletion.status)
        .where(MissionCompletion.user_id == user_id, MissionCompletion.mission_id == mission_id)
        .order_by(MissionCompletion.created_at.desc())
        .limit(1)
    )
    last_status = latest.scalar_one_or_none()
    if last_status in (CompletionStatus.APPROVED, CompletionStatus.PENDING_REVIEW):
        raise ConflictError(
            "SUBMISSION_EXISTS",
            f"You already have an {last_status.lower()} submission for this mission.",
        )

    completion = MissionCompletion(
        user_id=user_id,
        mission_id=mission_id,
        status=CompletionStatus.PENDING_REVIEW,
        result_data={"url": submission_url},
    )
    db.add(completion)
    await db.flush()
    logger.info("url_submitted", user_id=str(user_id), mission_id=str(mission_id))
    return CompletionResult(completion=completion)


# ── Moderation ──


async def review_completion(
    db: AsyncSession,
    orchestrator: ProgressionOrchestrator,
    mission_id: uuid.UUID,
    completion_id: uuid.UUID,
    status: str,
    moderator_comment: str | None = None,
) -> CompletionResult:
    """Approve or reject a pending submission.

    Approving an already approved completion is a no-op (``changed=False``).
    """
    if status not in REVIEW_STATUSES:
        raise ValidationFailed("VALIDATION_ERROR", f"Status must be one of: {', '.join(REVIEW_STATUSES)}")
    comment = (moderator_comment or "").strip()
    if status == CompletionStatus.REJECTED and not comment:
        raise ValidationFailed("VALIDATION_ERROR", "A moderator comment is required when rejecting a submission.")

    result = await db.execute(
        select(MissionCompletion)
        .where(MissionCompletion.id == completion_id, MissionCompletion.mission_id == mission_id)
        .with_for_update()
    )
    completion = result.scalar_one_or_none()
    if completion is None:
        raise NotFoundError("NOT_FOUND", f"Completion {completion_id} for mission {mission_id} not found.")

    if completion.status == CompletionStatus.APPROVED:
        if status == CompletionStatus.APPROVED:
            return CompletionResult(completion=completion, changed=False)
        raise ConflictError("ALREADY_APPROVED", "An approved completion cannot be rejected.")

    mission = await db.get(Mission, mission_id)
    if mission is None:
        raise NotFoundError("NOT_FOUND", f"Mission {mission_id} not found.")
    user = await db.get(User, completion.user_id)

    completion.status = status
    completion.moderator_comment = comment or None
    completion.reviewed_at = datetime.now(timezone.utc)
    await db.flush()

    outcome = CompletionResult(completion=completion, notify_chat_id=user.tg_id if user else None)
    if status == CompletionStatus.APPROVED:
        outcome.achievements = await _record_approval(
            db, orchestrator, completion.user_id, mission, outcome.achievement_notices
        )
        outcome.notify_text = messages.submission_approved(
            mission.title, mission.experience_reward, mission.mana_reward
        )
    else:
        outcome.notify_text = messages.submission_rejected(mission.title, comment)

    logger.info(
        "completion_reviewed",
        completion_id=str(completion_id),
        mission_id=str(mission_id),
        status=status,
    )
    return outcome
