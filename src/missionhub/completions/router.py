"""Campaign join and mission completion endpoints — 5 routes.

Every route commits the request transaction itself and only then dispatches the
user notifications (the completion message and any achievement messages), so
messages are never sent for work that was rolled back.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from missionhub.completions.exceptions import CompletionError
from missionhub.completions.schemas import (
    AwardedAchievement,
    CampaignJoinedResponse,
    CompleteQrRequest,
    CompletionResponse,
    JoinCampaignRequest,
    QuizResultResponse,
    ReviewCompletionRequest,
    SubmitQuizRequest,
    SubmitUrlRequest,
)
from missionhub.completions.service import (
    CompletionResult,
    complete_qr_mission,
    join_campaign,
    review_completion,
    submit_quiz,
    submit_url,
)
from missionhub.database import get_session
from missionhub.db.models import Achievement
from missionhub.dependencies import get_notifier, get_orchestrator, require_api_key
from missionhub.notifications.sender import NotificationSender
from missionhub.progression.orchestrator import ProgressionOrchestrator

router = APIRouter(prefix="/api/v1", tags=["Completions"], dependencies=[Depends(require_api_key)])


# ── Helpers ──


def _raise_http(exc: CompletionError) -> None:
    raise HTTPException(
        status_code=exc.status_code,
        detail={"code": exc.code, "message": exc.message},
    ) from exc


def _achievements(items: list[Achievement]) -> list[AwardedAchievement]:
    return [
        AwardedAchievement(
            id=a.id,
            name=a.name,
            experience_reward=a.experience_reward,
            mana_reward=a.mana_reward,
        )
        for a in items
    ]


def _completion_response(result: CompletionResult) -> CompletionResponse:
    completion = result.completion
    return CompletionResponse(
        id=completion.id,
        mission_id=completion.mission_id,
        user_id=completion.user_id,
        status=completion.status,
        moderator_comment=completion.moderator_comment,
        reviewed_at=completion.reviewed_at,
        achievements=_achievements(result.achievements),
        changed=result.changed,
    )


async def _commit_and_notify(db: AsyncSession, notifier: NotificationSender, result: CompletionResult) -> None:
    await db.commit()
    if result.notify_text:
        notifier.dispatch(result.notify_chat_id, result.notify_text)
    for chat_id, text in result.achievement_notices:
        notifier.dispatch(chat_id, text)


# ── Endpoints ──


@router.post("/campaigns/join", response_model=CampaignJoinedResponse, status_code=201)
async def join_campaign_endpoint(
    body: JoinCampaignRequest,
    db: AsyncSession = Depends(get_session),
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator),
) -> CampaignJoinedResponse:
    """Join a campaign by its 6-digit activation code."""
    try:
        campaign = await join_campaign(db, orchestrator, body.user_id, body.activation_code)
    except CompletionError as e:
        await db.rollback()
        _raise_http(e)
    await db.commit()
    return CampaignJoinedResponse(campaign_id=campaign.id, title=campaign.title)


@router.post("/completions/qr", response_model=CompletionResponse, status_code=201)
async def complete_qr_endpoint(
    body: CompleteQrRequest,
    db: AsyncSession = Depends(get_session),
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator),
    notifier: NotificationSender = Depends(get_notifier),
) -> CompletionResponse:
    """Complete a QR mission on behalf of a Telegram user (called by the bot)."""
    try:
        result = await complete_qr_mission(db, orchestrator, body.tg_user.model_dump(), body.completion_code)
    except CompletionError as e:
        await db.rollback()
        _raise_http(e)
    await _commit_and_notify(db, notifier, result)
    return _completion_response(result)


@router.post("/completions/quiz", response_model=QuizResultResponse)
async def submit_quiz_endpoint(
    body: SubmitQuizRequest,
    db: AsyncSession = Depends(get_session),
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator),
    notifier: NotificationSender = Depends(get_notifier),
) -> QuizResultResponse:
    """Grade a quiz attempt; a pass is recorded and rewarded immediately."""
    answers = [a.model_dump() for a in body.answers]
    try:
        result = await submit_quiz(db, orchestrator, body.user_id, body.mission_id, answers)
    except CompletionError as e:
        await db.rollback()
        _raise_http(e)

    if result.passed:
        await _commit_and_notify(db, notifier, result)
    else:
        await db.rollback()

    return QuizResultResponse(
        passed=result.passed,
        score=result.score,
        total_questions=result.total_questions,
        correct_answers=result.correct_answers,
        required_score=result.required_score,
        experience_reward=result.experience_reward,
        mana_reward=result.mana_reward,
        achievements=_achievements(result.achievements),
    )


@router.post("/completions/url", response_model=CompletionResponse, status_code=202)
async def submit_url_endpoint(
    body: SubmitUrlRequest,
    db: AsyncSession = Depends(get_session),
) -> CompletionResponse:
    """Submit a URL for moderator review."""
    try:
        result = await submit_url(db, body.user_id, body.mission_id, str(body.submission_url))
    except CompletionError as e:
        await db.rollback()
        _raise_http(e)
    await db.commit()
    return _completion_response(result)


@router.patch("/missions/{mission_id}/completions/{completion_id}", response_model=CompletionResponse)
async def review_completion_endpoint(
    mission_id: uuid.UUID,
    completion_id: uuid.UUID,
    body: ReviewCompletionRequest,
    db: AsyncSession = Depends(get_session),
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator),
    notifier: NotificationSender = Depends(get_notifier),
) -> CompletionResponse:
    """Approve or reject a pending submission (moderator action)."""
    try:
        result = await review_completion(
            db, orchestrator, mission_id, completion_id, body.status, body.moderator_comment
        )
    except CompletionError as e:
        await db.rollback()
        _raise_http(e)

    if result.changed:
        await _commit_and_notify(db, notifier, result)
    return _completion_response(result)
