"""Completion write paths — campaign join, QR, quiz, URL submissions and review."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from missionhub.completions.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationFailed
from missionhub.completions.service import (
    complete_qr_mission,
    join_campaign,
    review_completion,
    submit_quiz,
    submit_url,
)
from missionhub.db.models import (
    CampaignStatus,
    CompletionStatus,
    MissionCompletion,
    MissionType,
    User,
    UserAchievement,
    UserCampaign,
)
from tests.conftest import rank_conditions

QUESTIONS = [
    {"text": "2 + 2?", "answers": [{"text": "3"}, {"text": "4", "is_correct": True}]},
    {"text": "Capital of France?", "answers": [{"text": "Paris", "is_correct": True}, {"text": "Rome"}]},
]


async def _balance(db, user_id):
    result = await db.execute(select(User.experience_points, User.mana_points).where(User.id == user_id))
    return tuple(result.one())


async def _completion_count(db, user_id, mission_id):
    result = await db.execute(
        select(func.count())
        .select_from(MissionCompletion)
        .where(MissionCompletion.user_id == user_id, MissionCompletion.mission_id == mission_id)
    )
    return result.scalar_one()


class TestJoinCampaign:
    @pytest.mark.asyncio
    async def test_join_updates_rank(self, db_session, seed, orchestrator):
        campaign = await seed.campaign(code="123456")
        await seed.rank("Novice", 0)
        member = await seed.rank("Member", 10, rank_conditions(campaigns=[campaign]))
        user = await seed.user()

        joined = await join_campaign(db_session, orchestrator, user.id, "123456")

        assert joined.id == campaign.id
        result = await db_session.execute(select(User.rank_id).where(User.id == user.id))
        assert result.scalar_one() == member.id

    @pytest.mark.asyncio
    async def test_unknown_code(self, db_session, seed, orchestrator):
        user = await seed.user()
        with pytest.raises(NotFoundError) as exc:
            await join_campaign(db_session, orchestrator, user.id, "999999")
        assert exc.value.code == "CAMPAIGN_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session, seed, orchestrator):
        await seed.campaign(code="123456")
        with pytest.raises(NotFoundError):
            await join_campaign(db_session, orchestrator, uuid.uuid4(), "123456")

    @pytest.mark.asyncio
    async def test_inactive_campaign(self, db_session, seed, orchestrator):
        await seed.campaign(code="123456", status=CampaignStatus.DRAFT)
        user = await seed.user()
        with pytest.raises(ValidationFailed) as exc:
            await join_campaign(db_session, orchestrator, user.id, "123456")
        assert exc.value.code == "CAMPAIGN_NOT_ACTIVE"

    @pytest.mark.asyncio
    async def test_not_started_and_ended(self, db_session, seed, orchestrator):
        now = datetime.now(timezone.utc)
        await seed.campaign(code="111111", start_date=now + timedelta(days=1))
        await seed.campaign(code="222222", end_date=now - timedelta(days=1))
        user = await seed.user()

        with pytest.raises(ValidationFailed) as exc:
            await join_campaign(db_session, orchestrator, user.id, "111111")
        assert exc.value.code == "CAMPAIGN_NOT_STARTED"

        with pytest.raises(ValidationFailed) as exc:
            await join_campaign(db_session, orchestrator, user.id, "222222")
        assert exc.value.code == "CAMPAIGN_ENDED"

    @pytest.mark.asyncio
    async def test_already_joined(self, db_session, seed, orchestrator):
        campaign = await seed.campaign(code="123456")
        user = await seed.user()
        await seed.join(user, campaign)
        with pytest.raises(ConflictError) as exc:
            await join_campaign(db_session, orchestrator, user.id, "123456")
        assert exc.value.code == "ALREADY_JOINED"

    @pytest.mark.asyncio
    async def test_campaign_full(self, db_session, seed, orchestrator):
        campaign = await seed.campaign(code="123456", max_participants=1)
        first = await seed.user()
        await seed.join(first, campaign)
        second = await seed.user()

        with pytest.raises(ValidationFailed) as exc:
            await join_campaign(db_session, orchestrator, second.id, "123456")
        assert exc.value.code == "CAMPAIGN_FULL"
        count = await db_session.execute(select(func.count()).select_from(UserCampaign))
        assert count.scalar_one() == 1


class TestCompleteQrMission:
    @pytest_asyncio.fixture
    async def qr(self, seed):
        campaign = await seed.campaign()
        mission = await seed.mission(
            campaign,
            type=MissionType.QR_CODE,
            title="Visit the booth",
            completion_code="BOOTH42",
            experience_reward=20,
            mana_reward=5,
        )
        return campaign, mission

    @pytest.mark.asyncio
    async def test_new_user_completes_with_default_rank(self, db_session, seed, qr, orchestrator):
        _campaign, mission = qr
        novice = await seed.rank("Novice", 0)

        result = await complete_qr_mission(db_session, orchestrator, {"id": 5555, "username": "neo"}, " booth42 ")

        assert result.completion.status == CompletionStatus.APPROVED
        assert result.notify_chat_id == 5555
        assert "Visit the booth" in result.notify_text
        user = (await db_session.execute(select(User).where(User.tg_id == 5555))).scalar_one()
        assert user.rank_id == novice.id
        assert await _balance(db_session, user.id) == (20, 5)

    @pytest.mark.asyncio
    async def test_awards_achievement(self, db_session, seed, qr, orchestrator, notifier):
        campaign, mission = qr
        achievement = await seed.achievement(campaign, [mission], name="Booth Visitor", mana_reward=7)

        result = await complete_qr_mission(db_session, orchestrator, {"id": 5555}, "BOOTH42")

        assert [a.id for a in result.achievements] == [achievement.id]
        assert await _balance(db_session, result.completion.user_id) == (20, 12)
        # achievement message waits for the router to commit
        notifier.dispatch.assert_not_called()
        assert len(result.achievement_notices) == 1
        chat_id, text = result.achievement_notices[0]
        assert chat_id == 5555
        assert "Booth Visitor" in text

    @pytest.mark.asyncio
    async def test_invalid_code(self, db_session, qr, orchestrator):
        with pytest.raises(NotFoundError) as exc:
            await complete_qr_mission(db_session, orchestrator, {"id": 5555}, "NOPE")
        assert exc.value.code == "INVALID_CODE"

    @pytest.mark.asyncio
    async def test_second_scan_is_rejected(self, db_session, qr, orchestrator):
        await complete_qr_mission(db_session, orchestrator, {"id": 5555}, "BOOTH42")
        with pytest.raises(ConflictError) as exc:
            await complete_qr_mission(db_session, orchestrator, {"id": 5555}, "BOOTH42")
        assert exc.value.code == "ALREADY_COMPLETED"


class TestSubmitQuiz:
    @pytest_asyncio.fixture
    async def quiz(self, seed):
        campaign = await seed.campaign()
        mission = await seed.mission(
            campaign, type=MissionType.QUIZ, title="Basics", experience_reward=30, mana_reward=3
        )
        await seed.quiz(mission, QUESTIONS, pass_threshold=1.0)
        user = await seed.user()
        await seed.join(user, campaign)
        return campaign, mission, user

    @staticmethod
    def _answers(*choices: int) -> list[dict[str, int]]:
        return [{"question_index": i, "answer_index": c} for i, c in enumerate(choices)]

    @pytest.mark.asyncio
    async def test_pass_is_approved_and_rewarded(self, db_session, quiz, orchestrator):
        _campaign, mission, user = quiz

        result = await submit_quiz(db_session, orchestrator, user.id, mission.id, self._answers(1, 0))

        assert result.passed is True
        assert result.score == 1.0
        assert result.correct_answers == 2
        assert result.completion.status == CompletionStatus.APPROVED
        assert (result.experience_reward, result.mana_reward) == (30, 3)
        assert await _balance(db_session, user.id) == (30, 3)

    @pytest.mark.asyncio
    async def test_fail_persists_nothing(self, db_session, quiz, orchestrator):
        _campaign, mission, user = quiz

        result = await submit_quiz(db_session, orchestrator, user.id, mission.id, self._answers(1, 1))

        assert result.passed is False
        assert result.score == 0.5
        assert result.changed is False
        assert await _completion_count(db_session, user.id, mission.id) == 0
        assert await _balance(db_session, user.id) == (0, 0)

    @pytest.mark.asyncio
    async def test_cannot_pass_twice(self, db_session, quiz, orchestrator):
        _campaign, mission, user = quiz
        await submit_quiz(db_session, orchestrator, user.id, mission.id, self._answers(1, 0))
        with pytest.raises(ConflictError) as exc:
            await submit_quiz(db_session, orchestrator, user.id, mission.id, self._answers(1, 0))
        assert exc.value.code == "SUBMISSION_EXISTS"

    @pytest.mark.asyncio
    async def test_answer_count_must_match(self, db_session, quiz, orchestrator):
        _campaign, mission, user = quiz
        with pytest.raises(ValidationFailed):
            await submit_quiz(db_session, orchestrator, user.id, mission.id, self._answers(1))

    @pytest.mark.asyncio
    async def test_requires_membership(self, db_session, seed, quiz, orchestrator):
        _campaign, mission, _user = quiz
        outsider = await seed.user()
        with pytest.raises(ForbiddenError) as exc:
            await submit_quiz(db_session, orchestrator, outsider.id, mission.id, self._answers(1, 0))
        assert exc.value.code == "CAMPAIGN_NOT_JOINED"

    @pytest.mark.asyncio
    async def test_requires_prerequisite_achievement(self, db_session, seed, quiz, orchestrator):
        campaign, mission, user = quiz
        gate = await seed.achievement(campaign, None, name="Gate")
        mission.required_achievement_id = gate.id
        await db_session.flush()

        with pytest.raises(ForbiddenError) as exc:
            await submit_quiz(db_session, orchestrator, user.id, mission.id, self._answers(1, 0))
        assert exc.value.code == "ACHIEVEMENT_REQUIRED"

        await seed.earn(user, gate)
        result = await submit_quiz(db_session, orchestrator, user.id, mission.id, self._answers(1, 0))
        assert result.passed is True

    @pytest.mark.asyncio
    async def test_wrong_mission_type(self, db_session, seed, quiz, orchestrator):
        campaign, _mission, user = quiz
        url_mission = await seed.mission(campaign, type=MissionType.MANUAL_URL)
        with pytest.raises(ValidationFailed) as exc:
            await submit_quiz(db_session, orchestrator, user.id, url_mission.id, self._answers(1, 0))
        assert exc.value.code == "INVALID_MISSION_TYPE"


class TestSubmitUrlAndReview:
    @pytest_asyncio.fixture
    async def manual(self, seed):
        campaign = await seed.campaign()
        mission = await seed.mission(
            campaign, type=MissionType.MANUAL_URL, title="Write a post", experience_reward=100, mana_reward=20
        )
        user = await seed.user(tg_id=4242)
        await seed.join(user, campaign)
        return campaign, mission, user

    @pytest.mark.asyncio
    async def test_submission_is_pending(self, db_session, manual):
        _campaign, mission, user = manual
        result = await submit_url(db_session, user.id, mission.id, "https://example.com/post")
        assert result.completion.status == CompletionStatus.PENDING_REVIEW
        assert result.completion.result_data == {"url": "https://example.com/post"}

    @pytest.mark.asyncio
    async def test_pending_submission_blocks_another(self, db_session, manual):
        _campaign, mission, user = manual
        await submit_url(db_session, user.id, mission.id, "https://example.com/1")
        with pytest.raises(ConflictError):
            await submit_url(db_session, user.id, mission.id, "https://example.com/2")

    @pytest.mark.asyncio
    async def test_approve_runs_progression(self, db_session, seed, manual, orchestrator):
        campaign, mission, user = manual
        competency = await seed.competency()
        mission.competency_rewards = [{"competency_id": str(competency.id), "points": 2}]
        achievement = await seed.achievement(campaign, [mission], mana_reward=1)
        pending = await seed.pending(user, mission)

        result = await review_completion(db_session, orchestrator, mission.id, pending.id, "APPROVED")

        assert result.changed is True
        assert result.completion.status == CompletionStatus.APPROVED
        assert result.completion.reviewed_at is not None
        assert [a.id for a in result.achievements] == [achievement.id]
        assert result.notify_chat_id == 4242
        assert "100 experience" in result.notify_text
        assert await _balance(db_session, user.id) == (100, 21)

    @pytest.mark.asyncio
    async def test_approving_twice_is_a_noop(self, db_session, seed, manual, orchestrator):
        _campaign, mission, user = manual
        pending = await seed.pending(user, mission)

        await review_completion(db_session, orchestrator, mission.id, pending.id, "APPROVED")
        again = await review_completion(db_session, orchestrator, mission.id, pending.id, "APPROVED")

        assert again.changed is False
        assert again.notify_text is None
        assert await _balance(db_session, user.id) == (100, 20)

    @pytest.mark.asyncio
    async def test_reject_requires_comment(self, db_session, seed, manual, orchestrator):
        _campaign, mission, user = manual
        pending = await seed.pending(user, mission)
        with pytest.raises(ValidationFailed):
            await review_completion(db_session, orchestrator, mission.id, pending.id, "REJECTED", "  ")

    @pytest.mark.asyncio
    async def test_reject_then_resubmit(self, db_session, seed, manual, orchestrator):
        _campaign, mission, user = manual
        pending = await seed.pending(user, mission)

        result = await review_completion(
            db_session, orchestrator, mission.id, pending.id, "REJECTED", "Link is broken"
        )

        assert result.completion.status == CompletionStatus.REJECTED
        assert result.completion.moderator_comment == "Link is broken"
        assert "Link is broken" in result.notify_text
        assert await _balance(db_session, user.id) == (0, 0)

        again = await submit_url(db_session, user.id, mission.id, "https://example.com/fixed")
        assert again.completion.status == CompletionStatus.PENDING_REVIEW

    @pytest.mark.asyncio
    async def test_approved_cannot_be_rejected(self, db_session, seed, manual, orchestrator):
        _campaign, mission, user = manual
        pending = await seed.pending(user, mission)
        await review_completion(db_session, orchestrator, mission.id, pending.id, "APPROVED")

        with pytest.raises(ConflictError) as exc:
            await review_completion(db_session, orchestrator, mission.id, pending.id, "REJECTED", "Oops")
        assert exc.value.code == "ALREADY_APPROVED"

    @pytest.mark.asyncio
    async def test_completion_must_belong_to_mission(self, db_session, seed, manual, orchestrator):
        campaign, mission, user = manual
        other = await seed.mission(campaign, title="Other")
        pending = await seed.pending(user, mission)
        with pytest.raises(NotFoundError):
            await review_completion(db_session, orchestrator, other.id, pending.id, "APPROVED")

    @pytest.mark.asyncio
    async def test_rank_and_achievement_after_approval(self, db_session, seed, manual, orchestrator):
        campaign, mission, user = manual
        achievement = await seed.achievement(campaign, [mission])
        await seed.rank("Novice", 0)
        writer = await seed.rank("Writer", 10, rank_conditions(achievements=[achievement]))
        pending = await seed.pending(user, mission)

        await review_completion(db_session, orchestrator, mission.id, pending.id, "APPROVED")

        earned = await db_session.execute(
            select(UserAchievement.achievement_id).where(UserAchievement.user_id == user.id)
        )
        assert set(earned.scalars()) == {achievement.id}
        rank = await db_session.execute(select(User.rank_id).where(User.id == user.id))
        assert rank.scalar_one() == writer.id
