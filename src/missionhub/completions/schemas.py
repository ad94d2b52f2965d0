"""Pydantic schemas for campaign join and mission completion endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, HttpUrl


# --- Requests ---


class JoinCampaignRequest(BaseModel):
    user_id: uuid.UUID
    activation_code: str = Field(..., pattern=r"^\d{6}$")


class TelegramUser(BaseModel):
    id: int
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class CompleteQrRequest(BaseModel):
    tg_user: TelegramUser
    completion_code: str = Field(..., min_length=1, max_length=64)


class QuizAnswer(BaseModel):
    question_index: int
    answer_index: int


class SubmitQuizRequest(BaseModel):
    user_id: uuid.UUID
    mission_id: uuid.UUID
    answers: list[QuizAnswer]


class SubmitUrlRequest(BaseModel):
    user_id: uuid.UUID
    mission_id: uuid.UUID
    submission_url: HttpUrl


class ReviewCompletionRequest(BaseModel):
    status: Literal["APPROVED", "REJECTED"]
    moderator_comment: str | None = Field(None, max_length=2000)


# --- Responses ---


class AwardedAchievement(BaseModel):
    id: uuid.UUID
    name: str
    experience_reward: int
    mana_reward: int


class CampaignJoinedResponse(BaseModel):
    campaign_id: uuid.UUID
    title: str


class CompletionResponse(BaseModel):
    id: uuid.UUID
    mission_id: uuid.UUID
    user_id: uuid.UUID
    status: str
    moderator_comment: str | None = None
    reviewed_at: datetime | None = None
    achievements: list[AwardedAchievement] = []
    changed: bool = True


class QuizResultResponse(BaseModel):
    passed: bool
    score: float
    total_questions: int
    correct_answers: int
    required_score: float
    experience_reward: int = 0
    mana_reward: int = 0
    achievements: list[AwardedAchievement] = []
