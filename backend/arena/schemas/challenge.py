from __future__ import annotations
from pydantic import BaseModel, Field, ConfigDict, model_validator
from uuid import UUID
from datetime import datetime

from arena.models.challenge import ChallengeType, ChallengeStatus, ScoreDirection, Outcome


class ChallengeCreate(BaseModel):
    type: ChallengeType = ChallengeType.DIRECT
    opponent_id: str | None = None  # direct only
    game_id: int
    leaderboard_id: str = Field(min_length=1, max_length=32)
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    score_direction: ScoreDirection = ScoreDirection.HIGHER
    wager: int
    duration_hours: int
    max_participants: int | None = None  # open only; counts the creator

    @model_validator(mode="after")
    def check_type_fields(self):
        if self.type == ChallengeType.DIRECT and self.max_participants is not None:
            raise ValueError("max_participants applies to open challenges only")
        if self.type == ChallengeType.OPEN and self.opponent_id is not None:
            raise ValueError("open challenges do not name an opponent")
        return self


class ParticipantPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    display_name: str
    joined_at: datetime
    score: float | None = None
    formatted_score: str | None = None
    rank: int | None = None
    wager_paid: bool


class BetPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    bettor_id: str
    display_name: str
    target_id: str
    amount: int
    placed_at: datetime
    paid: bool
    payout: int
    house_contribution: int
    refunded: bool


class ChallengePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: ChallengeType
    status: ChallengeStatus
    creator_id: str
    opponent_id: str | None
    game_id: int
    leaderboard_id: str
    title: str
    description: str
    score_direction: ScoreDirection
    wager: int
    max_participants: int | None
    duration_hours: int
    created_at: datetime
    respond_by: datetime
    started_at: datetime | None
    ends_at: datetime | None
    betting_closes_at: datetime | None
    completed_at: datetime | None
    outcome: Outcome | None
    winner_id: str | None
    house_contribution: int
    # derived
    wager_pool: int
    betting_pool: int
    total_pool: int
    participants: list[ParticipantPublic]
    bets: list[BetPublic]


class BetCreate(BaseModel):
    target_id: str
    amount: int


class BettingSummaryPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_bets: int
    total_amount: int
    by_target: dict[str, int]
    bettors_by_target: dict[str, int]
    odds: dict[str, str]
    betting_open: bool
    closes_at: datetime | None


class WinnerDeclaration(BaseModel):
    winner_id: str
