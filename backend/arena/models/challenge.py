from __future__ import annotations
import enum
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import String, Integer, Float, Boolean, Text, ForeignKey, UniqueConstraint, CheckConstraint, Uuid, Enum as SAEnum
from arena.db import Base
from arena.models.account import _utcnow


def _str_enum(enum_cls, length: int = 16):
    return SAEnum(enum_cls, native_enum=False, length=length, values_callable=lambda e: [m.value for m in e])


class ChallengeType(str, enum.Enum):
    DIRECT = "direct"
    OPEN = "open"


class ChallengeStatus(str, enum.Enum):
    PENDING = "pending"
    OPEN = "open"
    ACTIVE = "active"
    COMPLETED = "completed"
    DECLINED = "declined"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ChallengeStatus.COMPLETED, ChallengeStatus.DECLINED, ChallengeStatus.CANCELLED)


class ScoreDirection(str, enum.Enum):
    HIGHER = "higher"  # points
    LOWER = "lower"    # times; normalized by negation


class Outcome(str, enum.Enum):
    WINNER = "winner"
    TIE = "tie"
    NO_CONTEST = "no_contest"


class Challenge(Base):
    __tablename__ = "challenges"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[ChallengeType] = mapped_column(_str_enum(ChallengeType, 8), nullable=False)
    status: Mapped[ChallengeStatus] = mapped_column(_str_enum(ChallengeStatus), index=True, nullable=False)

    creator_id: Mapped[str] = mapped_column(String(64), ForeignKey("accounts.user_id"), index=True, nullable=False)
    opponent_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("accounts.user_id"), index=True, nullable=True)  # direct only

    # External competition
    game_id: Mapped[int] = mapped_column(Integer, nullable=False)
    leaderboard_id: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text(), nullable=False, default="")
    score_direction: Mapped[ScoreDirection] = mapped_column(_str_enum(ScoreDirection, 8), nullable=False, default=ScoreDirection.HIGHER)

    wager: Mapped[int] = mapped_column(Integer, nullable=False)
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)  # open only; counts the creator
    duration_hours: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    respond_by: Mapped[datetime] = mapped_column(index=True, nullable=False)  # accept (direct) / first join (open) deadline
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(index=True, nullable=True)
    betting_closes_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    resolve_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    outcome: Mapped[Outcome | None] = mapped_column(_str_enum(Outcome), nullable=True)
    winner_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    house_contribution: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    participants: Mapped[list[Participant]] = relationship(
        back_populates="challenge", cascade="all, delete-orphan", order_by="Participant.joined_at", lazy="selectin"
    )
    bets: Mapped[list[Bet]] = relationship(
        back_populates="challenge", cascade="all, delete-orphan", order_by="Bet.placed_at", lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint("wager > 0", name="ck_challenges_wager_positive"),
    )
    __mapper_args__ = {"version_id_col": version}

    # ---------- derived accounting (never stored) ----------

    @property
    def participant_ids(self) -> list[str]:
        return [p.user_id for p in self.participants]

    @property
    def wager_pool(self) -> int:
        return self.wager * sum(1 for p in self.participants if p.wager_paid)

    @property
    def betting_pool(self) -> int:
        return sum(b.amount for b in self.bets)

    @property
    def total_pool(self) -> int:
        return self.wager_pool + self.betting_pool

    @property
    def bets_close_at(self) -> datetime | None:
        """Betting stops at the window close or when play ends, whichever is earlier."""
        if self.betting_closes_at is None or self.ends_at is None:
            return self.betting_closes_at
        return min(self.betting_closes_at, self.ends_at)

    def participant(self, user_id: str) -> Participant | None:
        return next((p for p in self.participants if p.user_id == user_id), None)

    def bet_of(self, user_id: str) -> Bet | None:
        return next((b for b in self.bets if b.bettor_id == user_id), None)


class Participant(Base):
    __tablename__ = "challenge_participants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    challenge_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("accounts.user_id"), index=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(64), nullable=False)  # leaderboard username at join time
    joined_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)  # normalized, higher is better
    formatted_score: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    wager_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    challenge: Mapped[Challenge] = relationship(back_populates="participants")

    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="uq_participant_once_per_challenge"),
    )


class Bet(Base):
    __tablename__ = "challenge_bets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    challenge_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False)
    bettor_id: Mapped[str] = mapped_column(String(64), ForeignKey("accounts.user_id"), index=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(64), nullable=False)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)  # participant user id
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    placed_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    # Written once, at settlement
    paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payout: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # total returned incl. stake
    house_contribution: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refunded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    challenge: Mapped[Challenge] = relationship(back_populates="bets")

    __table_args__ = (
        UniqueConstraint("challenge_id", "bettor_id", name="uq_bet_once_per_bettor"),
        CheckConstraint("amount > 0", name="ck_challenge_bets_amount_positive"),
    )
