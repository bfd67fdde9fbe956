from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Sequence

from arena.models.challenge import Challenge, ChallengeStatus, Outcome
from arena.services.scores import ParticipantScore, ScoreResult
from arena.services.time_windows import is_past


@dataclass(frozen=True)
class Resolution:
    outcome: Outcome
    winner_id: str | None = None

    @classmethod
    def winner(cls, user_id: str) -> Resolution:
        return cls(Outcome.WINNER, user_id)

    @classmethod
    def tie(cls) -> Resolution:
        return cls(Outcome.TIE)

    @classmethod
    def no_contest(cls) -> Resolution:
        return cls(Outcome.NO_CONTEST)


@dataclass(frozen=True)
class BetStake:
    bet_id: str
    bettor_id: str
    target_id: str
    amount: int


@dataclass(frozen=True)
class WagerLine:
    user_id: str
    amount: int  # credited back to the participant; 0 for a forfeited wager
    refunded: bool = False


@dataclass(frozen=True)
class BetLine:
    bet_id: str
    bettor_id: str
    stake: int
    won: bool = False
    refunded: bool = False
    share: int = 0               # slice of the losing pool
    house_contribution: int = 0  # minted by the house for a lone winning bettor

    @property
    def total(self) -> int:
        if self.refunded:
            return self.stake
        if not self.won:
            return 0
        return self.stake + self.share + self.house_contribution


@dataclass(frozen=True)
class SettlementPlan:
    resolution: Resolution
    wager_lines: list[WagerLine] = field(default_factory=list)
    bet_lines: list[BetLine] = field(default_factory=list)
    house_retained: int = 0  # losing stakes with no winner to pay, plus rounding remainders

    @property
    def house_contribution(self) -> int:
        return sum(b.house_contribution for b in self.bet_lines)

    @property
    def total_credited(self) -> int:
        return sum(w.amount for w in self.wager_lines) + sum(b.total for b in self.bet_lines)


class PayoutEngine:
    """
    Pure settlement math. No I/O; the scheduler applies the plan through the Ledger.

    Winner-take-all on wagers, parimutuel on bets:
      - the winner collects wager × paid participants
      - winning bettors get their stake back plus a stake-proportional share
        of the losing pool, floored; the remainder stays with the house
      - a single winning bettor facing an empty losing pool gets
        `house_guarantee_pct` of the stake on top, paid by the house
      - a tie or no contest refunds every wager and every bet in full
    """

    def __init__(self, house_guarantee_pct: int = 50):
        self.house_guarantee_pct = house_guarantee_pct

    def determine_outcome(self, scores: Mapping[str, ScoreResult]) -> Resolution:
        values = {uid: s.value for uid, s in scores.items() if isinstance(s, ParticipantScore)}
        if not values:
            return Resolution.no_contest()
        top = max(values.values())
        leaders = [uid for uid, v in values.items() if v == top]
        if len(leaders) > 1:
            return Resolution.tie()
        return Resolution.winner(leaders[0])

    def plan(
        self,
        *,
        wager: int,
        participants: Sequence[str],
        bets: Sequence[BetStake],
        resolution: Resolution,
    ) -> SettlementPlan:
        """`participants` lists the user ids whose wager is in escrow."""
        if resolution.outcome != Outcome.WINNER:
            return SettlementPlan(
                resolution=resolution,
                wager_lines=[WagerLine(uid, wager, refunded=True) for uid in participants],
                bet_lines=[BetLine(b.bet_id, b.bettor_id, b.amount, refunded=True) for b in bets],
            )

        winner = resolution.winner_id
        if winner not in participants:
            raise ValueError(f"winner {winner} is not a paid participant")
        wager_lines = [
            WagerLine(uid, wager * len(participants) if uid == winner else 0)
            for uid in participants
        ]

        winning = [b for b in bets if b.target_id == winner]
        losing_pool = sum(b.amount for b in bets if b.target_id != winner)
        total_winning = sum(b.amount for b in winning)
        lines: dict[str, BetLine] = {
            b.bet_id: BetLine(b.bet_id, b.bettor_id, b.amount) for b in bets if b.target_id != winner
        }
        house_retained = 0

        if not winning:
            house_retained = losing_pool
        elif len(winning) == 1 and losing_pool == 0:
            b = winning[0]
            bonus = b.amount * self.house_guarantee_pct // 100
            lines[b.bet_id] = BetLine(b.bet_id, b.bettor_id, b.amount, won=True, house_contribution=bonus)
        else:
            distributed = 0
            for b in winning:
                share = losing_pool * b.amount // total_winning
                distributed += share
                lines[b.bet_id] = BetLine(b.bet_id, b.bettor_id, b.amount, won=True, share=share)
            house_retained = losing_pool - distributed

        return SettlementPlan(
            resolution=resolution,
            wager_lines=wager_lines,
            bet_lines=[lines[b.bet_id] for b in bets],
            house_retained=house_retained,
        )

    def plan_for(
        self,
        challenge: Challenge,
        scores: Mapping[str, ScoreResult] | None = None,
        *,
        resolution: Resolution | None = None,
    ) -> SettlementPlan:
        if resolution is None:
            resolution = self.determine_outcome(scores or {})
        return self.plan(
            wager=challenge.wager,
            participants=[p.user_id for p in challenge.participants if p.wager_paid],
            bets=[BetStake(str(b.id), b.bettor_id, b.target_id, b.amount) for b in challenge.bets],
            resolution=resolution,
        )


@dataclass(frozen=True)
class BettingSummary:
    total_bets: int
    total_amount: int
    by_target: dict[str, int]
    bettors_by_target: dict[str, int]
    odds: dict[str, str]  # "x.yz:1" implied by the current pool, or "-" when nobody backed the target
    betting_open: bool
    closes_at: datetime | None


def betting_summary(challenge: Challenge, now: datetime) -> BettingSummary:
    by_target: dict[str, int] = defaultdict(int)
    bettors: dict[str, int] = defaultdict(int)
    for b in challenge.bets:
        by_target[b.target_id] += b.amount
        bettors[b.target_id] += 1
    total = sum(by_target.values())
    odds: dict[str, str] = {}
    for uid in challenge.participant_ids:
        backed = by_target.get(uid, 0)
        odds[uid] = f"{(total - backed) / backed:.2f}:1" if backed else "-"
    open_ = challenge.status == ChallengeStatus.ACTIVE and not is_past(challenge.bets_close_at, now)
    return BettingSummary(
        total_bets=len(challenge.bets),
        total_amount=total,
        by_target={uid: by_target.get(uid, 0) for uid in challenge.participant_ids},
        bettors_by_target={uid: bettors.get(uid, 0) for uid in challenge.participant_ids},
        odds=odds,
        betting_open=open_,
        closes_at=challenge.bets_close_at,
    )
