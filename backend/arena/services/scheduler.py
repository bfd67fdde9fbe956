from __future__ import annotations
import asyncio
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Mapping
import structlog

from arena.config import Settings, settings as default_settings
from arena.errors import ChallengeNotActive, InvalidTarget, SourceUnavailable
from arena.models.challenge import Challenge, ChallengeStatus
from arena.models.ledger import TxReason
from arena.services.challenges import ChallengeStore
from arena.services.ledger import Ledger
from arena.services.notifications import ChallengeEvent, NotificationPort, safe_announce
from arena.services.payout import PayoutEngine, Resolution, SettlementPlan
from arena.services.scores import ParticipantScore, ScoreResolver, ScoreResult
from arena.services.time_windows import is_past, utcnow

log = structlog.get_logger()


@dataclass
class SweepReport:
    declined: int = 0
    cancelled: int = 0
    completed: int = 0
    retried: int = 0
    forced_no_contest: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class LifecycleScheduler:
    """
    Time-driven transitions, evaluated from persisted timestamps on every sweep.

    Each challenge is re-checked inside its own transaction, so running a
    sweep twice (or from two workers) settles nothing twice.
    """

    def __init__(
        self,
        store: ChallengeStore,
        resolver: ScoreResolver,
        payout: PayoutEngine,
        ledger: Ledger,
        *,
        settings: Settings = default_settings,
        notifier: NotificationPort | None = None,
    ):
        self.store = store
        self.resolver = resolver
        self.payout = payout
        self.ledger = ledger
        self.settings = settings
        self.notifier = notifier

    # ---------- sweeps ----------

    async def sweep_expired(self, now: datetime | None = None, report: SweepReport | None = None) -> SweepReport:
        now = now or utcnow()
        report = report or SweepReport()
        for cid in await self.store.due_for_expiry(now):
            try:
                ch = await self.store.expire(cid, now=now)
            except Exception:
                log.exception("expire_failed", challenge_id=str(cid))
                continue
            if ch is None:
                continue
            if ch.status == ChallengeStatus.DECLINED:
                report.declined += 1
            else:
                report.cancelled += 1
        return report

    async def sweep_completions(self, now: datetime | None = None, report: SweepReport | None = None) -> SweepReport:
        now = now or utcnow()
        report = report or SweepReport()
        for cid in await self.store.due_for_completion(now):
            try:
                await self._complete(cid, now, report)
            except Exception:
                log.exception("completion_failed", challenge_id=str(cid))
        return report

    async def _complete(self, cid: uuid.UUID, now: datetime, report: SweepReport) -> None:
        ch = await self.store.get(cid)
        if ch.status != ChallengeStatus.ACTIVE or not is_past(ch.ends_at, now):
            return
        try:
            scores = await self.resolver.resolve(ch)
        except Exception as e:
            # every failed resolve counts toward max_resolve_attempts
            if not isinstance(e, SourceUnavailable):
                log.exception("score_resolve_error", challenge_id=str(cid))
            attempts = await self.store.record_resolve_failure(cid, now=now)
            if attempts is None:
                return
            if attempts < self.settings.max_resolve_attempts:
                log.warning("score_resolve_retry", challenge_id=str(cid), attempts=attempts, error=str(e))
                report.retried += 1
                return
            log.warning("score_resolve_gave_up", challenge_id=str(cid), attempts=attempts, error=str(e))
            if await self.settle(cid, resolution=Resolution.no_contest(), now=now) is not None:
                report.forced_no_contest += 1
            return
        if await self.settle(cid, scores=scores, now=now) is not None:
            report.completed += 1

    async def run_once(self, now: datetime | None = None) -> SweepReport:
        now = now or utcnow()
        report = SweepReport()
        await self.sweep_expired(now, report)
        await self.sweep_completions(now, report)
        log.info("sweep_finished", **report.as_dict())
        return report

    async def run_forever(self, stop: asyncio.Event | None = None) -> None:
        stop = stop or asyncio.Event()
        log.info("scheduler_started", interval_seconds=self.settings.sweep_interval_seconds)
        while not stop.is_set():
            try:
                await self.run_once()
            except Exception:
                log.exception("sweep_crashed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.settings.sweep_interval_seconds)
            except asyncio.TimeoutError:
                pass
        log.info("scheduler_stopped")

    # ---------- settlement ----------

    async def declare_winner(self, challenge_id: uuid.UUID | str, winner_id: str, *, now: datetime | None = None) -> Challenge | None:
        """Settle an active challenge right away with a human-chosen winner."""
        ch = await self.store.get(challenge_id)
        if ch.status == ChallengeStatus.COMPLETED:
            return None
        if ch.status != ChallengeStatus.ACTIVE:
            raise ChallengeNotActive()
        if ch.participant(winner_id) is None:
            raise InvalidTarget("winner must be a participant of this challenge")
        return await self.settle(ch.id, resolution=Resolution.winner(winner_id), now=now)

    async def settle(
        self,
        challenge_id: uuid.UUID | str,
        *,
        scores: Mapping[str, ScoreResult] | None = None,
        resolution: Resolution | None = None,
        now: datetime | None = None,
    ) -> Challenge | None:
        """
        Compute and apply the settlement plan in one transaction.
        Returns None when the challenge is no longer active.
        """
        now = now or utcnow()
        async with self.store.transaction(challenge_id) as (session, ch):
            if ch.status != ChallengeStatus.ACTIVE:
                return None
            plan = self.payout.plan_for(ch, scores, resolution=resolution)
            await self._apply(session, ch, plan, now)
            self._record_scores(ch, scores or {})
            ch.status = ChallengeStatus.COMPLETED
            ch.outcome = plan.resolution.outcome
            ch.winner_id = plan.resolution.winner_id
            ch.house_contribution = plan.house_contribution
            ch.completed_at = now
            ch.updated_at = now

        log.info(
            "challenge_settled",
            challenge_id=str(ch.id),
            outcome=ch.outcome.value,
            winner_id=ch.winner_id,
            wager_pool=ch.wager_pool,
            betting_pool=ch.betting_pool,
            total_credited=plan.total_credited,
            house_contribution=plan.house_contribution,
            house_retained=plan.house_retained,
        )
        await safe_announce(self.notifier, ChallengeEvent.COMPLETED, ch, {
            "outcome": ch.outcome.value,
            "winner_id": ch.winner_id,
            "house_contribution": plan.house_contribution,
            "house_retained": plan.house_retained,
        })
        return ch

    async def _apply(self, session, ch: Challenge, plan: SettlementPlan, now: datetime) -> None:
        ref = str(ch.id)
        for line in plan.wager_lines:
            if line.amount <= 0:
                continue
            if line.refunded:
                await self.ledger.credit(session, line.user_id, line.amount, TxReason.WAGER_REFUND, ref,
                                         key=f"wager-refund:{ch.id}:{line.user_id}", now=now)
            else:
                await self.ledger.credit(session, line.user_id, line.amount, TxReason.WAGER_PAYOUT, ref,
                                         key=f"wager-payout:{ch.id}:{line.user_id}", now=now)

        bets = {str(b.id): b for b in ch.bets}
        for line in plan.bet_lines:
            bet = bets[line.bet_id]
            if line.total > 0:
                reason = TxReason.BET_REFUND if line.refunded else TxReason.BET_PAYOUT
                prefix = "bet-refund" if line.refunded else "bet-payout"
                await self.ledger.credit(session, line.bettor_id, line.total, reason, ref,
                                         key=f"{prefix}:{line.bet_id}", now=now)
            bet.paid = True
            bet.refunded = line.refunded
            bet.payout = line.total
            bet.house_contribution = line.house_contribution

    @staticmethod
    def _record_scores(ch: Challenge, scores: Mapping[str, ScoreResult]) -> None:
        for p in ch.participants:
            s = scores.get(p.user_id)
            if isinstance(s, ParticipantScore):
                p.score = s.value
                p.formatted_score = s.formatted_score
                p.rank = s.rank
            elif s is not None:
                p.formatted_score = s.formatted_score
