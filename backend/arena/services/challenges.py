from __future__ import annotations
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from sqlalchemy import select, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from arena.config import Settings, settings as default_settings
from arena.db import is_postgres
from arena.errors import (
    AlreadyDecided, AlreadyJoined, BettingClosed, ChallengeFull, ChallengeNotActive, Conflict,
    DuplicateBet, DuplicateChallenge, Forbidden, InvalidBet, InvalidDuration, InvalidTarget,
    InvalidWager, IsBettor, IsParticipant, NotFound, SelfChallenge, UnknownOpponent,
    ValidationFailed, WrongParticipant, WrongStatus,
)
from arena.models.challenge import Bet, Challenge, ChallengeStatus, ChallengeType, Participant
from arena.models.ledger import TxReason
from arena.schemas.challenge import ChallengeCreate
from arena.services.ledger import Ledger
from arena.services.locks import KeyedLocks, advisory_xact_lock
from arena.services.notifications import ChallengeEvent, NotificationPort, safe_announce
from arena.services.payout import BettingSummary, betting_summary
from arena.services.time_windows import activation_window, is_past, respond_deadline, utcnow

log = structlog.get_logger()

MIN_PARTICIPANTS = 2


def _challenge_uuid(challenge_id: uuid.UUID | str) -> uuid.UUID:
    if isinstance(challenge_id, uuid.UUID):
        return challenge_id
    try:
        return uuid.UUID(str(challenge_id))
    except ValueError:
        raise NotFound(f"challenge {challenge_id} not found") from None


class ChallengeStore:
    """
    Owns challenge, participant and bet state.

    Every mutation runs in one DB transaction while holding the challenge's
    lock: an in-process asyncio.Lock and, on PostgreSQL, an advisory lock plus
    a row lock. Wager and stake debits go through the Ledger on the same
    session, so a failed debit leaves no trace of the attempted change.
    Notifications go out only after the commit.
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        ledger: Ledger,
        *,
        settings: Settings = default_settings,
        notifier: NotificationPort | None = None,
        locks: KeyedLocks | None = None,
    ):
        self.sessionmaker = sessionmaker
        self.ledger = ledger
        self.settings = settings
        self.notifier = notifier
        self.locks = locks or KeyedLocks()

    # ---------- transaction boundary ----------

    @asynccontextmanager
    async def _serialized(self, key: str) -> AsyncIterator[AsyncSession]:
        async with self.locks.hold(key):
            async with self.sessionmaker() as session:
                try:
                    async with session.begin():
                        if is_postgres(session):
                            await advisory_xact_lock(session, key)
                        yield session
                except StaleDataError as e:
                    log.warning("challenge_stale_write", lock_key=key, error=str(e))
                    raise Conflict("challenge was modified concurrently; retry") from e
                except IntegrityError as e:
                    log.warning("challenge_integrity_conflict", lock_key=key, error=str(e.orig))
                    raise Conflict("conflicting write; retry") from e

    @asynccontextmanager
    async def transaction(self, challenge_id: uuid.UUID | str) -> AsyncIterator[tuple[AsyncSession, Challenge]]:
        """Yield (session, challenge) with the challenge locked; commits on exit."""
        cid = _challenge_uuid(challenge_id)
        async with self._serialized(f"challenge:{cid}") as session:
            ch = await session.get(Challenge, cid, with_for_update=True, populate_existing=True)
            if ch is None:
                raise NotFound(f"challenge {cid} not found")
            yield session, ch

    async def _announce(self, event: ChallengeEvent, ch: Challenge, extra: dict | None = None) -> None:
        await safe_announce(self.notifier, event, ch, extra)

    # ---------- validation ----------

    def _check_wager(self, wager: int) -> None:
        if not (self.settings.min_wager <= wager <= self.settings.max_wager):
            raise InvalidWager(f"wager must be between {self.settings.min_wager} and {self.settings.max_wager} GP")

    def _check_duration(self, hours: int) -> None:
        if not (self.settings.min_duration_hours <= hours <= self.settings.max_duration_hours):
            raise InvalidDuration(
                f"duration must be between {self.settings.min_duration_hours} and {self.settings.max_duration_hours} hours"
            )

    def _check_bet(self, amount: int) -> None:
        if not (self.settings.min_bet <= amount <= self.settings.max_bet):
            raise InvalidBet(f"bet must be between {self.settings.min_bet} and {self.settings.max_bet} GP")

    def _activate(self, ch: Challenge, now: datetime) -> None:
        ch.status = ChallengeStatus.ACTIVE
        ch.started_at = now
        ch.ends_at, ch.betting_closes_at = activation_window(now, ch.duration_hours, self.settings)

    async def _escrow(self, session: AsyncSession, ch: Challenge, user_id: str, now: datetime) -> Participant:
        acct = await self.ledger.require_account(session, user_id)
        await self.ledger.debit(
            session, user_id, ch.wager, TxReason.WAGER_ESCROW, str(ch.id),
            key=f"escrow:{ch.id}:{user_id}", now=now,
        )
        p = Participant(user_id=user_id, display_name=acct.username, joined_at=now, wager_paid=True)
        ch.participants.append(p)
        return p

    async def _refund_all(self, session: AsyncSession, ch: Challenge, now: datetime) -> int:
        refunded = 0
        for p in ch.participants:
            if not p.wager_paid:
                continue
            await self.ledger.credit(
                session, p.user_id, ch.wager, TxReason.WAGER_REFUND, str(ch.id),
                key=f"wager-refund:{ch.id}:{p.user_id}", now=now,
            )
            refunded += ch.wager
        return refunded

    # ---------- mutations ----------

    async def create(self, creator_id: str, spec: ChallengeCreate, *, now: datetime | None = None) -> Challenge:
        now = now or utcnow()
        self._check_wager(spec.wager)
        self._check_duration(spec.duration_hours)
        is_open = spec.type == ChallengeType.OPEN
        if is_open:
            if spec.max_participants is not None and spec.max_participants < MIN_PARTICIPANTS:
                raise ValidationFailed(f"max_participants must be at least {MIN_PARTICIPANTS}")
            lock_key = f"creator:{creator_id}"
        else:
            if not spec.opponent_id:
                raise UnknownOpponent("direct challenges need an opponent")
            if spec.opponent_id == creator_id:
                raise SelfChallenge()
            lock_key = "pair:" + ":".join(sorted((creator_id, spec.opponent_id)))

        async with self._serialized(lock_key) as session:
            await self.ledger.require_account(session, creator_id)
            if not is_open:
                if await self.ledger.get_account(session, spec.opponent_id) is None:
                    raise UnknownOpponent(f"{spec.opponent_id} is not a registered user")
                existing = await session.scalar(
                    select(Challenge.id).where(
                        Challenge.type == ChallengeType.DIRECT,
                        Challenge.status.in_([ChallengeStatus.PENDING, ChallengeStatus.ACTIVE]),
                        or_(
                            and_(Challenge.creator_id == creator_id, Challenge.opponent_id == spec.opponent_id),
                            and_(Challenge.creator_id == spec.opponent_id, Challenge.opponent_id == creator_id),
                        ),
                    ).limit(1)
                )
                if existing is not None:
                    raise DuplicateChallenge()

            ch = Challenge(
                id=uuid.uuid4(),
                type=spec.type,
                status=ChallengeStatus.OPEN if is_open else ChallengeStatus.PENDING,
                creator_id=creator_id,
                opponent_id=None if is_open else spec.opponent_id,
                game_id=spec.game_id,
                leaderboard_id=spec.leaderboard_id,
                title=spec.title,
                description=spec.description,
                score_direction=spec.score_direction,
                wager=spec.wager,
                max_participants=spec.max_participants if is_open else None,
                duration_hours=spec.duration_hours,
                created_at=now,
                updated_at=now,
                respond_by=respond_deadline(now, is_open, self.settings),
                resolve_attempts=0,
                house_contribution=0,
                participants=[],
                bets=[],
            )
            session.add(ch)
            await session.flush()
            await self._escrow(session, ch, creator_id, now)

        log.info("challenge_created", challenge_id=str(ch.id), type=ch.type.value, creator_id=creator_id,
                 opponent_id=ch.opponent_id, wager=ch.wager, duration_hours=ch.duration_hours)
        await self._announce(ChallengeEvent.CREATED, ch)
        return ch

    async def accept(self, challenge_id: uuid.UUID | str, user_id: str, *, now: datetime | None = None) -> Challenge:
        now = now or utcnow()
        async with self.transaction(challenge_id) as (session, ch):
            if ch.type != ChallengeType.DIRECT:
                raise WrongStatus("only direct challenges can be accepted; join open challenges instead")
            if ch.opponent_id != user_id:
                raise WrongParticipant()
            if ch.status != ChallengeStatus.PENDING:
                raise AlreadyDecided()
            if is_past(ch.respond_by, now):
                raise AlreadyDecided("the acceptance window has passed")
            await self._escrow(session, ch, user_id, now)
            self._activate(ch, now)
            ch.updated_at = now

        log.info("challenge_accepted", challenge_id=str(ch.id), user_id=user_id, ends_at=ch.ends_at.isoformat())
        await self._announce(ChallengeEvent.ACCEPTED, ch, {"user_id": user_id})
        return ch

    async def join(self, challenge_id: uuid.UUID | str, user_id: str, *, now: datetime | None = None) -> Challenge:
        now = now or utcnow()
        async with self.transaction(challenge_id) as (session, ch):
            if ch.type != ChallengeType.OPEN:
                raise WrongStatus("only open challenges can be joined")
            if ch.status == ChallengeStatus.OPEN:
                if is_past(ch.respond_by, now):
                    raise WrongStatus("this challenge expired without a second participant")
            elif ch.status == ChallengeStatus.ACTIVE:
                if is_past(ch.bets_close_at, now):
                    raise WrongStatus("joining has closed for this challenge")
            else:
                raise WrongStatus(f"challenge is {ch.status.value}")
            if ch.participant(user_id) is not None:
                raise AlreadyJoined()
            if ch.max_participants is not None and len(ch.participants) >= ch.max_participants:
                raise ChallengeFull()
            if ch.bet_of(user_id) is not None:
                raise IsBettor()
            await self._escrow(session, ch, user_id, now)
            ch.updated_at = now
            activated = ch.status == ChallengeStatus.OPEN and len(ch.participants) >= MIN_PARTICIPANTS
            if activated:
                self._activate(ch, now)

        log.info("challenge_joined", challenge_id=str(ch.id), user_id=user_id,
                 participants=len(ch.participants), activated=activated)
        await self._announce(ChallengeEvent.JOINED, ch, {"user_id": user_id, "activated": activated})
        return ch

    async def decline(self, challenge_id: uuid.UUID | str, actor_id: str, *, now: datetime | None = None) -> Challenge:
        now = now or utcnow()
        async with self.transaction(challenge_id) as (session, ch):
            if ch.type != ChallengeType.DIRECT:
                raise WrongStatus("open challenges are cancelled, not declined")
            if actor_id not in (ch.opponent_id, ch.creator_id):
                raise WrongParticipant()
            if ch.status != ChallengeStatus.PENDING:
                raise AlreadyDecided()
            refunded = await self._refund_all(session, ch, now)
            ch.status = ChallengeStatus.DECLINED
            ch.updated_at = now

        log.info("challenge_declined", challenge_id=str(ch.id), actor_id=actor_id, refunded=refunded)
        await self._announce(ChallengeEvent.DECLINED, ch, {"actor_id": actor_id, "reason": "declined"})
        return ch

    async def cancel(self, challenge_id: uuid.UUID | str, actor_id: str, *, now: datetime | None = None) -> Challenge:
        now = now or utcnow()
        async with self.transaction(challenge_id) as (session, ch):
            if ch.creator_id != actor_id:
                raise Forbidden("only the creator can cancel a challenge")
            if ch.status not in (ChallengeStatus.PENDING, ChallengeStatus.OPEN):
                raise AlreadyDecided()
            refunded = await self._refund_all(session, ch, now)
            ch.status = ChallengeStatus.CANCELLED
            ch.updated_at = now

        log.info("challenge_cancelled", challenge_id=str(ch.id), actor_id=actor_id, refunded=refunded)
        await self._announce(ChallengeEvent.CANCELLED, ch, {"actor_id": actor_id, "reason": "cancelled"})
        return ch

    async def expire(self, challenge_id: uuid.UUID | str, *, now: datetime | None = None) -> Challenge | None:
        """
        Close a challenge nobody responded to in time: pending direct challenges
        are declined, open ones without a second participant are cancelled.
        Returns None when the challenge no longer qualifies.
        """
        now = now or utcnow()
        async with self.transaction(challenge_id) as (session, ch):
            if ch.status not in (ChallengeStatus.PENDING, ChallengeStatus.OPEN) or not is_past(ch.respond_by, now):
                return None
            refunded = await self._refund_all(session, ch, now)
            ch.status = ChallengeStatus.DECLINED if ch.status == ChallengeStatus.PENDING else ChallengeStatus.CANCELLED
            ch.updated_at = now

        event = ChallengeEvent.DECLINED if ch.status == ChallengeStatus.DECLINED else ChallengeEvent.CANCELLED
        log.info("challenge_expired", challenge_id=str(ch.id), status=ch.status.value, refunded=refunded)
        await self._announce(event, ch, {"reason": "expired"})
        return ch

    async def place_bet(
        self,
        challenge_id: uuid.UUID | str,
        bettor_id: str,
        target_id: str,
        amount: int,
        *,
        now: datetime | None = None,
    ) -> Bet:
        now = now or utcnow()
        self._check_bet(amount)
        async with self.transaction(challenge_id) as (session, ch):
            if ch.status != ChallengeStatus.ACTIVE:
                raise ChallengeNotActive()
            if is_past(ch.bets_close_at, now):
                raise BettingClosed()
            if ch.participant(bettor_id) is not None:
                raise IsParticipant()
            if ch.bet_of(bettor_id) is not None:
                raise DuplicateBet()
            if ch.participant(target_id) is None:
                raise InvalidTarget()
            acct = await self.ledger.require_account(session, bettor_id)
            await self.ledger.debit(
                session, bettor_id, amount, TxReason.BET_STAKE, str(ch.id),
                key=f"bet-stake:{ch.id}:{bettor_id}", now=now,
            )
            bet = Bet(
                id=uuid.uuid4(),
                bettor_id=bettor_id,
                display_name=acct.username,
                target_id=target_id,
                amount=amount,
                placed_at=now,
                paid=False,
                payout=0,
                house_contribution=0,
                refunded=False,
            )
            ch.bets.append(bet)
            ch.updated_at = now

        log.info("bet_placed", challenge_id=str(ch.id), bettor_id=bettor_id, target_id=target_id,
                 amount=amount, betting_pool=ch.betting_pool)
        await self._announce(ChallengeEvent.BET_PLACED, ch,
                             {"bettor_id": bettor_id, "target_id": target_id, "amount": amount})
        return bet

    async def record_resolve_failure(self, challenge_id: uuid.UUID | str, *, now: datetime | None = None) -> int | None:
        """Count a failed score lookup. Returns the new attempt count, or None if no longer active."""
        now = now or utcnow()
        async with self.transaction(challenge_id) as (session, ch):
            if ch.status != ChallengeStatus.ACTIVE:
                return None
            ch.resolve_attempts += 1
            ch.updated_at = now
            return ch.resolve_attempts

    # ---------- reads ----------

    async def get(self, challenge_id: uuid.UUID | str) -> Challenge:
        cid = _challenge_uuid(challenge_id)
        async with self.sessionmaker() as session:
            ch = await session.get(Challenge, cid)
        if ch is None:
            raise NotFound(f"challenge {cid} not found")
        return ch

    async def list_challenges(
        self,
        *,
        status: ChallengeStatus | None = None,
        user_id: str | None = None,
        limit: int = 50,
    ) -> list[Challenge]:
        q = select(Challenge)
        if status is not None:
            q = q.where(Challenge.status == status)
        if user_id is not None:
            q = q.where(or_(
                Challenge.creator_id == user_id,
                Challenge.opponent_id == user_id,
                Challenge.id.in_(select(Participant.challenge_id).where(Participant.user_id == user_id)),
                Challenge.id.in_(select(Bet.challenge_id).where(Bet.bettor_id == user_id)),
            ))
        q = q.order_by(Challenge.created_at.desc()).limit(limit)
        async with self.sessionmaker() as session:
            return list((await session.execute(q)).scalars().all())

    async def due_for_expiry(self, now: datetime) -> list[uuid.UUID]:
        q = select(Challenge.id).where(
            Challenge.status.in_([ChallengeStatus.PENDING, ChallengeStatus.OPEN]),
            Challenge.respond_by <= now,
        ).order_by(Challenge.respond_by)
        async with self.sessionmaker() as session:
            return list((await session.execute(q)).scalars().all())

    async def due_for_completion(self, now: datetime) -> list[uuid.UUID]:
        q = select(Challenge.id).where(
            Challenge.status == ChallengeStatus.ACTIVE,
            Challenge.ends_at <= now,
        ).order_by(Challenge.ends_at)
        async with self.sessionmaker() as session:
            return list((await session.execute(q)).scalars().all())

    async def betting_summary(self, challenge_id: uuid.UUID | str, *, now: datetime | None = None) -> BettingSummary:
        ch = await self.get(challenge_id)
        return betting_summary(ch, now or utcnow())
