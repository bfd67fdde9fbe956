from __future__ import annotations
from datetime import datetime, timezone as dt_tz
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from arena.config import Settings, settings as default_settings
from arena.errors import InsufficientFunds, UnknownAccount
from arena.models.account import Account
from arena.models.ledger import LedgerTransaction, TxReason

log = structlog.get_logger()


class Ledger:
    """
    GP balances and the append-only transaction log.

    Every write appends exactly one LedgerTransaction and moves the cached
    `accounts.balance` in the same statement batch, so callers control
    atomicity through the session they pass in: a wager debit and the
    challenge state change it pays for commit (or roll back) together.
    """

    def __init__(self, settings: Settings = default_settings):
        self.settings = settings

    # ---------- accounts ----------

    async def get_account(self, session: AsyncSession, user_id: str) -> Account | None:
        return await session.get(Account, user_id)

    async def require_account(self, session: AsyncSession, user_id: str) -> Account:
        acct = await session.get(Account, user_id)
        if acct is None:
            raise UnknownAccount(f"account {user_id} not found")
        return acct

    async def open_account(
        self,
        session: AsyncSession,
        user_id: str,
        username: str,
        *,
        opening_balance: int = 0,
        now: datetime | None = None,
    ) -> Account:
        """Register a user. Re-registering updates the leaderboard username only."""
        now = now or datetime.now(dt_tz.utc)
        acct = await session.get(Account, user_id)
        if acct is not None:
            acct.username = username
            return acct
        acct = Account(user_id=user_id, username=username, balance=0, created_at=now)
        session.add(acct)
        await session.flush()
        if opening_balance > 0:
            await self.credit(session, user_id, opening_balance, TxReason.GRANT,
                              key=f"opening:{user_id}", note="opening_balance", now=now)
        log.info("account_opened", user_id=user_id, username=username, opening_balance=opening_balance)
        return acct

    # ---------- reads ----------

    async def current_balance(self, session: AsyncSession, user_id: str) -> int:
        bal = await session.scalar(select(Account.balance).where(Account.user_id == user_id))
        if bal is None:
            raise UnknownAccount(f"account {user_id} not found")
        return int(bal)

    async def transactions(self, session: AsyncSession, user_id: str, limit: int | None = None) -> list[LedgerTransaction]:
        q = (
            select(LedgerTransaction)
            .where(LedgerTransaction.account_id == user_id)
            .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id)
        )
        if limit:
            q = q.limit(limit)
        return list((await session.execute(q)).scalars().all())

    async def transactions_for(self, session: AsyncSession, reference: str) -> list[LedgerTransaction]:
        """All rows that reference a challenge (or bet) id."""
        return list((await session.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.reference == reference)
            .order_by(LedgerTransaction.created_at.asc())
        )).scalars().all())

    async def reconcile(self, session: AsyncSession, user_id: str) -> tuple[int, int]:
        """Return (cached balance, Σ delta). They must always be equal."""
        bal = await self.current_balance(session, user_id)
        total = await session.scalar(
            select(func.coalesce(func.sum(LedgerTransaction.delta), 0)).where(LedgerTransaction.account_id == user_id)
        )
        return bal, int(total or 0)

    async def top_balances(self, session: AsyncSession, limit: int = 10) -> list[Account]:
        return list((await session.execute(
            select(Account).order_by(Account.balance.desc(), Account.username.asc()).limit(limit)
        )).scalars().all())

    # ---------- writes ----------

    async def _by_key(self, session: AsyncSession, key: str | None) -> LedgerTransaction | None:
        if not key:
            return None
        return await session.scalar(select(LedgerTransaction).where(LedgerTransaction.idempotency_key == key))

    def _append(self, session: AsyncSession, user_id: str, delta: int, reason: TxReason,
                reference: str | None, key: str | None, note: str | None, now: datetime | None) -> LedgerTransaction:
        tx = LedgerTransaction(
            account_id=user_id,
            delta=int(delta),
            reason=reason,
            reference=reference,
            idempotency_key=key,
            note=note,
            created_at=now or datetime.now(dt_tz.utc),
        )
        session.add(tx)
        return tx

    async def credit(
        self,
        session: AsyncSession,
        user_id: str,
        amount: int,
        reason: TxReason,
        reference: str | None = None,
        *,
        key: str | None = None,
        note: str | None = None,
        now: datetime | None = None,
    ) -> LedgerTransaction:
        """
        Credit GP to an account. Idempotent by key: a repeated key returns the
        row written the first time and moves no balance.
        """
        if amount <= 0:
            raise ValueError("amount must be > 0")
        existing = await self._by_key(session, key)
        if existing:
            return existing

        res = await session.execute(
            update(Account)
            .where(Account.user_id == user_id)
            .values(balance=Account.balance + int(amount))
        )
        if res.rowcount != 1:
            raise UnknownAccount(f"account {user_id} not found")
        tx = self._append(session, user_id, amount, reason, reference, key, note, now)
        await session.flush()
        return tx

    async def debit(
        self,
        session: AsyncSession,
        user_id: str,
        amount: int,
        reason: TxReason,
        reference: str | None = None,
        *,
        key: str | None = None,
        note: str | None = None,
        now: datetime | None = None,
    ) -> LedgerTransaction:
        """
        Debit GP from an account.
        Raises InsufficientFunds if the balance is too low. The balance check
        and the write are one conditional UPDATE, so two concurrent debits on
        the same account can never both pass the check.
        """
        if amount <= 0:
            raise ValueError("amount must be > 0")
        existing = await self._by_key(session, key)
        if existing:
            return existing

        res = await session.execute(
            update(Account)
            .where(Account.user_id == user_id, Account.balance >= int(amount))
            .values(balance=Account.balance - int(amount))
        )
        if res.rowcount != 1:
            bal = await session.scalar(select(Account.balance).where(Account.user_id == user_id))
            if bal is None:
                raise UnknownAccount(f"account {user_id} not found")
            raise InsufficientFunds(f"need {amount}, have {bal}")
        tx = self._append(session, user_id, -int(amount), reason, reference, key, note, now)
        await session.flush()
        return tx

    async def adjust(self, session: AsyncSession, user_id: str, delta: int, note: str,
                     *, now: datetime | None = None) -> LedgerTransaction:
        """Admin correction. Negative adjustments obey the same funds check as debits."""
        if delta == 0:
            raise ValueError("delta must be non-zero")
        if delta > 0:
            tx = await self.credit(session, user_id, delta, TxReason.ADJUSTMENT, note=note, now=now)
        else:
            tx = await self.debit(session, user_id, -delta, TxReason.ADJUSTMENT, note=note, now=now)
        log.info("account_adjusted", user_id=user_id, delta=delta, note=note)
        return tx

    async def grant_monthly(self, session: AsyncSession, user_id: str, now: datetime | None = None) -> bool:
        """
        Credit the monthly allowance once per calendar month (UTC).
        Returns True if a new grant was written.
        """
        now = now or datetime.now(dt_tz.utc)
        key = f"monthly:{user_id}:{now:%Y-%m}"
        if await self._by_key(session, key):
            return False
        await self.credit(session, user_id, self.settings.monthly_grant, TxReason.MONTHLY_GRANT,
                          key=key, note=f"monthly_grant_{now:%Y_%m}", now=now)
        return True
