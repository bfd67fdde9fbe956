from __future__ import annotations
from datetime import datetime, timezone as dt_tz
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, CheckConstraint
from arena.db import Base


def _utcnow() -> datetime:
    return datetime.now(dt_tz.utc)


class Account(Base):
    """
    One GP account per chat user.
    `balance` is a cache of Σ ledger_transactions.delta for the account and is
    only ever written by the Ledger, in the same DB transaction as the row it
    reflects.
    """
    __tablename__ = "accounts"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)  # chat platform user id
    username: Mapped[str] = mapped_column(String(64), index=True, nullable=False)  # leaderboard username
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
    )
