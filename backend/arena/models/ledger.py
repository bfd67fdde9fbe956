from __future__ import annotations
import enum
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, ForeignKey, Uuid, Enum as SAEnum
from arena.db import Base
from arena.models.account import _utcnow


class TxReason(str, enum.Enum):
    GRANT = "grant"
    MONTHLY_GRANT = "monthly_grant"
    ADJUSTMENT = "adjustment"
    WAGER_ESCROW = "wager_escrow"
    WAGER_REFUND = "wager_refund"
    WAGER_PAYOUT = "wager_payout"
    BET_STAKE = "bet_stake"
    BET_REFUND = "bet_refund"
    BET_PAYOUT = "bet_payout"


class LedgerTransaction(Base):
    """
    Append-only GP movements per account.
    Sign convention:
      - WAGER_ESCROW / BET_STAKE           => negative (account -> challenge)
      - WAGER_REFUND / BET_REFUND          => positive (challenge -> account)
      - WAGER_PAYOUT / BET_PAYOUT          => positive
      - GRANT / MONTHLY_GRANT              => positive
      - ADJUSTMENT                         => +/- (admin fix)

    Σ(delta) per account == accounts.balance.
    Idempotency: idempotency_key is unique (e.g. "payout:<challenge>:<user>").
    """
    __tablename__ = "ledger_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.user_id", ondelete="CASCADE"), index=True, nullable=False
    )
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[TxReason] = mapped_column(
        SAEnum(TxReason, native_enum=False, length=24, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    reference: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)  # challenge or bet id
    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
