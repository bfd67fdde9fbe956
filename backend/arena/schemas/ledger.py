from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from datetime import datetime
from arena.models.ledger import TxReason


class AccountCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    username: str = Field(min_length=1, max_length=64)
    opening_balance: int = Field(ge=0, default=0)


class AccountPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    username: str
    balance: int
    created_at: datetime


class LedgerEntryPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    delta: int
    reason: TxReason
    reference: str | None = None
    note: str | None = None
    created_at: datetime


class WalletSnapshot(BaseModel):
    user_id: str
    balance: int
    entries: list[LedgerEntryPublic]


class MonthlyGrantResult(BaseModel):
    granted: bool
    balance: int


class AdjustRequest(BaseModel):
    delta: int
    note: str = Field(min_length=1, max_length=255)


class LeaderboardRow(BaseModel):
    rank: int
    user_id: str
    username: str
    balance: int
