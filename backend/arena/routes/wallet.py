from __future__ import annotations
from fastapi import APIRouter, Depends, Query

from arena.auth_deps import Caller, get_arena, get_caller
from arena.engine import ArenaEngine
from arena.errors import Forbidden
from arena.schemas.ledger import (
    AccountCreate, AccountPublic, LeaderboardRow, LedgerEntryPublic, MonthlyGrantResult, WalletSnapshot,
)

router = APIRouter(tags=["wallet"])


@router.post("/accounts", response_model=AccountPublic, status_code=201)
async def register_account(payload: AccountCreate, arena: ArenaEngine = Depends(get_arena), caller: Caller = Depends(get_caller)):
    """Register the calling user. Admins may register anyone and seed an opening balance."""
    if payload.user_id != caller.user_id and not caller.is_admin:
        raise Forbidden("you can only register yourself")
    if payload.opening_balance and not caller.is_admin:
        raise Forbidden("only admins can set an opening balance")
    async with arena.sessionmaker() as session:
        async with session.begin():
            acct = await arena.ledger.open_account(
                session, payload.user_id, payload.username, opening_balance=payload.opening_balance,
            )
        await session.refresh(acct)
        return AccountPublic.model_validate(acct)


@router.get("/wallet", response_model=WalletSnapshot)
async def get_wallet(
    limit: int = Query(default=50, ge=1, le=500),
    arena: ArenaEngine = Depends(get_arena),
    caller: Caller = Depends(get_caller),
):
    async with arena.sessionmaker() as session:
        bal = await arena.ledger.current_balance(session, caller.user_id)
        rows = await arena.ledger.transactions(session, caller.user_id, limit=limit)
    return WalletSnapshot(
        user_id=caller.user_id,
        balance=bal,
        entries=[LedgerEntryPublic.model_validate(r) for r in rows],
    )


@router.post("/wallet/monthly", response_model=MonthlyGrantResult)
async def claim_monthly(arena: ArenaEngine = Depends(get_arena), caller: Caller = Depends(get_caller)):
    async with arena.sessionmaker() as session:
        async with session.begin():
            await arena.ledger.require_account(session, caller.user_id)
            granted = await arena.ledger.grant_monthly(session, caller.user_id)
        bal = await arena.ledger.current_balance(session, caller.user_id)
    return MonthlyGrantResult(granted=granted, balance=bal)


@router.get("/wallet/leaderboard", response_model=list[LeaderboardRow])
async def gp_leaderboard(
    limit: int = Query(default=10, ge=1, le=100),
    arena: ArenaEngine = Depends(get_arena),
    caller: Caller = Depends(get_caller),
):
    async with arena.sessionmaker() as session:
        rows = await arena.ledger.top_balances(session, limit=limit)
    return [
        LeaderboardRow(rank=i, user_id=a.user_id, username=a.username, balance=a.balance)
        for i, a in enumerate(rows, start=1)
    ]
