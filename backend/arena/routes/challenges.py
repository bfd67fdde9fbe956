from __future__ import annotations
from fastapi import APIRouter, Depends, Query

from arena.auth_deps import Caller, get_arena, get_caller
from arena.engine import ArenaEngine
from arena.models.challenge import Challenge, ChallengeStatus
from arena.schemas.challenge import BetCreate, BetPublic, BettingSummaryPublic, ChallengeCreate, ChallengePublic

router = APIRouter(prefix="/challenges", tags=["challenges"])


def hydrate_public(ch: Challenge) -> ChallengePublic:
    return ChallengePublic.model_validate(ch)


@router.post("", response_model=ChallengePublic, status_code=201)
async def create_challenge(
    payload: ChallengeCreate,
    arena: ArenaEngine = Depends(get_arena),
    caller: Caller = Depends(get_caller),
):
    ch = await arena.store.create(caller.user_id, payload)
    return hydrate_public(ch)


@router.get("", response_model=list[ChallengePublic])
async def list_challenges(
    status: ChallengeStatus | None = None,
    mine: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    arena: ArenaEngine = Depends(get_arena),
    caller: Caller = Depends(get_caller),
):
    rows = await arena.store.list_challenges(status=status, user_id=caller.user_id if mine else None, limit=limit)
    return [hydrate_public(c) for c in rows]


@router.get("/{challenge_id}", response_model=ChallengePublic)
async def get_challenge(challenge_id: str, arena: ArenaEngine = Depends(get_arena), caller: Caller = Depends(get_caller)):
    return hydrate_public(await arena.store.get(challenge_id))


@router.post("/{challenge_id}/accept", response_model=ChallengePublic)
async def accept_challenge(challenge_id: str, arena: ArenaEngine = Depends(get_arena), caller: Caller = Depends(get_caller)):
    return hydrate_public(await arena.store.accept(challenge_id, caller.user_id))


@router.post("/{challenge_id}/join", response_model=ChallengePublic)
async def join_challenge(challenge_id: str, arena: ArenaEngine = Depends(get_arena), caller: Caller = Depends(get_caller)):
    return hydrate_public(await arena.store.join(challenge_id, caller.user_id))


@router.post("/{challenge_id}/decline", response_model=ChallengePublic)
async def decline_challenge(challenge_id: str, arena: ArenaEngine = Depends(get_arena), caller: Caller = Depends(get_caller)):
    return hydrate_public(await arena.store.decline(challenge_id, caller.user_id))


@router.post("/{challenge_id}/cancel", response_model=ChallengePublic)
async def cancel_challenge(challenge_id: str, arena: ArenaEngine = Depends(get_arena), caller: Caller = Depends(get_caller)):
    return hydrate_public(await arena.store.cancel(challenge_id, caller.user_id))


@router.post("/{challenge_id}/bets", response_model=BetPublic, status_code=201)
async def place_bet(
    challenge_id: str,
    payload: BetCreate,
    arena: ArenaEngine = Depends(get_arena),
    caller: Caller = Depends(get_caller),
):
    bet = await arena.store.place_bet(challenge_id, caller.user_id, payload.target_id, payload.amount)
    return BetPublic.model_validate(bet)


@router.get("/{challenge_id}/betting", response_model=BettingSummaryPublic)
async def get_betting(challenge_id: str, arena: ArenaEngine = Depends(get_arena), caller: Caller = Depends(get_caller)):
    return BettingSummaryPublic.model_validate(await arena.store.betting_summary(challenge_id))
