from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException
from redis import Redis
from rq import Queue
import structlog

from arena.auth_deps import Caller, get_arena, require_admin
from arena.config import settings
from arena.engine import ArenaEngine
from arena.jobs.run_sweeps import run_sweeps
from arena.schemas.challenge import ChallengePublic, WinnerDeclaration
from arena.schemas.ledger import AdjustRequest, LedgerEntryPublic

router = APIRouter(prefix="/admin", tags=["admin"])
log = structlog.get_logger()

_queue: Queue | None = None


def get_queue() -> Queue:
    # RQ queue (lazy single instance)
    global _queue
    if _queue is None:
        _queue = Queue("default", connection=Redis.from_url(settings.redis_url))
    return _queue


@router.post("/challenges/{challenge_id}/winner", response_model=ChallengePublic)
async def declare_winner(
    challenge_id: str,
    payload: WinnerDeclaration,
    arena: ArenaEngine = Depends(get_arena),
    admin: Caller = Depends(require_admin),
):
    ch = await arena.scheduler.declare_winner(challenge_id, payload.winner_id)
    if ch is None:
        # Already completed: settlement is never repeated
        ch = await arena.store.get(challenge_id)
    log.info("winner_declared", challenge_id=challenge_id, winner_id=payload.winner_id, admin_id=admin.user_id)
    return ChallengePublic.model_validate(ch)


@router.post("/sweeps", status_code=202)
async def enqueue_sweep(queue: Queue = Depends(get_queue), admin: Caller = Depends(require_admin)):
    try:
        job = queue.enqueue(run_sweeps, job_timeout=300)
    except Exception as e:
        log.warning("sweep_enqueue_failed", error=str(e))
        raise HTTPException(status_code=503, detail="Job queue unavailable")
    return {"job_id": job.id, "queued": True}


@router.post("/accounts/{user_id}/adjust", response_model=LedgerEntryPublic)
async def adjust_account(
    user_id: str,
    payload: AdjustRequest,
    arena: ArenaEngine = Depends(get_arena),
    admin: Caller = Depends(require_admin),
):
    if payload.delta == 0:
        raise HTTPException(status_code=422, detail="delta must be non-zero")
    async with arena.sessionmaker() as session:
        async with session.begin():
            tx = await arena.ledger.adjust(session, user_id, payload.delta, f"{payload.note} (by {admin.user_id})")
        return LedgerEntryPublic.model_validate(tx)
