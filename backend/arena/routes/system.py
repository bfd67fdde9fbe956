from __future__ import annotations
from fastapi import APIRouter, Request
from datetime import datetime, timezone
from sqlalchemy import text
from arena.config import settings

router = APIRouter()

@router.get("/health")
async def health(request: Request):
    arena = getattr(request.app.state, "arena", None)
    db_ok = False
    if arena is not None:
        try:
            async with arena.sessionmaker() as session:
                await session.execute(text("SELECT 1"))
            db_ok = True
        except Exception:
            db_ok = False
    return {
        "status": "ok",
        "env": settings.environment,
        "db": "ok" if db_ok else "unavailable",
        "time": datetime.now(timezone.utc).isoformat(),
        "request_id": request.headers.get("x-request-id") or request.state.request_id,
    }

@router.get("/version")
async def version():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "git_sha": settings.git_sha,
        "build": "docker",
    }
