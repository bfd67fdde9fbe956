from __future__ import annotations
from dataclasses import dataclass
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt

from arena.engine import ArenaEngine
from arena.security import decode_token

security = HTTPBearer()


@dataclass(frozen=True)
class Caller:
    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_arena(request: Request) -> ArenaEngine:
    return request.app.state.arena


async def get_caller(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Caller:
    try:
        data = decode_token(credentials.credentials)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if data.get("type") != "access":
        raise HTTPException(status_code=401, detail="Wrong token type")
    sub = data.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Token has no subject")
    return Caller(user_id=str(sub), role=str(data.get("role") or "user"))


async def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail="Admin only")
    return caller
