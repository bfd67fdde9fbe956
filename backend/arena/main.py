from __future__ import annotations
import asyncio
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from arena.config import settings
from arena.engine import ArenaEngine
from arena.errors import ArenaError
from arena.logging_setup import configure_logging
from arena.routes.system import router as system_router
from arena.routes.wallet import router as wallet_router
from arena.routes.challenges import router as challenges_router
from arena.routes.admin import router as admin_router
import structlog

configure_logging(settings.log_level)
log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha)
    owned = getattr(app.state, "arena", None) is None
    if owned:
        app.state.arena = ArenaEngine.from_settings(settings)
    arena: ArenaEngine = app.state.arena

    stop = asyncio.Event()
    task = None
    if settings.scheduler_enabled and owned:
        task = asyncio.create_task(arena.scheduler.run_forever(stop))
    yield
    # Shutdown
    stop.set()
    if task is not None:
        await task
    if owned:
        await arena.aclose()
        app.state.arena = None
    log.info("shutdown")


async def arena_error_handler(request: Request, exc: ArenaError):
    log.info("request_rejected", path=request.url.path, code=exc.code, status=exc.status_code, detail=str(exc))
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc), "code": exc.code})


def create_app(arena: ArenaEngine | None = None) -> FastAPI:
    app = FastAPI(
        title=f"{settings.app_display_name} API",
        version=settings.app_version,
        lifespan=lifespan,
        description=f"{settings.app_display_name} API for GP wagers, side bets and automatic settlement",
    )
    app.state.arena = arena

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(system_router)
    app.include_router(wallet_router)
    app.include_router(challenges_router)
    app.include_router(admin_router)
    app.add_exception_handler(ArenaError, arena_error_handler)

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = rid
        structlog.contextvars.bind_contextvars(request_id=rid)
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        structlog.contextvars.clear_contextvars()
        return response

    return app


app = create_app()
