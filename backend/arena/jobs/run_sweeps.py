from __future__ import annotations
import asyncio
from arena.config import settings
from arena.engine import ArenaEngine
from arena.logging_setup import configure_logging


async def _run() -> dict[str, int]:
    engine = ArenaEngine.from_settings(settings)
    try:
        report = await engine.scheduler.run_once()
    finally:
        await engine.aclose()
    return report.as_dict()


def run_sweeps() -> dict[str, int]:
    # RQ entry point (sync); run the async coroutine
    configure_logging(settings.log_level)
    return asyncio.run(_run())
