from __future__ import annotations
from dataclasses import dataclass
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
import structlog

from arena.config import Settings, settings as default_settings
from arena.db import Base, make_engine, make_sessionmaker
from arena.services.challenges import ChallengeStore
from arena.services.ledger import Ledger
from arena.services.notifications import FanoutNotifier, LoggingNotifier, NotificationPort, WebhookNotifier
from arena.services.payout import PayoutEngine
from arena.services.retroachievements import RetroAchievementsSource
from arena.services.scheduler import LifecycleScheduler
from arena.services.scores import ScoreResolver, ScoreSource

log = structlog.get_logger()


def default_notifier(settings: Settings) -> NotificationPort:
    notifiers: list[NotificationPort] = [LoggingNotifier()]
    if settings.notify_webhook_url:
        notifiers.append(WebhookNotifier(settings.notify_webhook_url, timeout=settings.notify_timeout_seconds))
    return FanoutNotifier(*notifiers)


@dataclass
class ArenaEngine:
    settings: Settings
    db_engine: AsyncEngine
    sessionmaker: async_sessionmaker[AsyncSession]
    ledger: Ledger
    store: ChallengeStore
    resolver: ScoreResolver
    payout: PayoutEngine
    scheduler: LifecycleScheduler
    notifier: NotificationPort
    source: ScoreSource

    @classmethod
    def from_settings(
        cls,
        settings: Settings = default_settings,
        *,
        db_engine: AsyncEngine | None = None,
        source: ScoreSource | None = None,
        notifier: NotificationPort | None = None,
    ) -> ArenaEngine:
        db_engine = db_engine or make_engine(settings.database_url)
        sessionmaker = make_sessionmaker(db_engine)
        source = source or RetroAchievementsSource(
            settings.ra_base_url, settings.ra_username, settings.ra_api_key, timeout=settings.ra_timeout_seconds,
        )
        notifier = notifier or default_notifier(settings)
        ledger = Ledger(settings)
        store = ChallengeStore(sessionmaker, ledger, settings=settings, notifier=notifier)
        resolver = ScoreResolver(source, settings.leaderboard_page_size, settings.leaderboard_max_entries)
        payout = PayoutEngine(settings.house_guarantee_pct)
        scheduler = LifecycleScheduler(store, resolver, payout, ledger, settings=settings, notifier=notifier)
        return cls(
            settings=settings,
            db_engine=db_engine,
            sessionmaker=sessionmaker,
            ledger=ledger,
            store=store,
            resolver=resolver,
            payout=payout,
            scheduler=scheduler,
            notifier=notifier,
            source=source,
        )

    async def create_schema(self) -> None:
        """Create tables directly (SQLite dev/tests). Production uses Alembic."""
        async with self.db_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def aclose(self) -> None:
        for part in (self.source, self.notifier):
            close = getattr(part, "aclose", None)
            if close is not None:
                await close()
        await self.db_engine.dispose()
        log.info("engine_closed")
