from __future__ import annotations
from datetime import datetime, timezone as dt_tz
from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from sqlalchemy.orm import DeclarativeBase


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetimes on every backend.
    SQLite drops tzinfo on the way out; re-attach UTC so comparisons with
    datetime.now(timezone.utc) keep working.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to UTCDateTime")
        return value.astimezone(dt_tz.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt_tz.utc)
        return value.astimezone(dt_tz.utc)


class Base(DeclarativeBase):
    type_annotation_map = {datetime: UTCDateTime}


def make_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    # Plain sqlite URLs (local dev) go through the async driver
    if database_url.startswith("sqlite:///"):
        database_url = database_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return create_async_engine(database_url, future=True, echo=echo)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


def is_postgres(session: AsyncSession) -> bool:
    return session.bind is not None and session.bind.dialect.name == "postgresql"
