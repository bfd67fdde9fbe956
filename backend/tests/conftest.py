from __future__ import annotations
from datetime import datetime, timedelta, timezone
import pytest
import pytest_asyncio

from arena.config import Settings
from arena.engine import ArenaEngine
from arena.errors import SourceUnavailable
from arena.models.challenge import ChallengeType
from arena.schemas.challenge import ChallengeCreate
from arena.services.scores import LeaderboardEntry

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def at(hours: float = 0, **kw) -> datetime:
    return T0 + timedelta(hours=hours, **kw)


class FakeSource:
    """In-memory leaderboard keyed by leaderboard id."""

    def __init__(self):
        self.boards: dict[str, list[LeaderboardEntry]] = {}
        self.fail = False
        self.calls: list[tuple[str, int, int]] = []

    def set_board(self, leaderboard_id: str, rows: list[tuple[str, float]]):
        self.boards[leaderboard_id] = [
            LeaderboardEntry(user=u, raw_score=s, formatted_score=str(s), rank=i)
            for i, (u, s) in enumerate(rows, start=1)
        ]

    async def get_leaderboard_entries(self, leaderboard_id: str, offset: int, limit: int) -> list[LeaderboardEntry]:
        self.calls.append((leaderboard_id, offset, limit))
        if self.fail:
            raise SourceUnavailable("leaderboard down")
        return self.boards.get(leaderboard_id, [])[offset:offset + limit]


class RecordingNotifier:
    def __init__(self):
        self.events = []

    async def announce(self, event, challenge, extra=None):
        self.events.append((event, challenge.id, dict(extra or {})))

    def names(self) -> list[str]:
        return [e.value for e, _cid, _x in self.events]


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        environment="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'arena.db'}",
        scheduler_enabled=False,
        notify_webhook_url="",
    )


@pytest_asyncio.fixture
async def arena(settings, source, notifier):
    eng = ArenaEngine.from_settings(settings, source=source, notifier=notifier)
    await eng.create_schema()
    yield eng
    await eng.aclose()


async def fund(arena: ArenaEngine, user_id: str, username: str | None = None, balance: int = 1000):
    async with arena.sessionmaker() as session:
        async with session.begin():
            await arena.ledger.open_account(session, user_id, username or user_id.capitalize(),
                                            opening_balance=balance, now=T0)


async def balance_of(arena: ArenaEngine, user_id: str) -> int:
    async with arena.sessionmaker() as session:
        return await arena.ledger.current_balance(session, user_id)


async def assert_reconciled(arena: ArenaEngine, *user_ids: str):
    async with arena.sessionmaker() as session:
        for uid in user_ids:
            bal, total = await arena.ledger.reconcile(session, uid)
            assert bal == total, f"{uid}: balance {bal} != sum of deltas {total}"


def direct_spec(opponent: str, wager: int = 100, duration_hours: int = 24, **kw) -> ChallengeCreate:
    return ChallengeCreate(
        type=ChallengeType.DIRECT,
        opponent_id=opponent,
        game_id=1446,
        leaderboard_id=kw.pop("leaderboard_id", "lb-1"),
        title=kw.pop("title", "Green Hill Zone speedrun"),
        wager=wager,
        duration_hours=duration_hours,
        **kw,
    )


def open_spec(wager: int = 100, duration_hours: int = 24, max_participants: int | None = None, **kw) -> ChallengeCreate:
    return ChallengeCreate(
        type=ChallengeType.OPEN,
        game_id=1446,
        leaderboard_id=kw.pop("leaderboard_id", "lb-1"),
        title=kw.pop("title", "Open high score"),
        wager=wager,
        duration_hours=duration_hours,
        max_participants=max_participants,
        **kw,
    )
