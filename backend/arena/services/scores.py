from __future__ import annotations
from dataclasses import dataclass
from typing import Protocol, Union
import structlog

from arena.models.challenge import Challenge, ScoreDirection

log = structlog.get_logger()


@dataclass(frozen=True)
class LeaderboardEntry:
    user: str
    raw_score: float | None  # None when the source row carries no usable score
    formatted_score: str
    rank: int


class ScoreSource(Protocol):
    """Paged access to an external leaderboard. Raises SourceUnavailable on failure."""

    async def get_leaderboard_entries(self, leaderboard_id: str, offset: int, limit: int) -> list[LeaderboardEntry]: ...


@dataclass(frozen=True)
class ParticipantScore:
    value: float  # normalized: higher is always better
    raw_score: float
    formatted_score: str
    rank: int


@dataclass(frozen=True)
class NoScore:
    formatted_score: str = "No score yet"


NO_SCORE = NoScore()

ScoreResult = Union[ParticipantScore, NoScore]


def normalize(raw: float, direction: ScoreDirection) -> float:
    """Map a raw leaderboard value so that a larger result always wins."""
    return -raw if direction == ScoreDirection.LOWER else raw


class ScoreResolver:
    """
    Fetch a challenge leaderboard page by page until every participant has been
    seen or `max_entries` rows were read. Usernames match case-insensitively.
    Source failures propagate unchanged so the scheduler can retry.
    """

    def __init__(self, source: ScoreSource, page_size: int = 500, max_entries: int = 1000):
        self.source = source
        self.page_size = page_size
        self.max_entries = max_entries

    async def fetch(self, leaderboard_id: str, usernames: list[str]) -> dict[str, LeaderboardEntry]:
        wanted = {u.strip().lower() for u in usernames}
        found: dict[str, LeaderboardEntry] = {}
        offset = 0
        while wanted - found.keys() and offset < self.max_entries:
            limit = min(self.page_size, self.max_entries - offset)
            page = await self.source.get_leaderboard_entries(leaderboard_id, offset, limit)
            offset += len(page)
            for entry in page:
                key = entry.user.strip().lower()
                if key in wanted and key not in found:
                    found[key] = entry
            if len(page) < limit:
                break
        log.info("leaderboard_scanned", leaderboard_id=leaderboard_id, rows_read=offset, matched=len(found), wanted=len(wanted))
        return found

    async def resolve(self, challenge: Challenge) -> dict[str, ScoreResult]:
        """Return participant user id -> ParticipantScore | NO_SCORE."""
        names = {p.user_id: p.display_name for p in challenge.participants}
        found = await self.fetch(challenge.leaderboard_id, list(names.values()))
        out: dict[str, ScoreResult] = {}
        for user_id, name in names.items():
            entry = found.get(name.strip().lower())
            if entry is None or entry.raw_score is None:
                out[user_id] = NO_SCORE
                continue
            out[user_id] = ParticipantScore(
                value=normalize(entry.raw_score, challenge.score_direction),
                raw_score=entry.raw_score,
                formatted_score=entry.formatted_score,
                rank=entry.rank,
            )
        return out
