from __future__ import annotations
import math
from typing import Any
import httpx
import structlog

from arena.errors import SourceUnavailable
from arena.services.scores import LeaderboardEntry

log = structlog.get_logger()


def _parse_score(raw: Any) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def _parse_entry(row: dict[str, Any]) -> LeaderboardEntry:
    user = row.get("User") or row.get("user") or ""
    raw = row.get("Score", row.get("score", row.get("Value")))
    value = _parse_score(raw)
    formatted = row.get("FormattedScore") or row.get("formattedScore") or ("" if value is None else str(raw))
    try:
        rank = int(row.get("Rank", row.get("rank", 0)) or 0)
    except (TypeError, ValueError):
        rank = 0
    return LeaderboardEntry(user=str(user), raw_score=value, formatted_score=str(formatted), rank=rank)


class RetroAchievementsSource:
    """ScoreSource backed by the RetroAchievements web API (API_GetLeaderboardEntries)."""

    def __init__(
        self,
        base_url: str,
        username: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def get_leaderboard_entries(self, leaderboard_id: str, offset: int, limit: int) -> list[LeaderboardEntry]:
        params = {"i": leaderboard_id, "o": offset, "c": limit, "z": self.username, "y": self.api_key}
        try:
            r = await self._client.get(f"{self.base_url}/API_GetLeaderboardEntries.php", params=params)
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("leaderboard_fetch_failed", leaderboard_id=leaderboard_id, offset=offset, error=str(e))
            raise SourceUnavailable(f"leaderboard {leaderboard_id}: {e}") from e

        rows = data.get("Results") if isinstance(data, dict) else data
        if not isinstance(rows, list):
            log.warning("leaderboard_malformed", leaderboard_id=leaderboard_id, offset=offset)
            raise SourceUnavailable(f"leaderboard {leaderboard_id}: unexpected response shape")
        return [_parse_entry(row) for row in rows if isinstance(row, dict)]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
