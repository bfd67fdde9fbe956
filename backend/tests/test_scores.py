from __future__ import annotations
import httpx
import pytest
from arena.errors import SourceUnavailable
from arena.models.challenge import Challenge, Participant, ScoreDirection
from arena.services.retroachievements import RetroAchievementsSource
from arena.services import scores as scores_module
from arena.services.payout import PayoutEngine, Resolution
from arena.services.scores import NO_SCORE, ParticipantScore, ScoreResolver
from conftest import FakeSource


def _challenge(names: list[str], direction=ScoreDirection.HIGHER) -> Challenge:
    return Challenge(
        leaderboard_id="lb-9",
        score_direction=direction,
        participants=[Participant(user_id=f"id-{n.lower()}", display_name=n, wager_paid=True) for n in names],
    )


def _board(n: int, extra: list[tuple[str, float]] = ()) -> list[tuple[str, float]]:
    return [(f"filler{i}", 1000.0 - i) for i in range(n)] + list(extra)


@pytest.mark.asyncio
async def test_resolve_matches_case_insensitively():
    src = FakeSource()
    src.set_board("lb-9", [("ALICE", 500.0), ("bob", 300.0)])
    scores = await ScoreResolver(src).resolve(_challenge(["alice", "Bob"]))
    assert scores["id-alice"] == ParticipantScore(value=500.0, raw_score=500.0, formatted_score="500.0", rank=1)
    assert scores["id-bob"].value == 300.0


@pytest.mark.asyncio
async def test_missing_participant_gets_no_score():
    src = FakeSource()
    src.set_board("lb-9", [("Alice", 500.0)])
    scores = await ScoreResolver(src).resolve(_challenge(["Alice", "Bob"]))
    assert scores["id-bob"] is NO_SCORE


@pytest.mark.asyncio
async def test_lower_is_better_negates():
    src = FakeSource()
    src.set_board("lb-9", [("Alice", 61.2), ("Bob", 59.8)])
    scores = await ScoreResolver(src).resolve(_challenge(["Alice", "Bob"], ScoreDirection.LOWER))
    assert scores["id-bob"].value > scores["id-alice"].value
    assert scores["id-bob"].raw_score == 59.8


@pytest.mark.asyncio
async def test_pages_until_everyone_found():
    src = FakeSource()
    src.set_board("lb-9", _board(250, [("Alice", 1.0)]) + _board(500))
    scores = await ScoreResolver(src, page_size=100, max_entries=1000).resolve(_challenge(["Alice"]))
    assert isinstance(scores["id-alice"], ParticipantScore)
    # Alice sits on the third page; no fourth request
    assert [c[1] for c in src.calls] == [0, 100, 200]


@pytest.mark.asyncio
async def test_stops_on_short_page():
    src = FakeSource()
    src.set_board("lb-9", _board(130))
    scores = await ScoreResolver(src, page_size=100).resolve(_challenge(["Alice"]))
    assert scores["id-alice"] is NO_SCORE
    assert len(src.calls) == 2


@pytest.mark.asyncio
async def test_respects_max_entries():
    src = FakeSource()
    src.set_board("lb-9", _board(2000, [("Alice", 1.0)]))
    scores = await ScoreResolver(src, page_size=500, max_entries=1000).resolve(_challenge(["Alice"]))
    assert scores["id-alice"] is NO_SCORE
    assert [c[1:] for c in src.calls] == [(0, 500), (500, 500)]


@pytest.mark.asyncio
async def test_source_failure_propagates():
    src = FakeSource()
    src.fail = True
    with pytest.raises(SourceUnavailable):
        await ScoreResolver(src).resolve(_challenge(["Alice"]))


# ---------- RetroAchievements adapter ----------

def _ra(handler) -> RetroAchievementsSource:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RetroAchievementsSource("https://ra.example/API/", "botuser", "secret", client=client)


@pytest.mark.asyncio
async def test_ra_source_parses_results_and_sends_params():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"Count": 2, "Total": 2, "Results": [
            {"User": "Alice", "Score": 12500, "FormattedScore": "12,500", "Rank": 1},
            {"User": "Bob", "Score": "9800", "FormattedScore": "9,800", "Rank": 2},
        ]})

    rows = await _ra(handler).get_leaderboard_entries("777", 0, 500)
    assert seen["path"] == "/API/API_GetLeaderboardEntries.php"
    assert seen["params"] == {"i": "777", "o": "0", "c": "500", "z": "botuser", "y": "secret"}
    assert [(r.user, r.raw_score, r.formatted_score, r.rank) for r in rows] == [
        ("Alice", 12500.0, "12,500", 1),
        ("Bob", 9800.0, "9,800", 2),
    ]


@pytest.mark.asyncio
async def test_ra_source_server_error_is_unavailable():
    src = _ra(lambda request: httpx.Response(502, text="bad gateway"))
    with pytest.raises(SourceUnavailable):
        await src.get_leaderboard_entries("777", 0, 500)


@pytest.mark.asyncio
async def test_ra_source_malformed_payload_is_unavailable():
    src = _ra(lambda request: httpx.Response(200, json={"Results": "nope"}))
    with pytest.raises(SourceUnavailable):
        await src.get_leaderboard_entries("777", 0, 500)
    src = _ra(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(SourceUnavailable):
        await src.get_leaderboard_entries("777", 0, 500)


@pytest.mark.asyncio
async def test_ra_source_transport_error_is_unavailable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(SourceUnavailable):
        await _ra(handler).get_leaderboard_entries("777", 0, 500)


@pytest.mark.asyncio
async def test_ra_row_without_usable_score_is_no_score():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"Results": [
            {"User": "Bob", "Score": 5800, "FormattedScore": "0:58.00", "Rank": 1},
            {"User": "Alice", "Score": None, "Rank": 2},
            {"User": "Carol", "Score": "", "Rank": 3},
            {"User": "Dave", "Score": "DNF", "Rank": 4},
        ]})

    ch = _challenge(["Alice", "Bob", "Carol", "Dave"], ScoreDirection.LOWER)
    scores = await ScoreResolver(_ra(handler)).resolve(ch)
    assert scores["id-alice"] is NO_SCORE
    assert scores["id-carol"] is NO_SCORE
    assert scores["id-dave"] is NO_SCORE
    assert scores["id-bob"].raw_score == 5800.0
    assert PayoutEngine(50).determine_outcome(scores) == Resolution.winner("id-bob")


class _LogRecorder:
    def __init__(self):
        self.events = []

    def info(self, event, **kw):
        self.events.append((event, kw))


@pytest.mark.asyncio
async def test_scan_log_counts_rows_of_a_short_first_page(monkeypatch):
    recorder = _LogRecorder()
    monkeypatch.setattr(scores_module, "log", recorder)
    src = FakeSource()
    src.set_board("lb-9", [("Alice", 10.0), ("Bob", 9.0), ("Zed", 1.0)])
    await ScoreResolver(src, page_size=100).resolve(_challenge(["Alice", "Bob"]))
    (event, kw), = recorder.events
    assert event == "leaderboard_scanned"
    assert kw["rows_read"] == 3 and kw["matched"] == 2
