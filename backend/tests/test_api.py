import httpx
from httpx import AsyncClient
import pytest
from arena.main import create_app
from arena.routes.admin import get_queue
from arena.security import make_access_token


def _hdrs(user_id: str, role: str = "user") -> dict[str, str]:
    return {"Authorization": f"Bearer {make_access_token(user_id, role=role)}"}


ADMIN = _hdrs("ops", role="admin")


class FakeJob:
    id = "job-1"


class FakeQueue:
    def __init__(self):
        self.enqueued = []

    def enqueue(self, fn, *args, **kwargs):
        self.enqueued.append((fn, args, kwargs))
        return FakeJob()


@pytest.fixture
def app(arena):
    return create_app(arena)


async def _client(app) -> AsyncClient:
    return AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


async def _register(ac: AsyncClient, user_id: str, username: str, balance: int = 1000):
    r = await ac.post("/accounts", headers=ADMIN, json={"user_id": user_id, "username": username, "opening_balance": balance})
    assert r.status_code == 201, r.text
    return r.json()


def _direct(opponent: str, wager: int = 100) -> dict:
    return {
        "type": "direct",
        "opponent_id": opponent,
        "game_id": 1446,
        "leaderboard_id": "lb-1",
        "title": "Sonic 2 Emerald Hill",
        "wager": wager,
        "duration_hours": 24,
    }


@pytest.mark.asyncio
async def test_full_challenge_flow_over_http(app):
    async with await _client(app) as ac:
        await _register(ac, "alice", "Alice")
        await _register(ac, "bob", "Bob")
        await _register(ac, "carol", "Carol")

        r = await ac.post("/challenges", headers=_hdrs("alice"), json=_direct("bob"))
        assert r.status_code == 201, r.text
        ch = r.json()
        assert ch["status"] == "pending" and ch["wager_pool"] == 100

        r = await ac.post(f"/challenges/{ch['id']}/accept", headers=_hdrs("bob"))
        assert r.status_code == 200, r.text
        assert r.json()["status"] == "active"

        r = await ac.post(f"/challenges/{ch['id']}/bets", headers=_hdrs("carol"), json={"target_id": "bob", "amount": 50})
        assert r.status_code == 201, r.text
        assert r.json()["amount"] == 50

        r = await ac.get(f"/challenges/{ch['id']}/betting", headers=_hdrs("carol"))
        assert r.status_code == 200
        assert r.json()["by_target"] == {"alice": 0, "bob": 50}
        assert r.json()["betting_open"] is True

        r = await ac.post(f"/admin/challenges/{ch['id']}/winner", headers=ADMIN, json={"winner_id": "bob"})
        assert r.status_code == 200, r.text
        done = r.json()
        assert done["status"] == "completed" and done["outcome"] == "winner" and done["winner_id"] == "bob"
        assert done["bets"][0]["payout"] == 75

        r = await ac.get("/wallet", headers=_hdrs("carol"))
        assert r.status_code == 200
        wallet = r.json()
        assert wallet["balance"] == 1025
        assert [e["reason"] for e in wallet["entries"]][:2] == ["bet_payout", "bet_stake"]

        r = await ac.get("/wallet", headers=_hdrs("bob"))
        assert r.json()["balance"] == 1100

        r = await ac.get("/challenges?mine=1", headers=_hdrs("carol"))
        assert [c["id"] for c in r.json()] == [ch["id"]]
        r = await ac.get("/challenges?status=completed", headers=_hdrs("alice"))
        assert len(r.json()) == 1


@pytest.mark.asyncio
async def test_engine_errors_map_to_http_status(app):
    async with await _client(app) as ac:
        await _register(ac, "alice", "Alice", balance=50)
        await _register(ac, "bob", "Bob")

        r = await ac.post("/challenges", headers=_hdrs("alice"), json=_direct("bob", wager=5))
        assert r.status_code == 422 and r.json()["code"] == "invalid_wager"

        r = await ac.post("/challenges", headers=_hdrs("alice"), json=_direct("bob", wager=100))
        assert r.status_code == 402 and r.json()["code"] == "insufficient_funds"

        r = await ac.post("/challenges/00000000-0000-0000-0000-000000000000/accept", headers=_hdrs("bob"))
        assert r.status_code == 404

        r = await ac.post("/challenges", headers=_hdrs("bob"), json=_direct("alice", wager=10))
        assert r.status_code == 201
        cid = r.json()["id"]
        r = await ac.post(f"/challenges/{cid}/accept", headers=_hdrs("bob"))
        assert r.status_code == 409 and r.json()["code"] == "wrong_participant"

        r = await ac.get("/wallet", headers=_hdrs("ghost"))
        assert r.status_code == 404


@pytest.mark.asyncio
async def test_auth_required_and_admin_only(app):
    async with await _client(app) as ac:
        r = await ac.get("/wallet")
        assert r.status_code in (401, 403)
        r = await ac.get("/wallet", headers={"Authorization": "Bearer not-a-jwt"})
        assert r.status_code == 401
        r = await ac.post("/admin/accounts/alice/adjust", headers=_hdrs("alice"), json={"delta": 10, "note": "x"})
        assert r.status_code == 403
        r = await ac.post("/accounts", headers=_hdrs("alice"), json={"user_id": "bob", "username": "Bob"})
        assert r.status_code == 403
        r = await ac.post("/accounts", headers=_hdrs("alice"), json={"user_id": "alice", "username": "Alice", "opening_balance": 10})
        assert r.status_code == 403


@pytest.mark.asyncio
async def test_self_registration_monthly_grant_and_leaderboard(app):
    async with await _client(app) as ac:
        r = await ac.post("/accounts", headers=_hdrs("dana"), json={"user_id": "dana", "username": "Dana"})
        assert r.status_code == 201 and r.json()["balance"] == 0

        r = await ac.post("/wallet/monthly", headers=_hdrs("dana"))
        assert r.json() == {"granted": True, "balance": 1000}
        r = await ac.post("/wallet/monthly", headers=_hdrs("dana"))
        assert r.json() == {"granted": False, "balance": 1000}

        await _register(ac, "eve", "Eve", balance=3000)
        r = await ac.post("/admin/accounts/dana/adjust", headers=ADMIN, json={"delta": -200, "note": "duplicate grant"})
        assert r.status_code == 200 and r.json()["delta"] == -200

        r = await ac.get("/wallet/leaderboard", headers=_hdrs("dana"))
        rows = r.json()
        assert [(row["rank"], row["user_id"], row["balance"]) for row in rows] == [(1, "eve", 3000), (2, "dana", 800)]


@pytest.mark.asyncio
async def test_admin_enqueues_sweep(app):
    queue = FakeQueue()
    app.dependency_overrides[get_queue] = lambda: queue
    async with await _client(app) as ac:
        r = await ac.post("/admin/sweeps", headers=ADMIN)
        assert r.status_code == 202
        assert r.json() == {"job_id": "job-1", "queued": True}
    (fn, _args, kwargs) = queue.enqueued[0]
    assert fn.__name__ == "run_sweeps"
    assert kwargs["job_timeout"] == 300
