from __future__ import annotations
import json
import httpx
import pytest
from arena.models.challenge import Outcome
from arena.services.notifications import (
    ChallengeEvent, FanoutNotifier, LoggingNotifier, WebhookNotifier, event_payload, safe_announce,
)
from conftest import T0, at, direct_spec, fund


class Boom:
    async def announce(self, event, challenge, extra=None):
        raise RuntimeError("chat layer down")


@pytest.mark.asyncio
async def test_webhook_posts_challenge_payload(arena):
    await fund(arena, "alice")
    await fund(arena, "bob")
    ch = await arena.store.create("alice", direct_spec("bob"), now=T0)
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(204)

    hook = WebhookNotifier("https://chat.example/hooks/arena",
                           client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    await hook.announce(ChallengeEvent.CREATED, ch, {"note": "hi"})
    (body,) = seen
    assert body["event"] == "challenge_created"
    assert body["extra"] == {"note": "hi"}
    assert body["challenge"]["id"] == str(ch.id)
    assert body["challenge"]["status"] == "pending"
    assert body["challenge"]["wager_pool"] == 100
    assert body["challenge"]["participants"][0]["user_id"] == "alice"


@pytest.mark.asyncio
async def test_webhook_error_is_raised_but_safe_announce_swallows(arena):
    await fund(arena, "alice")
    await fund(arena, "bob")
    ch = await arena.store.create("alice", direct_spec("bob"), now=T0)
    hook = WebhookNotifier("https://chat.example/hooks/arena",
                           client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500))))
    with pytest.raises(httpx.HTTPStatusError):
        await hook.announce(ChallengeEvent.CREATED, ch)
    await safe_announce(hook, ChallengeEvent.CREATED, ch)
    await safe_announce(None, ChallengeEvent.CREATED, ch)


@pytest.mark.asyncio
async def test_fanout_keeps_going_after_failure(arena, notifier):
    await fund(arena, "alice")
    await fund(arena, "bob")
    ch = await arena.store.create("alice", direct_spec("bob"), now=T0)
    fan = FanoutNotifier(Boom(), LoggingNotifier(), notifier)
    before = len(notifier.events)
    await fan.announce(ChallengeEvent.DECLINED, ch, {"reason": "expired"})
    assert len(notifier.events) == before + 1
    assert notifier.events[-1][0] == ChallengeEvent.DECLINED


@pytest.mark.asyncio
async def test_failed_notifier_never_blocks_settlement(settings, source):
    from arena.engine import ArenaEngine
    eng = ArenaEngine.from_settings(settings, source=source, notifier=Boom())
    await eng.create_schema()
    try:
        await fund(eng, "alice")
        await fund(eng, "bob")
        source.set_board("lb-1", [("Alice", 2.0), ("Bob", 1.0)])
        ch = await eng.store.create("alice", direct_spec("bob"), now=T0)
        await eng.store.accept(ch.id, "bob", now=at(1))
        report = await eng.scheduler.run_once(at(25))
        assert report.completed == 1
        assert (await eng.store.get(ch.id)).outcome == Outcome.WINNER
    finally:
        await eng.aclose()


@pytest.mark.asyncio
async def test_event_payload_shape(arena):
    await fund(arena, "alice")
    await fund(arena, "bob")
    ch = await arena.store.create("alice", direct_spec("bob"), now=T0)
    payload = event_payload(ChallengeEvent.BET_PLACED, ch, now=T0)
    assert set(payload) == {"event", "challenge", "ends_in", "extra"}
    assert payload["challenge"]["respond_by"].startswith("2025-03-02T12:00:00")
    assert payload["ends_in"] == "Not started"

    ch = await arena.store.accept(ch.id, "bob", now=at(1))
    assert event_payload(ChallengeEvent.ACCEPTED, ch, now=at(1))["ends_in"] == "1d 0h"
    assert event_payload(ChallengeEvent.ACCEPTED, ch, now=at(24, minutes=30))["ends_in"] == "30m"
