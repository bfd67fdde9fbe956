from __future__ import annotations
import enum
from datetime import datetime
from typing import Any, Protocol
import httpx
import structlog

from arena.models.challenge import Challenge
from arena.schemas.challenge import ChallengePublic
from arena.services.time_windows import time_remaining, utcnow

log = structlog.get_logger()


class ChallengeEvent(str, enum.Enum):
    CREATED = "challenge_created"
    ACCEPTED = "challenge_accepted"
    JOINED = "challenge_joined"
    DECLINED = "challenge_declined"
    CANCELLED = "challenge_cancelled"
    COMPLETED = "challenge_completed"
    BET_PLACED = "bet_placed"


class NotificationPort(Protocol):
    async def announce(self, event: ChallengeEvent, challenge: Challenge, extra: dict[str, Any] | None = None) -> None: ...


def event_payload(
    event: ChallengeEvent,
    challenge: Challenge,
    extra: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    return {
        "event": event.value,
        "challenge": ChallengePublic.model_validate(challenge).model_dump(mode="json"),
        "ends_in": time_remaining(challenge.ends_at, now or utcnow()),
        "extra": extra or {},
    }


class LoggingNotifier:
    async def announce(self, event: ChallengeEvent, challenge: Challenge, extra: dict[str, Any] | None = None) -> None:
        log.info(
            "challenge_event",
            notify_event=event.value,
            challenge_id=str(challenge.id),
            status=challenge.status.value,
            total_pool=challenge.total_pool,
            **(extra or {}),
        )


class WebhookNotifier:
    """POSTs every event as JSON to the presentation layer."""

    def __init__(self, url: str, *, timeout: float = 5.0, client: httpx.AsyncClient | None = None):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def announce(self, event: ChallengeEvent, challenge: Challenge, extra: dict[str, Any] | None = None) -> None:
        r = await self._client.post(self.url, json=event_payload(event, challenge, extra))
        r.raise_for_status()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class FanoutNotifier:
    def __init__(self, *notifiers: NotificationPort):
        self.notifiers = list(notifiers)

    async def announce(self, event: ChallengeEvent, challenge: Challenge, extra: dict[str, Any] | None = None) -> None:
        for n in self.notifiers:
            await safe_announce(n, event, challenge, extra)

    async def aclose(self) -> None:
        for n in self.notifiers:
            close = getattr(n, "aclose", None)
            if close is not None:
                await close()


async def safe_announce(
    notifier: NotificationPort | None,
    event: ChallengeEvent,
    challenge: Challenge,
    extra: dict[str, Any] | None = None,
) -> None:
    """Deliver after commit. A failed delivery is logged and never reaches the caller."""
    if notifier is None:
        return
    try:
        await notifier.announce(event, challenge, extra)
    except Exception as e:
        log.warning("notify_failed", notify_event=event.value, challenge_id=str(challenge.id), error=str(e))
