import asyncio
from contextlib import suppress
from typing import List

import httpx
import pytest

from courier.client.poller import ConversationPoller, CourierClient, CourierClientError, latest_incoming


def _entry(message_id: str, created_at: str, to_user_id: str = "bob", from_user_id: str = "alice") -> dict:
    return {"_id": message_id, "created_at": created_at, "to_user_id": to_user_id, "from_user_id": from_user_id}


class ScriptedFeed:

    def __init__(self, *snapshots: List[dict]) -> None:
        self._snapshots = list(snapshots)

    async def __call__(self) -> List[dict]:
        if len(self._snapshots) > 1:
            return self._snapshots.pop(0)
        return self._snapshots[0]


def test_latest_incoming_skips_outgoing_previews() -> None:
    conversations = [
        _entry("3", "2026-01-01T12:00:03+00:00", to_user_id="carol", from_user_id="bob"),
        _entry("2", "2026-01-01T12:00:02+00:00"),
    ]

    assert latest_incoming(conversations, "bob")["_id"] == "2"
    assert latest_incoming(conversations, "dave") is None


@pytest.mark.asyncio
async def test_first_poll_only_sets_baseline() -> None:
    poller = ConversationPoller(ScriptedFeed([_entry("1", "2026-01-01T12:00:01+00:00")]), "bob")

    assert await poller.poll_once() is None
    assert poller.last_seen_id == "1"
    assert await poller.poll_once() is None


@pytest.mark.asyncio
async def test_new_incoming_fires_exactly_once() -> None:
    old = _entry("1", "2026-01-01T12:00:01+00:00")
    new = _entry("2", "2026-01-01T12:00:02+00:00")
    poller = ConversationPoller(ScriptedFeed([old], [new, old], [new, old]), "bob")

    await poller.poll_once()
    assert (await poller.poll_once())["_id"] == "2"
    assert await poller.poll_once() is None


@pytest.mark.asyncio
async def test_older_message_resurfacing_does_not_fire() -> None:
    old = _entry("1", "2026-01-01T12:00:01+00:00")
    new = _entry("2", "2026-01-01T12:00:02+00:00")
    # the newest one was hidden, so the older preview comes back
    poller = ConversationPoller(ScriptedFeed([new], [old]), "bob")

    await poller.poll_once()
    assert await poller.poll_once() is None


@pytest.mark.asyncio
async def test_first_message_after_empty_baseline_fires() -> None:
    poller = ConversationPoller(ScriptedFeed([], [_entry("1", "2026-01-01T12:00:01+00:00")]), "bob")

    await poller.poll_once()
    assert (await poller.poll_once())["_id"] == "1"


@pytest.mark.asyncio
async def test_run_survives_failed_polls() -> None:
    calls = []

    async def flaky() -> List[dict]:
        calls.append(1)
        if len(calls) == 2:
            raise httpx.ConnectError("offline")
        if len(calls) < 3:
            return []
        return [_entry("9", "2026-01-01T12:00:09+00:00")]

    seen = []

    async def on_new(entry: dict) -> None:
        seen.append(entry["_id"])

    poller = ConversationPoller(flaky, "bob", interval=0)
    task = asyncio.create_task(poller.run(on_new))
    for _ in range(50):
        await asyncio.sleep(0)
        if seen:
            break
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task

    assert seen == ["9"]


def _transport(routes: dict) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer tok"
        return httpx.Response(200, json=routes[(request.method, request.url.path)])

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_client_unwraps_envelope() -> None:
    transport = _transport({
        ("GET", "/conversations"): {"success": True, "messages": [_entry("1", "t")]},
        ("GET", "/conversations/unread"): {"success": True, "count": 4},
        ("POST", "/messages/send"): {"success": False, "message": "Message must contain text or media"},
    })

    async with CourierClient("http://courier.test", "tok", transport=transport) as client:
        assert [c["_id"] for c in await client.recent_conversations()] == ["1"]
        assert await client.unread_count() == 4
        with pytest.raises(CourierClientError) as exc_info:
            await client.send("alice", text=" ")

    assert exc_info.value.message == "Message must contain text or media"
