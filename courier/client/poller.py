"""Polling fallback for clients without a live push channel.

A client that cannot (or does not) hold a stream open re-fetches the
conversation list on a timer and compares the id of the newest *incoming*
preview with the last one it saw. The server orders conversations by
``created_at`` then ``_id``, both descending, so an unchanged ledger always
yields the same newest entry and the comparison neither misses nor repeats.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx


logger = logging.getLogger(__name__)

Conversation = Dict[str, Any]
FetchConversations = Callable[[], Awaitable[List[Conversation]]]
OnNewMessage = Callable[[Conversation], Awaitable[None]]


class CourierClientError(Exception):

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class CourierClient:
    """Minimal async client for the REST envelope."""

    def __init__(self, base_url: str, token: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def __aenter__(self) -> "CourierClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = await self._client.request(method, path, **kwargs)
        response.raise_for_status()
        body = response.json()
        if not body.get("success"):
            raise CourierClientError(body.get("message") or "Request failed")
        return body

    async def recent_conversations(self, limit: Optional[int] = None) -> List[Conversation]:
        params = {"limit": limit} if limit else None
        return (await self._call("GET", "/conversations", params=params))["messages"]

    async def unread_count(self) -> int:
        return (await self._call("GET", "/conversations/unread"))["count"]

    async def send(self, to_user_id: str, text: Optional[str] = None, media: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"to_user_id": to_user_id, "text": text}
        if media:
            payload["media"] = media
        return (await self._call("POST", "/messages/send", json=payload))["message"]

    async def history(self, to_user_id: str) -> List[Dict[str, Any]]:
        return (await self._call("POST", "/messages/history", json={"to_user_id": to_user_id}))["messages"]


def latest_incoming(conversations: List[Conversation], viewer_id: str) -> Optional[Conversation]:
    for entry in conversations:
        if entry.get("to_user_id") == viewer_id:
            return entry
    return None


def _order_key(entry: Conversation) -> tuple:
    # ISO-8601 timestamps in one offset and hex ObjectIds both sort as strings
    return (entry.get("created_at") or "", entry.get("_id") or "")


class ConversationPoller:

    def __init__(self, fetch: FetchConversations, viewer_id: str, interval: float = 2.0) -> None:
        self._fetch = fetch
        self._viewer_id = viewer_id
        self._interval = interval
        self._primed = False
        self._last_key: Optional[tuple] = None
        self.last_seen_id: Optional[str] = None

    async def poll_once(self) -> Optional[Conversation]:
        """Return the newest incoming preview if a newer one appeared since the last poll.

        The first call only records a baseline. An older message resurfacing as
        newest (the previous one was hidden) does not count as new.
        """
        newest = latest_incoming(await self._fetch(), self._viewer_id)
        if not self._primed:
            self._primed = True
            self._remember(newest)
            return None
        if newest is None or newest["_id"] == self.last_seen_id:
            return None
        if self._last_key is not None and _order_key(newest) <= self._last_key:
            return None
        self._remember(newest)
        return newest

    def _remember(self, entry: Optional[Conversation]) -> None:
        if entry is None:
            return
        self.last_seen_id = entry["_id"]
        self._last_key = _order_key(entry)

    async def run(self, on_new: OnNewMessage) -> None:
        while True:
            try:
                fresh = await self.poll_once()
            except (httpx.HTTPError, CourierClientError) as err:
                logger.warning("Conversation poll failed: %s", err)
            else:
                if fresh is not None:
                    await on_new(fresh)
            await asyncio.sleep(self._interval)
