from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from courier.models.message import counterpart_of, to_wire
from courier.repositories.message_repository import MessageRepository
from courier.repositories.user_repository import UserRepository


class ConversationService:
    """Read-side projections over the ledger: recent conversations and unread totals.

    Nothing is cached; every call rescans. ``window`` optionally limits the scan
    to messages newer than ``now - window``.
    """

    def __init__(
        self,
        message_repo: MessageRepository,
        user_repo: UserRepository,
        window: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._message_repo = message_repo
        self._user_repo = user_repo
        self._window = window
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def recent_conversations(self, user_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        since = self._clock() - self._window if self._window else None
        previews: Dict[str, Dict[str, Any]] = {}
        unread: Dict[str, int] = {}
        # newest first, so the first message seen per counterpart is its preview
        async for message in self._message_repo.iter_visible_for(user_id, since=since):
            peer = counterpart_of(user_id, message)
            if peer not in previews:
                previews[peer] = message
                unread[peer] = 0
            # redacted messages the user hid stay in the preview but not the count
            if message["to_user_id"] == user_id and not message.get("seen") and user_id not in message["deleted_for"]:
                unread[peer] += 1

        peers = list(previews)
        if limit is not None:
            peers = peers[:limit]
        profiles = await self._user_repo.get_public_profiles(peers)
        return [
            {**to_wire(previews[peer]), "counterpart": profiles[peer], "unreadCount": unread[peer]}
            for peer in peers
        ]

    async def unread_count(self, user_id: str) -> int:
        return await self._message_repo.count_unread(user_id)
