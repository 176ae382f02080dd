import asyncio
import logging
import threading
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


class Channel:
    """Outbound side of one live push connection.

    Events are queued without waiting; the transport task that owns the
    connection drains them with ``next_event``.
    """

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self._loop = asyncio.get_running_loop()
        self._queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self.closed = False

    def offer(self, event: Dict[str, Any]) -> None:
        if self.closed:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._queue.put_nowait(event)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def next_event(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self.closed = True


class ConnectionRegistry:

    def __init__(self) -> None:
        self._channels: Dict[str, Channel] = {}
        self._lock = threading.Lock()

    def register(self, user_id: str, channel: Channel) -> Optional[Channel]:
        """Make ``channel`` the user's only channel; returns the one it replaced."""
        with self._lock:
            previous = self._channels.get(user_id)
            self._channels[user_id] = channel
        if previous is None or previous is channel:
            return None
        # The evicted connection is not told; its own unregister becomes a no-op.
        logger.info("User %s opened a new push channel; previous channel evicted", user_id)
        return previous

    def unregister(self, user_id: str, channel: Channel) -> bool:
        with self._lock:
            if self._channels.get(user_id) is not channel:
                return False
            del self._channels[user_id]
        return True

    def publish(self, user_id: str, event: Dict[str, Any]) -> bool:
        with self._lock:
            channel = self._channels.get(user_id)
            if channel is None:
                return False
            channel.offer(event)
        return True

    def is_connected(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._channels

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)


registry = ConnectionRegistry()


def get_registry() -> ConnectionRegistry:
    return registry
