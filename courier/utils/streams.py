import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict

from fastapi import WebSocket, WebSocketDisconnect

from courier.utils.connection_registry import Channel


logger = logging.getLogger(__name__)


def encode_sse(event: Dict[str, Any]) -> str:
    return f"event: {event['kind']}\ndata: {json.dumps(event['message'])}\n\n"


async def sse_stream(channel: Channel, keepalive_seconds: float) -> AsyncIterator[str]:
    yield ": connected\n\n"
    while not channel.closed:
        try:
            event = await channel.next_event(timeout=keepalive_seconds)
        except asyncio.TimeoutError:
            # comment frame; a dead peer shows up as a failed write
            yield ": keep-alive\n\n"
            continue
        yield encode_sse(event)


async def pump_websocket(websocket: WebSocket, channel: Channel) -> None:
    """Forward channel events to the socket until either side goes away."""

    async def _forward() -> None:
        while True:
            event = await channel.next_event()
            await websocket.send_text(json.dumps(event))

    async def _drain() -> None:
        # the stream is server-to-client; inbound frames are read only to notice a close
        while True:
            await websocket.receive_text()

    forward = asyncio.create_task(_forward())
    drain = asyncio.create_task(_drain())
    try:
        done, _ = await asyncio.wait({forward, drain}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("Push socket for %s failed: %s", channel.user_id, exc)
    finally:
        forward.cancel()
        drain.cancel()
        channel.close()
