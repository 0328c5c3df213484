"""WebSocket channel management for the signalling protocol."""

import asyncio
import json
import logging
import uuid

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def encode(event: str, data) -> str:
    return json.dumps({"event": event, "data": data})


class ConnectionManager:
    """Tracks open WebSocket channels and fans messages out to them."""

    def __init__(self) -> None:
        self._connections: dict[str, WebSocket] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, channel_id: str) -> bool:
        return channel_id in self._connections

    def channel_ids(self) -> list[str]:
        return list(self._connections)

    async def connect(self, websocket: WebSocket) -> str:
        """Accept the socket and return the channel id assigned to it."""
        await websocket.accept()
        channel_id = uuid.uuid4().hex
        async with self._lock:
            self._connections[channel_id] = websocket
        logger.info(f"Channel {channel_id} opened. Total: {len(self._connections)}")
        return channel_id

    async def disconnect(self, channel_id: str) -> bool:
        async with self._lock:
            removed = self._connections.pop(channel_id, None) is not None
        if removed:
            logger.info(f"Channel {channel_id} closed. Total: {len(self._connections)}")
        return removed

    async def send(self, channel_id: str, event: str, data) -> bool:
        """Send to a single channel. Returns False if it is gone."""
        message = encode(event, data)
        async with self._lock:
            ws = self._connections.get(channel_id)
        if ws is None:
            return False
        try:
            await ws.send_text(message)
        except Exception as e:
            logger.warning(f"Send to channel {channel_id} failed: {e}")
            await self._drop(channel_id, ws)
            return False
        return True

    async def broadcast(self, event: str, data) -> int:
        """Send to every open channel. Returns the number reached."""
        message = encode(event, data)
        async with self._lock:
            targets = list(self._connections.items())
        # Sends run concurrently and outside the lock
        results = await asyncio.gather(
            *(ws.send_text(message) for _, ws in targets), return_exceptions=True
        )
        dead = [
            (channel_id, ws)
            for (channel_id, ws), result in zip(targets, results)
            if isinstance(result, Exception)
        ]
        for channel_id, ws in dead:
            await self._drop(channel_id, ws)
        if dead:
            logger.info(f"Dropped {len(dead)} dead channel(s) during broadcast")
        return len(targets) - len(dead)

    async def _drop(self, channel_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            if self._connections.get(channel_id) is websocket:
                del self._connections[channel_id]
