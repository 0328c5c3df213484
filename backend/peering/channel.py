"""Client end of the signalling WebSocket."""

import json
import logging
from enum import Enum
from typing import Any, AsyncIterator

import aiohttp

from config import SIGNALLING_URL

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SignallingError(ConnectionError):
    """The signalling channel is not open or could not be opened."""


class SignallingChannel:
    """Reliable, ordered message channel to the rendezvous server.

    Frames are JSON objects ``{"event": ..., "data": ...}``; ``messages()``
    yields them as ``(event, data)`` tuples until the server closes.
    """

    def __init__(
        self,
        url: str = SIGNALLING_URL,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.url = url
        self.status = ConnectionStatus.DISCONNECTED
        self._session = session
        self._owns_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    async def open(self) -> None:
        self.status = ConnectionStatus.CONNECTING
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(self.url, heartbeat=20.0)
        except (aiohttp.ClientError, OSError) as e:
            self.status = ConnectionStatus.DISCONNECTED
            raise SignallingError(f"Could not reach {self.url}: {e}") from e
        self.status = ConnectionStatus.CONNECTED
        logger.info(f"Connected to rendezvous server at {self.url}")

    async def send(self, event: str, data: Any = None) -> None:
        if not self.connected or self._ws is None or self._ws.closed:
            raise SignallingError(f"Cannot send {event!r}: channel is not open")
        await self._ws.send_str(json.dumps({"event": event, "data": data}))

    async def messages(self) -> AsyncIterator[tuple[str, Any]]:
        if self._ws is None:
            raise SignallingError("Channel was never opened")
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        payload = json.loads(msg.data)
                    except json.JSONDecodeError:
                        logger.warning("Ignoring non-JSON frame from server")
                        continue
                    if not isinstance(payload, dict) or "event" not in payload:
                        logger.warning(f"Ignoring frame without event: {payload!r}")
                        continue
                    yield payload["event"], payload.get("data")
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(f"Signalling channel error: {self._ws.exception()}")
                    break
        finally:
            self.status = ConnectionStatus.DISCONNECTED

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
        self.status = ConnectionStatus.DISCONNECTED
