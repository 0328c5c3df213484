"""
Rendezvous server: applies signalling messages to the registry.

Each WebSocket gets one receive loop (``serve``). Messages from a channel are
handled in the order they arrive; directory broadcasts are serialized so the
last one sent always reflects the latest registry state.
"""

import asyncio
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from api.websocket import ConnectionManager
from rendezvous.models import (
    ChannelState,
    Envelope,
    Event,
    RegisterMessage,
    SignallingMessage,
)
from rendezvous.registry import Registry

logger = logging.getLogger(__name__)


class MalformedMessage(ValueError):
    """A client message that cannot be applied. The channel stays open."""


def _parse(model: type[BaseModel], data) -> BaseModel:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = ", ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'data'}: {err['msg']}"
            for err in e.errors()
        )
        raise MalformedMessage(f"Invalid {model.__name__}: {errors}") from e


class RendezvousServer:
    """Composes the registry with WebSocket fan-out."""

    def __init__(
        self,
        registry: Registry | None = None,
        connections: ConnectionManager | None = None,
    ) -> None:
        self.registry = registry if registry is not None else Registry()
        self.connections = connections if connections is not None else ConnectionManager()
        self._states: dict[str, ChannelState] = {}
        self._broadcast_lock = asyncio.Lock()

    def state(self, channel_id: str) -> ChannelState:
        return self._states.get(channel_id, ChannelState.CLOSED)

    def directory(self) -> list[dict]:
        return [entry.model_dump(by_alias=True) for entry in self.registry.snapshot()]

    # --- Channel lifecycle ---

    async def serve(self, websocket: WebSocket) -> None:
        """Run one channel until the client goes away."""
        channel_id = await self.open_channel(websocket)
        try:
            while True:
                raw = await websocket.receive_text()
                await self.handle_message(channel_id, raw)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            # Transport failures are treated exactly like a clean close
            logger.warning(f"Channel {channel_id} failed: {e}")
        finally:
            await self.close_channel(channel_id)

    async def open_channel(self, websocket: WebSocket) -> str:
        channel_id = await self.connections.connect(websocket)
        self.registry.open(channel_id)
        self._states[channel_id] = ChannelState.CONNECTED
        # Late joiners see existing peers before advertising themselves
        async with self._broadcast_lock:
            await self.connections.send(channel_id, Event.CLIENTS, self.directory())
        return channel_id

    async def close_channel(self, channel_id: str) -> None:
        self.registry.remove(channel_id)
        self._states.pop(channel_id, None)
        await self.connections.disconnect(channel_id)
        await self.broadcast_directory()

    # --- Message handling ---

    async def handle_message(self, channel_id: str, raw: str) -> None:
        """Apply one inbound frame. Never raises."""
        try:
            envelope = self._decode(raw)
            await self._dispatch(channel_id, envelope)
        except MalformedMessage as e:
            logger.warning(f"Rejected message on channel {channel_id}: {e}")
            await self.connections.send(channel_id, Event.ERROR, {"message": str(e)})
        except Exception:
            logger.exception(f"Error handling message on channel {channel_id}")

    @staticmethod
    def _decode(raw: str) -> Envelope:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedMessage(f"Invalid JSON: {e}") from e
        return _parse(Envelope, payload)

    async def _dispatch(self, channel_id: str, envelope: Envelope) -> None:
        if envelope.event == Event.REGISTER:
            await self.register(channel_id, _parse(RegisterMessage, envelope.data))
        elif envelope.event == Event.SIGNALLING:
            await self.relay(_parse(SignallingMessage, envelope.data))
        elif envelope.event == Event.CLEAR_ROOMS:
            await self.clear_rooms()
        else:
            raise MalformedMessage(f"Unknown event {envelope.event!r}")

    async def register(self, channel_id: str, message: RegisterMessage) -> None:
        self.registry.upsert_offer(channel_id, message.id, message.alias, message.offer)
        self._states[channel_id] = ChannelState.ADVERTISING
        await self.broadcast_directory()

    async def relay(self, message: SignallingMessage) -> bool:
        """Deliver an answer to the channel advertising ``client.id``."""
        target = self.registry.channel_for(message.target_id)
        if target is None:
            logger.debug(f"Dropping answer for unknown peer {message.target_id}")
            return False
        delivered = await self.connections.send(
            target, Event.SIGNALLING, message.model_dump(by_alias=True)
        )
        if delivered:
            logger.info(f"Relayed answer to peer {message.target_id}")
        return delivered

    async def clear_rooms(self) -> None:
        self.registry.clear()
        for channel_id in self._states:
            self._states[channel_id] = ChannelState.CONNECTED
        await self.broadcast_directory()

    async def broadcast_directory(self) -> int:
        async with self._broadcast_lock:
            # Snapshot taken under the lock so sends go out in registry order
            return await self.connections.broadcast(Event.CLIENTS, self.directory())
