"""
Client controller: one local identity talking to the rendezvous server.

Decides whether this process offers ("Create Room") or answers (connect to a
directory entry), owns the adapters for those attempts and keeps the last
directory received from the server.
"""

import asyncio
import logging
import uuid
from typing import Callable

from pydantic import ValidationError

from config import DEFAULT_ALIAS, HANDSHAKE_TIMEOUT
from peering.adapter import PeerConnectionAdapter
from peering.capability import AiortcPeerCapability, PeerCapability
from peering.channel import ConnectionStatus, SignallingChannel, SignallingError
from peering.media import MediaCaptureError, open_local_stream
from rendezvous.models import DirectoryEntry, Event, SignallingMessage

logger = logging.getLogger(__name__)

# capability_factory(initiator, local_stream) -> PeerCapability
CapabilityFactory = Callable[[bool, object], PeerCapability]


def default_capability(initiator: bool, local_stream) -> PeerCapability:
    return AiortcPeerCapability(initiator=initiator, local_stream=local_stream)


class ClientController:
    """Drives the offerer and answerer adapters of one client."""

    def __init__(
        self,
        channel: SignallingChannel | None = None,
        capability_factory: CapabilityFactory = default_capability,
        *,
        peer_id: str | None = None,
        alias: str = DEFAULT_ALIAS,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
    ) -> None:
        self.id = peer_id or str(uuid.uuid4())
        self.alias = alias
        self.channel = channel if channel is not None else SignallingChannel()
        self.handshake_timeout = handshake_timeout
        self.directory: list[DirectoryEntry] = []
        self.offerer: PeerConnectionAdapter | None = None
        self.answerers: dict[str, PeerConnectionAdapter] = {}
        self.local_stream = None
        self.media_error: str | None = None
        self._capability_factory = capability_factory
        self._stream_callbacks: list[Callable] = []
        self._directory_callbacks: list[Callable] = []
        self._dispatch_task: asyncio.Task | None = None

    @property
    def status(self) -> ConnectionStatus:
        return self.channel.status

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    def on_stream(self, callback: Callable) -> None:
        """Register ``callback(adapter, stream)`` for remote streams."""
        self._stream_callbacks.append(callback)

    def on_directory(self, callback: Callable) -> None:
        """Register ``callback(entries)``, called on every directory update."""
        self._directory_callbacks.append(callback)

    def set_alias(self, alias: str) -> None:
        # Local only; the server learns it on the next register
        self.alias = alias

    def start_media(self, source: str, fmt: str | None = None) -> bool:
        """Open the local capture device. Failures are reported, not raised."""
        try:
            self.local_stream = open_local_stream(source, fmt)
        except MediaCaptureError as e:
            logger.error(f"Media capture failed: {e}")
            self.media_error = str(e)
            return False
        self.media_error = None
        return True

    # --- Server connection ---

    async def connect(self) -> None:
        await self.channel.open()
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())

    async def disconnect(self) -> None:
        await self.channel.close()
        if self._dispatch_task is not None:
            await self._dispatch_task
            self._dispatch_task = None
        adapters = list(self.answerers.values())
        if self.offerer is not None:
            adapters.append(self.offerer)
        for adapter in adapters:
            await adapter.close()
        self.offerer = None
        self.answerers.clear()
        if self.local_stream is not None:
            self.local_stream.stop()

    async def _dispatch_loop(self) -> None:
        async for event, data in self.channel.messages():
            await self.handle(event, data)
        logger.info("Disconnected from rendezvous server")

    async def handle(self, event: str, data) -> None:
        """Apply one message received from the server."""
        if event == Event.CLIENTS:
            if not isinstance(data, list):
                logger.warning(f"Ignoring directory that is not a list: {data!r}")
                return
            try:
                self.directory = [DirectoryEntry.model_validate(e) for e in data]
            except ValidationError as e:
                logger.warning(f"Ignoring malformed directory: {e}")
                return
            logger.debug(f"Directory now has {len(self.directory)} peer(s)")
            for cb in self._directory_callbacks:
                try:
                    cb(self.directory)
                except Exception as e:
                    logger.error(f"Directory callback error: {e}")

        elif event == Event.SIGNALLING:
            try:
                message = SignallingMessage.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Ignoring malformed signalling message: {e}")
                return
            if message.target_id != self.id:
                return
            if self.offerer is None:
                logger.debug("Answer received but no room is open")
                return
            if await self.offerer.accept_answer(message):
                logger.info("Answer received, completing handshake")
                self.offerer.arm_timeout(self.handshake_timeout)

        elif event == Event.ERROR:
            detail = data.get("message") if isinstance(data, dict) else data
            logger.warning(f"Server rejected a message: {detail}")

        else:
            logger.debug(f"Unhandled event {event!r}")

    # --- User actions ---

    def _new_adapter(
        self, initiator: bool, remote: DirectoryEntry | None = None
    ) -> PeerConnectionAdapter:
        capability = self._capability_factory(initiator, self.local_stream)
        adapter = PeerConnectionAdapter(
            capability,
            initiator=initiator,
            self_id=self.id,
            alias=self.alias,
            remote=remote,
        )

        def notify(stream):
            for cb in self._stream_callbacks:
                cb(adapter, stream)

        adapter.on_stream(notify)
        return adapter

    async def create_room(self) -> PeerConnectionAdapter | None:
        """Advertise a fresh offer under this client's id."""
        if not self.connected:
            logger.warning("Unable to create room: not connected")
            return None

        # Never reuse an attempt: the old offer is replaced on the server
        if self.offerer is not None:
            await self.offerer.close()
        adapter = self._new_adapter(initiator=True)
        self.offerer = adapter

        message = await adapter.start()
        if message is None:
            return adapter
        try:
            await self.channel.send(Event.REGISTER, message.model_dump(by_alias=True))
        except SignallingError as e:
            adapter.fail(str(e))
            return adapter
        logger.info(f"Room created as {self.alias!r} ({self.id})")
        return adapter

    async def connect_to(self, peer_id: str) -> PeerConnectionAdapter | None:
        """Answer the offer of the directory entry ``peer_id``."""
        if not self.connected:
            logger.warning("Unable to connect: not connected")
            return None
        if peer_id == self.id:
            logger.warning("Refusing to connect to our own room")
            return None
        entry = next((e for e in self.directory if e.id == peer_id), None)
        if entry is None:
            logger.warning(f"Peer {peer_id} is not in the directory")
            return None

        previous = self.answerers.pop(peer_id, None)
        if previous is not None:
            await previous.close()
        adapter = self._new_adapter(initiator=False, remote=entry)
        self.answerers[peer_id] = adapter

        message = await adapter.start()
        if message is None:
            return adapter
        try:
            await self.channel.send(Event.SIGNALLING, message.model_dump(by_alias=True))
        except SignallingError as e:
            adapter.fail(str(e))
            return adapter
        logger.info(f"Answer sent to {entry.alias!r} ({peer_id})")
        adapter.arm_timeout(self.handshake_timeout)
        return adapter

    async def clear_rooms(self) -> bool:
        if not self.connected:
            logger.warning("Unable to clear rooms: not connected")
            return False
        logger.info("Clearing rooms")
        await self.channel.send(Event.CLEAR_ROOMS)
        return True
