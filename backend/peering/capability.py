"""
Peer-connection capability.

``PeerCapability`` is the contract the adapter drives; ``AiortcPeerCapability``
fulfils it with aiortc. Offer and answer blobs are plain
``{"type": ..., "sdp": ...}`` dicts so they travel as JSON unchanged.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)

from config import ICE_SERVERS

logger = logging.getLogger(__name__)

StreamCallback = Callable[[object], None]
FailureCallback = Callable[[str], None]


class PeerCapability(ABC):
    """Produces local offers/answers and reports remote streams or failure."""

    def __init__(self) -> None:
        self._stream_callbacks: list[StreamCallback] = []
        self._failure_callbacks: list[FailureCallback] = []

    def on_stream(self, callback: StreamCallback) -> None:
        self._stream_callbacks.append(callback)

    def on_failure(self, callback: FailureCallback) -> None:
        self._failure_callbacks.append(callback)

    def _emit_stream(self, stream) -> None:
        for cb in self._stream_callbacks:
            cb(stream)

    def _emit_failure(self, reason: str) -> None:
        for cb in self._failure_callbacks:
            cb(reason)

    @abstractmethod
    async def create_offer(self) -> dict:
        """Generate the local offer (initiator side)."""

    @abstractmethod
    async def create_answer(self, offer: dict) -> dict:
        """Apply a remote offer and generate the local answer."""

    @abstractmethod
    async def accept_answer(self, answer: dict) -> None:
        """Apply the remote answer to complete the handshake."""

    async def close(self) -> None:
        pass


def _to_blob(description: RTCSessionDescription) -> dict:
    return {"type": description.type, "sdp": description.sdp}


def _from_blob(blob: dict) -> RTCSessionDescription:
    try:
        return RTCSessionDescription(sdp=blob["sdp"], type=blob["type"])
    except (KeyError, TypeError) as e:
        raise ValueError(f"Not a session description: {blob!r}") from e


class AiortcPeerCapability(PeerCapability):
    """aiortc-backed peer connection.

    aiortc gathers ICE candidates inside ``setLocalDescription``, so the blob
    returned by ``create_offer``/``create_answer`` is complete (no trickle).
    Without local tracks the initiator opens a data channel so the offer is
    never empty.

    Remote tracks are announced by ``setRemoteDescription``, long before any
    media can flow. They are held back and reported once the connection state
    reaches ``connected``. Dropping to ``disconnected`` or ``failed`` before
    that is reported as a failure.
    """

    def __init__(
        self,
        initiator: bool,
        local_stream=None,
        ice_servers: list[str] = ICE_SERVERS,
    ) -> None:
        super().__init__()
        self.initiator = initiator
        self.connected = False
        self._pending_tracks: list = []
        self._pc = RTCPeerConnection(
            RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in ice_servers])
        )
        tracks = local_stream.tracks if local_stream is not None else []
        for track in tracks:
            self._pc.addTrack(track)
        self._data_channel = None
        if not tracks and initiator:
            self._data_channel = self._pc.createDataChannel("rendezvous")

            @self._data_channel.on("open")
            def on_open():
                self._emit_stream(self._data_channel)

        @self._pc.on("datachannel")
        def on_datachannel(channel):
            logger.info(f"Receiving remote data channel {channel.label!r}")
            self._emit_stream(channel)

        @self._pc.on("track")
        def on_track(track):
            logger.info(f"Remote {track.kind} track announced")
            if self.connected:
                self._emit_stream(track)
            else:
                self._pending_tracks.append(track)

        @self._pc.on("connectionstatechange")
        async def on_connectionstatechange():
            self._connection_state_changed(self._pc.connectionState)

    def _connection_state_changed(self, state: str) -> None:
        logger.debug(f"Peer connection state: {state}")
        if state == "connected":
            self.connected = True
            tracks, self._pending_tracks = self._pending_tracks, []
            for track in tracks:
                self._emit_stream(track)
        elif state == "failed":
            self._emit_failure("peer connection failed")
        elif state == "disconnected" and not self.connected:
            self._emit_failure("peer connection dropped before connecting")

    async def create_offer(self) -> dict:
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        return _to_blob(self._pc.localDescription)

    async def create_answer(self, offer: dict) -> dict:
        await self._pc.setRemoteDescription(_from_blob(offer))
        answer = await self._pc.createAnswer()
        await self._pc.setLocalDescription(answer)
        return _to_blob(self._pc.localDescription)

    async def accept_answer(self, answer: dict) -> None:
        await self._pc.setRemoteDescription(_from_blob(answer))

    async def close(self) -> None:
        await self._pc.close()
