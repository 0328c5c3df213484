"""
Peer connection adapter: one attempt at reaching one remote peer.

The adapter turns capability output (local offer/answer, remote stream,
failure) into signalling messages and state changes. It never talks to the
signalling channel itself: ``start()`` returns the message the controller
should send, so dropping the adapter is all it takes to abandon an attempt.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable

from peering.capability import PeerCapability
from rendezvous.models import DirectoryEntry, RegisterMessage, SignallingMessage

logger = logging.getLogger(__name__)


class AdapterState(str, Enum):
    NEW = "new"
    NEGOTIATING = "negotiating"
    AWAITING_ANSWER = "awaiting_answer"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


TERMINAL_STATES = (AdapterState.FAILED, AdapterState.CLOSED)


class AdapterStateError(RuntimeError):
    """An operation was attempted in a state that does not allow it."""


class PeerConnectionAdapter:
    """Bridges one peer-connection capability to the signalling protocol."""

    def __init__(
        self,
        capability: PeerCapability,
        *,
        initiator: bool,
        self_id: str,
        alias: str = "",
        remote: DirectoryEntry | None = None,
    ) -> None:
        if not initiator and remote is None:
            raise ValueError("An answering adapter needs the remote directory entry")
        self.capability = capability
        self.initiator = initiator
        self.self_id = self_id
        self.alias = alias
        self.remote = remote
        self.state = AdapterState.NEW
        self.failure_reason: str | None = None
        self.stream = None
        self._stream_listeners: list[Callable] = []
        self._failure_listeners: list[Callable] = []
        self._timeout_task: asyncio.Task | None = None

        capability.on_stream(self._on_stream)
        capability.on_failure(self.fail)

    def __repr__(self) -> str:
        role = "offerer" if self.initiator else f"answerer->{self.remote.id}"
        return f"<PeerConnectionAdapter {role} {self.state.value}>"

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def on_stream(self, callback: Callable) -> None:
        """Register ``callback(stream)``, called when the remote stream is ready."""
        self._stream_listeners.append(callback)

    def on_failure(self, callback: Callable) -> None:
        """Register ``callback(reason)``, called once if the attempt fails."""
        self._failure_listeners.append(callback)

    async def start(self) -> RegisterMessage | SignallingMessage | None:
        """
        Produce the local half of the handshake.

        Offerers get a ``register`` message carrying their offer, answerers a
        ``signalling`` message carrying the answer for ``remote``. Returns
        None if the capability failed; the adapter is then FAILED.
        """
        if self.state != AdapterState.NEW:
            raise AdapterStateError(f"Adapter already started ({self.state.value}); create a new one")
        self.state = AdapterState.NEGOTIATING

        try:
            if self.initiator:
                offer = await self.capability.create_offer()
            else:
                answer = await self.capability.create_answer(self.remote.offer)
        except Exception as e:
            self.fail(f"Could not create local description: {e}")
            return None

        if self.terminal:
            return None

        if self.initiator:
            self.state = AdapterState.AWAITING_ANSWER
            return RegisterMessage(id=self.self_id, alias=self.alias, offer=offer)
        return SignallingMessage(
            client={"id": self.remote.id, "alias": self.remote.alias}, answer=answer
        )

    async def accept_answer(self, message: SignallingMessage) -> bool:
        """Feed the remote answer to the capability. Only the first one counts."""
        if not self.initiator:
            raise AdapterStateError("Only the offering side accepts answers")
        if message.target_id != self.self_id:
            return False
        if self.state != AdapterState.AWAITING_ANSWER:
            logger.debug(f"Ignoring answer in state {self.state.value}")
            return False

        self.state = AdapterState.NEGOTIATING
        try:
            await self.capability.accept_answer(message.answer)
        except Exception as e:
            self.fail(f"Could not apply remote answer: {e}")
            return False
        return True

    def arm_timeout(self, seconds: float) -> None:
        """Fail the attempt unless it connects within ``seconds``."""
        self._cancel_timeout()
        if not self.terminal and self.state != AdapterState.CONNECTED:
            self._timeout_task = asyncio.create_task(self._expire(seconds))

    async def _expire(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        self._timeout_task = None
        if not self.terminal and self.state != AdapterState.CONNECTED:
            self.fail(f"Handshake timed out after {seconds:g}s")

    def _cancel_timeout(self) -> None:
        if self._timeout_task is not None:
            self._timeout_task.cancel()
            self._timeout_task = None

    def _on_stream(self, stream) -> None:
        if self.terminal:
            return
        self._cancel_timeout()
        self.stream = stream
        self.state = AdapterState.CONNECTED
        logger.info(f"{self!r} receiving stream")
        for cb in self._stream_listeners:
            try:
                cb(stream)
            except Exception as e:
                logger.error(f"Stream listener error: {e}")

    def fail(self, reason: str) -> None:
        """Move to the terminal FAILED state. There is no automatic retry."""
        if self.terminal:
            return
        self._cancel_timeout()
        self.state = AdapterState.FAILED
        self.failure_reason = reason
        logger.warning(f"{self!r}: {reason}")
        for cb in self._failure_listeners:
            try:
                cb(reason)
            except Exception as e:
                logger.error(f"Failure listener error: {e}")

    async def close(self) -> None:
        """Release the capability. A failed adapter stays FAILED."""
        self._cancel_timeout()
        if self.state != AdapterState.FAILED:
            self.state = AdapterState.CLOSED
        try:
            await self.capability.close()
        except Exception as e:
            logger.warning(f"Error closing peer connection: {e}")
