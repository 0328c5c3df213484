import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from peering.capability import PeerCapability
from peering.channel import ConnectionStatus, SignallingError
from rendezvous.server import RendezvousServer

OFFER_1 = {"type": "offer", "sdp": "v=0 o1"}
OFFER_2 = {"type": "offer", "sdp": "v=0 o2"}
ANSWER = {"type": "answer", "sdp": "v=0 a1"}


class FakeWebSocket:
    """Stands in for a Starlette WebSocket on the server side."""

    def __init__(self) -> None:
        self.accepted = False
        self.broken = False
        self.gate: asyncio.Event | None = None
        self.sent: list[dict] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, text: str) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.broken:
            raise RuntimeError("socket is closed")
        self.sent.append(json.loads(text))

    def events(self, name: str) -> list:
        return [m["data"] for m in self.sent if m["event"] == name]

    def clear(self) -> None:
        self.sent.clear()


class FakeCapability(PeerCapability):
    """Scriptable peer-connection capability."""

    def __init__(self, offer=OFFER_1, answer=ANSWER, error: Exception | None = None) -> None:
        super().__init__()
        self.offer = offer
        self.answer = answer
        self.error = error
        self.offers_created = 0
        self.remote_offer = None
        self.remote_answers: list = []
        self.closed = False

    async def create_offer(self) -> dict:
        self.offers_created += 1
        if self.error:
            raise self.error
        return self.offer

    async def create_answer(self, offer: dict) -> dict:
        if self.error:
            raise self.error
        self.remote_offer = offer
        return self.answer

    async def accept_answer(self, answer: dict) -> None:
        self.remote_answers.append(answer)

    async def close(self) -> None:
        self.closed = True

    # Test helpers standing in for the capability's own events
    def report_stream(self, stream) -> None:
        self._emit_stream(stream)

    def report_failure(self, reason: str) -> None:
        self._emit_failure(reason)


class FakeChannel:
    """Client-side signalling channel backed by an in-memory queue."""

    def __init__(self) -> None:
        self.status = ConnectionStatus.DISCONNECTED
        self.sent: list[tuple[str, object]] = []
        self._inbox: asyncio.Queue = asyncio.Queue()

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    async def open(self) -> None:
        self.status = ConnectionStatus.CONNECTED

    async def send(self, event: str, data=None) -> None:
        if not self.connected:
            raise SignallingError("not open")
        self.sent.append((event, data))

    def deliver(self, event: str, data) -> None:
        self._inbox.put_nowait((event, data))

    async def messages(self):
        while True:
            item = await self._inbox.get()
            if item is None:
                break
            yield item
        self.status = ConnectionStatus.DISCONNECTED

    async def close(self) -> None:
        if self.status != ConnectionStatus.DISCONNECTED:
            self._inbox.put_nowait(None)
        self.status = ConnectionStatus.DISCONNECTED


@pytest.fixture
def server():
    return RendezvousServer()


@pytest.fixture
def capabilities():
    """Every FakeCapability handed out by ``capability_factory``."""
    return []


@pytest.fixture
def capability_factory(capabilities):
    def factory(initiator, local_stream):
        capability = FakeCapability()
        capabilities.append(capability)
        return capability

    return factory


@pytest.fixture(scope="session")
def client():
    from main import app, rendezvous_server

    with TestClient(app) as test_client:
        yield test_client
    rendezvous_server.registry.clear()
