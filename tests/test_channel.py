import asyncio
import socket

import pytest
import uvicorn
from fastapi import FastAPI, WebSocket

from peering.adapter import AdapterState
from peering.channel import ConnectionStatus, SignallingChannel, SignallingError
from peering.controller import ClientController
from rendezvous.server import RendezvousServer

from conftest import ANSWER, OFFER_1


@pytest.fixture
async def live_server():
    """A RendezvousServer behind a real uvicorn socket on a free port."""
    rendezvous = RendezvousServer()
    app = FastAPI()

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await rendezvous.serve(websocket)

    config = uvicorn.Config(app, host="127.0.0.1", port=0, log_level="warning", lifespan="off")
    server = uvicorn.Server(config)
    task = asyncio.create_task(server.serve())
    while not server.started:
        if task.done():
            task.result()
        await asyncio.sleep(0.01)
    port = server.servers[0].sockets[0].getsockname()[1]

    yield rendezvous, f"ws://127.0.0.1:{port}/ws"

    server.should_exit = True
    await asyncio.wait_for(task, timeout=10)


async def next_message(messages):
    return await asyncio.wait_for(messages.__anext__(), timeout=5)


async def eventually(condition, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def test_channel_round_trip_through_server(live_server):
    _, url = live_server
    alice, bob = SignallingChannel(url), SignallingChannel(url)

    await alice.open()
    assert alice.status == ConnectionStatus.CONNECTED
    alice_inbox = alice.messages()
    assert await next_message(alice_inbox) == ("clients", [])

    await alice.send("register", {"id": "a", "alias": "alice", "peerOffer": OFFER_1})
    entry = {"id": "a", "alias": "alice", "peerOffer": OFFER_1}
    assert await next_message(alice_inbox) == ("clients", [entry])

    await bob.open()
    bob_inbox = bob.messages()
    assert await next_message(bob_inbox) == ("clients", [entry])

    await bob.send("signalling", {"client": {"id": "a"}, "peerAnswer": ANSWER})
    assert await next_message(alice_inbox) == (
        "signalling",
        {"client": {"id": "a"}, "peerAnswer": ANSWER},
    )

    await bob.send("register", {"alias": "no id"})
    event, data = await next_message(bob_inbox)
    assert event == "error"
    assert "message" in data

    await alice_inbox.aclose()
    await bob_inbox.aclose()
    await alice.close()
    await bob.close()


async def test_close_ends_messages_and_removes_session(live_server):
    rendezvous, url = live_server
    channel = SignallingChannel(url)
    await channel.open()
    received = []

    async def consume():
        async for item in channel.messages():
            received.append(item)

    consumer = asyncio.create_task(consume())
    await channel.send("register", {"id": "a", "alias": "alice", "peerOffer": OFFER_1})
    await eventually(lambda: [e["id"] for e in rendezvous.directory()] == ["a"])

    await channel.close()
    await asyncio.wait_for(consumer, timeout=5)

    assert received[0] == ("clients", [])
    assert channel.status == ConnectionStatus.DISCONNECTED
    with pytest.raises(SignallingError):
        await channel.send("clearRooms")
    await eventually(lambda: rendezvous.directory() == [])


async def test_open_unreachable_server_raises():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    channel = SignallingChannel(f"ws://127.0.0.1:{port}/ws")

    with pytest.raises(SignallingError):
        await channel.open()

    assert channel.status == ConnectionStatus.DISCONNECTED
    await channel.close()


async def test_send_before_open_raises():
    channel = SignallingChannel("ws://127.0.0.1:9/ws")
    with pytest.raises(SignallingError):
        await channel.send("clearRooms")


async def test_controllers_handshake_over_live_server(live_server, capabilities, capability_factory):
    _, url = live_server
    alice = ClientController(SignallingChannel(url), capability_factory, peer_id="a", alias="alice")
    bob = ClientController(SignallingChannel(url), capability_factory, peer_id="b", alias="bob")
    await alice.connect()
    await bob.connect()
    try:
        offerer = await alice.create_room()
        await eventually(lambda: [e.id for e in bob.directory] == ["a"])
        assert bob.directory[0].offer == OFFER_1

        answerer = await bob.connect_to("a")
        assert answerer.state == AdapterState.NEGOTIATING

        alice_capability, bob_capability = capabilities
        await eventually(lambda: alice_capability.remote_answers == [ANSWER])
        assert bob_capability.remote_offer == OFFER_1
        assert offerer.state == AdapterState.NEGOTIATING
    finally:
        await alice.disconnect()
        await bob.disconnect()
