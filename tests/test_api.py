"""End-to-end checks through the FastAPI app."""

from conftest import ANSWER, OFFER_1


def register_frame(peer_id, alias, offer):
    return {"event": "register", "data": {"id": peer_id, "alias": alias, "peerOffer": offer}}


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_websocket_scenario(client):
    with client.websocket_connect("/ws") as bob:
        assert bob.receive_json() == {"event": "clients", "data": []}

        with client.websocket_connect("/ws") as alice:
            assert alice.receive_json() == {"event": "clients", "data": []}

            alice.send_json(register_frame("a", "alice", OFFER_1))
            entry = {"id": "a", "alias": "alice", "peerOffer": OFFER_1}
            assert alice.receive_json() == {"event": "clients", "data": [entry]}
            assert bob.receive_json() == {"event": "clients", "data": [entry]}

            assert client.get("/api/clients").json() == {"clients": [entry]}

            bob.send_json(
                {"event": "signalling", "data": {"client": {"id": "a"}, "peerAnswer": ANSWER}}
            )
            relayed = alice.receive_json()
            assert relayed["event"] == "signalling"
            assert relayed["data"]["peerAnswer"] == ANSWER

        # Leaving the block waits for alice's channel to finish closing
        assert client.get("/api/clients").json() == {"clients": []}


def test_malformed_register_keeps_channel_open(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        ws.send_json({"event": "register", "data": {"id": "a", "alias": "alice"}})
        assert ws.receive_json()["event"] == "error"

        ws.send_json(register_frame("a", "alice", OFFER_1))
        assert ws.receive_json()["data"][0]["id"] == "a"


def test_clear_rooms_endpoint_broadcasts(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json(register_frame("a", "alice", OFFER_1))
        assert len(ws.receive_json()["data"]) == 1

        response = client.post("/api/clear-rooms")

        assert response.json() == {"status": "cleared"}
        assert ws.receive_json() == {"event": "clients", "data": []}
        assert client.get("/api/clients").json() == {"clients": []}


def test_clear_rooms_message_broadcasts(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json(register_frame("a", "alice", OFFER_1))
        ws.receive_json()

        ws.send_json({"event": "clearRooms"})

        assert ws.receive_json() == {"event": "clients", "data": []}
