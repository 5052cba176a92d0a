"""End-to-end tests of the signaling WebSocket and HTTP routes."""

import asyncio

import pytest
from fastapi.testclient import TestClient

import app as app_module
from lifecycle import ERROR_MEETING_NOT_FOUND, VoiceCoordinator
from tests.conftest import FakeMeetingValidator


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch):
    coordinator = VoiceCoordinator(validator=FakeMeetingValidator(active={"M1"}))
    monkeypatch.setattr(app_module, "coordinator", coordinator)
    ping_calls: list[bool] = []

    def ping() -> bool:
        # True when called on the event loop thread itself
        try:
            asyncio.get_running_loop()
            ping_calls.append(True)
        except RuntimeError:
            ping_calls.append(False)
        return True

    monkeypatch.setattr(app_module.redis_backend, "ping", ping)
    # Entering the client shares one event loop between all sockets of a test
    with TestClient(app_module.app) as test_client:
        test_client.ping_calls = ping_calls
        yield test_client


def join(ws, meeting_id: str, peer_id: str) -> None:
    ws.send_json({"event": "join-voice-room", "data": {"meetingId": meeting_id, "peerId": peer_id, "userId": "u"}})


def test_ice_servers(client: TestClient) -> None:
    response = client.get("/ice-servers")

    assert response.status_code == 200
    urls = [s["urls"] for s in response.json()["iceServers"]]
    assert "stun:stun.l.google.com:19302" in urls


def test_join_relay_and_disconnect(client: TestClient) -> None:
    with client.websocket_connect("/ws") as alice:
        alice_id = alice.receive_json()["data"]["socketId"]
        join(alice, "M1", "P1")
        assert alice.receive_json() == {"event": "voice-joined", "data": {"peers": [], "meetingId": "M1"}}
        assert alice.receive_json() == {"event": "room-participants", "data": {"participants": []}}

        with client.websocket_connect("/ws") as bob:
            bob_id = bob.receive_json()["data"]["socketId"]
            join(bob, "M1", "P2")
            assert bob.receive_json() == {"event": "voice-joined", "data": {"peers": ["P1"], "meetingId": "M1"}}
            assert bob.receive_json()["event"] == "room-participants"

            assert alice.receive_json() == {"event": "peer-joined", "data": {"peerId": "P2"}}
            assert alice.receive_json() == {
                "event": "participant-joined",
                "data": {"socketId": bob_id, "peerId": "P2", "displayName": "User"},
            }

            bob.send_json({"event": "webrtc-offer", "data": {"targetSocketId": alice_id, "offer": {"sdp": "o"}}})
            assert alice.receive_json() == {
                "event": "webrtc-offer",
                "data": {"senderSocketId": bob_id, "offer": {"sdp": "o"}},
            }

            alice.send_json({"event": "webrtc-answer", "data": {"targetSocketId": bob_id, "answer": {"sdp": "a"}}})
            assert bob.receive_json() == {
                "event": "webrtc-answer",
                "data": {"senderSocketId": alice_id, "answer": {"sdp": "a"}},
            }

        # Bob's socket closed without leave-voice-room
        assert alice.receive_json() == {"event": "peer-disconnected", "data": {"peerId": "P2"}}
        assert app_module.coordinator.registry.members_of("M1") == {"P1"}

    assert not app_module.coordinator.registry.has_room("M1")


def test_join_inactive_meeting(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        join(ws, "ended", "P1")

        assert ws.receive_json() == {"event": "voice-error", "data": {"message": ERROR_MEETING_NOT_FOUND}}


def test_malformed_frames_are_ignored(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_text("not json")
        ws.send_json({"no": "event"})
        join(ws, "M1", "P1")

        assert ws.receive_json()["event"] == "voice-joined"


def test_startup_ping_runs_off_the_event_loop(client: TestClient) -> None:
    assert client.ping_calls == [False]
