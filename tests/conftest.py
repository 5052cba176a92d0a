"""Shared fakes for the signaling relay tests."""

import json
from typing import Any

import pytest

from lifecycle import VoiceCoordinator
from registry import ConnectionPeerIndex, RoomRegistry


class FakeWebSocket:
    """Collects frames sent by the relay."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[str] = []
        self.fail = fail

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(text)

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(t) for t in self.sent]

    def events(self, name: str) -> list[Any]:
        """Payloads of every frame with the given event name."""
        return [m["data"] for m in self.messages if m["event"] == name]


class FakeMeetingValidator:
    """Meeting store double: ids in `active` are active, everything else is not."""

    def __init__(self, active: set[str] | None = None, error: Exception | None = None) -> None:
        self.active = set(active or ())
        self.error = error
        self.calls: list[str] = []

    async def is_active(self, meeting_id: str) -> bool:
        self.calls.append(meeting_id)
        if self.error is not None:
            raise self.error
        return meeting_id in self.active


@pytest.fixture
def validator() -> FakeMeetingValidator:
    return FakeMeetingValidator(active={"M1", "M2"})


@pytest.fixture
def coordinator(validator: FakeMeetingValidator) -> VoiceCoordinator:
    return VoiceCoordinator(
        validator=validator,
        registry=RoomRegistry(capacity=10),
        index=ConnectionPeerIndex(),
        restrict_relay_to_room=False,
    )
