import asyncio
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ValidationError

from backend import MeetingValidator
from constants import MAX_ROOM_SIZE, RESTRICT_RELAY_TO_ROOM
from logging_config import get_logger
from registry import AlreadyBound, ConnectionPeerIndex, PeerAlreadyInRoom, RoomFull, RoomRegistry
from relay import ConnectionManager, SignalingRelay, SignalKind
from schemas.voice import (
    EndMeetingRequest,
    IceCandidateRequest,
    JoinVoiceRoomRequest,
    LeaveVoiceRoomRequest,
    MediaStateChangeRequest,
    Participant,
    WebRTCAnswerRequest,
    WebRTCOfferRequest,
)

logger = get_logger(__name__)

ERROR_MEETING_NOT_FOUND = "Meeting not found or inactive"
ERROR_MEETING_FULL = f"Meeting full (maximum {MAX_ROOM_SIZE} users)"
ERROR_INTERNAL = "Internal server error"

DEFAULT_DISPLAY_NAME = "User"


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    IN_ROOM = "in_room"
    DISCONNECTED = "disconnected"


class MeetingNotFound(Exception):
    pass


class VoiceCoordinator:
    """Drives every connection through connect, join, leave and disconnect.

    All room and binding mutations happen under a single lock. The meeting
    lookup is awaited before taking it, so a slow document store only delays
    the joining connection, and the capacity check is made again at insertion.
    """

    def __init__(self, validator: MeetingValidator, connections: Optional[ConnectionManager] = None,
                 registry: Optional[RoomRegistry] = None, index: Optional[ConnectionPeerIndex] = None,
                 restrict_relay_to_room: bool = RESTRICT_RELAY_TO_ROOM):
        self.validator = validator
        self.connections = connections or ConnectionManager()
        self.registry = registry or RoomRegistry()
        self.index = index or ConnectionPeerIndex()
        self.relay = SignalingRelay(self.connections)
        self.restrict_relay_to_room = restrict_relay_to_room
        self.states: Dict[str, ConnectionState] = {}
        self.display_names: Dict[str, str] = {}
        self._lock = asyncio.Lock()
        self._handlers = {
            "join-voice-room": self._on_join,
            "leave-voice-room": self._on_leave,
            "end-meeting": self._on_end_meeting,
            "webrtc-offer": self._on_offer,
            "webrtc-answer": self._on_answer,
            "ice-candidate": self._on_ice_candidate,
            "media-state-change": self._on_media_state_change,
        }

    def state_of(self, connection_id: str) -> ConnectionState:
        return self.states.get(connection_id, ConnectionState.DISCONNECTED)

    def connect(self, connection_id: str, websocket):
        self.connections.register(connection_id, websocket)
        self.states[connection_id] = ConnectionState.CONNECTED
        logger.info(f"Connection {connection_id} opened")
        self.connections.send(connection_id, "connected", {"socketId": connection_id})

    def _error(self, connection_id: str, message: str):
        self.connections.send(connection_id, "voice-error", {"message": message})

    async def dispatch(self, connection_id: str, event: str, data: Any):
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning(f"Unknown event '{event}' from connection {connection_id}, ignoring")
            return
        if self.state_of(connection_id) == ConnectionState.DISCONNECTED:
            logger.debug(f"Ignoring '{event}' from closed connection {connection_id}")
            return
        try:
            await handler(connection_id, data if isinstance(data, dict) else {})
        except ValidationError as e:
            logger.warning(f"Invalid '{event}' payload from connection {connection_id}: {e.errors()}")
            if event == "join-voice-room":
                self._error(connection_id, ERROR_INTERNAL)

    async def join(self, connection_id: str, meeting_id: str, peer_id: str,
                   display_name: Optional[str] = None) -> bool:
        display_name = display_name or DEFAULT_DISPLAY_NAME
        try:
            if not await self.validator.is_active(meeting_id):
                raise MeetingNotFound(meeting_id)

            async with self._lock:
                if self.state_of(connection_id) != ConnectionState.CONNECTED:
                    # Disconnected during the lookup, or joining twice without leaving
                    if self.state_of(connection_id) == ConnectionState.DISCONNECTED:
                        logger.info(f"Connection {connection_id} closed before joining meeting {meeting_id}")
                        return False
                    raise AlreadyBound(connection_id, self.index.peer_of(connection_id))
                others = self.registry.join(meeting_id, peer_id, connection_id)
                self.index.bind(connection_id, peer_id, meeting_id)
                self.states[connection_id] = ConnectionState.IN_ROOM
                self.display_names[connection_id] = display_name
                participants = [
                    Participant(
                        socketId=self.registry.connection_of(meeting_id, p),
                        peerId=p,
                        displayName=self.display_names.get(self.registry.connection_of(meeting_id, p),
                                                           DEFAULT_DISPLAY_NAME),
                    ).model_dump()
                    for p in others
                ]
                members = self.registry.connections_of(meeting_id, exclude=connection_id)
        except MeetingNotFound:
            logger.warning(f"Join rejected for connection {connection_id}: meeting {meeting_id} not found or inactive")
            self._error(connection_id, ERROR_MEETING_NOT_FOUND)
            return False
        except RoomFull:
            logger.warning(f"Join rejected for connection {connection_id}: meeting {meeting_id} is full")
            self._error(connection_id, ERROR_MEETING_FULL)
            return False
        except (AlreadyBound, PeerAlreadyInRoom) as e:
            logger.error(f"Join rejected for connection {connection_id}: {e}")
            self._error(connection_id, ERROR_INTERNAL)
            return False
        except Exception as e:
            logger.error(f"Error joining connection {connection_id} to meeting {meeting_id}: {e}", exc_info=True)
            self._error(connection_id, ERROR_INTERNAL)
            return False

        logger.info(f"Peer {peer_id} (connection {connection_id}) joined voice room {meeting_id}")
        self.relay.broadcast(members, "peer-joined", {"peerId": peer_id})
        self.relay.broadcast(members, "participant-joined", {
            "socketId": connection_id,
            "peerId": peer_id,
            "displayName": display_name,
        })
        self.connections.send(connection_id, "voice-joined", {"peers": others, "meetingId": meeting_id})
        self.connections.send(connection_id, "room-participants", {"participants": participants})
        return True

    def _remove_from_room(self, meeting_id: str, peer_id: str):
        remaining = self.registry.leave(meeting_id, peer_id)
        logger.info(f"Peer {peer_id} left voice room {meeting_id} ({len(remaining)} remaining)")
        self.relay.broadcast(self.registry.connections_of(meeting_id), "peer-disconnected", {"peerId": peer_id})

    async def leave(self, connection_id: str, meeting_id: str, peer_id: str) -> bool:
        async with self._lock:
            binding = self.index.binding_of(connection_id)
            if binding is None or binding.meeting_id != meeting_id or binding.peer_id != peer_id:
                logger.debug(f"Ignoring leave of {peer_id} from {meeting_id}: not bound to connection {connection_id}")
                return False
            self.index.unbind(connection_id)
            self._remove_from_room(meeting_id, peer_id)
            self.display_names.pop(connection_id, None)
            if self.state_of(connection_id) == ConnectionState.IN_ROOM:
                self.states[connection_id] = ConnectionState.CONNECTED
        return True

    async def disconnect(self, connection_id: str, reason: Optional[str] = None):
        """Clean up after a connection from any state. Safe to call more than once."""
        async with self._lock:
            previous = self.states.pop(connection_id, None)
            peer_id = self.index.unbind(connection_id)
            if peer_id is not None:
                for meeting_id in self.registry.meetings_of(peer_id, connection_id):
                    self._remove_from_room(meeting_id, peer_id)
            self.display_names.pop(connection_id, None)
        await self.connections.unregister(connection_id)
        if previous is not None:
            logger.info(f"Connection {connection_id} disconnected (reason: {reason}, peer: {peer_id})")

    def end_meeting(self, connection_id: str, meeting_id: str) -> int:
        members = self.registry.connections_of(meeting_id)
        logger.info(f"Meeting {meeting_id} ended by connection {connection_id}, forcing {len(members)} members out")
        return self.relay.broadcast(members, "force-disconnect", {"meetingId": meeting_id})

    def relay_signal(self, connection_id: str, target_connection_id: str, kind: SignalKind, payload: Any) -> bool:
        if self.restrict_relay_to_room:
            sender = self.index.binding_of(connection_id)
            target = self.index.binding_of(target_connection_id)
            if sender is None or target is None or sender.meeting_id != target.meeting_id:
                logger.warning(f"Dropping {kind.value} from {connection_id} to {target_connection_id}: not in the same room")
                return False
        return self.relay.forward(target_connection_id, kind, payload, connection_id)

    def media_state_change(self, connection_id: str, room_id: str, is_audio_enabled: Optional[bool],
                           is_video_enabled: Optional[bool]) -> int:
        state = {"isAudioEnabled": is_audio_enabled, "isVideoEnabled": is_video_enabled}
        return sum(
            self.relay.forward(target, SignalKind.MEDIA_STATE, state, connection_id)
            for target in self.registry.connections_of(room_id, exclude=connection_id)
        )

    async def _on_join(self, connection_id: str, data: dict):
        request = JoinVoiceRoomRequest(**data)
        logger.info(f"Connection {connection_id} (user {request.userId}) joining voice in meeting {request.meetingId}")
        await self.join(connection_id, request.meetingId, request.peerId, request.displayName)

    async def _on_leave(self, connection_id: str, data: dict):
        request = LeaveVoiceRoomRequest(**data)
        await self.leave(connection_id, request.meetingId, request.peerId)

    async def _on_end_meeting(self, connection_id: str, data: dict):
        request = EndMeetingRequest(**data)
        self.end_meeting(connection_id, request.meetingId)

    async def _on_offer(self, connection_id: str, data: dict):
        request = WebRTCOfferRequest(**data)
        self.relay_signal(connection_id, request.targetSocketId, SignalKind.OFFER, request.offer)

    async def _on_answer(self, connection_id: str, data: dict):
        request = WebRTCAnswerRequest(**data)
        self.relay_signal(connection_id, request.targetSocketId, SignalKind.ANSWER, request.answer)

    async def _on_ice_candidate(self, connection_id: str, data: dict):
        request = IceCandidateRequest(**data)
        self.relay_signal(connection_id, request.targetSocketId, SignalKind.ICE_CANDIDATE, request.candidate)

    async def _on_media_state_change(self, connection_id: str, data: dict):
        request = MediaStateChangeRequest(**data)
        self.media_state_change(connection_id, request.roomId, request.isAudioEnabled, request.isVideoEnabled)
