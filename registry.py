from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from constants import MAX_ROOM_SIZE
from logging_config import get_logger

logger = get_logger(__name__)


class RoomFull(Exception):
    def __init__(self, meeting_id: str, capacity: int):
        super().__init__(f"Room {meeting_id} is full ({capacity}/{capacity})")
        self.meeting_id = meeting_id
        self.capacity = capacity


class PeerAlreadyInRoom(Exception):
    def __init__(self, meeting_id: str, peer_id: str):
        super().__init__(f"Peer {peer_id} is already in room {meeting_id}")
        self.meeting_id = meeting_id
        self.peer_id = peer_id


class AlreadyBound(Exception):
    def __init__(self, connection_id: str, peer_id: str):
        super().__init__(f"Connection {connection_id} is already bound to peer {peer_id}")
        self.connection_id = connection_id
        self.peer_id = peer_id


@dataclass
class Room:
    meeting_id: str
    # peer id -> connection id bound to it
    peers: Dict[str, str] = field(default_factory=dict)

    def __len__(self):
        return len(self.peers)


@dataclass(frozen=True)
class Binding:
    peer_id: str
    meeting_id: str


class RoomRegistry:
    """Voice room membership per meeting.

    Rooms are created on the first successful join and removed as soon as the
    last peer leaves, so an empty room is never kept around. Callers are
    responsible for notifying other members; the registry only tracks state.
    """

    def __init__(self, capacity: int = MAX_ROOM_SIZE):
        self.capacity = capacity
        self._rooms: Dict[str, Room] = {}

    def join(self, meeting_id: str, peer_id: str, connection_id: str) -> List[str]:
        """Add a peer and return the other members as of just after insertion."""
        room = self._rooms.get(meeting_id)
        current = len(room) if room else 0
        if current >= self.capacity:
            logger.info(f"Room {meeting_id} is full ({current}/{self.capacity}), rejecting peer {peer_id}")
            raise RoomFull(meeting_id, self.capacity)
        if room and peer_id in room.peers:
            raise PeerAlreadyInRoom(meeting_id, peer_id)

        if room is None:
            room = self._rooms[meeting_id] = Room(meeting_id)
            logger.debug(f"Created room {meeting_id}")
        room.peers[peer_id] = connection_id
        logger.debug(f"Peer {peer_id} added to room {meeting_id} ({len(room)}/{self.capacity})")
        return [p for p in room.peers if p != peer_id]

    def leave(self, meeting_id: str, peer_id: str) -> Set[str]:
        """Remove a peer and return the remaining members. Unknown rooms and peers are ignored."""
        room = self._rooms.get(meeting_id)
        if room is None:
            return set()
        if room.peers.pop(peer_id, None) is not None:
            logger.debug(f"Peer {peer_id} removed from room {meeting_id} ({len(room)}/{self.capacity})")
        if not room.peers:
            del self._rooms[meeting_id]
            logger.debug(f"Room {meeting_id} is empty, removed")
            return set()
        return set(room.peers)

    def members_of(self, meeting_id: str) -> Set[str]:
        room = self._rooms.get(meeting_id)
        return set(room.peers) if room else set()

    def connections_of(self, meeting_id: str, exclude: Optional[str] = None) -> List[str]:
        room = self._rooms.get(meeting_id)
        if room is None:
            return []
        return [c for c in room.peers.values() if c != exclude]

    def connection_of(self, meeting_id: str, peer_id: str) -> Optional[str]:
        room = self._rooms.get(meeting_id)
        return room.peers.get(peer_id) if room else None

    def meetings_of(self, peer_id: str, connection_id: Optional[str] = None) -> List[str]:
        """Meetings in which peer_id appears, optionally only where bound to connection_id."""
        return [
            meeting_id for meeting_id, room in self._rooms.items()
            if peer_id in room.peers and (connection_id is None or room.peers[peer_id] == connection_id)
        ]

    def has_room(self, meeting_id: str) -> bool:
        return meeting_id in self._rooms

    def room_count(self) -> int:
        return len(self._rooms)


class ConnectionPeerIndex:
    """Maps a transport connection id to the peer it currently represents."""

    def __init__(self):
        self._bindings: Dict[str, Binding] = {}

    def bind(self, connection_id: str, peer_id: str, meeting_id: str):
        existing = self._bindings.get(connection_id)
        if existing is not None:
            # A join without an intervening leave is a caller bug
            raise AlreadyBound(connection_id, existing.peer_id)
        self._bindings[connection_id] = Binding(peer_id=peer_id, meeting_id=meeting_id)

    def unbind(self, connection_id: str) -> Optional[str]:
        binding = self._bindings.pop(connection_id, None)
        return binding.peer_id if binding else None

    def peer_of(self, connection_id: str) -> Optional[str]:
        binding = self._bindings.get(connection_id)
        return binding.peer_id if binding else None

    def binding_of(self, connection_id: str) -> Optional[Binding]:
        return self._bindings.get(connection_id)

    def __len__(self):
        return len(self._bindings)
