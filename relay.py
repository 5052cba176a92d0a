import asyncio
import json
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from logging_config import get_logger

logger = get_logger(__name__)

OUTBOUND_QUEUE_SIZE = 256


class SignalKind(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    MEDIA_STATE = "media-state"


# kind -> (outbound event name, payload field name); media state is spread into the frame
SIGNAL_EVENTS = {
    SignalKind.OFFER: ("webrtc-offer", "offer"),
    SignalKind.ANSWER: ("webrtc-answer", "answer"),
    SignalKind.ICE_CANDIDATE: ("ice-candidate", "candidate"),
    SignalKind.MEDIA_STATE: ("media-state-changed", None),
}


class Outbound:
    """Outbound channel of one connection: a bounded queue drained by a writer task."""

    def __init__(self, connection_id: str, websocket):
        self.connection_id = connection_id
        self.websocket = websocket
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=OUTBOUND_QUEUE_SIZE)
        self.closed = False
        self.task = asyncio.create_task(self._writer())

    async def _writer(self):
        while True:
            text = await self.queue.get()
            try:
                if not self.closed:
                    await self.websocket.send_text(text)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # The receive loop notices the dead socket and drives cleanup
                self.closed = True
                logger.warning(f"Error sending to connection {self.connection_id}: {e}")
            finally:
                self.queue.task_done()

    def put(self, text: str) -> bool:
        if self.closed:
            return False
        try:
            self.queue.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning(f"Outbound queue full for connection {self.connection_id}, dropping message")
            return False
        return True

    async def close(self):
        self.closed = True
        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass


class ConnectionManager:
    """Open connections of this process, keyed by server-assigned connection id."""

    def __init__(self):
        self._connections: Dict[str, Outbound] = {}

    def register(self, connection_id: str, websocket):
        self._connections[connection_id] = Outbound(connection_id, websocket)
        logger.debug(f"Registered connection {connection_id} (open connections: {len(self._connections)})")

    async def unregister(self, connection_id: str):
        outbound = self._connections.pop(connection_id, None)
        if outbound is None:
            return
        await outbound.close()
        logger.debug(f"Unregistered connection {connection_id} (open connections: {len(self._connections)})")

    def is_connected(self, connection_id: str) -> bool:
        outbound = self._connections.get(connection_id)
        return outbound is not None and not outbound.closed

    def send(self, connection_id: str, event: str, data: Any = None) -> bool:
        """Queue an event for a connection. Returns False if it could not be queued."""
        outbound = self._connections.get(connection_id)
        if outbound is None:
            return False
        return outbound.put(json.dumps({"event": event, "data": data}))

    async def flush(self):
        """Wait until every queued message has been handed to its socket."""
        await asyncio.gather(*(o.queue.join() for o in list(self._connections.values())))

    def __len__(self):
        return len(self._connections)


class SignalingRelay:
    """Opaque relay of signaling messages between connections."""

    def __init__(self, connections: ConnectionManager):
        self.connections = connections

    def forward(self, target_connection_id: str, kind: SignalKind, payload: Any,
                sender_connection_id: str) -> bool:
        event, field_name = SIGNAL_EVENTS[SignalKind(kind)]
        if not self.connections.is_connected(target_connection_id):
            # Sender times out and retries through its own negotiation
            logger.debug(f"Dropping {event} from {sender_connection_id}: target {target_connection_id} not connected")
            return False
        logger.debug(f"Forwarding {event} from {sender_connection_id} to {target_connection_id}")
        if field_name is None:
            data = {"socketId": sender_connection_id, **(payload or {})}
        else:
            data = {"senderSocketId": sender_connection_id, field_name: payload}
        return self.connections.send(target_connection_id, event, data)

    def broadcast(self, connection_ids: Iterable[str], event: str, data: Any = None,
                  exclude: Optional[str] = None) -> int:
        delivered = 0
        for connection_id in connection_ids:
            if connection_id == exclude:
                continue
            if self.connections.send(connection_id, event, data):
                delivered += 1
        logger.debug(f"Broadcasted {event} to {delivered} connections")
        return delivered
