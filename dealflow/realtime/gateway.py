"""
Realtime Gateway: authenticated WebSocket push with room addressing.

Every socket joins two rooms on connect:
- ``user_<id>``: events addressed to one user
- ``role_<role>``: events addressed to everyone with a role

A connection only receives room events once the client has acknowledged
its identity with ``join:user``. Until then its events are buffered on the
connection and flushed on acknowledgement. Events addressed to a user with
no connection at all are held in a per-user queue and flushed to the first
connection that acknowledges. Both buffers are bounded and entries expire
after a TTL.

Wire format (both directions): ``{"event": <name>, "data": {...}}``.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Iterable
from uuid import uuid4

from fastapi import WebSocket, status
from fastapi.encoders import jsonable_encoder

from ..core.security import decode_token
from ..models import utcnow

logger = logging.getLogger(__name__)

USER_ROOM_PREFIX = "user_"
ROLE_ROOM_PREFIX = "role_"


def user_room(user_id: Any) -> str:
    return f"{USER_ROOM_PREFIX}{user_id}"


def role_room(role: Any) -> str:
    return f"{ROLE_ROOM_PREFIX}{getattr(role, 'value', role)}"


@dataclass
class _PendingEvent:
    event: str
    payload: dict[str, Any]
    queued_at: float


@dataclass
class Connection:
    """One connected socket and the identity it authenticated with."""

    websocket: WebSocket
    user_id: str
    role: str
    rooms: set[str]
    id: str = field(default_factory=lambda: uuid4().hex)
    ready: bool = False
    pending: deque[_PendingEvent] = field(default_factory=deque)


class RealtimeGateway:
    """In-process room registry and event fan-out for WebSocket clients."""

    def __init__(self, pending_ttl_seconds: float = 30, pending_limit: int = 100):
        self.pending_ttl_seconds = pending_ttl_seconds
        self.pending_limit = pending_limit
        self._connections: dict[str, Connection] = {}
        self._rooms: dict[str, set[str]] = {}
        self._pending: dict[str, deque[_PendingEvent]] = {}
        self._started = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._started

    async def start(self) -> None:
        self._started = True
        logger.info("Realtime gateway started")

    async def stop(self) -> None:
        """Close every socket and drop queued events."""
        self._started = False
        for connection in list(self._connections.values()):
            try:
                await connection.websocket.close(code=status.WS_1001_GOING_AWAY)
            except Exception as e:
                logger.debug(f"Error closing socket {connection.id}: {e}")
            self.disconnect(connection)
        self._pending.clear()
        logger.info("Realtime gateway stopped")

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    async def connect(self, websocket: WebSocket, token: str | None) -> Connection | None:
        """Authenticate and register a socket.

        Invalid or missing tokens close the socket with a policy-violation
        code before it is accepted.
        """
        payload = decode_token(token) if token else None
        if payload is None:
            logger.warning("Rejected socket connection: missing or invalid token")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return None

        await websocket.accept()
        connection = Connection(
            websocket=websocket,
            user_id=payload.sub,
            role=payload.role,
            rooms={user_room(payload.sub), role_room(payload.role)},
            pending=deque(maxlen=self.pending_limit),
        )
        self._connections[connection.id] = connection
        for room in connection.rooms:
            self._rooms.setdefault(room, set()).add(connection.id)

        logger.info(
            f"Socket {connection.id} connected for user {connection.user_id} "
            f"(role={connection.role})"
        )
        await self._send(
            connection,
            "connection:established",
            {
                "userId": connection.user_id,
                "role": connection.role,
                "rooms": sorted(connection.rooms),
                "timestamp": utcnow().isoformat(),
            },
        )
        return connection

    def disconnect(self, connection: Connection) -> None:
        if self._connections.pop(connection.id, None) is None:
            return
        for room in connection.rooms:
            members = self._rooms.get(room)
            if members is None:
                continue
            members.discard(connection.id)
            if not members:
                del self._rooms[room]
        logger.info(f"Socket {connection.id} disconnected for user {connection.user_id}")

    async def handle_message(self, connection: Connection, message: dict[str, Any]) -> None:
        """Handle a client-to-server message."""
        event = message.get("event")
        data = message.get("data") or {}

        if event == "join:user":
            await self._acknowledge(connection, str(data.get("userId", "")))
        elif event == "ping":
            await self._send(connection, "pong", {"timestamp": utcnow().isoformat()})
        else:
            logger.debug(f"Ignoring unknown socket event {event!r} from {connection.id}")

    async def _acknowledge(self, connection: Connection, user_id: str) -> None:
        if user_id != connection.user_id:
            logger.warning(
                f"Socket {connection.id} tried to join user {user_id!r} "
                f"but authenticated as {connection.user_id}"
            )
            await self._send(
                connection,
                "error",
                {"message": "Cannot join another user's room", "timestamp": utcnow().isoformat()},
            )
            return

        connection.ready = True
        await self._send(
            connection,
            "join:ack",
            {
                "userId": connection.user_id,
                "rooms": sorted(connection.rooms),
                "timestamp": utcnow().isoformat(),
            },
        )
        await self._flush_pending(connection)

    # =========================================================================
    # EMISSION
    # =========================================================================

    async def emit(
        self,
        event: str,
        payload: dict[str, Any],
        rooms: Iterable[str] | None = None,
    ) -> int:
        """Send an event to the given rooms, or to every connection.

        Returns the number of sockets the event was written to.
        """
        if not self._started:
            logger.warning(f"Gateway not running; dropping event {event}")
            return 0

        data = jsonable_encoder({**payload, "timestamp": payload.get("timestamp") or utcnow().isoformat()})
        room_list = list(rooms) if rooms is not None else None

        if room_list is None:
            targets = list(self._connections.values())
        else:
            connection_ids: set[str] = set()
            for room in room_list:
                connection_ids |= self._rooms.get(room, set())
            targets = [self._connections[cid] for cid in connection_ids if cid in self._connections]

        # User rooms with no socket at all fall back to the per-user queue
        offline_users = {
            room[len(USER_ROOM_PREFIX):]
            for room in room_list or ()
            if room.startswith(USER_ROOM_PREFIX) and not self._rooms.get(room)
        }
        for user_id in offline_users:
            self._enqueue(user_id, event, data)

        delivered = 0
        buffered = 0
        for connection in targets:
            if connection.ready:
                if await self._send(connection, event, data):
                    delivered += 1
            else:
                self._buffer(connection.pending, event, data, time.monotonic())
                buffered += 1

        logger.debug(
            f"Emitted {event} to {delivered} socket(s), buffered for {buffered} "
            f"unacknowledged socket(s), queued for {len(offline_users)} offline user(s)"
        )
        return delivered

    async def _send(self, connection: Connection, event: str, data: dict[str, Any]) -> bool:
        try:
            await connection.websocket.send_json({"event": event, "data": data})
            return True
        except Exception as e:
            # Best-effort delivery; a broken socket is dropped
            logger.info(f"Dropping socket {connection.id} after failed send of {event}: {e}")
            self.disconnect(connection)
            return False

    # =========================================================================
    # PENDING QUEUE
    # =========================================================================

    def _buffer(self, queue: deque[_PendingEvent], event: str, data: dict[str, Any], now: float) -> None:
        while queue and now - queue[0].queued_at > self.pending_ttl_seconds:
            queue.popleft()
        queue.append(_PendingEvent(event=event, payload=data, queued_at=now))

    def _enqueue(self, user_id: str, event: str, data: dict[str, Any]) -> None:
        now = time.monotonic()
        self._prune(now)
        queue = self._pending.setdefault(user_id, deque(maxlen=self.pending_limit))
        self._buffer(queue, event, data, now)

    def _prune(self, now: float) -> None:
        for user_id in list(self._pending):
            queue = self._pending[user_id]
            while queue and now - queue[0].queued_at > self.pending_ttl_seconds:
                queue.popleft()
            if not queue:
                del self._pending[user_id]

    async def _flush_pending(self, connection: Connection) -> None:
        """Send what queued up before this connection acknowledged.

        Events from before the user had any socket come first, then the
        events buffered on the connection itself.
        """
        queued = list(self._pending.pop(connection.user_id, ()))
        queued.extend(connection.pending)
        connection.pending.clear()
        if not queued:
            return
        now = time.monotonic()
        sent = 0
        for item in queued:
            if now - item.queued_at > self.pending_ttl_seconds:
                continue
            if not await self._send(connection, item.event, item.payload):
                break
            sent += 1
        logger.info(f"Flushed {sent} queued event(s) to socket {connection.id} of user {connection.user_id}")

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def room_members(self, room: str) -> set[str]:
        """User ids with a connection in ``room``."""
        return {
            self._connections[cid].user_id
            for cid in self._rooms.get(room, ())
            if cid in self._connections
        }

    def pending_events(self, user_id: Any) -> list[tuple[str, dict[str, Any]]]:
        """Events queued for a user with no connection."""
        return [(item.event, item.payload) for item in self._pending.get(str(user_id), ())]
