# hirehub/services/rooms.py
"""
Room-based fan-out over live connections.

Each `Connection` owns one outbound queue drained by a single writer task, so
events addressed to the same connection are written in the order they were
queued. Delivery is fire-and-forget: no ack, no retry, and a room without
members is a no-op.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

SendFn = Callable[[Dict[str, Any]], Awaitable[None]]

DEFAULT_QUEUE_LIMIT = 100


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def conversation_room(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def evaluation_room(evaluation_id: str) -> str:
    return f"evaluation:{evaluation_id}"


class Connection:
    def __init__(self, user_id: str, send: SendFn, channel: str = "default",
                 email: Optional[str] = None, connection_id: Optional[str] = None,
                 queue_limit: int = DEFAULT_QUEUE_LIMIT):
        self.id = connection_id or uuid.uuid4().hex
        self.user_id = user_id
        self.email = email
        self.channel = channel
        self.authenticated_at = datetime.now(timezone.utc)
        self._send = send
        self._queue_limit = queue_limit
        self._queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None
        self.closed = False

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self.user_id!r}, channel={self.channel!r})"

    @property
    def backlog(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.get_running_loop().create_task(self._drain())

    def deliver(self, event: str, payload: Any, droppable: bool = False, frame_id: Optional[str] = None) -> bool:
        """Queue one frame. Returns False when the frame was not queued."""
        if self.closed:
            return False
        if droppable and self._queue.qsize() >= self._queue_limit:
            logger.debug("Dropping %s for connection %s (backlog %s)", event, self.id, self._queue.qsize())
            return False
        frame: Dict[str, Any] = {"event": event, "data": payload}
        if frame_id is not None:
            frame["id"] = frame_id
        self._queue.put_nowait(frame)
        return True

    async def _drain(self) -> None:
        while True:
            frame = await self._queue.get()
            try:
                await self._send(frame)
            except asyncio.CancelledError:
                self._queue.task_done()
                raise
            except Exception:
                logger.warning("Send failed on connection %s; closing writer", self.id, exc_info=True)
                self.closed = True
                self._queue.task_done()
                self._discard_pending()
                return
            self._queue.task_done()

    def _discard_pending(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued frame has been handed to the transport."""
        if self._writer is None or self._writer.done():
            return
        await self._queue.join()

    async def close(self) -> None:
        self.closed = True
        writer, self._writer = self._writer, None
        if writer is not None and not writer.done():
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass
        self._discard_pending()


class RoomRouter:
    def __init__(self, channel: str = "default"):
        self.channel = channel
        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[str, Set[str]] = {}
        self._memberships: Dict[str, Set[str]] = {}

    def add_connection(self, connection: Connection) -> None:
        self._connections[connection.id] = connection
        self._memberships.setdefault(connection.id, set())
        connection.start()
        # every connection is addressable through its owner's personal room
        self.join(connection.id, user_room(connection.user_id))

    async def remove_connection(self, connection_id: str) -> Optional[Connection]:
        for room in list(self._memberships.get(connection_id, ())):
            self.leave(connection_id, room)
        self._memberships.pop(connection_id, None)
        connection = self._connections.pop(connection_id, None)
        if connection is not None:
            await connection.close()
        return connection

    def connection(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    def join(self, connection_id: str, room: str) -> bool:
        if connection_id not in self._connections:
            return False
        self._rooms.setdefault(room, set()).add(connection_id)
        self._memberships[connection_id].add(room)
        return True

    def leave(self, connection_id: str, room: str) -> bool:
        members = self._rooms.get(room)
        if not members or connection_id not in members:
            return False
        members.discard(connection_id)
        if not members:
            del self._rooms[room]
        self._memberships.get(connection_id, set()).discard(room)
        return True

    def members(self, room: str) -> Set[str]:
        return set(self._rooms.get(room, ()))

    def rooms_of(self, connection_id: str) -> Set[str]:
        return set(self._memberships.get(connection_id, ()))

    def broadcast(self, room: str, event: str, payload: Any, exclude_connection: Optional[str] = None,
                  exclude_user: Optional[str] = None, droppable: bool = False) -> int:
        return self.broadcast_many([room], event, payload, exclude_connection=exclude_connection,
                                   exclude_user=exclude_user, droppable=droppable)

    def broadcast_many(self, rooms: Iterable[str], event: str, payload: Any,
                       exclude_connection: Optional[str] = None, exclude_user: Optional[str] = None,
                       droppable: bool = False) -> int:
        """Deliver to the union of the rooms' members; each connection gets the event once."""
        targets: List[Connection] = []
        seen: Set[str] = set()
        for room in rooms:
            for cid in sorted(self._rooms.get(room, ())):
                if cid == exclude_connection or cid in seen:
                    continue
                seen.add(cid)
                conn = self._connections.get(cid)
                if conn is None or (exclude_user is not None and conn.user_id == exclude_user):
                    continue
                targets.append(conn)
        if not targets:
            return 0
        body = jsonable_encoder(payload)
        return sum(1 for conn in targets if conn.deliver(event, body, droppable=droppable))

    def broadcast_all(self, event: str, payload: Any) -> int:
        body = jsonable_encoder(payload)
        return sum(1 for conn in self.connections() if conn.deliver(event, body))

    async def flush(self) -> None:
        for conn in self.connections():
            await conn.flush()

    async def close_all(self) -> None:
        for cid in list(self._connections):
            await self.remove_connection(cid)
