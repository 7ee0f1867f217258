# hirehub/services/presence.py
"""
Presence registry: user id <-> active connection ids.

Purely in-memory and lost on restart. All mutations go through one lock so
connect/disconnect events racing for the same user cannot interleave.
"""

import logging
import threading
from typing import Dict, Optional, Set

logger = logging.getLogger(__name__)


class PresenceRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._user_connections: Dict[str, Set[str]] = {}
        self._connection_users: Dict[str, str] = {}

    def register(self, user_id: str, connection_id: str) -> None:
        with self._lock:
            previous = self._connection_users.get(connection_id)
            if previous is not None and previous != user_id:
                # a connection id belongs to exactly one user
                self._discard(previous, connection_id)
            self._user_connections.setdefault(user_id, set()).add(connection_id)
            self._connection_users[connection_id] = user_id

    def unregister(self, user_id: str, connection_id: str) -> None:
        with self._lock:
            self._discard(user_id, connection_id)
            if self._connection_users.get(connection_id) == user_id:
                del self._connection_users[connection_id]

    def _discard(self, user_id: str, connection_id: str) -> None:
        conns = self._user_connections.get(user_id)
        if conns is None:
            return
        conns.discard(connection_id)
        if not conns:
            # drop empty entries so the map only holds online users
            del self._user_connections[user_id]

    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return bool(self._user_connections.get(user_id))

    def connection_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._user_connections.get(user_id, ()))

    def connections_of(self, user_id: str) -> Set[str]:
        with self._lock:
            return set(self._user_connections.get(user_id, ()))

    def user_for(self, connection_id: str) -> Optional[str]:
        with self._lock:
            return self._connection_users.get(connection_id)

    def all_online_users(self) -> Set[str]:
        with self._lock:
            return set(self._user_connections)

    def clear(self) -> None:
        with self._lock:
            self._user_connections.clear()
            self._connection_users.clear()
