"""
Cmdlink - Server-side connection registry.

Maps connection ids to live connections. Accept and receive threads mutate
the registry concurrently, so every access goes through a single lock and
broadcasts iterate over a snapshot instead of the live mapping.
"""

import threading
from typing import TYPE_CHECKING, Dict, List, Tuple

from .errors import ConnectionNotFound

if TYPE_CHECKING:
    from .network import Connection


class ConnectionRegistry:
    """Thread-safe id -> Connection mapping."""

    def __init__(self):
        self._connections: Dict[int, "Connection"] = {}
        self._lock = threading.Lock()

    def insert(self, connection_id: int, connection: "Connection") -> None:
        with self._lock:
            self._connections[connection_id] = connection

    def get(self, connection_id: int) -> "Connection":
        """
        Look up a live connection.

        Raises:
            ConnectionNotFound: If the id is unknown or already removed
        """
        with self._lock:
            try:
                return self._connections[connection_id]
            except KeyError:
                raise ConnectionNotFound(connection_id) from None

    def remove(self, connection_id: int) -> bool:
        """Remove a connection. Returns False if it was not registered."""
        with self._lock:
            return self._connections.pop(connection_id, None) is not None

    def snapshot(self) -> List[Tuple[int, "Connection"]]:
        """Copy of all (id, connection) pairs in id order, taken under the lock."""
        with self._lock:
            return sorted(self._connections.items())

    def ids(self) -> List[int]:
        return [connection_id for connection_id, _ in self.snapshot()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._connections

    def __repr__(self) -> str:
        return f"ConnectionRegistry(ids={self.ids()})"
