"""Presence registry for direct messaging.

Maps an authenticated user id to every live WebSocket that registered as
that user. A user may be online from several tabs or devices at once; each
connection is tracked separately and receives every push addressed to the
user.

Thread Safety:
    Designed for a single asyncio event loop. It is NOT thread-safe for
    concurrent access from multiple threads.

Performance Notes:
    - Pushes use asyncio.gather() for concurrent delivery
    - Connections whose send fails are unregistered during the push
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Tracks which live connections belong to which user.

    State is process-lifetime only; clients register again after a
    reconnect or a server restart.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        # user_id -> set of live connections
        self.user_connections: Dict[int, Set[WebSocket]] = {}

        # connection -> user_id for disconnect handling
        self.connection_to_user: Dict[WebSocket, int] = {}

    def register(self, user_id: int, websocket: WebSocket) -> None:
        """Associate a connection with a user.

        Adds to the user's set of connections; earlier connections of the
        same user stay registered. A connection previously registered as a
        different user is moved.

        Args:
            user_id: The authenticated user id.
            websocket: The live connection.
        """
        previous = self.connection_to_user.get(websocket)
        if previous is not None and previous != user_id:
            self._discard(previous, websocket)

        self.user_connections.setdefault(user_id, set()).add(websocket)
        self.connection_to_user[websocket] = user_id
        logger.info(
            "[Registry] User %s registered (%d live connections)",
            user_id,
            len(self.user_connections[user_id]),
        )

    def unregister(self, websocket: WebSocket) -> Optional[int]:
        """Remove a connection from whichever user owned it.

        Args:
            websocket: The connection to remove.

        Returns:
            The user id the connection belonged to, or None if unknown.
        """
        user_id = self.connection_to_user.pop(websocket, None)
        if user_id is None:
            return None
        self._discard(user_id, websocket)
        logger.info(
            "[Registry] Connection of user %s removed (%d remaining)",
            user_id,
            len(self.user_connections.get(user_id, ())),
        )
        return user_id

    def handles_for(self, user_id: int) -> Set[WebSocket]:
        """Return a snapshot of the user's live connections (possibly empty)."""
        return set(self.user_connections.get(user_id, ()))

    def user_for(self, websocket: WebSocket) -> Optional[int]:
        """Return the user a connection is registered as, if any."""
        return self.connection_to_user.get(websocket)

    def is_online(self, user_id: int) -> bool:
        return bool(self.user_connections.get(user_id))

    def online_users(self) -> List[int]:
        return sorted(self.user_connections)

    def clear(self) -> None:
        """Forget every connection."""
        self.user_connections.clear()
        self.connection_to_user.clear()

    async def send_to_user(self, user_id: int, message: Dict[str, Any]) -> int:
        """Send a frame to every live connection of a user concurrently.

        An offline user is not an error: the frame is dropped and the
        client catches up through the REST snapshot after reconnecting.

        Args:
            user_id: Target user.
            message: JSON-serializable frame.

        Returns:
            Number of connections the frame was delivered to.
        """
        connections = list(self.user_connections.get(user_id, ()))
        if not connections:
            return 0

        results = await asyncio.gather(
            *[self._safe_send(conn, message) for conn in connections],
            return_exceptions=True
        )

        delivered = 0
        for conn, success in zip(connections, results):
            if success is True:
                delivered += 1
            else:
                self.unregister(conn)
                logger.debug("[Registry] Removed dead connection of user %s", user_id)
        return delivered

    async def _safe_send(self, connection: WebSocket, message: Dict[str, Any]) -> bool:
        """Send a frame, reporting failure instead of raising.

        Returns:
            True if successful, False if the connection failed.
        """
        try:
            await connection.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False

    def _discard(self, user_id: int, websocket: WebSocket) -> None:
        connections = self.user_connections.get(user_id)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            del self.user_connections[user_id]


# Global singleton instance shared by the WebSocket endpoint and REST facade
registry = ConnectionRegistry()
