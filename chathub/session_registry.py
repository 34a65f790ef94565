"""Session registry: one live connection per user, and fan-out over them.

The registry is owned by the server process and handed to the presence
tracker and router by reference.  All mutation happens on the event loop,
so no locking is needed; ``broadcast`` iterates over a snapshot so a
registration that lands while a send is awaiting does not disturb it.
"""

import logging

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


class Connection:
    """A user's live WebSocket.  Sending never raises."""

    def __init__(self, websocket: WebSocket, user_id: str):
        self.ws = websocket
        self.user_id = user_id
        self.alive = True

    async def send(self, data: dict) -> bool:
        """Send JSON to the client, return False if it is gone."""
        if not self.alive:
            return False
        try:
            await self.ws.send_json(data)
            return True
        except (WebSocketDisconnect, RuntimeError):
            self.alive = False
            return False

    def __repr__(self) -> str:
        return f"<Connection user={self.user_id} alive={self.alive}>"


class SessionRegistry:
    def __init__(self):
        self._connections: dict[str, Connection] = {}

    def register(self, user_id: str, connection: Connection) -> Connection | None:
        """Map *user_id* to *connection*, returning whatever it replaced.

        The replaced connection is not closed; it simply stops receiving.
        """
        previous = self._connections.get(user_id)
        self._connections[user_id] = connection
        if previous is not None and previous is not connection:
            logger.info("Connection for user %s superseded", user_id)
            return previous
        return None

    def deregister(self, user_id: str, connection: Connection | None = None) -> bool:
        """Remove the mapping for *user_id*.

        When *connection* is given, only remove it if it is still the
        registered one, so a superseded socket closing late cannot log out
        its replacement.  Returns True if a mapping was removed.
        """
        current = self._connections.get(user_id)
        if current is None:
            return False
        if connection is not None and current is not connection:
            return False
        del self._connections[user_id]
        return True

    def is_online(self, user_id: str) -> bool:
        return user_id in self._connections

    def connection_for(self, user_id: str) -> Connection | None:
        return self._connections.get(user_id)

    def all_online_ids(self) -> set[str]:
        return set(self._connections)

    def __len__(self) -> int:
        return len(self._connections)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _deliver(self, user_id: str, connection: Connection, data: dict) -> bool:
        try:
            return await connection.send(data)
        except Exception:
            logger.exception("Delivery to user %s failed", user_id)
            return False

    async def broadcast(self, data: dict, *, exclude: str | None = None) -> int:
        """Send *data* to every registered connection except *exclude*.

        Returns the number of successful deliveries.  A failing recipient
        never stops delivery to the rest.
        """
        delivered = 0
        for user_id, connection in list(self._connections.items()):
            if user_id == exclude:
                continue
            if await self._deliver(user_id, connection, data):
                delivered += 1
        return delivered

    async def send_to(self, user_id: str, data: dict) -> bool:
        """Send *data* to one user's connection, if they are online."""
        connection = self._connections.get(user_id)
        if connection is None:
            return False
        return await self._deliver(user_id, connection, data)
