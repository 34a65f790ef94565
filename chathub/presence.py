"""Presence tracking: online/offline transitions derived from the registry."""

import logging

from .session_registry import Connection, SessionRegistry
from .storage import MemoryStorage
from .ws_constants import (
    MSG_USER_STATUS,
    MSG_USERS_ONLINE,
    STATUS_OFFLINE,
    STATUS_ONLINE,
)

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Registers connections and announces the resulting status changes.

    A user goes Offline -> Online when their first connection registers and
    Online -> Offline when that connection deregisters.  A replacement
    connection for an already-online user is not a transition and is not
    announced.
    """

    def __init__(self, registry: SessionRegistry, storage: MemoryStorage):
        self.registry = registry
        self.storage = storage

    async def roster(self) -> list[dict]:
        """Profile and status of every user with a registered connection."""
        online = self.registry.all_online_ids()
        users = await self.storage.get_all_users()
        return [
            {
                "id": u.id,
                "username": u.username,
                "avatarColor": u.avatar_color,
                "avatarUrl": u.avatar_url,
                "status": u.status,
            }
            for u in users
            if u.id in online
        ]

    async def connect(self, user_id: str, connection: Connection) -> None:
        was_online = self.registry.is_online(user_id)
        self.registry.register(user_id, connection)

        if not was_online:
            await self.storage.update_user_status(user_id, STATUS_ONLINE)
            await self.registry.broadcast(
                {"type": MSG_USER_STATUS, "odId": user_id, "status": STATUS_ONLINE},
                exclude=user_id,
            )
            logger.info("User %s online (%d connected)", user_id, len(self.registry))

        # The snapshot goes out after registration so it includes the user
        # themself and every transition that happened before it.
        await connection.send({"type": MSG_USERS_ONLINE, "users": await self.roster()})

    async def disconnect(self, user_id: str, connection: Connection | None = None) -> bool:
        """Deregister and announce offline.  Returns False if *connection* was
        already superseded, in which case nothing is announced."""
        if not self.registry.deregister(user_id, connection):
            return False
        await self.storage.update_user_status(user_id, STATUS_OFFLINE)
        await self.registry.broadcast(
            {"type": MSG_USER_STATUS, "odId": user_id, "status": STATUS_OFFLINE},
            exclude=user_id,
        )
        logger.info("User %s offline (%d connected)", user_id, len(self.registry))
        return True
