"""WebSocket chat handler: one ``ChatSession`` per connected client.

The main entry point is ``websocket_chat()``, which server.py mounts at
``/ws``.  The first frame must be an ``auth`` event naming an existing user;
after that each frame is parsed into a typed client event and dispatched
to the router.  Frames are handled one at a time, in arrival order.
"""

import logging

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from .events import (
    AuthEvent,
    ChannelMessageEvent,
    DirectMessageEvent,
    TypingStartEvent,
    TypingStopEvent,
    parse_client_event,
)
from .presence import PresenceTracker
from .router import MessageRouter
from .session_registry import Connection
from .storage import MemoryStorage
from .ws_constants import (
    CLOSE_UNAUTHORIZED,
    MSG_AUTH,
    MSG_DM_MESSAGE,
    MSG_MESSAGE,
    MSG_TYPING_START,
    MSG_TYPING_STOP,
)

logger = logging.getLogger(__name__)


class ChatSession:
    """Holds the state of a single authenticated WebSocket connection.

    Each event type is handled by a ``handle_<type>`` method, keeping the
    main loop thin and each handler focused on one concern.
    """

    def __init__(
        self,
        connection: Connection,
        *,
        router: MessageRouter,
        presence: PresenceTracker,
    ):
        self.connection = connection
        self.user_id = connection.user_id
        self.router = router
        self.presence = presence

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def handle_auth(self, event: AuthEvent) -> None:
        if event.od_id != self.user_id:
            logger.warning(
                "Ignoring re-auth as %s on connection of %s", event.od_id, self.user_id
            )

    async def handle_message(self, event: ChannelMessageEvent) -> None:
        await self.router.handle_channel_message(
            self.user_id,
            event.channel_id,
            event.content,
            event.media(),
            event.reply_to_id,
            nonce=event.nonce,
        )

    async def handle_dm_message(self, event: DirectMessageEvent) -> None:
        await self.router.handle_direct_message(
            self.user_id,
            event.to_user_id,
            event.content,
            event.media(),
            nonce=event.nonce,
        )

    async def handle_typing_start(self, event: TypingStartEvent) -> None:
        await self.router.handle_typing_start(self.user_id, event.channel_id)

    async def handle_typing_stop(self, event: TypingStopEvent) -> None:
        await self.router.handle_typing_stop(self.user_id, event.channel_id)

    # ------------------------------------------------------------------
    # Main loop & cleanup
    # ------------------------------------------------------------------

    # Dispatch table: event type -> handler method name.  Every member of
    # events.ClientEvent must appear here.
    _HANDLERS = {
        MSG_AUTH: "handle_auth",
        MSG_MESSAGE: "handle_message",
        MSG_DM_MESSAGE: "handle_dm_message",
        MSG_TYPING_START: "handle_typing_start",
        MSG_TYPING_STOP: "handle_typing_stop",
    }

    async def dispatch(self, raw: str) -> None:
        """Parse and handle one frame.  Never raises."""
        try:
            event = parse_client_event(raw)
        except ValidationError as e:
            logger.warning(
                "Dropping malformed event from %s (%d validation errors)",
                self.user_id, e.error_count(),
            )
            return

        handler_name = self._HANDLERS.get(event.type)
        if not handler_name:
            logger.error("No handler registered for event type %s", event.type)
            return

        try:
            await getattr(self, handler_name)(event)
        except Exception:
            logger.exception("Unexpected error handling event type=%s from %s", event.type, self.user_id)

    async def run(self) -> None:
        """Main receive loop; returns when the client goes away."""
        try:
            while True:
                try:
                    data = await self.connection.ws.receive_text()
                except KeyError:
                    # binary frame
                    logger.warning("Dropping non-text frame from %s", self.user_id)
                    continue
                await self.dispatch(data)
        except (WebSocketDisconnect, RuntimeError):
            pass
        finally:
            self.connection.alive = False

    async def cleanup(self) -> None:
        """Deregister and clear transient state on disconnect."""
        try:
            departed = await self.presence.disconnect(self.user_id, self.connection)
        except Exception:
            logger.exception("presence disconnect failed for %s", self.user_id)
            # Typing still has to be cleared if the mapping did go away.
            departed = not self.presence.registry.is_online(self.user_id)
        if not departed:
            logger.info("Superseded connection for %s closed", self.user_id)
            return
        try:
            await self.router.user_departed(self.user_id)
        except Exception:
            logger.exception("typing cleanup failed for %s", self.user_id)


# ------------------------------------------------------------------
# FastAPI endpoint -- this is what server.py mounts at /ws
# ------------------------------------------------------------------

async def websocket_chat(
    websocket: WebSocket,
    *,
    storage: MemoryStorage,
    router: MessageRouter,
    presence: PresenceTracker,
) -> None:
    """WebSocket endpoint handler for /ws."""
    await websocket.accept()

    # Auth: first frame must be an auth event for a known user
    try:
        first = parse_client_event(await websocket.receive_text())
    except WebSocketDisconnect:
        return
    except (ValidationError, KeyError):
        first = None
    if not isinstance(first, AuthEvent) or await storage.get_user(first.od_id) is None:
        logger.warning("Rejecting WebSocket: first frame is not a valid auth event")
        await websocket.close(code=CLOSE_UNAUTHORIZED, reason="Unauthorized")
        return

    connection = Connection(websocket, first.od_id)
    session = ChatSession(connection, router=router, presence=presence)
    try:
        await presence.connect(first.od_id, connection)
        await session.run()
    finally:
        await session.cleanup()
