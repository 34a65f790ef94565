"""Message router: turns inbound client events into stored state and fan-out.

Each inbound message goes through the same pipeline regardless of where it
came from (WebSocket or REST):

1. shape check -- a message needs text or media
2. content policy -- blocked or spammy text is rejected
3. per-sender rate limit
4. persistence (reply resolution and author snapshot happen in storage)
5. fan-out -- channel messages to everyone, DMs to exactly the pair

``submit_*`` methods raise on rejection so REST handlers can map failures
to status codes.  ``handle_*`` methods are the WebSocket entry points: they
never raise, and apply the realtime failure policy (silent drop for policy
and validation failures, an ``error`` event to the sender for rate limits).
"""

import logging
import os

from .content_policy import PolicyViolation, check_content
from .models import Channel, Friend, FriendRequest, MediaRefs, Message, MessageCreate, User
from .rate_limit import RateLimitExceeded, SlidingWindowRateLimiter
from .session_registry import SessionRegistry
from .storage import MemoryStorage
from .typing_tracker import TypingTracker
from .ws_constants import (
    MSG_AVATAR_UPDATED,
    MSG_CHANNEL_CREATED,
    MSG_DM_MESSAGE,
    MSG_ERROR,
    MSG_FRIEND_ACCEPTED,
    MSG_FRIEND_REQUEST,
    MSG_MESSAGE,
)

logger = logging.getLogger(__name__)

ECHO_TO_SENDER = os.environ.get("CHATHUB_ECHO_TO_SENDER", "1") != "0"


class MessageRouter:
    def __init__(
        self,
        registry: SessionRegistry,
        storage: MemoryStorage,
        typing: TypingTracker,
        *,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        echo_to_sender: bool = ECHO_TO_SENDER,
    ):
        self.registry = registry
        self.storage = storage
        self.typing = typing
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self.echo_to_sender = echo_to_sender

    def _accept(self, sender_id: str, body: str, media: MediaRefs) -> None:
        if not body.strip() and not media.has_media():
            raise ValueError("Message is empty")
        check_content(body)
        self.rate_limiter.check(sender_id)

    # ------------------------------------------------------------------
    # Channel messages
    # ------------------------------------------------------------------

    async def submit_channel_message(
        self,
        sender_id: str,
        channel_id: str,
        body: str,
        media: MediaRefs | None = None,
        reply_to_id: str | None = None,
        *,
        nonce: str | None = None,
    ) -> Message:
        media = media or MediaRefs()
        self._accept(sender_id, body, media)

        data = MessageCreate(content=body, reply_to_id=reply_to_id, **media.model_dump())
        try:
            message = await self.storage.create_message(sender_id, channel_id, data)
        except ValueError:
            self.rate_limiter.refund(sender_id)
            raise

        event = {"type": MSG_MESSAGE, "message": message.to_wire()}
        if nonce:
            event["nonce"] = nonce
        await self.registry.broadcast(
            event, exclude=None if self.echo_to_sender else sender_id
        )
        # Sending ends the sender's typing indicator in that channel.
        await self.typing.stop(sender_id, channel_id)
        return message

    async def handle_channel_message(
        self,
        sender_id: str,
        channel_id: str,
        body: str,
        media: MediaRefs | None = None,
        reply_to_id: str | None = None,
        *,
        nonce: str | None = None,
    ) -> Message | None:
        try:
            return await self.submit_channel_message(
                sender_id, channel_id, body, media, reply_to_id, nonce=nonce
            )
        except PolicyViolation as e:
            logger.debug("Dropped message from %s in %s (%s)", sender_id, channel_id, e.rule)
        except RateLimitExceeded as e:
            logger.warning("Rate limit hit by %s", sender_id)
            await self.registry.send_to(sender_id, {"type": MSG_ERROR, "message": e.message})
        except ValueError as e:
            logger.warning("Rejected message from %s in %s: %s", sender_id, channel_id, e)
        return None

    # ------------------------------------------------------------------
    # Direct messages
    # ------------------------------------------------------------------

    async def submit_direct_message(
        self,
        sender_id: str,
        recipient_id: str,
        body: str,
        media: MediaRefs | None = None,
        *,
        nonce: str | None = None,
    ) -> Message:
        media = media or MediaRefs()
        self._accept(sender_id, body, media)

        try:
            message = await self.storage.create_dm_message(sender_id, recipient_id, body, media)
        except ValueError:
            self.rate_limiter.refund(sender_id)
            raise
        payload = message.to_wire()

        sender_event = {"type": MSG_DM_MESSAGE, "message": payload, "odId": recipient_id}
        if nonce:
            sender_event["nonce"] = nonce
        await self.registry.send_to(sender_id, sender_event)
        if recipient_id != sender_id:
            await self.registry.send_to(
                recipient_id, {"type": MSG_DM_MESSAGE, "message": payload, "odId": sender_id}
            )
        return message

    async def handle_direct_message(
        self,
        sender_id: str,
        recipient_id: str,
        body: str,
        media: MediaRefs | None = None,
        *,
        nonce: str | None = None,
    ) -> Message | None:
        try:
            return await self.submit_direct_message(
                sender_id, recipient_id, body, media, nonce=nonce
            )
        except PolicyViolation as e:
            logger.debug("Dropped DM from %s to %s (%s)", sender_id, recipient_id, e.rule)
        except RateLimitExceeded as e:
            logger.warning("Rate limit hit by %s", sender_id)
            await self.registry.send_to(sender_id, {"type": MSG_ERROR, "message": e.message})
        except ValueError as e:
            logger.warning("Rejected DM from %s to %s: %s", sender_id, recipient_id, e)
        return None

    # ------------------------------------------------------------------
    # Typing
    # ------------------------------------------------------------------

    async def handle_typing_start(self, user_id: str, channel_id: str) -> None:
        user = await self.storage.get_user(user_id)
        if user is None:
            logger.warning("typing_start from unknown user %s", user_id)
            return
        if await self.storage.get_channel(channel_id) is None:
            logger.warning("typing_start for unknown channel %s", channel_id)
            return
        await self.typing.start(user_id, channel_id, user.username)

    async def handle_typing_stop(self, user_id: str, channel_id: str) -> None:
        await self.typing.stop(user_id, channel_id)

    async def user_departed(self, user_id: str) -> None:
        """Clear transient per-user state after the user's connection is gone."""
        await self.typing.clear_user(user_id)
        self.rate_limiter.prune()

    # ------------------------------------------------------------------
    # Fan-out for changes made over REST
    # ------------------------------------------------------------------

    async def announce_channel(self, channel: Channel) -> None:
        await self.registry.broadcast({"type": MSG_CHANNEL_CREATED, "channel": channel.to_wire()})

    async def notify_friend_request(self, request: FriendRequest) -> None:
        await self.registry.send_to(
            request.to_user_id, {"type": MSG_FRIEND_REQUEST, "request": request.to_wire()}
        )

    async def notify_friend_accepted(self, requester_id: str, friend: Friend) -> None:
        await self.registry.send_to(
            requester_id, {"type": MSG_FRIEND_ACCEPTED, "friend": friend.to_wire()}
        )

    async def announce_avatar(self, user: User) -> None:
        await self.registry.broadcast({
            "type": MSG_AVATAR_UPDATED,
            "userId": user.id,
            "avatarUrl": user.avatar_url,
            "username": user.username,
        })
