"""In-memory persistence for users, channels, messages and friendships.

This is the storage collaborator the realtime core talks to.  Every public
method is a coroutine so callers treat it as an I/O boundary; mutations are
serialized with one ``asyncio.Lock`` in the same way the file-backed stores
guard their read-modify-write cycles.

Message logs are append-only: one list per channel and one per unordered
pair of DM participants.  Readers get copies, so a log that grows after a
read is never observed half-written.

Errors are raised as ``ValueError`` with a user-presentable message
("User not found", "Cannot add yourself", ...).
"""

import asyncio
import logging
import random
from datetime import datetime, timezone
from uuid import uuid4

from .models import (
    DM_CHANNEL_ID,
    Channel,
    ChannelCreate,
    Friend,
    FriendRequest,
    MediaRefs,
    Message,
    MessageCreate,
    User,
    UserCreate,
    UserStatus,
)

logger = logging.getLogger(__name__)

AVATAR_COLORS = (
    "#5865F2", "#57F287", "#FEE75C", "#EB459E", "#ED4245",
    "#9B59B6", "#3498DB", "#1ABC9C", "#E91E63", "#FF9800",
)

DEFAULT_CHANNELS = ("general", "random", "introductions")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def dm_key(user_a: str, user_b: str) -> tuple[str, str]:
    """Canonical key for the DM log shared by two users."""
    first, second = sorted((user_a, user_b))
    return first, second


class MemoryStorage:
    def __init__(self, *, seed_channels: bool = True):
        self._users: dict[str, User] = {}
        self._channels: dict[str, Channel] = {}
        self._messages: dict[str, Message] = {}
        self._channel_logs: dict[str, list[Message]] = {}
        self._dm_logs: dict[tuple[str, str], list[Message]] = {}
        self._friend_requests: dict[str, FriendRequest] = {}
        self._friendships: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()

        if seed_channels:
            for name in DEFAULT_CHANNELS:
                channel = Channel(id=uuid4().hex, name=name, kind="text")
                self._channels[channel.id] = channel

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def get_user_by_username(self, username: str) -> User | None:
        wanted = username.lower()
        for user in self._users.values():
            if user.username.lower() == wanted:
                return user
        return None

    async def get_all_users(self) -> list[User]:
        return list(self._users.values())

    async def create_user(self, data: UserCreate) -> User:
        async with self._lock:
            if await self.get_user_by_username(data.username):
                raise ValueError("Username already taken")
            user = User(
                id=uuid4().hex,
                username=data.username,
                avatar_color=data.avatar_color or random.choice(AVATAR_COLORS),
                status="offline",
            )
            self._users[user.id] = user
            self._friendships[user.id] = set()
        logger.info("Created user %s (%s)", user.username, user.id)
        return user

    async def update_user_status(self, user_id: str, status: UserStatus) -> User | None:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            user.status = status
            return user

    async def update_user_avatar(self, user_id: str, avatar_url: str) -> User | None:
        """Set the avatar for future messages; stored messages keep their snapshot."""
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            user.avatar_url = avatar_url
            return user

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    async def get_channels(self) -> list[Channel]:
        return list(self._channels.values())

    async def get_channel(self, channel_id: str) -> Channel | None:
        return self._channels.get(channel_id)

    async def create_channel(self, data: ChannelCreate) -> Channel:
        async with self._lock:
            channel = Channel(
                id=uuid4().hex,
                name=data.name,
                kind=data.kind,
                category=data.category,
            )
            self._channels[channel.id] = channel
        return channel

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def get_message(self, message_id: str) -> Message | None:
        return self._messages.get(message_id)

    async def get_messages(self, channel_id: str, limit: int | None = None) -> list[Message]:
        log = self._channel_logs.get(channel_id, [])
        if limit is not None:
            return log[-limit:] if limit > 0 else []
        return list(log)

    async def create_message(self, user_id: str, channel_id: str, data: MessageCreate) -> Message:
        """Append a channel message, snapshotting the author and any reply target.

        An unknown ``reply_to_id`` is kept as a dangling reference.
        """
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise ValueError("User not found")
            if channel_id not in self._channels:
                raise ValueError("Channel not found")

            reply_to = None
            if data.reply_to_id:
                target = self._messages.get(data.reply_to_id)
                if target is not None:
                    reply_to = target.snapshot()
                else:
                    logger.info("Reply target %s not found, storing as dangling", data.reply_to_id)

            message = Message(
                id=uuid4().hex,
                content=data.content,
                channel_id=channel_id,
                user_id=user.id,
                username=user.username,
                avatar_color=user.avatar_color,
                avatar_url=user.avatar_url,
                timestamp=_now(),
                image_url=data.image_url,
                video_url=data.video_url,
                video_name=data.video_name,
                audio_url=data.audio_url,
                audio_name=data.audio_name,
                reply_to_id=data.reply_to_id,
                reply_to=reply_to,
            )
            self._messages[message.id] = message
            self._channel_logs.setdefault(channel_id, []).append(message)
        return message

    async def get_dm_messages(self, user_a: str, user_b: str) -> list[Message]:
        return list(self._dm_logs.get(dm_key(user_a, user_b), []))

    async def create_dm_message(
        self, from_user_id: str, to_user_id: str, content: str, media: MediaRefs | None = None,
    ) -> Message:
        async with self._lock:
            user = self._users.get(from_user_id)
            if user is None:
                raise ValueError("User not found")
            if to_user_id not in self._users:
                raise ValueError("Recipient not found")
            media = media or MediaRefs()
            message = Message(
                id=uuid4().hex,
                content=content,
                channel_id=DM_CHANNEL_ID,
                user_id=user.id,
                username=user.username,
                avatar_color=user.avatar_color,
                avatar_url=user.avatar_url,
                timestamp=_now(),
                image_url=media.image_url,
                video_url=media.video_url,
                video_name=media.video_name,
                audio_url=media.audio_url,
                audio_name=media.audio_name,
            )
            self._dm_logs.setdefault(dm_key(from_user_id, to_user_id), []).append(message)
        return message

    # ------------------------------------------------------------------
    # Friends
    # ------------------------------------------------------------------

    def _as_friend(self, owner_id: str, user: User) -> Friend:
        return Friend(
            id=f"{owner_id}-{user.id}",
            od_id=user.id,
            username=user.username,
            avatar_color=user.avatar_color,
            avatar_url=user.avatar_url,
            status=user.status,
        )

    async def get_friends(self, user_id: str) -> list[Friend]:
        friends = []
        for friend_id in self._friendships.get(user_id, set()):
            user = self._users.get(friend_id)
            if user is not None:
                friends.append(self._as_friend(user_id, user))
        return friends

    async def get_friend_request(self, request_id: str) -> FriendRequest | None:
        return self._friend_requests.get(request_id)

    async def get_friend_requests(self, user_id: str) -> list[FriendRequest]:
        """Pending requests addressed to *user_id*."""
        return [
            r for r in self._friend_requests.values()
            if r.to_user_id == user_id and r.status == "pending"
        ]

    async def create_friend_request(self, from_user_id: str, to_username: str) -> FriendRequest:
        async with self._lock:
            from_user = self._users.get(from_user_id)
            to_user = await self.get_user_by_username(to_username)
            if from_user is None or to_user is None:
                raise ValueError("User not found")
            if from_user.id == to_user.id:
                raise ValueError("Cannot add yourself")
            if to_user.id in self._friendships.get(from_user.id, set()):
                raise ValueError("Already friends")
            for r in self._friend_requests.values():
                if r.status != "pending":
                    continue
                if {r.from_user_id, r.to_user_id} == {from_user.id, to_user.id}:
                    raise ValueError("Request already exists")

            request = FriendRequest(
                id=uuid4().hex,
                from_user_id=from_user.id,
                from_username=from_user.username,
                to_user_id=to_user.id,
                to_username=to_user.username,
            )
            self._friend_requests[request.id] = request
        return request

    async def accept_friend_request(self, request_id: str) -> tuple[Friend, Friend] | None:
        """Accept a pending request.

        Returns ``(requester_as_seen_by_recipient, recipient_as_seen_by_requester)``
        or None if the request is unknown or already resolved.
        """
        async with self._lock:
            request = self._friend_requests.get(request_id)
            if request is None or request.status != "pending":
                return None
            from_user = self._users.get(request.from_user_id)
            to_user = self._users.get(request.to_user_id)
            if from_user is None or to_user is None:
                return None

            request.status = "accepted"
            self._friendships.setdefault(from_user.id, set()).add(to_user.id)
            self._friendships.setdefault(to_user.id, set()).add(from_user.id)

            return (
                self._as_friend(to_user.id, from_user),
                self._as_friend(from_user.id, to_user),
            )

    async def decline_friend_request(self, request_id: str) -> bool:
        async with self._lock:
            request = self._friend_requests.get(request_id)
            if request is None or request.status != "pending":
                return False
            request.status = "declined"
            return True
