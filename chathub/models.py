"""Records and request schemas shared by storage, the router and the REST API.

Field names are snake_case in Python and camelCase on the wire; every model
accepts either spelling on input.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UserStatus = Literal["online", "away", "busy", "offline"]
ChannelKind = Literal["text", "voice"]
FriendRequestStatus = Literal["pending", "accepted", "declined"]

MAX_CONTENT_LENGTH = 2000
DM_CHANNEL_ID = "dm"


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """Dump to a JSON-ready dict using the camelCase wire names."""
        return self.model_dump(mode="json", by_alias=True)


# --- Records ---

class User(WireModel):
    id: str
    username: str
    avatar_color: str
    avatar_url: str | None = None
    status: UserStatus = "offline"


class Channel(WireModel):
    id: str
    name: str
    kind: ChannelKind = Field("text", alias="type")
    category: str | None = None


class ReplySnapshot(WireModel):
    """Copy of the replied-to message taken when the reply was stored."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    username: str
    content: str
    avatar_color: str | None = None


class Message(WireModel):
    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    channel_id: str
    user_id: str
    username: str
    avatar_color: str
    avatar_url: str | None = None
    timestamp: str
    image_url: str | None = None
    video_url: str | None = None
    video_name: str | None = None
    audio_url: str | None = None
    audio_name: str | None = None
    reply_to_id: str | None = None
    reply_to: ReplySnapshot | None = None

    def snapshot(self) -> ReplySnapshot:
        return ReplySnapshot(
            id=self.id,
            user_id=self.user_id,
            username=self.username,
            content=self.content,
            avatar_color=self.avatar_color,
        )


class FriendRequest(WireModel):
    id: str
    from_user_id: str
    from_username: str
    to_user_id: str
    to_username: str
    status: FriendRequestStatus = "pending"


class Friend(WireModel):
    id: str
    od_id: str
    username: str
    avatar_color: str
    avatar_url: str | None = None
    status: UserStatus


# --- Insert schemas (validated request bodies) ---

class MediaRefs(WireModel):
    image_url: str | None = Field(None, max_length=2048)
    video_url: str | None = Field(None, max_length=2048)
    video_name: str | None = Field(None, max_length=255)
    audio_url: str | None = Field(None, max_length=2048)
    audio_name: str | None = Field(None, max_length=255)

    def has_media(self) -> bool:
        return bool(self.image_url or self.video_url or self.audio_url)

    def media(self) -> "MediaRefs":
        """Just the media fields, for subclasses that carry more."""
        return MediaRefs(**{name: getattr(self, name) for name in MediaRefs.model_fields})


class UserCreate(WireModel):
    username: str = Field(..., min_length=2, max_length=32)
    avatar_color: str | None = Field(None, max_length=32)


class ChannelCreate(WireModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: ChannelKind = Field("text", alias="type")
    category: str | None = Field(None, max_length=100)


class MessageCreate(MediaRefs):
    content: str = Field("", max_length=MAX_CONTENT_LENGTH)
    reply_to_id: str | None = Field(None, max_length=100)


class FriendRequestCreate(WireModel):
    to_username: str = Field(..., min_length=1, max_length=32)
