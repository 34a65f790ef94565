"""Inbound WebSocket events as a closed tagged union.

Every client frame is one JSON object whose ``type`` field selects exactly
one of the event models below.  ``parse_client_event`` raises
``pydantic.ValidationError`` for malformed JSON, unknown types and schema
mismatches alike, so callers have a single failure to classify.
"""

from typing import Annotated, Literal, Union

from pydantic import Field, TypeAdapter

from .models import MAX_CONTENT_LENGTH, MediaRefs, MessageCreate, WireModel


class AuthEvent(WireModel):
    type: Literal["auth"]
    od_id: str = Field(..., min_length=1, max_length=100)


class ChannelMessageEvent(MessageCreate):
    type: Literal["message"]
    channel_id: str = Field(..., min_length=1, max_length=100)
    nonce: str | None = Field(None, max_length=100)


class DirectMessageEvent(MediaRefs):
    type: Literal["dm_message"]
    to_user_id: str = Field(..., min_length=1, max_length=100)
    content: str = Field("", max_length=MAX_CONTENT_LENGTH)
    nonce: str | None = Field(None, max_length=100)


class TypingStartEvent(WireModel):
    type: Literal["typing_start"]
    channel_id: str = Field(..., min_length=1, max_length=100)


class TypingStopEvent(WireModel):
    type: Literal["typing_stop"]
    channel_id: str = Field(..., min_length=1, max_length=100)


ClientEvent = Annotated[
    Union[
        AuthEvent,
        ChannelMessageEvent,
        DirectMessageEvent,
        TypingStartEvent,
        TypingStopEvent,
    ],
    Field(discriminator="type"),
]

CLIENT_EVENT_TYPES = (
    AuthEvent,
    ChannelMessageEvent,
    DirectMessageEvent,
    TypingStartEvent,
    TypingStopEvent,
)

_client_event_adapter = TypeAdapter(ClientEvent)


def parse_client_event(raw: str | bytes) -> ClientEvent:
    return _client_event_adapter.validate_json(raw)
