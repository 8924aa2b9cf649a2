"""Inbound WebSocket event variants.

Every frame a client sends is a JSON object tagged by ``type``. The closed
set of accepted shapes is the ``InboundEvent`` union below; ``parse_event``
validates a raw frame into exactly one variant, and
``ChatManager.dispatch`` matches on every variant.

Protocol Message Types:
    - authenticate: {token}
    - join_room: {room}
    - load_more_messages: {room, page, limit?}
    - send_message: {content, room, messageType}
    - join_private_conversation: {recipientId}
    - send_private_message: {recipientId, content, messageType}
    - typing_start / typing_stop: {room}
    - private_typing / private_stop_typing: {recipientId}
    - get_users: {}
    - user_logout: {}
"""
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.storage.schemas import MessageType

from .errors import ValidationError


class AuthenticateEvent(BaseModel):
    type: Literal["authenticate"] = "authenticate"
    token: str = ""


class JoinRoomEvent(BaseModel):
    type: Literal["join_room"] = "join_room"
    room: str = Field(..., min_length=1)


class LoadMoreMessagesEvent(BaseModel):
    type: Literal["load_more_messages"] = "load_more_messages"
    room: str = Field(..., min_length=1)
    page: int = Field(default=1, ge=0)
    # Page size override, capped at chat.max_page_size.
    limit: int | None = Field(default=None, ge=1)


class SendMessageEvent(BaseModel):
    type: Literal["send_message"] = "send_message"
    content: str = ""
    # None means the configured default room.
    room: str | None = None
    messageType: MessageType = MessageType.TEXT


class JoinPrivateConversationEvent(BaseModel):
    type: Literal["join_private_conversation"] = "join_private_conversation"
    recipientId: str = ""


class SendPrivateMessageEvent(BaseModel):
    type: Literal["send_private_message"] = "send_private_message"
    recipientId: str = ""
    content: str = ""
    messageType: MessageType = MessageType.TEXT


class TypingStartEvent(BaseModel):
    type: Literal["typing_start"] = "typing_start"
    room: str = Field(..., min_length=1)


class TypingStopEvent(BaseModel):
    type: Literal["typing_stop"] = "typing_stop"
    room: str = Field(..., min_length=1)


class PrivateTypingEvent(BaseModel):
    type: Literal["private_typing"] = "private_typing"
    recipientId: str = Field(..., min_length=1)


class PrivateStopTypingEvent(BaseModel):
    type: Literal["private_stop_typing"] = "private_stop_typing"
    recipientId: str = Field(..., min_length=1)


class GetUsersEvent(BaseModel):
    type: Literal["get_users"] = "get_users"


class UserLogoutEvent(BaseModel):
    type: Literal["user_logout"] = "user_logout"


InboundEvent = Annotated[
    Union[
        AuthenticateEvent,
        JoinRoomEvent,
        LoadMoreMessagesEvent,
        SendMessageEvent,
        JoinPrivateConversationEvent,
        SendPrivateMessageEvent,
        TypingStartEvent,
        TypingStopEvent,
        PrivateTypingEvent,
        PrivateStopTypingEvent,
        GetUsersEvent,
        UserLogoutEvent,
    ],
    Field(discriminator="type"),
]

_adapter: TypeAdapter = TypeAdapter(InboundEvent)


def parse_event(data: Any) -> InboundEvent:
    """Validate a decoded JSON frame into one ``InboundEvent`` variant.

    Raises:
        ValidationError: If the frame is not an object, has an unknown
            ``type``, or its fields do not validate.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid event: expected a JSON object")
    try:
        return _adapter.validate_python(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        detail = first.get("msg", "invalid value")
        # loc is (tag, field, ...) for variant errors, empty for a bad tag
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        if field:
            detail = f"{field}: {detail}"
        raise ValidationError(f"Invalid event '{data.get('type', '?')}': {detail}") from exc
