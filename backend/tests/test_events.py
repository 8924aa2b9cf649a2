"""Tests for inbound event parsing."""
import pytest

from app.chat.errors import ValidationError
from app.chat.events import (
    AuthenticateEvent,
    GetUsersEvent,
    LoadMoreMessagesEvent,
    SendMessageEvent,
    SendPrivateMessageEvent,
    parse_event,
)
from app.storage.schemas import MessageType


def test_parses_each_variant_by_type_tag():
    assert isinstance(parse_event({"type": "authenticate", "token": "t"}), AuthenticateEvent)
    assert isinstance(parse_event({"type": "get_users"}), GetUsersEvent)
    event = parse_event({"type": "send_private_message", "recipientId": "u2", "content": "hi"})
    assert isinstance(event, SendPrivateMessageEvent)
    assert event.messageType == MessageType.TEXT


def test_send_message_defaults():
    event = parse_event({"type": "send_message", "content": "hi"})
    assert isinstance(event, SendMessageEvent)
    assert event.room is None
    assert event.messageType == MessageType.TEXT


def test_file_message_type():
    event = parse_event({"type": "send_message", "content": "a.txt|/uploads/x.txt", "messageType": "file"})
    assert event.messageType == MessageType.FILE


def test_load_more_page_defaults_to_one():
    event = parse_event({"type": "load_more_messages", "room": "general"})
    assert isinstance(event, LoadMoreMessagesEvent)
    assert event.page == 1
    assert event.limit is None


@pytest.mark.parametrize(
    "frame",
    [
        {"type": "load_more_messages", "room": "general", "page": -1},
        {"type": "load_more_messages", "room": "general", "limit": 0},
        {"type": "join_room", "room": ""},
        {"type": "join_room"},
        {"type": "send_message", "content": "hi", "messageType": "video"},
        {"type": "private_typing"},
        {"type": "unknown"},
        {"content": "no type"},
    ],
)
def test_invalid_frames_raise_validation_error(frame):
    with pytest.raises(ValidationError) as exc_info:
        parse_event(frame)
    assert exc_info.value.code == "validation_error"
    assert exc_info.value.reason.startswith("Invalid event")


@pytest.mark.parametrize("data", [[1, 2], "text", 42, None])
def test_non_object_frames_are_rejected(data):
    with pytest.raises(ValidationError) as exc_info:
        parse_event(data)
    assert exc_info.value.reason == "Invalid event: expected a JSON object"


def test_error_names_the_failing_field():
    with pytest.raises(ValidationError) as exc_info:
        parse_event({"type": "join_room"})
    assert "room" in exc_info.value.reason
    assert "'join_room'" in exc_info.value.reason
