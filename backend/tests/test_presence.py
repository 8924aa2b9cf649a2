"""Tests for presence transitions, supersession and snapshot reconciliation."""
import asyncio
import json

import pytest

from app.chat.connection import SUPERSEDED_CLOSE_CODE
from app.chat.errors import AuthorizationRequired
from app.chat.manager import ChatManager

from conftest import FakeWebSocket, connect_as


@pytest.mark.asyncio
async def test_disconnect_of_bound_connection_goes_offline(manager, make_user, tokens, directory):
    alice, _ = make_user("alice")
    bob, _ = make_user("bob")
    watcher = await connect_as(manager, bob, tokens)
    conn = await connect_as(manager, alice, tokens)
    seen_online = directory.find_by_id(alice.id).lastSeen

    await manager.disconnect(conn)

    stored = directory.find_by_id(alice.id)
    assert stored.isOnline is False
    assert stored.lastSeen >= seen_online
    assert watcher.websocket.of_type("user_offline") == [{"type": "user_offline", "userId": alice.id}]


@pytest.mark.asyncio
async def test_superseded_disconnect_keeps_user_online(manager, make_user, tokens, directory):
    alice, _ = make_user("alice")
    bob, _ = make_user("bob")
    watcher = await connect_as(manager, bob, tokens)
    first = await connect_as(manager, alice, tokens)
    second = await connect_as(manager, alice, tokens)

    assert first.superseded is True
    assert first.websocket.types()[-1] == "session_superseded"
    assert first.websocket.closed_with == SUPERSEDED_CLOSE_CODE
    assert manager.sessions.connection_for(alice.id) is second

    await manager.disconnect(first)

    assert directory.find_by_id(alice.id).isOnline is True
    assert watcher.websocket.of_type("user_offline") == []


@pytest.mark.asyncio
async def test_concurrent_authentications_leave_one_binding(manager, make_user, tokens, directory):
    alice, _ = make_user("alice")
    token = tokens.issue(alice.id)
    first = await manager.connect(FakeWebSocket())
    second = await manager.connect(FakeWebSocket())
    frame = json.dumps({"type": "authenticate", "token": token})

    await asyncio.gather(
        manager.handle_frame(first, frame),
        manager.handle_frame(second, frame),
    )

    closed = [c for c in (first, second) if c.websocket.closed_with == SUPERSEDED_CLOSE_CODE]
    survivors = [c for c in (first, second) if c not in closed]
    assert len(closed) == 1
    assert len(survivors) == 1
    assert manager.sessions.connection_for(alice.id) is survivors[0]
    assert survivors[0].websocket.of_type("authenticated")
    assert directory.find_by_id(alice.id).isOnline is True


@pytest.mark.asyncio
async def test_reauthenticating_as_another_user_releases_the_first(manager, make_user, tokens):
    alice, _ = make_user("alice")
    bob, _ = make_user("bob")
    carol, _ = make_user("carol")
    watcher = await connect_as(manager, carol, tokens)
    conn = await connect_as(manager, alice, tokens)

    await manager.handle_frame(conn, json.dumps({"type": "authenticate", "token": tokens.issue(bob.id)}))

    assert conn.user.id == bob.id
    assert manager.sessions.connection_for(alice.id) is None
    assert manager.sessions.connection_for(bob.id) is conn
    offline = watcher.websocket.of_type("user_offline")
    assert offline == [{"type": "user_offline", "userId": alice.id}]


@pytest.mark.asyncio
async def test_go_offline_is_skipped_when_user_is_bound_again(manager, make_user, tokens, directory):
    alice, _ = make_user("alice")
    conn = await connect_as(manager, alice, tokens)

    # Binding still present: a stale offline must not land.
    assert await manager.presence.go_offline(conn.user) is False
    assert directory.find_by_id(alice.id).isOnline is True


@pytest.mark.asyncio
async def test_logout_closes_with_logout_code(manager, make_user, tokens, directory):
    alice, _ = make_user("alice")
    conn = await connect_as(manager, alice, tokens)

    await manager.handle_frame(conn, json.dumps({"type": "user_logout"}))

    assert conn.websocket.closed_with == 4000
    assert conn.user is None
    assert directory.find_by_id(alice.id).isOnline is False
    # The departing connection is not told about its own logout.
    assert conn.websocket.of_type("user_offline") == []


@pytest.mark.asyncio
async def test_reconcile_snapshots_follow_presence_changes(config, history, directory, tokens, make_user):
    config.presence.reconcile_snapshots = True
    chat_manager = ChatManager(config, history, directory, tokens)
    alice, _ = make_user("alice")
    bob, _ = make_user("bob")

    a = await connect_as(chat_manager, alice, tokens)
    b = await connect_as(chat_manager, bob, tokens)

    snapshot = a.websocket.of_type("users_list_update")[-1]["users"]
    assert {u["id"]: u["isOnline"] for u in snapshot} == {alice.id: True, bob.id: True}
    assert b.websocket.of_type("users_list_update")

    await chat_manager.disconnect(b)
    snapshot = a.websocket.of_type("users_list_update")[-1]["users"]
    assert {u["id"]: u["isOnline"] for u in snapshot} == {alice.id: True, bob.id: False}


@pytest.mark.asyncio
async def test_no_snapshots_by_default(manager, make_user, tokens):
    alice, _ = make_user("alice")
    bob, _ = make_user("bob")
    a = await connect_as(manager, alice, tokens)
    await connect_as(manager, bob, tokens)

    assert a.websocket.of_type("users_list_update") == []
    assert a.websocket.of_type("user_online") == [
        {"type": "user_online", "userId": bob.id, "username": "bob"},
    ]


def _failing_presence_writes(monkeypatch, directory):
    def broken(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(directory, "update_presence", broken)


@pytest.mark.asyncio
async def test_failed_logout_write_still_closes_and_disconnect_retries(
    manager, make_user, tokens, directory, monkeypatch,
):
    alice, _ = make_user("alice")
    bob, _ = make_user("bob")
    watcher = await connect_as(manager, bob, tokens)
    conn = await connect_as(manager, alice, tokens)

    _failing_presence_writes(monkeypatch, directory)
    await manager.handle_frame(conn, json.dumps({"type": "user_logout"}))

    assert conn.websocket.closed_with == 4000
    assert manager.sessions.connection_for(alice.id) is None
    assert manager.presence.offline_pending(alice.id)
    assert directory.find_by_id(alice.id).isOnline is True

    monkeypatch.undo()
    await manager.disconnect(conn)

    assert directory.find_by_id(alice.id).isOnline is False
    assert not manager.presence.offline_pending(alice.id)
    assert watcher.websocket.of_type("user_offline") == [{"type": "user_offline", "userId": alice.id}]


@pytest.mark.asyncio
async def test_failed_disconnect_write_is_swallowed_and_retried_on_next_release(
    manager, make_user, tokens, directory, monkeypatch,
):
    alice, _ = make_user("alice")
    first = await connect_as(manager, alice, tokens)

    _failing_presence_writes(monkeypatch, directory)
    await manager.disconnect(first)
    assert manager.presence.offline_pending(alice.id)

    monkeypatch.undo()
    second = await connect_as(manager, alice, tokens)
    assert not manager.presence.offline_pending(alice.id)
    await manager.disconnect(second)
    assert directory.find_by_id(alice.id).isOnline is False


@pytest.mark.asyncio
async def test_failed_online_write_leaves_connection_unbound(
    manager, make_user, tokens, directory, monkeypatch,
):
    alice, _ = make_user("alice")
    bob, _ = make_user("bob")
    watcher = await connect_as(manager, bob, tokens)
    conn = await manager.connect(FakeWebSocket())

    _failing_presence_writes(monkeypatch, directory)
    await manager.handle_frame(conn, json.dumps({"type": "authenticate", "token": tokens.issue(alice.id)}))

    assert conn.websocket.types() == ["error"]
    assert conn.websocket.sent[0]["code"] == "operation_failed"
    assert conn.user is None
    assert manager.sessions.connection_for(alice.id) is None
    assert watcher.websocket.of_type("user_online") == []
    with pytest.raises(AuthorizationRequired):
        await manager.rooms.send(conn, "hi", "general")


@pytest.mark.asyncio
async def test_failed_online_write_keeps_previous_session(
    manager, make_user, tokens, directory, monkeypatch,
):
    alice, _ = make_user("alice")
    first = await connect_as(manager, alice, tokens)
    second = await manager.connect(FakeWebSocket())

    _failing_presence_writes(monkeypatch, directory)
    await manager.handle_frame(second, json.dumps({"type": "authenticate", "token": tokens.issue(alice.id)}))

    assert manager.sessions.connection_for(alice.id) is first
    assert first.superseded is False
    assert first.websocket.closed_with is None
    assert "session_superseded" not in first.websocket.types()
    assert second.user is None


@pytest.mark.asyncio
async def test_per_user_locks_do_not_accumulate(manager, make_user, tokens):
    users = [make_user(f"user{i}")[0] for i in range(5)]
    connections = [await connect_as(manager, user, tokens) for user in users]
    for conn in connections:
        await manager.disconnect(conn)

    assert len(manager.sessions.auth_locks) == 0
    assert len(manager.presence.locks) == 0
