"""Tests for the session registry's single-active-binding rules."""
import asyncio

import pytest

from app.chat.connection import Connection
from app.chat.sessions import SessionRegistry

from conftest import FakeWebSocket


def make_connection():
    return Connection(FakeWebSocket())


class TestBinding:

    def test_first_bind_displaces_nothing(self):
        registry = SessionRegistry()
        conn = make_connection()
        assert registry.bind("u1", conn) is None
        assert registry.connection_for("u1") is conn

    def test_rebinding_same_connection_displaces_nothing(self):
        registry = SessionRegistry()
        conn = make_connection()
        registry.bind("u1", conn)
        assert registry.bind("u1", conn) is None

    def test_second_bind_returns_previous_connection(self):
        registry = SessionRegistry()
        first, second = make_connection(), make_connection()
        registry.bind("u1", first)
        assert registry.bind("u1", second) is first
        assert registry.connection_for("u1") is second

    def test_unbind_of_superseded_connection_keeps_newer_binding(self):
        registry = SessionRegistry()
        first, second = make_connection(), make_connection()
        registry.bind("u1", first)
        registry.bind("u1", second)

        assert registry.unbind("u1", first) is False
        assert registry.connection_for("u1") is second
        assert registry.is_bound("u1")

    def test_unbind_of_current_connection_removes_binding(self):
        registry = SessionRegistry()
        conn = make_connection()
        registry.bind("u1", conn)
        assert registry.unbind("u1", conn) is True
        assert registry.connection_for("u1") is None
        assert not registry.is_bound("u1")

    def test_closed_connection_is_not_returned(self):
        registry = SessionRegistry()
        conn = make_connection()
        registry.bind("u1", conn)
        conn.closed = True
        assert registry.connection_for("u1") is None
        # The binding itself stays until unbind.
        assert registry.is_bound("u1")

    @pytest.mark.asyncio
    async def test_auth_lock_serializes_one_user_only(self):
        registry = SessionRegistry()
        order = []

        async def hold(user_id, label):
            async with registry.auth_lock(user_id):
                order.append(f"{label}-in")
                await asyncio.sleep(0)
                order.append(f"{label}-out")

        await asyncio.gather(hold("u1", "a"), hold("u1", "b"), hold("u2", "c"))

        assert order.index("a-out") < order.index("b-in")
        assert order.index("c-in") < order.index("a-out")
        assert len(registry.auth_locks) == 0


class TestConnections:

    def test_register_and_others(self):
        registry = SessionRegistry()
        a, b, c = make_connection(), make_connection(), make_connection()
        for conn in (a, b, c):
            registry.register(conn)
        c.closed = True

        assert len(registry) == 3
        assert set(registry.all_connections()) == {a, b}
        assert registry.others(a) == [b]

    def test_unregister(self):
        registry = SessionRegistry()
        conn = make_connection()
        registry.register(conn)
        registry.unregister(conn)
        registry.unregister(conn)
        assert len(registry) == 0
