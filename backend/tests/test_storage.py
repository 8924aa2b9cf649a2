"""Tests for the DuckDB message history and user directory."""
from datetime import timedelta

import pytest

from app.storage.schemas import MessageType, SenderInfo, utcnow

ALICE = SenderInfo(id="alice-id", username="alice", avatar="A")


class TestMessageHistory:

    def test_append_assigns_increasing_seq(self, history):
        first = history.append("general", ALICE, "one")
        second = history.append("general", ALICE, "two")
        assert second.seq > first.seq
        assert first.id != second.id
        assert first.createdAt.tzinfo is not None

    def test_find_by_room_is_newest_first_and_room_scoped(self, history):
        for i in range(5):
            history.append("general", ALICE, f"g{i}")
        history.append("random", ALICE, "r0")

        page = history.find_by_room("general", skip=1, limit=2)
        assert [m.content for m in page] == ["g3", "g2"]
        assert all(m.room == "general" for m in page)
        assert history.count_by_room("general") == 5

    def test_max_seq_excludes_later_messages(self, history):
        anchor = history.append("general", ALICE, "anchor")
        history.append("general", ALICE, "later")

        page = history.find_by_room("general", limit=10, max_seq=anchor.seq)
        assert [m.content for m in page] == ["anchor"]

    def test_round_trip_preserves_fields(self, history):
        stored = history.append("general", ALICE, "a.pdf|/uploads/a.pdf", MessageType.FILE)
        loaded = history.find_by_room("general")[0]
        assert loaded.id == stored.id
        assert loaded.sender == ALICE
        assert loaded.messageType == MessageType.FILE
        assert loaded.createdAt == stored.createdAt
        assert loaded.seq == stored.seq


class TestUserDirectory:

    def test_create_and_find(self, directory):
        user = directory.create("Alice", "hash", "A")
        assert directory.find_by_id(user.id).username == "Alice"
        assert directory.find_by_username("alice").id == user.id
        assert directory.find_by_id("missing") is None

    def test_duplicate_username_raises_value_error(self, directory):
        directory.create("alice", "hash")
        with pytest.raises(ValueError):
            directory.create("alice", "other")

    def test_usernames_differing_only_in_case_collide(self, directory):
        directory.create("Alice", "hash")
        with pytest.raises(ValueError):
            directory.create("aLICE", "other")
        assert directory.find_by_username("ALICE").username == "Alice"

    def test_update_presence(self, directory):
        user = directory.create("alice", "hash")
        seen = utcnow()
        assert directory.update_presence(user.id, True, seen) is True
        stored = directory.find_by_id(user.id)
        assert stored.isOnline is True
        assert abs(stored.lastSeen - seen) < timedelta(milliseconds=1)
        assert directory.update_presence("missing", True, seen) is False

    def test_listing_order_and_limit(self, directory):
        now = utcnow()
        old_offline = directory.create("old", "h")
        recent_offline = directory.create("recent", "h")
        online = directory.create("online", "h")
        directory.update_presence(old_offline.id, False, now - timedelta(hours=2))
        directory.update_presence(recent_offline.id, False, now - timedelta(hours=1))
        directory.update_presence(online.id, True, now - timedelta(hours=3))

        assert [u.id for u in directory.find_all()] == [online.id, recent_offline.id, old_offline.id]
        assert [u.id for u in directory.find_excluding(online.id)] == [recent_offline.id, old_offline.id]
        assert len(directory.find_all(limit=2)) == 2
