"""Tests for channel and DM roster aggregation."""

from datetime import datetime, timezone

import pytest

from chappy import roster
from chappy.keys import ThreadAddress
from chappy.messages import MessageStore
from chappy.store import InMemoryStore
from chappy.testing import ticking_clock


class TestListChannels:
    @pytest.mark.asyncio
    async def test_lock_flags_are_or_merged(self):
        store = InMemoryStore(
            [
                {"PK": "CHANNEL", "SK": "CHANNEL#ops", "name": "ops", "isLocked": False},
                {"PK": "CHANNEL#ops", "SK": "META#INFO", "name": "ops", "isLocked": True},
            ]
        )
        channels = await roster.list_channels(store, include_locked=True)
        assert [(c.name, c.is_locked) for c in channels] == [("ops", True)]

        assert await roster.list_channels(store, include_locked=False) == []

    @pytest.mark.asyncio
    async def test_seeded_table(self, legacy_table):
        unlocked = await roster.list_channels(legacy_table)
        assert [c.name for c in unlocked] == ["archive", "general"]

        everything = await roster.list_channels(legacy_table, include_locked=True)
        assert [(c.name, c.is_locked) for c in everything] == [
            ("archive", False),
            ("general", False),
            ("random", True),
        ]

    @pytest.mark.asyncio
    async def test_message_rows_contribute_channels(self, chappy_store):
        await MessageStore(chappy_store).send(ThreadAddress.channel("fresh"), "alice", "first!")
        channels = await roster.list_channels(chappy_store)
        assert [c.name for c in channels] == ["fresh"]

    @pytest.mark.asyncio
    async def test_sorted_case_sensitively(self):
        store = InMemoryStore(
            [
                {"PK": "CHANNEL", "SK": "CHANNEL#beta"},
                {"PK": "CHANNEL", "SK": "CHANNEL#Alpha"},
                {"PK": "CHANNEL", "SK": "CHANNEL#alpha"},
            ]
        )
        channels = await roster.list_channels(store)
        assert [c.name for c in channels] == ["Alpha", "alpha", "beta"]

    @pytest.mark.asyncio
    async def test_is_channel_locked(self, legacy_table):
        assert await roster.is_channel_locked(legacy_table, "random") is True
        assert await roster.is_channel_locked(legacy_table, "general") is False
        assert await roster.is_channel_locked(legacy_table, "nope") is False


class TestDmThreads:
    @pytest.mark.asyncio
    async def test_empty_table(self, chappy_store):
        assert await roster.list_dm_threads_for_user(chappy_store, "alice") == []
        assert await roster.list_all_dm_threads(chappy_store) == []

    @pytest.mark.asyncio
    async def test_all_threads_merge_conventions(self, legacy_table):
        threads = await roster.list_all_dm_threads(legacy_table)
        by_id = {t.thread_id: t for t in threads}

        assert set(by_id) == {"DM#alice#bob", "DM#carol#dave"}
        assert by_id["DM#carol#dave"].members == ("carol", "dave")
        assert by_id["DM#carol#dave"].last_message_at == "2023-03-01T08:00:00.000Z"
        # Newest first
        assert [t.thread_id for t in threads] == ["DM#alice#bob", "DM#carol#dave"]

    @pytest.mark.asyncio
    async def test_user_view(self, legacy_table):
        views = await roster.list_dm_threads_for_user(legacy_table, "bob")
        assert len(views) == 1
        assert views[0].thread_id == "DM#alice#bob"
        assert views[0].other_username == "alice"
        assert views[0].last_message_at == "2024-02-01T12:00:00.000Z"

    @pytest.mark.asyncio
    async def test_membership_is_case_insensitive(self, legacy_table):
        views = await roster.list_dm_threads_for_user(legacy_table, "Carol")
        assert [v.other_username for v in views] == ["dave"]

    @pytest.mark.asyncio
    async def test_newest_first(self, chappy_store):
        messages = MessageStore(chappy_store, clock=ticking_clock())
        await messages.send(ThreadAddress.between("alice", "bob"), "alice", "one")
        await messages.send(ThreadAddress.between("alice", "carol"), "alice", "two")
        await messages.send(ThreadAddress.between("alice", "dave"), "alice", "three")
        await messages.send(ThreadAddress.between("alice", "bob"), "bob", "four")

        views = await roster.list_dm_threads_for_user(chappy_store, "alice")
        assert [v.other_username for v in views] == ["bob", "dave", "carol"]

    @pytest.mark.asyncio
    async def test_mixed_case_metadata_merges_with_canonical_thread(self):
        store = InMemoryStore(
            [
                {
                    "PK": "DM",
                    "SK": "DM#Bob#Alice",
                    "members": ["Bob", "Alice"],
                    "lastMessageAt": "2024-01-01T00:00:00.000Z",
                }
            ]
        )
        messages = MessageStore(store, clock=ticking_clock(start=datetime(2024, 2, 1, tzinfo=timezone.utc)))
        await messages.send(ThreadAddress.between("alice", "bob"), "alice", "hi")

        threads = await roster.list_all_dm_threads(store)
        assert [t.thread_id for t in threads] == ["DM#alice#bob"]
        assert threads[0].last_message_at == "2024-02-01T00:00:00.000Z"

        views = await roster.list_dm_threads_for_user(store, "alice")
        assert len(views) == 1
        assert views[0].thread_id == "DM#alice#bob"

    @pytest.mark.asyncio
    async def test_equal_timestamps_sort_by_id(self):
        store = InMemoryStore(
            [
                {"PK": "DM", "SK": "DM#alice#zed", "lastMessageAt": "2024-01-01T00:00:00.000Z"},
                {"PK": "DM#alice#bob", "SK": "META#INFO", "lastMessageAt": "2024-01-01T00:00:00.000Z"},
            ]
        )
        views = await roster.list_dm_threads_for_user(store, "alice")
        assert [v.thread_id for v in views] == ["DM#alice#bob", "DM#alice#zed"]

    @pytest.mark.asyncio
    async def test_threads_without_timestamps_sort_by_id(self):
        store = InMemoryStore(
            [
                {"PK": "DM", "SK": "DM#alice#zed"},
                {"PK": "DM", "SK": "DM#alice#bob"},
            ]
        )
        views = await roster.list_dm_threads_for_user(store, "alice")
        assert [v.thread_id for v in views] == ["DM#alice#bob", "DM#alice#zed"]

    @pytest.mark.asyncio
    async def test_self_dm(self):
        store = InMemoryStore([{"PK": "DM", "SK": "DM#alice#alice"}])
        views = await roster.list_dm_threads_for_user(store, "alice")
        assert views[0].other_username == "alice"
