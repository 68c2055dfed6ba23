"""Tests for chappy.testing fixtures."""

import pytest

from chappy.messages import MessageStore
from chappy.store import InMemoryStore, SqliteStore
from chappy.testing import legacy_rows, ticking_clock


class TestStoreFixtures:
    def test_chappy_store_is_empty(self, chappy_store):
        assert isinstance(chappy_store, InMemoryStore)
        assert len(chappy_store) == 0

    @pytest.mark.asyncio
    async def test_sqlite_store_uses_tmp_path(self, chappy_sqlite_store, tmp_path):
        assert isinstance(chappy_sqlite_store, SqliteStore)
        await chappy_sqlite_store.put({"PK": "p", "SK": "s"})
        assert (tmp_path / "chappy.db").exists()

    def test_legacy_table_is_seeded(self, legacy_table):
        assert len(legacy_table) == len(legacy_rows())

    def test_message_store_wraps_chappy_store(self, message_store, chappy_store):
        assert isinstance(message_store, MessageStore)
        assert message_store.store is chappy_store


class TestTickingClock:
    def test_strictly_increasing(self):
        clock = ticking_clock()
        stamps = [clock() for _ in range(120)]
        assert stamps[0] == "2024-01-01T00:00:00.000Z"
        assert stamps[61] == "2024-01-01T00:01:01.000Z"
        assert stamps == sorted(set(stamps))
