"""Pytest fixtures for testing with chappy.

Usage in conftest.py:
    pytest_plugins = ["chappy.testing"]

Available fixtures:
    - chappy_store: Fresh, empty InMemoryStore
    - chappy_sqlite_store: SqliteStore backed by a file in tmp_path
    - chappy_any_store: Parametrized over both store kinds
    - message_store: MessageStore over chappy_store with a deterministic clock
    - legacy_table: InMemoryStore seeded with rows of both key conventions
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import TYPE_CHECKING, Any, Generator

import pytest

from . import keys
from .keys import Convention
from .messages import MessageStore
from .store import InMemoryStore, SqliteStore, Store

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def chappy_store() -> Generator[InMemoryStore, None, None]:
    """Fresh in-memory store. All data is ephemeral."""
    yield InMemoryStore()


@pytest.fixture
def chappy_sqlite_store(tmp_path: "Path") -> Generator[SqliteStore, None, None]:
    """File-backed SQLite store in tmp_path."""
    store = SqliteStore(tmp_path / "chappy.db")
    yield store
    asyncio.run(store.close())


def _create_store(request: Any, tmp_path: "Path") -> Store:
    if request.param == "memory":
        return InMemoryStore()
    elif request.param == "sqlite":
        return SqliteStore(tmp_path / "chappy.db")
    else:
        raise ValueError(f"Unknown store kind: {request.param}")


@pytest.fixture(params=["memory", "sqlite"])
def chappy_any_store(request: Any, tmp_path: "Path") -> Generator[Store, None, None]:
    """Parametrized fixture that runs a test against every store kind.

    Example:
        @pytest.mark.asyncio
        async def test_works_everywhere(chappy_any_store):
            await chappy_any_store.put({"PK": "a", "SK": "b"})
            # Runs twice: once in memory, once on SQLite
    """
    store = _create_store(request, tmp_path)
    yield store
    asyncio.run(store.close())


def ticking_clock(
    start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc),
    step: timedelta = timedelta(seconds=1),
) -> Callable[[], str]:
    """Clock returning strictly increasing ISO timestamps, `step` apart."""
    ticks = count()

    def clock() -> str:
        now = start + step * next(ticks)
        return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"

    return clock


@pytest.fixture
def message_store(chappy_store: InMemoryStore) -> MessageStore:
    """MessageStore over chappy_store with a ticking clock."""
    return MessageStore(chappy_store, clock=ticking_clock())


def _row(keys_pair: tuple[str, str], **attrs: Any) -> dict[str, Any]:
    pk, sk = keys_pair
    return {"PK": pk, "SK": sk, **attrs}


def legacy_rows() -> list[dict[str, Any]]:
    """Rows exercising both key conventions and the field fallbacks.

    Contents:
        - #general (metadata in roster layout), #random (unlocked metadata in
          its own partition plus a locked duplicate in roster layout)
        - #archive: legacy messages only, one using "message"/"sender"
        - DM alice/bob: metadata in its own partition plus a current message;
          DM carol/dave: legacy messages and a metadata row with userA/userB
        - users: one per convention plus one with an explicit userId
        - one unrelated row
    """
    archive = keys.channel_key("archive", Convention.LEGACY)
    alice_bob = keys.dm_key("alice", "bob")
    carol_dave = keys.dm_key("carol", "dave")
    return [
        _row(keys.channel_meta_keys("general"), name="general", isLocked=False),
        _row(keys.channel_info_keys("random"), name="random", isLocked=False),
        _row(keys.channel_meta_keys("random"), name="random", isLocked=True),
        _row(
            (archive, keys.message_sort_key("2023-05-01T10:00:00.000Z", "b", Convention.LEGACY)),
            author="alice",
            text="second",
            createdAt="2023-05-01T10:00:00.000Z",
        ),
        {
            "pk": archive,
            "sk": keys.message_sort_key("2023-05-01T09:00:00.000Z", "a", Convention.LEGACY),
            "sender": "bob",
            "message": "first",
        },
        _row(keys.dm_info_keys(alice_bob), lastMessageAt="2024-01-15T00:00:00.000Z"),
        _row(
            (keys.dm_partition(alice_bob), keys.message_sort_key("2024-02-01T12:00:00.000Z", "x")),
            author="alice",
            text="hi bob",
            createdAt="2024-02-01T12:00:00.000Z",
        ),
        _row(keys.dm_meta_keys(carol_dave), userA="carol", userB="dave"),
        _row(
            (
                keys.dm_partition(carol_dave, Convention.LEGACY),
                keys.message_sort_key("2023-03-01T08:00:00.000Z", "y", Convention.LEGACY),
            ),
            username="dave",
            text="old news",
            createdAt="2023-03-01T08:00:00.000Z",
        ),
        _row(keys.user_keys("u-alice"), username="alice", accessLevel="user"),
        _row(keys.user_keys("bob", Convention.LEGACY), name="bob"),
        _row(keys.user_keys("u-admin"), username="admin", userId="root", accessLevel="admin"),
        {"PK": "SESSION#1", "SK": "DATA", "value": 42},
    ]


@pytest.fixture
def legacy_table() -> InMemoryStore:
    """InMemoryStore seeded with legacy_rows()."""
    return InMemoryStore(legacy_rows())
