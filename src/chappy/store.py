"""Key-value store implementations for chappy.

This module provides the storage abstraction the core runs against:
- Store: Abstract base class defining the interface
- InMemoryStore: Dict-backed store for tests and ephemeral runs
- SqliteStore: Single-table SQLite store for local deployments

A store holds rows (open attribute maps) addressed by a partition key and a
sort key. Rows may spell their keys "PK"/"SK" or "pk"/"sk"; both address the
same slot. All operations are coroutines so callers never block the event
loop.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, TypeVar

from .errors import StoreUnavailable
from .keys import row_keys
from .metrics import timed_store_operation

logger = logging.getLogger(__name__)

T = TypeVar("T")

Row = dict[str, Any]


class ConditionalCheckFailed(Exception):
    """A conditional put found the (partition, sort) slot already taken."""

    def __init__(self, pk: str, sk: str):
        super().__init__(f"Row {pk} / {sk} already exists")
        self.pk = pk
        self.sk = sk


def _require_keys(row: Row) -> tuple[str, str]:
    pk, sk = row_keys(row)
    if not pk or not sk:
        raise ValueError("Row must carry non-empty PK and SK attributes")
    return pk, sk


def _project(row: Row, projection: Iterable[str] | None) -> Row:
    if projection is None:
        return copy.deepcopy(row)
    return {name: copy.deepcopy(row[name]) for name in projection if name in row}


class Store(ABC):
    """Abstract key-value store.

    Implementations must raise ConditionalCheckFailed from put() when
    if_not_exists is set and the slot is taken, and StoreUnavailable for
    underlying I/O failures.
    """

    @abstractmethod
    async def put(self, row: Row, if_not_exists: bool = False) -> None:
        """Write a row, replacing any row in the same slot.

        Args:
            row: Attribute map; must carry PK/SK (either spelling)
            if_not_exists: Fail with ConditionalCheckFailed if the slot is taken
        """

    @abstractmethod
    async def query(
        self,
        partition_key: str,
        sort_key_prefix: str = "",
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[Row]:
        """Rows of one partition whose sort key starts with a prefix, in sort-key order."""

    @abstractmethod
    async def scan(self, projection: Iterable[str] | None = None) -> list[Row]:
        """Every row in the table.

        Args:
            projection: Attribute names to keep (all attributes if None)
        """

    @abstractmethod
    async def delete(self, partition_key: str, sort_key: str) -> bool:
        """Delete one row. Returns True if a row was removed."""

    async def close(self) -> None:
        """Release resources held by the store."""


class InMemoryStore(Store):
    """Dict-backed store.

    Every operation completes without awaiting, so on a single event loop
    each call is atomic with respect to other coroutines. Rows are deep
    copied in and out so callers can never mutate stored state.
    """

    def __init__(self, rows: Iterable[Row] | None = None) -> None:
        self._rows: dict[tuple[str, str], Row] = {}
        for row in rows or ():
            self._rows[_require_keys(row)] = copy.deepcopy(row)

    async def put(self, row: Row, if_not_exists: bool = False) -> None:
        with timed_store_operation("put"):
            slot = _require_keys(row)
            if if_not_exists and slot in self._rows:
                raise ConditionalCheckFailed(*slot)
            self._rows[slot] = copy.deepcopy(row)

    async def query(
        self,
        partition_key: str,
        sort_key_prefix: str = "",
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[Row]:
        with timed_store_operation("query"):
            slots = sorted(
                (slot for slot in self._rows if slot[0] == partition_key and slot[1].startswith(sort_key_prefix)),
                key=lambda slot: slot[1],
                reverse=not ascending,
            )
            if limit is not None:
                slots = slots[:limit]
            return [copy.deepcopy(self._rows[slot]) for slot in slots]

    async def scan(self, projection: Iterable[str] | None = None) -> list[Row]:
        with timed_store_operation("scan"):
            fields = list(projection) if projection is not None else None
            return [_project(self._rows[slot], fields) for slot in sorted(self._rows)]

    async def delete(self, partition_key: str, sort_key: str) -> bool:
        with timed_store_operation("delete"):
            return self._rows.pop((partition_key, sort_key), None) is not None

    def __len__(self) -> int:
        return len(self._rows)


class SqliteStore(Store):
    """SQLite-backed store: one `items` table keyed by (pk, sk).

    Attributes are stored as a JSON document next to the extracted keys. The
    connection is shared; every call runs on a single-worker executor off the
    event loop.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS items (
            pk TEXT NOT NULL,
            sk TEXT NOT NULL,
            attrs TEXT NOT NULL,
            PRIMARY KEY (pk, sk)
        )
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        self.path = str(path)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chappy-db")
        self._conn: sqlite3.Connection | None = None

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            conn = sqlite3.connect(self.path, check_same_thread=False)
            if self.path != ":memory:":
                # WAL keeps readers from blocking the writer
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            conn.execute(self.SCHEMA)
            conn.commit()
            self._conn = conn
            logger.info(f"Opened SQLite store at {self.path}")
        return self._conn

    async def _run(self, operation: str, fn: Callable[[sqlite3.Connection], T]) -> T:
        def call() -> T:
            with timed_store_operation(operation):
                return fn(self._connect())

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, call)
        except ConditionalCheckFailed:
            raise
        except sqlite3.Error as e:
            raise StoreUnavailable(f"SQLite {operation} failed: {e}") from e

    async def put(self, row: Row, if_not_exists: bool = False) -> None:
        pk, sk = _require_keys(row)
        attrs = json.dumps(row)

        def write(conn: sqlite3.Connection) -> None:
            if if_not_exists:
                try:
                    conn.execute("INSERT INTO items (pk, sk, attrs) VALUES (?, ?, ?)", (pk, sk, attrs))
                except sqlite3.IntegrityError:
                    conn.rollback()
                    raise ConditionalCheckFailed(pk, sk) from None
            else:
                conn.execute(
                    "INSERT OR REPLACE INTO items (pk, sk, attrs) VALUES (?, ?, ?)",
                    (pk, sk, attrs),
                )
            conn.commit()

        await self._run("put", write)

    async def query(
        self,
        partition_key: str,
        sort_key_prefix: str = "",
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[Row]:
        # substr() instead of LIKE so '%' and '_' in names match literally
        sql = "SELECT attrs FROM items WHERE pk = ? AND substr(sk, 1, ?) = ?"
        sql += " ORDER BY sk ASC" if ascending else " ORDER BY sk DESC"
        params: list[Any] = [partition_key, len(sort_key_prefix), sort_key_prefix]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        def read(conn: sqlite3.Connection) -> list[Row]:
            cursor = conn.execute(sql, tuple(params))
            return [json.loads(attrs) for (attrs,) in cursor.fetchall()]

        return await self._run("query", read)

    async def scan(self, projection: Iterable[str] | None = None) -> list[Row]:
        fields = list(projection) if projection is not None else None

        def read(conn: sqlite3.Connection) -> list[Row]:
            cursor = conn.execute("SELECT attrs FROM items ORDER BY pk, sk")
            return [_project(json.loads(attrs), fields) for (attrs,) in cursor.fetchall()]

        return await self._run("scan", read)

    async def delete(self, partition_key: str, sort_key: str) -> bool:
        def remove(conn: sqlite3.Connection) -> bool:
            cursor = conn.execute("DELETE FROM items WHERE pk = ? AND sk = ?", (partition_key, sort_key))
            conn.commit()
            return cursor.rowcount > 0

        return await self._run("delete", remove)

    async def close(self) -> None:
        def shutdown(conn: sqlite3.Connection) -> None:
            conn.close()

        if self._conn is not None:
            await self._run("close", shutdown)
            self._conn = None
        self._executor.shutdown(wait=False)


# --- Global singleton ---

_store: Store | None = None


def create_store(kind: str = "memory", path: str | Path | None = None) -> Store:
    """Build a store by kind name ("memory" or "sqlite")."""
    if kind == "memory":
        return InMemoryStore()
    if kind == "sqlite":
        return SqliteStore(path or "chappy.db")
    raise ValueError(f"Unknown store kind: {kind!r} (expected 'memory' or 'sqlite')")


def get_store() -> Store:
    """Get the global store instance.

    Builds one from ServerSettings on first call. Use set_store() to swap in
    a different instance (e.g., for testing).
    """
    global _store
    if _store is None:
        from .config import ServerSettings

        settings = ServerSettings.load()
        _store = create_store(settings.store, settings.db_path)
    return _store


def set_store(store: Store) -> None:
    """Replace the global store instance."""
    global _store
    _store = store


def reset_store() -> None:
    """Forget the global store (for testing)."""
    global _store
    _store = None
