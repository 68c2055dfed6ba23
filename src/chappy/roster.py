"""Roster aggregation: channel and DM thread lists rebuilt from a full scan.

There is no secondary index, so every call scans the table, classifies the
rows and folds duplicates together. Concurrent writers may be observed half
way, e.g. a message in a channel whose metadata row does not exist yet.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from functools import cmp_to_key

from . import keys, rows
from .models import ChannelMeta, DmThread, DmView
from .rows import RowKind
from .store import Store

logger = logging.getLogger(__name__)


async def list_channels(store: Store, include_locked: bool = False) -> list[ChannelMeta]:
    """All channels, one entry per name, sorted by name (case-sensitive).

    Duplicate records are merged with OR on isLocked: a channel is locked if
    any record says so. Locked channels are dropped unless include_locked.
    """
    scanned = await store.scan(rows.SCAN_FIELDS)

    by_name: dict[str, bool] = {}
    for item in rows.classify_all(scanned, RowKind.CHANNEL_META, RowKind.CHANNEL_MESSAGE):
        meta = rows.to_channel_meta(item)
        if meta is None:
            continue
        by_name[meta.name] = by_name.get(meta.name, False) or meta.is_locked

    channels = [ChannelMeta(name=name, is_locked=locked) for name, locked in by_name.items()]
    if not include_locked:
        channels = [ch for ch in channels if not ch.is_locked]
    channels.sort(key=lambda ch: ch.name)
    return channels


async def is_channel_locked(store: Store, name: str) -> bool:
    """Whether any record marks the channel as locked."""
    for channel in await list_channels(store, include_locked=True):
        if channel.name == name:
            return channel.is_locked
    return False


def _merge(existing: DmThread, other: DmThread) -> DmThread:
    members = existing.members if len(existing.members) >= len(other.members) else other.members
    candidates = [t for t in (existing.last_message_at, other.last_message_at) if t]
    return DmThread(
        thread_id=existing.thread_id,
        members=members,
        last_message_at=max(candidates) if candidates else None,
    )


def _compare_threads(a: DmThread, b: DmThread) -> int:
    # Newest first when both have a timestamp, then by id
    if a.last_message_at and b.last_message_at:
        if a.last_message_at != b.last_message_at:
            return -1 if a.last_message_at > b.last_message_at else 1
    if a.thread_id == b.thread_id:
        return 0
    return -1 if a.thread_id < b.thread_id else 1


async def list_all_dm_threads(store: Store) -> list[DmThread]:
    """Every DM thread, merged across metadata and message rows of both conventions."""
    scanned = await store.scan(rows.SCAN_FIELDS)

    by_id: dict[str, DmThread] = {}
    for item in rows.classify_all(scanned, RowKind.DM_META, RowKind.DM_MESSAGE):
        thread = rows.to_dm_thread(item)
        if thread is None:
            logger.debug(f"Skipping unusable DM row {item.pk} / {item.sk}")
            continue
        if len(thread.members) == 2:
            thread = replace(thread, thread_id=keys.dm_key(*thread.members))
        key = thread.thread_id or "#".join(thread.members)
        existing = by_id.get(key)
        by_id[key] = _merge(existing, thread) if existing else thread

    threads = list(by_id.values())
    threads.sort(key=cmp_to_key(_compare_threads))
    return threads


async def list_dm_threads_for_user(store: Store, username: str) -> list[DmView]:
    """DM threads the user takes part in, seen from that user.

    Membership is matched case-insensitively because canonical DM ids are
    lower-cased. An empty list means the user has no threads.
    """
    me = username.lower()
    views = []
    for thread in await list_all_dm_threads(store):
        lowered = [member.lower() for member in thread.members]
        if me not in lowered:
            continue
        other = next((m for m in thread.members if m.lower() != me), None)
        views.append(
            DmView(
                thread_id=thread.thread_id,
                other_username=other or username,
                last_message_at=thread.last_message_at,
            )
        )
    return views
