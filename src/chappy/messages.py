"""Message store: append-only writes and ordered reads for one thread.

Writes always use the current key convention. Reads query the current
partition first and only fall back to a full-table scan for legacy rows
when that query comes back empty. An empty thread therefore pays for one
scan per call; there is no negative-result cache.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from uuid_extensions import uuid7 as make_uuid7

from . import keys, rows
from .errors import MalformedInput, WriteConflict
from .keys import Convention, ThreadAddress
from .metrics import metrics
from .models import Message
from .store import ConditionalCheckFailed, Store

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MIN_LIMIT = 1
MAX_LIMIT = 200

# One write plus one retry with a fresh suffix
PUT_ATTEMPTS = 2


def clamp_limit(value: Any = None) -> int:
    """Clamp a requested page size into [MIN_LIMIT, MAX_LIMIT].

    Missing, zero or non-numeric values mean DEFAULT_LIMIT. Out-of-range
    values are clamped, never rejected.
    """
    try:
        limit = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_LIMIT
    if limit == 0:
        return DEFAULT_LIMIT
    return max(MIN_LIMIT, min(MAX_LIMIT, limit))


def iso_now() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def new_suffix() -> str:
    return str(make_uuid7())


def _sort_key(message: Message) -> tuple[str, str]:
    return message.created_at, message.message_id


class MessageStore:
    """Send and list messages for channels and DM threads.

    Args:
        store: Backing key-value store
        clock: Returns the ISO timestamp for new messages (default: iso_now)
        suffix_factory: Returns the unique sort-key suffix (default: uuid7)
    """

    def __init__(
        self,
        store: Store,
        clock: Callable[[], str] = iso_now,
        suffix_factory: Callable[[], str] = new_suffix,
    ) -> None:
        self.store = store
        self.clock = clock
        self.suffix_factory = suffix_factory

    async def send(self, address: ThreadAddress, author: str, text: str) -> Message:
        """Append a message to a thread.

        Raises:
            MalformedInput: If author or text is blank
            WriteConflict: If the sort key collided twice in a row
            StoreUnavailable: If the store failed
        """
        if not text or not text.strip():
            raise MalformedInput("text is required")
        if not author or not author.strip():
            raise MalformedInput("author is required")

        created_at = self.clock()
        pk = address.partition_key()

        for attempt in range(1, PUT_ATTEMPTS + 1):
            sk = keys.message_sort_key(created_at, self.suffix_factory())
            row: dict[str, Any] = {
                "PK": pk,
                "SK": sk,
                "kind": address.kind,
                "author": author,
                "text": text,
                "createdAt": created_at,
                "id": sk,
            }
            if address.kind == "channel":
                row["channel"] = address.name
            else:
                row["dmId"] = address.name

            try:
                await self.store.put(row, if_not_exists=True)
            except ConditionalCheckFailed:
                metrics.increment("write_conflicts")
                logger.warning(f"Sort key collision on {pk} / {sk} (attempt {attempt}/{PUT_ATTEMPTS})")
                continue

            return Message(
                message_id=sk,
                kind=address.kind,
                author=author,
                text=text,
                created_at=created_at,
                channel=address.name if address.kind == "channel" else None,
                dm_id=address.name if address.kind == "dm" else None,
            )

        raise WriteConflict(f"Could not allocate a unique key in {pk}")

    async def list(self, address: ThreadAddress, limit: Any = DEFAULT_LIMIT) -> list[Message]:
        """Messages of a thread, oldest first.

        Tries the current-convention partition first; on a truly empty result
        scans the table for legacy-convention rows of the same thread.
        """
        limit = clamp_limit(limit)

        current = await self.store.query(
            address.partition_key(),
            keys.MESSAGE_SK_PREFIX,
            ascending=True,
            limit=limit,
        )
        messages = self._to_messages(current)
        if messages:
            return messages

        expected_pk = address.partition_key(Convention.LEGACY)
        logger.debug(f"No current rows for {address.partition_key()}, scanning for {expected_pk}")
        metrics.increment("legacy_scan_fallbacks")

        scanned = await self.store.scan(rows.SCAN_FIELDS)
        matching = [row for row in scanned if keys.read_key(row, "pk") == expected_pk]
        messages = self._to_messages(matching)
        messages.sort(key=_sort_key)
        return messages[:limit]

    @staticmethod
    def _to_messages(raw_rows: list[dict[str, Any]]) -> list[Message]:
        out = []
        for item in rows.classify_all(raw_rows, rows.RowKind.CHANNEL_MESSAGE, rows.RowKind.DM_MESSAGE):
            message = rows.to_message(item)
            if message is not None:
                out.append(message)
        return out


async def send_public(
    message_store: MessageStore,
    channel: str,
    text: str,
    public_channel: str = "general",
    guest_name: str = "Guest",
) -> Message:
    """Post as a guest; only the public channel accepts guest messages."""
    if channel != public_channel:
        raise MalformedInput(f"only {public_channel} channel is public")
    return await message_store.send(ThreadAddress.channel(channel), guest_name, text)
