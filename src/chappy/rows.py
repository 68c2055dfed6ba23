"""Row classifier: decide what a raw stored row is and extract a clean view.

The table is shared with unrelated and historical data, so rows are treated
as open string-keyed maps whose fields may be missing, renamed or of the
wrong type. All of the field-fallback logic in chappy lives in this module;
nothing else guesses at field names.

Classification order (first match wins):

    1. channel, current  PK="CHANNEL"+SK="CHANNEL#.." | PK="CHANNEL#.."
    2. channel, legacy   PK="MSG#CHANNEL#.."
    3. dm, current       PK="DM"+SK="DM#.." | PK="DM#.."
    4. dm, legacy        PK="MSG#DM#.."
    5. user              PK="USER"+SK="USER#.." | PK="USER#.."

Anything else is not ours and is skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from . import keys
from .keys import Convention
from .models import ChannelMeta, DmThread, Message, UserRecord

logger = logging.getLogger(__name__)

AUTHOR_FIELDS = ("author", "sender", "username", "user")
TEXT_FIELDS = ("text", "message")
USERNAME_FIELDS = ("username", "name")

# Attributes a scan needs to project for classification and extraction.
SCAN_FIELDS = (
    "PK",
    "SK",
    "pk",
    "sk",
    "id",
    "kind",
    "name",
    "isLocked",
    "members",
    "userA",
    "userB",
    "lastMessageAt",
    "createdAt",
    "userId",
    "accessLevel",
    *AUTHOR_FIELDS,
    *TEXT_FIELDS,
)


class RowKind(str, Enum):
    CHANNEL_META = "channel_meta"
    CHANNEL_MESSAGE = "channel_message"
    DM_META = "dm_meta"
    DM_MESSAGE = "dm_message"
    USER = "user"


@dataclass(frozen=True)
class ClassifiedRow:
    """A raw row together with what it was recognized as."""

    kind: RowKind
    convention: Convention
    pk: str
    sk: str
    row: dict[str, Any]

    @property
    def is_message(self) -> bool:
        return self.kind in (RowKind.CHANNEL_MESSAGE, RowKind.DM_MESSAGE)


# --- Permissive readers ---


def read_str(row: dict[str, Any], key: str) -> str:
    """Read a string attribute; anything that is not a string reads as ""."""
    value = row.get(key)
    return value if isinstance(value, str) else ""


def first_str(row: dict[str, Any], *fields: str) -> str:
    """First non-empty string among the given attributes."""
    for name in fields:
        value = read_str(row, name)
        if value:
            return value
    return ""


def read_bool(row: dict[str, Any], key: str, default: bool = False) -> bool:
    value = row.get(key)
    return value if isinstance(value, bool) else default


def read_str_list(row: dict[str, Any], key: str) -> list[str]:
    """Read a list attribute, keeping only its string items."""
    value = row.get(key)
    if isinstance(value, (list, tuple)):
        return [item for item in value if isinstance(item, str)]
    return []


def _blank(value: str) -> bool:
    return not value.strip()


# --- Classification ---


def classify(row: dict[str, Any]) -> ClassifiedRow | None:
    """Classify a raw row, or return None if it is not a chappy row.

    The input is never modified; the returned view holds a shallow copy.
    """
    pk, sk = keys.row_keys(row)
    if not pk:
        return None

    kind: RowKind | None = None
    convention = Convention.CURRENT

    if keys.is_channel_row(pk, sk):
        if keys.is_channel_meta(pk, sk):
            kind = RowKind.CHANNEL_META
        else:
            kind = RowKind.CHANNEL_MESSAGE
            if pk.startswith(keys.LEGACY_CHANNEL_PREFIX):
                convention = Convention.LEGACY
    elif keys.is_dm_row(pk, sk):
        if keys.is_dm_meta(pk, sk):
            kind = RowKind.DM_META
        else:
            kind = RowKind.DM_MESSAGE
            if pk.startswith(keys.LEGACY_DM_PREFIX):
                convention = Convention.LEGACY
    elif keys.is_user_row(pk, sk):
        kind = RowKind.USER
        if pk.startswith(keys.USER_PREFIX):
            convention = Convention.LEGACY

    if kind is None:
        return None
    return ClassifiedRow(kind=kind, convention=convention, pk=pk, sk=sk, row=dict(row))


def classify_all(rows: list[dict[str, Any]], *kinds: RowKind) -> list[ClassifiedRow]:
    """Classify many rows, keeping only the requested kinds (all if none given)."""
    out = []
    for row in rows:
        item = classify(row)
        if item is None:
            logger.debug(f"Skipping unrecognized row {keys.row_keys(row)}")
            continue
        if kinds and item.kind not in kinds:
            continue
        out.append(item)
    return out


# --- Extraction ---


def channel_name(item: ClassifiedRow) -> str:
    """Channel name from the row's name field, else from its keys."""
    name = read_str(item.row, "name")
    if name and item.kind is RowKind.CHANNEL_META:
        return name
    if item.pk.startswith(keys.LEGACY_CHANNEL_PREFIX):
        return item.pk[len(keys.LEGACY_CHANNEL_PREFIX) :]
    if item.pk.startswith(keys.CHANNEL_PREFIX):
        return item.pk[len(keys.CHANNEL_PREFIX) :]
    if item.sk.startswith(keys.CHANNEL_PREFIX):
        return item.sk[len(keys.CHANNEL_PREFIX) :]
    return ""


def dm_thread_id(item: ClassifiedRow) -> str:
    """The "DM#a#b" id a row belongs to, from PK, SK or id field."""
    if item.pk.startswith(keys.LEGACY_DM_PREFIX):
        return keys.DM_PREFIX + item.pk[len(keys.LEGACY_DM_PREFIX) :]
    if item.pk.startswith(keys.DM_PREFIX):
        return item.pk
    if item.sk.startswith(keys.DM_PREFIX):
        return item.sk
    row_id = read_str(item.row, "id")
    if row_id.startswith(keys.DM_PREFIX):
        return row_id
    return ""


def dm_members(item: ClassifiedRow, thread_id: str) -> list[str]:
    """Members of a DM thread: members array, else the id, else userA/userB."""
    members = read_str_list(item.row, "members")
    if len(members) >= 2:
        return members
    if thread_id.startswith(keys.DM_PREFIX):
        return [part for part in thread_id[len(keys.DM_PREFIX) :].split("#") if part]
    return [name for name in (read_str(item.row, "userA"), read_str(item.row, "userB")) if name]


def to_message(item: ClassifiedRow) -> Message | None:
    """Build a Message from a message row; None if it lacks author, text or time."""
    if not item.is_message:
        return None

    row = item.row
    text = first_str(row, *TEXT_FIELDS)
    author = first_str(row, *AUTHOR_FIELDS)
    created_at = read_str(row, "createdAt")
    if not created_at and item.sk:
        parsed = keys.parse_sort_key(item.sk)
        if parsed:
            created_at = parsed[0]
    message_id = read_str(row, "id") or item.sk

    if _blank(text) or _blank(author) or _blank(created_at):
        return None

    if item.kind is RowKind.CHANNEL_MESSAGE:
        return Message(
            message_id=message_id,
            kind="channel",
            author=author,
            text=text,
            created_at=created_at,
            channel=channel_name(item),
            convention=item.convention,
        )
    return Message(
        message_id=message_id,
        kind="dm",
        author=author,
        text=text,
        created_at=created_at,
        dm_id=dm_thread_id(item),
        convention=item.convention,
    )


def to_channel_meta(item: ClassifiedRow) -> ChannelMeta | None:
    """Channel entry for the roster; message rows count as unlocked channels."""
    if item.kind not in (RowKind.CHANNEL_META, RowKind.CHANNEL_MESSAGE):
        return None
    name = channel_name(item)
    if not name:
        return None
    is_locked = item.kind is RowKind.CHANNEL_META and read_bool(item.row, "isLocked")
    return ChannelMeta(name=name, is_locked=is_locked)


def to_dm_thread(item: ClassifiedRow) -> DmThread | None:
    """DM thread a metadata or message row contributes to."""
    if item.kind not in (RowKind.DM_META, RowKind.DM_MESSAGE):
        return None
    thread_id = dm_thread_id(item)
    members = dm_members(item, thread_id)
    if not thread_id and not members:
        return None

    if item.kind is RowKind.DM_META:
        last = read_str(item.row, "lastMessageAt") or None
    else:
        message = to_message(item)
        if message is None:
            return None
        last = message.created_at
    return DmThread(thread_id=thread_id, members=tuple(members), last_message_at=last)


def to_user(item: ClassifiedRow) -> UserRecord | None:
    """Normalized user row; None when it carries no username at all."""
    if item.kind is not RowKind.USER:
        return None
    username = first_str(item.row, *USERNAME_FIELDS)
    if not username:
        return None
    return UserRecord(
        username=username,
        pk=item.pk,
        sk=item.sk,
        access_level=read_str(item.row, "accessLevel") or "user",
        explicit_user_id=read_str(item.row, "userId") or None,
        convention=item.convention,
    )
