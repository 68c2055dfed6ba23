"""Key codec for the chappy table.

All entities live in one key-value table addressed by a partition key (PK)
and a sort key (SK). Two naming conventions coexist in stored data:

    Channel messages:
        current) PK="CHANNEL#<name>",     SK="MSG#<iso>#<suffix>"
        legacy)  PK="MSG#CHANNEL#<name>", SK="TS#<iso>#<suffix>"
    DM messages:
        current) PK="DM#<a>#<b>",         SK="MSG#<iso>#<suffix>"
        legacy)  PK="MSG#DM#<a>#<b>",     SK="TS#<iso>#<suffix>"
    Channel metadata:
        PK="CHANNEL", SK="CHANNEL#<name>"   or   PK="CHANNEL#<name>", SK="META#INFO"
    DM metadata:
        PK="DM", SK="DM#<a>#<b>"            or   PK="DM#<a>#<b>", SK="META#INFO"
    Users:
        current) PK="USER",     SK="USER#<uuid>"
        legacy)  PK="USER#<n>", SK="PROFILE#<n>"

New data is always written in the current convention; the legacy convention
is read-only. Everything here is pure.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from .errors import MalformedInput

CHANNEL_PREFIX = "CHANNEL#"
LEGACY_CHANNEL_PREFIX = "MSG#CHANNEL#"
DM_PREFIX = "DM#"
LEGACY_DM_PREFIX = "MSG#DM#"
LEGACY_PARTITION_PREFIX = "MSG#"

MESSAGE_SK_PREFIX = "MSG#"
LEGACY_MESSAGE_SK_PREFIX = "TS#"
META_SK = "META#INFO"

CHANNEL_ROSTER_PK = "CHANNEL"
DM_ROSTER_PK = "DM"
USER_ROSTER_PK = "USER"
USER_PREFIX = "USER#"
PROFILE_PREFIX = "PROFILE#"


class Convention(str, Enum):
    """Key naming convention a row was written under."""

    CURRENT = "current"
    LEGACY = "legacy"


ThreadKind = Literal["channel", "dm"]


# --- Reading keys off raw rows ---


def read_key(row: dict[str, Any], name: str) -> str:
    """Read a key attribute under either spelling ("PK" or "pk").

    Historical writers used inconsistent casing. The first non-empty string
    wins; anything else reads as "".
    """
    for attr in (name.upper(), name.lower()):
        value = row.get(attr)
        if isinstance(value, str) and value:
            return value
    return ""


def row_keys(row: dict[str, Any]) -> tuple[str, str]:
    """Return the normalized (PK, SK) pair of a raw row."""
    return read_key(row, "pk"), read_key(row, "sk")


# --- Encoding ---


def channel_key(name: str, convention: Convention = Convention.CURRENT) -> str:
    """Partition key holding a channel's messages."""
    if convention is Convention.LEGACY:
        return legacy_partition(CHANNEL_PREFIX + name)
    return CHANNEL_PREFIX + name


def dm_key(user_a: str, user_b: str) -> str:
    """Canonical DM thread id for a pair of usernames.

    Both names are lower-cased and sorted, so the id does not depend on
    argument order and callers never need to try both orderings.
    """
    low, high = sorted((user_a.lower(), user_b.lower()))
    return f"{DM_PREFIX}{low}#{high}"


def dm_partition(dm_id: str, convention: Convention = Convention.CURRENT) -> str:
    """Partition key holding a DM thread's messages."""
    if convention is Convention.LEGACY:
        return legacy_partition(dm_id)
    return dm_id


def legacy_partition(current_pk: str) -> str:
    """Map a current-convention message partition to its legacy twin."""
    return LEGACY_PARTITION_PREFIX + current_pk


def message_sort_key(
    created_at: str,
    suffix: str,
    convention: Convention = Convention.CURRENT,
) -> str:
    """Sort key for a message; lexicographic order follows created_at."""
    prefix = LEGACY_MESSAGE_SK_PREFIX if convention is Convention.LEGACY else MESSAGE_SK_PREFIX
    return f"{prefix}{created_at}#{suffix}"


def channel_meta_keys(name: str) -> tuple[str, str]:
    """Keys of a channel metadata row in the roster layout."""
    return CHANNEL_ROSTER_PK, CHANNEL_PREFIX + name


def channel_info_keys(name: str) -> tuple[str, str]:
    """Keys of a channel metadata row stored in the channel's own partition."""
    return CHANNEL_PREFIX + name, META_SK


def dm_meta_keys(dm_id: str) -> tuple[str, str]:
    return DM_ROSTER_PK, dm_id


def dm_info_keys(dm_id: str) -> tuple[str, str]:
    return dm_id, META_SK


def user_keys(user_id: str, convention: Convention = Convention.CURRENT) -> tuple[str, str]:
    """Keys of a user row."""
    if convention is Convention.LEGACY:
        return USER_PREFIX + user_id, PROFILE_PREFIX + user_id
    return USER_ROSTER_PK, USER_PREFIX + user_id


# --- Decoding ---


def parse_sort_key(sk: str) -> tuple[str, str] | None:
    """Split a message sort key into (iso timestamp, suffix).

    Works for both "MSG#" and "TS#" sort keys. Returns None when the second
    segment does not look like a timestamp.
    """
    parts = sk.split("#", 2)
    if len(parts) < 2:
        return None
    iso = parts[1]
    if "T" not in iso:
        return None
    suffix = parts[2] if len(parts) > 2 else ""
    return iso, suffix


def is_channel_meta(pk: str, sk: str) -> bool:
    return (pk == CHANNEL_ROSTER_PK and sk.startswith(CHANNEL_PREFIX)) or (
        pk.startswith(CHANNEL_PREFIX) and sk == META_SK
    )


def is_dm_meta(pk: str, sk: str) -> bool:
    return (pk == DM_ROSTER_PK and sk.startswith(DM_PREFIX)) or (
        pk.startswith(DM_PREFIX) and sk == META_SK
    )


def is_channel_row(pk: str, sk: str) -> bool:
    """True for channel metadata or channel messages of either convention."""
    return (
        is_channel_meta(pk, sk)
        or pk.startswith(CHANNEL_PREFIX)
        or pk.startswith(LEGACY_CHANNEL_PREFIX)
    )


def is_dm_row(pk: str, sk: str) -> bool:
    """True for DM metadata or DM messages of either convention."""
    return is_dm_meta(pk, sk) or pk.startswith(DM_PREFIX) or pk.startswith(LEGACY_DM_PREFIX)


def is_user_row(pk: str, sk: str) -> bool:
    return (pk == USER_ROSTER_PK and sk.startswith(USER_PREFIX)) or pk.startswith(USER_PREFIX)


# --- Thread addresses ---


@dataclass(frozen=True)
class ThreadAddress:
    """A channel or DM thread: the unit messages are sent to and listed from.

    `name` is the channel name for channels and the "DM#..." id for DMs.
    """

    kind: ThreadKind
    name: str

    @classmethod
    def channel(cls, name: str) -> ThreadAddress:
        if not name or not name.strip():
            raise MalformedInput("channel is required")
        return cls("channel", name)

    @classmethod
    def dm(cls, dm_id: str) -> ThreadAddress:
        if not dm_id or not dm_id.strip() or not dm_id.startswith(DM_PREFIX):
            raise MalformedInput("dmId must start with DM#")
        return cls("dm", dm_id)

    @classmethod
    def between(cls, user_a: str, user_b: str) -> ThreadAddress:
        if not user_a.strip() or not user_b.strip():
            raise MalformedInput("both usernames are required")
        return cls("dm", dm_key(user_a, user_b))

    def partition_key(self, convention: Convention = Convention.CURRENT) -> str:
        if self.kind == "channel":
            return channel_key(self.name, convention)
        return dm_partition(self.name, convention)

    def members(self) -> list[str]:
        """Usernames encoded in a DM id; empty for channels."""
        if self.kind != "dm":
            return []
        return [part for part in self.name[len(DM_PREFIX) :].split("#") if part]
