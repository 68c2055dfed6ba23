"""Value types shared by the chappy core and its HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .keys import Convention, ThreadKind


@dataclass(frozen=True)
class Message:
    """A chat message in a channel or DM thread."""

    message_id: str
    kind: ThreadKind
    author: str
    text: str
    created_at: str
    channel: str | None = None
    dm_id: str | None = None
    convention: Convention = Convention.CURRENT

    @property
    def time(self) -> str | None:
        """Short "HH:MM" rendering of created_at."""
        if "T" not in self.created_at:
            return None
        hhmm = self.created_at.split("T", 1)[1][:5]
        return hhmm or None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.message_id,
            "kind": self.kind,
            "channel": self.channel,
            "dmId": self.dm_id,
            "author": self.author,
            "text": self.text,
            "createdAt": self.created_at,
            "sender": self.author,
            "time": self.time,
        }


@dataclass(frozen=True)
class ChannelMeta:
    name: str
    is_locked: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "isLocked": self.is_locked}


@dataclass(frozen=True)
class DmThread:
    """A DM thread as reconstructed from metadata and message rows."""

    thread_id: str
    members: tuple[str, ...] = ()
    last_message_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.thread_id,
            "members": list(self.members),
            "lastMessageAt": self.last_message_at,
        }


@dataclass(frozen=True)
class DmView:
    """A DM thread seen from one participant."""

    thread_id: str
    other_username: str
    last_message_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "dmId": self.thread_id,
            "username": self.other_username,
            "lastMessageAt": self.last_message_at,
        }


@dataclass(frozen=True)
class UserRecord:
    """A user row, normalized across the two historical shapes.

    `explicit_user_id` is the row's own userId attribute, if any. The stable
    id is derived by chappy.identity.resolve_user_id.
    """

    username: str
    pk: str
    sk: str
    access_level: str = "user"
    explicit_user_id: str | None = None
    convention: Convention = Convention.CURRENT


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as reported by the credential verifier."""

    username: str
    access_level: str = "user"
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_admin(self) -> bool:
        return self.access_level == "admin"
