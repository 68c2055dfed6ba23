"""chappy - Multi-room chat with channels and direct messages.

Usage:
    from chappy import InMemoryStore, MessageStore, ThreadAddress

    store = InMemoryStore()
    messages = MessageStore(store)

    # Channels
    await messages.send(ThreadAddress.channel("general"), "alice", "Hello!")
    history = await messages.list(ThreadAddress.channel("general"), limit=50)

    # Direct messages (the thread id does not depend on argument order)
    dm = ThreadAddress.between("Alice", "bob")   # DM#alice#bob
    await messages.send(dm, "alice", "psst")

    # Rosters
    from chappy import roster
    channels = await roster.list_channels(store)
    my_dms = await roster.list_dm_threads_for_user(store, "alice")
"""

from chappy._version import __version__
from chappy.errors import (
    ChappyError,
    Forbidden,
    MalformedInput,
    NotFound,
    StoreUnavailable,
    UserNotFound,
    WriteConflict,
)
from chappy.keys import ThreadAddress, dm_key
from chappy.messages import MessageStore
from chappy.store import InMemoryStore, SqliteStore, Store

__all__ = [
    "__version__",
    "ChappyError",
    "Forbidden",
    "InMemoryStore",
    "MalformedInput",
    "MessageStore",
    "NotFound",
    "SqliteStore",
    "Store",
    "StoreUnavailable",
    "ThreadAddress",
    "UserNotFound",
    "WriteConflict",
    "dm_key",
]
