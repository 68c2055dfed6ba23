"""Identity resolution across the two historical user-row shapes.

    legacy)  PK="USER#<n>", SK="PROFILE#<n>"
    current) PK="USER",     SK="USER#<uuid>"

A user's stable id is taken, in priority order, from:

    1. an explicit userId attribute
    2. the PK suffix after "USER#"
    3. the SK suffix after "USER#"
    4. the username itself

The oldest convention kept identity in PK, so PK outranks SK; an explicit
userId outranks both.
"""

from __future__ import annotations

import logging

from . import keys, rows
from .errors import Forbidden, UserNotFound
from .models import Principal, UserRecord
from .rows import RowKind
from .store import Store

logger = logging.getLogger(__name__)


def resolve_user_id(record: UserRecord) -> str:
    """Stable user id for a user row."""
    if record.explicit_user_id:
        return record.explicit_user_id
    if record.pk.startswith(keys.USER_PREFIX):
        return record.pk[len(keys.USER_PREFIX) :]
    if record.sk.startswith(keys.USER_PREFIX):
        return record.sk[len(keys.USER_PREFIX) :]
    return record.username


async def _user_records(store: Store) -> list[UserRecord]:
    scanned = await store.scan(rows.SCAN_FIELDS)
    records = []
    for item in rows.classify_all(scanned, RowKind.USER):
        record = rows.to_user(item)
        if record is not None:
            records.append(record)
    return records


async def find_user(store: Store, username: str) -> UserRecord:
    """The user row for a username (exact match on username or legacy name).

    Raises:
        UserNotFound: If no row matches
    """
    for record in await _user_records(store):
        if record.username == username:
            return record
    logger.info(f"User not found after scan: {username}")
    raise UserNotFound(username)


async def resolve(store: Store, username: str) -> str:
    """Stable user id for a username; raises UserNotFound."""
    return resolve_user_id(await find_user(store, username))


async def find_user_by_id(store: Store, user_id: str) -> UserRecord:
    for record in await _user_records(store):
        if resolve_user_id(record) == user_id:
            return record
    raise UserNotFound(user_id)


async def list_users(store: Store) -> list[UserRecord]:
    """All users, one per resolved id, sorted by username."""
    by_id: dict[str, UserRecord] = {}
    for record in await _user_records(store):
        by_id.setdefault(resolve_user_id(record), record)
    return sorted(by_id.values(), key=lambda r: (r.username.lower(), r.username))


async def delete_user(store: Store, principal: Principal, user_id: str) -> UserRecord:
    """Delete a user row on behalf of a principal.

    Admins may delete anyone; everyone else only themselves. A principal
    whose own row cannot be found is never authorized.

    Raises:
        Forbidden: If the principal may not delete this user
        UserNotFound: If no user has this id
    """
    if not principal.is_admin:
        try:
            own_id = await resolve(store, principal.username)
        except UserNotFound:
            raise Forbidden("cannot verify your identity") from None
        if own_id != user_id:
            raise Forbidden("you can only delete your own account")

    record = await find_user_by_id(store, user_id)
    await store.delete(record.pk, record.sk)
    logger.info(f"Deleted user {record.username} ({user_id}) by {principal.username}")
    return record
