"""Tests for identity resolution and user management."""

import pytest

from chappy import identity
from chappy.errors import Forbidden, UserNotFound
from chappy.models import Principal, UserRecord
from chappy.store import InMemoryStore


class TestResolveUserId:
    def test_explicit_user_id_wins(self):
        record = UserRecord(username="x", pk="USER#99", sk="USER#77", explicit_user_id="42")
        assert identity.resolve_user_id(record) == "42"

    def test_pk_suffix_beats_sk_suffix(self):
        record = UserRecord(username="x", pk="USER#99", sk="USER#77")
        assert identity.resolve_user_id(record) == "99"

    def test_sk_suffix(self):
        record = UserRecord(username="x", pk="USER", sk="USER#77")
        assert identity.resolve_user_id(record) == "77"

    def test_username_fallback(self):
        record = UserRecord(username="x", pk="USER", sk="PROFILE")
        assert identity.resolve_user_id(record) == "x"


class TestFindUser:
    @pytest.mark.asyncio
    async def test_resolve_each_convention(self, legacy_table):
        assert await identity.resolve(legacy_table, "alice") == "u-alice"
        assert await identity.resolve(legacy_table, "bob") == "bob"
        assert await identity.resolve(legacy_table, "admin") == "root"

    @pytest.mark.asyncio
    async def test_explicit_id_beats_legacy_pk(self):
        store = InMemoryStore([{"PK": "USER#99", "SK": "PROFILE#99", "username": "zoe", "userId": "42"}])
        assert await identity.resolve(store, "zoe") == "42"

    @pytest.mark.asyncio
    async def test_unknown_user(self, legacy_table):
        with pytest.raises(UserNotFound):
            await identity.find_user(legacy_table, "mallory")

    @pytest.mark.asyncio
    async def test_match_is_exact(self, legacy_table):
        with pytest.raises(UserNotFound):
            await identity.find_user(legacy_table, "Alice")

    @pytest.mark.asyncio
    async def test_find_by_id(self, legacy_table):
        record = await identity.find_user_by_id(legacy_table, "root")
        assert record.username == "admin"


class TestListUsers:
    @pytest.mark.asyncio
    async def test_sorted_by_username(self, legacy_table):
        users = await identity.list_users(legacy_table)
        assert [u.username for u in users] == ["admin", "alice", "bob"]

    @pytest.mark.asyncio
    async def test_empty(self, chappy_store):
        assert await identity.list_users(chappy_store) == []


class TestDeleteUser:
    @pytest.mark.asyncio
    async def test_delete_self(self, legacy_table):
        deleted = await identity.delete_user(legacy_table, Principal("bob"), "bob")
        assert deleted.username == "bob"
        with pytest.raises(UserNotFound):
            await identity.find_user(legacy_table, "bob")

    @pytest.mark.asyncio
    async def test_cannot_delete_others(self, legacy_table):
        with pytest.raises(Forbidden):
            await identity.delete_user(legacy_table, Principal("bob"), "u-alice")
        assert await identity.resolve(legacy_table, "alice") == "u-alice"

    @pytest.mark.asyncio
    async def test_unverifiable_principal_is_forbidden(self, legacy_table):
        with pytest.raises(Forbidden):
            await identity.delete_user(legacy_table, Principal("ghost"), "ghost")

    @pytest.mark.asyncio
    async def test_admin_deletes_anyone(self, legacy_table):
        await identity.delete_user(legacy_table, Principal("ops", access_level="admin"), "u-alice")
        with pytest.raises(UserNotFound):
            await identity.find_user(legacy_table, "alice")

    @pytest.mark.asyncio
    async def test_admin_delete_unknown(self, legacy_table):
        with pytest.raises(UserNotFound):
            await identity.delete_user(legacy_table, Principal("ops", access_level="admin"), "nobody")
