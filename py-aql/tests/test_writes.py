"""Tests for insert/update/replace/delete and the WriteResult record."""

import uuid

import pytest

from aql import ConflictError, RemoteQueryError, ValueChange, WriteResult


class TestInsert:
    """insert() and conflict policies."""

    async def test_insert_counts(self, populated, conn):
        result = await populated.table("users").insert([{"id": 7}, {"id": 8}]).run(conn)
        assert isinstance(result, WriteResult)
        assert result.inserted == 2
        assert result.ok

    async def test_conflict_error_is_reported_not_raised(self, populated, conn):
        users = populated.table("users")
        result = await users.insert({"id": 1, "name": "Other"}).run(conn)
        assert result.errors >= 1
        assert result.first_error.startswith("Duplicate primary key")
        assert result.inserted == 0
        assert (await users.get(1).run(conn))["name"] == "Ada"

    async def test_partial_batch(self, populated, conn):
        result = await populated.table("users").insert([{"id": 1}, {"id": 5}]).run(conn)
        assert result.inserted == 1
        assert result.errors == 1

    async def test_raise_for_errors_gives_conflict_error(self, populated, conn):
        result = await populated.table("users").insert({"id": 1}).run(conn)
        with pytest.raises(ConflictError, match="Duplicate primary key"):
            result.raise_for_errors()

    async def test_conflict_replace(self, populated, conn):
        users = populated.table("users")
        result = await users.insert({"id": 1, "name": "New"}, conflict="replace").run(conn)
        assert result.replaced == 1
        assert await users.get(1).run(conn) == {"id": 1, "name": "New"}

    async def test_conflict_update_merges(self, populated, conn):
        users = populated.table("users")
        await users.insert({"id": 1, "name": "New"}, conflict="update").run(conn)
        doc = await users.get(1).run(conn)
        assert doc["name"] == "New"
        assert doc["age"] == 36

    async def test_generated_keys(self, populated, conn):
        users = populated.table("users")
        result = await users.insert([{"name": "Anon"}]).run(conn)
        assert result.inserted == 1
        assert len(result.generated_keys) == 1
        key = result.generated_keys[0]
        uuid.UUID(key)
        assert (await users.get(key).run(conn))["name"] == "Anon"

    async def test_custom_primary_key(self, conn, shop):
        from aql import create_database

        await create_database("shop").run(conn)
        await shop.table_create("items", primary_key="sku").run(conn)
        items = shop.table("items")
        await items.insert({"sku": "a-1", "qty": 3}).run(conn)
        assert (await items.get("a-1").run(conn))["qty"] == 3

    async def test_return_changes(self, populated, conn):
        result = await populated.table("users").insert({"id": 9}, return_changes=True).run(conn)
        assert result.changes == [ValueChange(old_val=None, new_val={"id": 9})]


class TestUpdateReplaceDelete:
    """Selection writes."""

    async def test_update_selection(self, populated, conn):
        users = populated.table("users")
        result = await users.filter(lambda u: u["age"] < 18).update({"minor": True}).run(conn)
        assert result.replaced == 1
        assert (await users.get(3).run(conn))["minor"] is True

    async def test_update_with_callback(self, populated, conn):
        users = populated.table("users")
        await users.get(1).update(lambda u: {"age": u["age"] + 1}).run(conn)
        assert (await users.get(1).run(conn))["age"] == 37

    async def test_update_merges_nested_objects(self, populated, conn):
        users = populated.table("users")
        await users.get(1).update({"prefs": {"theme": "dark", "lang": "en"}}).run(conn)
        await users.get(1).update({"prefs": {"theme": "light"}}).run(conn)
        assert (await users.get(1).run(conn))["prefs"] == {"theme": "light", "lang": "en"}

    async def test_unchanged(self, populated, conn):
        result = await populated.table("users").get(1).update({"role": "admin"}).run(conn)
        assert result.unchanged == 1
        assert result.replaced == 0

    async def test_missing_document_is_skipped(self, populated, conn):
        result = await populated.table("users").get(99).update({"a": 1}).run(conn)
        assert result.skipped == 1

    async def test_replace_cannot_change_primary_key(self, populated, conn):
        users = populated.table("users")
        result = await users.get(1).replace({"id": 100, "name": "X"}).run(conn)
        assert result.errors == 1
        assert "cannot be changed" in result.first_error
        with pytest.raises(RemoteQueryError):
            result.raise_for_errors()

    async def test_replace_with_callback(self, populated, conn):
        users = populated.table("users")
        result = await users.get(2).replace(lambda u: {"id": u["id"], "name": u["name"]}).run(conn)
        assert result.replaced == 1
        assert "role" not in await users.get(2).run(conn)

    async def test_replace_with_null_deletes(self, populated, conn):
        users = populated.table("users")
        result = await users.get(2).replace(None).run(conn)
        assert result.deleted == 1
        assert await users.get(2).run(conn) is None

    async def test_delete_selection(self, populated, conn):
        users = populated.table("users")
        result = await users.filter({"role": "user"}).delete(return_changes=True).run(conn)
        assert result.deleted == 2
        assert [c.old_val["id"] for c in result.changes] == [2, 3]
        assert all(c.new_val is None for c in result.changes)
        assert await users.count().run(conn) == 1

    async def test_update_error_is_reported(self, populated, conn):
        users = populated.table("users")
        result = await users.update(lambda u: {"age": u["name"] * 2}).run(conn)
        assert result.errors == 3
        assert result.first_error.startswith("Expected type NUMBER")


class TestWriteResultRecord:
    """WriteResult decoding."""

    def test_from_dict_ignores_unknown_keys(self):
        result = WriteResult.from_dict({"inserted": 1, "shard": 3})
        assert result.inserted == 1
        assert result.generated_keys == []

    def test_raise_for_errors_returns_self_when_ok(self):
        result = WriteResult(inserted=1)
        assert result.raise_for_errors() is result

    def test_generic_error(self):
        with pytest.raises(RemoteQueryError, match="2 write errors"):
            WriteResult(errors=2).raise_for_errors()
