"""Tests for changefeeds: events, backpressure, squashing and release."""

import asyncio

import pytest

from aql import QueueOverflow, ValueChange


def subscriptions(server):
    return server.table("shop", "users").subscription_count


class TestChangeEvents:
    """What a feed delivers."""

    async def test_insert_update_delete(self, populated, conn):
        users = populated.table("users")
        cursor = await users.changes().run(conn)
        await users.insert({"id": 4, "name": "Alan"}).run(conn)
        await users.get(4).update({"age": 41}).run(conn)
        await users.get(4).delete().run(conn)

        inserted = await cursor.next()
        updated = await cursor.next()
        deleted = await cursor.next()
        await cursor.close()

        assert inserted == ValueChange(old_val=None, new_val={"id": 4, "name": "Alan"})
        assert updated.old_val == {"id": 4, "name": "Alan"}
        assert updated.new_val == {"id": 4, "name": "Alan", "age": 41}
        assert deleted.new_val is None

    async def test_filtered_feed_skips_unrelated_changes(self, populated, conn):
        users = populated.table("users")
        cursor = await users.filter(lambda u: u["age"] >= 18).changes().run(conn)
        await users.insert({"id": 4, "name": "Kid", "age": 9}).run(conn)
        await users.insert({"id": 5, "name": "Adult", "age": 30}).run(conn)
        change = await cursor.next()
        await cursor.close()
        assert change.new_val["name"] == "Adult"

    async def test_document_leaving_a_filter_has_null_new_val(self, populated, conn):
        users = populated.table("users")
        cursor = await users.filter({"role": "admin"}).changes().run(conn)
        await users.get(1).update({"role": "user"}).run(conn)
        change = await cursor.next()
        await cursor.close()
        assert change.old_val["id"] == 1
        assert change.new_val is None

    async def test_single_document_feed(self, populated, conn):
        users = populated.table("users")
        cursor = await users.get(1).changes().run(conn)
        await users.get(2).update({"age": 46}).run(conn)
        await users.get(1).update({"age": 37}).run(conn)
        change = await cursor.next()
        await cursor.close()
        assert change.old_val["age"] == 36
        assert change.new_val["age"] == 37

    async def test_include_initial(self, populated, conn):
        users = populated.table("users")
        cursor = await users.changes(include_initial=True).run(conn)
        initial = [await cursor.next() for _ in range(3)]
        await cursor.close()
        assert [c.new_val["id"] for c in initial] == [1, 2, 3]
        assert all(c.old_val is None for c in initial)

    async def test_map_after_changes(self, populated, conn):
        users = populated.table("users")
        cursor = await users.changes().map(lambda c: c["new_val"]["name"]).run(conn)
        await users.insert({"id": 4, "name": "Alan"}).run(conn)
        assert await cursor.next() == "Alan"
        await cursor.close()

    async def test_union_emits_stream_first(self, populated, conn):
        users = populated.table("users")
        feed = users.filter({"role": "admin"}).union(users.changes())
        cursor = await feed.run(conn)
        await users.insert({"id": 4, "name": "Alan"}).run(conn)
        first = await cursor.next()
        second = await cursor.next()
        await cursor.close()
        assert first["name"] == "Ada"
        assert second["new_val"]["name"] == "Alan"


class TestBackpressure:
    """changefeed_queue_size bounds pending events."""

    async def test_queue_overflow(self, populated, conn, server):
        users = populated.table("users")
        cursor = await users.changes(changefeed_queue_size=2).run(conn)
        await users.insert([{"id": 4}, {"id": 5}, {"id": 6}]).run(conn)
        with pytest.raises(QueueOverflow) as exc:
            await cursor.next()
        assert exc.value.queue_size == 2
        assert cursor.exhausted
        assert subscriptions(server) == 0

    async def test_exactly_queue_size_is_fine(self, populated, conn):
        users = populated.table("users")
        cursor = await users.changes(changefeed_queue_size=2).run(conn)
        await users.insert([{"id": 4}, {"id": 5}]).run(conn)
        ids = [(await cursor.next()).new_val["id"] for _ in range(2)]
        await cursor.close()
        assert ids == [4, 5]

    async def test_consumed_events_free_the_queue(self, populated, conn):
        users = populated.table("users")
        cursor = await users.changes(changefeed_queue_size=1).run(conn)
        for i in range(4, 7):
            await users.insert({"id": i}).run(conn)
            assert (await cursor.next()).new_val["id"] == i
        await cursor.close()

    async def test_squash_coalesces_per_document(self, populated, conn, server):
        users = populated.table("users")
        cursor = await users.changes(squash=True, changefeed_queue_size=1).run(conn)
        await users.insert({"id": 4, "n": 0}).run(conn)
        for n in range(1, 5):
            await users.get(4).update({"n": n}).run(conn)
        change = await cursor.next()
        await cursor.close()
        assert change.old_val is None
        assert change.new_val == {"id": 4, "n": 4}

    async def test_squashed_insert_then_delete_emits_nothing(self, populated, conn):
        users = populated.table("users")
        cursor = await users.changes(squash=True).run(conn)
        await users.insert({"id": 4}).run(conn)
        await users.get(4).delete().run(conn)
        await users.insert({"id": 5}).run(conn)
        change = await cursor.next()
        await cursor.close()
        assert change.new_val == {"id": 5}


class TestRelease:
    """Closing or cancelling a feed releases its subscription."""

    async def test_close_unsubscribes(self, populated, conn, server):
        cursor = await populated.table("users").changes().run(conn)
        assert subscriptions(server) == 1
        await cursor.close()
        assert subscriptions(server) == 0

    async def test_async_with_releases(self, populated, conn, server):
        users = populated.table("users")
        async with users.changes().iterator(conn) as cursor:
            await cursor.open()
            await users.insert({"id": 4}).run(conn)
            async for change in cursor:
                assert change.new_val["id"] == 4
                break
            assert subscriptions(server) == 1
        assert subscriptions(server) == 0

    async def test_feed_is_not_opened_until_first_pull(self, populated, conn, server):
        cursor = populated.table("users").changes().iterator(conn)
        assert subscriptions(server) == 0
        await cursor.open()
        assert subscriptions(server) == 1
        await cursor.close()

    async def test_cancelled_pull_releases_subscription(self, populated, conn, server):
        cursor = await populated.table("users").changes().run(conn)
        pending = asyncio.ensure_future(cursor.next())
        await asyncio.sleep(0)
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        assert subscriptions(server) == 0

    async def test_waiting_consumer_is_woken_by_a_write(self, populated, conn):
        users = populated.table("users")
        cursor = await users.changes().run(conn)
        pending = asyncio.ensure_future(cursor.next())
        await asyncio.sleep(0)
        assert not pending.done()
        await users.insert({"id": 4}).run(conn)
        change = await asyncio.wait_for(pending, timeout=1)
        await cursor.close()
        assert change.new_val == {"id": 4}
