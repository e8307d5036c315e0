"""Tests for join() over every join kind.

Left side is a table, right side either a table or an inline array.
"""

import warnings

import pytest
import pytest_asyncio

import aql
from aql import JoinType, TypeMismatch
from aql.expr import Op
from aql.joins import nullable_sides


def pair(left, right):
    return {"left": left, "right": right}


def on_id(left, right):
    return left["id"] == right["id"]


@pytest_asyncio.fixture
async def left(conn, shop):
    await aql.create_database("shop").run(conn)
    await shop.table_create("l").run(conn)
    await shop.table("l").insert([{"id": 1}, {"id": 2}]).run(conn)
    return shop.table("l")


class TestJoinKinds:
    """left = [{id:1},{id:2}], right = [{id:2}], matching on id."""

    async def test_inner(self, left, conn):
        rows = await left.join([{"id": 2}], JoinType.Inner, pair, on_id).run(conn)
        assert rows == [pair({"id": 2}, {"id": 2})]

    async def test_left(self, left, conn):
        rows = await left.join([{"id": 2}], JoinType.Left, pair, on_id).run(conn)
        assert rows == [pair({"id": 1}, None), pair({"id": 2}, {"id": 2})]

    async def test_left_excl(self, left, conn):
        rows = await left.join([{"id": 2}], JoinType.LeftExcl, pair, on_id).run(conn)
        assert rows == [pair({"id": 1}, None)]

    async def test_right(self, left, conn):
        rows = await left.join([{"id": 2}], JoinType.Right, pair, on_id).run(conn)
        assert rows == [pair({"id": 2}, {"id": 2})]

    async def test_right_excl_empty_when_all_right_rows_match(self, left, conn):
        rows = await left.join([{"id": 2}], JoinType.RightExcl, pair, on_id).run(conn)
        assert rows == []

    async def test_full_outer_does_not_duplicate_matched_rows(self, left, conn):
        rows = await left.join([{"id": 2}], JoinType.FullOuter, pair, on_id).run(conn)
        assert rows == [pair({"id": 1}, None), pair({"id": 2}, {"id": 2})]

    async def test_full_outer_with_unmatched_right(self, left, conn):
        right = [{"id": 2}, {"id": 3}]
        rows = await left.join(right, JoinType.FullOuter, pair, on_id).run(conn)
        assert rows == [
            pair({"id": 1}, None),
            pair({"id": 2}, {"id": 2}),
            pair(None, {"id": 3}),
        ]

    async def test_full_excl(self, left, conn):
        right = [{"id": 2}, {"id": 3}]
        rows = await left.join(right, JoinType.FullExcl, pair, on_id).run(conn)
        assert rows == [pair({"id": 1}, None), pair(None, {"id": 3})]

    async def test_cross(self, left, conn):
        rows = await left.join([{"id": 7}, {"id": 8}], JoinType.Cross, pair).run(conn)
        assert len(rows) == 4
        assert rows[0] == pair({"id": 1}, {"id": 7})

    async def test_join_against_table(self, populated, conn):
        users = populated.table("users")
        orders = populated.table("orders")
        rows = await users.join(
            orders,
            JoinType.Inner,
            lambda u, o: {"name": u["name"], "amount": o["amount"]},
            lambda u, o: u["id"] == o["user_id"],
        ).run(conn)
        assert rows == [
            {"name": "Ada", "amount": 30},
            {"name": "Ada", "amount": 12},
            {"name": "Grace", "amount": 50},
        ]

    async def test_mapper_default_on_missing_side(self, left, conn):
        rows = await left.join(
            [{"id": 2, "tag": "x"}],
            JoinType.Left,
            lambda l, r: r.default({"tag": "none"})["tag"],
            on_id,
        ).run(conn)
        assert rows == ["none", "x"]

    async def test_left_join_indexing_unmatched_side_gives_null(self, populated, conn):
        users = populated.table("users")
        orders = populated.table("orders")
        rows = await users.join(
            orders,
            JoinType.Left,
            lambda u, o: {"name": u["name"], "total": o["amount"]},
            lambda u, o: u["id"] == o["user_id"],
        ).run(conn)
        assert rows == [
            {"name": "Ada", "total": 30},
            {"name": "Ada", "total": 12},
            {"name": "Grace", "total": 50},
            {"name": "Linus", "total": None},
        ]

    async def test_indexed_unmatched_side_takes_default(self, populated, conn):
        users = populated.table("users")
        orders = populated.table("orders")
        totals = await users.join(
            orders,
            JoinType.Left,
            lambda u, o: o["amount"].default(0),
            lambda u, o: u["id"] == o["user_id"],
        ).run(conn)
        assert totals == [30, 12, 50, 0]


class TestJoinBuilding:
    """Build-time behaviour of join()."""

    def test_join_kind_numbers(self):
        assert [k.value for k in JoinType] == list(range(8))

    def test_nullable_sides(self):
        assert nullable_sides(JoinType.Left) == (False, True)
        assert nullable_sides(JoinType.Right) == (True, False)
        assert nullable_sides(JoinType.FullOuter) == (True, True)
        assert nullable_sides(JoinType.Inner) == (False, False)

    def test_mapper_receives_nullable_proxies(self, shop):
        seen = {}

        def mapper(l, r):
            seen["left"], seen["right"] = l.nullable, r.nullable
            return l

        shop.table("a").join(shop.table("b"), JoinType.Left, mapper, on_id)
        assert seen == {"left": False, "right": True}

    def test_indexing_nullable_side_is_marked_nullable(self, shop):
        seen = {}

        def mapper(l, r):
            seen["left"], seen["right"] = l["id"], r["id"]
            return l

        shop.table("a").join(shop.table("b"), JoinType.Left, mapper, on_id)
        assert dict(seen["right"].term.options) == {"nullable": True}
        assert dict(seen["left"].term.options) == {}

    def test_invalid_kind(self, shop):
        with pytest.raises(ValueError, match="Invalid join type"):
            shop.table("a").join([], 42, pair, on_id)

    def test_kind_accepts_its_number(self, shop):
        t = shop.table("a").join([], 3, pair, on_id).term
        assert t.op == Op.JOIN
        assert t.options["kind"] == JoinType.Left

    def test_predicate_required(self, shop):
        with pytest.raises(TypeMismatch, match="Inner joins need a predicate"):
            shop.table("a").join([], JoinType.Inner, pair)

    def test_cross_ignores_predicate_with_warning(self, shop):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            t = shop.table("a").join([], JoinType.Cross, pair, on_id).term
        assert any("ignore the predicate" in str(w.message) for w in caught)
        assert t.args[3].op == Op.DATUM

    def test_right_must_be_a_sequence(self, shop):
        with pytest.raises(TypeMismatch, match="stream or an array"):
            shop.table("a").join(5, JoinType.Inner, pair, on_id)

    def test_cannot_join_a_feed(self, shop):
        with pytest.raises(TypeMismatch, match="feed"):
            shop.table("a").join(shop.table("b").changes(), JoinType.Inner, pair, on_id)
