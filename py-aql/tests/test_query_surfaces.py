"""Tests for the query surfaces at build time: chaining, legality, shapes."""

import pytest

import aql
from aql import (
    Database,
    Datum,
    Feed,
    Selection,
    SingleSelection,
    Stream,
    Table,
    TypeMismatch,
)
from aql.expr import NumberProxy, Op
from aql.shapes import NUMBER, STRING, Kind


@pytest.fixture
def users():
    return Database("app").table("users", schema={"id": int, "name": str, "age": int})


class TestDatabase:
    """Database handles and catalogue queries."""

    def test_database_is_a_plain_handle(self):
        db = Database("app")
        assert db.name == "app"
        assert db.term.serialize() == {"type": "DB", "options": {"name": "app"}}

    def test_table_create_uses_default_primary_key(self):
        q = Database("app").table_create("users")
        assert q.term.options["primary_key"] == "id"

    def test_table_create_default_primary_key_from_settings(self):
        aql.configure(default_primary_key="key")
        assert Database("app").table_create("t").term.options["primary_key"] == "key"

    def test_table_needs_a_name(self):
        with pytest.raises(ValueError, match="non-empty"):
            Database("app").table("")

    def test_entry_points(self):
        assert aql.create_database("x").term.op == Op.DB_CREATE
        assert aql.delete_database("x").term.op == Op.DB_DROP
        assert aql.list_databases().term.op == Op.DB_LIST


class TestChaining:
    """Every chained call returns a new surface and leaves the receiver alone."""

    def test_filter_keeps_selection(self, users):
        result = users.filter(lambda u: u["age"] > 18)
        assert type(result) is Selection
        assert type(users) is Table
        assert users.term.op == Op.TABLE

    def test_map_degrades_to_stream(self, users):
        result = users.map(lambda u: u["age"])
        assert type(result) is Stream
        assert result.shape == NUMBER

    def test_filter_with_dict_is_literal(self, users):
        t = users.filter({"name": "Ada"}).term
        assert t.args[1].op == Op.DATUM

    def test_bracket_on_stream_plucks_field_shape(self, users):
        assert users["name"].shape == STRING

    def test_order_by_and_slice_keep_selection(self, users):
        result = users.order_by("age", "desc").slice(1, 2)
        assert type(result) is Selection
        assert result.term.options["counted"] is True
        assert result.term.args[0].options["direction"] == "desc"

    def test_get_returns_nullable_single_selection(self, users):
        doc = users.get(1)
        assert type(doc) is SingleSelection
        assert doc.shape.nullable

    def test_nth_on_selection_is_single_selection(self, users):
        assert type(users.nth(0)) is SingleSelection

    def test_nth_on_stream_is_datum(self, users):
        assert type(users.map(lambda u: u).nth(0)) is Datum

    def test_datum_value_gives_shape_specific_proxy(self, users):
        assert isinstance(users.count().value(), NumberProxy)

    def test_shared_predicate_across_streams(self, users):
        """One compiled subquery reused by two chains stays the same term."""
        adults = users.filter(lambda u: u["age"] >= 18)
        first = adults.count()
        second = adults.pluck("name")
        assert first.term.args[0] is second.term.args[0]

    def test_pluck_shape(self, users):
        assert users.pluck("name").shape.field("name") == STRING

    def test_get_all_and_between(self, users):
        assert users.get_all("name", "Ada", "Grace").term.options["index"] == "name"
        assert type(users.between("id", 1, 5)) is Selection

    def test_datum_default_folds_fallback_once(self, users, monkeypatch):
        doc = users.get(9)
        calls = []
        real = aql.query.fold_with_shape

        def counting(value):
            calls.append(value)
            return real(value)

        monkeypatch.setattr(aql.query, "fold_with_shape", counting)
        monkeypatch.setattr(aql.query, "fold", lambda value: pytest.fail("folded twice"))
        fallback = {"name": "nobody"}
        result = doc.default(fallback)
        assert calls == [fallback]
        assert result.term.op == Op.DEFAULT
        assert result.term.args[1].option("value") == fallback


class TestBuildTimeValidation:
    """Illegal arguments fail at the chaining call."""

    def test_sum_on_string_field_raises(self, users):
        with pytest.raises(TypeMismatch, match="sum\\(\\) needs numeric"):
            users.sum("name")

    def test_avg_on_numeric_field_is_fine(self, users):
        assert users.avg("age").term.op == Op.AVG

    def test_invalid_sort_direction(self, users):
        with pytest.raises(ValueError, match="Invalid sort direction"):
            users.order_by("age", "sideways")

    def test_order_by_field_must_be_string(self, users):
        with pytest.raises(TypeError):
            users.order_by(3)

    def test_invalid_conflict_policy(self, users):
        with pytest.raises(ValueError, match="Invalid conflict policy"):
            users.insert({"id": 1}, conflict="ignore")

    def test_append_needs_array(self, users):
        with pytest.raises(TypeMismatch, match="append"):
            users.count().append(1)

    def test_index_keys_must_be_strings(self, users):
        with pytest.raises(TypeError):
            users.index_create("pair", "a", 1)


class TestWrites:
    """Write operations and their options."""

    def test_update_with_callback(self, users):
        q = users.update(lambda u: {"age": u["age"] + 1}, return_changes=True)
        assert q.term.op == Op.UPDATE
        assert q.term.args[1].op == Op.FUNC
        assert q.term.options["return_changes"] is True

    def test_replace_with_literal(self, users):
        q = users.get(1).replace({"id": 1, "name": "A"})
        assert q.term.args[1].op == Op.DATUM

    def test_delete(self, users):
        assert users.filter({"age": 3}).delete().term.op == Op.DELETE

    def test_insert_options(self, users):
        q = users.insert([{"id": 1}], conflict="update")
        assert dict(q.term.options) == {"conflict": "update", "return_changes": False}


class TestFeeds:
    """changes() and what a feed allows."""

    def test_changes_returns_feed_with_options(self, users):
        feed = users.changes(squash=True, changefeed_queue_size=10, include_initial=True)
        assert type(feed) is Feed
        assert dict(feed.term.options) == {
            "squash": True,
            "changefeed_queue_size": 10,
            "include_initial": True,
        }

    def test_default_queue_size_from_settings(self, users):
        aql.configure(changefeed_queue_size=7)
        assert users.changes().term.options["changefeed_queue_size"] == 7

    def test_changes_on_single_document(self, users):
        assert type(users.get(1).changes()) is Feed

    def test_change_shape(self, users):
        feed = users.changes()
        assert feed.shape.field("new_val").nullable
        assert feed.shape.field("new_val").field("age").kind == Kind.NUMBER

    @pytest.mark.parametrize("name", ["order_by", "count", "sum", "group", "join", "slice"])
    def test_feed_forbids_unbounded_operations(self, users, name):
        with pytest.raises(TypeMismatch, match="not available on a feed"):
            getattr(users.changes(), name)

    def test_feed_allows_map_and_filter(self, users):
        feed = users.changes().filter(lambda c: c["new_val"]["age"] > 3).map(lambda c: c["new_val"])
        assert type(feed) is Feed

    def test_union_with_feed_is_feed(self, users):
        assert type(users.union(users.changes())) is Feed

    def test_union_of_streams(self, users):
        assert type(users.union([{"id": 9}])) is Stream

    @pytest.mark.parametrize(
        "kwargs",
        [{"changefeed_queue_size": 0}, {"changefeed_queue_size": 1.5}, {"squash": -1}],
    )
    def test_invalid_changes_options(self, users, kwargs):
        with pytest.raises(ValueError):
            users.changes(**kwargs)
