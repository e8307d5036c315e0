"""Tests for Term, the immutable expression node."""

import datetime

import pytest

from aql.expr import Op, Term, decode_value, encode_value, literal
from aql.expr.types import func, make_object, var_ref


class TestTermConstruction:
    """Building and inspecting terms."""

    def test_term_holds_op_args_and_options(self):
        """A term exposes its operation, operands and payload."""
        a, b = literal(1), literal(2)
        t = Term(Op.ADD, [a, b])
        assert t.op == Op.ADD
        assert t.args == (a, b)
        assert dict(t.options) == {}

    def test_operands_must_be_terms(self):
        """Raw values are not accepted as operands."""
        with pytest.raises(TypeError, match="must be Terms"):
            Term(Op.ADD, [1, 2])

    def test_literal_copies_its_value(self):
        """Mutating the source value after lifting does not change the term."""
        value = {"tags": ["a"]}
        t = literal(value)
        value["tags"].append("b")
        assert t.option("value") == {"tags": ["a"]}

    def test_option_returns_a_copy(self):
        """Callers cannot alter a payload through option()."""
        t = literal([1, 2])
        t.option("value").append(3)
        assert t.option("value") == [1, 2]


class TestTermImmutability:
    """Terms can never change after construction."""

    def test_setattr_raises(self):
        t = literal(1)
        with pytest.raises(AttributeError, match="immutable"):
            t._op = Op.ADD

    def test_options_are_read_only(self):
        t = Term(Op.TABLE, (), {"name": "users"})
        with pytest.raises(TypeError):
            t.options["name"] = "orders"

    def test_shared_subterm_is_unaffected_by_other_branch(self):
        """Two parents sharing one predicate both keep seeing the same sub-tree."""
        shared = Term(Op.GT, [var_ref("x"), literal(3)])
        first = Term(Op.NOT, [shared])
        second = Term(Op.AND, [shared, literal(True)])
        before = first.serialize()
        Term(Op.OR, [second, literal(False)])
        assert first.args[0] is second.args[0]
        assert first.serialize() == before

    def test_nested_payload_cannot_be_changed_through_options(self):
        """Editing a nested value read from options leaves every parent intact."""
        shared = literal({"role": "admin"})
        first = Term(Op.FILTER, [Term(Op.TABLE, (), {"name": "users"}), shared])
        second = Term(Op.NOT, [shared])
        shared.options["value"]["role"] = "other"
        assert first.serialize()["args"][1] == {"type": "DATUM", "options": {"value": {"role": "admin"}}}
        assert second.serialize()["args"][0]["options"]["value"] == {"role": "admin"}

    def test_nested_list_payload_is_copied(self):
        obj = make_object({"x": literal(1)})
        obj.options["keys"].append("y")
        assert obj.serialize()["options"]["keys"] == ["x"]

    def test_payload_is_copied_from_the_caller(self):
        fields = ["a", "b"]
        t = Term(Op.GROUP, (), {"fields": fields})
        fields.append("c")
        assert t.options["fields"] == ["a", "b"]

    def test_terms_compare_by_identity(self):
        assert literal(1) != literal(1)
        t = literal(1)
        assert t == t


class TestSerialization:
    """serialize() / deserialize()."""

    def test_datum_serializes_value_in_options(self):
        assert literal(5).serialize() == {"type": "DATUM", "options": {"value": 5}}

    def test_empty_keys_are_omitted(self):
        assert Term(Op.DB_LIST).serialize() == {"type": "DB_LIST"}

    def test_nested_serialization(self):
        t = func(["doc"], Term(Op.BRACKET, [var_ref("doc"), literal("age")]))
        assert t.serialize() == {
            "type": "FUNC",
            "args": [
                {
                    "type": "BRACKET",
                    "args": [
                        {"type": "VAR", "options": {"name": "doc"}},
                        {"type": "DATUM", "options": {"value": "age"}},
                    ],
                }
            ],
            "options": {"params": ["doc"]},
        }

    def test_make_object_keeps_key_order(self):
        t = make_object({"b": literal(1), "a": var_ref("x")})
        assert t.options["keys"] == ["b", "a"]
        assert t.args[1].op == Op.VAR

    def test_deserialize_rebuilds_equivalent_tree(self):
        t = Term(Op.FILTER, [Term(Op.TABLE, (), {"name": "t"}), literal({"a": 1})])
        rebuilt = Term.deserialize(t.serialize())
        assert rebuilt is not t
        assert rebuilt.serialize() == t.serialize()

    def test_walk_visits_parents_first(self):
        t = Term(Op.ADD, [literal(1), Term(Op.NOT, [literal(True)])])
        assert [n.op for n in t.walk()] == ["ADD", "DATUM", "NOT", "DATUM"]


class TestValueEncoding:
    """Time values on the wire."""

    def test_datetime_round_trip_keeps_timezone(self):
        tz = datetime.timezone(datetime.timedelta(hours=2))
        when = datetime.datetime(2024, 5, 1, 12, 30, tzinfo=tz)
        encoded = encode_value(when)
        assert encoded["$reql_type$"] == "TIME"
        assert encoded["timezone"] == "+02:00"
        decoded = decode_value(encoded)
        assert decoded == when
        assert decoded.utcoffset() == datetime.timedelta(hours=2)

    def test_naive_datetime_is_utc(self):
        encoded = encode_value(datetime.datetime(1970, 1, 1, 0, 1))
        assert encoded["epoch_time"] == 60
        assert encoded["timezone"] == "+00:00"

    def test_date_is_midnight_utc(self):
        encoded = encode_value(datetime.date(1970, 1, 2))
        assert encoded["epoch_time"] == 86400

    def test_containers_are_encoded_recursively(self):
        encoded = encode_value({"at": [datetime.date(1970, 1, 1)]})
        assert encoded["at"][0]["epoch_time"] == 0
