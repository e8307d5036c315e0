"""
Evaluator for serialized expression trees.

Works on the JSON form produced by ``Term.serialize()``: every node is a dict
with a "type", optional "args" and optional "options". Streams are evaluated
lazily as Seq objects; arrays are plain lists. Callback parameters live in an
environment chain, so VAR nodes resolve to the nearest enclosing binding.
"""

import datetime
import itertools
import math
import re
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..errors import RemoteQueryError
from ..expr.base import decode_value, format_offset, parse_offset
from ..expr.types import Op
from ..joins import JoinType
from ..results import DUPLICATE_KEY_PREFIX
from .storage import MemoryDatabase, MemoryTable
from .values import (
    NonExistence,
    Seq,
    as_list,
    equal,
    expect,
    expect_object,
    has_fields,
    is_number,
    materialize,
    matches,
    merge,
    pluck,
    round_half_away,
    sort_key,
    truthy,
    type_name,
    without,
)

Node = Dict[str, Any]


@contextmanager
def translate_errors(query: Node) -> Iterator[None]:
    """Report Python errors raised while evaluating query as RemoteQueryError."""
    try:
        yield
    except RemoteQueryError as e:
        if e.term is None:
            e.term = query
        raise
    except (TypeError, ValueError, ArithmeticError, KeyError, IndexError) as e:
        raise RemoteQueryError(str(e) or type(e).__name__, query) from e


def _args(node: Node) -> List[Node]:
    return node.get("args", [])


def _opts(node: Node) -> Dict[str, Any]:
    return node.get("options", {})


def _lift(source: Any, items) -> Any:
    """Keep streams lazy, arrays eager."""
    if isinstance(source, Seq):
        return Seq(items)
    return list(items)


def _sequence(value: Any) -> Any:
    if isinstance(value, (list, Seq)):
        return value
    if value is None:
        raise NonExistence("Cannot iterate over a null value")
    raise RemoteQueryError(f"Expected type SEQUENCE but found {type_name(value)}")


class Env:
    """One frame of callback bindings, linked to the enclosing frame."""

    __slots__ = ("_bindings", "_parent")

    def __init__(self, bindings: Optional[Dict[str, Any]] = None, parent: Optional["Env"] = None):
        self._bindings = bindings or {}
        self._parent = parent

    def child(self, bindings: Dict[str, Any]) -> "Env":
        return Env(bindings, self)

    def lookup(self, name: str) -> Any:
        env: Optional[Env] = self
        while env is not None:
            if name in env._bindings:
                return env._bindings[name]
            env = env._parent
        raise RemoteQueryError(f"Unbound variable `{name}`")


def _add(a: Any, b: Any) -> Any:
    if is_number(a) and is_number(b):
        return a + b
    if isinstance(a, str) and isinstance(b, str):
        return a + b
    if isinstance(a, list) and isinstance(b, list):
        return a + b
    if isinstance(a, datetime.datetime) and is_number(b):
        return a + datetime.timedelta(seconds=b)
    raise RemoteQueryError(f"Cannot add {type_name(a)} and {type_name(b)}")


def _sub(a: Any, b: Any) -> Any:
    if is_number(a) and is_number(b):
        return a - b
    if isinstance(a, datetime.datetime):
        if isinstance(b, datetime.datetime):
            return (a - b).total_seconds()
        if is_number(b):
            return a - datetime.timedelta(seconds=b)
    raise RemoteQueryError(f"Cannot subtract {type_name(b)} from {type_name(a)}")


def _numbers(fn: Callable[[Any, Any], Any]) -> Callable[[Any, Any], Any]:
    def op(a: Any, b: Any) -> Any:
        expect(a, "NUMBER")
        expect(b, "NUMBER")
        return fn(a, b)

    return op


def _integers(fn: Callable[..., Any]) -> Callable[..., Any]:
    def op(*values: Any) -> Any:
        for v in values:
            expect(v, "NUMBER")
            if v != int(v):
                raise RemoteQueryError(f"Bitwise operations need integers, got {v}")
        return fn(*(int(v) for v in values))

    return op


def _div(a: Any, b: Any) -> Any:
    if b == 0:
        raise RemoteQueryError("Cannot divide by zero")
    return a / b


def _mod(a: Any, b: Any) -> Any:
    if b == 0:
        raise RemoteQueryError("Cannot take a number modulo 0")
    return a % b


_BINARY_OPS: Dict[str, Callable[[Any, Any], Any]] = {
    Op.ADD: _add,
    Op.SUB: _sub,
    Op.MUL: _numbers(lambda a, b: a * b),
    Op.DIV: _numbers(_div),
    Op.MOD: _numbers(_mod),
    Op.BIT_AND: _integers(lambda a, b: a & b),
    Op.BIT_OR: _integers(lambda a, b: a | b),
    Op.BIT_XOR: _integers(lambda a, b: a ^ b),
    Op.BIT_SAL: _integers(lambda a, b: a << b),
    Op.LT: lambda a, b: sort_key(a) < sort_key(b),
    Op.LE: lambda a, b: sort_key(a) <= sort_key(b),
    Op.GT: lambda a, b: sort_key(a) > sort_key(b),
    Op.GE: lambda a, b: sort_key(a) >= sort_key(b),
}

_UNARY_OPS: Dict[str, Callable[[Any], Any]] = {
    Op.BIT_NOT: _integers(lambda a: ~a),
    Op.ROUND: lambda a: round_half_away(expect(a, "NUMBER")),
    Op.CEIL: lambda a: math.ceil(expect(a, "NUMBER")),
    Op.FLOOR: lambda a: math.floor(expect(a, "NUMBER")),
    Op.UPCASE: lambda s: expect(s, "STRING").upper(),
    Op.DOWNCASE: lambda s: expect(s, "STRING").lower(),
    Op.KEYS: lambda o: list(expect_object(o).keys()),
    Op.VALUES: lambda o: list(expect_object(o).values()),
}


def _time(value: Any) -> datetime.datetime:
    return expect(value, "PTYPE<TIME>")


def _time_of_day(t: datetime.datetime) -> float:
    return t.hour * 3600 + t.minute * 60 + t.second + t.microsecond / 1e6


_DATE_OPS: Dict[str, Callable[[datetime.datetime], Any]] = {
    Op.TIMEZONE: lambda t: format_offset(t.utcoffset() or datetime.timedelta(0)),
    Op.TIME_OF_DAY: _time_of_day,
    Op.YEAR: lambda t: t.year,
    Op.MONTH: lambda t: t.month,
    Op.DAY: lambda t: t.day,
    Op.DAY_OF_WEEK: lambda t: t.isoweekday(),
    Op.DAY_OF_YEAR: lambda t: t.timetuple().tm_yday,
    Op.HOURS: lambda t: t.hour,
    Op.MINUTES: lambda t: t.minute,
    Op.SECONDS: lambda t: t.second + t.microsecond / 1e6,
    Op.TO_EPOCH_TIME: lambda t: round(t.timestamp(), 3),
}


class _WriteTally:
    """Accumulates a write result in the server's response format."""

    def __init__(self, return_changes: bool = False):
        self.counts = {
            "inserted": 0,
            "replaced": 0,
            "unchanged": 0,
            "skipped": 0,
            "deleted": 0,
            "errors": 0,
        }
        self.first_error: Optional[str] = None
        self.generated_keys: List[Any] = []
        self.changes: Optional[List[Dict[str, Any]]] = [] if return_changes else None

    def count(self, what: str) -> None:
        self.counts[what] += 1

    def error(self, message: str) -> None:
        self.counts["errors"] += 1
        if self.first_error is None:
            self.first_error = message

    def change(self, old: Any, new: Any) -> None:
        if self.changes is not None:
            self.changes.append({"old_val": old, "new_val": new})

    def result(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.counts)
        if self.first_error is not None:
            out["first_error"] = self.first_error
        if self.generated_keys:
            out["generated_keys"] = self.generated_keys
        if self.changes is not None:
            out["changes"] = self.changes
        return out


class Evaluator:
    """
    Evaluates one serialized query against a MemoryServer.

    Args:
        server: The server holding the databases
        overrides: Maps id() of tree nodes to values used in their place. The
                   feed machinery uses this to feed single change events
                   through the rest of a query.
    """

    def __init__(self, server: Any, overrides: Optional[Dict[int, Any]] = None):
        self._server = server
        self._overrides = overrides or {}
        self._handlers: Dict[str, Callable[[Node, Env], Any]] = {
            Op.DATUM: self._datum,
            Op.MAKE_ARRAY: self._make_array,
            Op.MAKE_OBJECT: self._make_object,
            Op.VAR: self._var,
            Op.FUNC: self._func,
            Op.FUNCALL: self._funcall,
            Op.BIT_SAR: self._bit_sar,
            Op.EQ: self._eq,
            Op.NE: self._ne,
            Op.AND: self._and,
            Op.OR: self._or,
            Op.NOT: self._not,
            Op.DEFAULT: self._default,
            Op.BRACKET: self._bracket,
            Op.SPLIT: self._split,
            Op.MATCH: self._match,
            Op.DURING: self._during,
            Op.IN_TIMEZONE: self._in_timezone,
            Op.COUNT: self._count,
            Op.SUM: self._sum,
            Op.AVG: self._avg,
            Op.MIN: self._min,
            Op.MAX: self._max,
            Op.CONTAINS: self._contains,
            Op.SLICE: self._slice,
            Op.NTH: self._nth,
            Op.MAP: self._map,
            Op.FILTER: self._filter,
            Op.HAS_FIELDS: self._has_fields,
            Op.WITH_FIELDS: self._with_fields,
            Op.PLUCK: self._pluck,
            Op.WITHOUT: self._without,
            Op.IS_EMPTY: self._is_empty,
            Op.APPEND: self._append,
            Op.PREPEND: self._prepend,
            Op.UNION: self._union,
            Op.DISTINCT: self._distinct,
            Op.ORDER_BY: self._order_by,
            Op.MERGE: self._merge,
            Op.JOIN: self._join,
            Op.GROUP: self._group,
            Op.DB: self._db,
            Op.TABLE: self._table,
            Op.DB_CREATE: self._db_create,
            Op.DB_DROP: self._db_drop,
            Op.DB_LIST: self._db_list,
            Op.TABLE_CREATE: self._table_create,
            Op.TABLE_DROP: self._table_drop,
            Op.TABLE_LIST: self._table_list,
            Op.INDEX_CREATE: self._index_create,
            Op.INDEX_DROP: self._index_drop,
            Op.INDEX_LIST: self._index_list,
            Op.GET: self._get,
            Op.GET_ALL: self._get_all,
            Op.BETWEEN: self._between,
            Op.INSERT: self._insert,
            Op.UPDATE: self._update,
            Op.REPLACE: self._replace,
            Op.DELETE: self._delete,
            Op.CHANGES: self._changes,
        }

    def evaluate(self, node: Node, env: Optional[Env] = None) -> Any:
        if id(node) in self._overrides:
            return self._overrides[id(node)]
        env = env or Env()
        op = node.get("type")
        if op in _BINARY_OPS:
            a, b = (self.evaluate(arg, env) for arg in _args(node))
            return _BINARY_OPS[op](a, b)
        if op in _UNARY_OPS:
            return _UNARY_OPS[op](self.evaluate(_args(node)[0], env))
        if op in _DATE_OPS:
            return _DATE_OPS[op](_time(self.evaluate(_args(node)[0], env)))
        handler = self._handlers.get(op)
        if handler is None:
            raise RemoteQueryError(f"Unknown operation `{op}`", node)
        return handler(node, env)

    def apply(self, fn: Node, env: Env, *values: Any) -> Any:
        """Call a FUNC node; any other node is a constant function."""
        if fn.get("type") != Op.FUNC:
            return self.evaluate(fn, env)
        params = _opts(fn).get("params", [])
        return self.evaluate(_args(fn)[0], env.child(dict(zip(params, values))))

    def _test(self, fn: Node, env: Env, *values: Any) -> bool:
        try:
            return truthy(self.apply(fn, env, *values))
        except NonExistence:
            return False

    # Structure

    def _datum(self, node: Node, env: Env) -> Any:
        return decode_value(_opts(node).get("value"))

    def _make_array(self, node: Node, env: Env) -> List[Any]:
        return [materialize(self.evaluate(a, env)) for a in _args(node)]

    def _make_object(self, node: Node, env: Env) -> Dict[str, Any]:
        keys = _opts(node)["keys"]
        return {k: materialize(self.evaluate(a, env)) for k, a in zip(keys, _args(node))}

    def _var(self, node: Node, env: Env) -> Any:
        return env.lookup(_opts(node)["name"])

    def _func(self, node: Node, env: Env) -> Any:
        raise RemoteQueryError("A function cannot be used as a value", node)

    def _funcall(self, node: Node, env: Env) -> Any:
        fn, *operands = _args(node)
        return self.apply(fn, env, *(self.evaluate(a, env) for a in operands))

    # Scalars

    def _bit_sar(self, node: Node, env: Env) -> int:
        a, b = (self.evaluate(arg, env) for arg in _args(node))
        if _opts(node).get("preserve_sign"):
            return _integers(lambda x, y: x >> y)(a, b)
        return _integers(lambda x, y: (x % (1 << 64)) >> y)(a, b)

    def _eq(self, node: Node, env: Env) -> bool:
        values = [self.evaluate(a, env) for a in _args(node)]
        return all(equal(values[0], v) for v in values[1:])

    def _ne(self, node: Node, env: Env) -> bool:
        return not self._eq(node, env)

    def _and(self, node: Node, env: Env) -> Any:
        value: Any = True
        for arg in _args(node):
            value = self.evaluate(arg, env)
            if not truthy(value):
                return value
        return value

    def _or(self, node: Node, env: Env) -> Any:
        value: Any = False
        for arg in _args(node):
            value = self.evaluate(arg, env)
            if truthy(value):
                return value
        return value

    def _not(self, node: Node, env: Env) -> bool:
        return not truthy(self.evaluate(_args(node)[0], env))

    def _default(self, node: Node, env: Env) -> Any:
        target, fallback = _args(node)
        try:
            value = self.evaluate(target, env)
        except NonExistence:
            return self.evaluate(fallback, env)
        if isinstance(value, Seq):
            replacement = self.evaluate(fallback, env)
            return Seq(replacement if v is None else v for v in value)
        return self.evaluate(fallback, env) if value is None else value

    def _bracket(self, node: Node, env: Env) -> Any:
        target = self.evaluate(_args(node)[0], env)
        key = self.evaluate(_args(node)[1], env)
        if isinstance(key, str) and isinstance(target, (list, Seq)):
            return _lift(target, (v[key] for v in target if isinstance(v, dict) and key in v))
        if isinstance(target, (list, Seq)):
            return self._index(target, key)
        if target is None:
            if _opts(node).get("nullable"):
                return None
            raise NonExistence(f"Cannot get field `{key}` of a null value")
        if isinstance(target, dict):
            if key not in target:
                raise NonExistence(f"No attribute `{key}` in object")
            return target[key]
        raise RemoteQueryError(f"Cannot index a value of type {type_name(target)}")

    def _index(self, seq: Any, n: Any) -> Any:
        if not is_number(n) or n != int(n):
            raise RemoteQueryError(f"Expected an integer index but found {type_name(n)}")
        items = list(seq)
        try:
            return items[int(n)]
        except IndexError:
            raise NonExistence(f"Index out of bounds: {n}") from None

    def _split(self, node: Node, env: Env) -> List[str]:
        text, sep, max_splits = (self.evaluate(a, env) for a in _args(node))
        expect(text, "STRING")
        if sep == "":
            n = -1 if max_splits is None else int(max_splits)
            if n < 0 or n >= len(text):
                return list(text)
            return list(text[:n]) + [text[n:]]
        return text.split(sep, -1 if max_splits is None else int(max_splits))

    def _match(self, node: Node, env: Env) -> bool:
        text, regex = (self.evaluate(a, env) for a in _args(node))
        try:
            return re.search(expect(regex, "STRING"), expect(text, "STRING")) is not None
        except re.error as e:
            raise RemoteQueryError(f"Invalid regex `{regex}`: {e}") from e

    def _during(self, node: Node, env: Env) -> bool:
        t, left, right = (_time(self.evaluate(a, env)) for a in _args(node))
        return left <= t < right

    def _in_timezone(self, node: Node, env: Env) -> datetime.datetime:
        t = _time(self.evaluate(_args(node)[0], env))
        tz = expect(self.evaluate(_args(node)[1], env), "STRING")
        return t.astimezone(parse_offset(tz))

    # Sequences

    def _field_values(self, value: Any, field: Optional[str]) -> List[Any]:
        items = as_list(value)
        if field is None:
            return items
        return [v[field] for v in items if isinstance(v, dict) and field in v]

    def _count(self, node: Node, env: Env) -> int:
        value = self.evaluate(_args(node)[0], env)
        field = _opts(node).get("field")
        if field is not None:
            return len({sort_key(v) for v in self._field_values(value, field)})
        if isinstance(value, (str, dict)):
            return len(value)
        return sum(1 for _ in _sequence(value))

    def _numeric_values(self, node: Node, env: Env) -> List[Any]:
        value = self.evaluate(_args(node)[0], env)
        values = self._field_values(_sequence(value), _opts(node).get("field"))
        for v in values:
            expect(v, "NUMBER")
        return values

    def _sum(self, node: Node, env: Env) -> Any:
        return sum(self._numeric_values(node, env))

    def _avg(self, node: Node, env: Env) -> Any:
        values = self._numeric_values(node, env)
        if not values:
            raise RemoteQueryError("Cannot take the average of an empty sequence")
        return sum(values) / len(values)

    def _extreme(self, node: Node, env: Env, pick: Callable) -> Any:
        items = as_list(_sequence(self.evaluate(_args(node)[0], env)))
        field = _opts(node).get("field")
        if field is not None:
            items = [v for v in items if isinstance(v, dict) and field in v]
        if not items:
            raise RemoteQueryError("Cannot take the extreme of an empty sequence")
        if field is None:
            return pick(items, key=sort_key)
        return pick(items, key=lambda v: sort_key(v[field]))

    def _min(self, node: Node, env: Env) -> Any:
        return self._extreme(node, env, min)

    def _max(self, node: Node, env: Env) -> Any:
        return self._extreme(node, env, max)

    def _contains(self, node: Node, env: Env) -> bool:
        seq = as_list(_sequence(self.evaluate(_args(node)[0], env)))
        wanted = [self.evaluate(a, env) for a in _args(node)[1:]]
        keys = {sort_key(v) for v in seq}
        return all(sort_key(w) in keys for w in wanted)

    def _slice(self, node: Node, env: Env) -> Any:
        source = self.evaluate(_args(node)[0], env)
        start, end = (self.evaluate(a, env) for a in _args(node)[1:3])
        if isinstance(source, str):
            return source[start:end]
        items = as_list(_sequence(source))
        start = int(start or 0)
        if start < 0:
            start = max(len(items) + start, 0)
        if _opts(node).get("counted"):
            end = None if end is None else start + int(end)
        elif end is not None:
            end = int(end)
        if isinstance(source, Seq):
            return Seq(items[start:end], source.table)
        return items[start:end]

    def _nth(self, node: Node, env: Env) -> Any:
        seq = _sequence(self.evaluate(_args(node)[0], env))
        return self._index(seq, self.evaluate(_args(node)[1], env))

    def _map(self, node: Node, env: Env) -> Any:
        source = _sequence(self.evaluate(_args(node)[0], env))
        fn = _args(node)[1]
        return _lift(source, (self.apply(fn, env, v) for v in source))

    def _filter(self, node: Node, env: Env) -> Any:
        source = _sequence(self.evaluate(_args(node)[0], env))
        predicate = _args(node)[1]
        if predicate.get("type") == Op.FUNC:
            keep = (v for v in source if self._test(predicate, env, v))
        else:
            pattern = self.evaluate(predicate, env)
            if isinstance(pattern, dict):
                keep = (v for v in source if matches(v, pattern))
            else:
                keep = (v for v in source if truthy(pattern))
        if isinstance(source, Seq):
            return Seq(keep, source.table)
        return list(keep)

    def _selectors(self, node: Node, env: Env) -> List[Any]:
        return [self.evaluate(a, env) for a in _args(node)[1:]]

    def _has_fields(self, node: Node, env: Env) -> Any:
        source = self.evaluate(_args(node)[0], env)
        selectors = self._selectors(node, env)
        if isinstance(source, Seq):
            return Seq((v for v in source if has_fields(v, selectors)), source.table)
        if isinstance(source, list):
            return [v for v in source if has_fields(v, selectors)]
        return has_fields(expect_object(source), selectors)

    def _with_fields(self, node: Node, env: Env) -> Any:
        source = _sequence(self.evaluate(_args(node)[0], env))
        selectors = self._selectors(node, env)
        return _lift(
            source, (pluck(v, selectors) for v in source if has_fields(v, selectors))
        )

    def _pluck(self, node: Node, env: Env) -> Any:
        source = self.evaluate(_args(node)[0], env)
        selectors = self._selectors(node, env)
        if isinstance(source, (list, Seq)):
            return _lift(source, (pluck(v, selectors) for v in source))
        return pluck(source, selectors)

    def _without(self, node: Node, env: Env) -> Any:
        source = self.evaluate(_args(node)[0], env)
        selectors = self._selectors(node, env)
        if isinstance(source, (list, Seq)):
            return _lift(source, (without(v, selectors) for v in source))
        return without(source, selectors)

    def _is_empty(self, node: Node, env: Env) -> bool:
        for _ in _sequence(self.evaluate(_args(node)[0], env)):
            return False
        return True

    def _append(self, node: Node, env: Env) -> List[Any]:
        array, value = (self.evaluate(a, env) for a in _args(node))
        return expect(array, "ARRAY") + [materialize(value)]

    def _prepend(self, node: Node, env: Env) -> List[Any]:
        array, value = (self.evaluate(a, env) for a in _args(node))
        return [materialize(value)] + expect(array, "ARRAY")

    def _union(self, node: Node, env: Env) -> Any:
        parts = [_sequence(self.evaluate(a, env)) for a in _args(node)]
        if any(isinstance(p, Seq) for p in parts):
            return Seq(itertools.chain.from_iterable(parts))
        return list(itertools.chain.from_iterable(parts))

    def _distinct(self, node: Node, env: Env) -> Any:
        source = _sequence(self.evaluate(_args(node)[0], env))
        field = _opts(node).get("field")
        seen = set()
        out = []
        for value in self._field_values(source, field):
            key = sort_key(value)
            if key not in seen:
                seen.add(key)
                out.append(value)
        return Seq(out) if field is not None else out

    def _order_by(self, node: Node, env: Env) -> Any:
        source = _sequence(self.evaluate(_args(node)[0], env))
        options = _opts(node)
        field = options["field"]
        table = source.table if isinstance(source, Seq) else None
        use_index = (
            table is not None and not options.get("no_index") and field in table.indexes
        )

        def key(doc: Any) -> Any:
            expect_object(doc)
            if use_index:
                try:
                    return sort_key(table.index_value(doc, field))
                except NonExistence:
                    return sort_key(None)
            return sort_key(doc.get(field))

        items = sorted(source, key=key, reverse=options.get("direction") == "desc")
        if isinstance(source, Seq):
            return Seq(items, table)
        return items

    def _merge(self, node: Node, env: Env) -> Any:
        value = self.evaluate(_args(node)[0], env)
        for arg in _args(node)[1:]:
            value = merge(expect_object(value), materialize(self.apply(arg, env, value)))
        return value

    def _join(self, node: Node, env: Env) -> Seq:
        left_node, right_node, mapper, predicate = _args(node)
        kind = JoinType(_opts(node)["kind"])
        left = as_list(_sequence(self.evaluate(left_node, env)))
        right = as_list(_sequence(self.evaluate(right_node, env)))

        def match(lv: Any, rv: Any) -> bool:
            return self._test(predicate, env, lv, rv)

        out: List[Any] = []
        if kind == JoinType.Cross:
            out = [self.apply(mapper, env, lv, rv) for lv in left for rv in right]
            return Seq(out)

        if kind in (JoinType.Right, JoinType.RightExcl):
            for rv in right:
                hits = [lv for lv in left if match(lv, rv)]
                if kind == JoinType.Right:
                    out.extend(self.apply(mapper, env, lv, rv) for lv in hits)
                if not hits:
                    out.append(self.apply(mapper, env, None, rv))
            return Seq(out)

        matched_right = set()
        for lv in left:
            hits = [i for i, rv in enumerate(right) if match(lv, rv)]
            matched_right.update(hits)
            if kind in (JoinType.Inner, JoinType.Left, JoinType.FullOuter):
                out.extend(self.apply(mapper, env, lv, right[i]) for i in hits)
            if not hits and kind != JoinType.Inner:
                out.append(self.apply(mapper, env, lv, None))
        if kind in (JoinType.FullOuter, JoinType.FullExcl):
            out.extend(
                self.apply(mapper, env, None, rv)
                for i, rv in enumerate(right)
                if i not in matched_right
            )
        return Seq(out)

    def _group(self, node: Node, env: Env) -> Seq:
        source_node, mapper = _args(node)
        fields = _opts(node)["fields"]
        groups: Dict[Any, List[Any]] = {}
        keys: Dict[Any, Any] = {}
        for doc in _sequence(self.evaluate(source_node, env)):
            expect_object(doc)
            if len(fields) == 1:
                key = doc.get(fields[0])
            else:
                key = {f: doc.get(f) for f in fields}
            frozen = sort_key(key)
            keys.setdefault(frozen, key)
            groups.setdefault(frozen, []).append(doc)
        return Seq([self.apply(mapper, env, Seq(members), keys[k]) for k, members in groups.items()])

    # Catalogue

    def _db(self, node: Node, env: Env) -> MemoryDatabase:
        return self._server.database(_opts(node)["name"])

    def _database_arg(self, node: Node, env: Env) -> MemoryDatabase:
        db = self.evaluate(_args(node)[0], env)
        if not isinstance(db, MemoryDatabase):
            raise RemoteQueryError(f"Expected a database but found {type_name(db)}")
        return db

    def _table(self, node: Node, env: Env) -> Seq:
        table = self._database_arg(node, env).table(_opts(node)["name"])
        return Seq(table.snapshot(), table)

    def _db_create(self, node: Node, env: Env) -> Dict[str, Any]:
        name = _opts(node)["name"]
        self._server.create_database(name)
        return {
            "dbs_created": 1,
            "config_changes": [{"old_val": None, "new_val": {"name": name}}],
        }

    def _db_drop(self, node: Node, env: Env) -> Dict[str, Any]:
        name = _opts(node)["name"]
        db = self._server.drop_database(name)
        return {
            "dbs_dropped": 1,
            "tables_dropped": len(db.tables),
            "config_changes": [{"old_val": {"name": name}, "new_val": None}],
        }

    def _db_list(self, node: Node, env: Env) -> List[str]:
        return self._server.database_names()

    def _table_create(self, node: Node, env: Env) -> Dict[str, Any]:
        db = self._database_arg(node, env)
        name = _opts(node)["name"]
        primary_key = _opts(node).get("primary_key", "id")
        if name in db.tables:
            raise RemoteQueryError(f"Table `{db.name}.{name}` already exists")
        db.tables[name] = MemoryTable(db.name, name, primary_key)
        config = {"db": db.name, "name": name, "primary_key": primary_key}
        return {"tables_created": 1, "config_changes": [{"old_val": None, "new_val": config}]}

    def _table_drop(self, node: Node, env: Env) -> Dict[str, Any]:
        db = self._database_arg(node, env)
        table = db.table(_opts(node)["name"])
        del db.tables[table.name]
        config = {"db": db.name, "name": table.name, "primary_key": table.primary_key}
        return {"tables_dropped": 1, "config_changes": [{"old_val": config, "new_val": None}]}

    def _table_list(self, node: Node, env: Env) -> List[str]:
        return sorted(self._database_arg(node, env).tables)

    def _table_arg(self, node: Node, env: Env) -> MemoryTable:
        value = self.evaluate(node, env)
        table = value.table if isinstance(value, Seq) else None
        if table is None:
            raise RemoteQueryError("Expected a table selection")
        return table

    def _index_create(self, node: Node, env: Env) -> Dict[str, int]:
        table = self._table_arg(_args(node)[0], env)
        name = _opts(node)["name"]
        if name in table.indexes or name == table.primary_key:
            raise RemoteQueryError(f"Index `{name}` already exists on table `{table.qualified_name}`")
        table.indexes[name] = list(_opts(node).get("keys") or [name])
        return {"created": 1}

    def _index_drop(self, node: Node, env: Env) -> Dict[str, int]:
        table = self._table_arg(_args(node)[0], env)
        name = _opts(node)["name"]
        if name not in table.indexes:
            raise RemoteQueryError(f"Index `{name}` does not exist on table `{table.qualified_name}`")
        del table.indexes[name]
        return {"dropped": 1}

    def _index_list(self, node: Node, env: Env) -> List[str]:
        return sorted(self._table_arg(_args(node)[0], env).indexes)

    # Selections

    def _get(self, node: Node, env: Env) -> Any:
        table = self._table_arg(_args(node)[0], env)
        return table.get(self.evaluate(_args(node)[1], env))

    def _indexed(self, table: MemoryTable, doc: Dict[str, Any], index: str) -> Any:
        try:
            return table.index_value(doc, index)
        except NonExistence:
            return None

    def _get_all(self, node: Node, env: Env) -> Seq:
        table_node, *value_nodes = _args(node)
        table = self._table_arg(table_node, env)
        index = _opts(node)["index"]
        table.check_index(index)
        wanted = [self.evaluate(v, env) for v in value_nodes]
        docs = table.snapshot()
        out = []
        for value in wanted:
            key = sort_key(value)
            out.extend(d for d in docs if sort_key(self._indexed(table, d, index)) == key)
        return Seq(out, table)

    def _between(self, node: Node, env: Env) -> Seq:
        table_node, low_node, high_node = _args(node)
        table = self._table_arg(table_node, env)
        index = _opts(node)["index"]
        table.check_index(index)
        low, high = self.evaluate(low_node, env), self.evaluate(high_node, env)

        def inside(doc: Dict[str, Any]) -> bool:
            value = self._indexed(table, doc, index)
            if value is None:
                return False
            key = sort_key(value)
            return (low is None or sort_key(low) <= key) and (high is None or key < sort_key(high))

        return Seq([d for d in table.snapshot() if inside(d)], table)

    # Writes

    def _write_target(self, node: Node, env: Env):
        """Table and currently stored documents selected by a selection node."""
        root = node
        while root.get("type") != Op.TABLE:
            if not _args(root):
                raise RemoteQueryError("Writes need a selection of a table", node)
            root = _args(root)[0]
        table = self._table_arg(root, env)
        selected = self.evaluate(node, env)
        docs = list(selected) if isinstance(selected, (list, Seq)) else [selected]
        return table, docs

    def _insert(self, node: Node, env: Env) -> Dict[str, Any]:
        table = self._table_arg(_args(node)[0], env)
        docs = materialize(self.evaluate(_args(node)[1], env))
        options = _opts(node)
        conflict = options.get("conflict", "error")
        tally = _WriteTally(options.get("return_changes", False))
        pk = table.primary_key

        for doc in docs if isinstance(docs, list) else [docs]:
            if not isinstance(doc, dict):
                tally.error(f"Expected type OBJECT but found {type_name(doc)}")
                continue
            doc = dict(doc)
            if doc.get(pk) is None:
                doc[pk] = str(uuid.uuid4())
                tally.generated_keys.append(doc[pk])
            existing = table.get(doc[pk])
            if existing is None:
                table.put(doc)
                tally.count("inserted")
                tally.change(None, doc)
                continue
            if conflict == "error":
                tally.error(f"{DUPLICATE_KEY_PREFIX} `{pk}`: {doc[pk]!r}")
                continue
            new = doc if conflict == "replace" else merge(existing, doc)
            self._store(table, existing, new, tally)
        return tally.result()

    def _store(self, table: MemoryTable, old: Dict[str, Any], new: Any, tally: _WriteTally) -> None:
        if new is None:
            table.remove(table.key_of(old))
            tally.count("deleted")
            tally.change(old, None)
            return
        if not isinstance(new, dict):
            tally.error(f"Expected type OBJECT but found {type_name(new)}")
            return
        if not equal(table.key_of(new), table.key_of(old)):
            tally.error(f"Primary key `{table.primary_key}` cannot be changed")
            return
        if equal(new, old):
            tally.count("unchanged")
            return
        table.put(new)
        tally.count("replaced")
        tally.change(old, new)

    def _modify(self, node: Node, env: Env, build: Callable[[Dict[str, Any]], Any]) -> Dict[str, Any]:
        table, docs = self._write_target(_args(node)[0], env)
        tally = _WriteTally(_opts(node).get("return_changes", False))
        for doc in docs:
            current = table.get(table.key_of(doc)) if isinstance(doc, dict) else None
            if current is None:
                tally.count("skipped")
                continue
            try:
                new = build(current)
            except RemoteQueryError as e:
                tally.error(str(e))
                continue
            self._store(table, current, new, tally)
        return tally.result()

    def _update(self, node: Node, env: Env) -> Dict[str, Any]:
        body = _args(node)[1]

        def build(doc: Dict[str, Any]) -> Any:
            patch = materialize(self.apply(body, env, doc))
            if patch is None:
                return doc
            return merge(doc, expect_object(patch))

        return self._modify(node, env, build)

    def _replace(self, node: Node, env: Env) -> Dict[str, Any]:
        body = _args(node)[1]
        return self._modify(node, env, lambda doc: materialize(self.apply(body, env, doc)))

    def _delete(self, node: Node, env: Env) -> Dict[str, Any]:
        return self._modify(node, env, lambda doc: None)

    def _changes(self, node: Node, env: Env) -> Any:
        raise RemoteQueryError("Changefeeds can only be read through a cursor", node)
