"""
Query surfaces: the typed façades callers chain operations on.

    Query            anything runnable (catalogue and write results)
    Datum            a single value
    Stream           a finite ordered sequence
    Feed             a live, unbounded sequence of changes
    Selection        a stream bound to a table (update/replace/delete)
    SingleSelection  a datum bound to one document of a table
    Table            a selection over a whole table, plus index management
    Database         a named catalogue of tables

Every chaining call returns a new surface wrapping a new term; receivers are
never modified. Nothing is sent anywhere until a terminal call: ``await
q.run(conn)``, ``await q``, ``async for x in q`` or ``q.iterator()``.
"""

from typing import Any, Callable, Optional

from .config import get_settings
from .errors import TypeMismatch
from .expr import (
    Op,
    Term,
    TermHolder,
    compile_function,
    decode_value,
    fold,
    fold_with_shape,
    make_proxy,
)
from .grouping import AggregationMixin
from .joins import JoinMixin
from .net import Connection, Cursor, get_default_connection
from .results import DatabaseChange, IndexChange, TableChange, ValueChange, WriteResult
from .shapes import ANY, STRING, Kind, Shape, array_of, object_of

INSERT_CONFLICT_POLICIES = ("error", "replace", "update")
SORT_DIRECTIONS = ("asc", "desc")


def _is_callback(value: Any) -> bool:
    # Proxies are callable (indexing), so they never count as callbacks.
    return callable(value) and not isinstance(value, TermHolder)


def _selected_shape(shape: Shape, selectors: tuple) -> Shape:
    """Shape of an object after pluck/with_fields with the given selectors."""
    if shape.kind != Kind.OBJECT or not all(isinstance(s, str) for s in selectors):
        return object_of()
    return object_of({s: shape.field(s) for s in selectors})


def _change_shape(shape: Shape) -> Shape:
    return object_of({"old_val": shape.nullable_(), "new_val": shape.nullable_()})


class Query(TermHolder):
    """
    A finished or partially built query that can be run.

    Attributes:
        term (Term): Expression tree of the query
        shape (Shape): Shape of the result (element shape for sequences)
    """

    def __init__(
        self,
        term: Term,
        shape: Shape = ANY,
        decode: Optional[Callable[[Any], Any]] = None,
    ):
        self._term = term
        self._shape = shape
        self._decode = decode

    @property
    def shape(self) -> Shape:
        return self._shape

    @property
    def value_shape(self) -> Shape:
        return self._shape

    def _decode_result(self, raw: Any) -> Any:
        value = decode_value(raw)
        return self._decode(value) if self._decode else value

    async def run(self, connection: Optional[Connection] = None, **options: Any) -> Any:
        """
        Execute the query and wait for its settled result.

        Args:
            connection: Connection to use; defaults to get_default_connection()
            **options: Run options passed to the connection (e.g. batch_size)

        Returns:
            The decoded result: a value for a Datum, a list for a Stream,
            a WriteResult for writes, and so on
        """
        connection = connection or get_default_connection()
        raw = await connection.run(self._term, options)
        return self._decode_result(raw)

    def __await__(self):
        return self.run().__await__()

    def iterator(self, connection: Optional[Connection] = None, **options: Any) -> Cursor:
        """
        Lazy cursor over the results. Nothing is sent until the first pull.

        Example:
            >>> async with users.iterator(conn) as cursor:
            ...     async for user in cursor:
            ...         print(user["name"])
        """
        connection = connection or get_default_connection()
        return connection.cursor(self._term, options, decode=self._decode_result)

    def __aiter__(self) -> Cursor:
        return self.iterator()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._term!r}>"


class Datum(Query):
    """A single value."""

    def do(self, mapper: Callable[[Any], Any]) -> "Datum":
        """
        Apply a function to the value.

        Example:
            >>> users.get(1).do(lambda u: u["first"] + " " + u["last"])
        """
        fn, shape = compile_function(mapper, [self._shape])
        return Datum(Term(Op.FUNCALL, [fn, self._term]), shape)

    def __call__(self, key: Any) -> "Datum":
        """Index the value by object key or array position."""
        return Datum(Term(Op.BRACKET, [self._term, fold(key)]), self._shape.field(key))

    def __getitem__(self, key: Any) -> "Datum":
        return self(key)

    def default(self, value: Any) -> "Datum":
        """The value, or value when it is null or missing."""
        term, other = fold_with_shape(value)
        shape = self._shape.non_null() if other.kind == self._shape.kind else ANY
        return Datum(Term(Op.DEFAULT, [self._term, term]), shape)

    def _require_array(self, op_name: str) -> None:
        if self._shape.kind not in (Kind.ARRAY, Kind.ANY):
            raise TypeMismatch(f"{op_name}() needs an array, got {self._shape!r}")

    def append(self, value: Any) -> "Datum":
        self._require_array("append")
        return Datum(Term(Op.APPEND, [self._term, fold(value)]), self._shape.non_null())

    def prepend(self, value: Any) -> "Datum":
        self._require_array("prepend")
        return Datum(Term(Op.PREPEND, [self._term, fold(value)]), self._shape.non_null())

    def pluck(self, *fields: Any) -> "Datum":
        """Keep only the given fields of an object."""
        term = Term(Op.PLUCK, [self._term] + [fold(f) for f in fields])
        return Datum(term, _selected_shape(self._shape, fields))

    def value(self):
        """Value proxy of this datum, for the shape-specific operations."""
        return make_proxy(self._term, self._shape)


class _SequenceOps:
    """Operations shared by streams and feeds (element-wise)."""

    def _keep(self, term: Term) -> Any:
        """New surface of the same kind and element shape."""
        return type(self)(term, self._shape, self._decode)

    def _derive(self, term: Term, shape: Shape) -> Any:
        """New surface of the same family with a different element shape."""
        raise NotImplementedError

    def __call__(self, key: Any):
        """Index every element by key."""
        return self._derive(Term(Op.BRACKET, [self._term, fold(key)]), self._shape.field(key))

    def __getitem__(self, key: Any):
        return self(key)

    def default(self, value: Any):
        """Replace null elements with value."""
        return self._derive(Term(Op.DEFAULT, [self._term, fold(value)]), self._shape.non_null())

    def map(self, mapper: Callable[[Any], Any]):
        """
        Transform each element.

        The mapper may return any mixture of literals and proxies:

            >>> users.map(lambda u: {"name": u["name"], "adult": u["age"] >= 18})
        """
        fn, shape = compile_function(mapper, [self._shape])
        return self._derive(Term(Op.MAP, [self._term, fn]), shape)

    def with_fields(self, *fields: Any):
        """has_fields() followed by pluck()."""
        term = Term(Op.WITH_FIELDS, [self._term] + [fold(f) for f in fields])
        return self._derive(term, _selected_shape(self._shape, fields))

    def has_fields(self, *fields: Any):
        """Keep the elements that have all the given fields."""
        return self._keep(Term(Op.HAS_FIELDS, [self._term] + [fold(f) for f in fields]))

    def filter(self, predicate: Any):
        """
        Keep the elements matching a predicate.

        Args:
            predicate: Callback returning a boolean, or a dict that elements
                       must partially match

        Example:
            >>> users.filter(lambda u: u["age"] > 18)
            >>> users.filter({"role": "admin"})
        """
        if _is_callback(predicate):
            body, _ = compile_function(predicate, [self._shape])
        else:
            body = fold(predicate)
        return self._keep(Term(Op.FILTER, [self._term, body]))

    def pluck(self, *fields: Any):
        """Keep only the given fields of each element."""
        term = Term(Op.PLUCK, [self._term] + [fold(f) for f in fields])
        return self._derive(term, _selected_shape(self._shape, fields))

    def without(self, *fields: Any):
        """Remove the given fields from each element."""
        return self._derive(
            Term(Op.WITHOUT, [self._term] + [fold(f) for f in fields]), object_of()
        )


# Stream operations that make no sense on an unbounded feed.
FEED_FORBIDDEN = frozenset(
    {
        "order_by",
        "count",
        "sum",
        "avg",
        "min",
        "max",
        "slice",
        "group",
        "join",
        "distinct",
        "nth",
        "union",
        "changes",
    }
)


class Feed(_SequenceOps, Query):
    """
    Live sequence of change events.

    Feeds never end on their own, so ordering, aggregation, slicing, grouping
    and joins are not available. Iterate with ``async for`` and close the
    cursor (or leave its ``async with`` block) to end the subscription.
    """

    @property
    def value_shape(self) -> Shape:
        return array_of(self._shape)

    def _derive(self, term: Term, shape: Shape) -> "Feed":
        return Feed(term, shape)

    async def run(self, connection: Optional[Connection] = None, **options: Any) -> Cursor:
        """Open the subscription and return its cursor."""
        return await self.iterator(connection, **options).open()

    def __getattr__(self, name: str):
        if name in FEED_FORBIDDEN:
            raise TypeMismatch(f"'{name}' is not available on a feed")
        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")


class _ChangesMixin:
    def changes(
        self,
        squash: Any = False,
        changefeed_queue_size: Optional[int] = None,
        include_initial: bool = False,
    ) -> Feed:
        """
        Subscribe to changes of the documents behind this query.

        Args:
            squash: Coalesce pending changes per document (True, or a number of
                    seconds the server may wait to coalesce)
            changefeed_queue_size: Pending changes allowed before the feed fails
                                   with QueueOverflow (default from Settings)
            include_initial: Start with the current values (old_val absent)

        Returns:
            Feed of ValueChange events
        """
        if not isinstance(squash, (bool, int, float)) or squash < 0:
            raise ValueError(f"squash must be a boolean or a non-negative number, got {squash!r}")
        if changefeed_queue_size is None:
            changefeed_queue_size = get_settings().changefeed_queue_size
        if (
            not isinstance(changefeed_queue_size, int)
            or isinstance(changefeed_queue_size, bool)
            or changefeed_queue_size < 1
        ):
            raise ValueError(
                f"changefeed_queue_size must be a positive integer, got {changefeed_queue_size!r}"
            )
        term = Term(
            Op.CHANGES,
            [self._term],
            {
                "squash": squash,
                "changefeed_queue_size": changefeed_queue_size,
                "include_initial": bool(include_initial),
            },
        )
        return Feed(term, _change_shape(self._shape), ValueChange.from_dict)


class Stream(JoinMixin, AggregationMixin, _ChangesMixin, _SequenceOps, Query):
    """Finite ordered sequence of values."""

    @property
    def value_shape(self) -> Shape:
        return array_of(self._shape)

    def _keep(self, term: Term) -> "Stream":
        return Stream(term, self._shape, self._decode)

    def _derive(self, term: Term, shape: Shape) -> "Stream":
        return Stream(term, shape)

    def union(self, other: Any):
        """
        Concatenate with another stream, array or feed.

        A union with a feed is itself a feed: the stream's elements come
        first, then the feed's changes.
        """
        if isinstance(other, Feed):
            return Feed(Term(Op.UNION, [self._term, other.term]), ANY)
        if isinstance(other, Stream):
            shape = self._shape if other.shape == self._shape else ANY
            return Stream(Term(Op.UNION, [self._term, other.term]), shape)
        term, other_shape = fold_with_shape(other)
        shape = self._shape if other_shape.item() == self._shape else ANY
        return Stream(Term(Op.UNION, [self._term, term]), shape)

    def order_by(self, field: str, direction: str = "asc", no_index: bool = False):
        """
        Sort by a field.

        Values of different types sort as arrays < booleans < null < numbers
        < objects < strings.

        Args:
            field: Field to sort on
            direction: "asc" or "desc"
            no_index: Do not use a secondary index of the same name
        """
        if not isinstance(field, str):
            raise TypeError(f"order_by() field must be a string, got {type(field).__name__}")
        if direction not in SORT_DIRECTIONS:
            raise ValueError(f"Invalid sort direction '{direction}'. Must be 'asc' or 'desc'")
        return self._keep(
            Term(
                Op.ORDER_BY,
                [self._term],
                {"field": field, "direction": direction, "no_index": bool(no_index)},
            )
        )

    def slice(self, offset: Any, count: Any = None):
        """
        Elements from offset on, at most count of them.

        Note that this takes a count, unlike array slices which take an end
        position.
        """
        term = Term(Op.SLICE, [self._term, fold(offset), fold(count)], {"counted": True})
        return self._keep(term)

    def nth(self, n: Any) -> Datum:
        """The element at position n."""
        return Datum(Term(Op.NTH, [self._term, fold(n)]), self._shape)


class _WriteMixin:
    def _write_body(self, value: Any) -> Term:
        if _is_callback(value):
            fn, _ = compile_function(value, [self._shape.non_null()])
            return fn
        return fold(value)

    def update(self, value: Any, return_changes: bool = False) -> Query:
        """
        Merge value into the selected documents.

        Fields absent from value are left untouched.

        Args:
            value: Partial document, or a callback computing one from the document
            return_changes: Report a ValueChange per modified document
        """
        term = Term(
            Op.UPDATE,
            [self._term, self._write_body(value)],
            {"return_changes": bool(return_changes)},
        )
        return Query(term, decode=WriteResult.from_dict)

    def replace(self, value: Any, return_changes: bool = False) -> Query:
        """Replace the selected documents, keeping their primary keys."""
        term = Term(
            Op.REPLACE,
            [self._term, self._write_body(value)],
            {"return_changes": bool(return_changes)},
        )
        return Query(term, decode=WriteResult.from_dict)

    def delete(self, return_changes: bool = False) -> Query:
        """Delete the selected documents."""
        term = Term(Op.DELETE, [self._term], {"return_changes": bool(return_changes)})
        return Query(term, decode=WriteResult.from_dict)


class SingleSelection(_WriteMixin, _ChangesMixin, Datum):
    """One document of a table (null if it does not exist)."""


class Selection(_WriteMixin, Stream):
    """
    Stream still bound to its table.

    Only operations that keep the documents as they are (filter, has_fields,
    order_by, slice, nth, get_all, between) return a Selection; everything
    else degrades to a plain Stream or Datum.
    """

    def _keep(self, term: Term) -> "Selection":
        return Selection(term, self._shape, self._decode)

    def nth(self, n: Any) -> SingleSelection:
        return SingleSelection(Term(Op.NTH, [self._term, fold(n)]), self._shape)


class Table(Selection):
    """
    All documents of one table.

    Example:
        >>> users = Database("app").table("users", schema={"id": int, "name": str})
        >>> await users.insert({"id": 1, "name": "Ada"}).run(conn)
        >>> await users.get(1).run(conn)
        {'id': 1, 'name': 'Ada'}
    """

    def __init__(self, term: Term, shape: Shape = ANY, name: Optional[str] = None):
        super().__init__(term, shape)
        self._name = name or term.options.get("name")

    @property
    def name(self) -> str:
        return self._name

    def index_create(self, name: str, *keys: str) -> Query:
        """
        Create a secondary index.

        Args:
            name: Index name
            *keys: Fields making up the index; defaults to the field called name
        """
        keys = keys or (name,)
        for key in keys:
            if not isinstance(key, str):
                raise TypeError(f"Index keys must be strings, got {key!r}")
        term = Term(Op.INDEX_CREATE, [self._term], {"name": name, "keys": list(keys)})
        return Query(term, decode=IndexChange.from_dict)

    def index_drop(self, name: str) -> Query:
        return Query(Term(Op.INDEX_DROP, [self._term], {"name": name}), decode=IndexChange.from_dict)

    def index_list(self) -> Query:
        return Query(Term(Op.INDEX_LIST, [self._term]), array_of(STRING))

    def insert(
        self,
        docs: Any,
        conflict: str = "error",
        return_changes: bool = False,
    ) -> Query:
        """
        Insert one document or a list of documents.

        Documents without a primary key get a generated one, reported in
        generated_keys. Per-document failures (such as a duplicate key under
        conflict="error") are reported in the WriteResult, not raised.

        Args:
            docs: Document or list of documents
            conflict: On an existing primary key: "error", "replace" or "update"
            return_changes: Report a ValueChange per written document
        """
        if conflict not in INSERT_CONFLICT_POLICIES:
            raise ValueError(
                f"Invalid conflict policy '{conflict}'. Must be one of: "
                f"{', '.join(INSERT_CONFLICT_POLICIES)}"
            )
        term = Term(
            Op.INSERT,
            [self._term, fold(docs)],
            {"conflict": conflict, "return_changes": bool(return_changes)},
        )
        return Query(term, decode=WriteResult.from_dict)

    def get(self, key: Any) -> SingleSelection:
        """Document with the given primary key, or null."""
        return SingleSelection(Term(Op.GET, [self._term, fold(key)]), self._shape.nullable_())

    def get_all(self, index: str, *values: Any) -> Selection:
        """
        Documents whose index value equals any of values.

        Args:
            index: Primary key name or secondary index name
            *values: Index values (lists for compound indexes)
        """
        term = Term(Op.GET_ALL, [self._term] + [fold(v) for v in values], {"index": index})
        return Selection(term, self._shape)

    def between(self, index: str, low: Any, high: Any) -> Selection:
        """Documents with low <= index value < high."""
        term = Term(Op.BETWEEN, [self._term, fold(low), fold(high)], {"index": index})
        return Selection(term, self._shape)

    def __repr__(self) -> str:
        return f"<Table {self._name!r}>"


class Database:
    """
    Named handle on a database. Holds no server state.

    Example:
        >>> db = Database("app")
        >>> await db.table_create("users").run(conn)
        >>> users = db.table("users")
    """

    def __init__(self, name: str):
        if not isinstance(name, str) or not name:
            raise ValueError("Database name must be a non-empty string")
        self._name = name
        self._term = Term(Op.DB, (), {"name": name})

    @property
    def name(self) -> str:
        return self._name

    @property
    def term(self) -> Term:
        return self._term

    def table_create(self, name: str, primary_key: Optional[str] = None) -> Query:
        """
        Create a table.

        Args:
            name: Table name
            primary_key: Primary key field (default Settings.default_primary_key)
        """
        primary_key = primary_key or get_settings().default_primary_key
        term = Term(Op.TABLE_CREATE, [self._term], {"name": name, "primary_key": primary_key})
        return Query(term, decode=TableChange.from_dict)

    def table_drop(self, name: str) -> Query:
        return Query(Term(Op.TABLE_DROP, [self._term], {"name": name}), decode=TableChange.from_dict)

    def table_list(self) -> Query:
        return Query(Term(Op.TABLE_LIST, [self._term]), array_of(STRING))

    def table(self, name: str, schema: Any = None) -> Table:
        """
        Handle on a table.

        Args:
            name: Table name
            schema: Optional document shape, e.g. {"id": int, "tags": [str]}.
                    Undeclared documents expose every proxy capability.
        """
        if not isinstance(name, str) or not name:
            raise ValueError("Table name must be a non-empty string")
        shape = Shape.of(schema) if schema is not None else ANY
        return Table(Term(Op.TABLE, [self._term], {"name": name}), shape, name)

    def __repr__(self) -> str:
        return f"<Database {self._name!r}>"


def create_database(name: str) -> Query:
    """Query creating a database."""
    return Query(Term(Op.DB_CREATE, (), {"name": name}), decode=DatabaseChange.from_dict)


def delete_database(name: str) -> Query:
    """Query dropping a database and all its tables."""
    return Query(Term(Op.DB_DROP, (), {"name": name}), decode=DatabaseChange.from_dict)


def list_databases() -> Query:
    """Query listing database names."""
    return Query(Term(Op.DB_LIST), array_of(STRING))
