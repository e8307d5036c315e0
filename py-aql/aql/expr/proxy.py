"""
Value proxies: symbolic placeholders that record operations as terms.

A proxy wraps one term and one declared shape. The shape selects, once, which
proxy class is built, and each class exposes exactly the capabilities valid
for its shape:

    BooleanProxy  and_/or_/not_ (& | ~), eq/ne
    NumberProxy   arithmetic, bitwise, rounding, comparisons, eq/ne
    DateProxy     add/sub seconds, date difference, during, timezone and
                  field extraction, comparisons, eq/ne
    StringProxy   split, upcase/downcase, count, concatenation, match,
                  comparisons, eq/ne
    ArrayProxy    indexing, includes, slice, map, filter, has_fields,
                  is_empty, count; sum/avg/min/max only for numeric elements
    ObjectProxy   indexing, merge, keys, values, has_fields
    AnyProxy      every capability (undeclared shape)

Asking a proxy for a capability its shape lacks raises TypeMismatch while the
query is being built.
"""

import datetime
from typing import Any, Callable, Optional, Union

from ..errors import TypeMismatch
from ..shapes import ANY, BOOLEAN, DATE, NUMBER, STRING, Kind, Shape, array_of
from .base import Term, TermHolder
from .folding import fold, fold_all, fold_with_shape
from .types import Op


class ValueProxy(TermHolder):
    """
    Base class of all proxies.

    Attributes:
        term (Term): Expression node this proxy stands for
        shape (Shape): Declared shape of the value
    """

    __slots__ = ("_term", "_shape")

    def __init__(self, term: Term, shape: Shape = ANY):
        self._term = term
        self._shape = shape

    @property
    def shape(self) -> Shape:
        return self._shape

    @property
    def value_shape(self) -> Shape:
        return self._shape

    @property
    def nullable(self) -> bool:
        """True when the value may be null, e.g. the unmatched side of a join."""
        return self._shape.nullable

    def _chain(
        self,
        op: str,
        operands: tuple = (),
        shape: Shape = ANY,
        options: Optional[dict] = None,
    ) -> "ValueProxy":
        """Build a new proxy for op applied to this proxy and the operands."""
        args = [self._term] + fold_all(list(operands))
        return make_proxy(Term(op, args, options), shape)

    def _rchain(self, op: str, other: Any, shape: Shape) -> "ValueProxy":
        """Reflected form: other <op> self."""
        return make_proxy(Term(op, [fold(other), self._term]), shape)

    def default(self, value: Any) -> "ValueProxy":
        """
        Return value if this proxy evaluates to null.

        Args:
            value: Fallback value or proxy

        Returns:
            Non-null proxy
        """
        term, other = fold_with_shape(value)
        same = other.kind in (self._shape.kind, Kind.ANY) or not self._shape.is_known
        return self._chain(Op.DEFAULT, (term,), self._shape.non_null() if same else ANY)

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(
                f"'{type(self).__name__}' object has no attribute '{name}'"
            )
        if name in ALL_CAPABILITIES:
            raise TypeMismatch(
                f"'{name}' is not available on values of shape {self._shape!r}"
            )
        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def __bool__(self) -> bool:
        raise TypeMismatch(
            "A proxy has no truth value while the query is being built. "
            "Use & | ~ (or and_/or_/not_) instead of and/or/not/if."
        )

    def __iter__(self):
        raise TypeMismatch("Proxies cannot be iterated; use map() or filter()")

    def __contains__(self, item: Any) -> bool:
        raise TypeMismatch("Use includes() to test membership on a proxy")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._shape!r} {self._term!r}>"


class _Equality:
    def eq(self, other: Any) -> "BooleanProxy":
        """Equality operator: A == B"""
        return self._chain(Op.EQ, (other,), BOOLEAN)

    def ne(self, other: Any) -> "BooleanProxy":
        """Inequality operator: A != B"""
        return self._chain(Op.NE, (other,), BOOLEAN)

    # Intentionally returning proxies instead of bool
    def __eq__(self, other: Any):  # type: ignore
        return self.eq(other)

    def __ne__(self, other: Any):  # type: ignore
        return self.ne(other)

    __hash__ = None  # type: ignore


class _Ordering:
    def gt(self, other: Any) -> "BooleanProxy":
        return self._chain(Op.GT, (other,), BOOLEAN)

    def ge(self, other: Any) -> "BooleanProxy":
        return self._chain(Op.GE, (other,), BOOLEAN)

    def lt(self, other: Any) -> "BooleanProxy":
        return self._chain(Op.LT, (other,), BOOLEAN)

    def le(self, other: Any) -> "BooleanProxy":
        return self._chain(Op.LE, (other,), BOOLEAN)

    def __gt__(self, other: Any):
        return self.gt(other)

    def __ge__(self, other: Any):
        return self.ge(other)

    def __lt__(self, other: Any):
        return self.lt(other)

    def __le__(self, other: Any):
        return self.le(other)


class _Logic:
    def and_(self, *others: Any) -> "BooleanProxy":
        """Logical AND of this proxy and all others."""
        return self._chain(Op.AND, others, BOOLEAN)

    def or_(self, *others: Any) -> "BooleanProxy":
        """Logical OR of this proxy and all others."""
        return self._chain(Op.OR, others, BOOLEAN)

    def not_(self) -> "BooleanProxy":
        return self._chain(Op.NOT, (), BOOLEAN)

    def __and__(self, other: Any):
        return self.and_(other)

    def __rand__(self, other: Any):
        return self._rchain(Op.AND, other, BOOLEAN)

    def __or__(self, other: Any):
        return self.or_(other)

    def __ror__(self, other: Any):
        return self._rchain(Op.OR, other, BOOLEAN)

    def __invert__(self):
        return self.not_()


class _Arithmetic:
    def add(self, other: Any) -> "NumberProxy":
        return self._chain(Op.ADD, (other,), NUMBER)

    def sub(self, other: Any) -> "NumberProxy":
        return self._chain(Op.SUB, (other,), NUMBER)

    def mul(self, other: Any) -> "NumberProxy":
        return self._chain(Op.MUL, (other,), NUMBER)

    def div(self, other: Any) -> "NumberProxy":
        return self._chain(Op.DIV, (other,), NUMBER)

    def mod(self, other: Any) -> "NumberProxy":
        return self._chain(Op.MOD, (other,), NUMBER)

    def bit_and(self, other: Any) -> "NumberProxy":
        return self._chain(Op.BIT_AND, (other,), NUMBER)

    def bit_or(self, other: Any) -> "NumberProxy":
        return self._chain(Op.BIT_OR, (other,), NUMBER)

    def bit_xor(self, other: Any) -> "NumberProxy":
        return self._chain(Op.BIT_XOR, (other,), NUMBER)

    def bit_not(self) -> "NumberProxy":
        return self._chain(Op.BIT_NOT, (), NUMBER)

    def bit_lshift(self, other: Any) -> "NumberProxy":
        return self._chain(Op.BIT_SAL, (other,), NUMBER)

    def bit_rshift(self, other: Any, preserve_sign: bool = False) -> "NumberProxy":
        """
        Right shift.

        Args:
            other: Shift amount
            preserve_sign: Keep the sign bit (arithmetic shift)
        """
        return self._chain(
            Op.BIT_SAR, (other,), NUMBER, {"preserve_sign": bool(preserve_sign)}
        )

    def round(self) -> "NumberProxy":
        return self._chain(Op.ROUND, (), NUMBER)

    def ceil(self) -> "NumberProxy":
        return self._chain(Op.CEIL, (), NUMBER)

    def floor(self) -> "NumberProxy":
        return self._chain(Op.FLOOR, (), NUMBER)

    def __add__(self, other: Any):
        return self.add(other)

    def __radd__(self, other: Any):
        return self._rchain(Op.ADD, other, NUMBER)

    def __sub__(self, other: Any):
        return self.sub(other)

    def __rsub__(self, other: Any):
        return self._rchain(Op.SUB, other, NUMBER)

    def __mul__(self, other: Any):
        return self.mul(other)

    def __rmul__(self, other: Any):
        return self._rchain(Op.MUL, other, NUMBER)

    def __truediv__(self, other: Any):
        return self.div(other)

    def __rtruediv__(self, other: Any):
        return self._rchain(Op.DIV, other, NUMBER)

    def __mod__(self, other: Any):
        return self.mod(other)

    def __rmod__(self, other: Any):
        return self._rchain(Op.MOD, other, NUMBER)

    def __and__(self, other: Any):
        return self.bit_and(other)

    def __or__(self, other: Any):
        return self.bit_or(other)

    def __xor__(self, other: Any):
        return self.bit_xor(other)

    def __invert__(self):
        return self.bit_not()

    def __lshift__(self, other: Any):
        return self.bit_lshift(other)

    def __rshift__(self, other: Any):
        return self.bit_rshift(other)


def _is_date_operand(value: Any) -> bool:
    if isinstance(value, (datetime.datetime, datetime.date)):
        return True
    return isinstance(value, TermHolder) and value.value_shape.kind == Kind.DATE


class _DateOps:
    def add(self, seconds: Any) -> "DateProxy":
        """Add a number of seconds to the date."""
        return self._chain(Op.ADD, (seconds,), DATE)

    def sub(self, other: Any) -> Union["DateProxy", "NumberProxy"]:
        """
        Subtract seconds (giving a date) or another date (giving seconds).
        """
        shape = NUMBER if _is_date_operand(other) else DATE
        return self._chain(Op.SUB, (other,), shape)

    def __add__(self, other: Any):
        return self.add(other)

    def __sub__(self, other: Any):
        return self.sub(other)

    def during(self, left: Any, right: Any) -> "BooleanProxy":
        """True if left <= date < right."""
        return self._chain(Op.DURING, (left, right), BOOLEAN)

    def in_timezone(self, timezone: str) -> "DateProxy":
        """Same instant expressed in another UTC offset ("+02:00")."""
        return self._chain(Op.IN_TIMEZONE, (timezone,), DATE)

    def timezone(self) -> "StringProxy":
        return self._chain(Op.TIMEZONE, (), STRING)

    def time_of_day(self) -> "NumberProxy":
        """Seconds since the start of the day."""
        return self._chain(Op.TIME_OF_DAY, (), NUMBER)

    def year(self) -> "NumberProxy":
        return self._chain(Op.YEAR, (), NUMBER)

    def month(self) -> "NumberProxy":
        return self._chain(Op.MONTH, (), NUMBER)

    def day(self) -> "NumberProxy":
        return self._chain(Op.DAY, (), NUMBER)

    def day_of_week(self) -> "NumberProxy":
        """ISO day of week, Monday is 1."""
        return self._chain(Op.DAY_OF_WEEK, (), NUMBER)

    def day_of_year(self) -> "NumberProxy":
        return self._chain(Op.DAY_OF_YEAR, (), NUMBER)

    def hours(self) -> "NumberProxy":
        return self._chain(Op.HOURS, (), NUMBER)

    def minutes(self) -> "NumberProxy":
        return self._chain(Op.MINUTES, (), NUMBER)

    def seconds(self) -> "NumberProxy":
        return self._chain(Op.SECONDS, (), NUMBER)

    def to_epoch_time(self) -> "NumberProxy":
        """Seconds since the UNIX epoch, millisecond precision."""
        return self._chain(Op.TO_EPOCH_TIME, (), NUMBER)


class _StringOps:
    def split(self, separator: Any = None, max_splits: Any = None) -> "ArrayProxy":
        """
        Split the string.

        Args:
            separator: Separator string; None splits on whitespace
            max_splits: Maximum number of splits
        """
        return self._chain(
            Op.SPLIT, (separator, max_splits), array_of(STRING)
        )

    def upcase(self) -> "StringProxy":
        return self._chain(Op.UPCASE, (), STRING)

    def downcase(self) -> "StringProxy":
        return self._chain(Op.DOWNCASE, (), STRING)

    def count(self) -> "NumberProxy":
        """Number of Unicode codepoints."""
        return self._chain(Op.COUNT, (), NUMBER)

    def add(self, other: Any) -> "StringProxy":
        """Concatenate with another string."""
        return self._chain(Op.ADD, (other,), STRING)

    def __add__(self, other: Any):
        return self.add(other)

    def __radd__(self, other: Any):
        return self._rchain(Op.ADD, other, STRING)

    def match(self, regex: Any) -> "BooleanProxy":
        """True if the string matches the regular expression."""
        return self._chain(Op.MATCH, (regex,), BOOLEAN)


class _Indexing:
    def _index_shape(self, key: Any) -> Shape:
        if isinstance(key, TermHolder):
            if self._shape.kind == Kind.ARRAY:
                return self._shape.item()
            element = self._shape.element or ANY
            return element.nullable_() if self._shape.nullable else element
        return self._shape.field(key)

    def __call__(self, key: Any) -> "ValueProxy":
        """
        Index by array position or object key.

        On a nullable value the lookup yields null when the value itself is
        null, instead of failing.
        """
        options = {"nullable": True} if self._shape.nullable else None
        return self._chain(Op.BRACKET, (key,), self._index_shape(key), options)

    def __getitem__(self, key: Any) -> "ValueProxy":
        if isinstance(key, slice):
            if key.step is not None:
                raise TypeMismatch("Slices with a step are not supported")
            return self.slice(key.start or 0, key.stop)
        return self(key)


class _ArrayOps(_Indexing):
    def includes(self, value: Any) -> "BooleanProxy":
        return self._chain(Op.CONTAINS, (value,), BOOLEAN)

    def slice(self, start: Any, end: Any = None) -> "ArrayProxy":
        """Sub-array from start (inclusive) to end (exclusive)."""
        return self._chain(Op.SLICE, (start, end), self._shape.non_null())

    def map(self, mapper: Callable[[Any], Any]) -> "ArrayProxy":
        from .functions import compile_function

        fn, shape = compile_function(mapper, [self._shape.item()])
        return make_proxy(Term(Op.MAP, [self._term, fn]), array_of(shape))

    def filter(self, predicate: Any) -> "ArrayProxy":
        from .functions import compile_function

        if callable(predicate) and not isinstance(predicate, TermHolder):
            fn, _ = compile_function(predicate, [self._shape.item()])
        else:
            fn = fold(predicate)
        return make_proxy(Term(Op.FILTER, [self._term, fn]), self._shape.non_null())

    def has_fields(self, *fields: Any) -> "ArrayProxy":
        """Keep the elements that have all the given fields."""
        return self._chain(Op.HAS_FIELDS, fields, self._shape.non_null())

    def is_empty(self) -> "BooleanProxy":
        return self._chain(Op.IS_EMPTY, (), BOOLEAN)

    def count(self) -> "NumberProxy":
        return self._chain(Op.COUNT, (), NUMBER)


class _NumericAggregates:
    def sum(self) -> "NumberProxy":
        return self._chain(Op.SUM, (), NUMBER)

    def avg(self) -> "NumberProxy":
        return self._chain(Op.AVG, (), NUMBER)

    def min(self) -> "NumberProxy":
        return self._chain(Op.MIN, (), NUMBER)

    def max(self) -> "NumberProxy":
        return self._chain(Op.MAX, (), NUMBER)


class _ObjectOps(_Indexing):
    def merge(self, value: Any) -> "ObjectProxy":
        """{**A, **B}"""
        term, other = fold_with_shape(value)
        fields = dict(self._shape.fields or {})
        fields.update(other.fields or {})
        return self._chain(Op.MERGE, (term,), Shape(Kind.OBJECT, fields=fields))

    def keys(self) -> "ArrayProxy":
        return self._chain(Op.KEYS, (), array_of(STRING))

    def values(self) -> "ArrayProxy":
        return self._chain(Op.VALUES, (), array_of(self._shape.element))

    def has_fields(self, *fields: Any) -> "BooleanProxy":
        """True if the object has all the given fields."""
        return self._chain(Op.HAS_FIELDS, fields, BOOLEAN)


class BooleanProxy(_Logic, _Equality, ValueProxy):
    __slots__ = ()


class NumberProxy(_Arithmetic, _Ordering, _Equality, ValueProxy):
    __slots__ = ()


class DateProxy(_DateOps, _Ordering, _Equality, ValueProxy):
    __slots__ = ()


class StringProxy(_StringOps, _Ordering, _Equality, ValueProxy):
    __slots__ = ()


class ArrayProxy(_ArrayOps, ValueProxy):
    __slots__ = ()


class NumericArrayProxy(_NumericAggregates, ArrayProxy):
    __slots__ = ()


class ObjectProxy(_ObjectOps, ValueProxy):
    __slots__ = ()


class AnyProxy(
    _NumericAggregates,
    _ArrayOps,
    _ObjectOps,
    _DateOps,
    _StringOps,
    _Arithmetic,
    _Logic,
    _Ordering,
    _Equality,
    ValueProxy,
):
    """
    Proxy of undeclared shape. Exposes every capability; results whose shape
    depends on the runtime type are themselves undeclared.

    ``&``, ``|`` and ``~`` are logical here; use bit_and() and friends for
    bitwise operations.
    """

    __slots__ = ()

    def add(self, other: Any) -> "AnyProxy":
        return self._chain(Op.ADD, (other,), ANY)

    def sub(self, other: Any) -> "AnyProxy":
        return self._chain(Op.SUB, (other,), ANY)

    def __radd__(self, other: Any):
        return self._rchain(Op.ADD, other, ANY)

    def count(self) -> "NumberProxy":
        return self._chain(Op.COUNT, (), NUMBER)

    def has_fields(self, *fields: Any) -> "AnyProxy":
        return self._chain(Op.HAS_FIELDS, fields, ANY)

    def slice(self, start: Any, end: Any = None) -> "AnyProxy":
        return self._chain(Op.SLICE, (start, end), ANY)

    def __and__(self, other: Any):
        return self.and_(other)

    def __or__(self, other: Any):
        return self.or_(other)

    def __invert__(self):
        return self.not_()


def _capabilities(*mixins: type) -> frozenset:
    names = set()
    for mixin in mixins:
        for klass in mixin.__mro__:
            if klass is object:
                continue
            names.update(n for n in vars(klass) if not n.startswith("_"))
    return frozenset(names)


ALL_CAPABILITIES = _capabilities(
    _Equality,
    _Ordering,
    _Logic,
    _Arithmetic,
    _DateOps,
    _StringOps,
    _ArrayOps,
    _NumericAggregates,
    _ObjectOps,
)


def make_proxy(term: Term, shape: Shape = ANY) -> ValueProxy:
    """Build the proxy class matching a shape."""
    kind = shape.kind
    if kind == Kind.BOOLEAN:
        return BooleanProxy(term, shape)
    if kind == Kind.NUMBER:
        return NumberProxy(term, shape)
    if kind == Kind.DATE:
        return DateProxy(term, shape)
    if kind == Kind.STRING:
        return StringProxy(term, shape)
    if kind == Kind.ARRAY:
        if shape.item().is_numeric:
            return NumericArrayProxy(term, shape)
        return ArrayProxy(term, shape)
    if kind == Kind.OBJECT:
        return ObjectProxy(term, shape)
    return AnyProxy(term, shape)
