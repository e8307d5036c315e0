"""Value semantics of the reference server: type names, ordering, equality, field selectors."""

import datetime
import math
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from ..errors import RemoteQueryError


class NonExistence(RemoteQueryError):
    """A missing field or out-of-range index. default() and filter() absorb it."""

    pass


class Seq:
    """
    A stream inside the evaluator, as opposed to an array (a Python list).

    Attributes:
        table: Table the elements still come from unchanged, if any
    """

    __slots__ = ("_source", "table")

    def __init__(self, source: Iterable[Any], table: Any = None):
        self._source = source
        self.table = table

    def __iter__(self) -> Iterator[Any]:
        return iter(self._source)

    def __repr__(self) -> str:
        return f"Seq({self._source!r})"


# Cross-type sort order: arrays < booleans < null < numbers < objects < times < strings
_RANK_ARRAY = 0
_RANK_BOOL = 1
_RANK_NULL = 2
_RANK_NUMBER = 3
_RANK_OBJECT = 4
_RANK_TIME = 5
_RANK_STRING = 6


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def type_name(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "BOOL"
    if is_number(value):
        return "NUMBER"
    if isinstance(value, str):
        return "STRING"
    if isinstance(value, datetime.datetime):
        return "PTYPE<TIME>"
    if isinstance(value, dict):
        return "OBJECT"
    if isinstance(value, list):
        return "ARRAY"
    if isinstance(value, Seq):
        return "SEQUENCE"
    return type(value).__name__.upper()


def sort_key(value: Any) -> Tuple:
    """Total order over values; equal keys mean equal values."""
    if isinstance(value, Seq):
        value = list(value)
    if isinstance(value, list):
        return (_RANK_ARRAY, tuple(sort_key(v) for v in value))
    if isinstance(value, bool):
        return (_RANK_BOOL, value)
    if value is None:
        return (_RANK_NULL,)
    if is_number(value):
        return (_RANK_NUMBER, value)
    if isinstance(value, dict):
        return (_RANK_OBJECT, tuple(sorted((k, sort_key(v)) for k, v in value.items())))
    if isinstance(value, datetime.datetime):
        return (_RANK_TIME, value.timestamp())
    if isinstance(value, str):
        return (_RANK_STRING, value)
    raise RemoteQueryError(f"Cannot compare values of type {type_name(value)}")


def equal(a: Any, b: Any) -> bool:
    return sort_key(a) == sort_key(b)


def truthy(value: Any) -> bool:
    """Only false and null are falsy."""
    return value is not None and value is not False


def expect(value: Any, *names: str) -> Any:
    if type_name(value) not in names:
        raise RemoteQueryError(
            f"Expected type {' or '.join(names)} but found {type_name(value)}"
        )
    return value


def expect_object(value: Any) -> Dict[str, Any]:
    if value is None:
        raise NonExistence("Cannot perform this operation on a null value")
    return expect(value, "OBJECT")


def merge(base: Any, patch: Any) -> Any:
    """Deep merge: nested objects merge, everything else is replaced."""
    if not isinstance(base, dict) or not isinstance(patch, dict):
        return patch
    out = dict(base)
    for key, value in patch.items():
        out[key] = merge(out.get(key), value) if key in out else value
    return out


def _selector_items(selectors: Iterable[Any]) -> Iterator[Tuple[str, Any]]:
    """Flatten selectors into (field, nested selector or True) pairs."""
    for sel in selectors:
        if isinstance(sel, str):
            yield sel, True
        elif isinstance(sel, list):
            yield from _selector_items(sel)
        elif isinstance(sel, dict):
            for key, nested in sel.items():
                yield key, nested
        else:
            raise RemoteQueryError(f"Invalid field selector: {sel!r}")


def has_fields(doc: Any, selectors: Iterable[Any]) -> bool:
    """True if doc has every selected field, with a non-null value."""
    if not isinstance(doc, dict):
        return False
    for key, nested in _selector_items(selectors):
        if doc.get(key) is None:
            return False
        if nested is not True and not has_fields(doc[key], [nested]):
            return False
    return True


def pluck(doc: Any, selectors: Iterable[Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, nested in _selector_items(selectors):
        if key not in expect_object(doc):
            continue
        value = doc[key]
        if nested is True:
            out[key] = value
        elif isinstance(value, dict):
            out[key] = pluck(value, [nested])
        elif isinstance(value, list):
            out[key] = [pluck(v, [nested]) for v in value if isinstance(v, dict)]
    return out


def without(doc: Any, selectors: Iterable[Any]) -> Dict[str, Any]:
    out = dict(expect_object(doc))
    for key, nested in _selector_items(selectors):
        if key not in out:
            continue
        if nested is True:
            del out[key]
        elif isinstance(out[key], dict):
            out[key] = without(out[key], [nested])
    return out


def matches(doc: Any, pattern: Any) -> bool:
    """Partial match used by filter({...})."""
    if isinstance(pattern, dict):
        if not isinstance(doc, dict):
            return False
        return all(k in doc and matches(doc[k], v) for k, v in pattern.items())
    return equal(doc, pattern)


def round_half_away(value: float) -> int:
    return int(math.floor(value + 0.5)) if value >= 0 else -int(math.floor(-value + 0.5))


def first_or_none(value: Any) -> Optional[Any]:
    """First element of a sequence result, or the value itself."""
    if isinstance(value, (list, Seq)):
        for item in value:
            return item
        return None
    return value


def materialize(value: Any) -> Any:
    """Replace every Seq inside value with a list."""
    if isinstance(value, Seq):
        return [materialize(v) for v in value]
    if isinstance(value, list):
        return [materialize(v) for v in value]
    if isinstance(value, dict):
        return {k: materialize(v) for k, v in value.items()}
    return value


def as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, Seq)):
        return list(value)
    raise RemoteQueryError(f"Expected type SEQUENCE but found {type_name(value)}")
