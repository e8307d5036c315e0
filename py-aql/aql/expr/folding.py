"""
Shape folder: compiles a nested mixture of literals and proxies into one term.

Callbacks passed to map(), group(), join() and friends may return any nesting
of dicts and lists in which some leaves are proxies or query surfaces:

    >>> stream.map(lambda doc: {"name": doc["name"], "tags": ["a", "b"]})

The folder visits that value depth-first over a closed set of value kinds.
Sub-values with no reference anywhere below them are emitted as a single DATUM
literal; containers holding at least one reference become MAKE_ARRAY /
MAKE_OBJECT terms whose operands are the folded children.
"""

import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..config import get_settings
from ..errors import ExpressionTooDeep, TypeMismatch
from ..shapes import ANY, Kind, Shape
from .base import Term, TermHolder
from .types import literal, make_array, make_object


class _Absent:
    """Marker for a field that is missing, as opposed to present and null."""

    _instance: Optional["_Absent"] = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> "_Absent":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "_Absent":
        return self


ABSENT = _Absent()


class ValueKind(Enum):
    SCALAR = "scalar"
    ARRAY = "array"
    OBJECT = "object"
    REFERENCE = "reference"
    ABSENT = "absent"


_SCALAR_TYPES = (bool, int, float, str, datetime.date)


def classify(value: Any) -> ValueKind:
    """Assign a value to one of the kinds the folder understands."""
    if value is ABSENT:
        return ValueKind.ABSENT
    if isinstance(value, (TermHolder, Term)):
        return ValueKind.REFERENCE
    if value is None or isinstance(value, _SCALAR_TYPES):
        return ValueKind.SCALAR
    if isinstance(value, (list, tuple)):
        return ValueKind.ARRAY
    if isinstance(value, dict):
        return ValueKind.OBJECT
    raise TypeMismatch(
        f"Cannot use a value of type {type(value).__name__} in a query. "
        "Supported: None, bool, int, float, str, datetime, list, tuple, dict, "
        "proxies and query surfaces."
    )


# A folded child is either ("raw", python_value) or ("term", Term).
_Folded = Tuple[str, Any, Shape]


class ShapeFolder:
    """
    Recursive visitor turning a literal/proxy mixture into one Term.

    Args:
        max_depth: Deepest container nesting accepted; defaults to
                   Settings.max_nesting_depth
    """

    def __init__(self, max_depth: Optional[int] = None):
        self.max_depth = (
            max_depth if max_depth is not None else get_settings().max_nesting_depth
        )

    def fold(self, value: Any) -> Term:
        return self.fold_with_shape(value)[0]

    def fold_with_shape(self, value: Any) -> Tuple[Term, Shape]:
        """Fold a value and report the shape of what it evaluates to."""
        tag, payload, shape = self._visit(value, 0)
        if tag == "term":
            return payload, shape
        return literal(payload), shape

    def _visit(self, value: Any, depth: int) -> _Folded:
        if depth > self.max_depth:
            raise ExpressionTooDeep(depth, self.max_depth)

        kind = classify(value)
        if kind is ValueKind.REFERENCE:
            if isinstance(value, Term):
                return "term", value, ANY
            return "term", value.term, value.value_shape
        if kind is ValueKind.SCALAR:
            return "raw", value, Shape.infer(value)
        if kind is ValueKind.ABSENT:
            return "raw", None, ANY.nullable_()
        if kind is ValueKind.ARRAY:
            return self._visit_array(value, depth)
        return self._visit_object(value, depth)

    def _visit_array(self, value: Any, depth: int) -> _Folded:
        children = [self._visit(item, depth + 1) for item in value]
        kinds = {c[2].kind for c in children}
        element = children[0][2] if len(kinds) == 1 else None
        shape = Shape(Kind.ARRAY, element=element)

        if all(tag == "raw" for tag, _, _ in children):
            return "raw", [payload for _, payload, _ in children], shape
        return "term", make_array([_as_term(c) for c in children]), shape

    def _visit_object(self, value: Dict[Any, Any], depth: int) -> _Folded:
        children: Dict[str, _Folded] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeMismatch(
                    f"Object keys must be strings, got {type(key).__name__}"
                )
            if item is ABSENT:
                continue
            children[key] = self._visit(item, depth + 1)
        shape = Shape(Kind.OBJECT, fields={k: c[2] for k, c in children.items()})

        if all(tag == "raw" for tag, _, _ in children.values()):
            return "raw", {k: c[1] for k, c in children.items()}, shape
        return "term", make_object({k: _as_term(c) for k, c in children.items()}), shape


def _as_term(folded: _Folded) -> Term:
    tag, payload, _ = folded
    return payload if tag == "term" else literal(payload)


def fold(value: Any) -> Term:
    """Fold a value with the active settings."""
    return ShapeFolder().fold(value)


def fold_with_shape(value: Any) -> Tuple[Term, Shape]:
    return ShapeFolder().fold_with_shape(value)


def fold_all(values: List[Any]) -> List[Term]:
    folder = ShapeFolder()
    return [folder.fold(v) for v in values]
