"""Join operations for AQL streams: JoinType and Stream.join()."""

import warnings
from enum import IntEnum
from typing import Any, Callable, Optional, Tuple

from .errors import TypeMismatch
from .expr import Op, Term, TermHolder, compile_function, fold_with_shape, literal
from .shapes import ANY, Kind, Shape


class JoinType(IntEnum):
    """Join kinds, numbered as on the wire."""

    Cross = 0
    LeftExcl = 1
    Inner = 2
    Left = 3
    RightExcl = 4
    FullExcl = 5
    Right = 6
    FullOuter = 7


# (left may be null, right may be null) inside the mapper
_NULLABLE_SIDES = {
    JoinType.Cross: (False, False),
    JoinType.Inner: (False, False),
    JoinType.Left: (False, True),
    JoinType.LeftExcl: (False, True),
    JoinType.Right: (True, False),
    JoinType.RightExcl: (True, False),
    JoinType.FullOuter: (True, True),
    JoinType.FullExcl: (True, True),
}


def nullable_sides(kind: JoinType) -> Tuple[bool, bool]:
    """Which mapper arguments may be null for a join kind."""
    return _NULLABLE_SIDES[JoinType(kind)]


def _right_operand(right: Any) -> Tuple[Term, Shape]:
    """Term and element shape of the right-hand side of a join."""
    from .query import Datum, Feed, Stream

    if isinstance(right, Feed):
        raise TypeMismatch("Cannot join against a feed")
    if isinstance(right, Stream):
        return right.term, right.shape
    if isinstance(right, Datum):
        shape = right.shape
    elif isinstance(right, TermHolder):
        shape = right.value_shape
    else:
        term, shape = fold_with_shape(right)
        if shape.kind not in (Kind.ARRAY, Kind.ANY):
            raise TypeMismatch(
                f"join() needs a stream or an array on the right, got {shape!r}"
            )
        return term, shape.item()
    if shape.kind not in (Kind.ARRAY, Kind.ANY):
        raise TypeMismatch(
            f"join() needs a stream or an array on the right, got {shape!r}"
        )
    return right.term, shape.item() if shape.kind == Kind.ARRAY else ANY


class JoinMixin:
    """Mixin class providing join operations for streams."""

    def join(
        self,
        right: Any,
        kind: JoinType,
        mapper: Callable[[Any, Any], Any],
        predicate: Optional[Callable[[Any, Any], Any]] = None,
    ) -> "Stream":
        """
        Join this stream with another stream or an array.

        Args:
            right: Stream, Datum of an array, or a plain list
            kind: JoinType member (or its number)
            mapper: Builds each output element from (left, right). Arguments on
                    a side that may be unmatched for this kind are nullable;
                    indexing them gives null for unmatched rows.
            predicate: Match condition over (left, right); ignored for Cross,
                       required for every other kind

        Returns:
            Stream of mapper results

        Example:
            >>> users.join(orders, JoinType.Left,
            ...            lambda u, o: {"name": u["name"], "total": o["total"]},
            ...            lambda u, o: u["id"] == o["user_id"])
        """
        from .query import Stream

        try:
            kind = JoinType(kind)
        except ValueError:
            raise ValueError(
                f"Invalid join type {kind!r}. Must be one of: "
                f"{', '.join(k.name for k in JoinType)}"
            ) from None

        right_term, right_shape = _right_operand(right)
        left_null, right_null = nullable_sides(kind)
        left_shape = self.shape.nullable_() if left_null else self.shape
        mapped_right = right_shape.nullable_() if right_null else right_shape
        mapper_fn, out_shape = compile_function(mapper, [left_shape, mapped_right])

        if kind == JoinType.Cross:
            if predicate is not None:
                warnings.warn(
                    "Cross joins ignore the predicate argument", UserWarning, stacklevel=2
                )
            predicate_term = literal(None)
        else:
            if predicate is None:
                raise TypeMismatch(f"{kind.name} joins need a predicate")
            predicate_term, _ = compile_function(predicate, [self.shape, right_shape])

        term = Term(
            Op.JOIN,
            [self.term, right_term, mapper_fn, predicate_term],
            {"kind": int(kind)},
        )
        return Stream(term, out_shape)
