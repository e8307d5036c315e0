"""Grouping and aggregation for AQL streams: group, count, sum, avg, min, max, distinct."""

from typing import Any, Callable, List, Optional, Sequence, Union

from .errors import TypeMismatch
from .expr import Op, Term, compile_function
from .shapes import NUMBER, Shape, array_of, object_of


def _group_fields(index: Union[str, Sequence[str]]) -> List[str]:
    fields = [index] if isinstance(index, str) else list(index)
    if not fields:
        raise ValueError("group() requires at least one field")
    for f in fields:
        if not isinstance(f, str) or not f:
            raise TypeError(f"Group fields must be non-empty strings, got {f!r}")
    return fields


def _field_option(field: Optional[str]) -> dict:
    if field is None:
        return {}
    if not isinstance(field, str):
        raise TypeError(f"Field name must be a string, got {type(field).__name__}")
    return {"field": field}


class AggregationMixin:
    """Mixin class providing grouping and aggregates for streams."""

    def _target_shape(self, field: Optional[str]) -> Shape:
        return self.shape.field(field) if field is not None else self.shape

    def _require_numeric(self, op_name: str, field: Optional[str]) -> None:
        target = self._target_shape(field)
        if not target.is_numeric:
            where = f"field '{field}'" if field else "elements"
            raise TypeMismatch(
                f"{op_name}() needs numeric {where}, but they are declared as {target!r}"
            )

    def group(
        self, index: Union[str, Sequence[str]], mapper: Callable[[Any, Any], Any]
    ) -> "Stream":
        """
        Partition the stream by one or more fields and map each group.

        The mapper is called once per distinct key with a Stream of the
        group's members and a proxy of the key. The key is the field value for
        a single field, or an object keyed by field name for several. Groups
        come out in the order their keys were first seen.

        Args:
            index: Field name, or list of field names for a composite key
            mapper: (group stream, key) -> output element

        Returns:
            Stream with one element per distinct key

        Example:
            >>> orders.group("user_id", lambda rows, uid: {"user": uid, "n": rows.count()})
        """
        from .query import Stream

        fields = _group_fields(index)
        if len(fields) == 1:
            key_shape = self.shape.field(fields[0])
        else:
            key_shape = object_of({f: self.shape.field(f) for f in fields})

        fn, out_shape = compile_function(
            mapper,
            [self.shape, key_shape],
            factories=[lambda term, shape: Stream(term, shape), None],
        )
        term = Term(Op.GROUP, [self.term, fn], {"fields": fields})
        return Stream(term, out_shape)

    def count(self, field: Optional[str] = None) -> "Datum":
        """
        Number of elements, or of distinct values of a field.

        Args:
            field: Count the distinct values of this field instead
        """
        from .query import Datum

        return Datum(Term(Op.COUNT, [self.term], _field_option(field)), NUMBER)

    def sum(self, field: Optional[str] = None) -> "Datum":
        """Sum of the elements (or of a field). Elements must be numeric."""
        from .query import Datum

        self._require_numeric("sum", field)
        return Datum(Term(Op.SUM, [self.term], _field_option(field)), NUMBER)

    def avg(self, field: Optional[str] = None) -> "Datum":
        """Average of the elements (or of a field). Elements must be numeric."""
        from .query import Datum

        self._require_numeric("avg", field)
        return Datum(Term(Op.AVG, [self.term], _field_option(field)), NUMBER)

    def min(self, field: Optional[str] = None) -> "Datum":
        """Element with the smallest value (of field, when given)."""
        from .query import Datum

        return Datum(Term(Op.MIN, [self.term], _field_option(field)), self.shape)

    def max(self, field: Optional[str] = None) -> "Datum":
        """Element with the largest value (of field, when given)."""
        from .query import Datum

        return Datum(Term(Op.MAX, [self.term], _field_option(field)), self.shape)

    def distinct(self, field: Optional[str] = None):
        """
        Distinct elements, in first-seen order.

        Without a field, returns a Datum holding an array of the distinct
        elements. With a field, returns a Stream of that field's distinct
        values.
        """
        from .query import Datum, Stream

        term = Term(Op.DISTINCT, [self.term], _field_option(field))
        if field is None:
            return Datum(term, array_of(self.shape))
        return Stream(term, self.shape.field(field))
