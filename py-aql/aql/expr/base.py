"""Expression node (Term) for AQL."""

import copy
import datetime
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence

from ..shapes import ANY, Shape

TIME_TYPE = "TIME"
TYPE_KEY = "$reql_type$"


def encode_value(value: Any) -> Any:
    """
    Convert a literal to its JSON-compatible form.

    datetimes become {"$reql_type$": "TIME", "epoch_time": ..., "timezone": ...};
    naive datetimes are taken as UTC and plain dates as midnight UTC.
    """
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        offset = value.utcoffset() or datetime.timedelta(0)
        return {
            TYPE_KEY: TIME_TYPE,
            "epoch_time": value.timestamp(),
            "timezone": format_offset(offset),
        }
    if isinstance(value, datetime.date):
        return encode_value(datetime.datetime(value.year, value.month, value.day))
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    """Inverse of encode_value()."""
    if isinstance(value, dict):
        if value.get(TYPE_KEY) == TIME_TYPE:
            tz = parse_offset(value.get("timezone", "+00:00"))
            return datetime.datetime.fromtimestamp(value["epoch_time"], tz)
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


def format_offset(offset: datetime.timedelta) -> str:
    minutes = int(offset.total_seconds() // 60)
    sign = "-" if minutes < 0 else "+"
    hours, minutes = divmod(abs(minutes), 60)
    return f"{sign}{hours:02d}:{minutes:02d}"


def parse_offset(text: str) -> datetime.timezone:
    """Parse "+HH:MM" / "-HH:MM" / "Z" into a timezone."""
    if text in ("Z", "z"):
        return datetime.timezone.utc
    sign = -1 if text.startswith("-") else 1
    hours, _, minutes = text.lstrip("+-").partition(":")
    delta = datetime.timedelta(hours=int(hours), minutes=int(minutes or 0))
    return datetime.timezone(sign * delta)


class Term:
    """
    Immutable expression node: one operation plus its operand nodes.

    Terms compare by identity. Sharing one sub-term between several parents is
    expected (a predicate reused by two filters, say); since nothing can modify
    a term after construction, every parent sees the same sub-tree.

    Attributes:
        op (str): Operation tag (see aql.expr.types.Op)
        args (tuple): Operand terms
        options (Mapping): Operation payload (field name, join kind, ...)
    """

    __slots__ = ("_op", "_args", "_options")

    def __init__(
        self,
        op: str,
        args: Sequence["Term"] = (),
        options: Optional[Dict[str, Any]] = None,
    ):
        for arg in args:
            if not isinstance(arg, Term):
                raise TypeError(
                    f"Term operands must be Terms, got {type(arg).__name__}"
                )
        object.__setattr__(self, "_op", op)
        object.__setattr__(self, "_args", tuple(args))
        object.__setattr__(self, "_options", copy.deepcopy(dict(options or {})))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"Term is immutable (tried to set '{name}')")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"Term is immutable (tried to delete '{name}')")

    def __copy__(self) -> "Term":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "Term":
        return self

    @property
    def op(self) -> str:
        return self._op

    @property
    def args(self) -> tuple:
        return self._args

    @property
    def options(self) -> Mapping[str, Any]:
        """Read-only view of a copy of the payload; nested values are copies too."""
        return MappingProxyType(copy.deepcopy(self._options))

    def option(self, name: str, default: Any = None) -> Any:
        """Return a copy of one payload entry, so callers cannot alter the node."""
        return copy.deepcopy(self._options.get(name, default))

    def walk(self) -> Iterator["Term"]:
        """Yield this term and all sub-terms, depth-first, parents first."""
        yield self
        for arg in self._args:
            yield from arg.walk()

    def serialize(self) -> Dict[str, Any]:
        """
        Convert this term to a JSON-compatible nested dict.

        Returns:
            {"type": op, "args": [...], "options": {...}}; empty keys omitted.
        """
        out: Dict[str, Any] = {"type": self._op}
        if self._args:
            out["args"] = [arg.serialize() for arg in self._args]
        if self._options:
            out["options"] = {k: encode_value(v) for k, v in self._options.items()}
        return out

    @classmethod
    def deserialize(cls, data: Dict[str, Any]) -> "Term":
        """Rebuild a term from serialize() output."""
        args = [cls.deserialize(a) for a in data.get("args", ())]
        options = {k: decode_value(v) for k, v in data.get("options", {}).items()}
        return cls(data["type"], args, options)

    def __repr__(self) -> str:
        parts = [repr(a) for a in self._args]
        parts += [f"{k}={v!r}" for k, v in self._options.items()]
        return f"{self._op}({', '.join(parts)})"


class TermHolder:
    """
    Anything that stands for a not-yet-evaluated value: value proxies and
    query surfaces. The shape folder treats every TermHolder as a reference to
    its term.
    """

    __slots__ = ()

    _term: Term

    @property
    def term(self) -> Term:
        return self._term

    @property
    def value_shape(self) -> Shape:
        """Shape of the value this holder evaluates to."""
        return ANY

    def serialize(self) -> Dict[str, Any]:
        return self._term.serialize()
