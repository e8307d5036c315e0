"""Declared shapes of values flowing through a query.

A shape decides which capability set a value proxy exposes. Shapes come from
table schemas (``db.table("users", schema={...})``), from literal values lifted
with ``expr()``, and from the result types of proxy operations.
"""

import collections.abc
import datetime
import types
import typing
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class Kind(str, Enum):
    BOOLEAN = "boolean"
    NUMBER = "number"
    DATE = "date"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"
    ANY = "any"


# Schema type strings accepted in place of Python types, in the spirit of
# {"age": "int64", "name": "string"} schemas.
_NAMED_KINDS = {
    "bool": Kind.BOOLEAN,
    "boolean": Kind.BOOLEAN,
    "int": Kind.NUMBER,
    "int32": Kind.NUMBER,
    "int64": Kind.NUMBER,
    "float": Kind.NUMBER,
    "float64": Kind.NUMBER,
    "number": Kind.NUMBER,
    "date": Kind.DATE,
    "datetime": Kind.DATE,
    "time": Kind.DATE,
    "str": Kind.STRING,
    "string": Kind.STRING,
    "list": Kind.ARRAY,
    "array": Kind.ARRAY,
    "dict": Kind.OBJECT,
    "object": Kind.OBJECT,
    "any": Kind.ANY,
}


@dataclass(frozen=True)
class Shape:
    """
    Shape of a value: its kind plus element/field shapes for containers.

    Attributes:
        kind: One of the Kind members
        element: Element shape of an array, or value shape of a homogeneous object
        fields: Known field shapes of an object
        nullable: Whether the value may be null (e.g. the absent side of a join)
    """

    kind: Kind = Kind.ANY
    element: Optional["Shape"] = None
    fields: Optional[Mapping[str, "Shape"]] = None
    nullable: bool = False

    def __repr__(self) -> str:
        if self.kind == Kind.ARRAY:
            inner = f"array<{self.item()!r}>"
        elif self.kind == Kind.OBJECT and self.fields:
            inner = "{" + ", ".join(f"{k}: {v!r}" for k, v in self.fields.items()) + "}"
        else:
            inner = self.kind.value
        return inner + ("?" if self.nullable else "")

    @property
    def is_numeric(self) -> bool:
        return self.kind in (Kind.NUMBER, Kind.ANY)

    @property
    def is_known(self) -> bool:
        return self.kind != Kind.ANY

    def nullable_(self) -> "Shape":
        """Return this shape marked as possibly null."""
        return self if self.nullable else replace(self, nullable=True)

    def non_null(self) -> "Shape":
        """Return this shape with nullability removed."""
        return replace(self, nullable=False) if self.nullable else self

    def item(self) -> "Shape":
        """Shape of an array element (ANY when undeclared)."""
        shape = self.element or ANY
        return shape.nullable_() if self.nullable else shape

    def field(self, key: Any) -> "Shape":
        """Shape of an object field (ANY when undeclared)."""
        if self.kind == Kind.ARRAY:
            return self.item()
        shape = ANY
        if self.fields is not None and isinstance(key, str) and key in self.fields:
            shape = self.fields[key]
        elif self.element is not None:
            shape = self.element
        return shape.nullable_() if self.nullable else shape

    @classmethod
    def of(cls, decl: Any) -> "Shape":
        """
        Convert a Python type declaration to a Shape.

        Accepts Python types (bool, int, float, str, datetime, list, dict),
        typing generics (List[int], Dict[str, float], Optional[str]), literal
        containers used as templates ([str], {"name": str}), schema type
        strings ("int64", "string") and existing Shapes.

        Example:
            >>> Shape.of({"name": str, "tags": [str], "age": Optional[int]})
            {name: string, tags: array<string>, age: number?}
        """
        if isinstance(decl, Shape):
            return decl
        if decl is None or decl is Any or decl is object:
            return ANY
        if isinstance(decl, str):
            kind = _NAMED_KINDS.get(decl.lower())
            if kind is None:
                raise TypeError(f"Unknown type name '{decl}'")
            return cls(kind)
        if isinstance(decl, list):
            if len(decl) > 1:
                raise TypeError("Array declarations take a single element type")
            return cls(Kind.ARRAY, element=cls.of(decl[0]) if decl else None)
        if isinstance(decl, dict):
            return cls(Kind.OBJECT, fields={k: cls.of(v) for k, v in decl.items()})

        origin = typing.get_origin(decl)
        if origin is typing.Union or origin is getattr(types, "UnionType", None):
            args = [a for a in typing.get_args(decl) if a is not type(None)]
            inner = cls.of(args[0]) if len(args) == 1 else ANY
            return inner.nullable_()
        if origin is not None:
            args = typing.get_args(decl)
            if isinstance(origin, type) and issubclass(origin, collections.abc.Mapping):
                return cls(Kind.OBJECT, element=cls.of(args[1]) if args else None)
            if isinstance(origin, type) and issubclass(origin, (list, tuple)):
                return cls(Kind.ARRAY, element=cls.of(args[0]) if args else None)
            raise TypeError(f"Unsupported type declaration: {decl!r}")

        if isinstance(decl, type):
            if issubclass(decl, bool):
                return cls(Kind.BOOLEAN)
            if issubclass(decl, (int, float)):
                return cls(Kind.NUMBER)
            if issubclass(decl, str):
                return cls(Kind.STRING)
            if issubclass(decl, (datetime.datetime, datetime.date)):
                return cls(Kind.DATE)
            if issubclass(decl, (list, tuple)):
                return cls(Kind.ARRAY)
            if issubclass(decl, dict):
                return cls(Kind.OBJECT)
        raise TypeError(f"Unsupported type declaration: {decl!r}")

    @classmethod
    def infer(cls, value: Any) -> "Shape":
        """Infer the shape of a literal value."""
        if value is None:
            return ANY.nullable_()
        if isinstance(value, bool):
            return cls(Kind.BOOLEAN)
        if isinstance(value, (int, float)):
            return cls(Kind.NUMBER)
        if isinstance(value, str):
            return cls(Kind.STRING)
        if isinstance(value, (datetime.datetime, datetime.date)):
            return cls(Kind.DATE)
        if isinstance(value, (list, tuple)):
            shapes = [cls.infer(v) for v in value]
            kinds = {s.kind for s in shapes}
            element = shapes[0] if len(kinds) == 1 else None
            return cls(Kind.ARRAY, element=element)
        if isinstance(value, dict):
            return cls(Kind.OBJECT, fields={k: cls.infer(v) for k, v in value.items()})
        shape = getattr(value, "shape", None)
        return shape if isinstance(shape, Shape) else ANY


ANY = Shape(Kind.ANY)
BOOLEAN = Shape(Kind.BOOLEAN)
NUMBER = Shape(Kind.NUMBER)
DATE = Shape(Kind.DATE)
STRING = Shape(Kind.STRING)


def array_of(element: Optional[Shape] = None) -> Shape:
    return Shape(Kind.ARRAY, element=element)


def object_of(fields: Optional[Dict[str, Shape]] = None) -> Shape:
    return Shape(Kind.OBJECT, fields=fields)
