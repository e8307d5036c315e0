"""Tests for Shape declarations and inference."""

import datetime
from typing import Dict, List, Optional

import pytest

from aql.shapes import ANY, NUMBER, STRING, Kind, Shape, array_of, object_of


class TestShapeOf:
    """Shape.of() over the supported declaration styles."""

    def test_python_types(self):
        assert Shape.of(int).kind == Kind.NUMBER
        assert Shape.of(float).kind == Kind.NUMBER
        assert Shape.of(bool).kind == Kind.BOOLEAN
        assert Shape.of(str).kind == Kind.STRING
        assert Shape.of(datetime.datetime).kind == Kind.DATE

    def test_type_name_strings(self):
        assert Shape.of("int64").kind == Kind.NUMBER
        assert Shape.of("string").kind == Kind.STRING

    def test_unknown_type_name_raises(self):
        with pytest.raises(TypeError, match="Unknown type name"):
            Shape.of("decimal128")

    def test_template_containers(self):
        shape = Shape.of({"name": str, "tags": [str]})
        assert shape.kind == Kind.OBJECT
        assert shape.field("name") == STRING
        assert shape.field("tags") == array_of(STRING)

    def test_typing_generics(self):
        assert Shape.of(List[int]) == array_of(NUMBER)
        assert Shape.of(Dict[str, float]).field("anything") == NUMBER
        assert Shape.of(Optional[str]) == STRING.nullable_()

    def test_none_and_any_are_undeclared(self):
        assert Shape.of(None) == ANY

    def test_multi_element_array_template_raises(self):
        with pytest.raises(TypeError, match="single element type"):
            Shape.of([int, str])


class TestShapeNavigation:
    """field(), item() and nullability."""

    def test_undeclared_field_is_any(self):
        assert object_of({"a": NUMBER}).field("b") == ANY

    def test_nullable_object_makes_fields_nullable(self):
        shape = object_of({"a": NUMBER}).nullable_()
        assert shape.field("a") == NUMBER.nullable_()

    def test_non_null_strips_nullability(self):
        assert NUMBER.nullable_().non_null() == NUMBER

    def test_item_of_untyped_array_is_any(self):
        assert array_of().item() == ANY

    def test_repr(self):
        assert repr(Shape.of({"n": Optional[int]})) == "{n: number?}"
        assert repr(array_of(STRING)) == "array<string>"


class TestShapeInfer:
    """Shape.infer() on literal values."""

    def test_scalars(self):
        assert Shape.infer(3) == NUMBER
        assert Shape.infer("x") == STRING
        assert Shape.infer(None).nullable

    def test_homogeneous_array_has_element_shape(self):
        assert Shape.infer([1, 2]) == array_of(NUMBER)

    def test_mixed_array_has_no_element_shape(self):
        assert Shape.infer([1, "a"]).element is None

    def test_object(self):
        assert Shape.infer({"a": 1}).field("a") == NUMBER
