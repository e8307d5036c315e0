"""
Expression system for AQL: records operations on placeholders as term trees.

Nothing in this package evaluates anything. Proxies intercept method calls
and operators and return new proxies wrapping new terms; the shape folder
compiles whatever a callback returns into a single term.

Core pieces:
  - Term: Immutable expression node (operation tag, operands, payload)
  - Op: Catalogue of operation tags
  - ValueProxy and its shape-specific variants
  - ShapeFolder / fold: Literal/proxy mixtures -> one Term
  - compile_function: Callback -> FUNC term
  - var / expr: Named binding references and literal lifting

Example:
  >>> p = make_proxy(var_ref("doc"), Shape.of({"age": int}))
  >>> (p["age"] > 18).serialize()
  {'type': 'GT', 'args': [{'type': 'BRACKET', ...}, {'type': 'DATUM', ...}]}
"""

from .base import Term, TermHolder, decode_value, encode_value
from .folding import ABSENT, ShapeFolder, ValueKind, classify, fold, fold_with_shape
from .functions import compile_function, expr, var
from .proxy import (
    AnyProxy,
    ArrayProxy,
    BooleanProxy,
    DateProxy,
    NumberProxy,
    NumericArrayProxy,
    ObjectProxy,
    StringProxy,
    ValueProxy,
    make_proxy,
)
from .types import Op, func, literal, make_array, make_object, var_ref

__all__ = [
    "Term",
    "TermHolder",
    "Op",
    "encode_value",
    "decode_value",
    "literal",
    "var_ref",
    "func",
    "make_array",
    "make_object",
    "ABSENT",
    "ValueKind",
    "classify",
    "ShapeFolder",
    "fold",
    "fold_with_shape",
    "compile_function",
    "var",
    "expr",
    "ValueProxy",
    "BooleanProxy",
    "NumberProxy",
    "DateProxy",
    "StringProxy",
    "ArrayProxy",
    "NumericArrayProxy",
    "ObjectProxy",
    "AnyProxy",
    "make_proxy",
]
