"""Operation tags and constructors for the structural terms."""

import copy
from typing import Any, Dict, List, Sequence

from .base import Term


class Op:
    """Closed catalogue of operation tags."""

    # Structure
    DATUM = "DATUM"
    MAKE_ARRAY = "MAKE_ARRAY"
    MAKE_OBJECT = "MAKE_OBJECT"
    VAR = "VAR"
    FUNC = "FUNC"
    FUNCALL = "FUNCALL"

    # Arithmetic / bitwise
    ADD = "ADD"
    SUB = "SUB"
    MUL = "MUL"
    DIV = "DIV"
    MOD = "MOD"
    BIT_AND = "BIT_AND"
    BIT_OR = "BIT_OR"
    BIT_XOR = "BIT_XOR"
    BIT_NOT = "BIT_NOT"
    BIT_SAL = "BIT_SAL"
    BIT_SAR = "BIT_SAR"
    ROUND = "ROUND"
    CEIL = "CEIL"
    FLOOR = "FLOOR"

    # Comparison / logic
    EQ = "EQ"
    NE = "NE"
    LT = "LT"
    LE = "LE"
    GT = "GT"
    GE = "GE"
    AND = "AND"
    OR = "OR"
    NOT = "NOT"
    DEFAULT = "DEFAULT"
    BRACKET = "BRACKET"

    # Strings
    SPLIT = "SPLIT"
    UPCASE = "UPCASE"
    DOWNCASE = "DOWNCASE"
    MATCH = "MATCH"

    # Dates
    DURING = "DURING"
    IN_TIMEZONE = "IN_TIMEZONE"
    TIMEZONE = "TIMEZONE"
    TIME_OF_DAY = "TIME_OF_DAY"
    YEAR = "YEAR"
    MONTH = "MONTH"
    DAY = "DAY"
    DAY_OF_WEEK = "DAY_OF_WEEK"
    DAY_OF_YEAR = "DAY_OF_YEAR"
    HOURS = "HOURS"
    MINUTES = "MINUTES"
    SECONDS = "SECONDS"
    TO_EPOCH_TIME = "TO_EPOCH_TIME"

    # Sequences / arrays / objects
    COUNT = "COUNT"
    SUM = "SUM"
    AVG = "AVG"
    MIN = "MIN"
    MAX = "MAX"
    CONTAINS = "CONTAINS"
    SLICE = "SLICE"
    NTH = "NTH"
    MAP = "MAP"
    FILTER = "FILTER"
    HAS_FIELDS = "HAS_FIELDS"
    WITH_FIELDS = "WITH_FIELDS"
    PLUCK = "PLUCK"
    WITHOUT = "WITHOUT"
    IS_EMPTY = "IS_EMPTY"
    APPEND = "APPEND"
    PREPEND = "PREPEND"
    UNION = "UNION"
    DISTINCT = "DISTINCT"
    ORDER_BY = "ORDER_BY"
    MERGE = "MERGE"
    KEYS = "KEYS"
    VALUES = "VALUES"
    JOIN = "JOIN"
    GROUP = "GROUP"

    # Catalogue
    DB = "DB"
    TABLE = "TABLE"
    DB_CREATE = "DB_CREATE"
    DB_DROP = "DB_DROP"
    DB_LIST = "DB_LIST"
    TABLE_CREATE = "TABLE_CREATE"
    TABLE_DROP = "TABLE_DROP"
    TABLE_LIST = "TABLE_LIST"
    INDEX_CREATE = "INDEX_CREATE"
    INDEX_DROP = "INDEX_DROP"
    INDEX_LIST = "INDEX_LIST"

    # Selections and writes
    GET = "GET"
    GET_ALL = "GET_ALL"
    BETWEEN = "BETWEEN"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    REPLACE = "REPLACE"
    DELETE = "DELETE"
    CHANGES = "CHANGES"


def literal(value: Any) -> Term:
    """DATUM term holding a private copy of a raw value."""
    return Term(Op.DATUM, (), {"value": copy.deepcopy(value)})


def var_ref(name: str) -> Term:
    """VAR term naming a binding introduced by an enclosing FUNC."""
    return Term(Op.VAR, (), {"name": name})


def func(params: Sequence[str], body: Term) -> Term:
    """FUNC term binding ``params`` inside ``body``."""
    return Term(Op.FUNC, (body,), {"params": list(params)})


def make_array(items: Sequence[Term]) -> Term:
    return Term(Op.MAKE_ARRAY, items)


def make_object(fields: Dict[str, Term]) -> Term:
    """MAKE_OBJECT term; operand i is the value of key i."""
    keys: List[str] = list(fields.keys())
    return Term(Op.MAKE_OBJECT, [fields[k] for k in keys], {"keys": keys})


def literal_value(term: Term) -> Any:
    """Return a copy of the raw value of a DATUM term."""
    if term.op != Op.DATUM:
        raise ValueError(f"Not a literal term: {term.op}")
    return term.option("value")
