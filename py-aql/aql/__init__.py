# AQL: chainable, shape-checked query builder for a RethinkDB-style document database.

from .config import Settings, configure, get_settings, load_settings, setup_logger
from .errors import (
    AQLError,
    ConflictError,
    ExpressionTooDeep,
    QueueOverflow,
    RemoteQueryError,
    TransportError,
    TypeMismatch,
)
from .expr import ABSENT, Op, Term, expr, var
from .joins import JoinType
from .memory import MemoryConnection, MemoryServer
from .net import (
    Connection,
    Cursor,
    CursorSource,
    get_default_connection,
    set_default_connection,
)
from .query import (
    Database,
    Datum,
    Feed,
    Query,
    Selection,
    SingleSelection,
    Stream,
    Table,
    create_database,
    delete_database,
    list_databases,
)
from .results import DatabaseChange, IndexChange, TableChange, ValueChange, WriteResult
from .shapes import Shape

__all__ = [
    "Database",
    "Table",
    "Selection",
    "SingleSelection",
    "Stream",
    "Feed",
    "Datum",
    "Query",
    "create_database",
    "delete_database",
    "list_databases",
    "var",
    "expr",
    "ABSENT",
    "JoinType",
    "Shape",
    "Term",
    "Op",
    "Connection",
    "Cursor",
    "CursorSource",
    "set_default_connection",
    "get_default_connection",
    "MemoryConnection",
    "MemoryServer",
    "WriteResult",
    "ValueChange",
    "IndexChange",
    "TableChange",
    "DatabaseChange",
    "AQLError",
    "TypeMismatch",
    "ExpressionTooDeep",
    "QueueOverflow",
    "RemoteQueryError",
    "ConflictError",
    "TransportError",
    "Settings",
    "configure",
    "get_settings",
    "load_settings",
    "setup_logger",
]
