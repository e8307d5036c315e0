"""In-process reference server: owns the databases and answers serialized queries."""

import logging
from typing import Any, Dict, List

from ..errors import RemoteQueryError
from ..expr.base import encode_value
from ..net import CursorSource
from .cursors import FeedSource, ResultSource, find_changes
from .evaluator import Evaluator, Node, translate_errors
from .storage import MemoryDatabase, MemoryTable
from .values import materialize

logger = logging.getLogger(__name__)


class MemoryServer:
    """
    Holds databases in memory and evaluates queries against them.

    Queries arrive in their serialized form (what ``Term.serialize()``
    returns after a JSON round trip). ``run`` answers with a single value;
    ``open`` answers with a CursorSource, which is the only way to read a
    changefeed.

    Example:
        >>> server = MemoryServer()
        >>> server.create_database("shop")
        >>> server.database_names()
        ['shop']
    """

    def __init__(self):
        self._databases: Dict[str, MemoryDatabase] = {}

    def __repr__(self) -> str:
        return f"MemoryServer(databases={self.database_names()})"

    # Catalogue

    def database(self, name: str) -> MemoryDatabase:
        try:
            return self._databases[name]
        except KeyError:
            raise RemoteQueryError(f"Database `{name}` does not exist") from None

    def create_database(self, name: str) -> MemoryDatabase:
        if name in self._databases:
            raise RemoteQueryError(f"Database `{name}` already exists")
        db = MemoryDatabase(name)
        self._databases[name] = db
        logger.info("Created database %s", name)
        return db

    def drop_database(self, name: str) -> MemoryDatabase:
        db = self.database(name)
        del self._databases[name]
        logger.info("Dropped database %s (%d tables)", name, len(db.tables))
        return db

    def database_names(self) -> List[str]:
        return sorted(self._databases)

    def table(self, db_name: str, name: str) -> MemoryTable:
        """Direct access to a stored table."""
        return self.database(db_name).table(name)

    # Queries

    def run(self, query: Node) -> Any:
        """Evaluate a query and return its fully materialized, encoded result."""
        if find_changes(query) is not None:
            raise RemoteQueryError("Changefeeds can only be read through a cursor", query)
        with translate_errors(query):
            result = Evaluator(self).evaluate(query)
            return encode_value(materialize(result))

    def open(self, query: Node) -> CursorSource:
        """Start a query whose results are pulled in batches."""
        path = find_changes(query)
        if path is not None:
            source = FeedSource(self, query, path)
            logger.debug("Opened changefeed on %s", source.subscription.table.qualified_name)
            return source
        with translate_errors(query):
            value = Evaluator(self).evaluate(query)
        return ResultSource(value, query)
