"""
In-process reference server for AQL.

MemoryServer evaluates serialized queries over databases held in memory and
MemoryConnection is the Connection that talks to it. Together they make the
whole query surface runnable without a network database.

Example:
  >>> conn = MemoryConnection()
  >>> await aql.create_database("shop").run(conn)
  >>> users = aql.Database("shop").table("users")
"""

from .connection import MemoryConnection
from .cursors import FeedSource, ResultSource, Subscription
from .server import MemoryServer
from .storage import MemoryDatabase, MemoryTable

__all__ = [
    "MemoryConnection",
    "MemoryServer",
    "MemoryDatabase",
    "MemoryTable",
    "FeedSource",
    "ResultSource",
    "Subscription",
]
