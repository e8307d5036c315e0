"""Exception hierarchy for AQL.

Build-time errors (``TypeMismatch``, ``ExpressionTooDeep``) are raised while a
query is being chained. Everything else is raised at the execution boundary:
from an awaited ``run()`` or from the next pull of a cursor.
"""

from typing import Any, Optional


class AQLError(Exception):
    """Base exception for AQL."""

    pass


class TypeMismatch(AQLError, AttributeError):
    """Operation is not valid for the declared shape of a value.

    Subclasses ``AttributeError`` so that ``hasattr(proxy, "sum")`` reports
    False for capabilities a shape does not expose.
    """

    pass


class ExpressionTooDeep(AQLError):
    """Nested literal/proxy value exceeds the configured nesting depth."""

    def __init__(self, depth: int, limit: int):
        self.depth = depth
        self.limit = limit
        super().__init__(
            f"Nesting depth {depth} exceeds the limit of {limit}. "
            "Raise Settings.max_nesting_depth if this is intended."
        )


class QueueOverflow(AQLError):
    """A feed accumulated more pending changes than its queue size allows."""

    def __init__(self, queue_size: int):
        self.queue_size = queue_size
        super().__init__(
            f"Changefeed queue overflow: more than {queue_size} changes "
            "were pending without being read."
        )


class RemoteQueryError(AQLError):
    """The server rejected or failed while evaluating a query."""

    def __init__(self, message: str, term: Optional[Any] = None):
        self.message = message
        self.term = term
        super().__init__(message)


class ConflictError(RemoteQueryError):
    """Insert hit an existing primary key under ``conflict="error"``."""

    pass


class TransportError(AQLError):
    """Connection-level failure. Never retried by the query builder."""

    pass
