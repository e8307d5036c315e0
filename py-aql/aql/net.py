"""Execution protocol: connections and cursors.

A finished term is handed to a Connection, which either settles it into one
value (``run``) or opens a Cursor that pulls results batch by batch. Concrete
transports implement ``_run`` and ``_open_cursor``; this module owns the
lifecycle rules (lazy opening, forward-only iteration, release on close).
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

from .config import get_settings
from .errors import TransportError
from .expr.base import Term

logger = logging.getLogger(__name__)


class CursorSource(ABC):
    """Server-side half of a cursor: hands out batches until exhausted."""

    @abstractmethod
    async def fetch(self, max_items: int) -> Tuple[List[Any], bool]:
        """
        Return up to max_items results and whether the source is exhausted.

        May wait for more results (feeds). Raises on terminal errors.
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the request slot or subscription behind this source."""


class Cursor:
    """Lazy, forward-only iterator over the results of one query.

    The underlying request is only opened on the first pull, results are
    fetched ``batch_size`` at a time, and the cursor cannot be restarted.
    Closing (explicitly, via ``async with``, or by exhausting it) releases the
    server-side resources.

    Example:
        >>> async with table.iterator(conn) as cursor:
        ...     async for doc in cursor:
        ...         process(doc)
    """

    def __init__(
        self,
        opener: Callable[[], Awaitable[CursorSource]],
        batch_size: Optional[int] = None,
        decode: Optional[Callable[[Any], Any]] = None,
    ):
        self._opener = opener
        self._batch_size = batch_size or get_settings().batch_size
        self._decode = decode
        self._source: Optional[CursorSource] = None
        self._buffer: Deque[Any] = deque()
        self._done = False
        self._closed = False

    @property
    def exhausted(self) -> bool:
        return self._closed or (self._done and not self._buffer)

    async def open(self) -> "Cursor":
        if self._closed:
            raise TransportError("Cursor is closed")
        if self._source is None:
            self._source = await self._opener()
            logger.debug("Cursor opened (batch size %d)", self._batch_size)
        return self

    def __aiter__(self) -> "Cursor":
        return self

    async def __anext__(self) -> Any:
        while not self._buffer:
            if self._done or self._closed:
                await self.close()
                raise StopAsyncIteration
            try:
                await self.open()
                items, done = await self._source.fetch(self._batch_size)
            except BaseException:
                await self.close()
                raise
            self._buffer.extend(items)
            self._done = done
        item = self._buffer.popleft()
        return self._decode(item) if self._decode else item

    async def next(self) -> Any:
        """Return the next result, raising StopAsyncIteration when exhausted."""
        return await self.__anext__()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._buffer.clear()
        if self._source is not None:
            source, self._source = self._source, None
            await source.close()
            logger.debug("Cursor closed")

    async def __aenter__(self) -> "Cursor":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def to_list(self) -> List[Any]:
        """Drain the remaining results into a list."""
        return [item async for item in self]

    async def to_pandas(self):
        """Drain the remaining results into a pandas DataFrame.

        Warning: This loads all remaining results into memory.
        """
        import pandas as pd

        rows = await self.to_list()
        return pd.DataFrame(rows)

    async def to_arrow(self):
        """Drain the remaining results into a PyArrow Table.

        Warning: This loads all remaining results into memory.
        """
        import pyarrow as pa

        rows = await self.to_list()
        if rows and not isinstance(rows[0], dict):
            rows = [{"value": r} for r in rows]
        return pa.Table.from_pylist(rows)


class Connection(ABC):
    """Transport collaborator: executes finished terms.

    Subclasses implement ``_run`` and ``_open_cursor``. The builder performs no
    retries; a transport that wants them implements them itself.
    """

    def __init__(self):
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise TransportError("Connection is closed")

    async def run(self, term: Term, options: Optional[Dict[str, Any]] = None) -> Any:
        """Submit a term and wait for its single settled result."""
        self._check_open()
        logger.debug("Running %s query", term.op)
        return await self._run(term, dict(options or {}))

    def cursor(
        self,
        term: Term,
        options: Optional[Dict[str, Any]] = None,
        decode: Optional[Callable[[Any], Any]] = None,
    ) -> Cursor:
        """Return an unopened cursor for a term; nothing is sent until the first pull."""
        options = dict(options or {})

        async def opener() -> CursorSource:
            self._check_open()
            logger.debug("Opening cursor for %s query", term.op)
            return await self._open_cursor(term, options)

        return Cursor(opener, options.get("batch_size"), decode)

    async def open_cursor(
        self, term: Term, options: Optional[Dict[str, Any]] = None
    ) -> Cursor:
        return await self.cursor(term, options).open()

    async def close(self) -> None:
        self._closed = True

    async def __aenter__(self) -> "Connection":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @abstractmethod
    async def _run(self, term: Term, options: Dict[str, Any]) -> Any:
        """Evaluate a term to one value."""

    @abstractmethod
    async def _open_cursor(self, term: Term, options: Dict[str, Any]) -> CursorSource:
        """Start incremental evaluation of a term."""


_default_connection: Optional[Connection] = None


def set_default_connection(connection: Optional[Connection]) -> None:
    """Use connection for queries run without an explicit one."""
    global _default_connection
    _default_connection = connection


def get_default_connection() -> Connection:
    if _default_connection is None:
        raise TransportError(
            "No connection given and no default connection set. "
            "Pass one to run() or call set_default_connection()."
        )
    return _default_connection
