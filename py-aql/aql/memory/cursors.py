"""Server-side cursor sources: finite results and change feeds."""

import asyncio
import itertools
import logging
from collections import deque
from typing import Any, Deque, Dict, Iterator, List, Optional, Tuple

from ..errors import QueueOverflow, RemoteQueryError
from ..expr.base import encode_value
from ..expr.types import Op
from ..net import CursorSource
from .evaluator import Evaluator, Node, translate_errors
from .storage import MemoryTable
from .values import Seq, first_or_none, materialize, sort_key

logger = logging.getLogger(__name__)


class ResultSource(CursorSource):
    """Hands out the elements of an evaluated (possibly lazy) result."""

    def __init__(self, value: Any, query: Node):
        self._query = query
        if isinstance(value, (list, Seq)):
            self._items: Iterator[Any] = iter(value)
        else:
            self._items = iter([value])

    async def fetch(self, max_items: int) -> Tuple[List[Any], bool]:
        with translate_errors(self._query):
            items = list(itertools.islice(self._items, max_items))
            out = [encode_value(materialize(item)) for item in items]
        return out, len(items) < max_items

    async def close(self) -> None:
        self._items = iter(())


class Subscription:
    """
    Bounded queue of raw (old, new) document changes for one feed.

    When more than queue_size changes are pending, the pending changes are
    dropped and the next pull raises QueueOverflow.
    """

    def __init__(self, table: MemoryTable, queue_size: int, squash: bool = False):
        self.table = table
        self.queue_size = queue_size
        self.squash = squash
        self.overflowed = False
        self._pending: Dict[Any, Tuple[Any, Any]] = {}
        self._counter = itertools.count()
        self._signal = asyncio.Event()

    def __len__(self) -> int:
        return len(self._pending)

    def push(self, old: Optional[Dict[str, Any]], new: Optional[Dict[str, Any]]) -> None:
        if self.overflowed:
            return
        if self.squash:
            key = sort_key(self.table.key_of(new if new is not None else old))
            if key in self._pending:
                first_old, _ = self._pending[key]
                self._pending[key] = (first_old, new)
                return
        else:
            key = next(self._counter)

        if len(self._pending) >= self.queue_size:
            self.overflowed = True
            self._pending.clear()
            logger.warning(
                "Changefeed on %s overflowed its queue of %d changes",
                self.table.qualified_name,
                self.queue_size,
            )
        else:
            self._pending[key] = (old, new)
        self._signal.set()

    async def pull(self) -> List[Tuple[Any, Any]]:
        """Wait for pending changes and take all of them."""
        while not self._pending and not self.overflowed:
            self._signal.clear()
            await self._signal.wait()
        if self.overflowed:
            raise QueueOverflow(self.queue_size)
        changes = list(self._pending.values())
        self._pending.clear()
        return changes


def find_changes(node: Node) -> Optional[List[Node]]:
    """Path from node down to its CHANGES node, or None if there is none."""
    found: List[List[Node]] = []

    def visit(current: Node, path: List[Node]) -> None:
        path = path + [current]
        if current.get("type") == Op.CHANGES:
            found.append(path)
        for arg in current.get("args", []):
            visit(arg, path)

    visit(node, [])
    if len(found) > 1:
        raise RemoteQueryError("Only one changefeed per query is supported", node)
    return found[0] if found else None


def _table_root(node: Node) -> Node:
    root = node
    while root.get("type") != Op.TABLE:
        args = root.get("args", [])
        if not args:
            raise RemoteQueryError("Changefeeds need a selection of a table", node)
        root = args[0]
    return root


class FeedSource(CursorSource):
    """
    Change feed over one table.

    Each document change is turned into {"old_val", "new_val"} by evaluating
    the subscribed selection against just the old and the new document, then
    passed through whatever the query does after changes() (map, filter...).
    Streams unioned with the feed are emitted once, before any change.
    """

    def __init__(self, server: Any, query: Node, path: List[Node]):
        self._server = server
        self._query = query
        self._changes = path[-1]
        self._source = self._changes["args"][0]
        self._table_node = _table_root(self._source)
        options = self._changes.get("options", {})

        with translate_errors(query):
            tables = Evaluator(server).evaluate(self._table_node)
        self._table: MemoryTable = tables.table
        self._subscription = Subscription(
            self._table, options["changefeed_queue_size"], bool(options.get("squash"))
        )

        # Branches of unions on the way down that are not the feed itself
        on_path = {id(n) for n in path}
        self._static_branches: Dict[int, Any] = {
            id(arg): Seq([])
            for n in path
            if n.get("type") == Op.UNION
            for arg in n.get("args", [])
            if id(arg) not in on_path
        }

        self._ready: Deque[Any] = deque()
        self._table.subscribe(self._subscription)
        try:
            initial = self._initial_events() if options.get("include_initial") else []
            self._ready.extend(self._pipeline(initial, with_static=True))
        except Exception:
            self._table.unsubscribe(self._subscription)
            raise

    @property
    def subscription(self) -> Subscription:
        return self._subscription

    def _initial_events(self) -> List[Dict[str, Any]]:
        with translate_errors(self._query):
            value = Evaluator(self._server).evaluate(self._source)
            items = list(value) if isinstance(value, (list, Seq)) else [value]
        return [{"new_val": materialize(v)} for v in items if v is not None]

    def _view(self, doc: Optional[Dict[str, Any]]) -> Any:
        """The subscribed selection evaluated over a single document."""
        if doc is None:
            return None
        only = self._table.restricted([doc])
        overrides = {id(self._table_node): Seq(only.snapshot(), only)}
        with translate_errors(self._query):
            value = Evaluator(self._server, overrides).evaluate(self._source)
            return materialize(first_or_none(value))

    def _event(self, old: Any, new: Any) -> Optional[Dict[str, Any]]:
        old_val, new_val = self._view(old), self._view(new)
        if old_val is None and new_val is None:
            return None
        return {"old_val": old_val, "new_val": new_val}

    def _pipeline(self, events: List[Dict[str, Any]], with_static: bool) -> List[Any]:
        """Run events through the part of the query after changes()."""
        overrides: Dict[int, Any] = {id(self._changes): Seq(events)}
        if not with_static:
            overrides.update(self._static_branches)
        with translate_errors(self._query):
            result = Evaluator(self._server, overrides).evaluate(self._query)
            items = list(result) if isinstance(result, (list, Seq)) else [result]
            return [encode_value(materialize(item)) for item in items]

    async def fetch(self, max_items: int) -> Tuple[List[Any], bool]:
        while not self._ready:
            changes = await self._subscription.pull()
            events = [e for e in (self._event(old, new) for old, new in changes) if e]
            if events:
                self._ready.extend(self._pipeline(events, with_static=False))
        batch = [self._ready.popleft() for _ in range(min(max_items, len(self._ready)))]
        return batch, False

    async def close(self) -> None:
        self._table.unsubscribe(self._subscription)
        self._ready.clear()
