"""Connection that executes queries against an in-process MemoryServer."""

import asyncio
import json
from typing import Any, Dict, Optional

from ..expr.base import Term
from ..net import Connection, CursorSource
from .server import MemoryServer


def _to_wire(term: Term) -> Dict[str, Any]:
    """Serialize a term exactly as a network transport would send it."""
    return json.loads(json.dumps(term.serialize()))


class MemoryConnection(Connection):
    """
    Connection to a MemoryServer living in the same process.

    Every query is JSON-encoded and decoded on its way to the server, so only
    what ``Term.serialize()`` carries reaches it.

    Args:
        server: Server to talk to. A fresh, empty one is created if omitted.

    Example:
        >>> conn = MemoryConnection()
        >>> await create_database("shop").run(conn)
    """

    def __init__(self, server: Optional[MemoryServer] = None):
        super().__init__()
        self.server = server if server is not None else MemoryServer()

    async def _run(self, term: Term, options: Dict[str, Any]) -> Any:
        query = _to_wire(term)
        await asyncio.sleep(0)
        return self.server.run(query)

    async def _open_cursor(self, term: Term, options: Dict[str, Any]) -> CursorSource:
        query = _to_wire(term)
        await asyncio.sleep(0)
        return self.server.open(query)
