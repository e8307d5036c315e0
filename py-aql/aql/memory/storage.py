"""Databases and tables held by the reference server."""

import logging
from typing import Any, Dict, List, Optional

from ..errors import RemoteQueryError
from .values import NonExistence, sort_key

logger = logging.getLogger(__name__)


class MemoryTable:
    """
    Documents of one table, keyed by primary key, in insertion order.

    Attributes:
        db_name: Name of the owning database
        name: Table name
        primary_key: Primary key field
        indexes: Secondary index name -> indexed fields
    """

    def __init__(self, db_name: str, name: str, primary_key: str = "id"):
        self.db_name = db_name
        self.name = name
        self.primary_key = primary_key
        self.indexes: Dict[str, List[str]] = {}
        self._docs: Dict[Any, Dict[str, Any]] = {}
        self._subscriptions: List[Any] = []

    @property
    def qualified_name(self) -> str:
        return f"{self.db_name}.{self.name}"

    def __len__(self) -> int:
        return len(self._docs)

    def __repr__(self) -> str:
        return f"MemoryTable({self.qualified_name!r}, {len(self)} docs)"

    def snapshot(self) -> List[Dict[str, Any]]:
        """Current documents; later writes do not affect the returned list."""
        return list(self._docs.values())

    def key_of(self, doc: Dict[str, Any]) -> Any:
        return doc.get(self.primary_key)

    def get(self, key: Any) -> Optional[Dict[str, Any]]:
        return self._docs.get(sort_key(key))

    def check_index(self, index: str) -> None:
        if index != self.primary_key and index not in self.indexes:
            raise RemoteQueryError(
                f"Index `{index}` was not found on table `{self.qualified_name}`"
            )

    def index_value(self, doc: Dict[str, Any], index: str) -> Any:
        """
        Value of a document under an index.

        Raises:
            NonExistence: The document lacks an indexed field
        """
        self.check_index(index)
        fields = [index] if index == self.primary_key else self.indexes[index]
        values = []
        for field in fields:
            if doc.get(field) is None:
                raise NonExistence(f"No attribute `{field}` in object")
            values.append(doc[field])
        return values[0] if len(values) == 1 else values

    def put(self, doc: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Insert or overwrite a document and notify subscribers."""
        key = sort_key(self.key_of(doc))
        old = self._docs.get(key)
        self._docs[key] = doc
        self._notify(old, doc)
        return old

    def remove(self, key: Any) -> Optional[Dict[str, Any]]:
        old = self._docs.pop(sort_key(key), None)
        if old is not None:
            self._notify(old, None)
        return old

    def restricted(self, docs: List[Dict[str, Any]]) -> "MemoryTable":
        """Detached copy holding only the given documents (same keys and indexes)."""
        view = MemoryTable(self.db_name, self.name, self.primary_key)
        view.indexes = dict(self.indexes)
        for doc in docs:
            view._docs[sort_key(view.key_of(doc))] = doc
        return view

    def subscribe(self, subscription: Any) -> None:
        self._subscriptions.append(subscription)
        logger.debug("Subscribed to %s (%d active)", self.qualified_name, len(self._subscriptions))

    def unsubscribe(self, subscription: Any) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            logger.debug(
                "Unsubscribed from %s (%d active)", self.qualified_name, len(self._subscriptions)
            )

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def _notify(self, old: Optional[Dict[str, Any]], new: Optional[Dict[str, Any]]) -> None:
        for subscription in list(self._subscriptions):
            subscription.push(old, new)


class MemoryDatabase:
    """A named set of tables."""

    def __init__(self, name: str):
        self.name = name
        self.tables: Dict[str, MemoryTable] = {}

    def table(self, name: str) -> MemoryTable:
        try:
            return self.tables[name]
        except KeyError:
            raise RemoteQueryError(f"Table `{self.name}.{name}` does not exist") from None

    def __repr__(self) -> str:
        return f"MemoryDatabase({self.name!r}, tables={sorted(self.tables)})"
