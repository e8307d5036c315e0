"""Result records returned by the execution layer.

These are plain data decoded from the server's response, not part of any
expression tree.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Generic, List, Optional, TypeVar

from .errors import ConflictError, RemoteQueryError

T = TypeVar("T")

DUPLICATE_KEY_PREFIX = "Duplicate primary key"


def _known(cls: type, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class ValueChange(Generic[T]):
    """One change event of a feed, or one entry of a write's return_changes."""

    old_val: Optional[T] = None
    new_val: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValueChange[T]":
        return cls(**_known(cls, data))


@dataclass
class WriteResult(Generic[T]):
    """
    Outcome of insert/update/replace/delete.

    A batched write can partially succeed, so per-document failures are
    reported here (``errors`` and ``first_error``) rather than raised.
    Call raise_for_errors() to turn them into an exception.
    """

    inserted: int = 0
    replaced: int = 0
    unchanged: int = 0
    skipped: int = 0
    deleted: int = 0
    errors: int = 0
    first_error: Optional[str] = None
    generated_keys: List[Any] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    changes: List[ValueChange[T]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WriteResult[T]":
        values = _known(cls, data)
        values["changes"] = [
            c if isinstance(c, ValueChange) else ValueChange.from_dict(c)
            for c in data.get("changes", [])
        ]
        return cls(**values)

    @property
    def ok(self) -> bool:
        return self.errors == 0

    def raise_for_errors(self) -> "WriteResult[T]":
        """
        Raise if any document failed.

        Raises:
            ConflictError: The first error is a primary key collision
            RemoteQueryError: Any other reported failure
        """
        if self.errors:
            message = self.first_error or f"{self.errors} write errors"
            if message.startswith(DUPLICATE_KEY_PREFIX):
                raise ConflictError(message)
            raise RemoteQueryError(message)
        return self


@dataclass
class IndexChange:
    created: int = 0
    renamed: int = 0
    dropped: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexChange":
        return cls(**_known(cls, data))


@dataclass
class TableChange:
    tables_created: int = 0
    tables_dropped: int = 0
    config_changes: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableChange":
        return cls(**_known(cls, data))


@dataclass
class DatabaseChange:
    tables_dropped: int = 0
    dbs_created: int = 0
    dbs_dropped: int = 0
    config_changes: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatabaseChange":
        return cls(**_known(cls, data))
