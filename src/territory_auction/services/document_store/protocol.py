"""
Document Store Protocol Interface.

Defines the document-style persistence interface the auction engine consumes.
Collections hold JSON-compatible dicts keyed by document id; queries support
simple field comparisons, an optional ordering and an optional limit.

Implementations:
- InMemoryDocumentStore: process-local, used by tests and the library default
- SQLiteDocumentStore: aiosqlite with WAL mode, shared between processes
"""

from __future__ import annotations

import re
from abc import abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal, Protocol, runtime_checkable

# =============================================================================
# Data Classes
# =============================================================================

FilterOp = Literal["==", "!=", "<", "<=", ">", ">=", "in"]

FILTER_OPS: frozenset[str] = frozenset(("==", "!=", "<", "<=", ">", ">=", "in"))

_FIELD_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


@dataclass(frozen=True)
class QueryFilter:
    """A single `field op value` condition. Dotted fields address nested keys."""

    field: str
    op: FilterOp
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter operator: {self.op}")
        if not _FIELD_PATTERN.match(self.field):
            raise ValueError(f"Invalid field name: {self.field!r}")
        if self.op == "in" and not isinstance(self.value, (list, tuple, set, frozenset)):
            raise ValueError("'in' filter requires a collection value")


@dataclass(frozen=True)
class OrderBy:
    """Sort specification for query results."""

    field: str
    descending: bool = False

    def __post_init__(self) -> None:
        if not _FIELD_PATTERN.match(self.field):
            raise ValueError(f"Invalid field name: {self.field!r}")


def where(field: str, op: FilterOp, value: Any) -> QueryFilter:
    """Shorthand constructor: where("status", "==", "active")."""
    return QueryFilter(field, op, value)


def resolve_field(doc: dict[str, Any], field: str) -> Any:
    """Return the value at a dotted path, or None if any segment is missing."""
    current: Any = doc
    for part in field.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def matches(doc: dict[str, Any], condition: QueryFilter) -> bool:
    """
    Evaluate a filter against a document.

    Ordering comparisons against a missing (None) value never match.
    """
    actual = resolve_field(doc, condition.field)
    op = condition.op
    if op == "==":
        return actual == condition.value
    if op == "!=":
        return actual != condition.value
    if op == "in":
        return actual in condition.value
    if actual is None or condition.value is None:
        return False
    try:
        if op == "<":
            return actual < condition.value
        if op == "<=":
            return actual <= condition.value
        if op == ">":
            return actual > condition.value
        return actual >= condition.value
    except TypeError:
        return False


# =============================================================================
# Protocol Interface
# =============================================================================


@runtime_checkable
class DocumentStore(Protocol):
    """
    Abstract interface for document persistence.

    All methods raise TransientIOError when the backing store fails.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Fetch a document, or None if it does not exist."""
        ...

    @abstractmethod
    async def set(self, collection: str, doc_id: str, doc: dict[str, Any]) -> None:
        """Create or fully replace a document."""
        ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, patch: dict[str, Any]) -> None:
        """
        Shallow-merge fields into an existing document.

        Raises:
            NotFoundError: If the document does not exist
        """
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Sequence[QueryFilter] = (),
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return documents matching every filter."""
        ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document. Returns True if it existed."""
        ...
