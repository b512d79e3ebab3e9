"""
In-memory Implementation of Document Store.

Process-local and non-durable. Documents are deep-copied on the way in and
out so callers can never mutate stored state by accident.
"""

from __future__ import annotations

import copy
from collections.abc import Sequence
from typing import Any

from ...core.errors import NotFoundError
from .protocol import OrderBy, QueryFilter, matches, resolve_field


class InMemoryDocumentStore:
    """Dict-backed DocumentStore with the same semantics as SQLiteDocumentStore."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, collection: str, doc_id: str, doc: dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(doc)

    async def update(self, collection: str, doc_id: str, patch: dict[str, Any]) -> None:
        existing = self._collections.get(collection, {}).get(doc_id)
        if existing is None:
            raise NotFoundError(f"Document not found: {collection}/{doc_id}")
        existing.update(copy.deepcopy(patch))

    async def query(
        self,
        collection: str,
        filters: Sequence[QueryFilter] = (),
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        docs = [
            doc
            for doc in self._collections.get(collection, {}).values()
            if all(matches(doc, f) for f in filters)
        ]

        if order_by is not None:
            # Missing values sort first, as NULLs do in SQLite
            docs.sort(
                key=lambda d: (
                    resolve_field(d, order_by.field) is not None,
                    resolve_field(d, order_by.field),
                ),
                reverse=order_by.descending,
            )

        if limit is not None:
            docs = docs[:limit]

        return [copy.deepcopy(doc) for doc in docs]

    async def delete(self, collection: str, doc_id: str) -> bool:
        return self._collections.get(collection, {}).pop(doc_id, None) is not None

    def count(self, collection: str) -> int:
        """Number of documents in a collection (test helper)."""
        return len(self._collections.get(collection, {}))
