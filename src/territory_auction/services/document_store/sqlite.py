"""
SQLite Implementation of Document Store.

Stores every collection in one `documents` table with the body as JSON text.
Filters are evaluated with json_extract so the engine can ask for, say, every
ACTIVE auction for a territory without loading the collection.

Uses WAL mode so a CLI process and a long-running sweeper can share the file.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import aiosqlite

from ...core.errors import NotFoundError, TransientIOError
from ...core.logging import get_logger
from ...core.retry import store_retry
from .protocol import OrderBy, QueryFilter

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    doc_id TEXT NOT NULL,
    body TEXT NOT NULL,
    updated_at INTEGER NOT NULL,
    PRIMARY KEY (collection, doc_id)
);
CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection);
"""

_COMPARISON_SQL = {
    "==": "IS",
    "!=": "IS NOT",
    "<": "<",
    "<=": "<=",
    ">": ">",
    ">=": ">=",
}


def _json_path(field: str) -> str:
    return "$." + field


def _build_where(collection: str, filters: Sequence[QueryFilter]) -> tuple[str, list[Any]]:
    clauses = ["collection = ?"]
    params: list[Any] = [collection]
    for condition in filters:
        if condition.op == "in":
            values = list(condition.value)
            if not values:
                clauses.append("0")
                continue
            placeholders = ", ".join("?" for _ in values)
            clauses.append(f"json_extract(body, ?) IN ({placeholders})")
            params.append(_json_path(condition.field))
            params.extend(values)
        else:
            clauses.append(f"json_extract(body, ?) {_COMPARISON_SQL[condition.op]} ?")
            params.append(_json_path(condition.field))
            params.append(condition.value)
    return " AND ".join(clauses), params


class SQLiteDocumentStore:
    """
    SQLite implementation of DocumentStore.

    Connection configuration:
        PRAGMA journal_mode=WAL
        PRAGMA busy_timeout=5000
        PRAGMA synchronous=NORMAL
    """

    def __init__(self, db_path: Path | str | None = None):
        """
        Initialize the store.

        Args:
            db_path: Path to database file. Defaults to {instance_root}/cache/auctions.db.
        """
        if db_path is None:
            from ...core.config import get_settings

            db_path = get_settings().db_path

        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None
        # update() is read-modify-write on a shared connection
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """
        Open the database and create the schema if needed.

        Must be called before any other operations.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA busy_timeout=5000")
        await self._db.execute("PRAGMA synchronous=NORMAL")
        await self._db.executescript(SCHEMA)
        await self._db.commit()

        self._db.row_factory = aiosqlite.Row

        logger.info("Document store initialized: %s", self.db_path)

    async def close(self) -> None:
        """Close the store and release resources."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Document store closed")

    @property
    def db(self) -> aiosqlite.Connection:
        """Get the database connection, raising if not initialized."""
        if self._db is None:
            raise RuntimeError("Store not initialized. Call initialize() first.")
        return self._db

    async def __aenter__(self) -> SQLiteDocumentStore:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # DocumentStore Operations
    # -------------------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        try:
            return await self._get(collection, doc_id)
        except sqlite3.Error as e:
            raise TransientIOError(f"Failed to read {collection}/{doc_id}: {e}", e) from e

    async def set(self, collection: str, doc_id: str, doc: dict[str, Any]) -> None:
        try:
            async with self._write_lock:
                await self._put(collection, doc_id, doc)
        except sqlite3.Error as e:
            raise TransientIOError(f"Failed to write {collection}/{doc_id}: {e}", e) from e

    async def update(self, collection: str, doc_id: str, patch: dict[str, Any]) -> None:
        try:
            async with self._write_lock:
                existing = await self._get(collection, doc_id)
                if existing is None:
                    raise NotFoundError(f"Document not found: {collection}/{doc_id}")
                existing.update(patch)
                await self._put(collection, doc_id, existing)
        except sqlite3.Error as e:
            raise TransientIOError(f"Failed to update {collection}/{doc_id}: {e}", e) from e

    async def query(
        self,
        collection: str,
        filters: Sequence[QueryFilter] = (),
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        where_sql, params = _build_where(collection, filters)
        sql = f"SELECT body FROM documents WHERE {where_sql}"
        if order_by is not None:
            direction = "DESC" if order_by.descending else "ASC"
            sql += f" ORDER BY json_extract(body, ?) {direction}"
            params.append(_json_path(order_by.field))
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        try:
            rows = await self._fetchall(sql, params)
        except sqlite3.Error as e:
            raise TransientIOError(f"Failed to query {collection}: {e}", e) from e
        return [json.loads(row["body"]) for row in rows]

    async def delete(self, collection: str, doc_id: str) -> bool:
        try:
            async with self._write_lock:
                return await self._delete(collection, doc_id)
        except sqlite3.Error as e:
            raise TransientIOError(f"Failed to delete {collection}/{doc_id}: {e}", e) from e

    # -------------------------------------------------------------------------
    # Statement helpers (retried on lock contention)
    # -------------------------------------------------------------------------

    @store_retry()
    async def _get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute(
            "SELECT body FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return json.loads(row["body"]) if row else None

    @store_retry()
    async def _put(self, collection: str, doc_id: str, doc: dict[str, Any]) -> None:
        await self.db.execute(
            """
            INSERT INTO documents (collection, doc_id, body, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(collection, doc_id) DO UPDATE SET
                body = excluded.body,
                updated_at = excluded.updated_at
            """,
            (collection, doc_id, json.dumps(doc), int(time.time())),
        )
        await self.db.commit()

    @store_retry()
    async def _delete(self, collection: str, doc_id: str) -> bool:
        cursor = await self.db.execute(
            "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        )
        await self.db.commit()
        return cursor.rowcount > 0

    @store_retry()
    async def _fetchall(self, sql: str, params: list[Any]) -> list[aiosqlite.Row]:
        cursor = await self.db.execute(sql, params)
        rows = await cursor.fetchall()
        await cursor.close()
        return list(rows)
