"""
Document Store - persistence collaborator for the auction engine.

Key Components:
- DocumentStore: Protocol consumed by the engine
- InMemoryDocumentStore: process-local implementation
- SQLiteDocumentStore: aiosqlite implementation with WAL mode
- QueryFilter / OrderBy / where: query building blocks

Usage:
    from territory_auction.services.document_store import SQLiteDocumentStore, where

    store = SQLiteDocumentStore()
    await store.initialize()
    active = await store.query("auctions", [where("status", "==", "active")])
"""

from .memory import InMemoryDocumentStore
from .protocol import DocumentStore, OrderBy, QueryFilter, where
from .sqlite import SQLiteDocumentStore

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "SQLiteDocumentStore",
    "QueryFilter",
    "OrderBy",
    "where",
]
