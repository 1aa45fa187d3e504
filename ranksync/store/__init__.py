"""
Store package for BGG Rank Sync.

Centralizes persistence concerns: the store protocol the engine consumes,
the Postgres implementation and the connection pool factory. Keep this
layer focused on I/O, decoupled from diff/write/reindex logic.
"""

from ranksync.store.abstract import BulkWriteCounts, DocumentStore, JobLedger, UpsertOp, strip_storage_id
from ranksync.store.db_factory import build_dsn, get_sync_connection, get_sync_pool
from ranksync.store.postgres import PostgresDocumentStore, build_store

__all__ = [
    "BulkWriteCounts",
    "DocumentStore",
    "JobLedger",
    "PostgresDocumentStore",
    "UpsertOp",
    "build_dsn",
    "build_store",
    "get_sync_connection",
    "get_sync_pool",
    "strip_storage_id",
]
