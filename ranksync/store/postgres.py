"""
PostgreSQL implementation of the document store and job ledger.

Every collection is a table:

    _id  BIGINT IDENTITY  -- storage-assigned, defines natural order
    id   BIGINT UNIQUE    -- record natural key
    doc  JSONB            -- the document (timestamps as ISO strings)

Natural order is `ORDER BY _id`, so reinserting documents in sorted order
is what the reindexer relies on for paged listing. DDL is transactional in
Postgres, which makes `swap_collection` atomic.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Type

import psycopg
from psycopg import sql
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool, PoolTimeout

from ranksync.config import Settings, get_settings
from ranksync.domain.errors import StoreError, StoreUnavailable, StoreWriteError
from ranksync.domain.models import STORAGE_ID_FIELD
from ranksync.store.abstract import BulkWriteCounts, UpsertOp, strip_storage_id
from ranksync.store.db_factory import get_sync_pool
from ranksync.utils.logging import get_logger

log = get_logger(__name__)

_TIMESTAMP_FIELDS = ("date_created", "date_updated")

_CREATE_COLLECTION = """
CREATE TABLE IF NOT EXISTS {table} (
    _id BIGINT GENERATED BY DEFAULT AS IDENTITY,
    id BIGINT NOT NULL,
    doc JSONB NOT NULL,
    CONSTRAINT {pkey} PRIMARY KEY (_id),
    CONSTRAINT {id_key} UNIQUE (id)
)
"""

_UPSERT = """
INSERT INTO {table} AS t (id, doc) VALUES (%(id)s, %(doc)s)
ON CONFLICT (id) DO UPDATE
SET doc = (t.doc - %(unset)s::text[]) || (EXCLUDED.doc - %(insert_only)s::text[])
RETURNING (xmax = 0) AS inserted
"""

_ACQUIRE_LEASE = """
INSERT INTO sync_leases (key, owner, expires_at, acquired_at)
VALUES (%s, %s, now() + make_interval(secs => %s), now())
ON CONFLICT (key) DO UPDATE
SET owner = EXCLUDED.owner, expires_at = EXCLUDED.expires_at, acquired_at = EXCLUDED.acquired_at
WHERE sync_leases.expires_at < now() OR sync_leases.owner = EXCLUDED.owner
RETURNING owner
"""


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(obj: Any) -> str:
    return json.dumps(obj, default=_json_default)


def _encode(document: Mapping[str, Any]) -> Jsonb:
    return Jsonb(strip_storage_id(document), dumps=_dumps)


def _decode(storage_id: int, doc: Dict[str, Any]) -> Dict[str, Any]:
    for name in _TIMESTAMP_FIELDS:
        value = doc.get(name)
        if isinstance(value, str):
            doc[name] = datetime.fromisoformat(value)
    doc[STORAGE_ID_FIELD] = storage_id
    return doc


def _constraint_names(table: str) -> Dict[str, sql.Identifier]:
    return {
        "pkey": sql.Identifier(f"{table}_pkey"),
        "id_key": sql.Identifier(f"{table}_id_key"),
    }


class PostgresDocumentStore:
    """
    Document store over a psycopg connection pool.

    Each public call runs in its own transaction: the pool commits when the
    `connection()` block exits cleanly and rolls back otherwise.
    """

    supports_atomic_swap: bool = True

    def __init__(self, pool: ConnectionPool, metadata_table: str = "data_updates") -> None:
        self._pool = pool
        self._metadata_table = metadata_table

    @contextmanager
    def _translated(self, action: str, error_cls: Type[StoreError] = StoreError) -> Iterator[None]:
        try:
            yield
        except PoolTimeout as exc:
            raise StoreUnavailable(f"{action}: timed out waiting for a connection") from exc
        except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
            raise StoreUnavailable(f"{action}: {exc}") from exc
        except psycopg.Error as exc:
            raise error_cls(f"{action}: {exc}") from exc

    # -- schema ---------------------------------------------------------------

    def ensure_schema(self) -> None:
        """Create the lease and ledger tables."""
        statements = [
            """
            CREATE TABLE IF NOT EXISTS sync_leases (
                key TEXT PRIMARY KEY,
                owner TEXT NOT NULL,
                expires_at TIMESTAMPTZ NOT NULL,
                acquired_at TIMESTAMPTZ NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS job_status (
                job_id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                details JSONB NOT NULL DEFAULT '{}'::jsonb,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS job_logs (
                _id BIGINT GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY,
                job_type TEXT,
                status TEXT,
                entry JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """,
        ]
        metadata = sql.SQL(
            """
            CREATE TABLE IF NOT EXISTS {table} (
                file_name TEXT PRIMARY KEY,
                record_count INTEGER NOT NULL,
                last_processed TIMESTAMPTZ NOT NULL,
                source TEXT NOT NULL
            )
            """
        ).format(table=sql.Identifier(self._metadata_table))
        with self._translated("ensure schema"), self._pool.connection() as conn:
            for statement in statements:
                conn.execute(statement)
            conn.execute(metadata)

    def ensure_collection(self, name: str) -> None:
        stmt = sql.SQL(_CREATE_COLLECTION).format(table=sql.Identifier(name), **_constraint_names(name))
        with self._translated(f"ensure collection '{name}'"), self._pool.connection() as conn:
            conn.execute(stmt)

    # -- documents ------------------------------------------------------------

    def find_all(self, name: str) -> List[Dict[str, Any]]:
        stmt = sql.SQL("SELECT _id, doc FROM {table} ORDER BY _id").format(table=sql.Identifier(name))
        with self._translated(f"read '{name}'"), self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(stmt)
                return [_decode(storage_id, doc) for storage_id, doc in cur.fetchall()]

    def bulk_upsert(self, name: str, operations: Sequence[UpsertOp], ordered: bool = True) -> BulkWriteCounts:
        if not operations:
            return BulkWriteCounts(inserted=0, updated=0)
        stmt = sql.SQL(_UPSERT).format(table=sql.Identifier(name))
        params = [self._upsert_params(op) for op in operations]

        if ordered:
            with self._translated(f"bulk upsert into '{name}'", StoreWriteError), self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.executemany(stmt, params, returning=True)
                    inserted = 0
                    while True:
                        row = cur.fetchone()
                        if row is not None and row[0]:
                            inserted += 1
                        if not cur.nextset():
                            break
            return BulkWriteCounts(inserted=inserted, updated=len(params) - inserted)

        inserted = updated = 0
        failures: List[str] = []
        with self._translated(f"bulk upsert into '{name}'", StoreWriteError), self._pool.connection() as conn:
            for op, param in zip(operations, params):
                try:
                    with conn.transaction(), conn.cursor() as cur:
                        cur.execute(stmt, param)
                        row = cur.fetchone()
                except (psycopg.DataError, psycopg.IntegrityError) as exc:
                    failures.append(f"id={op.key}: {exc}")
                    continue
                if row is not None and row[0]:
                    inserted += 1
                else:
                    updated += 1
        if failures:
            raise StoreWriteError(
                f"bulk upsert into '{name}': {len(failures)} of {len(operations)} operations failed; "
                f"first: {failures[0]}"
            )
        return BulkWriteCounts(inserted=inserted, updated=updated)

    @staticmethod
    def _upsert_params(op: UpsertOp) -> Dict[str, Any]:
        document = {**op.set_on_insert, **op.set_fields, "id": op.key}
        return {
            "id": op.key,
            "doc": _encode(document),
            "unset": list(op.unset),
            "insert_only": [key for key in op.set_on_insert if key not in op.set_fields],
        }

    def insert_many(self, name: str, documents: Sequence[Mapping[str, Any]], ordered: bool = True) -> int:
        if not documents:
            return 0
        stmt = sql.SQL("INSERT INTO {table} (id, doc) VALUES (%s, %s)").format(table=sql.Identifier(name))
        params = [(doc["id"], _encode(doc)) for doc in documents]
        with self._translated(f"insert into '{name}'", StoreWriteError), self._pool.connection() as conn:
            with conn.cursor() as cur:
                if ordered:
                    cur.executemany(stmt, params)
                    return len(params)
                inserted = 0
                for param in params:
                    try:
                        with conn.transaction():
                            cur.execute(stmt, param)
                    except psycopg.IntegrityError as exc:
                        log.warning(f"Skipped duplicate document in '{name}'", extra={"error": str(exc)})
                        continue
                    inserted += 1
                return inserted

    def delete_all(self, name: str) -> int:
        stmt = sql.SQL("DELETE FROM {table}").format(table=sql.Identifier(name))
        with self._translated(f"delete from '{name}'", StoreWriteError), self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(stmt)
                return cur.rowcount

    def drop_collection(self, name: str) -> None:
        stmt = sql.SQL("DROP TABLE IF EXISTS {table}").format(table=sql.Identifier(name))
        with self._translated(f"drop '{name}'", StoreWriteError), self._pool.connection() as conn:
            conn.execute(stmt)

    def swap_collection(self, staging: str, target: str) -> None:
        staging_names = _constraint_names(staging)
        target_names = _constraint_names(target)
        statements = [
            sql.SQL("DROP TABLE IF EXISTS {target}").format(target=sql.Identifier(target)),
            sql.SQL("ALTER TABLE {staging} RENAME TO {target}").format(
                staging=sql.Identifier(staging), target=sql.Identifier(target)
            ),
        ]
        for key in ("pkey", "id_key"):
            statements.append(
                sql.SQL("ALTER TABLE {target} RENAME CONSTRAINT {old} TO {new}").format(
                    target=sql.Identifier(target), old=staging_names[key], new=target_names[key]
                )
            )
        with self._translated(f"swap '{staging}' into '{target}'", StoreWriteError), self._pool.connection() as conn:
            for statement in statements:
                conn.execute(statement)

    def ping(self) -> bool:
        try:
            self._pool.check()
            with self._pool.connection(timeout=5.0) as conn:
                conn.execute("SELECT 1")
            return True
        except (psycopg.Error, PoolTimeout) as exc:
            log.warning("Store ping failed", extra={"error": str(exc)})
            return False

    # -- lease ----------------------------------------------------------------

    def try_acquire_lease(self, key: str, owner: str, ttl_seconds: int) -> bool:
        with self._translated(f"acquire lease '{key}'"), self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_ACQUIRE_LEASE, (key, owner, ttl_seconds))
                return cur.fetchone() is not None

    def release_lease(self, key: str, owner: str) -> None:
        with self._translated(f"release lease '{key}'"), self._pool.connection() as conn:
            conn.execute("DELETE FROM sync_leases WHERE key = %s AND owner = %s", (key, owner))

    # -- job ledger -----------------------------------------------------------

    def update_job_status(self, job_id: str, status: str, details: Optional[Mapping[str, Any]] = None) -> None:
        with self._translated(f"update job status '{job_id}'"), self._pool.connection() as conn:
            conn.execute(
                """
                INSERT INTO job_status (job_id, status, details, updated_at)
                VALUES (%s, %s, %s, now())
                ON CONFLICT (job_id) DO UPDATE
                SET status = EXCLUDED.status,
                    details = job_status.details || EXCLUDED.details,
                    updated_at = now()
                """,
                (job_id, status, Jsonb(dict(details or {}), dumps=_dumps)),
            )

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._translated(f"read job status '{job_id}'"), self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT job_id, status, details, created_at, updated_at FROM job_status WHERE job_id = %s",
                    (job_id,),
                )
                row = cur.fetchone()
        if row is None:
            return None
        job, status, details, created_at, updated_at = row
        return {"job_id": job, "status": status, "created_at": created_at, "updated_at": updated_at, **details}

    def log_job_execution(self, entry: Mapping[str, Any]) -> None:
        with self._translated("log job execution"), self._pool.connection() as conn:
            conn.execute(
                "INSERT INTO job_logs (job_type, status, entry) VALUES (%s, %s, %s)",
                (entry.get("job_type"), entry.get("status"), Jsonb(dict(entry), dumps=_dumps)),
            )

    def update_source_metadata(self, file_name: str, record_count: int, processed_at: datetime) -> None:
        stmt = sql.SQL(
            """
            INSERT INTO {table} (file_name, record_count, last_processed, source)
            VALUES (%s, %s, %s, 'bgg_data_dump')
            ON CONFLICT (file_name) DO UPDATE
            SET record_count = EXCLUDED.record_count, last_processed = EXCLUDED.last_processed
            """
        ).format(table=sql.Identifier(self._metadata_table))
        with self._translated(f"update metadata for '{file_name}'"), self._pool.connection() as conn:
            conn.execute(stmt, (file_name, record_count, processed_at))


def build_store(settings: Optional[Settings] = None) -> PostgresDocumentStore:
    """
    Pool-backed store with lease and ledger tables in place.
    """
    settings = settings or get_settings()
    store = PostgresDocumentStore(get_sync_pool(settings), metadata_table=settings.metadata_collection)
    store.ensure_schema()
    return store


__all__ = ["PostgresDocumentStore", "build_store"]
