"""
Pytest configuration for BGG Rank Sync.

Provides fixtures for:
- An in-memory document store / job ledger for unit tests
- Settings with test-friendly overrides
- Writing small ranks CSV files
"""

from __future__ import annotations

import csv
import itertools
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type

import pytest

from ranksync.config import Settings
from ranksync.domain.errors import StoreError, StoreUnavailable, StoreWriteError
from ranksync.store.abstract import BulkWriteCounts, UpsertOp, strip_storage_id

CSV_HEADER = [
    "id",
    "name",
    "yearpublished",
    "rank",
    "bayesaverage",
    "average",
    "usersrated",
    "is_expansion",
    "abstracts_rank",
]


@dataclass
class Fault:
    method: str
    collection: Optional[str]
    remaining: int
    skip: int
    error: Type[StoreError]


class InMemoryStore:
    """
    Dict-backed store implementing DocumentStore and JobLedger.

    `fail_on` injects failures into named methods; `calls` records every
    store call as `(method, collection)`.
    """

    def __init__(self, supports_atomic_swap: bool = True) -> None:
        self.supports_atomic_swap = supports_atomic_swap
        self.collections: Dict[str, List[Dict[str, Any]]] = {}
        self.leases: Dict[str, str] = {}
        self.job_status: Dict[str, Dict[str, Any]] = {}
        self.job_logs: List[Dict[str, Any]] = []
        self.metadata: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.ping_ok = True
        self.ping_count = 0
        self._faults: List[Fault] = []
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    # -- test helpers ---------------------------------------------------------

    def fail_on(
        self,
        method: str,
        *,
        collection: Optional[str] = None,
        times: int = 1,
        after: int = 0,
        error: Type[StoreError] = StoreUnavailable,
    ) -> None:
        """Make the next `times` matching calls raise, after `after` matching calls succeed."""
        self._faults.append(Fault(method, collection, times, after, error))

    def seed(self, name: str, documents: Sequence[Mapping[str, Any]]) -> None:
        self.collections.setdefault(name, [])
        for document in documents:
            self.collections[name].append({"_id": next(self._ids), **document})

    def documents(self, name: str) -> List[Dict[str, Any]]:
        return [strip_storage_id(doc) for doc in self.collections.get(name, [])]

    def names(self, name: str) -> List[str]:
        return [doc.get("name") for doc in self.collections.get(name, [])]

    def _record(self, method: str, collection: Optional[str] = None) -> None:
        self.calls.append((method, collection))
        for fault in self._faults:
            if fault.method != method or fault.remaining <= 0:
                continue
            if fault.collection is not None and fault.collection != collection:
                continue
            if fault.skip > 0:
                fault.skip -= 1
                continue
            fault.remaining -= 1
            raise fault.error(f"injected failure in {method}({collection})")

    # -- DocumentStore --------------------------------------------------------

    def ensure_collection(self, name: str) -> None:
        with self._lock:
            self._record("ensure_collection", name)
            self.collections.setdefault(name, [])

    def find_all(self, name: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._record("find_all", name)
            return [dict(doc) for doc in self.collections.get(name, [])]

    def bulk_upsert(self, name: str, operations: Sequence[UpsertOp], ordered: bool = True) -> BulkWriteCounts:
        with self._lock:
            self._record("bulk_upsert", name)
            working = [dict(doc) for doc in self.collections.setdefault(name, [])]
            by_id = {doc["id"]: doc for doc in working}
            inserted = updated = 0
            for op in operations:
                existing = by_id.get(op.key)
                if existing is None:
                    doc = {"_id": next(self._ids), "id": op.key, **op.set_on_insert, **op.set_fields}
                    working.append(doc)
                    by_id[op.key] = doc
                    inserted += 1
                else:
                    for field_name in op.unset:
                        existing.pop(field_name, None)
                    existing.update(op.set_fields)
                    updated += 1
            self.collections[name] = working
            return BulkWriteCounts(inserted=inserted, updated=updated)

    def insert_many(self, name: str, documents: Sequence[Mapping[str, Any]], ordered: bool = True) -> int:
        with self._lock:
            self._record("insert_many", name)
            target = self.collections.setdefault(name, [])
            existing_ids = {doc["id"] for doc in target}
            for document in documents:
                if document["id"] in existing_ids:
                    raise StoreWriteError(f"duplicate id {document['id']} in '{name}'")
                existing_ids.add(document["id"])
                target.append({"_id": next(self._ids), **strip_storage_id(document)})
            return len(documents)

    def delete_all(self, name: str) -> int:
        with self._lock:
            self._record("delete_all", name)
            removed = len(self.collections.get(name, []))
            self.collections[name] = []
            return removed

    def drop_collection(self, name: str) -> None:
        with self._lock:
            self._record("drop_collection", name)
            self.collections.pop(name, None)

    def swap_collection(self, staging: str, target: str) -> None:
        with self._lock:
            self._record("swap_collection", target)
            self.collections[target] = self.collections.pop(staging)

    def ping(self) -> bool:
        self.ping_count += 1
        return self.ping_ok

    def try_acquire_lease(self, key: str, owner: str, ttl_seconds: int) -> bool:
        with self._lock:
            self._record("try_acquire_lease", key)
            holder = self.leases.get(key)
            if holder is not None and holder != owner:
                return False
            self.leases[key] = owner
            return True

    def release_lease(self, key: str, owner: str) -> None:
        with self._lock:
            self._record("release_lease", key)
            if self.leases.get(key) == owner:
                del self.leases[key]

    # -- JobLedger ------------------------------------------------------------

    def update_job_status(self, job_id: str, status: str, details: Optional[Mapping[str, Any]] = None) -> None:
        self._record("update_job_status", job_id)
        current = self.job_status.setdefault(job_id, {"job_id": job_id})
        current.update(details or {})
        current["status"] = status

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        self._record("get_job_status", job_id)
        return self.job_status.get(job_id)

    def log_job_execution(self, entry: Mapping[str, Any]) -> None:
        self._record("log_job_execution")
        self.job_logs.append(dict(entry))

    def update_source_metadata(self, file_name: str, record_count: int, processed_at: datetime) -> None:
        self._record("update_source_metadata", file_name)
        self.metadata[file_name] = {
            "file_name": file_name,
            "record_count": record_count,
            "last_processed": processed_at,
            "source": "bgg_data_dump",
        }


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def copy_back_store() -> InMemoryStore:
    """Store without atomic swap; the reindexer falls back to delete + refill."""
    return InMemoryStore(supports_atomic_swap=False)


@pytest.fixture
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Small batches so a handful of rows spans several of them, and no wait
    between write attempts.
    """
    return Settings(
        batch_size=2,
        write_retry_wait_seconds=0,
        write_workers=1,
        reindex_batch_size=2,
        lease_enabled=True,
        log_level="DEBUG",
    )


CsvWriter = Callable[..., Path]


@pytest.fixture
def write_csv(tmp_path: Path) -> CsvWriter:
    """
    Write rows (dicts keyed by CSV header) to a ranks file and return its path.
    """
    counter = itertools.count(1)

    def _write(rows: Sequence[Mapping[str, Any]], name: Optional[str] = None) -> Path:
        path = tmp_path / (name or f"boardgames_ranks_{next(counter)}.csv")
        with path.open("w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_HEADER, extrasaction="ignore")
            writer.writeheader()
            for row in rows:
                writer.writerow({key: "" if value is None else value for key, value in row.items()})
        return path

    return _write


def game_row(game_id: int, name: str, **fields: Any) -> Dict[str, Any]:
    """CSV row with plausible defaults; keyword arguments use CSV header names."""
    row: Dict[str, Any] = {
        "id": game_id,
        "name": name,
        "yearpublished": 2020,
        "rank": game_id,
        "bayesaverage": "7.10000",
        "average": "7.50000",
        "usersrated": 1000,
        "is_expansion": 0,
        "abstracts_rank": "",
    }
    row.update(fields)
    return row


@pytest.fixture
def make_row() -> Callable[..., Dict[str, Any]]:
    return game_row
