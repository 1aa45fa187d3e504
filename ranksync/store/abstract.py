"""
Store interfaces consumed by the sync engine.

The engine never opens connections; it receives a ready `DocumentStore`
handle. Implementations raise `StoreUnavailable` for connectivity problems
and `StoreWriteError` for rejected writes so the batch writer can decide
what to retry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, TypedDict, runtime_checkable

from ranksync.domain.models import STORAGE_ID_FIELD


@dataclass(frozen=True)
class UpsertOp:
    """
    Upsert-by-id for one document.

    `set_fields` is written on both paths, `set_on_insert` only when the
    document is created, and `unset` keys are removed on update.
    """

    key: int
    set_fields: Mapping[str, Any]
    set_on_insert: Mapping[str, Any] = field(default_factory=dict)
    unset: Tuple[str, ...] = ()


class BulkWriteCounts(TypedDict):
    """Outcome of one `bulk_upsert` call."""

    inserted: int
    updated: int


@runtime_checkable
class DocumentStore(Protocol):
    """
    Collection-oriented store the engine writes to.

    Attributes
    ----------
    supports_atomic_swap : bool
        Whether `swap_collection` replaces a collection in one atomic step.
    """

    supports_atomic_swap: bool

    def ensure_collection(self, name: str) -> None:
        """Create the collection if it does not exist."""
        ...

    def find_all(self, name: str) -> List[Dict[str, Any]]:
        """Every document in natural (insertion) order, `_id` included."""
        ...

    def bulk_upsert(self, name: str, operations: Sequence[UpsertOp], ordered: bool = True) -> BulkWriteCounts:
        """
        Apply upserts keyed by `id`.

        With `ordered=True` the first failure stops the call and nothing from
        the call is kept.
        """
        ...

    def insert_many(self, name: str, documents: Sequence[Mapping[str, Any]], ordered: bool = True) -> int:
        """Append documents; returns the number inserted."""
        ...

    def delete_all(self, name: str) -> int:
        ...

    def drop_collection(self, name: str) -> None:
        ...

    def swap_collection(self, staging: str, target: str) -> None:
        """Replace `target` with `staging` and drop the old contents."""
        ...

    def ping(self) -> bool:
        """True when the store answers; never raises."""
        ...

    def try_acquire_lease(self, key: str, owner: str, ttl_seconds: int) -> bool:
        """Take the lease unless another owner holds an unexpired one."""
        ...

    def release_lease(self, key: str, owner: str) -> None:
        ...


@runtime_checkable
class JobLedger(Protocol):
    """Bookkeeping the job layer persists next to the synced data."""

    def update_job_status(self, job_id: str, status: str, details: Optional[Mapping[str, Any]] = None) -> None:
        ...

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        ...

    def log_job_execution(self, entry: Mapping[str, Any]) -> None:
        ...

    def update_source_metadata(self, file_name: str, record_count: int, processed_at: datetime) -> None:
        ...


def strip_storage_id(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of `document` without the storage-assigned `_id`."""
    return {key: value for key, value in document.items() if key != STORAGE_ID_FIELD}


__all__ = [
    "BulkWriteCounts",
    "DocumentStore",
    "JobLedger",
    "UpsertOp",
    "strip_storage_id",
]
