"""
Domain package for BGG Rank Sync.

Exports the record models, per-run values and the error taxonomy. Keep this
package focused on data definitions; no I/O happens here.
"""

from ranksync.domain.errors import (
    DecodeFatal,
    LeaseHeld,
    ReindexFailed,
    ReindexPartial,
    RowMalformed,
    StoreError,
    StoreUnavailable,
    StoreWriteError,
    SyncError,
    WriteFatal,
)
from ranksync.domain.models import (
    COMPARABLE_FIELDS,
    ChangeSet,
    Record,
    RunStats,
    SearchEntry,
    collation_key,
)

__all__ = [
    "COMPARABLE_FIELDS",
    "ChangeSet",
    "Record",
    "RunStats",
    "SearchEntry",
    "collation_key",
    "DecodeFatal",
    "LeaseHeld",
    "ReindexFailed",
    "ReindexPartial",
    "RowMalformed",
    "StoreError",
    "StoreUnavailable",
    "StoreWriteError",
    "SyncError",
    "WriteFatal",
]
