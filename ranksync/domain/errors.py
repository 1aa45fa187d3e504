"""
Error taxonomy for the sync engine.

Row-level problems (`RowMalformed`) are absorbed by the decoder. Everything
else propagates to the orchestrator, which attaches the partial `RunStats`
before re-raising to the caller.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ranksync.domain.models import RunStats


class SyncError(Exception):
    """Base class for run-level failures; carries partial progress."""

    def __init__(self, message: str, *, stats: Optional["RunStats"] = None) -> None:
        super().__init__(message)
        self.stats = stats


class DecodeFatal(SyncError):
    """The source file could not be read. Nothing has been written."""


class RowMalformed(ValueError):
    """A single row cannot become a Record; the row is skipped."""


class StoreError(SyncError):
    """Raised by store implementations for failed operations."""


class StoreUnavailable(StoreError):
    """The store could not be reached or the connection broke."""


class StoreWriteError(StoreError):
    """The store rejected a write."""


class WriteFatal(SyncError):
    """A batch failed after its retry; earlier batches stay committed."""

    def __init__(self, message: str, *, written: int, batch_index: int, stats: Optional["RunStats"] = None) -> None:
        super().__init__(message, stats=stats)
        self.written = written
        self.batch_index = batch_index


class ReindexFailed(SyncError):
    """Resort failed before the canonical collection was touched."""

    def __init__(self, message: str, *, collection: str, stats: Optional["RunStats"] = None) -> None:
        super().__init__(message, stats=stats)
        self.collection = collection


class ReindexPartial(ReindexFailed):
    """Canonical collection was emptied but not fully refilled."""

    def __init__(
        self,
        message: str,
        *,
        collection: str,
        staging: str,
        stats: Optional["RunStats"] = None,
    ) -> None:
        super().__init__(message, collection=collection, stats=stats)
        self.staging = staging


class LeaseHeld(SyncError):
    """Another run holds a non-expired lease on the data source."""


__all__ = [
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
