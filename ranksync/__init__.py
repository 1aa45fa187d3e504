"""
BGG Rank Sync - keeps a board game store in step with the BoardGameGeek ranks dump.

Each run reads the published CSV, compares it with what is stored, upserts
only the records that are new or changed (plus their search projection) and
rewrites both collections in name order so paged listings come out sorted:

- Row decoding with per-row fault tolerance
- Tolerance-aware change detection against a full snapshot
- Batched, retried upserts
- Collection resort via staging and atomic swap
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from ranksync.config import Settings, get_settings
from ranksync.domain.errors import SyncError
from ranksync.domain.models import ChangeSet, Record, RunStats, SearchEntry
from ranksync.jobs.sync_job import SyncJob
from ranksync.orchestrator import RunResult, RunState, SyncOrchestrator, run_sync
from ranksync.store.abstract import DocumentStore, JobLedger
from ranksync.utils.logging import configure_logging, get_logger
from ranksync.utils.profiler import ProfileStats, profile_block

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Orchestration
    "RunResult",
    "RunState",
    "SyncJob",
    "SyncOrchestrator",
    "run_sync",
    # Domain
    "ChangeSet",
    "Record",
    "RunStats",
    "SearchEntry",
    "SyncError",
    # Store abstractions
    "DocumentStore",
    "JobLedger",
    # Logging
    "configure_logging",
    "get_logger",
    # Profiling
    "ProfileStats",
    "profile_block",
]
