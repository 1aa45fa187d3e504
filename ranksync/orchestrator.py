"""
Sync orchestrator: decode -> diff -> write -> reindex for one source file.

Usage (example from CLI):
    from ranksync.orchestrator import run_sync

    result = run_sync("data/boardgames_ranks.csv")
    print(result["new_count"], result["changed_count"])

Stages run strictly in sequence because the diff needs both the complete
decoded file and the complete stored snapshot. A run holds a store-side
lease for its duration so overlapping triggers cannot interleave their
writes and resorts.
"""

from __future__ import annotations

import os
import socket
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypedDict

from ranksync.config import Settings, get_settings
from ranksync.domain.errors import LeaseHeld, StoreError, SyncError, WriteFatal
from ranksync.domain.models import ChangeSet, RunStats, utc_now
from ranksync.engine.batch_writer import BatchWriter
from ranksync.engine.decoder import DecodeTally, decode_file
from ranksync.engine.differ import compute_changes, load_snapshot
from ranksync.engine.reindexer import Reindexer
from ranksync.store.abstract import DocumentStore
from ranksync.store.postgres import build_store
from ranksync.utils.logging import get_logger
from ranksync.utils.profiler import profile_block

log = get_logger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    DECODING = "decoding"
    DIFFING = "diffing"
    WRITING = "writing"
    REINDEXING = "reindexing"
    DONE = "done"
    FAILED = "failed"


class RunResult(TypedDict, total=False):
    """
    Summary handed back to the trigger.

    The first five keys are the stable contract; the rest are diagnostics.
    """

    total_scanned: int
    new_count: int
    changed_count: int
    unchanged_count: int
    no_changes: bool
    records_decoded: int
    rows_skipped: int
    duplicates: int
    written: int
    state: str
    source: str
    phases: Dict[str, Dict[str, Any]]
    reindexed: Dict[str, str]


def default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class SyncOrchestrator:
    """
    Runs one sync at a time against a ready store handle.

    After `run` returns or raises, `state`, `history` and `last_change_set`
    describe the run.
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: Optional[Settings] = None,
        *,
        owner: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.owner = owner or default_owner()
        self._clock = clock
        self.state = RunState.IDLE
        self.history: List[RunState] = [RunState.IDLE]
        self.last_change_set: Optional[ChangeSet] = None

    @property
    def lease_key(self) -> str:
        return f"sync:{self.settings.games_collection}"

    def _transition(self, state: RunState) -> None:
        log.info(f"[STATE] {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def run(self, path: str | Path) -> RunResult:
        """
        Synchronize the store with the CSV at `path`.

        Raises
        ------
        SyncError
            Any run failure; `exc.stats` holds the counts reached so far.
        """
        self.state = RunState.IDLE
        self.history = [RunState.IDLE]
        self.last_change_set = None

        stats = RunStats()
        tally = DecodeTally()
        phases: Dict[str, Dict[str, Any]] = {}
        lease_taken = False
        log.info(f"[SYNC START] {path}", extra={"owner": self.owner})

        try:
            if self.settings.lease_enabled:
                if not self.store.try_acquire_lease(self.lease_key, self.owner, self.settings.lease_ttl_seconds):
                    raise LeaseHeld(f"Another run holds the lease '{self.lease_key}'")
                lease_taken = True

            games = self.settings.games_collection
            search = self.settings.search_collection
            self.store.ensure_collection(games)
            self.store.ensure_collection(search)

            self._transition(RunState.DECODING)
            with profile_block("decoding") as prof:
                records = list(decode_file(path, tally))
            phases["decoding"] = prof.as_dict()
            stats = stats.update(
                total_scanned=tally.scanned,
                rows_skipped=tally.skipped,
                records_decoded=len(records),
            )
            log.info(
                f"Decoded {len(records):,} records from {tally.scanned:,} rows",
                extra={"skipped": tally.skipped},
            )

            self._transition(RunState.DIFFING)
            with profile_block("diffing") as prof:
                snapshot = load_snapshot(self.store, games)
                change_set = compute_changes(records, snapshot)
            phases["diffing"] = prof.as_dict()
            self.last_change_set = change_set
            stats = stats.update(
                duplicates=change_set.duplicates,
                new_count=len(change_set.new),
                changed_count=len(change_set.changed),
                unchanged_count=len(change_set.unchanged),
            )
            log.info(
                "[CHANGES] analysis complete",
                extra={
                    "new": stats.new_count,
                    "changed": stats.changed_count,
                    "unchanged": stats.unchanged_count,
                },
            )

            if change_set.is_empty:
                log.info("No changes detected; store already up to date")
                self._transition(RunState.DONE)
                return self._result(stats, phases, path, no_changes=True)

            self._transition(RunState.WRITING)
            writer = BatchWriter(
                self.store,
                records_collection=games,
                search_collection=search,
                batch_size=self.settings.effective_batch_size(),
                retry_wait_seconds=self.settings.write_retry_wait_seconds,
                workers=self.settings.write_workers,
                clock=self._clock,
            )
            with profile_block("writing") as prof:
                try:
                    outcome = writer.write(change_set.to_write())
                except WriteFatal as exc:
                    stats = stats.update(written=exc.written)
                    raise
            phases["writing"] = prof.as_dict()
            stats = stats.update(written=outcome.written)

            self._transition(RunState.REINDEXING)
            reindexer = Reindexer(self.store, batch_size=self.settings.reindex_batch_size)
            reindexed: Dict[str, str] = {}
            with profile_block("reindexing") as prof:
                for collection in (games, search):
                    reindexed[collection] = reindexer.resort(collection).strategy
            phases["reindexing"] = prof.as_dict()

            self._transition(RunState.DONE)
            result = self._result(stats, phases, path, no_changes=False)
            result["reindexed"] = reindexed
            return result

        except SyncError as exc:
            exc.stats = self._partial(stats, tally)
            self._fail(exc)
            raise
        except Exception as exc:
            self._fail(exc)
            raise SyncError(f"Sync run failed: {exc}", stats=self._partial(stats, tally)) from exc
        finally:
            if lease_taken:
                self._release_lease()

    def _fail(self, exc: BaseException) -> None:
        log.error(
            f"[SYNC FAILED] during {self.state.value}",
            extra={"error": str(exc), "error_type": type(exc).__name__},
        )
        self._transition(RunState.FAILED)

    @staticmethod
    def _partial(stats: RunStats, tally: DecodeTally) -> RunStats:
        if stats.total_scanned == 0 and tally.scanned:
            return stats.update(total_scanned=tally.scanned, rows_skipped=tally.skipped)
        return stats

    def _release_lease(self) -> None:
        try:
            self.store.release_lease(self.lease_key, self.owner)
        except StoreError as exc:
            log.warning("Lease release failed; it will expire on its own", extra={"error": str(exc)})

    def _result(
        self,
        stats: RunStats,
        phases: Dict[str, Dict[str, Any]],
        path: str | Path,
        no_changes: bool,
    ) -> RunResult:
        result = RunResult(**stats.as_dict())  # type: ignore[typeddict-item]
        result["no_changes"] = no_changes
        result["state"] = self.state.value
        result["source"] = Path(path).name
        result["phases"] = phases
        log.info(
            "[SYNC COMPLETE]",
            extra={"new": stats.new_count, "changed": stats.changed_count, "written": stats.written},
        )
        return result


def run_sync(
    path: str | Path,
    store: Optional[DocumentStore] = None,
    settings: Optional[Settings] = None,
) -> RunResult:
    """
    Run one sync with the configured Postgres store unless a store is given.
    """
    settings = settings or get_settings()
    if store is None:
        store = build_store(settings)
    return SyncOrchestrator(store, settings).run(path)


__all__ = [
    "RunResult",
    "RunState",
    "SyncOrchestrator",
    "run_sync",
]
