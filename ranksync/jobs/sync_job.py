"""
Job wrapper the scheduler (cron, a container entrypoint, the CLI) calls.

`SyncJob.run_now` runs one sync and records the outcome in the job
ledger: the job status row, an execution log entry and, on success, the
source file metadata. Bookkeeping failures are logged and never replace
the run's own outcome.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from ranksync.config import Settings, get_settings
from ranksync.domain.errors import StoreError, SyncError
from ranksync.domain.models import utc_now
from ranksync.orchestrator import RunResult, SyncOrchestrator
from ranksync.store.abstract import DocumentStore, JobLedger
from ranksync.utils.logging import get_logger

log = get_logger(__name__)

JOB_TYPE = "bgg_data_sync"
DATA_SOURCE = "boardgamegeek"

SuccessCallback = Callable[[RunResult], None]
ErrorCallback = Callable[[SyncError], None]


class SyncJob:
    """
    On-demand trigger for sync runs with status bookkeeping.

    Parameters
    ----------
    store : DocumentStore
        Store the orchestrator writes to.
    ledger : JobLedger
        Where job status and history are recorded (often the same object).
    settings : Settings | None
        Defaults to the cached application settings.
    on_success, on_error : callable | None
        Invoked after bookkeeping with the run result or the error.
    """

    def __init__(
        self,
        store: DocumentStore,
        ledger: JobLedger,
        settings: Optional[Settings] = None,
        *,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.ledger = ledger
        self.on_success = on_success
        self.on_error = on_error
        self.orchestrator = SyncOrchestrator(store, self.settings)
        self.last_result: Optional[RunResult] = None
        self.last_error: Optional[SyncError] = None

    def run_now(self, path: str | Path | None = None) -> RunResult:
        """
        Run a sync immediately.

        Raises
        ------
        SyncError
            Re-raised after the failure has been recorded.
        ValueError
            If no path is given and SYNC_DATA_FILE is unset.
        """
        source = path or self.settings.data_file
        if not source:
            raise ValueError("No data file given and SYNC_DATA_FILE is not set")
        csv_path = Path(source)

        log.info(f"[JOB START] {JOB_TYPE}", extra={"csv_path": str(csv_path)})
        try:
            result = self.orchestrator.run(csv_path)
        except SyncError as exc:
            self.last_error = exc
            self._record_failure(csv_path, exc)
            if self.on_error:
                self.on_error(exc)
            raise

        self.last_result = result
        self.last_error = None
        self._record_success(csv_path, result)
        if self.on_success:
            self.on_success(result)
        return result

    def _record_success(self, csv_path: Path, result: RunResult) -> None:
        now = utc_now()
        self._safely(
            "update job status",
            self.ledger.update_job_status,
            JOB_TYPE,
            "completed",
            {
                "last_csv_file": csv_path.name,
                "last_execution_time": now,
                "data_source": DATA_SOURCE,
                "last_result": _summary(result),
            },
        )
        self._safely(
            "log job execution",
            self.ledger.log_job_execution,
            {
                "job_type": JOB_TYPE,
                "status": "success",
                "csv_path": str(csv_path),
                "data_source": DATA_SOURCE,
                "execution_time": now,
                **_summary(result),
            },
        )
        self._safely(
            "update source metadata",
            self.ledger.update_source_metadata,
            csv_path.name,
            result.get("records_decoded", 0),
            now,
        )
        log.info(f"[JOB COMPLETE] {JOB_TYPE}", extra=_summary(result))

    def _record_failure(self, csv_path: Path, exc: SyncError) -> None:
        now = utc_now()
        partial = exc.stats.as_dict() if exc.stats else {}
        self._safely(
            "log job execution",
            self.ledger.log_job_execution,
            {
                "job_type": JOB_TYPE,
                "status": "error",
                "csv_path": str(csv_path),
                "error": str(exc),
                "error_type": type(exc).__name__,
                "data_source": DATA_SOURCE,
                "execution_time": now,
                **partial,
            },
        )
        self._safely(
            "update job status",
            self.ledger.update_job_status,
            JOB_TYPE,
            "failed",
            {"last_error": str(exc), "last_error_time": now},
        )
        log.error(f"[JOB FAILED] {JOB_TYPE}", extra={"error": str(exc), **partial})

    @staticmethod
    def _safely(action: str, func: Callable[..., None], *args: Any) -> None:
        try:
            func(*args)
        except StoreError as exc:
            log.warning(f"Job bookkeeping failed: {action}", extra={"error": str(exc)})

    def get_status(self) -> Dict[str, Any]:
        return {
            "job_type": JOB_TYPE,
            "state": self.orchestrator.state.value,
            "data_file": self.settings.data_file,
            "collections": {
                "games": self.settings.games_collection,
                "search": self.settings.search_collection,
                "metadata": self.settings.metadata_collection,
            },
            "last_result": _summary(self.last_result) if self.last_result else None,
            "last_error": str(self.last_error) if self.last_error else None,
        }


def _summary(result: Mapping[str, Any]) -> Dict[str, Any]:
    keys = ("total_scanned", "new_count", "changed_count", "unchanged_count", "no_changes", "written")
    return {key: result[key] for key in keys if key in result}


__all__ = ["DATA_SOURCE", "JOB_TYPE", "SyncJob"]
