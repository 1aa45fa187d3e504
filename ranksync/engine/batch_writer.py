"""
Batched upserts of new and changed records.

Every batch writes the record collection and the mirrored search
projection. A failed batch is retried once, after the store answers a ping;
a second failure aborts the run with `WriteFatal`. Batches committed
before the failure stay committed.
"""

from __future__ import annotations

from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Sequence, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ranksync.domain.errors import StoreError, StoreUnavailable, WriteFatal
from ranksync.domain.models import Record, SearchEntry, utc_now
from ranksync.store.abstract import BulkWriteCounts, DocumentStore, UpsertOp
from ranksync.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class WriteOutcome:
    """Progress of a write pass; `written` counts records in committed batches."""

    written: int = 0
    batches: int = 0
    inserted: int = 0
    updated: int = 0

    def add(self, batch_len: int, counts: BulkWriteCounts) -> "WriteOutcome":
        return replace(
            self,
            written=self.written + batch_len,
            batches=self.batches + 1,
            inserted=self.inserted + counts["inserted"],
            updated=self.updated + counts["updated"],
        )


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size <= 0:
        raise ValueError(f"batch size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def build_record_op(record: Record, now: datetime) -> UpsertOp:
    """
    Upsert for the record collection.

    Comparable fields the source left empty are unset so the stored
    document matches the source exactly.
    """
    return UpsertOp(
        key=record.id,
        set_fields={**record.comparable_values(), "id": record.id, "date_updated": now},
        set_on_insert={"date_created": now},
        unset=tuple(record.absent_fields()),
    )


def build_search_op(record: Record, now: datetime) -> UpsertOp:
    """Mirrored upsert for the search projection."""
    entry = SearchEntry.from_record(record)
    return UpsertOp(
        key=entry.id,
        set_fields={**entry.model_dump(include={"id", "name"}), "date_updated": now},
        set_on_insert={"date_created": now},
    )


class BatchWriter:
    """
    Writes records to the record and search collections in fixed-size batches.

    Parameters
    ----------
    store : DocumentStore
        Ready store handle.
    records_collection, search_collection : str
        Target collection names.
    batch_size : int
        Records per batch (both collections get the same boundary).
    max_attempts : int
        Attempts per batch; 2 means one retry.
    retry_wait_seconds : float
        Pause before the retry.
    workers : int
        Batches written concurrently. 1 keeps strict batch order, so a
        failure at batch N leaves batches N+1.. unwritten.
    clock : callable
        Source of the run timestamp.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        records_collection: str,
        search_collection: str,
        batch_size: int,
        max_attempts: int = 2,
        retry_wait_seconds: float = 1.0,
        workers: int = 1,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch size must be positive, got {batch_size}")
        self.store = store
        self.records_collection = records_collection
        self.search_collection = search_collection
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.retry_wait_seconds = retry_wait_seconds
        self.workers = max(workers, 1)
        self._clock = clock

    def write(self, records: Sequence[Record]) -> WriteOutcome:
        """
        Upsert `records` (already in write order) batch by batch.

        Raises
        ------
        WriteFatal
            When a batch fails twice; `written` holds the committed count.
        """
        now = self._clock()
        batches = list(chunked(records, self.batch_size))
        log.info(
            f"[WRITE START] {len(records):,} records in {len(batches)} batches",
            extra={"batch_size": self.batch_size, "workers": self.workers},
        )
        if self.workers == 1 or len(batches) <= 1:
            outcome = self._write_sequential(batches, now)
        else:
            outcome = self._write_concurrent(batches, now)
        log.info(
            f"[WRITE COMPLETE] {outcome.written:,} records committed",
            extra={"inserted": outcome.inserted, "updated": outcome.updated, "batches": outcome.batches},
        )
        return outcome

    def _write_sequential(self, batches: List[Sequence[Record]], now: datetime) -> WriteOutcome:
        outcome = WriteOutcome()
        for index, batch in enumerate(batches, start=1):
            try:
                counts = self._write_batch(index, batch, now)
            except StoreError as exc:
                raise self._fatal(index, len(batches), outcome, exc) from exc
            outcome = outcome.add(len(batch), counts)
            log.info(f"[BATCH {index}/{len(batches)}] committed", extra={"written": outcome.written})
        return outcome

    def _write_concurrent(self, batches: List[Sequence[Record]], now: datetime) -> WriteOutcome:
        outcome = WriteOutcome()
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="batch-writer") as pool:
            futures: Dict[Future[BulkWriteCounts], int] = {
                pool.submit(self._write_batch, index, batch, now): index
                for index, batch in enumerate(batches, start=1)
            }
            pending = set(futures)
            while pending:
                done, pending = wait(pending, return_when=FIRST_EXCEPTION)
                failed = None
                for future in done:
                    index = futures[future]
                    exc = future.exception()
                    if exc is None:
                        outcome = outcome.add(len(batches[index - 1]), future.result())
                        log.info(f"[BATCH {index}/{len(batches)}] committed", extra={"written": outcome.written})
                    elif failed is None or index < failed[0]:
                        failed = (index, exc)
                if failed is not None:
                    for future in pending:
                        future.cancel()
                    # Batches already running finish and still count.
                    for future in pending:
                        if not future.cancelled() and future.exception() is None:
                            outcome = outcome.add(len(batches[futures[future] - 1]), future.result())
                    index, exc = failed
                    if not isinstance(exc, StoreError):
                        raise exc
                    raise self._fatal(index, len(batches), outcome, exc) from exc
        return outcome

    def _fatal(self, index: int, total: int, outcome: WriteOutcome, exc: Exception) -> WriteFatal:
        log.error(
            f"[BATCH {index}/{total}] failed after {self.max_attempts} attempts",
            extra={"written": outcome.written, "error": str(exc)},
        )
        return WriteFatal(
            f"Batch {index} of {total} failed after retry: {exc}",
            written=outcome.written,
            batch_index=index,
        )

    def _write_batch(self, index: int, batch: Sequence[Record], now: datetime) -> BulkWriteCounts:
        record_ops = [build_record_op(record, now) for record in batch]
        search_ops = [build_search_op(record, now) for record in batch]

        counts = BulkWriteCounts(inserted=0, updated=0)
        for attempt in Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_wait_seconds),
            retry=retry_if_exception_type(StoreError),
            before_sleep=self._log_retry(index),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    self._verify_connection()
                counts = self.store.bulk_upsert(self.records_collection, record_ops, ordered=True)
                self.store.bulk_upsert(self.search_collection, search_ops, ordered=True)
        return counts

    def _verify_connection(self) -> None:
        if not self.store.ping():
            raise StoreUnavailable("store did not answer ping before batch retry")

    @staticmethod
    def _log_retry(index: int) -> Callable[[RetryCallState], None]:
        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            log.warning(f"[BATCH {index}] write failed, retrying", extra={"error": str(exc)})

        return _before_sleep


__all__ = [
    "BatchWriter",
    "WriteOutcome",
    "build_record_op",
    "build_search_op",
    "chunked",
]
