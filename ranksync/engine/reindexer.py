"""
Resort a collection into canonical name order.

Readers page through collections in natural (insertion) order, so after a
write the whole collection is rebuilt sorted: documents are copied into a
fresh staging collection in order, then the staging collection replaces
the original.

Stores that can swap collections atomically get a single swap. Otherwise
the original is emptied and refilled from staging; a failure in that
window leaves the original incomplete and raises `ReindexPartial`, which
must be treated as an alert (staging is kept for recovery).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Sequence

from ranksync.domain.errors import ReindexFailed, ReindexPartial, StoreError
from ranksync.domain.models import collation_key
from ranksync.engine.batch_writer import chunked
from ranksync.store.abstract import DocumentStore, strip_storage_id
from ranksync.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class ReindexOutcome:
    collection: str
    documents: int
    strategy: str  # "swap", "copy_back" or "noop"


def sort_documents(documents: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Stable name sort; documents without a name go first."""
    return sorted(documents, key=lambda doc: collation_key(doc.get("name")))


class Reindexer:
    """
    Rebuilds collections in sorted physical order.

    Parameters
    ----------
    store : DocumentStore
        Ready store handle.
    batch_size : int
        Documents per `insert_many` call.
    clock : callable
        Millisecond timestamp used to name staging collections.
    """

    def __init__(
        self,
        store: DocumentStore,
        batch_size: int = 1000,
        clock: Callable[[], int] = lambda: int(time.time() * 1000),
    ) -> None:
        self.store = store
        self.batch_size = batch_size
        self._clock = clock

    def resort(self, collection: str) -> ReindexOutcome:
        log.info(f"[REINDEX START] {collection}")
        try:
            documents = self.store.find_all(collection)
        except StoreError as exc:
            raise ReindexFailed(f"Cannot read '{collection}': {exc}", collection=collection) from exc
        if not documents:
            log.info(f"[REINDEX SKIP] {collection} is empty")
            return ReindexOutcome(collection=collection, documents=0, strategy="noop")

        ordered = sort_documents(documents)
        staging = f"{collection}_staging_{self._clock()}"
        self._stage(collection, staging, ordered)

        if self.store.supports_atomic_swap:
            try:
                self.store.swap_collection(staging, collection)
            except StoreError as exc:
                self._drop_quietly(staging)
                raise ReindexFailed(f"Swap of '{staging}' into '{collection}' failed: {exc}", collection=collection) from exc
            strategy = "swap"
        else:
            self._copy_back(collection, staging)
            strategy = "copy_back"

        log.info(f"[REINDEX COMPLETE] {collection}", extra={"documents": len(ordered), "strategy": strategy})
        return ReindexOutcome(collection=collection, documents=len(ordered), strategy=strategy)

    def _stage(self, collection: str, staging: str, ordered: Sequence[Dict[str, Any]]) -> None:
        try:
            self.store.ensure_collection(staging)
            self._insert_batches(staging, ordered)
        except StoreError as exc:
            self._drop_quietly(staging)
            raise ReindexFailed(f"Staging '{staging}' failed: {exc}", collection=collection) from exc

    def _copy_back(self, collection: str, staging: str) -> None:
        try:
            self.store.delete_all(collection)
        except StoreError as exc:
            self._drop_quietly(staging)
            raise ReindexFailed(f"Clearing '{collection}' failed: {exc}", collection=collection) from exc

        try:
            self._insert_batches(collection, self.store.find_all(staging))
        except StoreError as exc:
            log.critical(
                f"[REINDEX PARTIAL] {collection} was cleared but not refilled",
                extra={"collection": collection, "staging": staging, "error": str(exc)},
            )
            raise ReindexPartial(
                f"'{collection}' was cleared but refilling from '{staging}' failed: {exc}",
                collection=collection,
                staging=staging,
            ) from exc

        self._drop_quietly(staging)

    def _insert_batches(self, collection: str, documents: Sequence[Dict[str, Any]]) -> None:
        for batch in chunked(documents, self.batch_size):
            self.store.insert_many(collection, [strip_storage_id(doc) for doc in batch], ordered=True)

    def _drop_quietly(self, staging: str) -> None:
        try:
            self.store.drop_collection(staging)
        except StoreError as exc:
            log.warning(f"Could not drop staging collection '{staging}'", extra={"error": str(exc)})


__all__ = ["ReindexOutcome", "Reindexer", "sort_documents"]
