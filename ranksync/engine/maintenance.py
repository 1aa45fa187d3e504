"""
One-off maintenance over already-synced collections.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ranksync.domain.models import utc_now
from ranksync.engine.batch_writer import chunked
from ranksync.store.abstract import DocumentStore, UpsertOp
from ranksync.utils.logging import get_logger

log = get_logger(__name__)

_TIMESTAMP_FIELDS = ("date_created", "date_updated")


def backfill_timestamps(
    store: DocumentStore,
    collection: str,
    now: Optional[datetime] = None,
    batch_size: int = 1000,
) -> int:
    """
    Fill in `date_created`/`date_updated` wherever a document lacks them.

    Documents loaded before timestamps existed are treated as created now;
    timestamps already present are left alone.
    Returns the number of documents updated.
    """
    now = now or utc_now()
    missing = [
        doc
        for doc in store.find_all(collection)
        if "id" in doc and any(doc.get(name) is None for name in _TIMESTAMP_FIELDS)
    ]
    if not missing:
        log.info(f"All documents in '{collection}' already have timestamps")
        return 0

    updated = 0
    for batch in chunked(missing, batch_size):
        ops = [
            UpsertOp(
                key=doc["id"],
                set_fields={name: now for name in _TIMESTAMP_FIELDS if doc.get(name) is None},
            )
            for doc in batch
        ]
        counts = store.bulk_upsert(collection, ops, ordered=True)
        updated += counts["updated"]
    log.info(f"Backfilled timestamps on {updated:,} documents in '{collection}'")
    return updated


__all__ = ["backfill_timestamps"]
