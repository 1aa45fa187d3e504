"""
Change detection between decoded records and the stored collection.

This is a full-table diff: the whole stored collection is held in memory as
an `id -> document` mapping. At the current dump size (~170k rows) that is
fine; a much larger source would need a merge-join over id-sorted cursors
instead.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, Mapping

from ranksync.domain.models import COMPARABLE_FIELDS, ChangeSet, Record
from ranksync.store.abstract import DocumentStore
from ranksync.utils.logging import get_logger

log = get_logger(__name__)

NUMERIC_TOLERANCE = 0.001

Snapshot = Mapping[int, Mapping[str, Any]]


def load_snapshot(store: DocumentStore, collection: str) -> Dict[int, Dict[str, Any]]:
    """Read the collection once and index it by record id."""
    snapshot = {doc["id"]: doc for doc in store.find_all(collection) if "id" in doc}
    log.info(f"Loaded {len(snapshot):,} existing documents from '{collection}'")
    return snapshot


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def values_differ(new: Any, old: Any) -> bool:
    """
    True when a comparable field changed.

    Two absent values (missing or NaN) are equal; numbers are equal within
    NUMERIC_TOLERANCE; absent vs present is a change.
    """
    if _is_absent(new) and _is_absent(old):
        return False
    if _is_absent(new) or _is_absent(old):
        return True
    if _is_number(new) and _is_number(old):
        return abs(new - old) > NUMERIC_TOLERANCE
    return new != old


def has_changed(record: Record, existing: Mapping[str, Any]) -> bool:
    return any(
        values_differ(getattr(record, name), existing.get(name)) for name in COMPARABLE_FIELDS
    )


def compute_changes(records: Iterable[Record], snapshot: Snapshot) -> ChangeSet:
    """
    Partition records into new, changed and unchanged.

    When the source repeats an id, the last row wins and the earlier ones
    are counted as duplicates.
    """
    latest: Dict[int, Record] = {}
    duplicates = 0
    for record in records:
        if record.id in latest:
            duplicates += 1
            del latest[record.id]
        latest[record.id] = record

    change_set = ChangeSet(duplicates=duplicates)
    for position, record in enumerate(latest.values()):
        change_set.positions[record.id] = position
        existing = snapshot.get(record.id)
        if existing is None:
            change_set.new.append(record)
        elif has_changed(record, existing):
            change_set.changed.append(record)
        else:
            change_set.unchanged.append(record)

    if duplicates:
        log.warning(f"Source repeats {duplicates:,} ids; kept the last row for each")
    return change_set


__all__ = [
    "NUMERIC_TOLERANCE",
    "compute_changes",
    "has_changed",
    "load_snapshot",
    "values_differ",
]
