"""
Domain models for BGG Rank Sync.

`Record` mirrors a document in the `board_games` collection and
`SearchEntry` its projection in `games_search`. Optional fields left as
`None` are omitted from stored documents, so "unknown" stays distinct from
zero. `ChangeSet` and `RunStats` are per-run values owned by the
orchestrator.
"""
from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

# Fields compared when deciding whether a stored record changed.
COMPARABLE_FIELDS = (
    "name",
    "year_published",
    "rank",
    "bayes_average",
    "average",
    "users_rated",
    "is_expansion",
    "abstracts_rank",
)

# Storage-assigned identity; never part of the record itself.
STORAGE_ID_FIELD = "_id"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def collation_key(name: Optional[str]) -> str:
    """
    Sort key for names: accent- and case-insensitive.

    Decomposes to NFKD, drops combining marks and casefolds, so "Élan",
    "elan" and "ELAN" collate together. The rule is fixed and does not
    depend on the platform locale.
    """
    if not name:
        return ""
    decomposed = unicodedata.normalize("NFKD", name)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


class Record(BaseModel):
    """
    Representation of a single board game ranking row.
    """

    id: int = Field(..., description="BGG object id; natural key.")
    name: str = Field(..., description="Primary game name.")
    year_published: Optional[int] = None
    rank: Optional[int] = None
    bayes_average: Optional[float] = None
    average: Optional[float] = None
    users_rated: Optional[int] = None
    is_expansion: bool = False
    abstracts_rank: Optional[int] = None
    date_created: Optional[datetime] = None
    date_updated: Optional[datetime] = None

    model_config = {
        "frozen": True,
        "extra": "ignore",
    }

    def comparable_values(self) -> Dict[str, Any]:
        """Comparable fields that carry a value."""
        values = self.model_dump(include=set(COMPARABLE_FIELDS))
        return {key: value for key, value in values.items() if value is not None}

    def absent_fields(self) -> List[str]:
        """Comparable fields the source left empty."""
        return [name for name in COMPARABLE_FIELDS if getattr(self, name) is None]

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class SearchEntry(BaseModel):
    """
    Lightweight projection of a Record kept in the search collection.
    """

    id: int
    name: str
    date_created: Optional[datetime] = None
    date_updated: Optional[datetime] = None

    model_config = {
        "frozen": True,
        "extra": "ignore",
    }

    @classmethod
    def from_record(cls, record: Record) -> "SearchEntry":
        return cls(
            id=record.id,
            name=record.name,
            date_created=record.date_created,
            date_updated=record.date_updated,
        )


@dataclass
class ChangeSet:
    """
    Per-run partition of decoded records against the stored snapshot.
    """

    new: List[Record] = field(default_factory=list)
    changed: List[Record] = field(default_factory=list)
    unchanged: List[Record] = field(default_factory=list)
    duplicates: int = 0
    # Record id -> position in the source (after duplicate collapsing).
    positions: Dict[int, int] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.new and not self.changed

    def to_write(self) -> List[Record]:
        """New and changed records sorted by name; ties keep source order."""
        pending = [*self.new, *self.changed]
        fallback = {record.id: index for index, record in enumerate(pending)}
        return sorted(
            pending,
            key=lambda record: (
                collation_key(record.name),
                self.positions.get(record.id, fallback[record.id]),
            ),
        )


@dataclass(frozen=True)
class RunStats:
    """
    Counters for one sync run; each stage returns an updated copy.
    """

    total_scanned: int = 0
    records_decoded: int = 0
    rows_skipped: int = 0
    duplicates: int = 0
    new_count: int = 0
    changed_count: int = 0
    unchanged_count: int = 0
    written: int = 0

    def update(self, **changes: int) -> "RunStats":
        return replace(self, **changes)

    def as_dict(self) -> Dict[str, int]:
        return {
            "total_scanned": self.total_scanned,
            "records_decoded": self.records_decoded,
            "rows_skipped": self.rows_skipped,
            "duplicates": self.duplicates,
            "new_count": self.new_count,
            "changed_count": self.changed_count,
            "unchanged_count": self.unchanged_count,
            "written": self.written,
        }


__all__ = [
    "COMPARABLE_FIELDS",
    "STORAGE_ID_FIELD",
    "ChangeSet",
    "Record",
    "RunStats",
    "SearchEntry",
    "collation_key",
    "utc_now",
]
