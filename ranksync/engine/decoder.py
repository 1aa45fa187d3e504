"""
Row decoder: BGG ranks CSV -> `Record` stream.

Bad fields become absent values and bad rows are skipped; only an
unreadable stream stops the run (`DecodeFatal`).
"""

from __future__ import annotations

import csv
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional

from ranksync.domain.errors import DecodeFatal, RowMalformed
from ranksync.domain.models import Record
from ranksync.utils.logging import get_logger

log = get_logger(__name__)

# CSV header -> Record field. Other columns (cgs_rank, family ranks, ...) are ignored.
INT_COLUMNS: Dict[str, str] = {
    "yearpublished": "year_published",
    "rank": "rank",
    "usersrated": "users_rated",
    "abstracts_rank": "abstracts_rank",
}
FLOAT_COLUMNS: Dict[str, str] = {
    "bayesaverage": "bayes_average",
    "average": "average",
}


@dataclass
class DecodeTally:
    """Rows seen and rows skipped by one decode pass."""

    scanned: int = 0
    skipped: int = 0


def parse_int(raw: Optional[str]) -> Optional[int]:
    """
    Base-10 integer, or None when the text is not a finite whole number.

    "2019.0" is accepted; "2019.5", "", "N/A" and "inf" are not.
    """
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    try:
        return int(text, 10)
    except ValueError:
        pass
    value = parse_float(text)
    if value is None or not value.is_integer():
        return None
    return int(value)


def parse_float(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def row_to_record(row: Dict[str, Optional[str]]) -> Record:
    """
    Map one CSV row to a Record.

    Raises
    ------
    RowMalformed
        If the row has no usable id or name.
    """
    record_id = parse_int(row.get("id"))
    name = row.get("name")
    if record_id is None or not (name and name.strip()):
        raise RowMalformed(f"row without id or name: id={row.get('id')!r} name={name!r}")

    fields: Dict[str, object] = {"id": record_id, "name": name}
    for column, field_name in INT_COLUMNS.items():
        fields[field_name] = parse_int(row.get(column))
    for column, field_name in FLOAT_COLUMNS.items():
        fields[field_name] = parse_float(row.get(column))
    fields["is_expansion"] = (row.get("is_expansion") or "").strip() == "1"
    return Record(**fields)


def decode_rows(lines: Iterable[str], tally: DecodeTally) -> Iterator[Record]:
    """
    Lazily decode CSV text (header first) into Records.

    `tally` is updated as rows are consumed, so its counts are final once
    the iterator is exhausted.
    """
    reader = csv.DictReader(lines)
    try:
        for row in reader:
            tally.scanned += 1
            try:
                record = row_to_record(row)
            except RowMalformed as exc:
                tally.skipped += 1
                log.debug(f"Skipping line {reader.line_num}: {exc}")
                continue
            yield record
    except csv.Error as exc:
        raise DecodeFatal(f"CSV structure error near line {reader.line_num}: {exc}") from exc


def decode_file(path: str | Path, tally: DecodeTally) -> Iterator[Record]:
    """
    Decode a CSV file from disk.

    The file is opened on first iteration; a missing or unreadable file
    raises DecodeFatal from the consuming loop.
    """
    csv_path = Path(path)
    try:
        with csv_path.open("r", newline="", encoding="utf-8-sig") as f:
            yield from decode_rows(f, tally)
    except (OSError, UnicodeDecodeError) as exc:
        raise DecodeFatal(f"Cannot read {csv_path}: {exc}") from exc


__all__ = [
    "DecodeTally",
    "decode_file",
    "decode_rows",
    "parse_float",
    "parse_int",
    "row_to_record",
]
