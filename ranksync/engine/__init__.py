"""
Sync engine stages: decode, diff, batch write and reindex.

Each stage is usable on its own; `ranksync.orchestrator` sequences them
into a run.
"""

from ranksync.engine.batch_writer import BatchWriter, WriteOutcome
from ranksync.engine.decoder import DecodeTally, decode_file, decode_rows
from ranksync.engine.differ import NUMERIC_TOLERANCE, compute_changes, load_snapshot
from ranksync.engine.maintenance import backfill_timestamps
from ranksync.engine.reindexer import Reindexer, ReindexOutcome

__all__ = [
    "BatchWriter",
    "DecodeTally",
    "NUMERIC_TOLERANCE",
    "ReindexOutcome",
    "Reindexer",
    "WriteOutcome",
    "backfill_timestamps",
    "compute_changes",
    "decode_file",
    "decode_rows",
    "load_snapshot",
]
