"""
Utilities package for BGG Rank Sync.

Exports shared helpers for logging and phase profiling. Keep this package
lightweight and free of sync-engine logic.
"""

from ranksync.utils.logging import configure_logging, get_logger
from ranksync.utils.profiler import ProfileStats, profile_block

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
