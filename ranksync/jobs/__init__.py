"""
Job layer: what a scheduler or operator invokes to run a sync.
"""

from ranksync.jobs.sync_job import JOB_TYPE, SyncJob

__all__ = ["JOB_TYPE", "SyncJob"]
