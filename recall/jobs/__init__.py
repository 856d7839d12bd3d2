"""Compaction job queue backends and the worker."""

from recall.jobs.queue import (
    COMPACTION_JOB,
    AsyncioJobQueue,
    CompactionQueue,
    InFlightRegistry,
    JobQueue,
    SchedulerJobQueue,
)
from recall.jobs.worker import CompactionWorker

__all__ = [
    "COMPACTION_JOB",
    "AsyncioJobQueue",
    "CompactionQueue",
    "CompactionWorker",
    "InFlightRegistry",
    "JobQueue",
    "SchedulerJobQueue",
]
