"""Job records, their lifecycle state machine and durable storage."""

from orbital.jobs.models import Artifact, Job, JobResult
from orbital.jobs.state_machine import IllegalTransitionError, JobStatus
from orbital.jobs.store import JobStore

__all__ = [
    "Artifact",
    "IllegalTransitionError",
    "Job",
    "JobResult",
    "JobStatus",
    "JobStore",
]
