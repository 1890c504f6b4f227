"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from orbital.jobs.models import Job, JobResult
from orbital.jobs.state_machine import JobStatus


class JobCreated(BaseModel):
    job_id: str
    status: JobStatus
    template_used: str | None = None


class JobView(BaseModel):
    job_id: str
    status: JobStatus
    created_at: str
    attempts: int

    result: JobResult | None = None
    error: str | None = None
    started_at: str | None = None
    finished_at: str | None = None

    @classmethod
    def from_job(cls, job: Job) -> JobView:
        return cls(
            job_id=job.job_id,
            status=job.status,
            created_at=job.created_at,
            attempts=job.attempts,
            result=job.result if job.status is JobStatus.COMPLETED else None,
            error=(
                job.error_message
                if job.status in (JobStatus.FAILED, JobStatus.TIMEOUT)
                else None
            ),
            started_at=job.started_at,
            finished_at=job.finished_at,
        )


class TemplateJobRequest(BaseModel):
    parameters: dict[str, Any] = Field(default_factory=dict)


class QueueStats(BaseModel):
    pending: int
    in_flight: int
    jobs: dict[str, int]
