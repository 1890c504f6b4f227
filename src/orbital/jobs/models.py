"""Job, result and artifact records."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from orbital.jobs.state_machine import JobStatus, is_terminal
from orbital.workflow.steps import WorkflowDescriptor


class Artifact(BaseModel):
    """A file produced by a step and made available for retrieval."""

    model_config = ConfigDict(frozen=True)

    type: Literal["screenshot", "download"]
    filename: str
    step_index: int
    url: str


class JobResult(BaseModel):
    artifacts: list[Artifact] = Field(default_factory=list)
    steps_completed: int = 0


class Job(BaseModel):
    job_id: str
    status: JobStatus
    workflow: WorkflowDescriptor

    result: JobResult | None = None
    error_message: str | None = None
    attempts: int = 0

    started_at: str | None = None
    finished_at: str | None = None
    created_at: str
    updated_at: str

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)
