"""Submission service: validate, record, enqueue.

The HTTP layer and the CLI both go through `JobService`, so a workflow is
never queued without a job record, and nothing is recorded for a submission
that fails validation.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from orbital.jobs.models import Job
from orbital.jobs.store import JobStore
from orbital.queue.base import WorkQueue
from orbital.workflow.steps import WorkflowDescriptor
from orbital.workflow.templates import TemplateEngine
from orbital.workflow.validation import Validator

logger = logging.getLogger(__name__)


class JobService:
    def __init__(
        self,
        validator: Validator,
        store: JobStore,
        queue: WorkQueue,
        templates: TemplateEngine,
    ) -> None:
        self.validator = validator
        self.store = store
        self.queue = queue
        self.templates = templates

    def submit(self, raw: bytes | str | Mapping[str, Any]) -> Job:
        descriptor = self.validator.validate(raw)
        return self._accept(descriptor)

    def submit_template(self, template_id: str, params: Mapping[str, Any]) -> Job:
        descriptor = self.templates.render(template_id, params)
        job = self._accept(descriptor)
        logger.info(
            "Template job submitted", extra={"job_id": job.job_id, "template_id": template_id}
        )
        return job

    def get(self, job_id: str) -> Job:
        return self.store.get(job_id)

    def _accept(self, descriptor: WorkflowDescriptor) -> Job:
        job = self.store.create(descriptor)
        payload = {"id": job.job_id, **descriptor.to_payload()}
        self.queue.enqueue(job.job_id, payload)
        return job
