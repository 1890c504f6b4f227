"""Error taxonomy shared by the core components and the HTTP surface."""

from __future__ import annotations


class OrbitalError(Exception):
    """Base class for all service errors."""


class ValidationError(OrbitalError):
    """Client input is malformed or violates policy.

    `field` is the dotted path of the offending value (e.g. ``workflow.steps.0.url``)
    when one can be named.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def details(self) -> dict[str, list[str]]:
        return {self.field or "body": [self.message]}


class PayloadTooLargeError(ValidationError):
    pass


class SsrfError(ValidationError):
    """A URL targets a blocked scheme or an internal/private address."""


class NotFoundError(OrbitalError):
    pass


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class TemplateNotFoundError(NotFoundError):
    def __init__(self, template_id: str) -> None:
        super().__init__(f"Template not found: {template_id}")
        self.template_id = template_id


class ExecutionError(OrbitalError):
    """A workflow step failed inside the automation capability."""

    def __init__(self, message: str, step_index: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.step_index = step_index


class PersistenceError(OrbitalError):
    """The job store or queue backend is unavailable."""


class AuthenticationError(OrbitalError):
    """The request carries no API key, or one that is not accepted."""
