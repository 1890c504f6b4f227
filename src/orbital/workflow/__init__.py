"""Workflow descriptors, submission validation and the template catalog."""

from orbital.workflow.steps import Step, WorkflowDescriptor, WorkflowOptions
from orbital.workflow.templates import Template, TemplateEngine, load_catalog
from orbital.workflow.validation import UrlPolicy, Validator

__all__ = [
    "Step",
    "Template",
    "TemplateEngine",
    "UrlPolicy",
    "Validator",
    "WorkflowDescriptor",
    "WorkflowOptions",
    "load_catalog",
]
