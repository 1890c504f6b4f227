"""Catalog of parameterised workflow templates.

A template is a workflow document with ``{{name}}`` placeholders. Rendering
substitutes every supplied parameter into the serialised JSON text of the
document, parses it back and runs the result through the same `Validator`
as a direct submission, so a rendered template can never bypass the SSRF or
bounds checks.

Values are inserted verbatim. A value containing a double quote or a
backslash changes the JSON text around it; if that makes the document
unparseable the render is rejected as a validation error.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from importlib import resources
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from orbital.errors import TemplateNotFoundError, ValidationError
from orbital.workflow.steps import WorkflowDescriptor
from orbital.workflow.validation import Validator

logger = logging.getLogger(__name__)

_PARAMETER_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "boolean": (bool,),
}


class TemplateParameter(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["string", "number", "boolean"] = "string"
    required: bool = False
    description: str | None = None
    secure: bool = False


class Template(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    workflow: dict[str, Any]
    options: dict[str, Any] | None = None
    parameters: dict[str, TemplateParameter] = Field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        """Listing shape: everything except the workflow body."""

        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "parameters": {
                name: param.model_dump(exclude_none=True)
                for name, param in self.parameters.items()
            },
        }

    def detail(self) -> dict[str, Any]:
        data = self.summary()
        data["workflow"] = self.workflow
        if self.options is not None:
            data["options"] = self.options
        return data


def load_catalog(path: Path | None = None) -> dict[str, Template]:
    """Load templates keyed by id, from `path` or from the bundled catalog."""

    if path is None:
        text = resources.files("orbital.workflow").joinpath("catalog.json").read_text(
            encoding="utf-8"
        )
    else:
        text = Path(path).read_text(encoding="utf-8")

    raw = json.loads(text)
    return {
        template_id: Template.model_validate({"id": template_id, **body})
        for template_id, body in raw.items()
    }


def _is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class TemplateEngine:
    def __init__(self, templates: Mapping[str, Template], validator: Validator) -> None:
        self._templates = dict(templates)
        self._validator = validator

    def list_templates(self) -> list[Template]:
        return list(self._templates.values())

    def get(self, template_id: str) -> Template:
        try:
            return self._templates[template_id]
        except KeyError:
            raise TemplateNotFoundError(template_id) from None

    def render(self, template_id: str, params: Mapping[str, Any]) -> WorkflowDescriptor:
        template = self.get(template_id)

        for name, spec in template.parameters.items():
            value = params.get(name)
            if spec.required and _is_blank(value):
                raise ValidationError(f"{name} is required", name)
            if value is not None and not isinstance(value, _PARAMETER_TYPES[spec.type]):
                raise ValidationError(f"{name} must be a {spec.type}", name)

        document = json.dumps(
            {"workflow": template.workflow, "options": template.options or {}},
            ensure_ascii=False,
        )
        for key, value in params.items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            document = document.replace("{{" + key + "}}", str(value))

        try:
            payload = json.loads(document)
        except json.JSONDecodeError as e:
            raise ValidationError(
                "Template parameters produced an invalid workflow document", "parameters"
            ) from e

        descriptor = self._validator.validate(payload)
        logger.info(
            "Template rendered",
            extra={"template_id": template_id, "steps": len(descriptor.steps)},
        )
        return descriptor
