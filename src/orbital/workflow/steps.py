"""Typed workflow descriptor: steps, options and their bounds.

Steps form a closed set of variants discriminated by ``action``. Each variant
carries only its own fields; unknown keys are dropped when a submission is
normalised.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, field_validator

DEFAULT_TIMEOUT_MS = 60_000
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 120_000
MAX_WAIT_MS = 60_000

DEFAULT_VIEWPORT_WIDTH = 1280
DEFAULT_VIEWPORT_HEIGHT = 800


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class GotoStep(_Frozen):
    action: Literal["goto"] = "goto"
    url: StrictStr = Field(min_length=1)

    @field_validator("url")
    @classmethod
    def _absolute_url(cls, value: str) -> str:
        try:
            parts = urlsplit(value)
        except ValueError as e:
            raise ValueError("url must be a valid URL") from e
        if not parts.scheme:
            raise ValueError("url must be a valid absolute URL")
        if not parts.netloc and parts.scheme.lower() != "file":
            raise ValueError("url must be a valid absolute URL")
        return value


class WaitStep(_Frozen):
    action: Literal["wait"] = "wait"
    duration: StrictInt = Field(ge=0, le=MAX_WAIT_MS)


class ClickStep(_Frozen):
    action: Literal["click"] = "click"
    selector: StrictStr = Field(min_length=1)


class TypeStep(_Frozen):
    action: Literal["type"] = "type"
    selector: StrictStr = Field(min_length=1)
    value: StrictStr = Field(min_length=1)


class WaitForSelectorStep(_Frozen):
    action: Literal["waitForSelector"] = "waitForSelector"
    selector: StrictStr = Field(min_length=1)


class ScreenshotStep(_Frozen):
    action: Literal["screenshot"] = "screenshot"
    full_page: StrictBool = Field(default=False, alias="fullPage")


class WaitForDownloadStep(_Frozen):
    action: Literal["waitForDownload"] = "waitForDownload"


class EvaluateStep(_Frozen):
    action: Literal["evaluate"] = "evaluate"
    script: StrictStr = Field(min_length=1)


Step = Annotated[
    Union[
        GotoStep,
        WaitStep,
        ClickStep,
        TypeStep,
        WaitForSelectorStep,
        ScreenshotStep,
        WaitForDownloadStep,
        EvaluateStep,
    ],
    Field(discriminator="action"),
]

STEP_TYPES: dict[str, type[_Frozen]] = {
    "goto": GotoStep,
    "wait": WaitStep,
    "click": ClickStep,
    "type": TypeStep,
    "waitForSelector": WaitForSelectorStep,
    "screenshot": ScreenshotStep,
    "waitForDownload": WaitForDownloadStep,
    "evaluate": EvaluateStep,
}

ALLOWED_ACTIONS: tuple[str, ...] = tuple(STEP_TYPES)


class Viewport(_Frozen):
    width: StrictInt = Field(ge=100, le=3840)
    height: StrictInt = Field(ge=100, le=2160)


class WorkflowOptions(_Frozen):
    timeout: StrictInt | None = Field(default=None, ge=MIN_TIMEOUT_MS, le=MAX_TIMEOUT_MS)
    viewport: Viewport | None = None


class WorkflowDescriptor(_Frozen):
    """A validated, immutable workflow submission."""

    steps: tuple[Step, ...] = Field(min_length=1)
    options: WorkflowOptions = Field(default_factory=WorkflowOptions)

    @property
    def timeout_ms(self) -> int:
        return self.options.timeout or DEFAULT_TIMEOUT_MS

    @property
    def viewport(self) -> Viewport:
        return self.options.viewport or Viewport(
            width=DEFAULT_VIEWPORT_WIDTH, height=DEFAULT_VIEWPORT_HEIGHT
        )

    def to_payload(self) -> dict[str, object]:
        """Serialise back to the submission shape (``{workflow: {steps}, options}``)."""

        dumped = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        payload: dict[str, object] = {"workflow": {"steps": dumped["steps"]}}
        if dumped.get("options"):
            payload["options"] = dumped["options"]
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, object]) -> WorkflowDescriptor:
        """Rebuild a descriptor from a stored payload that was validated before."""

        workflow = payload.get("workflow")
        steps = workflow.get("steps", []) if isinstance(workflow, dict) else []
        return cls.model_validate({"steps": steps, "options": payload.get("options") or {}})
