"""Submission validation and SSRF defenses.

`Validator.validate` turns a raw submission into an immutable
`WorkflowDescriptor` or raises `ValidationError`. Checks stop at the first
failure and report the offending field path:

1. byte-size ceiling (before any parsing)
2. `workflow.steps` shape and length bounds
3. `options` bounds
4. each step top to bottom: action allow-list, the action's own fields, then
   the URL policy for steps that carry a `url`

No persistent state is touched here. The only side effect is DNS resolution
performed by `UrlPolicy`.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import socket
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import urlsplit

from pydantic import ValidationError as PydanticValidationError

from orbital.config import OrbitalSettings
from orbital.errors import PayloadTooLargeError, SsrfError, ValidationError
from orbital.workflow.steps import (
    ALLOWED_ACTIONS,
    STEP_TYPES,
    WorkflowDescriptor,
    WorkflowOptions,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAYLOAD_BYTES = 50 * 1024
DEFAULT_MAX_STEPS = 25

Resolver = Callable[[str], list[str]]

_BLOCKED_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",  # this network
        "10.0.0.0/8",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "224.0.0.0/4",  # multicast
        "240.0.0.0/4",  # reserved, includes broadcast
        "::/128",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
        "ff00::/8",
    )
)


def resolve_host(hostname: str) -> list[str]:
    """Resolve a hostname to every A/AAAA address the system resolver returns."""

    infos = socket.getaddrinfo(hostname, None, proto=socket.IPPROTO_TCP)
    # IPv6 link-local results may carry a zone suffix ("fe80::1%eth0").
    return sorted({str(info[4][0]).split("%", 1)[0] for info in infos})


def is_blocked_address(address: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return any(
        address.version == network.version and address in network
        for network in _BLOCKED_NETWORKS
    )


class UrlPolicy:
    """Reject URLs that would let a workflow reach internal resources.

    ``file:`` URLs are refused outright. Every other URL has its host checked,
    whatever the scheme (``ws://10.0.0.5`` is as internal as ``http://10.0.0.5``).
    Hostnames that fail to resolve are allowed through. The browser will fail to
    load them anyway, and blocking them would reject workflows during transient
    DNS outages.
    """

    def __init__(self, resolver: Resolver | None = None) -> None:
        self._resolver = resolver or resolve_host

    def check(self, url: str, *, field: str = "url") -> None:
        if url.strip().lower().startswith("file:"):
            raise SsrfError("file:// URLs are not allowed", field)

        try:
            parts = urlsplit(url)
            host = parts.hostname
        except ValueError as e:
            raise ValidationError("Invalid URL format", field) from e

        if not host:
            raise ValidationError("Invalid URL format", field)

        try:
            literal = ipaddress.ip_address(host)
        except ValueError:
            literal = None

        if literal is not None:
            if is_blocked_address(literal):
                raise SsrfError("Internal/private IP addresses are not allowed", field)
            return

        try:
            resolved = self._resolver(host)
        except (OSError, UnicodeError):
            logger.info("Hostname did not resolve; allowing", extra={"host": host})
            return

        for raw in resolved:
            try:
                address = ipaddress.ip_address(raw)
            except ValueError:
                continue
            if is_blocked_address(address):
                raise SsrfError("Hostname resolves to internal/private IP address", field)


def _from_pydantic(error: PydanticValidationError, prefix: str) -> ValidationError:
    first = error.errors()[0]
    loc = [str(part) for part in first.get("loc", ())]
    field = ".".join([prefix, *loc]) if loc else prefix
    name = loc[-1] if loc else prefix.rsplit(".", 1)[-1]

    if first.get("type") == "missing":
        return ValidationError(f"{name} is required", field)

    message = str(first.get("msg", "is invalid"))
    if message.startswith("Value error, "):
        return ValidationError(message.removeprefix("Value error, "), field)
    return ValidationError(f"{name}: {message}", field)


class Validator:
    def __init__(
        self,
        *,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
        max_steps: int = DEFAULT_MAX_STEPS,
        url_policy: UrlPolicy | None = None,
    ) -> None:
        self.max_payload_bytes = max_payload_bytes
        self.max_steps = max_steps
        self._url_policy = url_policy or UrlPolicy()

    @classmethod
    def from_settings(
        cls, settings: OrbitalSettings, *, url_policy: UrlPolicy | None = None
    ) -> Validator:
        return cls(
            max_payload_bytes=settings.max_payload_bytes,
            max_steps=settings.max_steps,
            url_policy=url_policy,
        )

    def check_size(self, raw: bytes | str) -> None:
        size = len(raw.encode("utf-8")) if isinstance(raw, str) else len(raw)
        if size > self.max_payload_bytes:
            raise PayloadTooLargeError(
                f"Payload of {size} bytes exceeds the {self.max_payload_bytes} byte limit"
            )

    def validate(self, raw: bytes | str | Mapping[str, Any]) -> WorkflowDescriptor:
        """Validate a raw submission (JSON bytes/text or an already-decoded mapping)."""

        if isinstance(raw, Mapping):
            self.check_size(json.dumps(raw, ensure_ascii=False))
            return self.validate_payload(raw)

        self.check_size(raw)
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError("Body must be valid JSON", "body") from e
        if not isinstance(payload, dict):
            raise ValidationError("Body must be a JSON object", "body")
        return self.validate_payload(payload)

    def validate_payload(self, payload: Mapping[str, Any]) -> WorkflowDescriptor:
        workflow = payload.get("workflow")
        if not isinstance(workflow, Mapping):
            raise ValidationError("workflow is required and must be an object", "workflow")

        steps = workflow.get("steps")
        if not isinstance(steps, list):
            raise ValidationError("steps is required and must be an array", "workflow.steps")
        if not steps:
            raise ValidationError("steps must contain at least 1 item", "workflow.steps")
        if len(steps) > self.max_steps:
            raise ValidationError(
                f"steps must not have more than {self.max_steps} items", "workflow.steps"
            )

        options = self._validate_options(payload.get("options"))

        parsed = []
        for index, raw_step in enumerate(steps):
            path = f"workflow.steps.{index}"
            if not isinstance(raw_step, Mapping):
                raise ValidationError("step must be an object", path)

            action = raw_step.get("action")
            model = STEP_TYPES.get(action) if isinstance(action, str) else None
            if model is None:
                raise ValidationError(
                    f"action must be one of: {', '.join(ALLOWED_ACTIONS)}", f"{path}.action"
                )

            try:
                step = model.model_validate(dict(raw_step))
            except PydanticValidationError as e:
                raise _from_pydantic(e, path) from e

            url = getattr(step, "url", None)
            if isinstance(url, str):
                self._url_policy.check(url, field=f"{path}.url")

            parsed.append(step)

        return WorkflowDescriptor(steps=tuple(parsed), options=options)

    def _validate_options(self, raw: object) -> WorkflowOptions:
        if raw is None:
            return WorkflowOptions()
        if not isinstance(raw, Mapping):
            raise ValidationError("options must be an object", "options")

        viewport = raw.get("viewport")
        if isinstance(viewport, Mapping) and (
            viewport.get("width") is None or viewport.get("height") is None
        ):
            raise ValidationError("both width and height are required", "options.viewport")

        try:
            return WorkflowOptions.model_validate(dict(raw))
        except PydanticValidationError as e:
            raise _from_pydantic(e, "options") from e
