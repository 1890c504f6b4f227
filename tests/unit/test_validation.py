"""Unit tests for submission validation and the SSRF policy."""

from __future__ import annotations

import ipaddress
import json

import pytest

from orbital.errors import PayloadTooLargeError, SsrfError, ValidationError
from orbital.workflow.steps import GotoStep, ScreenshotStep, TypeStep
from orbital.workflow.validation import UrlPolicy, Validator, is_blocked_address


def _payload(*steps: dict, options: dict | None = None) -> dict:
    body: dict = {"workflow": {"steps": list(steps)}}
    if options is not None:
        body["options"] = options
    return body


def test_accepts_screenshot_workflow(validator: Validator) -> None:
    descriptor = validator.validate(
        json.dumps(
            _payload(
                {"action": "goto", "url": "https://example.com"},
                {"action": "screenshot", "fullPage": True},
            )
        )
    )

    assert isinstance(descriptor.steps[0], GotoStep)
    assert isinstance(descriptor.steps[1], ScreenshotStep)
    assert descriptor.steps[1].full_page is True
    assert descriptor.timeout_ms == 60_000
    assert (descriptor.viewport.width, descriptor.viewport.height) == (1280, 800)


def test_unknown_step_keys_are_dropped(validator: Validator) -> None:
    descriptor = validator.validate(
        _payload({"action": "type", "selector": "#q", "value": "hi", "delay": 50})
    )

    step = descriptor.steps[0]
    assert isinstance(step, TypeStep)
    assert step.model_dump() == {"action": "type", "selector": "#q", "value": "hi"}


def test_rejects_oversized_payload_before_parsing(validator: Validator) -> None:
    raw = b"{" + b" " * (50 * 1024) + b"}"

    with pytest.raises(PayloadTooLargeError):
        validator.validate(raw)


def test_rejects_malformed_json(validator: Validator) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validator.validate(b"{not json")
    assert excinfo.value.field == "body"


def test_requires_workflow_object(validator: Validator) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validator.validate({"steps": []})
    assert excinfo.value.field == "workflow"


def test_requires_at_least_one_step(validator: Validator) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validator.validate(_payload())
    assert excinfo.value.details() == {"workflow.steps": ["steps must contain at least 1 item"]}


def test_rejects_too_many_steps(resolver) -> None:
    validator = Validator(max_steps=2, url_policy=UrlPolicy(resolver=resolver))

    with pytest.raises(ValidationError) as excinfo:
        validator.validate(_payload(*({"action": "wait", "duration": 1} for _ in range(3))))
    assert "more than 2" in excinfo.value.message


def test_rejects_unknown_action(validator: Validator) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validator.validate(_payload({"action": "drag"}))
    assert excinfo.value.field == "workflow.steps.0.action"


@pytest.mark.parametrize(
    ("step", "field"),
    [
        ({"action": "goto"}, "workflow.steps.0.url"),
        ({"action": "goto", "url": "not a url"}, "workflow.steps.0.url"),
        ({"action": "wait", "duration": 60_001}, "workflow.steps.0.duration"),
        ({"action": "wait", "duration": "100"}, "workflow.steps.0.duration"),
        ({"action": "click", "selector": ""}, "workflow.steps.0.selector"),
        ({"action": "type", "selector": "#a"}, "workflow.steps.0.value"),
        ({"action": "waitForSelector"}, "workflow.steps.0.selector"),
        ({"action": "screenshot", "fullPage": "yes"}, "workflow.steps.0.fullPage"),
        ({"action": "evaluate", "script": ""}, "workflow.steps.0.script"),
    ],
)
def test_reports_offending_step_field(validator: Validator, step: dict, field: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validator.validate(_payload(step))
    assert excinfo.value.field == field


def test_missing_field_message(validator: Validator) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validator.validate(_payload({"action": "click"}))
    assert excinfo.value.message == "selector is required"


@pytest.mark.parametrize(
    ("options", "field"),
    [
        ({"timeout": 999}, "options.timeout"),
        ({"timeout": 120_001}, "options.timeout"),
        ({"viewport": {"width": 800}}, "options.viewport"),
        ({"viewport": {"width": 99, "height": 600}}, "options.viewport.width"),
        ({"viewport": {"width": 800, "height": 2161}}, "options.viewport.height"),
    ],
)
def test_rejects_out_of_range_options(validator: Validator, options: dict, field: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validator.validate(_payload({"action": "wait", "duration": 10}, options=options))
    assert excinfo.value.field == field


def test_first_failure_wins(validator: Validator) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validator.validate(
            _payload(
                {"action": "wait", "duration": -1},
                {"action": "goto", "url": "http://127.0.0.1/"},
            )
        )
    assert excinfo.value.field == "workflow.steps.0.duration"


@pytest.mark.parametrize(
    "url",
    [
        "http://127.0.0.1/admin",
        "http://10.1.2.3/",
        "http://172.16.0.1/",
        "http://192.168.1.1/",
        "http://169.254.169.254/latest/meta-data",
        "http://0.0.0.0/",
        "http://224.0.0.1/",
        "http://255.255.255.255/",
        "http://[::1]/",
        "http://[fd00::1]/",
        "http://[fe80::1]/",
        "http://[::ffff:127.0.0.1]/",
    ],
)
def test_rejects_literal_internal_addresses(validator: Validator, url: str) -> None:
    with pytest.raises(SsrfError) as excinfo:
        validator.validate(_payload({"action": "goto", "url": url}))
    assert excinfo.value.message == "Internal/private IP addresses are not allowed"
    assert excinfo.value.field == "workflow.steps.0.url"


@pytest.mark.parametrize(
    "url",
    ["ftp://127.0.0.1/", "ws://10.0.0.5:9222/", "gopher://169.254.169.254/"],
)
def test_rejects_internal_addresses_for_any_scheme(validator: Validator, url: str) -> None:
    with pytest.raises(SsrfError) as excinfo:
        validator.validate(_payload({"action": "goto", "url": url}))
    assert excinfo.value.message == "Internal/private IP addresses are not allowed"


def test_resolves_hostnames_for_any_scheme(validator: Validator, resolver) -> None:
    resolver.records["devtools.internal"] = ["127.0.0.1"]

    with pytest.raises(SsrfError) as excinfo:
        validator.validate(_payload({"action": "goto", "url": "wss://devtools.internal/"}))
    assert excinfo.value.message == "Hostname resolves to internal/private IP address"
    assert resolver.lookups == ["devtools.internal"]


def test_rejects_file_scheme(validator: Validator) -> None:
    with pytest.raises(SsrfError) as excinfo:
        validator.validate(_payload({"action": "goto", "url": "file:///etc/passwd"}))
    assert excinfo.value.message == "file:// URLs are not allowed"


def test_rejects_hostname_resolving_to_private_address(validator: Validator, resolver) -> None:
    resolver.records["intranet.example"] = ["203.0.113.7", "10.0.0.5"]

    with pytest.raises(SsrfError) as excinfo:
        validator.validate(_payload({"action": "goto", "url": "https://intranet.example/x"}))
    assert excinfo.value.message == "Hostname resolves to internal/private IP address"


def test_allows_unresolvable_hostname(validator: Validator, resolver) -> None:
    resolver.unresolvable.add("does-not-exist.example")

    descriptor = validator.validate(
        _payload({"action": "goto", "url": "https://does-not-exist.example/"})
    )
    assert descriptor.steps[0].url == "https://does-not-exist.example/"


def test_url_policy_skips_dns_for_structurally_invalid_step(
    validator: Validator, resolver
) -> None:
    with pytest.raises(ValidationError):
        validator.validate(_payload({"action": "goto", "url": "example.com"}))
    assert resolver.lookups == []


def test_public_addresses_are_not_blocked() -> None:
    assert not is_blocked_address(ipaddress.ip_address("93.184.216.34"))
    assert not is_blocked_address(ipaddress.ip_address("2606:2800:220:1::1"))
    assert is_blocked_address(ipaddress.ip_address("172.31.255.255"))
    assert not is_blocked_address(ipaddress.ip_address("172.32.0.1"))
